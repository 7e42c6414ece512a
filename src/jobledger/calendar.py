"""Work calendar — a tradie's per-day, per-slot unavailability map.

Shape: ``{"2026-03-01": {"morning": {"reason": "job", "jobId": "job_..."}}}``

Older profiles store a day as a plain list of blocked slot names
(``{"2026-03-01": ["morning"]}``). Readers accept both; the only writer
(booking confirmation) normalises the day to the map form, recording the
legacy entries with reason ``manual``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Mapping, Optional

from jobledger.policy.resolver import CalendarPolicy


@dataclass(frozen=True)
class SlotRef:
    date_key: str
    time_slot: str


def format_date_key(day: date) -> str:
    """Format a date as YYYY-MM-DD."""
    return f"{day.year:04d}-{day.month:02d}-{day.day:02d}"


def parse_date_key(value: str) -> Optional[date]:
    """Parse YYYY-MM-DD, returning None when malformed."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


def normalise_day(day_slots: Any) -> dict[str, dict[str, Any]]:
    """Return a day's slots in map form, converting the legacy list form."""
    if not day_slots:
        return {}
    if isinstance(day_slots, list):
        return {slot: {"reason": "manual"} for slot in day_slots}
    return {slot: dict(entry or {}) for slot, entry in day_slots.items()}


def slot_entry(
    calendar: Mapping[str, Any], date_key: str, time_slot: str,
) -> Optional[dict[str, Any]]:
    """Return the unavailability entry for a slot, or None when free."""
    day = calendar.get(date_key)
    if not day:
        return None
    if isinstance(day, list):
        return {"reason": "manual"} if time_slot in day else None
    entry = day.get(time_slot)
    return dict(entry) if entry else None


def is_slot_available(
    calendar: Mapping[str, Any],
    date_key: str,
    time_slot: str,
    job_id: Optional[str] = None,
) -> bool:
    """True if the slot is free, or already held for ``job_id``."""
    entry = slot_entry(calendar, date_key, time_slot)
    if entry is None:
        return True
    return job_id is not None and entry.get("jobId") == job_id


def mark_booked(
    calendar: Mapping[str, Any], date_key: str, time_slot: str, job_id: str,
) -> dict[str, dict[str, Any]]:
    """Return the normalised day map with ``time_slot`` held for ``job_id``."""
    day = normalise_day(calendar.get(date_key))
    day[time_slot] = {"reason": "job", "jobId": job_id}
    return day


def current_time_slot(now: datetime, policy: CalendarPolicy) -> Optional[str]:
    """Return the slot ``now`` falls in, or None outside working hours."""
    hour = now.hour
    ordered = sorted(policy.time_slots, key=lambda s: policy.slot_start_hours[s])
    for i, slot in enumerate(ordered):
        start = policy.slot_start_hours[slot]
        end = (
            policy.slot_start_hours[ordered[i + 1]]
            if i + 1 < len(ordered) else policy.day_end_hour
        )
        if start <= hour < end:
            return slot
    return None


def next_available_slot(
    calendar: Mapping[str, Any],
    now: datetime,
    policy: CalendarPolicy,
) -> Optional[SlotRef]:
    """Find the first free slot from ``now`` within the lookahead window.

    Returns None if the calendar is empty (no unavailability set) or if
    every slot in the window is blocked.
    """
    if not calendar:
        return None

    ordered = sorted(policy.time_slots, key=lambda s: policy.slot_start_hours[s])
    order = {slot: i for i, slot in enumerate(ordered)}
    today = now.date()
    current = current_time_slot(now, policy)

    for days_ahead in range(policy.lookahead_days):
        day = today + timedelta(days=days_ahead)
        date_key = format_date_key(day)
        for slot in ordered:
            if slot_entry(calendar, date_key, slot) is not None:
                continue
            if days_ahead == 0:
                if current is None:
                    # Before the first slot starts, only that slot is still ahead.
                    if now.hour >= policy.slot_start_hours[ordered[0]] or slot != ordered[0]:
                        continue
                elif order[slot] <= order[current]:
                    continue
            return SlotRef(date_key=date_key, time_slot=slot)
    return None
