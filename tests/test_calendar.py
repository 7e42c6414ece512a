"""Tests for work calendar helpers — slot availability and next-free-slot search."""

import pytest
from datetime import date, datetime, timezone
from pathlib import Path

from jobledger.calendar import (
    SlotRef,
    current_time_slot,
    format_date_key,
    is_slot_available,
    mark_booked,
    next_available_slot,
    normalise_day,
    parse_date_key,
    slot_entry,
)
from jobledger.policy.resolver import CalendarPolicy, PolicyResolver


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 3, 2, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def policy() -> CalendarPolicy:
    return PolicyResolver.from_config_dir(CONFIG_DIR).calendar_policy()


class TestDateKeys:
    def test_format_and_parse(self) -> None:
        assert format_date_key(date(2026, 3, 2)) == "2026-03-02"
        assert parse_date_key("2026-03-02") == date(2026, 3, 2)
        assert parse_date_key("02/03/2026") is None


class TestSlots:
    def test_legacy_list_normalised(self) -> None:
        assert normalise_day(["morning", "evening"]) == {
            "morning": {"reason": "manual"},
            "evening": {"reason": "manual"},
        }
        assert normalise_day(None) == {}

    def test_slot_entry_reads_both_formats(self) -> None:
        calendar = {
            "2026-03-02": ["morning"],
            "2026-03-03": {"afternoon": {"reason": "job", "jobId": "job_1"}},
        }
        assert slot_entry(calendar, "2026-03-02", "morning") == {"reason": "manual"}
        assert slot_entry(calendar, "2026-03-02", "evening") is None
        assert slot_entry(calendar, "2026-03-03", "afternoon")["jobId"] == "job_1"

    def test_availability(self) -> None:
        calendar = {"2026-03-03": {"afternoon": {"reason": "job", "jobId": "job_1"}}}
        assert is_slot_available(calendar, "2026-03-03", "morning")
        assert not is_slot_available(calendar, "2026-03-03", "afternoon")
        assert not is_slot_available(calendar, "2026-03-03", "afternoon", "job_2")
        assert is_slot_available(calendar, "2026-03-03", "afternoon", "job_1")

    def test_mark_booked_converts_legacy_day(self) -> None:
        calendar = {"2026-03-02": ["morning"]}
        day = mark_booked(calendar, "2026-03-02", "evening", "job_9")
        assert day == {
            "morning": {"reason": "manual"},
            "evening": {"reason": "job", "jobId": "job_9"},
        }
        assert calendar == {"2026-03-02": ["morning"]}


class TestCurrentSlot:
    def test_slot_boundaries(self, policy: CalendarPolicy) -> None:
        assert current_time_slot(_at(7, 59), policy) is None
        assert current_time_slot(_at(8), policy) == "morning"
        assert current_time_slot(_at(12), policy) == "afternoon"
        assert current_time_slot(_at(20), policy) == "evening"
        assert current_time_slot(_at(23), policy) is None


class TestNextAvailableSlot:
    def test_empty_calendar_means_no_answer(self, policy: CalendarPolicy) -> None:
        assert next_available_slot({}, _at(9), policy) is None

    def test_skips_passed_and_blocked_slots(self, policy: CalendarPolicy) -> None:
        calendar = {"2026-03-02": {"afternoon": {"reason": "manual"}}}
        assert next_available_slot(calendar, _at(9), policy) == SlotRef("2026-03-02", "evening")

    def test_before_opening_offers_morning(self, policy: CalendarPolicy) -> None:
        calendar = {"2026-01-01": ["morning"]}
        assert next_available_slot(calendar, _at(6), policy) == SlotRef("2026-03-02", "morning")

    def test_late_night_rolls_to_tomorrow(self, policy: CalendarPolicy) -> None:
        calendar = {"2026-01-01": ["morning"]}
        assert next_available_slot(calendar, _at(23, 30), policy) == SlotRef("2026-03-03", "morning")

    def test_fully_blocked_day_skipped(self, policy: CalendarPolicy) -> None:
        calendar = {"2026-03-03": ["morning", "afternoon"]}
        assert next_available_slot(calendar, _at(21), policy) == SlotRef("2026-03-03", "evening")
