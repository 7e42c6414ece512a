"""Policy resolver — loads marketplace parameters from the config directory.

All tunable numbers the job core depends on (commission rate, rating
bounds, calendar slots, withdrawal methods) come from
``config/marketplace_params.json``. Code never hard-codes them; it asks
the resolver.

The commission rate is a single platform-wide value. Per-job-class
rates are not supported.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any


PARAMS_FILENAME = "marketplace_params.json"

_DEFAULT_PARAMS: dict[str, Any] = {
    "commission": {"rate": "0.15", "currency_symbol": "£"},
    "lifecycle": {
        "auto_advance_delay_seconds": 1.0,
        "min_estimated_hours": "1",
        "max_info_photos": 5,
    },
    "review": {
        "min_rating": 1,
        "max_rating": 5,
        "invoice_prefix": "INV",
        "invoice_suffix_length": 9,
    },
    "calendar": {
        "time_slots": ["morning", "afternoon", "evening"],
        "slot_start_hours": {"morning": 8, "afternoon": 12, "evening": 20},
        "day_end_hour": 23,
        "lookahead_days": 365,
    },
    "withdrawal": {"methods": ["stripe", "bank", "crypto"]},
}


@dataclass(frozen=True)
class CalendarPolicy:
    time_slots: tuple[str, ...]
    slot_start_hours: dict[str, int]
    day_end_hour: int
    lookahead_days: int


class PolicyResolver:
    """Typed access to marketplace parameters.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        rate = resolver.commission_rate()
    """

    def __init__(self, params: dict[str, Any]) -> None:
        errors = self.validate(params)
        if errors:
            raise ValueError("Invalid marketplace params: " + "; ".join(errors))
        self._params = params

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load params from ``config_dir/marketplace_params.json``."""
        return cls.from_file(Path(config_dir) / PARAMS_FILENAME)

    @classmethod
    def from_file(cls, path: Path) -> PolicyResolver:
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    @classmethod
    def default(cls) -> PolicyResolver:
        """Resolver with the built-in defaults (same values as the shipped config)."""
        return cls(json.loads(json.dumps(_DEFAULT_PARAMS)))

    @staticmethod
    def validate(params: dict[str, Any]) -> list[str]:
        """Check structural rules on a params dict. Returns errors (empty = OK)."""
        errors: list[str] = []
        for section in _DEFAULT_PARAMS:
            if section not in params:
                errors.append(f"missing section: {section}")
        if errors:
            return errors

        try:
            rate = Decimal(str(params["commission"]["rate"]))
            if not (Decimal("0") <= rate < Decimal("1")):
                errors.append(f"commission.rate must be in [0, 1), got {rate}")
        except (InvalidOperation, KeyError):
            errors.append("commission.rate must be a decimal string")

        try:
            min_hours = Decimal(str(params["lifecycle"]["min_estimated_hours"]))
            if min_hours <= 0:
                errors.append("lifecycle.min_estimated_hours must be > 0")
        except (InvalidOperation, KeyError):
            errors.append("lifecycle.min_estimated_hours must be a decimal string")

        review = params["review"]
        lo, hi = review.get("min_rating"), review.get("max_rating")
        if not isinstance(lo, int) or not isinstance(hi, int) or lo < 1 or hi < lo:
            errors.append("review.min_rating/max_rating must be integers with 1 <= min <= max")

        slots = params["calendar"].get("time_slots") or []
        if not slots:
            errors.append("calendar.time_slots must not be empty")
        starts = params["calendar"].get("slot_start_hours", {})
        for slot in slots:
            if slot not in starts:
                errors.append(f"calendar.slot_start_hours missing slot: {slot}")

        if not params["withdrawal"].get("methods"):
            errors.append("withdrawal.methods must not be empty")
        return errors

    # ------------------------------------------------------------------
    # Commission
    # ------------------------------------------------------------------

    def commission_rate(self) -> Decimal:
        return Decimal(str(self._params["commission"]["rate"]))

    def currency_symbol(self) -> str:
        return self._params["commission"]["currency_symbol"]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def auto_advance_delay(self) -> float:
        return float(self._params["lifecycle"]["auto_advance_delay_seconds"])

    def min_estimated_hours(self) -> Decimal:
        return Decimal(str(self._params["lifecycle"]["min_estimated_hours"]))

    def max_info_photos(self) -> int:
        return int(self._params["lifecycle"]["max_info_photos"])

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def rating_bounds(self) -> tuple[int, int]:
        review = self._params["review"]
        return int(review["min_rating"]), int(review["max_rating"])

    def invoice_format(self) -> tuple[str, int]:
        review = self._params["review"]
        return review["invoice_prefix"], int(review["invoice_suffix_length"])

    # ------------------------------------------------------------------
    # Calendar and withdrawals
    # ------------------------------------------------------------------

    def calendar_policy(self) -> CalendarPolicy:
        cal = self._params["calendar"]
        return CalendarPolicy(
            time_slots=tuple(cal["time_slots"]),
            slot_start_hours={k: int(v) for k, v in cal["slot_start_hours"].items()},
            day_end_hour=int(cal["day_end_hour"]),
            lookahead_days=int(cal["lookahead_days"]),
        )

    def withdrawal_methods(self) -> tuple[str, ...]:
        return tuple(self._params["withdrawal"]["methods"])
