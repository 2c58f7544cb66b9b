"""Quota accounting shared by the store backends."""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class QuotaBalance:
    """Minutes left in a quota period after a charge."""

    minutes_remaining: int
    bonus_minutes: int
    minutes_used: int
    minutes_charged: int


def minutes_to_charge(duration_seconds: int) -> int:
    """Whole minutes billed for a session (rounded up, never negative)."""
    return max(0, math.ceil(duration_seconds / 60))


def apply_charge(
    minutes_remaining: int,
    bonus_minutes: int,
    minutes_used: int,
    duration_seconds: int,
) -> QuotaBalance:
    """Charge a session against a quota period.

    Plan minutes are consumed before bonus minutes; neither goes below 0.
    """
    charged = minutes_to_charge(duration_seconds)
    from_plan = min(max(minutes_remaining, 0), charged)
    from_bonus = min(max(bonus_minutes, 0), charged - from_plan)
    return QuotaBalance(
        minutes_remaining=max(minutes_remaining, 0) - from_plan,
        bonus_minutes=max(bonus_minutes, 0) - from_bonus,
        minutes_used=minutes_used + charged,
        minutes_charged=charged,
    )
