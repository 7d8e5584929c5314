"""Time-window gate for scaling operations.

Decides whether the current hour, shifted into the operator's timezone, is
inside the allowed operating window. Which directions are gated is policy,
held in WindowGatePolicy; by default only scale-up is gated.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from azsqlscale.models import ScaleDirection

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_HOURS = frozenset(range(8, 19))


@dataclass(frozen=True)
class WindowGatePolicy:
    """Which scaling directions must respect the allowed window."""

    gated_directions: frozenset[ScaleDirection] = field(
        default_factory=lambda: frozenset({ScaleDirection.UP})
    )

    def applies_to(self, direction: ScaleDirection) -> bool:
        return direction in self.gated_directions


def local_hour(now: datetime, timezone_offset_hours: int) -> int:
    """Hour of day after applying the offset to UTC time.

    Naive datetimes are taken as UTC.
    """
    if now.tzinfo is not None:
        now = now.astimezone(UTC)
    return (now.hour + timezone_offset_hours) % 24


def is_within_allowed_window(
    now: datetime, timezone_offset_hours: int, allowed_hours: frozenset[int] | set[int]
) -> bool:
    """Check whether ``now`` falls inside the allowed hours.

    Args:
        now: Current time (UTC, naive or aware)
        timezone_offset_hours: Offset from UTC of the operator's timezone
        allowed_hours: Local hours (0-23) in which the operation may run

    Returns:
        bool: True iff (now.hour + offset) mod 24 is in allowed_hours
    """
    hour = local_hour(now, timezone_offset_hours)
    allowed = hour in allowed_hours
    logger.debug(f"Local hour {hour} (offset {timezone_offset_hours:+d}) allowed={allowed}")
    return allowed


def parse_hours(value: str) -> frozenset[int]:
    """Parse an hours expression such as "8-18" or "0-6,22,23".

    Raises:
        ValueError: If the expression is empty or an hour is outside 0-23
    """
    hours: set[int] = set()
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_str, end_str = part.split("-", 1)
            start, end = int(start_str), int(end_str)
            if start > end:
                raise ValueError(f"Invalid hour range: {part}")
            hours.update(range(start, end + 1))
        else:
            hours.add(int(part))

    if not hours:
        raise ValueError("At least one allowed hour is required")

    out_of_range = sorted(h for h in hours if h < 0 or h > 23)
    if out_of_range:
        raise ValueError(f"Hours must be within 0-23, got {out_of_range}")

    return frozenset(hours)


def describe_hours(allowed_hours: frozenset[int] | set[int]) -> str:
    """Render hours as compact ranges, e.g. {8,9,10,20} -> "8-10, 20"."""
    if not allowed_hours:
        return "none"

    ordered = sorted(allowed_hours)
    ranges = []
    start = prev = ordered[0]
    for hour in ordered[1:]:
        if hour == prev + 1:
            prev = hour
            continue
        ranges.append((start, prev))
        start = prev = hour
    ranges.append((start, prev))

    return ", ".join(f"{a}" if a == b else f"{a}-{b}" for a, b in ranges)


__all__ = [
    "DEFAULT_ALLOWED_HOURS",
    "WindowGatePolicy",
    "describe_hours",
    "is_within_allowed_window",
    "local_hour",
    "parse_hours",
]
