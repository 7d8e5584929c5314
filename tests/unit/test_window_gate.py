"""Tests for window_gate module."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from azsqlscale.models import ScaleDirection
from azsqlscale.window_gate import (
    DEFAULT_ALLOWED_HOURS,
    WindowGatePolicy,
    describe_hours,
    is_within_allowed_window,
    local_hour,
    parse_hours,
)


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 3, 5, hour, minute, tzinfo=UTC)


class TestLocalHour:
    def test_no_offset(self):
        assert local_hour(at(10), 0) == 10

    def test_positive_offset_wraps_past_midnight(self):
        assert local_hour(at(22), 3) == 1

    def test_negative_offset_wraps_before_midnight(self):
        assert local_hour(at(2), -5) == 21

    def test_naive_datetime_treated_as_utc(self):
        assert local_hour(datetime(2024, 3, 5, 10, 0), 1) == 11

    def test_aware_non_utc_is_converted_first(self):
        """10:00 at UTC+2 is 08:00 UTC."""
        now = datetime(2024, 3, 5, 10, 0, tzinfo=timezone(timedelta(hours=2)))
        assert local_hour(now, 0) == 8


class TestIsWithinAllowedWindow:
    """Default window is 08:00-18:59 local time."""

    @pytest.mark.parametrize(
        ("hour", "expected"),
        [(7, False), (8, True), (12, True), (18, True), (19, False), (0, False)],
    )
    def test_default_window_boundaries(self, hour, expected):
        assert is_within_allowed_window(at(hour, 59), 0, DEFAULT_ALLOWED_HOURS) is expected

    def test_offset_shifts_window(self):
        """06:30 UTC with offset +2 is 08:30 local: allowed."""
        assert is_within_allowed_window(at(6, 30), 2, DEFAULT_ALLOWED_HOURS) is True

    def test_offset_shifts_out_of_window(self):
        """17:30 UTC with offset +2 is 19:30 local: blocked."""
        assert is_within_allowed_window(at(17, 30), 2, DEFAULT_ALLOWED_HOURS) is False

    def test_overnight_window(self):
        overnight = parse_hours("22-23,0-5")
        assert is_within_allowed_window(at(23), 0, overnight) is True
        assert is_within_allowed_window(at(3), 0, overnight) is True
        assert is_within_allowed_window(at(12), 0, overnight) is False

    def test_empty_window_blocks_everything(self):
        assert not any(is_within_allowed_window(at(h), 0, frozenset()) for h in range(24))


class TestWindowGatePolicy:
    def test_default_gates_only_scale_up(self):
        policy = WindowGatePolicy()
        assert policy.applies_to(ScaleDirection.UP) is True
        assert policy.applies_to(ScaleDirection.DOWN) is False

    def test_both_directions(self):
        policy = WindowGatePolicy(
            gated_directions=frozenset({ScaleDirection.UP, ScaleDirection.DOWN})
        )
        assert policy.applies_to(ScaleDirection.DOWN) is True

    def test_no_directions(self):
        policy = WindowGatePolicy(gated_directions=frozenset())
        assert policy.applies_to(ScaleDirection.UP) is False


class TestParseHours:
    def test_range(self):
        assert parse_hours("8-18") == frozenset(range(8, 19))

    def test_mixed_list(self):
        assert parse_hours("0-2, 22,23") == frozenset({0, 1, 2, 22, 23})

    def test_single_hour(self):
        assert parse_hours("9") == frozenset({9})

    @pytest.mark.parametrize("value", ["", " , ", "18-8", "8-24", "25", "abc"])
    def test_invalid_expressions(self, value):
        with pytest.raises(ValueError):
            parse_hours(value)


class TestDescribeHours:
    def test_compacts_ranges(self):
        assert describe_hours({8, 9, 10, 20}) == "8-10, 20"

    def test_default_window(self):
        assert describe_hours(DEFAULT_ALLOWED_HOURS) == "8-18"

    def test_empty(self):
        assert describe_hours(frozenset()) == "none"
