"""Tests for target_calculator module.

Covers the asymmetric bounds: scale-up past the ceiling is rejected,
scale-down past the floor is clamped.
"""

import pytest

from azsqlscale.errors import BoundsViolation
from azsqlscale.models import ScaleDirection
from azsqlscale.target_calculator import compute_target, is_at_or_below_minimum


class TestComputeTargetUp:
    """Test scale-up target calculation."""

    def test_adds_step(self):
        assert compute_target(8, ScaleDirection.UP, 2, 4, 16) == 10

    def test_exactly_at_max_is_allowed(self):
        assert compute_target(14, ScaleDirection.UP, 2, 4, 16) == 16

    def test_above_max_raises_bounds_violation(self):
        with pytest.raises(BoundsViolation) as exc_info:
            compute_target(16, ScaleDirection.UP, 2, 4, 16)

        message = str(exc_info.value)
        assert "18" in message
        assert "16" in message
        assert exc_info.value.kind == "BoundsViolation"

    def test_never_clamps_to_max(self):
        """A step that overshoots is rejected rather than trimmed."""
        with pytest.raises(BoundsViolation):
            compute_target(15, ScaleDirection.UP, 2, 4, 16)


class TestComputeTargetDown:
    """Test scale-down target calculation."""

    def test_subtracts_step(self):
        assert compute_target(8, ScaleDirection.DOWN, 2, 4, 16) == 6

    def test_clamps_to_min(self):
        assert compute_target(5, ScaleDirection.DOWN, 2, 4, 16) == 4

    def test_at_min_stays_at_min(self):
        assert compute_target(4, ScaleDirection.DOWN, 2, 4, 16) == 4

    def test_below_min_is_raised_to_min(self):
        assert compute_target(2, ScaleDirection.DOWN, 2, 4, 16) == 4

    def test_ignores_max(self):
        """Scale-down of an over-provisioned database is still allowed."""
        assert compute_target(32, ScaleDirection.DOWN, 2, 4, 16) == 30


class TestComputeTargetValidation:
    @pytest.mark.parametrize("step", [0, -2])
    def test_non_positive_step_rejected(self, step):
        with pytest.raises(ValueError, match="step_cores"):
            compute_target(8, ScaleDirection.UP, step, 4, 16)


class TestIsAtOrBelowMinimum:
    @pytest.mark.parametrize(
        ("current", "expected"),
        [(3, True), (4, True), (5, False)],
    )
    def test_boundary(self, current, expected):
        assert is_at_or_below_minimum(current, 4) is expected
