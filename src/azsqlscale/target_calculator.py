"""Target capacity calculation.

Scale-up and scale-down are asymmetric: going up past the
ceiling is rejected, going down past the floor is clamped to the floor.
"""

from azsqlscale.errors import BoundsViolation
from azsqlscale.models import ScaleDirection


def compute_target(
    current_capacity: int,
    direction: ScaleDirection,
    step_cores: int,
    min_cores: int,
    max_cores: int,
) -> int:
    """Compute the new vCore count.

    Args:
        current_capacity: Current vCores
        direction: UP or DOWN
        step_cores: vCores to add or remove (positive)
        min_cores: Floor for scale-down
        max_cores: Ceiling for scale-up

    Returns:
        int: Target vCores

    Raises:
        BoundsViolation: If scaling up would exceed max_cores
        ValueError: If step_cores is not positive
    """
    if step_cores <= 0:
        raise ValueError("step_cores must be positive")

    if direction == ScaleDirection.UP:
        target = current_capacity + step_cores
        if target > max_cores:
            raise BoundsViolation(
                f"Target {target} vCores exceeds maximum {max_cores} "
                f"(current {current_capacity} + step {step_cores})"
            )
        return target

    return max(current_capacity - step_cores, min_cores)


def is_at_or_below_minimum(current_capacity: int, min_cores: int) -> bool:
    return current_capacity <= min_cores


__all__ = ["compute_target", "is_at_or_below_minimum"]
