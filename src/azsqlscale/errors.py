"""Error types for scaling operations.

Every failure a scaling run can hit maps to one ScalingError subclass. The
``kind`` attribute is the stable, human-readable name used in notifications
and in the execution summary.

A closed time window has no error type: it is a skip, not an error, and
is reported through RunStatus.SKIPPED.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from azsqlscale.models import ScalingOutcome


class ControlPlaneError(Exception):
    """Raised when the database control plane (az CLI or SDK) fails."""

    pass


class ScalingError(Exception):
    """Base class for scaling failures.

    Attributes:
        kind: Short error name, e.g. "ApplyFailed"
        detail: Verbatim (sanitized) error text for the operator
        outcome: Outcome of the target at the point of failure, if any
    """

    kind = "ScalingError"

    def __init__(
        self,
        message: str,
        *,
        detail: str | None = None,
        outcome: ScalingOutcome | None = None,
    ) -> None:
        super().__init__(message)
        self.detail = detail
        self.outcome = outcome


class BoundsViolation(ScalingError):
    """Scale-up target would exceed the configured maximum."""

    kind = "BoundsViolation"


class UnsupportedSku(ScalingError):
    """Database is not on a SKU this tool may modify."""

    kind = "UnsupportedSku"


class LookupFailed(ScalingError):
    """Database could not be read from the control plane."""

    kind = "LookupFailed"


class ApplyFailed(ScalingError):
    """Control plane rejected or failed the capacity change."""

    kind = "ApplyFailed"


class VerificationFailed(ScalingError):
    """Capacity did not reach the target after waiting for convergence."""

    kind = "VerificationFailed"


class ReplicaFailure(ScalingError):
    """A replica failed to scale. Recorded, never fatal to the run."""

    kind = "ReplicaFailure"


class PrimaryFailure(ScalingError):
    """The primary failed to scale. Aborts the run."""

    kind = "PrimaryFailure"


__all__ = [
    "ApplyFailed",
    "BoundsViolation",
    "ControlPlaneError",
    "LookupFailed",
    "PrimaryFailure",
    "ReplicaFailure",
    "ScalingError",
    "UnsupportedSku",
    "VerificationFailed",
]
