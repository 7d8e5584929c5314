"""Scale a single database endpoint.

DatabaseScaler performs one capacity change against one server (the primary
or one replica), always for the request's database name:

    read -> SKU check -> floor/target check -> notify -> apply -> converge -> verify

Every failure sends exactly one notification and is re-raised as a
ScalingError carrying the partially filled ScalingOutcome, so the caller
decides whether to continue with other servers.
"""

import logging
import time
from collections.abc import Callable

from azsqlscale.config import ScalerConfig
from azsqlscale.control_plane import ControlPlane
from azsqlscale.convergence import ConvergenceStrategy, build_convergence
from azsqlscale.errors import (
    ApplyFailed,
    ControlPlaneError,
    LookupFailed,
    ScalingError,
    UnsupportedSku,
    VerificationFailed,
)
from azsqlscale.models import (
    DatabaseSnapshot,
    OutcomeStatus,
    ScaleDirection,
    ScalingOutcome,
    ScalingRequest,
    TargetRole,
)
from azsqlscale.notifications import NotificationBuilder, Notifier, Severity
from azsqlscale.target_calculator import compute_target, is_at_or_below_minimum

logger = logging.getLogger(__name__)

# What the operator should do next, per failure kind
OPERATOR_ACTIONS = {
    "BoundsViolation": "Raise max cores deliberately or scale manually after review.",
    "UnsupportedSku": "Scale this database manually; its SKU is not on the allow-list.",
    "LookupFailed": "Check the server/database names and the identity's read access.",
    "ApplyFailed": "Check the Azure activity log for the database and retry manually.",
    "VerificationFailed": (
        "The change may still be in progress. Check current vCores in the portal "
        "before re-running."
    ),
}


class DatabaseScaler:
    """Scale one server's copy of the database to a target capacity."""

    def __init__(
        self,
        config: ScalerConfig,
        control_plane: ControlPlane,
        notifier: Notifier,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.control_plane = control_plane
        self.notifier = notifier
        self.sleep = sleep
        self.clock = clock

    def convergence_for(self, direction: ScaleDirection) -> ConvergenceStrategy:
        return build_convergence(self.config, direction, sleep=self.sleep, clock=self.clock)

    def read_snapshot(self, request: ScalingRequest, server_name: str) -> DatabaseSnapshot:
        """Read the database fresh from the control plane.

        Raises:
            LookupFailed: If the control plane read fails
        """
        try:
            return self.control_plane.get_database(
                request.resource_group, server_name, request.database_name
            )
        except ControlPlaneError as e:
            raise LookupFailed(
                f"Could not read {server_name}/{request.database_name}", detail=str(e)
            ) from e

    def scale_one(
        self, server_name: str, role: TargetRole, request: ScalingRequest
    ) -> ScalingOutcome:
        """Scale one server by one step from its own current capacity.

        Args:
            server_name: Server hosting this copy of the database
            role: PRIMARY or REPLICA (used in messages only)
            request: Scaling request

        Returns:
            ScalingOutcome: SUCCESS, or SKIPPED when at the floor / already at target

        Raises:
            ScalingError: Any failure, after one failure notification
        """
        outcome = ScalingOutcome(server_name=server_name, role=role)
        snapshot: DatabaseSnapshot | None = None
        direction = request.direction

        try:
            snapshot = self.read_snapshot(request, server_name)
            outcome.previous_capacity = snapshot.capacity

            if snapshot.sku_name not in self.config.supported_skus:
                supported = ", ".join(sorted(self.config.supported_skus))
                raise UnsupportedSku(
                    f"SKU {snapshot.sku_name} is not supported (allowed: {supported})",
                    detail=f"sku={snapshot.sku_name}",
                )

            if direction == ScaleDirection.DOWN and is_at_or_below_minimum(
                snapshot.capacity, request.min_cores
            ):
                return self._skip(
                    outcome,
                    request,
                    snapshot,
                    f"Already at or below the minimum of {request.min_cores} vCores",
                )

            target = compute_target(
                snapshot.capacity,
                direction,
                request.step_cores,
                request.min_cores,
                request.max_cores,
            )
            outcome.target_capacity = target

            if snapshot.capacity == target:
                return self._skip(
                    outcome, request, snapshot, f"Already at target of {target} vCores"
                )

            self._notify_starting(outcome, request, snapshot)

            try:
                self.control_plane.set_capacity(
                    request.resource_group, server_name, request.database_name, target
                )
            except ControlPlaneError as e:
                raise ApplyFailed(
                    f"Capacity change to {target} vCores failed on {server_name}",
                    detail=str(e),
                ) from e

            result = self.convergence_for(direction).wait_for(
                lambda: self.read_snapshot(request, server_name).capacity, target
            )
            outcome.final_capacity = result.observed_capacity

            if not result.verified:
                raise VerificationFailed(
                    f"{server_name} reports {result.observed_capacity} vCores, "
                    f"expected {target} after {result.checks} check(s)",
                    detail=f"observed={result.observed_capacity} expected={target}",
                )

        except ScalingError as e:
            outcome.status = OutcomeStatus.FAILED
            outcome.error_detail = e.detail or str(e)
            e.outcome = outcome
            self._notify_failure(outcome, request, snapshot, e)
            raise

        outcome.status = OutcomeStatus.SUCCESS
        logger.info(
            f"{server_name}/{request.database_name}: "
            f"{outcome.previous_capacity} -> {outcome.final_capacity} vCores"
        )
        self.notifier.notify(
            self._builder(
                f"Scale-{direction.value} complete", Severity.SUCCESS, outcome, request, snapshot
            ).render(),
            Severity.SUCCESS,
        )
        return outcome

    def _skip(
        self,
        outcome: ScalingOutcome,
        request: ScalingRequest,
        snapshot: DatabaseSnapshot,
        reason: str,
    ) -> ScalingOutcome:
        outcome.status = OutcomeStatus.SKIPPED
        outcome.reason = reason
        outcome.final_capacity = snapshot.capacity
        logger.info(f"Skipping {outcome.server_name}: {reason}")
        builder = self._builder(
            f"Scale-{request.direction.value} skipped", Severity.INFO, outcome, request, snapshot
        )
        builder.summary = reason
        self.notifier.notify(builder.render(), Severity.INFO)
        return outcome

    def _notify_starting(
        self, outcome: ScalingOutcome, request: ScalingRequest, snapshot: DatabaseSnapshot
    ) -> None:
        builder = self._builder(
            f"Scale-{request.direction.value} starting", Severity.INFO, outcome, request, snapshot
        )
        builder.detail("Step", f"{request.step_cores} vCores")
        builder.detail("Bounds", f"{request.min_cores}-{request.max_cores} vCores")
        self.notifier.notify(builder.render(), Severity.INFO)

    def _notify_failure(
        self,
        outcome: ScalingOutcome,
        request: ScalingRequest,
        snapshot: DatabaseSnapshot | None,
        error: ScalingError,
    ) -> None:
        logger.error(f"{error.kind} on {outcome.server_name}: {error}")
        builder = self._builder(
            f"Scale-{request.direction.value} failed: {error.kind}",
            Severity.CRITICAL,
            outcome,
            request,
            snapshot,
        )
        builder.summary = str(error)
        builder.detail("Error", error.detail)
        builder.detail("Action", OPERATOR_ACTIONS.get(error.kind))
        self.notifier.notify(builder.render(), Severity.CRITICAL)

    def _builder(
        self,
        title: str,
        severity: Severity,
        outcome: ScalingOutcome,
        request: ScalingRequest,
        snapshot: DatabaseSnapshot | None,
    ) -> NotificationBuilder:
        builder = NotificationBuilder(title, severity)
        builder.resource(
            server=outcome.server_name,
            database=request.database_name,
            resource_group=request.resource_group,
            resource_id=snapshot.resource_id if snapshot else None,
            role=outcome.role.value,
        )
        builder.capacity(
            previous=outcome.previous_capacity,
            target=outcome.target_capacity,
            final=outcome.final_capacity,
        )
        builder.detail("SKU", snapshot.sku_name if snapshot else None)
        builder.trigger([("Correlation id", request.trigger.correlation_id)])
        return builder


__all__ = ["OPERATOR_ACTIONS", "DatabaseScaler"]
