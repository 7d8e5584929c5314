"""Top-level scaling run.

Orchestrator.run() drives one invocation:

1. Time-window gate (directions chosen by config.gate_policy)
2. Subscription context
3. Primary snapshot, scale-down floor short-circuit
4. Replicas in order, best-effort (failures recorded, run continues)
5. Primary, fail-fast (failure aborts the run)

Each server steps from its own current capacity, so replicas that have
drifted from the primary each move by at most one step per run.
6. Final capacity read
7. Status
8. One summary notification

Philosophy:
- Single responsibility: sequencing and failure isolation only
- Clear contracts: ScalingRequest in, ExecutionSummary out
- Explicit configuration: everything comes from the ScalerConfig passed in
"""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

from azsqlscale.config import ScalerConfig
from azsqlscale.control_plane import ControlPlane
from azsqlscale.errors import (
    ControlPlaneError,
    LookupFailed,
    PrimaryFailure,
    ReplicaFailure,
    ScalingError,
)
from azsqlscale.models import (
    DatabaseSnapshot,
    ExecutionSummary,
    OutcomeStatus,
    RunStatus,
    ScaleDirection,
    ScalingOutcome,
    ScalingRequest,
    TargetRole,
)
from azsqlscale.notifications import NotificationBuilder, Notifier, Severity
from azsqlscale.scaler import OPERATOR_ACTIONS, DatabaseScaler
from azsqlscale.target_calculator import is_at_or_below_minimum
from azsqlscale.window_gate import describe_hours, is_within_allowed_window, local_hour

logger = logging.getLogger(__name__)

STATUS_SEVERITY = {
    RunStatus.SUCCESS: Severity.SUCCESS,
    RunStatus.PARTIAL_SUCCESS: Severity.WARNING,
    RunStatus.FAILED: Severity.CRITICAL,
    RunStatus.SKIPPED: Severity.INFO,
}


class Orchestrator:
    """Run a scaling request against a primary and its replicas."""

    def __init__(
        self,
        config: ScalerConfig,
        control_plane: ControlPlane,
        notifier: Notifier,
        scaler: DatabaseScaler | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize orchestrator.

        Args:
            config: Immutable scaler configuration
            control_plane: Database control plane backend
            notifier: Notification channel
            scaler: Per-server scaler (default: built from the above)
            now: Wall clock used for the time gate and the summary
            sleep: Sleep function used while waiting for convergence
            clock: Monotonic clock used for convergence deadlines
        """
        self.config = config
        self.control_plane = control_plane
        self.notifier = notifier
        self.now = now
        self.scaler = scaler or DatabaseScaler(
            config, control_plane, notifier, sleep=sleep, clock=clock
        )

    def run(self, request: ScalingRequest) -> ExecutionSummary:
        """Execute the scaling request.

        Returns:
            ExecutionSummary for successful, partially successful and skipped runs

        Raises:
            PrimaryFailure: The primary failed to scale (after the summary is sent)
            ScalingError: A fatal error before any server was scaled (after the
                failure notification and the summary are sent)
        """
        summary = ExecutionSummary(request=request, started_at=self.now())
        direction = request.direction
        logger.info(
            f"Scale-{direction.value} {request.server_name}/{request.database_name} "
            f"by {request.step_cores} vCores "
            f"({len(request.replica_server_names)} replica(s), "
            f"correlation {request.trigger.correlation_id})"
        )

        if self.config.gate_policy.applies_to(direction) and not is_within_allowed_window(
            summary.started_at, request.timezone_offset_hours, request.allowed_hours
        ):
            return self._gate_blocked(summary)

        try:
            self._set_context(request)

            primary = self._read_primary(request)
            if direction == ScaleDirection.DOWN and self._everything_at_floor(request, primary):
                summary.skip_reason = (
                    f"Primary and all replicas are already at or below the minimum of "
                    f"{request.min_cores} vCores"
                )
                summary.final_capacity = primary.capacity
                logger.info(summary.skip_reason)
                self._finish(summary)
                return summary

            for server_name, role in request.servers:
                if role == TargetRole.REPLICA:
                    self._scale_replica(summary, request, server_name)
                else:
                    self._scale_primary(summary, request)
            summary.final_capacity = self._final_capacity(summary, request)

        except ScalingError as e:
            summary.fatal_error = f"{e.kind}: {e}"
            if summary.final_capacity is None:
                summary.final_capacity = _last_known_capacity(summary)
            self._finish(summary)
            raise

        self._finish(summary)
        return summary

    def _gate_blocked(self, summary: ExecutionSummary) -> ExecutionSummary:
        request = summary.request
        hour = local_hour(summary.started_at, request.timezone_offset_hours)
        hours = describe_hours(request.allowed_hours)
        summary.skip_reason = (
            f"Local hour {hour} (UTC{request.timezone_offset_hours:+d}) is outside the "
            f"allowed window {hours}"
        )
        summary.status = RunStatus.SKIPPED
        summary.finished_at = self.now()
        logger.warning(f"Scale-{request.direction.value} blocked: {summary.skip_reason}")

        builder = NotificationBuilder(
            f"Scale-{request.direction.value} blocked outside allowed hours", Severity.CRITICAL
        )
        builder.summary = (
            f"Automatic scaling only runs during hours {hours} (UTC"
            f"{request.timezone_offset_hours:+d}); it is now {hour}:00 local. "
            "No change was made. Manual intervention required: review the alert and "
            "scale the database by hand if needed."
        )
        builder.resource(
            server=request.server_name,
            database=request.database_name,
            resource_group=request.resource_group,
        )
        builder.detail("Requested step", f"{request.step_cores} vCores")
        builder.detail("Replicas", ", ".join(request.replica_server_names) or None)
        builder.trigger(request.trigger.as_lines())
        self.notifier.notify(builder.render(), Severity.CRITICAL)
        return summary

    def _set_context(self, request: ScalingRequest) -> None:
        try:
            self.control_plane.set_context(request.subscription_id)
        except ControlPlaneError as e:
            error = LookupFailed(
                f"Could not set subscription context {request.subscription_id}", detail=str(e)
            )
            self._notify_fatal(request, error)
            raise error from e

    def _read_primary(self, request: ScalingRequest) -> DatabaseSnapshot:
        try:
            return self.scaler.read_snapshot(request, request.server_name)
        except LookupFailed as e:
            self._notify_fatal(request, e)
            raise

    def _everything_at_floor(self, request: ScalingRequest, primary: DatabaseSnapshot) -> bool:
        if not is_at_or_below_minimum(primary.capacity, request.min_cores):
            return False

        for server_name in request.replica_server_names:
            try:
                replica = self.scaler.read_snapshot(request, server_name)
            except LookupFailed as e:
                # The replica will be attempted and its failure recorded
                logger.warning(f"Floor pre-check could not read replica {server_name}: {e}")
                return False
            if not is_at_or_below_minimum(replica.capacity, request.min_cores):
                return False

        return True

    def _scale_replica(
        self, summary: ExecutionSummary, request: ScalingRequest, server_name: str
    ) -> None:
        try:
            outcome = self.scaler.scale_one(server_name, TargetRole.REPLICA, request)
        except ScalingError as e:
            outcome = e.outcome or ScalingOutcome(
                server_name=server_name, role=TargetRole.REPLICA, error_detail=str(e)
            )
            failure = ReplicaFailure(
                f"{server_name}: {e.kind}: {e}", detail=e.detail, outcome=outcome
            )
            summary.errors.append(f"{failure.kind}: {failure}")
            logger.warning(f"Replica {server_name} failed, continuing: {e}")
        summary.outcomes.append(outcome)

    def _scale_primary(self, summary: ExecutionSummary, request: ScalingRequest) -> None:
        try:
            outcome = self.scaler.scale_one(request.server_name, TargetRole.PRIMARY, request)
        except ScalingError as e:
            outcome = e.outcome or ScalingOutcome(
                server_name=request.server_name, role=TargetRole.PRIMARY, error_detail=str(e)
            )
            summary.outcomes.append(outcome)
            failure = PrimaryFailure(
                f"{request.server_name}: {e.kind}: {e}", detail=e.detail, outcome=outcome
            )
            summary.errors.append(f"{failure.kind}: {failure}")
            raise failure from e
        summary.outcomes.append(outcome)

    def _final_capacity(self, summary: ExecutionSummary, request: ScalingRequest) -> int | None:
        try:
            return self.scaler.read_snapshot(request, request.server_name).capacity
        except LookupFailed as e:
            logger.warning(f"Could not re-read final primary capacity: {e}")
            return _last_known_capacity(summary)

    def _notify_fatal(self, request: ScalingRequest, error: ScalingError) -> None:
        logger.error(f"{error.kind}: {error}")
        builder = NotificationBuilder(
            f"Scale-{request.direction.value} failed: {error.kind}", Severity.CRITICAL
        )
        builder.summary = str(error)
        builder.resource(
            server=request.server_name,
            database=request.database_name,
            resource_group=request.resource_group,
            role=TargetRole.PRIMARY.value,
        )
        builder.detail("Error", error.detail)
        builder.detail("Action", OPERATOR_ACTIONS.get(error.kind))
        builder.trigger([("Correlation id", request.trigger.correlation_id)])
        self.notifier.notify(builder.render(), Severity.CRITICAL)

    def _finish(self, summary: ExecutionSummary) -> None:
        summary.finished_at = self.now()
        summary.status = summary.compute_status()
        logger.info(
            f"Scale-{summary.request.direction.value} finished: {summary.status.value} "
            f"in {summary.duration_seconds:.0f}s"
        )
        self.notifier.notify(render_summary(summary), STATUS_SEVERITY[summary.status])


def _last_known_capacity(summary: ExecutionSummary) -> int | None:
    primary = summary.primary_outcome
    if primary is None:
        return None
    if primary.final_capacity is not None:
        return primary.final_capacity
    return primary.previous_capacity


def render_summary(summary: ExecutionSummary) -> str:
    """Render the aggregated run summary notification."""
    request = summary.request
    direction = request.direction.value
    builder = NotificationBuilder(
        f"Scale-{direction} {summary.status.value.replace('_', ' ')}: "
        f"{request.server_name}/{request.database_name}",
        STATUS_SEVERITY[summary.status],
    )
    builder.summary = summary.skip_reason or summary.fatal_error
    builder.resource(
        server=request.server_name,
        database=request.database_name,
        resource_group=request.resource_group,
    )
    builder.add("resource", "Subscription", request.subscription_id)
    builder.add("resource", "Replicas", ", ".join(request.replica_server_names) or None)

    primary = summary.primary_outcome
    builder.capacity(
        previous=primary.previous_capacity if primary else None,
        target=primary.target_capacity if primary else None,
        final=summary.final_capacity,
    )

    builder.detail("Operation", f"scale-{direction} by {request.step_cores} vCores")
    builder.detail("Bounds", f"{request.min_cores}-{request.max_cores} vCores")
    builder.detail(
        "Targets",
        f"{len(summary.outcomes)} processed: "
        f"{summary.count(OutcomeStatus.SUCCESS)} succeeded, "
        f"{summary.count(OutcomeStatus.SKIPPED)} skipped, "
        f"{summary.count(OutcomeStatus.FAILED)} failed",
    )
    for outcome in summary.outcomes:
        builder.detail(
            f"{outcome.role.value} {outcome.server_name}",
            f"{outcome.status.value}"
            + (f" ({outcome.reason})" if outcome.reason else "")
            + (f" ({outcome.error_detail})" if outcome.error_detail else ""),
        )
    builder.detail("Duration", f"{summary.duration_seconds:.0f}s")
    builder.errors(summary.errors)
    builder.trigger(request.trigger.as_lines())
    return builder.render()


__all__ = ["Orchestrator", "render_summary"]
