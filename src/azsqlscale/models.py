"""Data models for a single scaling invocation.

All models are request-scoped: built once per run, never persisted.

Public API:
    ScaleDirection, TargetRole, OutcomeStatus, RunStatus: Enums
    TriggerContext: Descriptive metadata about who/what invoked the run
    ScalingRequest: Immutable invocation parameters
    DatabaseSnapshot: Capacity/SKU read fresh from the control plane
    ScalingOutcome: Result for one server
    ExecutionSummary: Aggregated result for the whole run
"""

import os
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class ScaleDirection(Enum):
    """Direction of a scaling operation."""

    UP = "up"
    DOWN = "down"


class TargetRole(Enum):
    """Role of a server within the run."""

    PRIMARY = "primary"
    REPLICA = "replica"


class OutcomeStatus(Enum):
    """Per-server result."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunStatus(Enum):
    """Overall run result."""

    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class TriggerContext:
    """Who or what triggered the run.

    Purely descriptive: forwarded into notifications, never used for decisions.
    """

    source: str = "manual"
    alert_rule: str | None = None
    automation_job_id: str | None = None
    triggered_by: str | None = None
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metric_value: float | None = None
    threshold_value: float | None = None

    @classmethod
    def from_environment(
        cls,
        source: str | None = None,
        alert_rule: str | None = None,
        automation_job_id: str | None = None,
        triggered_by: str | None = None,
        correlation_id: str | None = None,
        metric_value: float | None = None,
        threshold_value: float | None = None,
    ) -> "TriggerContext":
        """Build context from explicit values, falling back to the environment.

        Environment variables (all optional):
            AZSQLSCALE_TRIGGER_SOURCE: Trigger source (default: manual)
            AZSQLSCALE_ALERT_RULE: Alert rule name
            AUTOMATION_JOB_ID: Azure Automation job id
            AZSQLSCALE_TRIGGERED_BY: Identity that triggered the run (default: $USER)

        A correlation id is generated when none is supplied.
        """
        return cls(
            source=source or os.getenv("AZSQLSCALE_TRIGGER_SOURCE", "manual"),
            alert_rule=alert_rule or os.getenv("AZSQLSCALE_ALERT_RULE"),
            automation_job_id=automation_job_id or os.getenv("AUTOMATION_JOB_ID"),
            triggered_by=triggered_by
            or os.getenv("AZSQLSCALE_TRIGGERED_BY")
            or os.getenv("USER"),
            correlation_id=correlation_id or str(uuid.uuid4()),
            metric_value=metric_value,
            threshold_value=threshold_value,
        )

    def as_lines(self) -> list[tuple[str, str]]:
        """Label/value pairs for the fields that are set."""
        pairs = [
            ("Source", self.source),
            ("Alert rule", self.alert_rule),
            ("Automation job", self.automation_job_id),
            ("Triggered by", self.triggered_by),
            ("Correlation id", self.correlation_id),
            ("Metric value", self.metric_value),
            ("Threshold", self.threshold_value),
        ]
        return [(label, str(value)) for label, value in pairs if value is not None]


@dataclass(frozen=True)
class ScalingRequest:
    """Invocation parameters for one run. Immutable once built."""

    database_name: str
    server_name: str
    resource_group: str
    subscription_id: str
    direction: ScaleDirection
    step_cores: int
    min_cores: int
    max_cores: int
    replica_server_names: tuple[str, ...] = ()
    allowed_hours: frozenset[int] = frozenset(range(8, 19))
    timezone_offset_hours: int = 0
    trigger: TriggerContext = field(default_factory=TriggerContext)

    def __post_init__(self):
        """Validate request."""
        for name, value in (
            ("database_name", self.database_name),
            ("server_name", self.server_name),
            ("resource_group", self.resource_group),
            ("subscription_id", self.subscription_id),
        ):
            if not value:
                raise ValueError(f"{name} is required")

        if self.step_cores <= 0:
            raise ValueError("step_cores must be positive")

        if self.min_cores < 0:
            raise ValueError("min_cores cannot be negative")

        if self.max_cores < self.min_cores:
            raise ValueError("max_cores must be >= min_cores")

        if any(hour < 0 or hour > 23 for hour in self.allowed_hours):
            raise ValueError("allowed_hours must be within 0-23")

        if self.server_name in self.replica_server_names:
            raise ValueError(f"Primary server {self.server_name} listed as its own replica")

    @property
    def servers(self) -> list[tuple[str, TargetRole]]:
        """Servers in processing order: replicas first, primary last."""
        ordered = [(name, TargetRole.REPLICA) for name in self.replica_server_names]
        ordered.append((self.server_name, TargetRole.PRIMARY))
        return ordered


@dataclass(frozen=True)
class DatabaseSnapshot:
    """Database state as read from the control plane."""

    capacity: int
    sku_name: str
    resource_id: str


@dataclass
class ScalingOutcome:
    """Result of scaling one server."""

    server_name: str
    role: TargetRole
    status: OutcomeStatus = OutcomeStatus.FAILED
    previous_capacity: int | None = None
    target_capacity: int | None = None
    final_capacity: int | None = None
    error_detail: str | None = None
    reason: str | None = None


@dataclass
class ExecutionSummary:
    """Aggregated result of a run, built incrementally by the orchestrator."""

    request: ScalingRequest
    outcomes: list[ScalingOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    status: RunStatus = RunStatus.SUCCESS
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    final_capacity: int | None = None
    skip_reason: str | None = None
    fatal_error: str | None = None

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    @property
    def primary_outcome(self) -> ScalingOutcome | None:
        for outcome in self.outcomes:
            if outcome.role == TargetRole.PRIMARY:
                return outcome
        return None

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    def compute_status(self) -> RunStatus:
        """Derive overall status from recorded outcomes and errors.

        Returns:
            RunStatus: FAILED if the primary failed or a fatal error occurred,
            SKIPPED if gated or every outcome was skipped, PARTIAL_SUCCESS if
            any replica error was recorded, SUCCESS otherwise.
        """
        if self.skip_reason is not None:
            return RunStatus.SKIPPED

        primary = self.primary_outcome
        if self.fatal_error is not None or (
            primary is not None and primary.status == OutcomeStatus.FAILED
        ):
            return RunStatus.FAILED

        if self.errors:
            return RunStatus.PARTIAL_SUCCESS

        if self.outcomes and all(o.status == OutcomeStatus.SKIPPED for o in self.outcomes):
            return RunStatus.SKIPPED

        return RunStatus.SUCCESS


__all__ = [
    "DatabaseSnapshot",
    "ExecutionSummary",
    "OutcomeStatus",
    "RunStatus",
    "ScaleDirection",
    "ScalingOutcome",
    "ScalingRequest",
    "TargetRole",
    "TriggerContext",
]
