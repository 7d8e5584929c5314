"""
Shared test fixtures for azsqlscale tests.

This module provides common fixtures used across all test types:
- A scripted in-memory control plane
- Recording notifier
- Fake clock/sleep pair for convergence waits
- Scaling request factory
"""

import os
from datetime import UTC, datetime

import pytest

from azsqlscale.config import ScalerConfig
from azsqlscale.errors import ControlPlaneError
from azsqlscale.models import DatabaseSnapshot, ScaleDirection, ScalingRequest, TriggerContext
from azsqlscale.notifications import Severity

# ============================================================================
# CONTROL PLANE FAKE
# ============================================================================


class FakeControlPlane:
    """In-memory control plane keyed by server name.

    Capacity changes take effect immediately unless a server is listed in
    ``stuck`` (reads keep returning the old capacity) or ``apply_failures``
    (set_capacity raises). ``read_failures`` makes get_database raise.
    """

    def __init__(self, capacities=None, skus=None):
        self.capacities: dict[str, int] = dict(capacities or {})
        self.skus: dict[str, str] = dict(skus or {})
        self.apply_calls: list[tuple[str, int]] = []
        self.read_calls: list[str] = []
        self.read_failures: dict[str, str] = {}
        self.apply_failures: dict[str, str] = {}
        self.stuck: set[str] = set()
        self.context_error: str | None = None
        self.subscription_id: str | None = None

    def set_context(self, subscription_id):
        if self.context_error:
            raise ControlPlaneError(self.context_error)
        self.subscription_id = subscription_id

    def get_database(self, resource_group, server_name, database_name):
        self.read_calls.append(server_name)
        if server_name in self.read_failures:
            raise ControlPlaneError(self.read_failures[server_name])
        if server_name not in self.capacities:
            raise ControlPlaneError(f"(ResourceNotFound) Server '{server_name}' not found")
        return DatabaseSnapshot(
            capacity=self.capacities[server_name],
            sku_name=self.skus.get(server_name, "GP_Gen5"),
            resource_id=(
                f"/subscriptions/sub-1/resourceGroups/{resource_group}/providers/"
                f"Microsoft.Sql/servers/{server_name}/databases/{database_name}"
            ),
        )

    def set_capacity(self, resource_group, server_name, database_name, capacity):
        self.apply_calls.append((server_name, capacity))
        if server_name in self.apply_failures:
            raise ControlPlaneError(self.apply_failures[server_name])
        if server_name not in self.stuck:
            self.capacities[server_name] = capacity

    def applied_servers(self):
        return [server for server, _ in self.apply_calls]


class FakeClock:
    """Monotonic clock advanced only by its paired sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingNotifier:
    """Keeps notifications in memory."""

    def __init__(self):
        self.messages: list[tuple[str, Severity]] = []

    def notify(self, message, severity):
        self.messages.append((message, severity))
        return True

    def severities(self):
        return [severity for _, severity in self.messages]


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def control_plane():
    """Control plane with a primary at 8 vCores and no replicas."""
    return FakeControlPlane(capacities={"sql-prod": 8})


@pytest.fixture
def make_control_plane():
    """Factory for FakeControlPlane, e.g. make_control_plane({"sql-prod": 8})."""

    def _make(capacities, skus=None):
        return FakeControlPlane(capacities=capacities, skus=skus)

    return _make


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def config():
    """Config with a fast polling convergence."""
    return ScalerConfig(
        settle_seconds_up=30.0,
        settle_seconds_down=120.0,
        convergence_timeout_seconds=300.0,
        poll_interval_seconds=15.0,
    )


@pytest.fixture
def daytime():
    """10:00 UTC, inside the default allowed hours."""
    return datetime(2024, 3, 5, 10, 0, tzinfo=UTC)


@pytest.fixture
def make_request():
    """Factory for ScalingRequest with sensible defaults."""

    def _make(**overrides):
        values = {
            "database_name": "orders",
            "server_name": "sql-prod",
            "resource_group": "data-rg",
            "subscription_id": "sub-1",
            "direction": ScaleDirection.UP,
            "step_cores": 2,
            "min_cores": 4,
            "max_cores": 16,
            "trigger": TriggerContext(source="test", correlation_id="corr-1"),
        }
        values.update(overrides)
        return ScalingRequest(**values)

    return _make


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep tests away from the real config file and AZSQLSCALE_* variables."""
    for name in list(os.environ):
        if name.startswith("AZSQLSCALE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(
        "azsqlscale.config.ConfigManager.DEFAULT_CONFIG_DIR", tmp_path / ".azsqlscale"
    )
    monkeypatch.setattr(
        "azsqlscale.config.ConfigManager.DEFAULT_CONFIG_FILE",
        tmp_path / ".azsqlscale" / "config.toml",
    )
