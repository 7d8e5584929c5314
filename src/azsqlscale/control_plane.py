"""Azure SQL control plane access.

Two interchangeable backends implement the ControlPlane protocol:

- AzCliControlPlane: shells out to the Azure CLI (``az sql db ...``). Relies on
  an existing ``az login`` session (Automation managed identity, pipeline
  service connection, or an interactive login).
- SdkControlPlane: azure-mgmt-sql with DefaultAzureCredential.

DryRunControlPlane wraps either one, passes reads through and only records
capacity changes.

Reads are retried on transient failures. Capacity changes are not.
"""

import json
import logging
import subprocess
from typing import Any, Protocol

from azure.core.exceptions import AzureError
from azure.identity import DefaultAzureCredential
from azure.mgmt.sql import SqlManagementClient
from azure.mgmt.sql.models import DatabaseUpdate, Sku

from azsqlscale.config import ScalerConfig
from azsqlscale.errors import ControlPlaneError
from azsqlscale.log_sanitizer import LogSanitizer
from azsqlscale.models import DatabaseSnapshot
from azsqlscale.retry_handler import (
    is_transient_az_error,
    retry_with_exponential_backoff,
    should_retry_http_error,
)

logger = logging.getLogger(__name__)


class ControlPlane(Protocol):
    def set_context(self, subscription_id: str) -> None: ...

    def get_database(
        self, resource_group: str, server_name: str, database_name: str
    ) -> DatabaseSnapshot: ...

    def set_capacity(
        self, resource_group: str, server_name: str, database_name: str, capacity: int
    ) -> None: ...


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, subprocess.TimeoutExpired):
        return True
    if isinstance(error, subprocess.CalledProcessError):
        return is_transient_az_error(error.stderr)
    return False


def _is_retryable_sdk_error(error: Exception) -> bool:
    # ServiceRequestError and friends carry no status code: network-level, retry
    status_code = getattr(error, "status_code", None)
    return status_code is None or should_retry_http_error(status_code)


def run_az_command(
    cmd: list[str],
    *,
    timeout: int = 60,
    max_attempts: int = 1,
) -> subprocess.CompletedProcess[str]:
    """Execute an Azure CLI command, retrying transient failures.

    Args:
        cmd: Command list starting with "az"
        timeout: Subprocess timeout in seconds
        max_attempts: Attempts for transient failures (1 = no retry)

    Returns:
        subprocess.CompletedProcess with stdout/stderr

    Raises:
        subprocess.CalledProcessError: Non-zero exit (after retries if transient)
        subprocess.TimeoutExpired: Timed out (after retries)
    """

    @retry_with_exponential_backoff(
        max_attempts=max_attempts,
        initial_delay=2.0,
        max_delay=30.0,
        retryable_exceptions=(subprocess.CalledProcessError, subprocess.TimeoutExpired),
        should_retry=_is_retryable,
    )
    def _run() -> subprocess.CompletedProcess[str]:
        return subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=timeout)

    return _run()


def snapshot_from_payload(payload: dict[str, Any]) -> DatabaseSnapshot:
    """Build a snapshot from ``az sql db show`` JSON.

    ``currentSku`` reflects what is actually running; ``sku`` is the requested
    SKU and may lead it while a change is in flight.

    Raises:
        ControlPlaneError: If the payload is malformed or lacks SKU capacity
    """
    try:
        sku = payload.get("currentSku") or payload.get("sku") or {}
        capacity = sku.get("capacity")
        if capacity is None or not sku.get("name"):
            raise ControlPlaneError(
                f"Database payload missing SKU name/capacity: "
                f"{payload.get('id', '<unknown id>')}"
            )
        return DatabaseSnapshot(
            capacity=int(capacity), sku_name=sku["name"], resource_id=payload.get("id", "")
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise ControlPlaneError(f"Malformed database payload: {e}") from e


class AzCliControlPlane:
    """Control plane backed by the Azure CLI."""

    def __init__(self, timeout: int = 900, max_attempts: int = 3):
        """Initialize CLI control plane.

        Args:
            timeout: Timeout for ``az sql db update`` (it blocks until done)
            max_attempts: Attempts for transient read failures
        """
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.subscription_id: str | None = None

    def _run(self, cmd: list[str], *, timeout: int, max_attempts: int) -> str:
        if self.subscription_id:
            cmd = [*cmd, "--subscription", self.subscription_id]
        try:
            result = run_az_command(cmd, timeout=timeout, max_attempts=max_attempts)
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or str(e)).strip()
            raise ControlPlaneError(LogSanitizer.sanitize(detail)) from e
        except subprocess.TimeoutExpired as e:
            raise ControlPlaneError(f"'{' '.join(cmd[:4])}' timed out after {timeout}s") from e
        except FileNotFoundError as e:
            raise ControlPlaneError("Azure CLI (az) not found on PATH") from e
        return result.stdout

    def set_context(self, subscription_id: str) -> None:
        logger.info(f"Setting Azure subscription context: {subscription_id}")
        self._run(
            ["az", "account", "set", "--subscription", subscription_id],
            timeout=60,
            max_attempts=self.max_attempts,
        )
        self.subscription_id = subscription_id

    def get_database(
        self, resource_group: str, server_name: str, database_name: str
    ) -> DatabaseSnapshot:
        stdout = self._run(
            [
                "az", "sql", "db", "show",
                "--resource-group", resource_group,
                "--server", server_name,
                "--name", database_name,
                "--output", "json",
            ],
            timeout=60,
            max_attempts=self.max_attempts,
        )
        try:
            payload = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ControlPlaneError(f"Unparseable output from az sql db show: {e}") from e
        return snapshot_from_payload(payload)

    def set_capacity(
        self, resource_group: str, server_name: str, database_name: str, capacity: int
    ) -> None:
        logger.info(f"Requesting {capacity} vCores for {server_name}/{database_name}")
        self._run(
            [
                "az", "sql", "db", "update",
                "--resource-group", resource_group,
                "--server", server_name,
                "--name", database_name,
                "--capacity", str(capacity),
                "--output", "none",
            ],
            timeout=self.timeout,
            max_attempts=1,
        )


class SdkControlPlane:
    """Control plane backed by azure-mgmt-sql."""

    def __init__(self, credential: Any | None = None, max_attempts: int = 3):
        self.credential = credential
        self.max_attempts = max_attempts
        self.client: SqlManagementClient | None = None

    def set_context(self, subscription_id: str) -> None:
        logger.info(f"Creating SQL management client for subscription {subscription_id}")
        try:
            credential = self.credential or DefaultAzureCredential()
            self.client = SqlManagementClient(credential, subscription_id)
        except AzureError as e:
            raise ControlPlaneError(LogSanitizer.sanitize(str(e))) from e

    def _require_client(self) -> SqlManagementClient:
        if self.client is None:
            raise ControlPlaneError("set_context() must be called before database operations")
        return self.client

    def _get(self, resource_group: str, server_name: str, database_name: str) -> Any:
        client = self._require_client()

        @retry_with_exponential_backoff(
            max_attempts=self.max_attempts,
            retryable_exceptions=(AzureError,),
            should_retry=_is_retryable_sdk_error,
        )
        def _fetch() -> Any:
            return client.databases.get(resource_group, server_name, database_name)

        try:
            return _fetch()
        except AzureError as e:
            raise ControlPlaneError(LogSanitizer.sanitize(str(e))) from e

    def get_database(
        self, resource_group: str, server_name: str, database_name: str
    ) -> DatabaseSnapshot:
        database = self._get(resource_group, server_name, database_name)
        sku = database.current_sku or database.sku
        if sku is None or sku.capacity is None:
            raise ControlPlaneError(f"Database has no SKU capacity: {database.id}")
        return DatabaseSnapshot(
            capacity=int(sku.capacity), sku_name=sku.name, resource_id=database.id
        )

    def set_capacity(
        self, resource_group: str, server_name: str, database_name: str, capacity: int
    ) -> None:
        database = self._get(resource_group, server_name, database_name)
        sku = database.sku
        update = DatabaseUpdate(
            sku=Sku(name=sku.name, tier=sku.tier, family=sku.family, capacity=capacity)
        )
        logger.info(f"Requesting {capacity} vCores for {server_name}/{database_name}")
        try:
            poller = self._require_client().databases.begin_update(
                resource_group, server_name, database_name, update
            )
            poller.result()
        except AzureError as e:
            raise ControlPlaneError(LogSanitizer.sanitize(str(e))) from e


class DryRunControlPlane:
    """Pass reads through; record capacity changes instead of applying them.

    Reads after a recorded change report the requested capacity so the rest of
    the run (verification, summary) behaves as if the change succeeded.
    """

    def __init__(self, inner: ControlPlane):
        self.inner = inner
        self.requested: dict[tuple[str, str, str], int] = {}

    def set_context(self, subscription_id: str) -> None:
        self.inner.set_context(subscription_id)

    def get_database(
        self, resource_group: str, server_name: str, database_name: str
    ) -> DatabaseSnapshot:
        snapshot = self.inner.get_database(resource_group, server_name, database_name)
        key = (resource_group, server_name, database_name)
        if key in self.requested:
            return DatabaseSnapshot(
                capacity=self.requested[key],
                sku_name=snapshot.sku_name,
                resource_id=snapshot.resource_id,
            )
        return snapshot

    def set_capacity(
        self, resource_group: str, server_name: str, database_name: str, capacity: int
    ) -> None:
        logger.warning(
            f"[dry-run] Would set {server_name}/{database_name} to {capacity} vCores"
        )
        self.requested[(resource_group, server_name, database_name)] = capacity


def build_control_plane(config: ScalerConfig, dry_run: bool = False) -> ControlPlane:
    """Create the backend named by ``config.backend``."""
    plane: ControlPlane
    if config.backend == "sdk":
        plane = SdkControlPlane(max_attempts=config.az_max_attempts)
    else:
        plane = AzCliControlPlane(
            timeout=config.az_timeout_seconds, max_attempts=config.az_max_attempts
        )

    if dry_run:
        return DryRunControlPlane(plane)
    return plane


__all__ = [
    "AzCliControlPlane",
    "ControlPlane",
    "DryRunControlPlane",
    "SdkControlPlane",
    "build_control_plane",
    "run_az_command",
    "snapshot_from_payload",
]
