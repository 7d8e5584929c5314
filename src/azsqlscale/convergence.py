"""Wait-for-convergence strategies.

After a capacity change is requested, the database may take a while to report
the new vCore count. A strategy waits and re-reads until the expected capacity
is observed or it gives up.

Contract:
    strategy.wait_for(read_capacity, expected_capacity) -> ConvergenceResult

``read_capacity`` is a zero-argument callable returning the current vCores.
Strategies never raise on mismatch; the caller decides what a mismatch means.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from azsqlscale.config import ScalerConfig
from azsqlscale.models import ScaleDirection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConvergenceResult:
    """Outcome of waiting for a capacity change."""

    verified: bool
    observed_capacity: int
    checks: int


class ConvergenceStrategy(Protocol):
    def wait_for(
        self, read_capacity: Callable[[], int], expected_capacity: int
    ) -> ConvergenceResult: ...


class FixedDelayConvergence:
    """Sleep once for the settle interval, then check once."""

    def __init__(self, settle_seconds: float, sleep: Callable[[float], None] = time.sleep):
        self.settle_seconds = settle_seconds
        self.sleep = sleep

    def wait_for(
        self, read_capacity: Callable[[], int], expected_capacity: int
    ) -> ConvergenceResult:
        logger.info(f"Waiting {self.settle_seconds:.0f}s for capacity to settle...")
        self.sleep(self.settle_seconds)
        observed = read_capacity()
        return ConvergenceResult(
            verified=observed == expected_capacity, observed_capacity=observed, checks=1
        )


class PollingConvergence:
    """Sleep for the settle interval, then poll with backoff until a deadline.

    The first check happens after ``settle_seconds``. Subsequent checks start
    ``poll_interval_seconds`` apart and grow by ``backoff`` up to
    ``max_interval_seconds``. No check is scheduled past the deadline
    (``timeout_seconds`` measured from the call).
    """

    def __init__(
        self,
        settle_seconds: float,
        timeout_seconds: float,
        poll_interval_seconds: float = 15.0,
        max_interval_seconds: float = 60.0,
        backoff: float = 1.5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")

        self.settle_seconds = settle_seconds
        self.timeout_seconds = max(timeout_seconds, settle_seconds)
        self.poll_interval_seconds = poll_interval_seconds
        self.max_interval_seconds = max(max_interval_seconds, poll_interval_seconds)
        self.backoff = backoff
        self.sleep = sleep
        self.clock = clock

    def wait_for(
        self, read_capacity: Callable[[], int], expected_capacity: int
    ) -> ConvergenceResult:
        deadline = self.clock() + self.timeout_seconds

        logger.info(
            f"Waiting {self.settle_seconds:.0f}s for capacity to settle "
            f"(polling up to {self.timeout_seconds:.0f}s)..."
        )
        self.sleep(self.settle_seconds)

        interval = self.poll_interval_seconds
        checks = 0
        while True:
            observed = read_capacity()
            checks += 1
            if observed == expected_capacity:
                return ConvergenceResult(verified=True, observed_capacity=observed, checks=checks)

            remaining = deadline - self.clock()
            if remaining <= 0:
                return ConvergenceResult(
                    verified=False, observed_capacity=observed, checks=checks
                )

            wait = min(interval, remaining)
            logger.debug(
                f"Capacity is {observed}, expected {expected_capacity}; re-checking in {wait:.0f}s"
            )
            self.sleep(wait)
            interval = min(interval * self.backoff, self.max_interval_seconds)


def build_convergence(
    config: ScalerConfig,
    direction: ScaleDirection,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> ConvergenceStrategy:
    """Select the strategy named by ``config.convergence`` for a direction."""
    settle = config.settle_seconds(direction)

    if config.convergence == "fixed":
        return FixedDelayConvergence(settle, sleep=sleep)

    return PollingConvergence(
        settle_seconds=settle,
        timeout_seconds=config.convergence_timeout_seconds,
        poll_interval_seconds=config.poll_interval_seconds,
        max_interval_seconds=config.max_poll_interval_seconds,
        sleep=sleep,
        clock=clock,
    )


__all__ = [
    "ConvergenceResult",
    "ConvergenceStrategy",
    "FixedDelayConvergence",
    "PollingConvergence",
    "build_convergence",
]
