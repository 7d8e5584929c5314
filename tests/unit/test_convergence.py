"""Tests for convergence module.

Sleeps go through the fake clock fixture so waits are instant and measurable.
"""

import pytest

from azsqlscale.config import ScalerConfig
from azsqlscale.convergence import (
    FixedDelayConvergence,
    PollingConvergence,
    build_convergence,
)
from azsqlscale.models import ScaleDirection


def readings(*values):
    """read_capacity callable returning values in order, repeating the last."""
    remaining = list(values)

    def _read():
        if len(remaining) > 1:
            return remaining.pop(0)
        return remaining[0]

    return _read


class TestFixedDelayConvergence:
    def test_verified_after_single_sleep(self, fake_clock):
        strategy = FixedDelayConvergence(30.0, sleep=fake_clock.sleep)

        result = strategy.wait_for(readings(10), 10)

        assert result.verified is True
        assert result.observed_capacity == 10
        assert result.checks == 1
        assert fake_clock.sleeps == [30.0]

    def test_mismatch_is_not_verified(self, fake_clock):
        strategy = FixedDelayConvergence(120.0, sleep=fake_clock.sleep)

        result = strategy.wait_for(readings(8, 10), 10)

        assert result.verified is False
        assert result.observed_capacity == 8
        assert result.checks == 1


class TestPollingConvergence:
    def test_immediate_match_after_settle(self, fake_clock):
        strategy = PollingConvergence(
            30.0, 300.0, sleep=fake_clock.sleep, clock=fake_clock
        )

        result = strategy.wait_for(readings(10), 10)

        assert result.verified is True
        assert result.checks == 1
        assert fake_clock.sleeps == [30.0]

    def test_polls_until_match_with_backoff(self, fake_clock):
        strategy = PollingConvergence(
            30.0,
            300.0,
            poll_interval_seconds=10.0,
            max_interval_seconds=20.0,
            backoff=2.0,
            sleep=fake_clock.sleep,
            clock=fake_clock,
        )

        result = strategy.wait_for(readings(8, 8, 8, 10), 10)

        assert result.verified is True
        assert result.checks == 4
        assert fake_clock.sleeps == [30.0, 10.0, 20.0, 20.0]

    def test_gives_up_at_deadline(self, fake_clock):
        strategy = PollingConvergence(
            30.0,
            100.0,
            poll_interval_seconds=30.0,
            max_interval_seconds=30.0,
            sleep=fake_clock.sleep,
            clock=fake_clock,
        )

        result = strategy.wait_for(readings(8), 10)

        assert result.verified is False
        assert result.observed_capacity == 8
        assert fake_clock.now == pytest.approx(100.0)
        assert result.checks == 4

    def test_last_wait_is_trimmed_to_deadline(self, fake_clock):
        strategy = PollingConvergence(
            30.0,
            50.0,
            poll_interval_seconds=15.0,
            max_interval_seconds=15.0,
            sleep=fake_clock.sleep,
            clock=fake_clock,
        )

        strategy.wait_for(readings(8), 10)

        assert fake_clock.sleeps == [30.0, 15.0, 5.0]

    def test_timeout_never_shorter_than_settle(self, fake_clock):
        strategy = PollingConvergence(120.0, 60.0, sleep=fake_clock.sleep, clock=fake_clock)
        assert strategy.timeout_seconds == 120.0

    @pytest.mark.parametrize(
        "kwargs", [{"poll_interval_seconds": 0.0}, {"backoff": 0.5}]
    )
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            PollingConvergence(30.0, 300.0, **kwargs)


class TestBuildConvergence:
    def test_default_is_polling_with_direction_settle(self):
        config = ScalerConfig()

        up = build_convergence(config, ScaleDirection.UP)
        down = build_convergence(config, ScaleDirection.DOWN)

        assert isinstance(up, PollingConvergence)
        assert up.settle_seconds == 30.0
        assert down.settle_seconds == 120.0
        assert up.timeout_seconds == 600.0

    def test_fixed(self):
        strategy = build_convergence(ScalerConfig(convergence="fixed"), ScaleDirection.DOWN)

        assert isinstance(strategy, FixedDelayConvergence)
        assert strategy.settle_seconds == 120.0
