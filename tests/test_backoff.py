"""Tests for the exponential backoff policy."""

from __future__ import annotations

import pytest

from vmfleet.backoff import STOP, ExponentialBackoff


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _backoff(clock: FakeClock, **kwargs) -> ExponentialBackoff:
    defaults = dict(
        initial_interval=1.0,
        multiplier=2.0,
        max_interval=8.0,
        randomization_factor=0.0,
        max_elapsed_time=60.0,
        clock=clock,
    )
    defaults.update(kwargs)
    return ExponentialBackoff(**defaults)


class TestGrowth:
    def test_intervals_grow_and_cap(self):
        b = _backoff(FakeClock())
        assert [b.next_backoff() for _ in range(6)] == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]

    def test_randomization_stays_within_bounds(self):
        low = _backoff(FakeClock(), randomization_factor=0.5, rng=lambda: 0.0)
        high = _backoff(FakeClock(), randomization_factor=0.5, rng=lambda: 0.999999)
        assert low.next_backoff() == pytest.approx(0.5)
        assert high.next_backoff() == pytest.approx(1.5, rel=1e-5)

    def test_default_policy_first_wait(self):
        b = ExponentialBackoff(clock=FakeClock(), rng=lambda: 0.5)
        assert b.next_backoff() == pytest.approx(0.5)


class TestStop:
    def test_stop_after_max_elapsed(self):
        clock = FakeClock()
        b = _backoff(clock, max_elapsed_time=10.0)
        assert b.next_backoff() != STOP
        clock.advance(10.5)
        assert b.next_backoff() == STOP
        assert b.next_backoff() == STOP

    def test_exactly_at_limit_still_waits(self):
        clock = FakeClock()
        b = _backoff(clock, max_elapsed_time=10.0)
        clock.advance(10.0)
        assert b.next_backoff() != STOP

    def test_zero_max_elapsed_never_stops(self):
        clock = FakeClock()
        b = _backoff(clock, max_elapsed_time=0)
        clock.advance(1e9)
        assert b.next_backoff() == 1.0

    def test_reset_restarts_clock_and_interval(self):
        clock = FakeClock()
        b = _backoff(clock, max_elapsed_time=10.0)
        b.next_backoff()
        b.next_backoff()
        clock.advance(11)
        assert b.next_backoff() == STOP
        b.reset()
        assert b.next_backoff() == 1.0


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"initial_interval": 0},
            {"multiplier": 0.5},
            {"randomization_factor": 1.0},
            {"randomization_factor": -0.1},
        ],
    )
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            _backoff(FakeClock(), **kwargs)
