"""Exponential backoff with a maximum elapsed time.

Each call to ``next_backoff()`` returns the next wait in seconds, growing by
``multiplier`` up to ``max_interval``, randomized by ``randomization_factor``
so that many stages destroyed at once do not retry in lockstep.  Once more
than ``max_elapsed_time`` seconds have passed since construction (or the last
``reset()``), every call returns ``STOP``.
"""

from __future__ import annotations

import random
import time
from typing import Callable

STOP = -1.0

DEFAULT_INITIAL_INTERVAL = 0.5
DEFAULT_MULTIPLIER = 1.5
DEFAULT_MAX_INTERVAL = 60.0
DEFAULT_RANDOMIZATION_FACTOR = 0.5
DEFAULT_MAX_ELAPSED_TIME = 600.0


class ExponentialBackoff:
    """Stateful backoff generator. Not shared between destroy requests."""

    def __init__(
        self,
        *,
        initial_interval: float = DEFAULT_INITIAL_INTERVAL,
        multiplier: float = DEFAULT_MULTIPLIER,
        max_interval: float = DEFAULT_MAX_INTERVAL,
        randomization_factor: float = DEFAULT_RANDOMIZATION_FACTOR,
        max_elapsed_time: float = DEFAULT_MAX_ELAPSED_TIME,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        if initial_interval <= 0:
            raise ValueError(f"initial_interval must be positive, got {initial_interval}")
        if multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {multiplier}")
        if not 0 <= randomization_factor < 1:
            raise ValueError(
                f"randomization_factor must be in [0, 1), got {randomization_factor}"
            )

        self.initial_interval = initial_interval
        self.multiplier = multiplier
        self.max_interval = max(max_interval, initial_interval)
        self.randomization_factor = randomization_factor
        self.max_elapsed_time = max_elapsed_time
        self._clock = clock
        self._rng = rng

        self._current_interval = initial_interval
        self._start = clock()

    def reset(self) -> None:
        """Restart both the interval progression and the elapsed-time clock."""
        self._current_interval = self.initial_interval
        self._start = self._clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._start

    def next_backoff(self) -> float:
        """Return the next wait in seconds, or ``STOP`` once the budget is spent."""
        if self.max_elapsed_time and self.elapsed > self.max_elapsed_time:
            return STOP

        delta = self.randomization_factor * self._current_interval
        low = self._current_interval - delta
        high = self._current_interval + delta
        wait = low + self._rng() * (high - low)

        if self._current_interval >= self.max_interval / self.multiplier:
            self._current_interval = self.max_interval
        else:
            self._current_interval *= self.multiplier

        return wait
