"""Cooperative guard that pauses a run before the host kills it."""

from __future__ import annotations

import time
from typing import Callable

from scouter_importer.core.config import Settings


class TimeoutGuard:
    """Track wall-clock time of the current execution window.

    The guard never interrupts anything; the worker asks it between chunks
    whether starting another chunk would cross the soft threshold.
    """

    def __init__(
        self,
        max_execution_seconds: float,
        threshold_ratio: float = 0.8,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_execution_seconds <= 0:
            raise ValueError("max_execution_seconds must be positive")
        if not 0 < threshold_ratio <= 1:
            raise ValueError("threshold_ratio must be in (0, 1]")
        self.max_execution_seconds = max_execution_seconds
        self.threshold_ratio = threshold_ratio
        self._clock = clock
        self._started: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.monotonic) -> "TimeoutGuard":
        return cls(settings.max_execution_seconds, settings.timeout_threshold_ratio, clock)

    @property
    def threshold_seconds(self) -> float:
        return self.max_execution_seconds * self.threshold_ratio

    def start(self) -> None:
        self._started = self._clock()

    def elapsed(self) -> float:
        if self._started is None:
            return 0.0
        return max(0.0, self._clock() - self._started)

    def should_pause(self, upcoming_seconds: float = 0.0) -> bool:
        """True once ``elapsed + upcoming_seconds`` reaches the threshold."""
        if self._started is None:
            return False
        return self.elapsed() + max(upcoming_seconds, 0.0) >= self.threshold_seconds

    def reason(self) -> str:
        return (
            f"Execution window nearly exhausted: {self.elapsed():.1f}s used of "
            f"{self.max_execution_seconds:.0f}s (pause threshold "
            f"{self.threshold_seconds:.0f}s). Progress was saved; resume to continue."
        )
