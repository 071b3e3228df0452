import pytest

from scouter_importer.core.config import Settings
from scouter_importer.services.timeout_guard import TimeoutGuard


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def test_threshold_is_ratio_of_window():
    guard = TimeoutGuard(3600, 0.8)
    assert guard.threshold_seconds == pytest.approx(2880)


def test_pauses_once_projection_reaches_threshold():
    clock = FakeClock(1000.0)
    guard = TimeoutGuard(100, 0.5, clock=clock)
    guard.start()

    clock.advance(30)
    assert not guard.should_pause()
    assert not guard.should_pause(upcoming_seconds=19)
    assert guard.should_pause(upcoming_seconds=20)

    clock.advance(20)
    assert guard.should_pause()


def test_not_started_guard_never_pauses():
    guard = TimeoutGuard(10, clock=FakeClock(500.0))
    assert guard.elapsed() == 0.0
    assert not guard.should_pause(upcoming_seconds=100)


def test_start_resets_the_window():
    clock = FakeClock()
    guard = TimeoutGuard(100, 0.5, clock=clock)
    guard.start()
    clock.advance(60)
    assert guard.should_pause()

    guard.start()
    assert guard.elapsed() == 0.0
    assert not guard.should_pause()


def test_reason_mentions_time_used():
    clock = FakeClock()
    guard = TimeoutGuard(100, 0.8, clock=clock)
    guard.start()
    clock.advance(81)

    reason = guard.reason()
    assert "81.0s used of 100s" in reason
    assert "resume" in reason


@pytest.mark.parametrize("window,ratio", [(0, 0.8), (-1, 0.8), (100, 0), (100, 1.5)])
def test_invalid_configuration_rejected(window, ratio):
    with pytest.raises(ValueError):
        TimeoutGuard(window, ratio)


def test_built_from_settings():
    settings = Settings(max_execution_seconds=900, timeout_threshold_ratio=0.5)
    guard = TimeoutGuard.from_settings(settings)

    assert guard.threshold_seconds == pytest.approx(450)
    # Celery's soft limit must land after the guard threshold
    assert settings.celery_soft_time_limit > guard.threshold_seconds
    assert settings.celery_soft_time_limit < settings.max_execution_seconds
