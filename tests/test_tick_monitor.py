import threading

from smart_signal.core.data_models import LanePhase, PhaseChangeRecord
from smart_signal.core.events import EVENT_ERROR, EVENT_TRANSITIONS
from smart_signal.monitors.tick_monitor import TickMonitor


class FakeTarget:
    def __init__(self, results=None, error=None):
        self.results = list(results or [])
        self.error = error
        self.calls = 0

    def tick(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.results.pop(0) if self.results else []


def record():
    return PhaseChangeRecord('north', LanePhase.GREEN, LanePhase.YELLOW, 0, 1_000, 1_000, 'max-green-elapsed')


def test_interval_is_converted_to_seconds():
    assert TickMonitor(FakeTarget(), interval_ms=250).poll_interval == 0.25
    assert TickMonitor(FakeTarget(), interval_ms=0).poll_interval == 0.001


def test_poll_emits_only_committed_transitions():
    target = FakeTarget(results=[[], [record()]])
    monitor = TickMonitor(target)
    emitted = []
    monitor.on(EVENT_TRANSITIONS, emitted.append)

    monitor._poll()
    monitor._poll()

    assert target.calls == 2
    assert monitor.ticks == 2
    assert len(emitted) == 1
    assert emitted[0][0].lane_id == 'north'


def test_background_thread_ticks_until_stopped():
    target = FakeTarget()
    monitor = TickMonitor(target, interval_ms=5)
    ticked = threading.Event()
    original = target.tick

    def tick():
        if target.calls >= 3:
            ticked.set()
        return original()

    target.tick = tick
    monitor.start()
    try:
        assert ticked.wait(timeout=5)
        assert monitor.is_running()
    finally:
        monitor.stop()

    assert not monitor.is_running()
    assert target.calls >= 3


def test_errors_are_emitted_and_loop_survives():
    target = FakeTarget(error=RuntimeError("controller gone"))
    monitor = TickMonitor(target, interval_ms=5)
    errors = []
    seen_two = threading.Event()

    def on_error(exc):
        errors.append(exc)
        if len(errors) >= 2:
            seen_two.set()

    monitor.on(EVENT_ERROR, on_error)
    monitor.start()
    try:
        assert seen_two.wait(timeout=5)
    finally:
        monitor.stop()

    assert isinstance(errors[0], RuntimeError)
