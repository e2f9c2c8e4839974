"""
Tick Monitor - drives time-based phase transitions
"""

import logging

from ..core.events import BaseMonitor, EVENT_TRANSITIONS

log = logging.getLogger(__name__)


class TickMonitor(BaseMonitor):
    """
    Periodically calls ``tick()`` on the application so minimum/maximum green,
    yellow and maximum red are enforced even when no sensor data arrives.

    Emits events:
    - 'transitions': (List[PhaseChangeRecord]) whenever a tick committed changes
    - 'error': (exception) when a tick raised

    Example usage:
        monitor = TickMonitor(app, interval_ms=250)
        monitor.on('transitions', lambda records: print(records))
        monitor.start()
    """

    def __init__(self, target, interval_ms=250):
        """
        Initialize tick monitor.

        Args:
            target: Object exposing ``tick()`` (SmartSignalApp or TrafficController)
            interval_ms: Tick cadence in milliseconds (100-500 ms keeps
                         phase enforcement on time)
        """
        super().__init__(poll_interval=max(float(interval_ms), 1.0) / 1000.0, name="TickMonitor")
        self.target = target
        self.ticks = 0

    def _poll(self):
        """Run one tick and publish any committed transitions."""
        transitions = self.target.tick()
        self.ticks += 1
        if transitions:
            log.debug("Tick committed transitions", extra={"count": len(transitions)})
            self.emit(EVENT_TRANSITIONS, transitions)
