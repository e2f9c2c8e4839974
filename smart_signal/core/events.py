"""
Event Emitter and Periodic Monitor Base Class

Provides the callback system through which external layers (push channels,
persistence) are notified of committed controller state changes.
"""

import logging
import threading
import time
from typing import Callable, Dict, List
from abc import ABC, abstractmethod

log = logging.getLogger(__name__)


class EventEmitter:
    """
    Simple event emitter for pub/sub pattern.

    Callbacks run synchronously in the emitting thread. A callback that raises
    is logged and skipped; it never affects the emitter or other subscribers.
    """

    def __init__(self):
        self._callbacks: Dict[str, List[Callable]] = {}
        self._lock = threading.Lock()

    def on(self, event_name: str, callback: Callable):
        """
        Subscribe to an event.

        Args:
            event_name: Name of event to subscribe to
            callback: Function to call when event occurs

        Example:
            controller.on('phase_change', lambda record: print(record))
        """
        with self._lock:
            if event_name not in self._callbacks:
                self._callbacks[event_name] = []
            self._callbacks[event_name].append(callback)

    def off(self, event_name: str, callback: Callable):
        """
        Unsubscribe from an event.

        Args:
            event_name: Name of event
            callback: Callback function to remove
        """
        with self._lock:
            if event_name in self._callbacks:
                try:
                    self._callbacks[event_name].remove(callback)
                except ValueError:
                    pass

    def listener_count(self, event_name: str) -> int:
        """Number of callbacks subscribed to an event."""
        with self._lock:
            return len(self._callbacks.get(event_name, []))

    def emit(self, event_name: str, *args, **kwargs):
        """
        Emit an event to all subscribers.

        Args:
            event_name: Name of event
            *args, **kwargs: Arguments to pass to callbacks
        """
        with self._lock:
            callbacks = self._callbacks.get(event_name, []).copy()

        # Call callbacks outside the lock to avoid deadlocks
        for callback in callbacks:
            try:
                callback(*args, **kwargs)
            except Exception:
                log.exception("Error in event callback", extra={"event": event_name})

    def clear_all(self):
        """Remove all event subscriptions."""
        with self._lock:
            self._callbacks.clear()


class BaseMonitor(ABC, EventEmitter):
    """
    Abstract base class for background periodic workers.

    Provides:
    - Event emission
    - Threading support
    - Start/stop lifecycle
    - Periodic polling
    """

    def __init__(self, poll_interval=0.25, name="Monitor"):
        """
        Initialize monitor.

        Args:
            poll_interval: Time between polls in seconds
            name: Monitor name for logging and the thread name
        """
        EventEmitter.__init__(self)

        self.poll_interval = poll_interval
        self.name = name

        self._running = False
        self._stop_event = threading.Event()
        self._thread = None

    def start(self):
        """Start the monitor in a background thread."""
        if self._running:
            log.warning("Monitor already running", extra={"monitor": self.name})
            return

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name=self.name)
        self._thread.start()
        log.info("Monitor started", extra={"monitor": self.name, "poll_interval": self.poll_interval})

    def stop(self):
        """Stop the monitor."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
        log.info("Monitor stopped", extra={"monitor": self.name})

    def is_running(self):
        """Check if monitor is running."""
        return self._running

    def _run_loop(self):
        """Main monitoring loop (runs in background thread)."""
        while self._running:
            started = time.monotonic()
            try:
                self._poll()
            except Exception as e:
                log.exception("Error in monitor poll", extra={"monitor": self.name})
                self.emit(EVENT_ERROR, e)

            # Keep the cadence steady even when a poll takes a while
            remaining = self.poll_interval - (time.monotonic() - started)
            self._stop_event.wait(max(0.0, remaining))

    @abstractmethod
    def _poll(self):
        """
        Do one unit of periodic work.

        Must be implemented by subclasses.
        """
        pass


# ============================================================================
# COMMON EVENT NAMES
# ============================================================================

# Controller events
EVENT_STATE = 'state'                   # (IntersectionSnapshot)
EVENT_PHASE_CHANGE = 'phase_change'     # (PhaseChangeRecord)
EVENT_PRESENCE = 'presence'             # (PresenceRecord)
EVENT_INGEST = 'ingest'                 # (IngestResult)

# Monitor events
EVENT_TRANSITIONS = 'transitions'       # (List[PhaseChangeRecord])

# System events
EVENT_ERROR = 'error'                   # (exception)
