"""
Main Application - Orchestrates the controller, ticker, storage and config
"""

import logging
import threading
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .core.config import ConfigError
from .core.controller import TrafficController, now_ms
from .core.data_models import IngestResult, IntersectionSnapshot, LaneSnapshot, PhaseChangeRecord
from .core.events import EventEmitter, EVENT_STATE, EVENT_PHASE_CHANGE, EVENT_PRESENCE
from .monitors.tick_monitor import TickMonitor
from .storage.event_store import SqliteEventStore, EventStoreError
from .utils.config_loader import ConfigLoader

log = logging.getLogger(__name__)


class SmartSignalApp(EventEmitter):
    """
    Main application orchestrator.

    Responsibilities:
    - Load and monitor configuration file
    - Own the TrafficController and serialise every call into it
    - Drive time-based transitions with the TickMonitor
    - Persist ingestions, phase changes and presence records
    - Relay controller events ('state', 'phase_change', 'presence') to
      external subscribers such as the web UI
    """

    def __init__(self, config_path='config.json', config_loader: Optional[ConfigLoader] = None):
        """
        Initialize application.

        Args:
            config_path: Path to configuration file
            config_loader: Pre-built ConfigLoader (overrides config_path)

        Raises:
            ConfigError: If the controller configuration is invalid
        """
        EventEmitter.__init__(self)

        self.config_loader = config_loader if config_loader is not None else ConfigLoader(config_path)

        # Single mutual-exclusion domain for all controller access
        self._controller_lock = threading.RLock()
        self._last_ingest_at: Optional[int] = None

        self.intersection_id = self.config_loader.get('intersection.id', 'default')
        self.event_store = self._init_event_store()
        self.controller = self._build_controller()

        self.tick_monitor = None
        self._running = False
        self._config_check_thread = None
        self._stop_event = threading.Event()

        log.info("Smart signal application initialized", extra={"intersection_id": self.intersection_id})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start the application."""
        if self._running:
            log.warning("Application already running")
            return

        log.info("Starting application", extra={"intersection_id": self.intersection_id})

        self.tick_monitor = TickMonitor(self, interval_ms=self.config_loader.get('ticker.interval_ms', 250))
        self.tick_monitor.start()

        # Start config monitoring thread
        self._running = True
        self._stop_event.clear()
        self._config_check_thread = threading.Thread(
            target=self._config_check_loop,
            daemon=True,
            name="ConfigMonitor"
        )
        self._config_check_thread.start()

        log.info("Application started")

    def stop(self):
        """Stop the application."""
        if not self._running:
            return

        log.info("Stopping application")
        self._running = False
        self._stop_event.set()

        if self.tick_monitor:
            self.tick_monitor.stop()
            self.tick_monitor = None

        if self.event_store:
            self.event_store.close()
            self.event_store = None

        log.info("Application stopped")

    def _init_event_store(self) -> Optional[SqliteEventStore]:
        """Open the event store if storage is enabled in the configuration."""
        if not self.config_loader.get('storage.enabled', True):
            log.info("Event storage disabled")
            return None

        db_path = self.config_loader.get('storage.db_path', 'smart_signal.db')
        timezone = self.config_loader.get('intersection.timezone', 'UTC')
        try:
            return SqliteEventStore(db_path, timezone)
        except EventStoreError:
            log.exception("Event store unavailable, continuing without persistence", extra={"db_path": db_path})
            return None

    def _build_controller(self) -> TrafficController:
        """Create a controller from the current configuration and relay its events."""
        controller = TrafficController(self.config_loader.controller_config(), intersection_id=self.intersection_id)
        for event_name in (EVENT_STATE, EVENT_PHASE_CHANGE, EVENT_PRESENCE):
            controller.on(event_name, self._relay(event_name))
        log.info("Controller ready", extra={"config": controller.config.to_dict()})
        return controller

    def _relay(self, event_name):
        def forward(*args):
            self.emit(event_name, *args)
        return forward

    def _config_check_loop(self):
        """Background thread to check for config file changes."""
        while self._running:
            try:
                if self.config_loader.check_for_updates():
                    log.info("Configuration updated, rebuilding controller")
                    self._reload()
            except ConfigError:
                log.exception("New configuration rejected, keeping the running controller")
            except Exception:
                log.exception("Error checking config")

            # Check every 5 seconds
            self._stop_event.wait(5)

    def _reload(self):
        """Replace the controller with one built from the reloaded config."""
        controller = self._build_controller()
        with self._controller_lock:
            old = self.controller
            self.controller = controller
            old.clear_all()
        if self.tick_monitor:
            self.tick_monitor.poll_interval = max(float(self.config_loader.get('ticker.interval_ms', 250)), 1.0) / 1000.0
        self.emit(EVENT_STATE, self.get_state())

    # ------------------------------------------------------------------
    # Serialised controller access
    # ------------------------------------------------------------------

    def ingest(self, device_id: str, sensors: Mapping, timestamp: Any = None,
               processed_at: Any = None, intersection_id: Optional[str] = None,
               ip: Optional[str] = None) -> Tuple[IngestResult, Dict[str, Any]]:
        """
        Feed one set of sensor readings to the controller.

        Returns:
            (IngestResult, persistence outcome dict)

        Raises:
            IngestValidationError: If device_id or sensors is missing/invalid
        """
        with self._controller_lock:
            result = self.controller.ingest(
                device_id, sensors,
                timestamp=timestamp,
                processed_at=processed_at,
                intersection_id=intersection_id,
            )
            self._last_ingest_at = now_ms()

        return result, self._persist_ingest(result, sensors, ip)

    def tick(self, now: Optional[float] = None) -> List[PhaseChangeRecord]:
        """Time-driven evaluation; persists any committed transitions."""
        with self._controller_lock:
            transitions = self.controller.tick(now)

        if transitions:
            self._persist(
                lambda store: store.persist_phase_changes(transitions, self.intersection_id),
                "phase changes",
            )
        return transitions

    def reset(self, now: Optional[float] = None):
        with self._controller_lock:
            self.controller.reset(now)

    def get_state(self) -> IntersectionSnapshot:
        with self._controller_lock:
            return self.controller.get_state(
                database_connected=self.event_store is not None,
                device_connected=self.is_device_connected(),
            )

    def get_lane_state(self, lane_id: str) -> Optional[LaneSnapshot]:
        with self._controller_lock:
            return self.controller.get_lane_state(lane_id)

    def is_device_connected(self, now: Optional[int] = None) -> bool:
        """True if a field device reported within ``device.link_timeout_ms``."""
        if self._last_ingest_at is None:
            return False
        now = now_ms() if now is None else now
        timeout = self.config_loader.get('device.link_timeout_ms', 15000)
        return now - self._last_ingest_at <= timeout

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist_ingest(self, result: IngestResult, sensors: Mapping, ip: Optional[str]) -> Dict[str, Any]:
        def write(store: SqliteEventStore):
            store.persist_traffic_event(str(uuid.uuid4()), result, dict(sensors), ip=ip, received_at=now_ms())
            store.persist_phase_changes(result.transitions, result.intersection_id, result.device_id)
            store.persist_presence_events(result.presence_events, result.intersection_id, result.device_id)

        return self._persist(write, "traffic event")

    def _persist(self, write, what: str) -> Dict[str, Any]:
        """Run a store write; storage failures are logged and reported, never raised."""
        store = self.event_store
        if store is None:
            return {'skipped': True}
        try:
            write(store)
        except EventStoreError as e:
            log.error("Could not persist %s", what, extra={"error": str(e)})
            return {'error': str(e)}
        return {'persisted': True}

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_controller(self) -> TrafficController:
        """Get controller instance."""
        return self.controller

    def get_tick_monitor(self) -> Optional[TickMonitor]:
        """Get tick monitor instance."""
        return self.tick_monitor

    def get_event_store(self) -> Optional[SqliteEventStore]:
        """Get event store instance (None when storage is disabled)."""
        return self.event_store


if __name__ == '__main__':
    # Run standalone
    app = SmartSignalApp()

    try:
        app.start()

        # Keep running
        while True:
            time.sleep(1)

    except KeyboardInterrupt:
        app.stop()
