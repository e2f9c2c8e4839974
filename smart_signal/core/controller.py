"""
Traffic Controller - public entry points of the intersection core

Two entry points mutate state: ``ingest`` (sensor data) and ``tick`` (time).
Both run to completion synchronously. The controller does no locking of its
own; a host that calls it from several threads must serialise the calls
(see ``SmartSignalApp``).
"""

import logging
import math
import time
from collections.abc import Mapping
from typing import Any, List, Optional

from .config import ControllerConfig
from .data_models import (
    IngestResult, IntersectionSnapshot, LaneSnapshot, PhaseChangeRecord, PresenceRecord,
)
from .events import EventEmitter, EVENT_STATE, EVENT_PHASE_CHANGE, EVENT_PRESENCE, EVENT_INGEST
from .fairness_queue import FairnessQueue
from .lane_store import LaneStore
from .presence import PresenceTracker
from .scheduler import PhaseScheduler

log = logging.getLogger(__name__)

DEFAULT_INTERSECTION_ID = 'default'


class IngestValidationError(ValueError):
    """Raised when an ingestion call is missing required fields."""
    pass


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _coerce_timestamp(value: Any, fallback: float) -> float:
    """Use ``value`` as a timestamp if it is a finite number, else ``fallback``."""
    if value is None or isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return int(number) if number.is_integer() else number


class TrafficController(EventEmitter):
    """
    Phase controller for one intersection.

    Emits events:
    - 'state': (IntersectionSnapshot) after every committed change and on reset
    - 'phase_change': (PhaseChangeRecord) for each committed transition
    - 'presence': (PresenceRecord) for each closed presence interval
    - 'ingest': (IngestResult) after each sensor ingestion

    Example usage:
        controller = TrafficController(ControllerConfig(min_green_ms=5000))
        controller.on('phase_change', lambda record: print(record))
        controller.ingest('esp32', {'sensor2': 9.5})
        controller.tick()
    """

    def __init__(self, config: Optional[ControllerConfig] = None,
                 intersection_id: str = DEFAULT_INTERSECTION_ID,
                 now: Optional[float] = None):
        """
        Initialize controller.

        Args:
            config: Validated ControllerConfig (defaults if None)
            intersection_id: Identifier reported with each ingestion
            now: Reset timestamp in epoch ms (wall clock if None)
        """
        EventEmitter.__init__(self)

        self.config = config if config is not None else ControllerConfig()
        self.intersection_id = intersection_id

        self._store = LaneStore(self.config.lanes)
        self._queue = FairnessQueue(self._store)
        self._presence = PresenceTracker(self.config, self._store, self._queue)
        self._scheduler = PhaseScheduler(self.config, self._store, self._queue)

        self.reset(now)

    # ------------------------------------------------------------------
    # Mutating entry points
    # ------------------------------------------------------------------

    def reset(self, now: Optional[float] = None):
        """
        Reinitialize every lane: first lane green, the rest red, queue empty.

        Announces the fresh snapshot.
        """
        now = _coerce_timestamp(now, now_ms())
        self._store.reset(now)
        self._queue.clear()
        self._scheduler.reset()
        log.info("Controller reset", extra={"intersection_id": self.intersection_id, "green_lane": self.current_lane_id})
        self.emit(EVENT_STATE, self.get_state(now))

    def ingest(self, device_id: str, readings: Mapping, timestamp: Any = None,
               processed_at: Any = None, intersection_id: Optional[str] = None) -> IngestResult:
        """
        Apply one set of sensor readings and evaluate the state machine.

        Args:
            device_id: Reporting field device (required)
            readings: Mapping of sensor id to raw distance reading
            timestamp: Event time reported by the device (epoch ms)
            processed_at: Processing time used for every comparison (epoch ms)
            intersection_id: Overrides the controller's intersection id in the result

        Returns:
            IngestResult with the fresh snapshot, transitions and presence records

        Raises:
            IngestValidationError: If device_id is missing or readings is not a mapping
        """
        if not device_id:
            raise IngestValidationError("deviceId is required")
        if not isinstance(readings, Mapping):
            raise IngestValidationError("sensors must be a mapping of sensor id to reading")

        processed = _coerce_timestamp(processed_at, now_ms())
        event_timestamp = _coerce_timestamp(timestamp, processed)

        presence_events = self._presence.update(readings, processed)
        transitions = self._scheduler.evaluate(processed)
        state = self.get_state(processed)

        result = IngestResult(
            intersection_id=intersection_id or self.intersection_id,
            device_id=device_id,
            timestamp=event_timestamp,
            processed_at=processed,
            state=state,
            transitions=transitions,
            presence_events=presence_events,
        )

        self._announce(transitions, presence_events)
        self.emit(EVENT_STATE, state)
        self.emit(EVENT_INGEST, result)
        return result

    def tick(self, now: Optional[float] = None) -> List[PhaseChangeRecord]:
        """
        Time-driven evaluation with no new input.

        Returns:
            Committed PhaseChangeRecords (empty when no threshold was crossed)
        """
        now = _coerce_timestamp(now, now_ms())
        transitions = self._scheduler.evaluate(now)
        if transitions:
            self._announce(transitions, [])
            self.emit(EVENT_STATE, self.get_state(now))
        return transitions

    def _announce(self, transitions: List[PhaseChangeRecord], presence_events: List[PresenceRecord]):
        for record in transitions:
            self.emit(EVENT_PHASE_CHANGE, record)
        for record in presence_events:
            self.emit(EVENT_PRESENCE, record)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_state(self, now: Optional[float] = None, database_connected: bool = False,
                  device_connected: bool = False) -> IntersectionSnapshot:
        """
        Snapshot of the whole intersection.

        Args:
            now: Snapshot timestamp (wall clock if None)
            database_connected: Pass-through connectivity flag
            device_connected: Pass-through connectivity flag
        """
        timestamp = _coerce_timestamp(now, now_ms())
        return IntersectionSnapshot(
            timestamp=timestamp,
            lanes=[LaneSnapshot.from_state(lane, timestamp) for lane in self._store],
            queue=self._queue.to_list(),
            config=self.config.to_dict(),
            database_connected=bool(database_connected),
            device_connected=bool(device_connected),
        )

    def get_lane_state(self, lane_id: str, now: Optional[float] = None) -> Optional[LaneSnapshot]:
        """
        Snapshot of a single lane.

        Returns:
            LaneSnapshot, or None if the lane is not configured
        """
        lane = self._store.get(lane_id)
        if lane is None:
            return None
        return LaneSnapshot.from_state(lane, _coerce_timestamp(now, now_ms()))

    @property
    def current_lane_id(self) -> Optional[str]:
        return self._scheduler.current_lane_id

    @property
    def next_lane_id(self) -> Optional[str]:
        return self._scheduler.next_lane_id

    @property
    def queue(self) -> List[str]:
        return self._queue.to_list()
