"""
Presence Tracker - turns raw distance samples into lane occupancy
"""

import logging
import math
from typing import Any, List, Mapping, Optional

from .config import ControllerConfig
from .data_models import LanePhase, PresenceRecord
from .fairness_queue import FairnessQueue
from .lane_store import LaneStore

log = logging.getLogger(__name__)


def parse_distance(raw_value: Any) -> Optional[float]:
    """
    Parse a raw sensor reading into a distance in centimetres.

    Args:
        raw_value: Number, numeric string, None or anything else

    Returns:
        Finite float distance, or None when the reading carries no usable
        distance (missing, non-numeric, NaN or infinite)
    """
    if raw_value is None or isinstance(raw_value, bool):
        return None
    try:
        value = float(raw_value)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


class PresenceTracker:
    """
    Updates lane occupancy from sensor samples.

    Presence is threshold based: a lane is occupied while its last distance is
    at or below ``detection_threshold_cm``. Occupied lanes request service
    through the Fairness Queue; a lane that clears before being served gives
    its slot back. Closing a presence interval produces a PresenceRecord.
    No phase decisions are made here.
    """

    def __init__(self, config: ControllerConfig, store: LaneStore, queue: FairnessQueue):
        self.config = config
        self._store = store
        self._queue = queue

    def resolve_lane(self, sensor_id: str) -> Optional[str]:
        """Map a sensor id to its lane; lane ids are accepted as sensor ids."""
        lane_id = self.config.sensor_map.get(sensor_id, sensor_id)
        return lane_id if lane_id in self._store else None

    def update(self, readings: Mapping[str, Any], now: float) -> List[PresenceRecord]:
        """
        Apply one batch of sensor readings.

        Args:
            readings: Mapping of sensor id to raw reading
            now: Processing timestamp (epoch ms)

        Returns:
            PresenceRecords for every presence interval closed by this batch
        """
        records = []
        for sensor_id, raw_value in readings.items():
            lane_id = self.resolve_lane(sensor_id)
            if lane_id is None:
                log.debug("Ignoring reading from unknown sensor", extra={"sensor_id": sensor_id})
                continue

            record = self._apply_sample(lane_id, parse_distance(raw_value), now)
            if record is not None:
                records.append(record)
        return records

    def has_vehicle(self, distance: Optional[float]) -> bool:
        return distance is not None and distance <= self.config.detection_threshold_cm

    def _apply_sample(self, lane_id: str, distance: Optional[float], now: float) -> Optional[PresenceRecord]:
        lane = self._store.get(lane_id)
        was_occupied = lane.is_occupied
        lane.last_sample_at = now
        lane.last_distance_cm = distance

        if self.has_vehicle(distance):
            lane.last_vehicle_at = now
            if not was_occupied:
                lane.presence_started_at = now
                lane.presence_triggered_change = False
            lane.is_occupied = True
            lane.last_cleared_at = None
            self._queue.enqueue(lane_id)
            return None

        record = None
        lane.is_occupied = False
        if was_occupied:
            lane.last_cleared_at = now
            if lane.presence_started_at is not None:
                record = PresenceRecord(
                    lane_id=lane_id,
                    detected_at=lane.presence_started_at,
                    cleared_at=now,
                    wait_ms=max(0, now - lane.presence_started_at),
                    triggered_change=lane.presence_triggered_change,
                )
                lane.presence_started_at = None
                lane.presence_triggered_change = False
                log.debug("Presence interval closed", extra=record.to_dict())

        if lane.waiting and lane.phase != LanePhase.GREEN:
            self._queue.remove(lane_id)
        elif lane.waiting and self._call_expired(lane.last_vehicle_at, now):
            self._queue.remove(lane_id)

        return record

    def _call_expired(self, last_vehicle_at: Optional[float], now: float) -> bool:
        return last_vehicle_at is not None and now - last_vehicle_at > self.config.presence_timeout_ms
