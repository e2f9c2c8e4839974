"""
Data Models for Intersection State
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class LanePhase(Enum):
    """Signal phase of a single lane."""
    GREEN = 'green'
    YELLOW = 'yellow'
    RED = 'red'
    RED_YELLOW = 'red_yellow'   # primed successor while the outgoing lane is yellow


# ============================================================================
# PHASE CHANGE REASONS
# ============================================================================

REASON_MIN_GREEN_ELAPSED = 'min-green-elapsed'
REASON_MAX_GREEN_ELAPSED = 'max-green-elapsed'
REASON_MAX_RED_OVERDUE = 'max-red-overdue'
REASON_PREPARING_FOR_GREEN = 'preparing-for-green'
REASON_YELLOW_ELAPSED = 'yellow-elapsed'


@dataclass
class LaneState:
    """
    Mutable state of one lane.

    All timestamps are epoch milliseconds supplied by the caller.
    """
    lane_id: str
    phase: LanePhase
    last_change_at: float
    last_vehicle_at: Optional[float] = None
    last_sample_at: Optional[float] = None
    last_distance_cm: Optional[float] = None
    is_occupied: bool = False
    last_cleared_at: Optional[float] = None
    red_since: Optional[float] = None
    waiting: bool = False
    cycles_completed: int = 0
    presence_started_at: Optional[float] = None
    presence_triggered_change: bool = False

    @classmethod
    def initial(cls, lane_id: str, is_green: bool, now: float) -> 'LaneState':
        """Create the state a lane has right after a reset."""
        return cls(
            lane_id=lane_id,
            phase=LanePhase.GREEN if is_green else LanePhase.RED,
            last_change_at=now,
            red_since=None if is_green else now,
        )

    def __str__(self):
        return f"Lane {self.lane_id}: {self.phase.name}"


@dataclass(frozen=True)
class PhaseChangeRecord:
    """One committed phase transition."""
    lane_id: str
    previous_phase: LanePhase
    next_phase: LanePhase
    started_at: float
    ended_at: float
    duration_ms: float
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'phase-change',
            'laneId': self.lane_id,
            'previousState': self.previous_phase.value,
            'nextState': self.next_phase.value,
            'startedAt': self.started_at,
            'endedAt': self.ended_at,
            'durationMs': self.duration_ms,
            'reason': self.reason,
        }

    def __str__(self):
        return f"Lane {self.lane_id}: {self.previous_phase.name} -> {self.next_phase.name} ({self.reason})"


@dataclass(frozen=True)
class PresenceRecord:
    """A closed vehicle-presence interval on one lane."""
    lane_id: str
    detected_at: float
    cleared_at: float
    wait_ms: float
    triggered_change: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'laneId': self.lane_id,
            'detectedAt': self.detected_at,
            'clearedAt': self.cleared_at,
            'waitMs': self.wait_ms,
            'triggeredChange': self.triggered_change,
        }


@dataclass(frozen=True)
class LaneSnapshot:
    """Read-only view of a lane at a point in time."""
    lane_id: str
    phase: LanePhase
    last_change_at: float
    last_vehicle_at: Optional[float]
    last_sample_at: Optional[float]
    last_distance_cm: Optional[float]
    is_occupied: bool
    last_cleared_at: Optional[float]
    waiting: bool
    cycles_completed: int
    red_since: Optional[float]
    timestamp: float

    @classmethod
    def from_state(cls, state: LaneState, timestamp: float) -> 'LaneSnapshot':
        return cls(
            lane_id=state.lane_id,
            phase=state.phase,
            last_change_at=state.last_change_at,
            last_vehicle_at=state.last_vehicle_at,
            last_sample_at=state.last_sample_at,
            last_distance_cm=state.last_distance_cm,
            is_occupied=state.is_occupied,
            last_cleared_at=state.last_cleared_at,
            waiting=state.waiting,
            cycles_completed=state.cycles_completed,
            red_since=state.red_since,
            timestamp=timestamp,
        )

    def to_dict(self, include_timestamp: bool = True) -> Dict[str, Any]:
        data = {
            'id': self.lane_id,
            'state': self.phase.value,
            'lastChangeAt': self.last_change_at,
            'lastVehicleAt': self.last_vehicle_at,
            'lastSampleAt': self.last_sample_at,
            'lastDistanceCm': self.last_distance_cm,
            'isOccupied': self.is_occupied,
            'lastClearedAt': self.last_cleared_at,
            'waiting': self.waiting,
            'cyclesCompleted': self.cycles_completed,
            'redSince': self.red_since,
        }
        if include_timestamp:
            data['timestamp'] = self.timestamp
        return data

    def __str__(self):
        return f"Lane {self.lane_id}: {self.phase.name}"


@dataclass(frozen=True)
class IntersectionSnapshot:
    """Complete snapshot of the intersection at a point in time."""
    timestamp: float
    lanes: List[LaneSnapshot] = field(default_factory=list)
    queue: List[str] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)
    database_connected: bool = False
    device_connected: bool = False

    def get_lane(self, lane_id: str) -> Optional[LaneSnapshot]:
        """Get snapshot of a specific lane."""
        for lane in self.lanes:
            if lane.lane_id == lane_id:
                return lane
        return None

    def green_lane(self) -> Optional[str]:
        """Id of the lane currently showing green, if any."""
        for lane in self.lanes:
            if lane.phase == LanePhase.GREEN:
                return lane.lane_id
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'lanes': [lane.to_dict(include_timestamp=False) for lane in self.lanes],
            'queue': list(self.queue),
            'config': dict(self.config),
            'databaseConnected': self.database_connected,
            'deviceConnected': self.device_connected,
        }


@dataclass(frozen=True)
class IngestResult:
    """Everything produced by one sensor ingestion."""
    intersection_id: str
    device_id: str
    timestamp: float
    processed_at: float
    state: IntersectionSnapshot
    transitions: List[PhaseChangeRecord] = field(default_factory=list)
    presence_events: List[PresenceRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'intersectionId': self.intersection_id,
            'deviceId': self.device_id,
            'timestamp': self.timestamp,
            'processedAt': self.processed_at,
            'state': self.state.to_dict(),
            'evaluation': [record.to_dict() for record in self.transitions],
            'presenceEvents': [record.to_dict() for record in self.presence_events],
        }
