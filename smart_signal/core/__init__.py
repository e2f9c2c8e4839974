"""Smart Signal - Core Package"""

from .config import ControllerConfig, ConfigError
from .controller import TrafficController, IngestValidationError
from .data_models import (
    LanePhase, LaneState, LaneSnapshot, IntersectionSnapshot,
    PhaseChangeRecord, PresenceRecord, IngestResult,
    REASON_MIN_GREEN_ELAPSED, REASON_MAX_GREEN_ELAPSED, REASON_MAX_RED_OVERDUE,
    REASON_PREPARING_FOR_GREEN, REASON_YELLOW_ELAPSED,
)
from .events import (
    BaseMonitor, EventEmitter,
    EVENT_STATE, EVENT_PHASE_CHANGE, EVENT_PRESENCE, EVENT_INGEST,
    EVENT_TRANSITIONS, EVENT_ERROR,
)

__all__ = [
    'ControllerConfig', 'ConfigError',
    'TrafficController', 'IngestValidationError',
    'LanePhase', 'LaneState', 'LaneSnapshot', 'IntersectionSnapshot',
    'PhaseChangeRecord', 'PresenceRecord', 'IngestResult',
    'REASON_MIN_GREEN_ELAPSED', 'REASON_MAX_GREEN_ELAPSED', 'REASON_MAX_RED_OVERDUE',
    'REASON_PREPARING_FOR_GREEN', 'REASON_YELLOW_ELAPSED',
    'BaseMonitor', 'EventEmitter',
    'EVENT_STATE', 'EVENT_PHASE_CHANGE', 'EVENT_PRESENCE', 'EVENT_INGEST',
    'EVENT_TRANSITIONS', 'EVENT_ERROR',
]
