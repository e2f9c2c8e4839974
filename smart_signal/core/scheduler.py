"""
Phase Scheduler - the intersection state machine

Lane cycle: green -> yellow -> red -> (red_yellow, when chosen) -> green.

Only the current lane (green or yellow) and its primed successor take part
in a transition. Evaluation is driven entirely by the caller's ``now`` so a
recorded sequence of (timestamp, input) pairs replays identically.

Successor priority when the current lane leaves green:
    1. a lane overdue past max red (earliest red_since first)
    2. the head of the Fairness Queue
    3. the next lane in static round-robin order
"""

import logging
import math
from typing import List, Optional, Tuple

from .config import ControllerConfig
from .data_models import (
    LanePhase, LaneState, PhaseChangeRecord,
    REASON_MIN_GREEN_ELAPSED, REASON_MAX_GREEN_ELAPSED, REASON_MAX_RED_OVERDUE,
    REASON_PREPARING_FOR_GREEN, REASON_YELLOW_ELAPSED,
)
from .fairness_queue import FairnessQueue
from .lane_store import LaneStore

log = logging.getLogger(__name__)

# How the successor was picked (for logging)
SELECTED_OVERDUE = 'max-red'
SELECTED_QUEUE = 'queue'
SELECTED_ROUND_ROBIN = 'round-robin'


def _since(now: float, then: Optional[float]) -> float:
    """Clamped time since ``then``; infinite when ``then`` never happened."""
    if then is None:
        return math.inf
    return max(0, now - then)


class PhaseScheduler:
    """
    Evaluates the current lane against elapsed time and queue state.

    Attributes:
        current_lane_id: Lane holding green (or yellow while handing over)
        next_lane_id: Primed successor while the current lane is yellow
    """

    def __init__(self, config: ControllerConfig, store: LaneStore, queue: FairnessQueue):
        self.config = config
        self._store = store
        self._queue = queue
        self.current_lane_id: Optional[str] = None
        self.next_lane_id: Optional[str] = None

    def reset(self):
        self.current_lane_id = self.config.lanes[0]
        self.next_lane_id = None

    def evaluate(self, now: float) -> List[PhaseChangeRecord]:
        """
        Run one evaluation of the current lane.

        Returns:
            Committed PhaseChangeRecords (zero or two)
        """
        lane = self._store.get(self.current_lane_id)
        if lane is None:
            return []

        if lane.phase == LanePhase.GREEN:
            transitions = self._evaluate_green(lane, now)
        elif lane.phase == LanePhase.YELLOW:
            transitions = self._evaluate_yellow(lane, now)
        else:
            transitions = []

        return [t for t in transitions if t is not None]

    # ------------------------------------------------------------------
    # Per-phase rules
    # ------------------------------------------------------------------

    def _evaluate_green(self, lane: LaneState, now: float) -> List[Optional[PhaseChangeRecord]]:
        cfg = self.config
        elapsed = _since(now, lane.last_change_at)
        cleared_ago = _since(now, lane.last_cleared_at)
        since_last_vehicle = _since(now, lane.last_vehicle_at)

        hold_due_to_vehicle = (
            lane.is_occupied
            or since_last_vehicle <= cfg.vehicle_presence_grace_ms
            or cleared_ago <= cfg.hold_after_clear_ms
        )
        had_vehicle_this_cycle = (
            lane.last_vehicle_at is not None and lane.last_vehicle_at >= lane.last_change_at
        )
        can_ignore_min_green = had_vehicle_this_cycle and not hold_due_to_vehicle

        overdue_lane_id = self.find_overdue_lane(now, lane.lane_id)
        enforce_max_green = elapsed >= cfg.max_green_ms
        enforce_max_red = overdue_lane_id is not None and elapsed >= cfg.min_green_ms

        if enforce_max_green or enforce_max_red:
            reason = REASON_MAX_GREEN_ELAPSED if enforce_max_green else REASON_MAX_RED_OVERDUE
            return self._begin_handover(lane, now, reason)

        if elapsed < cfg.min_green_ms and not can_ignore_min_green:
            return []

        if hold_due_to_vehicle and overdue_lane_id is None:
            return []

        return self._begin_handover(lane, now, REASON_MIN_GREEN_ELAPSED)

    def _evaluate_yellow(self, lane: LaneState, now: float) -> List[Optional[PhaseChangeRecord]]:
        if _since(now, lane.last_change_at) < self.config.yellow_ms:
            return []

        successor = self.next_lane_id
        if successor is None or self._store.get(successor) is None:
            successor, how = self.choose_next_lane(now, lane.lane_id)
            log.warning("No primed successor at yellow end", extra={"lane_id": successor, "selected_by": how})

        transitions = [
            self._change_phase(lane.lane_id, LanePhase.RED, now, REASON_YELLOW_ELAPSED),
            self._change_phase(successor, LanePhase.GREEN, now, REASON_YELLOW_ELAPSED),
        ]
        self.next_lane_id = None
        return transitions

    def _begin_handover(self, lane: LaneState, now: float, reason: str) -> List[Optional[PhaseChangeRecord]]:
        successor, how = self.choose_next_lane(now, lane.lane_id)
        self.next_lane_id = successor
        log.debug(
            "Successor selected",
            extra={"lane_id": lane.lane_id, "successor": successor, "selected_by": how, "reason": reason},
        )
        return [
            self._change_phase(lane.lane_id, LanePhase.YELLOW, now, reason),
            self._change_phase(successor, LanePhase.RED_YELLOW, now, REASON_PREPARING_FOR_GREEN),
        ]

    # ------------------------------------------------------------------
    # Successor selection
    # ------------------------------------------------------------------

    def find_overdue_lane(self, now: float, current_lane_id: str) -> Optional[str]:
        """
        Find the lane that has waited longest past ``max_red_ms``.

        A lane is overdue when it is queued, red, and has been red for at
        least ``max_red_ms``. Ties on ``red_since`` keep static lane order.
        """
        overdue = [
            lane for lane in self._store
            if lane.lane_id != current_lane_id
            and lane.waiting
            and lane.phase != LanePhase.GREEN
            and lane.red_since is not None
            and _since(now, lane.red_since) >= self.config.max_red_ms
        ]
        if not overdue:
            return None

        overdue.sort(key=lambda lane: lane.red_since)
        return overdue[0].lane_id

    def choose_next_lane(self, now: float, current_lane_id: str) -> Tuple[str, str]:
        """
        Pick the lane that receives green after ``current_lane_id``.

        Returns:
            Tuple of (lane_id, how it was selected)
        """
        overdue_lane_id = self.find_overdue_lane(now, current_lane_id)
        if overdue_lane_id is not None:
            self._queue.remove(overdue_lane_id)
            return overdue_lane_id, SELECTED_OVERDUE

        queued = self._queue.pop_next(skip=(current_lane_id,))
        if queued is not None:
            return queued, SELECTED_QUEUE

        return self._store.next_after(current_lane_id), SELECTED_ROUND_ROBIN

    # ------------------------------------------------------------------
    # Phase changes
    # ------------------------------------------------------------------

    def _change_phase(self, lane_id: str, next_phase: LanePhase, now: float,
                      reason: Optional[str] = None) -> Optional[PhaseChangeRecord]:
        lane = self._store.get(lane_id)
        if lane is None or lane.phase == next_phase:
            return None

        previous_phase = lane.phase
        started_at = lane.last_change_at
        lane.phase = next_phase
        lane.last_change_at = now

        if next_phase == LanePhase.GREEN:
            self.current_lane_id = lane_id
            lane.cycles_completed += 1
            self._queue.remove(lane_id)
            lane.red_since = None
            if lane.presence_started_at is not None:
                lane.presence_triggered_change = True
        elif next_phase == LanePhase.RED:
            lane.red_since = now
        elif next_phase == LanePhase.YELLOW:
            self._queue.remove(lane_id)
        elif next_phase == LanePhase.RED_YELLOW:
            lane.red_since = None

        record = PhaseChangeRecord(
            lane_id=lane_id,
            previous_phase=previous_phase,
            next_phase=next_phase,
            started_at=started_at,
            ended_at=now,
            duration_ms=max(0, now - started_at),
            reason=reason,
        )
        log.info(
            "Phase change",
            extra={
                "lane_id": lane_id,
                "previous_phase": previous_phase.value,
                "next_phase": next_phase.value,
                "duration_ms": record.duration_ms,
                "reason": reason,
            },
        )
        return record
