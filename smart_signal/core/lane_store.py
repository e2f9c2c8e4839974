"""
Lane Store - per-lane mutable state in static lane order
"""

from typing import Dict, Iterator, List, Optional, Sequence

from .data_models import LaneState


class LaneStore:
    """
    Holds one LaneState per configured lane.

    Lanes live in a list in configuration order; lookups go through a
    lane-id -> index table. Round-robin order always comes from the
    configured sequence.
    """

    def __init__(self, lane_ids: Sequence[str]):
        self._lane_ids = tuple(lane_ids)
        self._index: Dict[str, int] = {lane_id: i for i, lane_id in enumerate(self._lane_ids)}
        self._lanes: List[LaneState] = []

    @property
    def lane_ids(self):
        return self._lane_ids

    def reset(self, now: float):
        """Recreate every lane: the first configured lane green, the rest red."""
        self._lanes = [
            LaneState.initial(lane_id, is_green=(i == 0), now=now)
            for i, lane_id in enumerate(self._lane_ids)
        ]

    def get(self, lane_id: str) -> Optional[LaneState]:
        """Get the state of a lane, or None if the lane is not configured."""
        index = self._index.get(lane_id)
        if index is None or index >= len(self._lanes):
            return None
        return self._lanes[index]

    def index_of(self, lane_id: str) -> int:
        return self._index[lane_id]

    def next_after(self, lane_id: str) -> str:
        """Lane immediately following ``lane_id`` in static order, wrapping around."""
        index = self._index.get(lane_id, -1)
        return self._lane_ids[(index + 1) % len(self._lane_ids)]

    def __contains__(self, lane_id) -> bool:
        return lane_id in self._index

    def __iter__(self) -> Iterator[LaneState]:
        return iter(self._lanes)

    def __len__(self):
        return len(self._lanes)
