"""
Fairness Queue - ordered set of lanes waiting for service
"""

from collections import OrderedDict
from typing import Iterable, Iterator, List, Optional

from .data_models import LanePhase
from .lane_store import LaneStore


class FairnessQueue:
    """
    Insertion-ordered set of lane ids, kept in sync with ``LaneState.waiting``.

    A lane is in the queue iff its ``waiting`` flag is set. Removal works from
    any position so an overdue lane can be served ahead of the head.
    """

    def __init__(self, store: LaneStore):
        self._store = store
        self._entries: 'OrderedDict[str, None]' = OrderedDict()

    def enqueue(self, lane_id: str) -> bool:
        """
        Add a lane to the tail of the queue.

        Returns:
            bool: True if the lane was added, False if it is green, already
            queued or not configured
        """
        lane = self._store.get(lane_id)
        if lane is None or lane.phase == LanePhase.GREEN:
            return False
        if lane.waiting or lane_id in self._entries:
            return False

        lane.waiting = True
        self._entries[lane_id] = None
        return True

    def remove(self, lane_id: str) -> bool:
        """
        Remove a lane wherever it sits in the queue.

        Returns:
            bool: True if the lane was queued
        """
        lane = self._store.get(lane_id)
        if lane is not None:
            lane.waiting = False
        if lane_id not in self._entries:
            return False
        del self._entries[lane_id]
        return True

    def pop_next(self, skip: Iterable[str] = ()) -> Optional[str]:
        """
        Dequeue the oldest servable lane.

        Entries for unconfigured lanes or lanes in ``skip`` are discarded on
        the way, exactly as if they had been dequeued.

        Returns:
            Lane id, or None if the queue holds no servable lane
        """
        skip = set(skip)
        while self._entries:
            lane_id, _ = self._entries.popitem(last=False)
            lane = self._store.get(lane_id)
            if lane is not None:
                lane.waiting = False
            if lane is not None and lane_id not in skip:
                return lane_id
        return None

    def clear(self):
        for lane_id in self._entries:
            lane = self._store.get(lane_id)
            if lane is not None:
                lane.waiting = False
        self._entries.clear()

    def to_list(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, lane_id) -> bool:
        return lane_id in self._entries

    def __len__(self):
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))
