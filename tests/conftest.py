import pytest

from smart_signal.core.config import ControllerConfig
from smart_signal.core.controller import TrafficController
from smart_signal.core.fairness_queue import FairnessQueue
from smart_signal.core.lane_store import LaneStore

T0 = 1_700_000_000_000


@pytest.fixture
def base_config():
    """Short timings so whole cycles fit in a few simulated seconds."""
    return ControllerConfig(
        min_green_ms=1_000,
        max_green_ms=2_000,
        yellow_ms=500,
        presence_timeout_ms=5_000,
        max_red_ms=3_000,
    )


@pytest.fixture
def controller(base_config):
    return TrafficController(base_config, intersection_id='test-junction', now=T0)


@pytest.fixture
def store(base_config):
    lane_store = LaneStore(base_config.lanes)
    lane_store.reset(T0)
    return lane_store


@pytest.fixture
def queue(store):
    return FairnessQueue(store)


def lane(state, lane_id):
    """Lane snapshot from an IntersectionSnapshot."""
    found = state.get_lane(lane_id)
    assert found is not None, f"lane {lane_id} missing from snapshot"
    return found
