import math

import pytest
from conftest import T0

from smart_signal.core.presence import PresenceTracker, parse_distance


@pytest.fixture
def tracker(base_config, store, queue):
    return PresenceTracker(base_config, store, queue)


@pytest.mark.parametrize('raw, expected', [
    (12, 12.0),
    (7.5, 7.5),
    ('9.25', 9.25),
    (None, None),
    ('far', None),
    (True, None),
    ({'cm': 3}, None),
    (math.nan, None),
    (math.inf, None),
])
def test_parse_distance(raw, expected):
    assert parse_distance(raw) == expected


def test_reading_at_threshold_is_presence(tracker, store, queue):
    tracker.update({'sensor2': 13.6}, T0 + 10)

    west = store.get('west')
    assert west.is_occupied is True
    assert west.last_vehicle_at == T0 + 10
    assert west.last_distance_cm == 13.6
    assert queue.to_list() == ['west']


def test_reading_above_threshold_is_absence(tracker, store, queue):
    tracker.update({'sensor2': 13.7}, T0 + 10)

    west = store.get('west')
    assert west.is_occupied is False
    assert west.last_sample_at == T0 + 10
    assert west.last_vehicle_at is None
    assert queue.to_list() == []


def test_non_numeric_reading_counts_as_no_vehicle(tracker, store):
    tracker.update({'sensor3': 'n/a', 'sensor4': math.nan}, T0 + 10)

    assert store.get('south').is_occupied is False
    assert store.get('south').last_distance_cm is None
    assert store.get('east').last_distance_cm is None


def test_unknown_sensor_is_ignored(tracker, store, queue):
    records = tracker.update({'sensor9': 1, 'lidar': 2}, T0 + 10)

    assert records == []
    assert queue.to_list() == []
    assert all(lane.last_sample_at is None for lane in store)


def test_lane_id_accepted_as_sensor_id(tracker, queue):
    tracker.update({'east': 4}, T0 + 10)
    assert queue.to_list() == ['east']


def test_present_on_green_lane_does_not_queue(tracker, store, queue):
    tracker.update({'sensor1': 5}, T0 + 10)

    assert store.get('north').is_occupied is True
    assert queue.to_list() == []


def test_repeated_detection_keeps_single_queue_entry(tracker, queue):
    for offset in (10, 20, 30, 40):
        tracker.update({'sensor2': 8}, T0 + offset)
    tracker.update({'sensor3': 8}, T0 + 50)
    tracker.update({'sensor2': 8}, T0 + 60)

    assert queue.to_list() == ['west', 'south']


def test_clearing_closes_presence_interval(tracker, store):
    tracker.update({'sensor2': 8}, T0 + 100)
    tracker.update({'sensor2': 8}, T0 + 400)
    records = tracker.update({'sensor2': 500}, T0 + 900)

    assert len(records) == 1
    record = records[0]
    assert record.lane_id == 'west'
    assert record.detected_at == T0 + 100
    assert record.cleared_at == T0 + 900
    assert record.wait_ms == 800
    assert record.triggered_change is False
    assert store.get('west').last_cleared_at == T0 + 900
    assert store.get('west').presence_started_at is None


def test_absent_sample_without_prior_presence_keeps_clear_time(tracker, store):
    tracker.update({'sensor2': 8}, T0 + 100)
    tracker.update({'sensor2': 500}, T0 + 200)
    assert tracker.update({'sensor2': 500}, T0 + 300) == []
    assert store.get('west').last_cleared_at == T0 + 200


def test_clearing_before_service_leaves_queue(tracker, store, queue):
    tracker.update({'sensor2': 8}, T0 + 50)
    assert 'west' in queue

    tracker.update({'sensor2': 999}, T0 + 100)

    assert 'west' not in queue
    assert store.get('west').waiting is False


def test_clock_going_backwards_clamps_wait(tracker):
    tracker.update({'sensor2': 8}, T0 + 500)
    records = tracker.update({'sensor2': 999}, T0 + 100)
    assert records[0].wait_ms == 0
