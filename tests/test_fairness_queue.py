from smart_signal.core.data_models import LanePhase


def test_enqueue_sets_waiting_flag(queue, store):
    assert queue.enqueue('west') is True
    assert store.get('west').waiting is True
    assert queue.to_list() == ['west']


def test_enqueue_is_deduplicated(queue):
    assert queue.enqueue('west') is True
    assert queue.enqueue('west') is False
    assert queue.enqueue('west') is False
    assert queue.to_list() == ['west']
    assert len(queue) == 1


def test_green_lane_is_never_queued(queue, store):
    assert store.get('north').phase == LanePhase.GREEN
    assert queue.enqueue('north') is False
    assert 'north' not in queue
    assert store.get('north').waiting is False


def test_unknown_lane_is_not_queued(queue):
    assert queue.enqueue('northeast') is False
    assert queue.to_list() == []


def test_remove_from_middle_keeps_order(queue, store):
    for lane_id in ('west', 'south', 'east'):
        queue.enqueue(lane_id)

    assert queue.remove('south') is True
    assert queue.to_list() == ['west', 'east']
    assert store.get('south').waiting is False
    assert queue.remove('south') is False


def test_pop_next_is_fifo(queue, store):
    queue.enqueue('east')
    queue.enqueue('west')

    assert queue.pop_next() == 'east'
    assert store.get('east').waiting is False
    assert queue.pop_next() == 'west'
    assert queue.pop_next() is None


def test_pop_next_discards_skipped_entries(queue, store):
    queue.enqueue('west')
    queue.enqueue('south')

    assert queue.pop_next(skip=('west',)) == 'south'
    assert queue.to_list() == []
    assert store.get('west').waiting is False


def test_clear_resets_every_waiting_flag(queue, store):
    queue.enqueue('west')
    queue.enqueue('east')

    queue.clear()

    assert len(queue) == 0
    assert not any(lane.waiting for lane in store)


def test_membership_matches_waiting_flag(queue, store):
    queue.enqueue('west')
    queue.enqueue('east')
    queue.pop_next()

    for lane in store:
        assert lane.waiting == (lane.lane_id in queue)
