import json
import os

import pytest
from conftest import T0

from smart_signal.core.events import EVENT_PHASE_CHANGE, EVENT_STATE
from smart_signal.main import SmartSignalApp
from smart_signal.storage.event_store import EventStoreError
from smart_signal.utils.config_loader import ConfigLoader


def write_config(path, controller=None, **sections):
    data = {'storage': {'enabled': True, 'db_path': ':memory:'}, 'device': {'link_timeout_ms': 1_000}}
    data.update(sections)
    if controller is not None:
        data['controller'] = controller
    path.write_text(json.dumps(data))


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / 'config.json'
    write_config(path, controller={'min_green_ms': 1_000, 'max_green_ms': 2_000, 'yellow_ms': 500})
    return path


@pytest.fixture
def smart_app(config_path):
    app = SmartSignalApp(config_loader=ConfigLoader(str(config_path), environ={}))
    yield app
    app.stop()
    if app.get_event_store():
        app.get_event_store().close()


def test_controller_built_from_config(smart_app):
    config = smart_app.get_controller().config
    assert config.min_green_ms == 1_000
    assert config.yellow_ms == 500
    assert smart_app.intersection_id == 'default'


def test_invalid_config_fails_fast(tmp_path):
    path = tmp_path / 'config.json'
    write_config(path, controller={'lanes': ['solo']})

    with pytest.raises(ValueError):
        SmartSignalApp(config_loader=ConfigLoader(str(path), environ={}))


def test_ingest_persists_everything(smart_app):
    smart_app.reset(T0)
    result, persistence = smart_app.ingest('esp32', {'sensor2': 5}, processed_at=T0 + 100, ip='10.1.1.1')
    assert persistence == {'persisted': True}
    assert result.state.queue == ['west']

    smart_app.tick(T0 + 1_100)
    smart_app.tick(T0 + 1_600)
    _, persistence = smart_app.ingest('esp32', {'sensor2': 900}, processed_at=T0 + 1_700)

    store = smart_app.get_event_store()
    counts = {(r['lane_key'], r['next_state']): r['count'] for r in store.fetch_phase_transition_counts()}
    assert counts[('west', 'green')] == 1
    assert counts[('north', 'red')] == 1
    samples = store.fetch_presence_samples()
    assert samples[0]['lane_key'] == 'west'
    assert samples[0]['triggered_change'] is True


def test_storage_failure_is_reported_not_raised(smart_app, monkeypatch):
    def broken(*args, **kwargs):
        raise EventStoreError("disk full")

    monkeypatch.setattr(smart_app.get_event_store(), 'persist_traffic_event', broken)

    result, persistence = smart_app.ingest('esp32', {'sensor3': 5})

    assert persistence == {'error': 'disk full'}
    assert result.state.queue == ['south']
    assert smart_app.get_state().queue == ['south']


def test_device_link_timeout(smart_app):
    assert smart_app.is_device_connected() is False

    smart_app.ingest('esp32', {})
    last = smart_app._last_ingest_at

    assert smart_app.is_device_connected(now=last + 1_000) is True
    assert smart_app.is_device_connected(now=last + 1_001) is False
    assert smart_app.get_state().device_connected is True
    assert smart_app.get_state().database_connected is True


def test_events_are_relayed(smart_app):
    seen = []
    smart_app.on(EVENT_STATE, lambda state: seen.append('state'))
    smart_app.on(EVENT_PHASE_CHANGE, lambda record: seen.append(record.lane_id))

    smart_app.reset(T0)
    smart_app.tick(T0 + 1_000)

    assert seen == ['state', 'north', 'west', 'state']


def test_reload_rebuilds_controller(smart_app, config_path):
    old = smart_app.get_controller()
    states = []
    smart_app.on(EVENT_STATE, states.append)

    write_config(config_path, controller={'min_green_ms': 3_000, 'max_green_ms': 9_000})
    stat = os.stat(config_path)
    os.utime(config_path, (stat.st_atime, stat.st_mtime + 10))
    assert smart_app.config_loader.check_for_updates() is True
    smart_app._reload()

    controller = smart_app.get_controller()
    assert controller is not old
    assert controller.config.min_green_ms == 3_000
    assert old.listener_count(EVENT_STATE) == 0
    assert states and states[-1].green_lane() == 'north'


def test_start_and_stop(smart_app):
    smart_app.start()
    monitor = smart_app.get_tick_monitor()
    assert monitor.is_running()

    smart_app.stop()

    assert not monitor.is_running()
    assert smart_app.get_tick_monitor() is None
    assert smart_app.get_event_store() is None
