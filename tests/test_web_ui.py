import json

import pytest

from smart_signal.core.controller import now_ms
from smart_signal.core.events import EVENT_STATE
from smart_signal.main import SmartSignalApp
from smart_signal.ui.web_ui import WebUI
from smart_signal.utils.config_loader import ConfigLoader


def make_app(tmp_path, storage_enabled=True):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({
        'intersection': {'id': 'web-test', 'timezone': 'UTC'},
        'storage': {'enabled': storage_enabled, 'db_path': ':memory:'},
    }))
    return SmartSignalApp(config_loader=ConfigLoader(str(path), environ={}))


@pytest.fixture
def smart_app(tmp_path):
    app = make_app(tmp_path)
    yield app
    if app.get_event_store():
        app.get_event_store().close()


@pytest.fixture
def client(smart_app):
    web_ui = WebUI(smart_app)
    web_ui.flask_app.config['TESTING'] = True
    return web_ui.flask_app.test_client()


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'ok', 'lanes': 4, 'queue': 0}


def test_dashboard_renders(client):
    response = client.get('/')
    assert response.status_code == 200
    assert b'data-lane="north"' in response.data


def test_event_without_device_is_rejected(client):
    response = client.post('/api/traffic/events', json={'foo': 'bar'})
    assert response.status_code == 400
    assert 'deviceId' in response.get_json()['message']


def test_event_without_sensor_object_is_rejected(client):
    response = client.post('/api/traffic/events', json={'deviceId': 'esp32', 'sensors': [12]})
    assert response.status_code == 400


def test_non_json_body_is_rejected(client):
    response = client.post('/api/traffic/events', data='deviceId=esp32', content_type='text/plain')
    assert response.status_code == 400


def test_event_is_processed_and_persisted(client, smart_app):
    response = client.post('/api/traffic/events', json={
        'deviceId': 'esp32-test',
        'sensors': {'sensor2': 12},
        'timestamp': now_ms(),
    })

    assert response.status_code == 201
    body = response.get_json()
    assert body['message'] == 'Event processed'
    assert 'west' in body['state']['queue']
    assert isinstance(body['evaluation'], list)
    assert body['presenceEvents'] == []
    assert body['persistence'] == {'persisted': True}


def test_event_without_storage_is_skipped(tmp_path):
    app = make_app(tmp_path, storage_enabled=False)
    client = WebUI(app).flask_app.test_client()

    response = client.post('/api/traffic/events', json={'deviceId': 'esp32', 'sensors': {'sensor3': 5}})

    assert response.status_code == 201
    assert response.get_json()['persistence'] == {'skipped': True}
    assert client.get('/api/traffic/analytics/transitions').status_code == 503


def test_lights_for_intersection_and_lane(client):
    response = client.get('/api/traffic/lights')
    assert response.status_code == 200
    assert 'no-store' in response.headers['Cache-Control']
    body = response.get_json()
    assert [item['id'] for item in body['lanes']] == ['north', 'west', 'south', 'east']
    assert body['databaseConnected'] is True
    assert body['deviceConnected'] is False

    lane_id = body['lanes'][0]['id']
    lane_response = client.get(f'/api/traffic/lights/{lane_id}')
    assert lane_response.status_code == 200
    assert lane_response.get_json()['id'] == lane_id
    assert lane_response.get_json()['state'] == 'green'

    missing = client.get('/api/traffic/lights/unknown')
    assert missing.status_code == 404


def test_device_link_reported_after_ingest(client):
    client.post('/api/traffic/events', json={'deviceId': 'esp32', 'sensors': {}})
    assert client.get('/api/traffic/lights').get_json()['deviceConnected'] is True


def test_batch_is_replayed_in_timestamp_order(client, smart_app):
    start = now_ms()
    response = client.post('/api/traffic/events/batch', json={
        'deviceId': 'esp32-batch-test',
        'readings': [
            {'sensors': {'sensor2': 25.7}, 'timestamp': start + 50},
            {'sensors': {'sensor1': 11.2}, 'timestamp': start},
            {'sensors': {'sensor2': 4.0}, 'timestamp': start + 20},
        ],
    })

    assert response.status_code == 202
    body = response.get_json()
    assert body['scheduled'] == 3
    assert body['processed'] == 3
    assert body['transitions'] == []

    state = smart_app.get_state()
    assert state.get_lane('north').last_distance_cm == pytest.approx(11.2)
    assert state.get_lane('west').last_distance_cm == pytest.approx(25.7)
    assert state.queue == []


def test_batch_requires_readings(client):
    assert client.post('/api/traffic/events/batch', json={'deviceId': 'esp32', 'readings': []}).status_code == 400
    assert client.post('/api/traffic/events/batch', json={'deviceId': 'esp32', 'readings': [{'x': 1}]}).status_code == 400


def test_analytics_after_handover(client, smart_app):
    client.post('/api/traffic/events', json={'deviceId': 'esp32', 'sensors': {'sensor4': 3}})
    smart_app.tick(now_ms() + 30_000)

    transitions = client.get('/api/traffic/analytics/transitions').get_json()
    assert transitions['kind'] == 'transitions'
    assert transitions['intersectionId'] == 'web-test'
    assert {'lane_key': 'north', 'next_state': 'yellow', 'count': 1} in transitions['data']
    assert {'lane_key': 'east', 'next_state': 'red_yellow', 'count': 1} in transitions['data']

    trend = client.get('/api/traffic/analytics/green-trend?limit=5').get_json()
    assert trend['data'][0]['lane_key'] == 'north'

    assert client.get('/api/traffic/analytics/lane-durations').status_code == 200
    assert client.get('/api/traffic/analytics/presence').status_code == 200
    assert client.get('/api/traffic/analytics/heatmap').status_code == 404


def test_analytics_rejects_non_positive_limit(client):
    for limit in ('0', '-1'):
        response = client.get(f'/api/traffic/analytics/presence?limit={limit}')
        assert response.status_code == 400
        assert response.get_json()['message'] == 'limit must be a positive integer'

    assert client.get('/api/traffic/analytics/presence?limit=1').status_code == 200


def test_unexpected_error_returns_json(client, smart_app, monkeypatch):
    def broken_ingest(*args, **kwargs):
        raise RuntimeError('sensor bus fault')

    monkeypatch.setattr(smart_app, 'ingest', broken_ingest)
    response = client.post('/api/traffic/events', json={'deviceId': 'esp32', 'sensors': {'sensor1': 5}})

    assert response.status_code == 500
    assert response.is_json
    assert response.get_json() == {'message': 'Internal server error'}


def test_unknown_route_returns_json(client):
    response = client.get('/api/traffic/nowhere')
    assert response.status_code == 404
    assert response.is_json


def test_stream_pushes_state(client, smart_app):
    response = client.get('/api/traffic/stream', buffered=False)
    assert response.status_code == 200
    assert response.mimetype == 'text/event-stream'

    chunks = response.iter_encoded()
    assert next(chunks).startswith(b'retry:')
    first = next(chunks).decode()
    assert first.startswith('event: traffic-state\n')
    assert json.loads(first.split('data: ', 1)[1])['lanes'][0]['state'] == 'green'
    assert smart_app.listener_count(EVENT_STATE) == 1

    smart_app.tick(now_ms() + 30_000)
    update = json.loads(next(chunks).decode().split('data: ', 1)[1])
    assert update['lanes'][0]['state'] == 'yellow'

    response.close()
