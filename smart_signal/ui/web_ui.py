"""
Flask Web UI for Smart Signal

Provides the HTTP surface of the intersection:
- Sensor ingestion (single and batch)
- Current light state (whole intersection and per lane)
- Live state push over server-sent events
- Historical analytics from the event store
- A small live dashboard
"""

import json
import logging
import math
import queue
import threading
from typing import Any, Dict

from flask import Flask, Response, jsonify, render_template, request, stream_with_context
from werkzeug.exceptions import HTTPException

from ..core.controller import IngestValidationError
from ..core.data_models import IntersectionSnapshot
from ..core.events import EVENT_STATE
from ..storage.event_store import EventStoreError

log = logging.getLogger(__name__)

NO_STORE_HEADERS = {
    'Cache-Control': 'no-store, no-cache, must-revalidate, proxy-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0',
}

SSE_KEEPALIVE_SECONDS = 15


def _format_sse(event: str, payload: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


class WebUI:
    """
    Flask-based web interface for the Smart Signal controller.

    Runs in a separate thread to avoid blocking the main application.
    """

    def __init__(self, app_instance, host='0.0.0.0', port=5000):
        """
        Initialize web UI.

        Args:
            app_instance: SmartSignalApp instance
            host: Host to bind to
            port: Port to listen on
        """
        self.app_instance = app_instance
        self.host = host
        self.port = port

        # Create Flask app
        self.flask_app = Flask(__name__)
        self._setup_routes()

        self._thread = None
        self._running = False

    def _state_payload(self, snapshot: IntersectionSnapshot) -> Dict[str, Any]:
        """Snapshot dict with the host's connectivity flags filled in."""
        payload = snapshot.to_dict()
        payload['databaseConnected'] = self.app_instance.get_event_store() is not None
        payload['deviceConnected'] = self.app_instance.is_device_connected()
        return payload

    def _setup_routes(self):
        """Setup Flask routes."""

        @self.flask_app.errorhandler(Exception)
        def handle_error(e):
            if isinstance(e, HTTPException):
                return jsonify({'message': e.description}), e.code
            log.exception("Unhandled error serving request", extra={"path": request.path})
            return jsonify({'message': 'Internal server error'}), 500

        @self.flask_app.route('/')
        def index():
            """Main dashboard."""
            return render_template('dashboard.html', state=self.app_instance.get_state().to_dict())

        @self.flask_app.route('/health')
        def health():
            state = self.app_instance.get_state()
            return jsonify({'status': 'ok', 'lanes': len(state.lanes), 'queue': len(state.queue)})

        @self.flask_app.route('/api/traffic/events', methods=['POST'])
        def ingest_event():
            """Process one set of sensor readings from a field device."""
            body = request.get_json(silent=True) or {}
            device_id = body.get('deviceId')
            sensors = body.get('sensors')

            if not device_id or not isinstance(sensors, dict):
                return jsonify({'message': 'deviceId and sensors are required'}), 400

            try:
                result, persistence = self.app_instance.ingest(
                    device_id, sensors,
                    timestamp=body.get('timestamp'),
                    intersection_id=body.get('intersectionId'),
                    ip=request.remote_addr,
                )
            except IngestValidationError as e:
                return jsonify({'message': str(e)}), 400

            payload = result.to_dict()
            return jsonify({
                'message': 'Event processed',
                'state': payload['state'],
                'evaluation': payload['evaluation'],
                'presenceEvents': payload['presenceEvents'],
                'persistence': persistence,
            }), 201

        @self.flask_app.route('/api/traffic/events/batch', methods=['POST'])
        def ingest_batch():
            """Replay buffered readings from a device in timestamp order."""
            body = request.get_json(silent=True) or {}
            device_id = body.get('deviceId')
            readings = body.get('readings')

            if not device_id or not isinstance(readings, list) or not readings:
                return jsonify({'message': 'deviceId and a non-empty readings list are required'}), 400
            if not all(isinstance(item, dict) and isinstance(item.get('sensors'), dict) for item in readings):
                return jsonify({'message': 'every reading needs a sensors object'}), 400

            ordered = sorted(
                enumerate(readings),
                key=lambda pair: (_sort_key(pair[1].get('timestamp')), pair[0]),
            )

            transitions = []
            for _, reading in ordered:
                result, _ = self.app_instance.ingest(
                    device_id, reading['sensors'],
                    timestamp=reading.get('timestamp'),
                    intersection_id=body.get('intersectionId'),
                    ip=request.remote_addr,
                )
                transitions.extend(record.to_dict() for record in result.transitions)

            log.info("Batch replayed", extra={"device_id": device_id, "count": len(ordered)})
            return jsonify({
                'scheduled': len(readings),
                'processed': len(ordered),
                'transitions': transitions,
            }), 202

        @self.flask_app.route('/api/traffic/lights')
        def get_lights():
            """Get current state of every lane."""
            payload = self._state_payload(self.app_instance.get_state())
            return jsonify(payload), 200, NO_STORE_HEADERS

        @self.flask_app.route('/api/traffic/lights/<lane_id>')
        def get_light(lane_id):
            """Get current state of one lane."""
            lane = self.app_instance.get_lane_state(lane_id)
            if lane is None:
                return jsonify({'message': f'Lane {lane_id} not found'}), 404
            return jsonify(lane.to_dict()), 200, NO_STORE_HEADERS

        @self.flask_app.route('/api/traffic/stream')
        def stream():
            """Push a traffic-state event now and on every committed change."""
            def generate():
                updates = queue.Queue()
                self.app_instance.on(EVENT_STATE, updates.put)
                try:
                    yield "retry: 3000\n\n"
                    yield _format_sse('traffic-state', self._state_payload(self.app_instance.get_state()))
                    while True:
                        try:
                            snapshot = updates.get(timeout=SSE_KEEPALIVE_SECONDS)
                        except queue.Empty:
                            yield ": keep-alive\n\n"
                            continue
                        yield _format_sse('traffic-state', self._state_payload(snapshot))
                finally:
                    self.app_instance.off(EVENT_STATE, updates.put)

            headers = {'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'}
            return Response(stream_with_context(generate()), mimetype='text/event-stream', headers=headers)

        @self.flask_app.route('/api/traffic/analytics/<kind>')
        def analytics(kind):
            """Historical aggregates from the event store."""
            store = self.app_instance.get_event_store()
            if store is None:
                return jsonify({'message': 'Event storage is disabled'}), 503

            intersection_id = request.args.get('intersectionId', self.app_instance.intersection_id)
            limit = request.args.get('limit', type=int)
            if limit is not None and limit < 1:
                return jsonify({'message': 'limit must be a positive integer'}), 400
            queries = {
                'transitions': lambda: store.fetch_phase_transition_counts(intersection_id),
                'lane-durations': lambda: store.fetch_lane_durations(intersection_id, limit or 5000),
                'presence': lambda: store.fetch_presence_samples(intersection_id, limit or 300),
                'green-trend': lambda: store.fetch_green_cycle_trend(intersection_id, limit or 200),
            }
            if kind not in queries:
                return jsonify({'message': f'Unknown analytics view {kind}'}), 404

            try:
                rows = queries[kind]()
            except EventStoreError as e:
                log.error("Analytics query failed", extra={"kind": kind, "error": str(e)})
                return jsonify({'message': str(e)}), 500
            return jsonify({'kind': kind, 'intersectionId': intersection_id, 'data': rows})

    def start(self):
        """Start web UI in background thread."""
        if self._running:
            return

        self._running = True
        self._thread = threading.Thread(
            target=self._run_flask,
            daemon=True,
            name="WebUI"
        )
        self._thread.start()

        log.info("Web UI started", extra={"url": f"http://{self.host}:{self.port}"})

    def _run_flask(self):
        """Run Flask server."""
        self.flask_app.run(
            host=self.host,
            port=self.port,
            debug=False,
            use_reloader=False,
            threaded=True
        )

    def stop(self):
        """Stop web UI."""
        self._running = False
        # The development server has no clean shutdown when run in a thread;
        # the daemon thread ends with the process.


def _sort_key(value) -> float:
    if value is None or isinstance(value, bool):
        return math.inf
    try:
        number = float(value)
    except (TypeError, ValueError):
        return math.inf
    return number if math.isfinite(number) else math.inf
