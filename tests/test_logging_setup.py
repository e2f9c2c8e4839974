import json
import logging
import sys

from smart_signal.utils.logging_setup import JsonFormatter


def make_record(**extra):
    record = logging.LogRecord('smart_signal.core.scheduler', logging.INFO, __file__, 10, 'Phase change', (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_merges_extra_fields():
    line = JsonFormatter().format(make_record(lane_id='west', duration_ms=1_200))

    payload = json.loads(line)
    assert payload['level'] == 'INFO'
    assert payload['logger'] == 'smart_signal.core.scheduler'
    assert payload['msg'] == 'Phase change'
    assert payload['lane_id'] == 'west'
    assert payload['duration_ms'] == 1_200
    assert 'pathname' not in payload


def test_json_formatter_renders_exceptions():
    try:
        raise ValueError("bad reading")
    except ValueError:
        record = logging.LogRecord('x', logging.ERROR, __file__, 1, 'failed', (), sys.exc_info())

    payload = json.loads(JsonFormatter().format(record))
    assert 'ValueError: bad reading' in payload['exc']
