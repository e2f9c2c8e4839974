#!/usr/bin/env python3
"""
Example Usage Script - Smart Signal

This script demonstrates common usage patterns for the Smart Signal controller.
"""

import sys
import time
from datetime import datetime

from smart_signal import SmartSignalApp, TrafficController, ControllerConfig
from smart_signal.core import LanePhase


def example_1_offline_replay():
    """Example 1: Replay a recorded sensor sequence without any threads."""
    print("\n" + "="*60)
    print("EXAMPLE 1: Offline Replay")
    print("="*60)

    config = ControllerConfig(min_green_ms=1_000, max_green_ms=2_000, yellow_ms=500, max_red_ms=3_000)
    start = 0
    controller = TrafficController(config, now=start)

    # (offset ms, sensor readings) as captured from a field device
    recording = [
        (100, {'sensor3': 10}),
        (2_000, {'sensor4': 12}),
        (2_200, {'sensor3': 999, 'sensor4': 12}),
    ]

    controller.on('phase_change', lambda record: print(f"  t={record.ended_at:>5} {record}"))

    for offset in range(0, 5_001, 100):
        for when, readings in recording:
            if when == offset:
                controller.ingest('recording', readings, processed_at=start + offset)
        controller.tick(start + offset)

    state = controller.get_state(start + 5_000)
    print(f"\nGreen lane after replay: {state.green_lane()}, queue: {state.queue}")


def example_2_live_phase_log():
    """Example 2: Run the full application and log every phase change."""
    print("\n" + "="*60)
    print("EXAMPLE 2: Live Phase Log")
    print("="*60)

    app = SmartSignalApp('config.json')
    app.start()

    def log_phase_change(record):
        timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
        print(f"[{timestamp}] {record}")

    app.on('phase_change', log_phase_change)

    print("\nLogging phase changes. Press Ctrl+C to stop.")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n\nStopping...")
        app.stop()


def example_3_green_time_report():
    """Example 3: Print mean green and red times from the event store."""
    print("\n" + "="*60)
    print("EXAMPLE 3: Green Time Report")
    print("="*60)

    app = SmartSignalApp('config.json')
    store = app.get_event_store()
    if store is None:
        print("Event storage is disabled in config.json")
        return

    rows = store.fetch_lane_durations(app.intersection_id)
    if not rows:
        print("No phase history recorded yet")

    for row in rows:
        print(f"  {row['lane_key']:<8} green {row['green_ms'] / 1000:6.1f}s   red {row['red_ms'] / 1000:6.1f}s")

    store.close()


def example_4_waiting_lanes():
    """Example 4: Poll the state and report lanes waiting for green."""
    print("\n" + "="*60)
    print("EXAMPLE 4: Waiting Lanes")
    print("="*60)

    app = SmartSignalApp('config.json')
    app.start()

    try:
        while True:
            state = app.get_state()
            waiting = [lane.lane_id for lane in state.lanes if lane.waiting]
            green = [lane.lane_id for lane in state.lanes if lane.phase == LanePhase.GREEN]
            print(f"green={green} waiting={waiting}")
            time.sleep(1)
    except KeyboardInterrupt:
        app.stop()


EXAMPLES = {
    '1': example_1_offline_replay,
    '2': example_2_live_phase_log,
    '3': example_3_green_time_report,
    '4': example_4_waiting_lanes,
}


if __name__ == '__main__':
    choice = sys.argv[1] if len(sys.argv) > 1 else '1'
    if choice not in EXAMPLES:
        print(f"Usage: {sys.argv[0]} [{'|'.join(EXAMPLES)}]")
        sys.exit(1)
    EXAMPLES[choice]()
