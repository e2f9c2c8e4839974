#!/usr/bin/env python3
"""
Smart Signal - Main Entry Point

Starts the intersection controller with optional web UI.
"""

import sys
import time
import argparse
import logging

from smart_signal import SmartSignalApp
from smart_signal.core.events import EVENT_PHASE_CHANGE
from smart_signal.ui import WebUI
from smart_signal.utils import ConfigLoader, configure_logging

log = logging.getLogger("smart_signal.run")


def main():
    parser = argparse.ArgumentParser(
        description='Smart Signal Intersection Controller',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                         # Run with default config
  %(prog)s --no-web                # Run without web UI
  %(prog)s --config custom.json    # Use custom config file
  %(prog)s --log-level DEBUG       # Verbose logging
        """
    )

    parser.add_argument('--config', default='config.json',
                        help='Configuration file path (default: config.json)')
    parser.add_argument('--no-web', action='store_true',
                        help='Disable web UI')
    parser.add_argument('--web-port', type=int, default=None,
                        help='Web UI port (default: web_ui.port from config)')
    parser.add_argument('--log-level', default=None,
                        help='Log level (default: logging.level from config)')

    args = parser.parse_args()

    loader = ConfigLoader(args.config)
    configure_logging(
        level=args.log_level or loader.get('logging.level', 'INFO'),
        json_lines=loader.get('logging.json', True),
    )

    app = None
    web_ui = None
    try:
        # Create and start application
        app = SmartSignalApp(config_loader=loader)
        app.start()

        # Start web UI if enabled
        if not args.no_web and loader.get('web_ui.enabled', True):
            web_ui = WebUI(
                app,
                host=loader.get('web_ui.host', '0.0.0.0'),
                port=args.web_port or loader.get('web_ui.port', 5000),
            )
            web_ui.start()

        app.on(EVENT_PHASE_CHANGE, lambda record: log.debug("Phase change", extra=record.to_dict()))

        log.info("Running, press Ctrl+C to stop")

        # Keep running
        while True:
            time.sleep(1)

    except KeyboardInterrupt:
        log.info("Shutting down")
        if app:
            app.stop()
        if web_ui:
            web_ui.stop()
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)


if __name__ == '__main__':
    main()
