#!/usr/bin/env python3
# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
FairSlide - Main Application.
Runs the JSON API and keeps photo geolocation moving in the background.
"""

import argparse
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

# Initialize logging early
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)


def setup_file_logging(log_dir: str) -> None:
    """Set up file logging in addition to console."""
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_path / 'fairslide.log')
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logging.getLogger().addHandler(file_handler)


class FairSlide:
    """Main FairSlide service."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize FairSlide.

        Args:
            config_path: Path to configuration file.
        """
        self.config_path = config_path
        self.config = None
        self.store = None
        self.trigger = None
        self.web_thread = None
        self.geolocation_thread = None

        self._shutdown_event = threading.Event()

        # Set up signal handlers
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, initiating shutdown...")
        self.stop()

    def _load_config(self) -> bool:
        """Load configuration."""
        from .config import load_config, validate_config

        try:
            self.config = load_config(self.config_path)

            errors = validate_config(self.config)
            for error in errors:
                logger.warning(f"Config warning: {error}")

            logger.info(f"Configuration loaded from: {self.config.config_path or 'defaults'}")
            return True

        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            return False

    def _init_store(self) -> bool:
        """Initialize the index store and the geolocation trigger."""
        from .index_store import IndexStore
        from .trigger import EnrichmentTrigger

        try:
            self.store = IndexStore(self.config.storage.index_directory)
            logger.info(f"Index store initialized: {self.store.base_dir}")

            if self.config.geolocation.enabled:
                self.trigger = EnrichmentTrigger.from_config(self.config)
            else:
                logger.info("Geolocation disabled")
            return True

        except Exception as e:
            logger.error(f"Failed to initialize index store: {e}")
            return False

    def _start_web_server(self) -> None:
        """Start the web server in a background thread."""
        if not self.config.web.enabled:
            logger.info("Web interface disabled")
            return

        from .web.app import create_app

        def run_web():
            app = create_app(self.config, trigger=self.trigger, store=self.store)

            # Disable Flask's default logging for cleaner output
            logging.getLogger('werkzeug').setLevel(logging.WARNING)

            logger.info(f"Starting web server on {self.config.web.host}:{self.config.web.port}")

            try:
                app.run(
                    host=self.config.web.host,
                    port=self.config.web.port,
                    debug=False,
                    threaded=True,
                    use_reloader=False
                )
            except Exception as e:
                logger.error(f"Web server error: {e}")
                self.stop()

        self.web_thread = threading.Thread(target=run_web, daemon=True)
        self.web_thread.start()

    def _start_geolocation_thread(self) -> None:
        """Trigger a geolocation pass every interval while running."""
        if self.trigger is None:
            return

        interval = self.config.geolocation.interval_seconds

        def geolocation_loop():
            while not self._shutdown_event.is_set():
                try:
                    self.trigger.trigger(triggered_by="scheduler")
                except Exception as e:
                    logger.error(f"Geolocation trigger error: {e}")
                self._shutdown_event.wait(interval)

        self.geolocation_thread = threading.Thread(target=geolocation_loop, daemon=True)
        self.geolocation_thread.start()
        logger.info(f"Background geolocation every {interval}s")

    def run(self) -> int:
        """
        Run the service until stopped.

        Returns:
            Exit code (0 for success).
        """
        logger.info("Starting FairSlide...")

        if not self._load_config():
            return 1

        # Set up file logging if configured
        log_dir = os.environ.get('FAIRSLIDE_LOG_DIR', self.config.logging.directory)
        if log_dir:
            try:
                setup_file_logging(log_dir)
            except Exception as e:
                logger.warning(f"Could not set up file logging: {e}")

        if not self._init_store():
            return 1

        self._start_web_server()
        self._start_geolocation_thread()

        logger.info(f"FairSlide started with {len(self.config.playlists)} playlist(s)")

        self._shutdown_event.wait()

        logger.info("FairSlide stopped")
        return 0

    def stop(self) -> None:
        """Stop the service."""
        logger.info("Stopping FairSlide...")
        self._shutdown_event.set()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="FairSlide - Fair-rotation photo slideshow service",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '-c', '--config',
        help='Path to configuration file'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    parser.add_argument(
        '--version',
        action='store_true',
        help='Show version and exit'
    )

    args = parser.parse_args()

    if args.version:
        from . import __version__
        print(f"FairSlide {__version__}")
        return 0

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    app = FairSlide(config_path=args.config)
    return app.run()


if __name__ == "__main__":
    sys.exit(main())
