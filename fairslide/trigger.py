# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Background launch of geolocation enrichment.
A lock file in the index directory keeps passes from piling up: while it is
fresh, further triggers are ignored. The lock is never removed; it simply
goes stale.
"""

import json
import logging
import os
import threading
import time
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .config import FairSlideConfig
from .enrichment import GeocodeFunction, RunStats, process_all_index_files
from .geocoder import reverse_geocode
from .index_store import read_json_document

logger = logging.getLogger(__name__)

LOCK_FILE = "geolocation_processing.lock"
DEFAULT_STALE_SECONDS = 300


class EnrichmentTrigger:
    """Starts at most one enrichment pass per staleness window."""

    def __init__(
        self,
        base_dir: str,
        batch_size: int = 10,
        delay_ms: int = 2000,
        stale_after: int = DEFAULT_STALE_SECONDS,
        clock: Callable[[], float] = time.time,
        runner: Optional[Callable[[], Any]] = None,
        geocode: Optional[GeocodeFunction] = None
    ):
        """
        Initialize the trigger.

        Args:
            base_dir: Directory holding the index files and the lock.
            batch_size: Photos per index per pass.
            delay_ms: Pause between geocoding requests.
            stale_after: Seconds after which a lock no longer blocks.
            clock: Time source.
            runner: Work to run in the background. Defaults to one pass over
                every picture index.
            geocode: Reverse geocoder for the default runner.
        """
        self.base_dir = Path(os.path.expanduser(base_dir))
        self.batch_size = batch_size
        self.delay_ms = delay_ms
        self.stale_after = stale_after
        self._clock = clock
        self._runner = runner or self._run_pass
        self._geocode = geocode

        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config: FairSlideConfig) -> "EnrichmentTrigger":
        """Trigger configured from the storage and geolocation settings."""
        return cls(
            config.storage.index_directory,
            batch_size=config.geolocation.batch_size,
            delay_ms=config.geolocation.delay_ms,
            stale_after=config.geolocation.lock_stale_seconds,
            geocode=partial(reverse_geocode, user_agent=config.geolocation.user_agent),
        )

    @property
    def lock_path(self) -> Path:
        return self.base_dir / LOCK_FILE

    def lock_status(self) -> Optional[Dict[str, Any]]:
        """
        Current lock marker if it is still fresh.

        Returns:
            {"started_at", "triggered_by", "age_seconds"}, or None when there
            is no lock, it is unreadable, or it has gone stale.
        """
        marker = read_json_document(self.lock_path)
        if marker is None:
            return None

        try:
            started_at = float(marker["started_at"])
        except (KeyError, TypeError, ValueError):
            logger.debug(f"Ignoring malformed lock file {self.lock_path}")
            return None

        age = self._clock() - started_at
        if age >= self.stale_after:
            return None

        return {
            "started_at": started_at,
            "triggered_by": marker.get("triggered_by", ""),
            "age_seconds": round(age, 1),
        }

    def is_locked(self) -> bool:
        return self.lock_status() is not None

    def trigger(self, triggered_by: str = "slideshow") -> bool:
        """
        Start an enrichment pass in the background unless one is recent.

        Args:
            triggered_by: Who asked for the pass, recorded in the lock.

        Returns:
            True if a pass was started, False if the lock is held.
        """
        with self._lock:
            status = self.lock_status()
            if status is not None:
                logger.debug(
                    f"Geolocation already running (started {status['age_seconds']}s ago "
                    f"by {status['triggered_by']}), not triggering"
                )
                return False

            try:
                self.base_dir.mkdir(parents=True, exist_ok=True)
                with open(self.lock_path, 'w') as f:
                    json.dump({
                        "started_at": int(self._clock()),
                        "triggered_by": triggered_by,
                    }, f)
            except OSError as e:
                logger.error(f"Failed to write geolocation lock {self.lock_path}: {e}")
                return False

            self._thread = threading.Thread(
                target=self._run_safely,
                name="geolocation",
                daemon=True
            )
            self._thread.start()

        logger.info(f"Geolocation processing triggered by {triggered_by}")
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the last started pass. Returns True if it has finished."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _run_pass(self) -> RunStats:
        return process_all_index_files(
            str(self.base_dir), self.batch_size, self.delay_ms, geocode=self._geocode
        )

    def _run_safely(self) -> None:
        try:
            self._runner()
        except Exception as e:
            logger.error(f"Background geolocation failed: {e}", exc_info=True)
