# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Tests for the FairSlide service wiring.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest


@pytest.fixture
def service(sample_config_yaml):
    """Service instance without touching process signal handlers."""
    from fairslide.main import FairSlide

    with patch("fairslide.main.signal.signal"):
        return FairSlide(config_path=str(sample_config_yaml))


class TestFairSlideService:
    """Tests for service start-up steps."""

    def test_init_store_with_geolocation(self, service):
        assert service._load_config() is True
        assert service._init_store() is True

        assert str(service.store.base_dir) == service.config.storage.index_directory
        assert service.trigger is not None
        assert service.trigger.batch_size == 5

    def test_init_store_without_geolocation(self, service):
        service._load_config()
        service.config.geolocation.enabled = False

        assert service._init_store() is True
        assert service.trigger is None

    def test_scheduler_triggers_until_stopped(self, service):
        """The background loop asks the trigger for a pass, then exits on stop."""
        service._load_config()
        service.trigger = MagicMock()
        service.trigger.trigger.side_effect = lambda triggered_by: service.stop()

        service._start_geolocation_thread()
        service.geolocation_thread.join(5)

        assert not service.geolocation_thread.is_alive()
        service.trigger.trigger.assert_called_once_with(triggered_by="scheduler")


class TestFileLogging:
    """Tests for the log file handler."""

    def test_setup_file_logging(self, temp_dir):
        from fairslide.main import setup_file_logging

        root = logging.getLogger()
        before = list(root.handlers)
        try:
            setup_file_logging(str(temp_dir / "logs"))
            added = [h for h in root.handlers if h not in before]

            assert len(added) == 1
            assert (temp_dir / "logs" / "fairslide.log").exists()
        finally:
            for handler in root.handlers[:]:
                if handler not in before:
                    root.removeHandler(handler)
                    handler.close()
