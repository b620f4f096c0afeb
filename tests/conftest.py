# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Pytest configuration and shared fixtures for FairSlide tests.
"""

import random
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from PIL import Image


def make_photo(path: Path, date_taken: str = None) -> Path:
    """Write a small JPEG, optionally with an EXIF DateTimeOriginal."""
    path.parent.mkdir(parents=True, exist_ok=True)
    img = Image.new("RGB", (8, 8), color=(120, 80, 40))
    if date_taken:
        exif = Image.Exif()
        exif[36867] = date_taken  # DateTimeOriginal
        img.save(path, "JPEG", exif=exif)
    else:
        img.save(path, "JPEG")
    return path


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def photo_factory():
    """Function writing a small JPEG at a path."""
    return make_photo


@pytest.fixture
def index_dir(temp_dir):
    """Directory for index documents."""
    path = temp_dir / "indexes"
    path.mkdir()
    return path


@pytest.fixture
def photo_tree(temp_dir):
    """
    A playlist root with two subfolders of photos.

    photos/
        Summer/  a.jpg b.jpg
        Winter/  c.jpg d.JPG
        @eaDir/  SYNOPHOTO_THUMB_a.jpg
    """
    root = temp_dir / "photos"
    for name in ("Summer/a.jpg", "Summer/b.jpg", "Winter/c.jpg", "Winter/d.JPG"):
        make_photo(root / name)
    make_photo(root / "@eaDir" / "SYNOPHOTO_THUMB_a.jpg")
    return root


@pytest.fixture
def rng():
    """Seeded random generator."""
    return random.Random(1234)


@pytest.fixture
def mock_trigger():
    """Enrichment trigger that never starts a thread."""
    trigger = MagicMock()
    trigger.trigger.return_value = True
    trigger.lock_status.return_value = None
    return trigger


@pytest.fixture
def sample_config_dict(temp_dir):
    """Return a minimal valid config dictionary."""
    return {
        "playlists": [
            {"name": "Family", "path": str(temp_dir / "photos"), "scan_sub_folders": True},
            {"path": str(temp_dir / "travel"), "max-photos-per-select": 3},
        ],
        "selection": {
            "photo_extensions": ["jpg", "jpeg"],
            "exclude_text": "SYNOPHOTO_THUMB",
            "rescan_after_minutes": 30
        },
        "geolocation": {
            "enabled": True,
            "batch_size": 5,
            "delay_ms": 1100,
            "interval_seconds": 120
        },
        "storage": {
            "index_directory": str(temp_dir / "indexes")
        },
        "web": {
            "enabled": False,
            "port": 8080,
            "host": "127.0.0.1"
        }
    }


@pytest.fixture
def sample_config_yaml(temp_dir, sample_config_dict):
    """Create a temporary config.yaml file."""
    import yaml
    config_path = temp_dir / "config.yaml"
    with open(config_path, 'w') as f:
        yaml.dump(sample_config_dict, f)
    return config_path
