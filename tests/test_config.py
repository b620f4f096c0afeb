# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Tests for configuration loading and validation.
"""

import os

import pytest
import yaml


def write_config(temp_dir, data):
    config_path = temp_dir / "config.yaml"
    with open(config_path, 'w') as f:
        yaml.dump(data, f)
    return config_path


class TestConfigValidation:
    """Test config validation logic."""

    def test_valid_config_passes(self, sample_config_yaml):
        """Valid config should load without errors."""
        from fairslide.config import load_config, validate_config

        config = load_config(str(sample_config_yaml))
        errors = validate_config(config)

        assert len(errors) == 0, f"Unexpected errors: {errors}"

    def test_no_playlists(self, temp_dir, sample_config_dict):
        """A config without playlists should produce an error."""
        from fairslide.config import load_config, validate_config

        sample_config_dict["playlists"] = []
        config = load_config(str(write_config(temp_dir, sample_config_dict)))

        assert any("No playlists" in e for e in validate_config(config))

    def test_duplicate_playlist_path(self, temp_dir, sample_config_dict):
        """The same root path configured twice should produce an error."""
        from fairslide.config import load_config, validate_config

        path = sample_config_dict["playlists"][0]["path"]
        sample_config_dict["playlists"].append({"path": path, "name": "Again"})
        config = load_config(str(write_config(temp_dir, sample_config_dict)))

        assert any("more than once" in e for e in validate_config(config))

    def test_invalid_max_photos_per_select(self, temp_dir, sample_config_dict):
        """max_photos_per_select below 1 should produce an error."""
        from fairslide.config import load_config, validate_config

        sample_config_dict["playlists"][0]["max_photos_per_select"] = 0
        config = load_config(str(write_config(temp_dir, sample_config_dict)))

        assert any("max_photos_per_select" in e for e in validate_config(config))

    def test_invalid_geolocation_batch_size(self, temp_dir, sample_config_dict):
        """batch_size below 1 should produce an error."""
        from fairslide.config import load_config, validate_config

        sample_config_dict["geolocation"]["batch_size"] = 0
        config = load_config(str(write_config(temp_dir, sample_config_dict)))

        assert any("batch_size" in e for e in validate_config(config))

    def test_negative_rescan(self, temp_dir, sample_config_dict):
        """Negative rescan interval should produce an error."""
        from fairslide.config import load_config, validate_config

        sample_config_dict["selection"]["rescan_after_minutes"] = -5
        config = load_config(str(write_config(temp_dir, sample_config_dict)))

        assert any("rescan_after_minutes" in e for e in validate_config(config))

    def test_invalid_port(self, temp_dir, sample_config_dict):
        """Port out of range should produce an error."""
        from fairslide.config import load_config, validate_config

        sample_config_dict["web"]["port"] = 70000
        config = load_config(str(write_config(temp_dir, sample_config_dict)))

        assert any("port" in e for e in validate_config(config))


class TestPlaylistParsing:
    """Test the playlist entry formats."""

    def test_named_playlist(self, sample_config_yaml, temp_dir):
        """Snake_case keys are read."""
        from fairslide.config import load_config

        config = load_config(str(sample_config_yaml))
        family = config.playlists[0]

        assert family.name == "Family"
        assert family.path == str(temp_dir / "photos")
        assert family.scan_sub_folders is True
        assert family.max_photos_per_select is None

    def test_hyphenated_keys(self, sample_config_yaml):
        """Hyphenated keys of older configs are read too."""
        from fairslide.config import load_config

        config = load_config(str(sample_config_yaml))

        assert config.playlists[1].max_photos_per_select == 3

    def test_unnamed_playlist_uses_basename(self, sample_config_yaml):
        """A playlist without a name is named after its folder."""
        from fairslide.config import load_config

        config = load_config(str(sample_config_yaml))

        assert config.playlists[1].name == ""
        assert config.playlists[1].display_name == "travel"

    def test_bare_path_entry(self, temp_dir):
        """A plain string is a playlist path."""
        from fairslide.config import load_config

        config_path = write_config(temp_dir, {"playlists": ["/srv/photos/Trips/"]})
        config = load_config(str(config_path))

        assert config.playlists[0].path == "/srv/photos/Trips/"
        assert config.playlists[0].display_name == "Trips"
        assert config.playlists[0].scan_sub_folders is False

    def test_legacy_playlist_key(self, temp_dir):
        """The singular "playlist" key is accepted."""
        from fairslide.config import load_config

        config_path = write_config(temp_dir, {"playlist": [{"path": "/srv/a", "name": "A"}]})
        config = load_config(str(config_path))

        assert [p.name for p in config.playlists] == ["A"]

    def test_invalid_entry_ignored(self, temp_dir):
        """Entries that are neither strings nor mappings are skipped."""
        from fairslide.config import load_config

        config_path = write_config(temp_dir, {"playlists": [42, "/srv/a"]})
        config = load_config(str(config_path))

        assert [p.path for p in config.playlists] == ["/srv/a"]


class TestConfigDefaults:
    """Test that config defaults are applied correctly."""

    def test_selection_defaults(self):
        """Selection config should have correct defaults."""
        from fairslide.config import SelectionConfig

        config = SelectionConfig()

        assert config.photo_extensions == ["jpg", "jpeg"]
        assert config.exclude_text == "SYNOPHOTO_THUMB"
        assert config.rescan_after_minutes == 30

    def test_geolocation_defaults(self):
        """Geolocation config should respect the Nominatim rate limit."""
        from fairslide.config import GeolocationConfig

        config = GeolocationConfig()

        assert config.enabled is True
        assert config.batch_size == 10
        assert config.delay_ms >= 1000
        assert config.lock_stale_seconds == 300
        assert config.user_agent

    def test_missing_file_uses_defaults(self, temp_dir):
        """A missing config file gives the defaults."""
        from fairslide.config import load_config

        config = load_config(str(temp_dir / "missing.yaml"))

        assert config.config_path is None
        assert config.playlists == []
        assert config.web.port == 8080

    def test_unknown_keys_ignored(self, temp_dir, sample_config_dict):
        """Unknown keys in a section should not break loading."""
        from fairslide.config import load_config

        sample_config_dict["selection"]["shuffle_mode"] = "wild"
        config = load_config(str(write_config(temp_dir, sample_config_dict)))

        assert config.selection.rescan_after_minutes == 30
        assert not hasattr(config.selection, "shuffle_mode")

    def test_index_directory_expanded(self, temp_dir):
        """~ in the index directory is expanded."""
        from fairslide.config import load_config

        config_path = write_config(temp_dir, {"storage": {"index_directory": "~/fairslide"}})
        config = load_config(str(config_path))

        assert config.storage.index_directory == os.path.expanduser("~/fairslide")


class TestConfigRoundTrip:
    """Test saving configuration."""

    def test_save_and_reload(self, sample_config_yaml, temp_dir):
        """Saved config reloads with the same values."""
        from fairslide.config import load_config, save_config

        config = load_config(str(sample_config_yaml))
        saved_path = save_config(config, str(temp_dir / "out" / "config.yaml"))
        reloaded = load_config(saved_path)

        assert reloaded.playlists == config.playlists
        assert reloaded.geolocation == config.geolocation

    def test_config_to_dict_skips_runtime_state(self, sample_config_yaml):
        """config_path is not serialized."""
        from fairslide.config import config_to_dict, load_config

        data = config_to_dict(load_config(str(sample_config_yaml)))

        assert "config_path" not in data
        assert data["playlists"][0]["name"] == "Family"

    def test_config_mtime(self, sample_config_yaml, temp_dir):
        """config_mtime reports the file time, or None."""
        from fairslide.config import config_mtime

        assert config_mtime(str(sample_config_yaml)) == pytest.approx(
            os.path.getmtime(sample_config_yaml)
        )
        assert config_mtime(str(temp_dir / "missing.yaml")) is None
        assert config_mtime(None) is None
