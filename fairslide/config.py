# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Configuration management for FairSlide.
Handles loading, validation, and defaults for all settings.
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_CONFIG_PATHS = [
    "/etc/fairslide/config.yaml",
    os.path.expanduser("~/.config/fairslide/config.yaml"),
    "./config.yaml",
]


@dataclass
class PlaylistConfig:
    """Configuration for a single playlist (a root folder of photos)."""
    path: str
    name: str = ""
    scan_sub_folders: bool = False
    max_photos_per_select: Optional[int] = None

    @property
    def display_name(self) -> str:
        """Configured name, or the basename of the root path when unnamed."""
        if self.name:
            return self.name
        return os.path.basename(os.path.normpath(self.path))


@dataclass
class SelectionConfig:
    """Photo selection settings."""
    photo_extensions: List[str] = field(default_factory=lambda: ["jpg", "jpeg"])
    exclude_text: str = "SYNOPHOTO_THUMB"  # Synology thumbnail files
    rescan_after_minutes: int = 30  # 0 = rescan only when the config file changes


@dataclass
class GeolocationConfig:
    """Background reverse geocoding settings."""
    enabled: bool = True
    batch_size: int = 10
    delay_ms: int = 2000  # Nominatim allows at most 1 request per second
    interval_seconds: int = 60
    user_agent: str = "fairslide/1.0 (photo slideshow geolocation)"
    lock_stale_seconds: int = 300


@dataclass
class StorageConfig:
    """Where index documents and the enrichment lock are kept."""
    index_directory: str = "/var/lib/fairslide"


@dataclass
class WebConfig:
    """Web API settings."""
    enabled: bool = True
    port: int = 8080
    host: str = "0.0.0.0"
    secret_key: str = ""  # Random per process when empty


@dataclass
class LoggingConfig:
    """Logging settings."""
    directory: str = ""  # Console only when empty


@dataclass
class FairSlideConfig:
    """Main configuration class."""
    playlists: List[PlaylistConfig] = field(default_factory=list)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    geolocation: GeolocationConfig = field(default_factory=GeolocationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Runtime state (not persisted)
    config_path: Optional[str] = None


def _dict_to_dataclass(data: Dict[str, Any], cls: type) -> Any:
    """Convert a dictionary to a dataclass instance, ignoring unknown keys."""
    if data is None:
        return cls()

    field_names = set(cls.__dataclass_fields__)
    kwargs = {key: value for key, value in data.items() if key in field_names}
    return cls(**kwargs)


def _parse_playlist(entry: Any) -> Optional[PlaylistConfig]:
    """
    Parse one playlist entry.

    Accepts a bare path string, or a mapping using either snake_case keys or
    the hyphenated keys of older slideshow configs ("scan-sub-folders").
    """
    if isinstance(entry, str):
        return PlaylistConfig(path=os.path.expanduser(entry))

    if not isinstance(entry, dict):
        logger.warning(f"Ignoring invalid playlist entry: {entry!r}")
        return None

    def get(key: str, default: Any = None) -> Any:
        if key in entry:
            return entry[key]
        return entry.get(key.replace('_', '-'), default)

    max_photos = get('max_photos_per_select')
    return PlaylistConfig(
        path=os.path.expanduser(str(get('path', ''))),
        name=get('name', '') or '',
        scan_sub_folders=bool(get('scan_sub_folders', False)),
        max_photos_per_select=int(max_photos) if max_photos is not None else None,
    )


def load_config(config_path: Optional[str] = None) -> FairSlideConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to config file. If None, searches default locations.

    Returns:
        FairSlideConfig instance with loaded or default values.
    """
    # Find config file
    if config_path:
        paths_to_try = [config_path]
    else:
        paths_to_try = DEFAULT_CONFIG_PATHS

    config_data = {}
    found_path = None

    for path in paths_to_try:
        expanded_path = os.path.expanduser(path)
        if os.path.exists(expanded_path):
            try:
                with open(expanded_path, 'r') as f:
                    config_data = yaml.safe_load(f) or {}
                found_path = expanded_path
                logger.info(f"Loaded config from {expanded_path}")
                break
            except Exception as e:
                logger.warning(f"Failed to load config from {expanded_path}: {e}")

    if not found_path:
        logger.info("No config file found, using defaults")

    # Parse playlists ("playlist" is the key older configs used)
    playlists = []
    for entry in config_data.get('playlists', config_data.get('playlist', [])) or []:
        playlist = _parse_playlist(entry)
        if playlist is not None:
            playlists.append(playlist)

    config = FairSlideConfig(
        playlists=playlists,
        selection=_dict_to_dataclass(config_data.get('selection'), SelectionConfig),
        geolocation=_dict_to_dataclass(config_data.get('geolocation'), GeolocationConfig),
        storage=_dict_to_dataclass(config_data.get('storage'), StorageConfig),
        web=_dict_to_dataclass(config_data.get('web'), WebConfig),
        logging=_dict_to_dataclass(config_data.get('logging'), LoggingConfig),
        config_path=found_path,
    )

    # Expand directory paths
    config.storage.index_directory = os.path.expanduser(config.storage.index_directory)
    if config.logging.directory:
        config.logging.directory = os.path.expanduser(config.logging.directory)

    return config


def save_config(config: FairSlideConfig, config_path: Optional[str] = None) -> str:
    """
    Save configuration to a YAML file.

    Args:
        config: Configuration to save.
        config_path: Path to save to. If None, uses config.config_path or default.

    Returns:
        Path where config was saved.
    """
    if config_path is None:
        config_path = config.config_path or DEFAULT_CONFIG_PATHS[0]

    config_path = os.path.expanduser(config_path)

    # Ensure directory exists
    os.makedirs(os.path.dirname(os.path.abspath(config_path)), exist_ok=True)

    data = config_to_dict(config)

    with open(config_path, 'w') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    logger.info(f"Saved config to {config_path}")
    return config_path


def config_to_dict(config: FairSlideConfig) -> Dict[str, Any]:
    """Convert config to dictionary for serialization."""
    def dataclass_to_dict(obj: Any) -> Any:
        if hasattr(obj, '__dataclass_fields__'):
            result = {}
            for field_name in obj.__dataclass_fields__:
                if field_name == 'config_path':
                    continue  # Skip runtime state
                value = getattr(obj, field_name)
                result[field_name] = dataclass_to_dict(value)
            return result
        elif isinstance(obj, list):
            return [dataclass_to_dict(item) for item in obj]
        elif isinstance(obj, dict):
            return {k: dataclass_to_dict(v) for k, v in obj.items()}
        else:
            return obj

    return dataclass_to_dict(config)


def config_mtime(config_path: Optional[str]) -> Optional[float]:
    """Return the modification time of the config file, or None if unavailable."""
    if not config_path:
        return None
    try:
        return Path(config_path).stat().st_mtime
    except OSError:
        return None


def validate_config(config: FairSlideConfig) -> List[str]:
    """
    Validate configuration and return list of errors.

    Returns:
        List of error messages. Empty if valid.
    """
    errors = []

    # Check playlists
    if not config.playlists:
        errors.append("No playlists configured. Add at least one playlist path.")

    seen_paths = set()
    for i, playlist in enumerate(config.playlists):
        if not playlist.path:
            errors.append(f"Playlist {i+1} has no path.")
            continue
        if playlist.path in seen_paths:
            errors.append(f"Playlist {i+1} path is configured more than once: {playlist.path}")
        seen_paths.add(playlist.path)
        if playlist.max_photos_per_select is not None and playlist.max_photos_per_select < 1:
            errors.append(f"Playlist {i+1} max_photos_per_select must be at least 1")

    # Check selection settings
    if not config.selection.photo_extensions:
        errors.append("At least one photo extension must be configured")

    if config.selection.rescan_after_minutes < 0:
        errors.append("rescan_after_minutes must be 0 or greater")

    # Check geolocation settings
    if config.geolocation.batch_size < 1:
        errors.append("Geolocation batch_size must be at least 1")

    if config.geolocation.delay_ms < 0:
        errors.append("Geolocation delay_ms must be 0 or greater")

    if config.geolocation.interval_seconds < 1:
        errors.append("Geolocation interval_seconds must be at least 1")

    if config.geolocation.lock_stale_seconds < 1:
        errors.append("Geolocation lock_stale_seconds must be at least 1")

    if not config.geolocation.user_agent:
        errors.append("Geolocation user_agent is required by the Nominatim usage policy")

    # Check storage settings
    if not config.storage.index_directory:
        errors.append("Storage index_directory must be set")

    # Check web settings
    if config.web.port < 1 or config.web.port > 65535:
        errors.append("Web port must be between 1 and 65535")

    return errors
