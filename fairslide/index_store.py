# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Index store for FairSlide.
Reads and writes the play-count index documents that drive fair rotation:

- playlists_index.json                 root path   -> playlist record
- playlist-<name>-index.json           folder path -> folder record (play count, GUID)
- folderpics-<GUID>-index.json         photo path  -> picture record (play count, geodata)

Every mutation is a full read-modify-write of one JSON document. Writes are
atomic within a process; across processes the last writer wins.
"""

import json
import logging
import os
import re
import threading
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .config import PlaylistConfig
from .scanner import list_files, playlist_folders

logger = logging.getLogger(__name__)

PLAYLISTS_INDEX_FILE = "playlists_index.json"
FOLDER_INDEX_TEMPLATE = "playlist-{name}-index.json"
PICTURE_INDEX_TEMPLATE = "folderpics-{guid}-index.json"
PICTURE_INDEX_GLOB = "folderpics-*-index.json"

# Document kinds
KIND_PLAYLISTS = "playlists"
KIND_FOLDERS = "folders"
KIND_PICTURES = "pictures"

LOCATION_FIELDS = ("country", "village", "town", "city")

_UUID4_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$"
)

# Serializes read-modify-write cycles on index documents within this process.
# Shared by every IndexStore and by the enrichment pass.
DOCUMENT_LOCK = threading.RLock()


class GeocodeStatus(Enum):
    """Geolocation progress of a picture record."""
    NOT_PROCESSED = "not_processed"
    NO_GPS_DATA = "no_gps_data"
    COMPLETED = "completed"


def sanitize_playlist_name(name: str) -> str:
    """
    Make a playlist name safe for use in a file name.

    Runs of characters other than letters, digits, "_" and "-" collapse into a
    single underscore; leading and trailing underscores are dropped.
    """
    return re.sub(r"[^A-Za-z0-9_-]+", "_", name).strip("_")


@dataclass
class PlaylistIndexRecord:
    """Play count of one configured playlist."""
    name: str
    root_path: str
    play_count: int = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "root_path": self.root_path,
            "play_count": self.play_count,
        }

    @classmethod
    def from_dict(cls, root_path: str, data: dict) -> "PlaylistIndexRecord":
        return cls(
            name=data.get("name", ""),
            root_path=data.get("root_path", root_path),
            play_count=int(data.get("play_count", 0) or 0),
        )


@dataclass
class FolderIndexRecord:
    """Play count and stable GUID of one folder in a playlist."""
    path: str
    guid: str
    play_count: int = 0

    def to_dict(self) -> dict:
        return {
            "play_count": self.play_count,
            "guid": self.guid,
        }

    @classmethod
    def from_dict(cls, path: str, data: dict) -> "FolderIndexRecord":
        return cls(
            path=path,
            guid=data.get("guid", ""),
            play_count=int(data.get("play_count", 0) or 0),
        )


@dataclass
class PictureIndexRecord:
    """Play count and geolocation data of one photo."""
    path: str
    play_count: int = 0
    gps_lat: Optional[float] = None
    gps_lon: Optional[float] = None
    country: Optional[str] = None
    village: Optional[str] = None
    town: Optional[str] = None
    city: Optional[str] = None
    geocode_status: Optional[GeocodeStatus] = None
    geocode_timestamp: Optional[int] = None
    # Geocoded before village/town were tracked; needs another pass
    legacy_location: bool = False

    @property
    def needs_geocoding(self) -> bool:
        if self.geocode_status is GeocodeStatus.NO_GPS_DATA:
            return False
        if self.geocode_status is GeocodeStatus.COMPLETED and not self.legacy_location:
            return False
        return True

    @property
    def geo(self) -> Dict[str, Optional[str]]:
        """Place names for display."""
        return {name: getattr(self, name) for name in LOCATION_FIELDS}

    def apply_location(self, location: Dict[str, Any]) -> None:
        """Merge the output of a geolocation pass into this record."""
        for key in ("gps_lat", "gps_lon") + LOCATION_FIELDS:
            if key in location:
                setattr(self, key, location[key])

        status = location.get("geocode_status")
        if status is not None:
            self.geocode_status = GeocodeStatus(status)
        if location.get("geocode_timestamp") is not None:
            self.geocode_timestamp = int(location["geocode_timestamp"])
        self.legacy_location = False

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {"play_count": self.play_count}
        processed = self.geocode_status is not None

        for key in ("gps_lat", "gps_lon") + LOCATION_FIELDS:
            if self.legacy_location and key in ("village", "town"):
                continue
            value = getattr(self, key)
            if value is not None or processed:
                data[key] = value

        if processed:
            data["geocode_status"] = self.geocode_status.value
        if self.geocode_timestamp is not None:
            data["geocode_timestamp"] = self.geocode_timestamp
        return data

    @classmethod
    def from_dict(cls, path: str, data: dict) -> "PictureIndexRecord":
        status = None
        raw_status = data.get("geocode_status")
        if raw_status is not None:
            try:
                status = GeocodeStatus(raw_status)
            except ValueError:
                logger.debug(f"Unknown geocode status {raw_status!r} for {path}")

        return cls(
            path=path,
            play_count=int(data.get("play_count", 0) or 0),
            gps_lat=data.get("gps_lat"),
            gps_lon=data.get("gps_lon"),
            country=data.get("country"),
            village=data.get("village"),
            town=data.get("town"),
            city=data.get("city"),
            geocode_status=status,
            geocode_timestamp=data.get("geocode_timestamp"),
            legacy_location=(
                status is GeocodeStatus.COMPLETED and "village" not in data
            ),
        )


@dataclass
class FolderIndexResult:
    """Outcome of rebuilding a playlist's folder index."""
    file_path: str
    file_name: str
    folder_count: int
    records: Dict[str, FolderIndexRecord] = field(default_factory=dict)


@dataclass
class PictureIndexResult:
    """Outcome of rebuilding a folder's picture index."""
    file_path: str
    file_name: str
    picture_count: int
    changes_detected: bool
    created: bool
    records: Dict[str, PictureIndexRecord] = field(default_factory=dict)

    @property
    def needs_geocoding(self) -> bool:
        return any(record.needs_geocoding for record in self.records.values())


def read_json_document(path: Path) -> Optional[Dict[str, Any]]:
    """
    Read a JSON object from disk.

    Returns:
        The decoded object, or None when the file is missing, unreadable,
        not valid JSON, or not a JSON object.
    """
    path = Path(path)
    if not path.exists():
        return None

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to read index document {path.name}: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"Index document {path.name} is not a JSON object, ignoring")
        return None
    return data


def write_json_document(path: Path, document: Dict[str, Any]) -> None:
    """Write a JSON object pretty-printed, replacing the target atomically.

    Writes to a temp file first, then renames to prevent corruption
    if the write is interrupted.
    """
    path = Path(path)
    temp_path = str(path) + f'.{os.getpid()}.{threading.get_ident()}.tmp'
    try:
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=4, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)


def find_picture_index_files(base_dir: str) -> List[Path]:
    """All folder picture index files in a base directory, sorted by name."""
    base = Path(base_dir)
    if not base.is_dir():
        return []
    return sorted(base.glob(PICTURE_INDEX_GLOB))


class IndexStore:
    """
    Persistent play-count indexes for the three rotation tiers.

    All documents live in one base directory. A missing or corrupt document
    reads as empty, which callers treat as "first time seen".
    """

    def __init__(self, base_dir: str):
        """
        Initialize the index store.

        Args:
            base_dir: Directory holding the index documents.
        """
        self.base_dir = Path(os.path.expanduser(base_dir))
        self.base_dir.mkdir(parents=True, exist_ok=True)

        self._lock = DOCUMENT_LOCK

    # Documents

    def path_for(self, kind: str, key: Optional[str] = None) -> Path:
        """File path of a document: key is the playlist name or folder GUID."""
        if kind == KIND_PLAYLISTS:
            return self.base_dir / PLAYLISTS_INDEX_FILE
        if kind == KIND_FOLDERS:
            return self.base_dir / FOLDER_INDEX_TEMPLATE.format(
                name=sanitize_playlist_name(key or "")
            )
        if kind == KIND_PICTURES:
            return self.base_dir / PICTURE_INDEX_TEMPLATE.format(guid=key)
        raise ValueError(f"Unknown index kind: {kind}")

    def load_document(self, kind: str, key: Optional[str] = None) -> Dict[str, Any]:
        """Load a document, or an empty one if absent or invalid."""
        with self._lock:
            return read_json_document(self.path_for(kind, key)) or {}

    def save_document(self, kind: str, key: Optional[str], document: Dict[str, Any]) -> None:
        """Replace a document on disk."""
        with self._lock:
            write_json_document(self.path_for(kind, key), document)

    # Playlist tier

    def load_playlists(self) -> Dict[str, PlaylistIndexRecord]:
        document = self.load_document(KIND_PLAYLISTS)
        return {
            root: PlaylistIndexRecord.from_dict(root, data)
            for root, data in document.items()
            if isinstance(data, dict)
        }

    def sync_playlists(self, playlists: Iterable[PlaylistConfig]) -> Dict[str, PlaylistIndexRecord]:
        """
        Align the playlist index with the configured playlists.

        Existing playlists keep their play counts, new ones start at zero,
        and playlists no longer configured are purged.

        Returns:
            Records keyed by playlist root path, in configuration order.
        """
        with self._lock:
            existing = self.load_playlists()
            records: Dict[str, PlaylistIndexRecord] = {}

            for playlist in playlists:
                previous = existing.get(playlist.path)
                records[playlist.path] = PlaylistIndexRecord(
                    name=playlist.display_name,
                    root_path=playlist.path,
                    play_count=previous.play_count if previous else 0,
                )

            purged = set(existing) - set(records)
            if purged:
                logger.info(f"Purged {len(purged)} playlist(s) no longer configured: {sorted(purged)}")

            if records != existing:
                self.save_document(
                    KIND_PLAYLISTS, None,
                    {root: record.to_dict() for root, record in records.items()}
                )
            return records

    def increment_playlist(self, root_path: str) -> Optional[int]:
        """Add one to a playlist's play count. Returns the new count."""
        with self._lock:
            document = self.load_document(KIND_PLAYLISTS)
            data = document.get(root_path)
            if not isinstance(data, dict):
                logger.warning(f"Playlist not in index, cannot count play: {root_path}")
                return None

            record = PlaylistIndexRecord.from_dict(root_path, data)
            record.play_count += 1
            document[root_path] = record.to_dict()
            self.save_document(KIND_PLAYLISTS, None, document)
            return record.play_count

    # Folder tier

    def load_folders(self, playlist: PlaylistConfig) -> Dict[str, FolderIndexRecord]:
        document = self.load_document(KIND_FOLDERS, playlist.display_name)
        return {
            path: FolderIndexRecord.from_dict(path, data)
            for path, data in document.items()
            if isinstance(data, dict)
        }

    def build_folder_index(self, playlist: PlaylistConfig) -> FolderIndexResult:
        """
        Rebuild a playlist's folder index from the filesystem.

        Folders keep their GUID and play count for as long as their path
        exists; new folders get a fresh UUID4 and vanished folders are dropped.
        """
        with self._lock:
            existing = self.load_folders(playlist)
            records: Dict[str, FolderIndexRecord] = {}

            for folder in playlist_folders(playlist):
                previous = existing.get(folder)
                if previous and _UUID4_PATTERN.match(previous.guid):
                    records[folder] = previous
                else:
                    records[folder] = FolderIndexRecord(
                        path=folder,
                        guid=str(uuid.uuid4()),
                        play_count=previous.play_count if previous else 0,
                    )

            added = set(records) - set(existing)
            removed = set(existing) - set(records)
            if added or removed:
                logger.info(
                    f"Folder index for {playlist.display_name}: "
                    f"{len(records)} folders ({len(added)} new, {len(removed)} removed)"
                )

            file_path = self.path_for(KIND_FOLDERS, playlist.display_name)
            if records != existing or not file_path.exists():
                self.save_document(
                    KIND_FOLDERS, playlist.display_name,
                    {path: record.to_dict() for path, record in records.items()}
                )

            return FolderIndexResult(
                file_path=str(file_path),
                file_name=file_path.name,
                folder_count=len(records),
                records=records,
            )

    def increment_folder(self, playlist: PlaylistConfig, folder_path: str) -> Optional[int]:
        """Add one to a folder's play count. Returns the new count."""
        with self._lock:
            document = self.load_document(KIND_FOLDERS, playlist.display_name)
            data = document.get(folder_path)
            if not isinstance(data, dict):
                logger.warning(f"Folder not in index, cannot count play: {folder_path}")
                return None

            record = FolderIndexRecord.from_dict(folder_path, data)
            record.play_count += 1
            document[folder_path] = record.to_dict()
            self.save_document(KIND_FOLDERS, playlist.display_name, document)
            return record.play_count

    def folder_guid(self, playlist: PlaylistConfig, folder_path: str) -> Optional[str]:
        record = self.load_folders(playlist).get(folder_path)
        return record.guid if record else None

    # Picture tier

    def load_pictures(self, guid: str) -> Dict[str, PictureIndexRecord]:
        document = self.load_document(KIND_PICTURES, guid)
        return {
            path: PictureIndexRecord.from_dict(path, data)
            for path, data in document.items()
            if isinstance(data, dict)
        }

    def save_pictures(self, guid: str, records: Dict[str, PictureIndexRecord]) -> None:
        self.save_document(
            KIND_PICTURES, guid,
            {path: record.to_dict() for path, record in records.items()}
        )

    def build_picture_index(
        self,
        folder_path: str,
        guid: str,
        extensions: Iterable[str],
        exclude_text: str = "",
        recursive: bool = True
    ) -> PictureIndexResult:
        """
        Rebuild a folder's picture index from the filesystem.

        If the set of pictures differs from the stored index, every play
        count resets to zero; geolocation data is kept for pictures that are
        still present. The first build of a folder never reports changes.

        Args:
            folder_path: Folder to scan.
            guid: GUID of the folder, naming the index document.
            extensions: Photo file extensions to include.
            exclude_text: Skip files whose path contains this text.
            recursive: Include photos in nested subdirectories.

        Returns:
            PictureIndexResult with the rebuilt records.
        """
        with self._lock:
            pictures = list_files(folder_path, extensions, exclude_text, recursive)
            file_path = self.path_for(KIND_PICTURES, guid)

            existing = self.load_pictures(guid)
            created = not existing
            changes_detected = not created and set(existing) != set(pictures)

            if changes_detected:
                logger.info(
                    f"Pictures changed in {folder_path} "
                    f"({len(existing)} -> {len(pictures)}), resetting play counts"
                )

            records: Dict[str, PictureIndexRecord] = {}
            for picture in pictures:
                previous = existing.get(picture)
                if previous is None:
                    records[picture] = PictureIndexRecord(path=picture)
                elif changes_detected:
                    records[picture] = replace(previous, play_count=0)
                else:
                    records[picture] = previous

            if created or changes_detected or not file_path.exists():
                self.save_pictures(guid, records)

            return PictureIndexResult(
                file_path=str(file_path),
                file_name=file_path.name,
                picture_count=len(records),
                changes_detected=changes_detected,
                created=created,
                records=records,
            )

    def increment_picture(self, guid: str, picture_path: str) -> Optional[PictureIndexRecord]:
        """Add one to a picture's play count. Returns the updated record."""
        with self._lock:
            records = self.load_pictures(guid)
            record = records.get(picture_path)
            if record is None:
                logger.warning(f"Picture not in index, cannot count play: {picture_path}")
                return None

            record.play_count += 1
            self.save_pictures(guid, records)
            return record

    def find_picture_index_files(self) -> List[Path]:
        return find_picture_index_files(str(self.base_dir))
