# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Next-photo selection for FairSlide.

Each request walks the rotation tiers: a playlist is chosen among the least
played playlists, then a folder among the playlist's least played folders,
and finally a set of least played pictures in that folder becomes the
session's candidate set. Pictures are then drawn from the candidate set,
one per request, until it runs out or the playlist's per-selection limit is
reached.
"""

import logging
import os
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import PlaylistConfig, SelectionConfig
from .fairness import eligible_candidates, pick, play_counts
from .index_store import IndexStore, LOCATION_FIELDS
from .metadata import MetadataExtractor, format_display_date
from .scanner import split_last
from .trigger import EnrichmentTrigger

logger = logging.getLogger(__name__)


class NoPhotosAvailable(Exception):
    """Raised when no photo can be selected."""


@dataclass
class SelectionSession:
    """Per-viewer selection state, carried between requests."""
    current_playlist: Optional[str] = None
    current_folder: Optional[str] = None
    current_folder_guid: Optional[str] = None
    remaining_candidates: List[str] = field(default_factory=list)
    displayed_count: int = 0
    last_scan_timestamp: Optional[float] = None
    config_mtime: Optional[float] = None

    def reset_playlist(self) -> None:
        """Forget the current playlist so the next request picks a new one."""
        self.current_playlist = None
        self.current_folder = None
        self.current_folder_guid = None
        self.remaining_candidates = []
        self.displayed_count = 0

    def to_dict(self) -> dict:
        return {
            "current_playlist": self.current_playlist,
            "current_folder": self.current_folder,
            "current_folder_guid": self.current_folder_guid,
            "remaining_candidates": list(self.remaining_candidates),
            "displayed_count": self.displayed_count,
            "last_scan_timestamp": self.last_scan_timestamp,
            "config_mtime": self.config_mtime,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectionSession":
        return cls(
            current_playlist=data.get("current_playlist"),
            current_folder=data.get("current_folder"),
            current_folder_guid=data.get("current_folder_guid"),
            remaining_candidates=list(data.get("remaining_candidates") or []),
            displayed_count=int(data.get("displayed_count", 0) or 0),
            last_scan_timestamp=data.get("last_scan_timestamp"),
            config_mtime=data.get("config_mtime"),
        )


@dataclass
class PhotoSelection:
    """The photo to show, with its display fields."""
    photo_path: str
    display_year: str
    display_month: str
    display_label: str
    geo: Dict[str, Optional[str]] = field(
        default_factory=lambda: {name: None for name in LOCATION_FIELDS}
    )

    def to_dict(self) -> dict:
        return {
            "photo_path": self.photo_path,
            "display_year": self.display_year,
            "display_month": self.display_month,
            "display_label": self.display_label,
            "geo": dict(self.geo),
        }


def display_label(playlist_name: str, folder_path: str) -> str:
    """
    Caption naming where a photo comes from: "<playlist> - <folder>".

    Only the playlist name is used when the folder name is empty or the same.
    """
    folder_name = split_last(folder_path.rstrip(os.sep), os.sep)
    if not folder_name or folder_name == playlist_name:
        return playlist_name
    return f"{playlist_name} - {folder_name}"


class SlideSelector:
    """
    Chooses the next photo to display.

    Selection never waits on the network: geolocation of newly indexed
    folders is handed to the enrichment trigger, which runs it in the
    background.
    """

    def __init__(
        self,
        store: IndexStore,
        settings: Optional[SelectionConfig] = None,
        trigger: Optional[EnrichmentTrigger] = None,
        extractor: Optional[MetadataExtractor] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the selector.

        Args:
            store: Index store holding the play counts.
            settings: Extension filter, exclusion and rescan settings.
            trigger: Background geolocation trigger. None disables enrichment.
            extractor: Reads capture dates from photos.
            rng: Random generator, for reproducible selection.
            clock: Time source.
        """
        self.store = store
        self.settings = settings or SelectionConfig()
        self.trigger = trigger
        self.extractor = extractor or MetadataExtractor()
        self._rng = rng or random.Random()
        self._clock = clock

    def select_next(
        self,
        playlists: Sequence[PlaylistConfig],
        session: Optional[SelectionSession] = None,
        config_mtime: Optional[float] = None
    ) -> Tuple[PhotoSelection, SelectionSession]:
        """
        Select the next photo.

        Args:
            playlists: Configured playlists.
            session: State from the previous request. Not modified.
            config_mtime: Modification time of the configuration file.

        Returns:
            Tuple of (selection, updated session).

        Raises:
            NoPhotosAvailable: If there is nothing to show.
        """
        session = SelectionSession.from_dict(session.to_dict()) if session else SelectionSession()

        if self._session_expired(session, config_mtime):
            logger.info("Selection session expired, rescanning")
            session = SelectionSession()
        session.config_mtime = config_mtime

        if not playlists:
            raise NoPhotosAvailable("No playlists configured")

        by_path = {playlist.path: playlist for playlist in playlists}
        if session.current_playlist is not None and session.current_playlist not in by_path:
            logger.info(f"Playlist no longer configured: {session.current_playlist}")
            session.reset_playlist()

        # A second round covers a candidate set made only of deleted files
        for _ in range(2):
            if session.current_playlist is None or not session.remaining_candidates:
                self._load_candidates(playlists, session)

            selection = self._pick_from_candidates(by_path[session.current_playlist], session)
            if selection is not None:
                return selection, session

            logger.warning(f"No displayable photo left in {session.current_folder}, rebuilding")
            session.reset_playlist()

        raise NoPhotosAvailable("Could not find any photo to display")

    def _session_expired(self, session: SelectionSession, config_mtime: Optional[float]) -> bool:
        rescan_minutes = self.settings.rescan_after_minutes
        if rescan_minutes > 0:
            if session.last_scan_timestamp is None:
                return False
            return self._clock() - session.last_scan_timestamp > rescan_minutes * 60

        return config_mtime is not None and session.config_mtime != config_mtime

    def _load_candidates(
        self,
        playlists: Sequence[PlaylistConfig],
        session: SelectionSession
    ) -> None:
        """Choose playlist and folder, and fill the session's candidate set."""
        session.reset_playlist()

        # Playlist tier
        playlist_records = self.store.sync_playlists(playlists)
        root_path = pick(play_counts(playlist_records), self._rng, label="playlist")
        self.store.increment_playlist(root_path)
        playlist = next(p for p in playlists if p.path == root_path)

        # Folder tier
        folder_index = self.store.build_folder_index(playlist)
        folder = pick(play_counts(folder_index.records), self._rng, label="folder")
        self.store.increment_folder(playlist, folder)
        guid = folder_index.records[folder].guid

        # Picture tier
        picture_index = self.store.build_picture_index(
            folder,
            guid,
            self.settings.photo_extensions,
            self.settings.exclude_text,
        )
        session.last_scan_timestamp = self._clock()

        if picture_index.picture_count == 0:
            session.reset_playlist()
            raise NoPhotosAvailable(f"Could not load any photos for playlist: {playlist.path}")

        if self.trigger is not None and (picture_index.created or picture_index.needs_geocoding):
            self.trigger.trigger(triggered_by="slideshow")

        session.current_playlist = playlist.path
        session.current_folder = folder
        session.current_folder_guid = guid
        session.remaining_candidates = eligible_candidates(play_counts(picture_index.records))

        logger.debug(
            f"Loaded {len(session.remaining_candidates)} candidate(s) of "
            f"{picture_index.picture_count} from {folder}"
        )

    def _pick_from_candidates(
        self,
        playlist: PlaylistConfig,
        session: SelectionSession
    ) -> Optional[PhotoSelection]:
        """Draw pictures from the candidate set until one can be shown."""
        while session.remaining_candidates:
            photo_path = self._rng.choice(session.remaining_candidates)
            session.remaining_candidates.remove(photo_path)

            if not os.path.exists(photo_path):
                logger.warning(f"Photo no longer exists, skipping: {photo_path}")
                continue

            record = self.store.increment_picture(session.current_folder_guid, photo_path)

            year, month = format_display_date(self.extractor.extract(photo_path).date_taken)
            selection = PhotoSelection(
                photo_path=photo_path,
                display_year=year,
                display_month=month,
                display_label=display_label(playlist.display_name, session.current_folder or ""),
            )
            if record is not None:
                selection.geo = record.geo

            session.displayed_count += 1
            limit = playlist.max_photos_per_select
            if limit is not None and session.displayed_count >= limit:
                session.remaining_candidates = []

            if not session.remaining_candidates:
                session.reset_playlist()

            logger.debug(f"Selected {photo_path}")
            return selection

        return None


def select_next(
    playlist_specs: Sequence[PlaylistConfig],
    base_dir: str,
    session: Optional[SelectionSession] = None,
    settings: Optional[SelectionConfig] = None,
    trigger: Optional[EnrichmentTrigger] = None
) -> Tuple[PhotoSelection, SelectionSession]:
    """
    Select the next photo using the indexes in base_dir.

    Args:
        playlist_specs: Configured playlists.
        base_dir: Directory holding the index files.
        session: State from the previous request.
        settings: Selection settings.
        trigger: Background geolocation trigger.

    Returns:
        Tuple of (selection, updated session).
    """
    selector = SlideSelector(IndexStore(base_dir), settings, trigger=trigger)
    return selector.select_next(playlist_specs, session)
