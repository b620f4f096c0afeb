# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Filesystem scanning for FairSlide.
Lists photo files and subfolders of a playlist, skipping hidden entries and
reserved system directories such as Synology's @eaDir thumbnails.
"""

import logging
import os
from typing import Iterable, List, Optional, Set

from .config import PlaylistConfig

logger = logging.getLogger(__name__)

# Directories created by NAS indexers that never contain user photos
RESERVED_DIRECTORIES = {"@eaDir", "#recycle", "#snapshot"}


def _is_skipped(name: str) -> bool:
    """Hidden entries and reserved system directories are never scanned."""
    return name.startswith('.') or name in RESERVED_DIRECTORIES


def _normalize_extensions(extensions: Optional[Iterable[str]]) -> Set[str]:
    """Lower-case extensions with a leading dot ("JPG" -> ".jpg")."""
    if not extensions:
        return set()
    return {
        ext.lower() if ext.startswith('.') else f".{ext.lower()}"
        for ext in extensions
    }


def list_files(
    directory: str,
    extensions: Optional[Iterable[str]] = None,
    exclude_text: str = "",
    recursive: bool = True
) -> List[str]:
    """
    List files below a directory.

    Args:
        directory: Directory to scan.
        extensions: Allowed extensions (case-insensitive). None allows all.
        exclude_text: Files whose path contains this text (case-insensitive)
            are left out. Empty disables the filter.
        recursive: Descend into subdirectories.

    Returns:
        Sorted list of absolute file paths.
    """
    results: List[str] = []
    root = os.path.abspath(os.path.expanduser(directory))

    if not os.path.isdir(root):
        logger.warning(f"Directory does not exist: {directory}")
        return results

    allowed = _normalize_extensions(extensions)
    excluded = exclude_text.lower() if exclude_text else ""

    # Track visited inodes to avoid infinite loops from symlinks
    visited_inodes: Set[int] = set()

    def scan_dir(dir_path: str) -> None:
        """Scan one directory, recursing when requested."""
        try:
            try:
                stat_info = os.stat(dir_path)
                if stat_info.st_ino in visited_inodes:
                    logger.debug(f"Skipping already-visited directory (symlink loop): {dir_path}")
                    return
                visited_inodes.add(stat_info.st_ino)
            except OSError:
                return

            entries = os.listdir(dir_path)
        except PermissionError:
            logger.warning(f"Permission denied accessing directory: {dir_path}")
            return
        except OSError as e:
            logger.warning(f"Error accessing directory {dir_path}: {e}")
            return

        for entry in entries:
            if _is_skipped(entry):
                continue

            full_path = os.path.join(dir_path, entry)

            try:
                if os.path.isdir(full_path):
                    if recursive:
                        scan_dir(full_path)
                elif os.path.isfile(full_path):
                    if allowed and os.path.splitext(entry)[1].lower() not in allowed:
                        continue
                    if excluded and excluded in full_path.lower():
                        continue
                    results.append(full_path)
            except OSError as e:
                logger.warning(f"Error accessing {full_path}: {e}")

    scan_dir(root)
    results.sort()
    logger.debug(f"Found {len(results)} files in {root}")
    return results


def list_subfolders(directory: str, recursive: bool = False) -> List[str]:
    """
    List subdirectories of a directory.

    Args:
        directory: Directory to scan.
        recursive: Include nested subdirectories at every depth.

    Returns:
        Sorted list of absolute directory paths.
    """
    results: List[str] = []
    root = os.path.abspath(os.path.expanduser(directory))

    if not os.path.isdir(root):
        logger.warning(f"Directory does not exist: {directory}")
        return results

    visited_inodes: Set[int] = set()

    def scan_dir(dir_path: str) -> None:
        try:
            stat_info = os.stat(dir_path)
            if stat_info.st_ino in visited_inodes:
                return
            visited_inodes.add(stat_info.st_ino)
            entries = os.listdir(dir_path)
        except OSError as e:
            logger.warning(f"Error accessing directory {dir_path}: {e}")
            return

        for entry in entries:
            if _is_skipped(entry):
                continue
            full_path = os.path.join(dir_path, entry)
            if os.path.isdir(full_path):
                results.append(full_path)
                if recursive:
                    scan_dir(full_path)

    scan_dir(root)
    results.sort()
    return results


def playlist_folders(playlist: PlaylistConfig) -> List[str]:
    """
    Folders that take part in a playlist's folder rotation.

    A playlist that does not scan subfolders is a single folder: its root.
    Otherwise every immediate subfolder is rotated on its own, and a root
    without subfolders counts as one folder.
    """
    root = os.path.abspath(os.path.expanduser(playlist.path))

    if not playlist.scan_sub_folders:
        return [root]

    folders = list_subfolders(root)
    if not folders:
        logger.debug(f"Playlist {playlist.display_name} has no subfolders, using root")
        return [root]
    return folders


def split_last(text: str, separator: str) -> str:
    """Return the text after the last separator (empty for a trailing separator)."""
    return text.split(separator)[-1]
