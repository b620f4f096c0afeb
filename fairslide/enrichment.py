# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Geolocation enrichment of picture indexes.
Fills in GPS coordinates and place names for photos, a batch at a time,
pacing calls to the geocoding service.
"""

import logging
import os
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .geocoder import GeocodeResult, reverse_geocode
from .index_store import (
    DOCUMENT_LOCK,
    GeocodeStatus,
    PictureIndexRecord,
    find_picture_index_files,
    read_json_document,
    write_json_document,
)
from .metadata import extract_gps_coordinates

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_DELAY_MS = 1100

GeocodeFunction = Callable[[float, float], GeocodeResult]


@dataclass
class EnrichmentStats:
    """Counters for one pass over one picture index."""
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    no_gps: int = 0
    already_geocoded: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class GeolocationStatus:
    """Progress of geolocation for one picture index."""
    total_photos: int = 0
    geocoded: int = 0
    no_gps: int = 0
    pending: int = 0
    percent_complete: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RunStats:
    """Counters for one pass over every picture index."""
    files_processed: int = 0
    photos_processed: int = 0
    photos_skipped: int = 0
    photos_no_gps: int = 0
    photos_already_geocoded: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def process_photo_geolocation(
    photo_path: str,
    geocode: Optional[GeocodeFunction] = None,
    before_request: Optional[Callable[[], None]] = None
) -> Dict[str, Any]:
    """
    Compute location data for one photo.

    Args:
        photo_path: Path of the photo.
        geocode: Reverse geocoder, defaults to Nominatim.
        before_request: Called right before the geocoding request.

    Returns:
        Dict with gps_lat, gps_lon, country, village, town, city,
        geocode_status and, when completed, geocode_timestamp.
    """
    geocode = geocode or reverse_geocode
    location: Dict[str, Any] = {
        "gps_lat": None,
        "gps_lon": None,
        "country": None,
        "village": None,
        "town": None,
        "city": None,
        "geocode_status": GeocodeStatus.NOT_PROCESSED.value,
    }

    coordinates = extract_gps_coordinates(photo_path)
    if coordinates is None:
        location["geocode_status"] = GeocodeStatus.NO_GPS_DATA.value
        return location

    location["gps_lat"], location["gps_lon"] = coordinates

    if before_request is not None:
        before_request()
    result = geocode(*coordinates)

    if not result.succeeded:
        # Left as not_processed so the next batch tries again
        return location

    location.update(result.to_dict())
    location["geocode_status"] = GeocodeStatus.COMPLETED.value
    location["geocode_timestamp"] = int(time.time())
    return location


def _load_records(index_path: str) -> Optional[Dict[str, PictureIndexRecord]]:
    document = read_json_document(Path(index_path))
    if document is None:
        return None
    return {
        path: PictureIndexRecord.from_dict(path, data)
        for path, data in document.items()
        if isinstance(data, dict)
    }


def _save_locations(index_path: str, locations: Dict[str, Dict[str, Any]]) -> None:
    """
    Merge location data into the current index document and write it.

    The document is read again right before writing, under the same lock as
    the index store, so that play counts updated by the slideshow during the
    batch are kept.
    """
    with DOCUMENT_LOCK:
        records = _load_records(index_path)
        if records is None:
            logger.error(f"Index file disappeared during geolocation: {index_path}")
            return

        merged = 0
        for path, location in locations.items():
            record = records.get(path)
            if record is None:
                continue
            record.apply_location(location)
            merged += 1

        write_json_document(
            Path(index_path),
            {path: record.to_dict() for path, record in records.items()}
        )
    logger.debug(f"Saved geolocation for {merged} photo(s) to {os.path.basename(index_path)}")


def update_index_with_geolocation(
    index_path: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
    delay_ms: int = DEFAULT_DELAY_MS,
    geocode: Optional[GeocodeFunction] = None,
    sleep: Callable[[float], None] = time.sleep
) -> EnrichmentStats:
    """
    Geolocate up to batch_size photos of a picture index.

    Photos already geocoded, or known to have no GPS data, are counted and
    skipped. Photos whose file is gone are skipped without counting toward
    the batch. The index is written once at the end if anything changed.

    Args:
        index_path: Path of a folderpics-<GUID>-index.json file.
        batch_size: Maximum number of photos to process.
        delay_ms: Pause between geocoding requests.
        geocode: Reverse geocoder, defaults to Nominatim.
        sleep: Sleep function.

    Returns:
        EnrichmentStats for this pass.
    """
    stats = EnrichmentStats()

    if not os.path.exists(index_path):
        logger.error(f"Index file not found: {index_path}")
        return stats

    records = _load_records(index_path)
    if records is None:
        logger.error(f"Invalid JSON in index file: {index_path}")
        return stats

    requests_made = 0

    def pace() -> None:
        # Only between requests: never before the first one
        nonlocal requests_made
        if requests_made and delay_ms > 0:
            sleep(delay_ms / 1000.0)
        requests_made += 1

    locations: Dict[str, Dict[str, Any]] = {}
    attempted = 0

    for photo_path, record in records.items():
        if not record.needs_geocoding:
            stats.already_geocoded += 1
            continue

        if attempted >= batch_size:
            break

        if not os.path.exists(photo_path):
            logger.debug(f"Photo no longer exists, skipping: {photo_path}")
            stats.skipped += 1
            continue

        attempted += 1
        try:
            location = process_photo_geolocation(photo_path, geocode, before_request=pace)
        except Exception as e:
            logger.error(f"Geolocation failed for {photo_path}: {e}")
            stats.errors += 1
            continue

        locations[photo_path] = location
        status = location["geocode_status"]
        if status == GeocodeStatus.NO_GPS_DATA.value:
            stats.no_gps += 1
        elif status == GeocodeStatus.COMPLETED.value:
            stats.processed += 1
        else:
            stats.errors += 1

    if locations:
        _save_locations(index_path, locations)
        logger.info(f"Geolocation of {os.path.basename(index_path)}: {stats.to_dict()}")

    return stats


def geolocation_status(index_path: str) -> GeolocationStatus:
    """
    Count geolocation progress in a picture index.

    Photos never processed, or whose last attempt failed, are pending.
    """
    status = GeolocationStatus()

    records = _load_records(index_path)
    if not records:
        return status

    status.total_photos = len(records)
    for record in records.values():
        if record.geocode_status is GeocodeStatus.COMPLETED:
            status.geocoded += 1
        elif record.geocode_status is GeocodeStatus.NO_GPS_DATA:
            status.no_gps += 1
        else:
            status.pending += 1

    status.percent_complete = round(
        (status.geocoded + status.no_gps) / status.total_photos * 100, 1
    )
    return status


def process_all_index_files(
    base_dir: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
    delay_ms: int = DEFAULT_DELAY_MS,
    geocode: Optional[GeocodeFunction] = None,
    sleep: Callable[[float], None] = time.sleep
) -> RunStats:
    """
    Run one geolocation batch over every picture index in a directory.

    Indexes where no photo needs geocoding are skipped. Records geocoded
    before village and town were tracked count as geocoded in the status
    report but still get a new lookup here.

    Returns:
        RunStats aggregated over all indexes.
    """
    totals = RunStats()
    index_files = find_picture_index_files(base_dir)

    if not index_files:
        logger.info(f"No picture index files found in {base_dir}")
        return totals

    logger.info(f"Found {len(index_files)} picture index file(s)")

    for index_file in index_files:
        before = geolocation_status(str(index_file))
        records = _load_records(str(index_file)) or {}
        if not any(record.needs_geocoding for record in records.values()):
            totals.photos_already_geocoded += before.geocoded
            continue

        logger.info(
            f"Processing {index_file.name}: {before.pending} pending, "
            f"{before.percent_complete}% complete"
        )
        stats = update_index_with_geolocation(
            str(index_file), batch_size, delay_ms, geocode=geocode, sleep=sleep
        )

        totals.files_processed += 1
        totals.photos_processed += stats.processed
        totals.photos_skipped += stats.skipped
        totals.photos_no_gps += stats.no_gps
        totals.photos_already_geocoded += stats.already_geocoded
        totals.errors += stats.errors

        after = geolocation_status(str(index_file))
        logger.info(
            f"  Processed: {stats.processed}, No GPS: {stats.no_gps}, "
            f"Skipped: {stats.skipped}, Progress: {after.percent_complete}%"
        )

    return totals


def collect_status(base_dir: str) -> Dict[str, Any]:
    """
    Status of every picture index in a directory plus the aggregate.

    Returns:
        {"files": {file name: status dict}, "total": status dict}
    """
    files: Dict[str, Dict[str, Any]] = {}
    total = GeolocationStatus()

    for index_file in find_picture_index_files(base_dir):
        status = geolocation_status(str(index_file))
        files[index_file.name] = status.to_dict()
        total.total_photos += status.total_photos
        total.geocoded += status.geocoded
        total.no_gps += status.no_gps
        total.pending += status.pending

    if total.total_photos:
        total.percent_complete = round(
            (total.geocoded + total.no_gps) / total.total_photos * 100, 1
        )

    return {"files": files, "total": total.to_dict()}


def run_geolocation(
    base_dir: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
    delay_ms: int = 2000,
    continuous: bool = False,
    interval: int = 60,
    stop_event: Optional[threading.Event] = None,
    geocode: Optional[GeocodeFunction] = None
) -> List[RunStats]:
    """
    Run geolocation passes over a directory of picture indexes.

    Args:
        base_dir: Directory holding the index files.
        batch_size: Photos per index per pass.
        delay_ms: Pause between geocoding requests.
        continuous: Keep running passes until stopped.
        interval: Seconds between passes in continuous mode.
        stop_event: Set to end the continuous loop.
        geocode: Reverse geocoder, defaults to Nominatim.

    Returns:
        Stats of every pass run.
    """
    stop_event = stop_event or threading.Event()
    history: List[RunStats] = []

    logger.info(
        f"Geolocation processor started (batch_size={batch_size}, delay={delay_ms}ms, "
        f"mode={'continuous' if continuous else 'single-run'})"
    )

    while not stop_event.is_set():
        start_time = time.time()
        stats = process_all_index_files(base_dir, batch_size, delay_ms, geocode=geocode)
        history.append(stats)

        elapsed = time.time() - start_time
        logger.info(
            f"Run complete in {elapsed:.2f}s - Files: {stats.files_processed}, "
            f"Processed: {stats.photos_processed}, No GPS: {stats.photos_no_gps}, "
            f"Already done: {stats.photos_already_geocoded}, Errors: {stats.errors}"
        )

        if not continuous:
            break

        logger.info(f"Sleeping for {interval} seconds...")
        stop_event.wait(interval)

    logger.info("Geolocation processor finished")
    return history
