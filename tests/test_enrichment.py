# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Tests for geolocation enrichment of picture indexes.
"""

import json
import threading
from unittest.mock import MagicMock, patch

import pytest

from fairslide.enrichment import (
    EnrichmentStats,
    collect_status,
    geolocation_status,
    process_all_index_files,
    process_photo_geolocation,
    run_geolocation,
    update_index_with_geolocation,
)
from fairslide.geocoder import GeocodeResult
from fairslide.index_store import (
    KIND_PICTURES,
    IndexStore,
    PictureIndexRecord,
    write_json_document,
)

PARIS = GeocodeResult(country="France", city="Paris", succeeded=True)


def write_index(path, entries):
    with open(path, 'w') as f:
        json.dump(entries, f, indent=4)
    return str(path)


def read_index(path):
    with open(path) as f:
        return json.load(f)


@pytest.fixture
def photos(temp_dir, photo_factory):
    """Three photos on disk."""
    return [str(photo_factory(temp_dir / "photos" / f"{name}.jpg")) for name in ("a", "b", "c")]


@pytest.fixture
def gps_everywhere():
    """Every photo has coordinates."""
    with patch("fairslide.enrichment.extract_gps_coordinates", return_value=(48.8584, 2.2945)) as m:
        yield m


class TestProcessPhotoGeolocation:
    """Tests for geolocating one photo."""

    def test_no_gps(self, photos):
        geocode = MagicMock()

        with patch("fairslide.enrichment.extract_gps_coordinates", return_value=None):
            location = process_photo_geolocation(photos[0], geocode)

        assert location["geocode_status"] == "no_gps_data"
        assert location["gps_lat"] is None
        assert "geocode_timestamp" not in location
        geocode.assert_not_called()

    def test_completed(self, photos, gps_everywhere):
        before = MagicMock()

        location = process_photo_geolocation(photos[0], lambda lat, lon: PARIS, before)

        assert location["geocode_status"] == "completed"
        assert location["gps_lat"] == 48.8584
        assert location["country"] == "France"
        assert location["city"] == "Paris"
        assert location["village"] is None
        assert isinstance(location["geocode_timestamp"], int)
        before.assert_called_once()

    def test_geocoder_failure_stays_unprocessed(self, photos, gps_everywhere):
        location = process_photo_geolocation(photos[0], lambda lat, lon: GeocodeResult())

        assert location["geocode_status"] == "not_processed"
        assert location["gps_lat"] == 48.8584
        assert location["country"] is None


class TestUpdateIndexWithGeolocation:
    """Tests for one batch over one index."""

    def test_sleeps_only_between_requests(self, temp_dir, photos, gps_everywhere):
        """Three requests: two pauses, none before the first or after the last."""
        index = write_index(temp_dir / "idx.json", {p: {"play_count": 0} for p in photos})
        geocode = MagicMock(return_value=PARIS)
        sleep = MagicMock()

        stats = update_index_with_geolocation(index, batch_size=10, delay_ms=1100,
                                              geocode=geocode, sleep=sleep)

        assert stats.processed == 3
        assert geocode.call_count == 3
        assert sleep.call_count == 2
        sleep.assert_called_with(1.1)

    def test_no_sleep_without_requests(self, temp_dir, photos):
        """Photos without GPS make no requests, so no pauses."""
        index = write_index(temp_dir / "idx.json", {p: {"play_count": 0} for p in photos})
        sleep = MagicMock()

        with patch("fairslide.enrichment.extract_gps_coordinates", return_value=None):
            stats = update_index_with_geolocation(index, geocode=MagicMock(), sleep=sleep)

        assert stats.no_gps == 3
        sleep.assert_not_called()
        assert {e["geocode_status"] for e in read_index(index).values()} == {"no_gps_data"}

    def test_batch_limit(self, temp_dir, photos, gps_everywhere):
        index = write_index(temp_dir / "idx.json", {p: {"play_count": 0} for p in photos})

        stats = update_index_with_geolocation(index, batch_size=2, delay_ms=0,
                                              geocode=lambda lat, lon: PARIS)

        assert stats.processed == 2
        data = read_index(index)
        assert data[photos[2]] == {"play_count": 0}

    def test_already_geocoded_counted(self, temp_dir, photos, gps_everywhere):
        index = write_index(temp_dir / "idx.json", {
            photos[0]: {"play_count": 1, "geocode_status": "no_gps_data"},
            photos[1]: {"play_count": 2, "country": "X", "village": None, "town": None,
                        "city": "Y", "geocode_status": "completed"},
            photos[2]: {"play_count": 0},
        })
        geocode = MagicMock(return_value=PARIS)

        stats = update_index_with_geolocation(index, delay_ms=0, geocode=geocode)

        assert stats.already_geocoded == 2
        assert stats.processed == 1
        assert geocode.call_count == 1

    def test_legacy_record_regeocoded(self, temp_dir, photos, gps_everywhere):
        """Completed records without the village key are processed again."""
        index = write_index(temp_dir / "idx.json", {
            photos[0]: {"play_count": 4, "country": "X", "city": "Y", "geocode_status": "completed"},
        })

        stats = update_index_with_geolocation(index, delay_ms=0, geocode=lambda lat, lon: PARIS)

        assert stats.processed == 1
        entry = read_index(index)[photos[0]]
        assert entry["village"] is None
        assert entry["city"] == "Paris"
        assert entry["play_count"] == 4

    def test_missing_file_skipped_outside_batch(self, temp_dir, photos, gps_everywhere):
        """A missing photo is skipped and does not use up the batch."""
        index = write_index(temp_dir / "idx.json", {
            str(temp_dir / "gone.jpg"): {"play_count": 0},
            photos[0]: {"play_count": 0},
        })

        stats = update_index_with_geolocation(index, batch_size=1, delay_ms=0,
                                              geocode=lambda lat, lon: PARIS)

        assert stats.skipped == 1
        assert stats.processed == 1
        data = read_index(index)
        assert data[str(temp_dir / "gone.jpg")] == {"play_count": 0}

    def test_geocoder_failure_counted_and_retried(self, temp_dir, photos, gps_everywhere):
        index = write_index(temp_dir / "idx.json", {photos[0]: {"play_count": 0}})

        stats = update_index_with_geolocation(index, delay_ms=0,
                                              geocode=lambda lat, lon: GeocodeResult())

        assert stats.errors == 1
        assert geolocation_status(index).pending == 1

        stats = update_index_with_geolocation(index, delay_ms=0, geocode=lambda lat, lon: PARIS)

        assert stats.processed == 1
        assert geolocation_status(index).geocoded == 1

    def test_exception_counted_as_error(self, temp_dir, photos, gps_everywhere):
        index = write_index(temp_dir / "idx.json", {photos[0]: {"play_count": 0}})

        stats = update_index_with_geolocation(
            index, delay_ms=0, geocode=MagicMock(side_effect=RuntimeError("boom"))
        )

        assert stats.errors == 1
        assert read_index(index) == {photos[0]: {"play_count": 0}}

    def test_play_counts_updated_during_batch_are_kept(self, temp_dir, photos, gps_everywhere):
        """Geodata is merged into the latest document on save."""
        index_path = temp_dir / "idx.json"
        index = write_index(index_path, {p: {"play_count": 0} for p in photos[:2]})

        def geocode_while_slideshow_plays(lat, lon):
            data = read_index(index_path)
            data[photos[1]]["play_count"] += 1
            write_index(index_path, data)
            return PARIS

        update_index_with_geolocation(index, delay_ms=0, geocode=geocode_while_slideshow_plays)

        data = read_index(index_path)
        assert data[photos[1]]["play_count"] == 2
        assert data[photos[1]]["geocode_status"] == "completed"

    def test_save_waits_for_slideshow_play(self, index_dir, photos, gps_everywhere):
        """A play counted while the merged index is being written is not lost."""
        store = IndexStore(str(index_dir))
        guid = "3f1c2a9e-6d4b-4c1a-9e2f-5b7d8c0a1e23"
        store.save_pictures(guid, {photos[0]: PictureIndexRecord(path=photos[0])})
        index_path = str(store.path_for(KIND_PICTURES, guid))

        workers = []
        blocked = []

        def write_while_slideshow_plays(path, document):
            worker = threading.Thread(target=store.increment_picture, args=(guid, photos[0]))
            worker.start()
            worker.join(0.2)
            blocked.append(worker.is_alive())
            workers.append(worker)
            write_json_document(path, document)

        with patch("fairslide.enrichment.write_json_document", write_while_slideshow_plays):
            update_index_with_geolocation(index_path, delay_ms=0, geocode=lambda lat, lon: PARIS)
        for worker in workers:
            worker.join(5)

        assert blocked == [True]
        record = store.load_pictures(guid)[photos[0]]
        assert record.play_count == 1
        assert record.city == "Paris"

    def test_missing_index(self, temp_dir):
        assert update_index_with_geolocation(str(temp_dir / "none.json")) == EnrichmentStats()

    def test_invalid_index(self, temp_dir):
        path = temp_dir / "bad.json"
        path.write_text("{oops")

        assert update_index_with_geolocation(str(path)) == EnrichmentStats()


class TestGeolocationStatus:
    """Tests for progress accounting."""

    def test_counts(self, temp_dir):
        index = write_index(temp_dir / "idx.json", {
            "/a.jpg": {"play_count": 0, "geocode_status": "completed", "village": None},
            "/b.jpg": {"play_count": 0, "geocode_status": "no_gps_data"},
            "/c.jpg": {"play_count": 0},
            "/d.jpg": {"play_count": 0},
        })

        status = geolocation_status(index)

        assert (status.total_photos, status.geocoded, status.no_gps, status.pending) == (4, 1, 1, 2)
        assert status.percent_complete == 50.0

    def test_rounding(self, temp_dir):
        index = write_index(temp_dir / "idx.json", {
            "/a.jpg": {"geocode_status": "completed", "village": None},
            "/b.jpg": {},
            "/c.jpg": {},
        })

        assert geolocation_status(index).percent_complete == 33.3

    def test_empty_or_missing(self, temp_dir):
        assert geolocation_status(str(temp_dir / "none.json")).total_photos == 0
        index = write_index(temp_dir / "empty.json", {})
        assert geolocation_status(index).percent_complete == 0.0


class TestProcessAllIndexFiles:
    """Tests for passes over every index."""

    def test_skips_complete_indexes(self, temp_dir, photos, gps_everywhere):
        base = temp_dir / "indexes"
        base.mkdir()
        write_index(base / "folderpics-done-index.json", {
            photos[0]: {"play_count": 0, "geocode_status": "completed", "village": "V"},
        })
        write_index(base / "folderpics-todo-index.json", {
            photos[1]: {"play_count": 0},
            photos[2]: {"play_count": 0},
        })
        write_index(base / "playlists_index.json", {"/x": {"play_count": 0}})

        stats = process_all_index_files(str(base), batch_size=10, delay_ms=0,
                                        geocode=lambda lat, lon: PARIS)

        assert stats.files_processed == 1
        assert stats.photos_processed == 2
        assert stats.photos_already_geocoded == 1
        assert stats.errors == 0

    def test_legacy_records_regeocoded(self, temp_dir, photos, gps_everywhere):
        """An index holding only pre-village records still gets a lookup."""
        base = temp_dir / "indexes"
        base.mkdir()
        write_index(base / "folderpics-old-index.json", {
            photos[0]: {"play_count": 2, "country": "X", "city": "Y", "geocode_status": "completed"},
        })
        geocode = MagicMock(return_value=PARIS)

        stats = process_all_index_files(str(base), delay_ms=0, geocode=geocode)

        assert geocode.call_count == 1
        assert stats.files_processed == 1
        assert stats.photos_processed == 1
        entry = read_index(base / "folderpics-old-index.json")[photos[0]]
        assert entry["village"] is None
        assert entry["city"] == "Paris"
        assert entry["play_count"] == 2

    def test_no_index_files(self, temp_dir):
        assert process_all_index_files(str(temp_dir)).files_processed == 0

    def test_collect_status(self, temp_dir):
        write_index(temp_dir / "folderpics-1-index.json", {
            "/a.jpg": {"geocode_status": "completed", "village": None},
            "/b.jpg": {},
        })
        write_index(temp_dir / "folderpics-2-index.json", {
            "/c.jpg": {"geocode_status": "no_gps_data"},
            "/d.jpg": {"geocode_status": "no_gps_data"},
        })

        report = collect_status(str(temp_dir))

        assert set(report["files"]) == {"folderpics-1-index.json", "folderpics-2-index.json"}
        assert report["total"]["total_photos"] == 4
        assert report["total"]["pending"] == 1
        assert report["total"]["percent_complete"] == 75.0


class TestRunGeolocation:
    """Tests for the pass loop."""

    def test_single_run(self, temp_dir):
        with patch("fairslide.enrichment.process_all_index_files") as mock_process:
            history = run_geolocation(str(temp_dir), continuous=False)

        assert len(history) == 1
        mock_process.assert_called_once()

    def test_continuous_until_stopped(self, temp_dir):
        stop_event = threading.Event()
        passes = []

        def fake_pass(*args, **kwargs):
            passes.append(1)
            if len(passes) == 3:
                stop_event.set()
            return MagicMock(files_processed=0, photos_processed=0, photos_no_gps=0,
                             photos_already_geocoded=0, errors=0)

        with patch("fairslide.enrichment.process_all_index_files", side_effect=fake_pass):
            history = run_geolocation(str(temp_dir), continuous=True, interval=0,
                                      stop_event=stop_event)

        assert len(history) == 3
