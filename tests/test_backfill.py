"""Tests for the geocoding backfill."""

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import requests
from sqlalchemy.exc import OperationalError

from roadwatch.backfill import geocode_backfill
from roadwatch.backfill.geocode_backfill import (
    INVALID_COORDINATES,
    OUT_OF_TERRITORY,
    UNRESOLVED,
    UPDATED,
    process_pothole,
    run_backfill,
    select_candidates,
)
from roadwatch.db.database import PotholeDB
from roadwatch.geocoding import nominatim
from roadwatch.geocoding.nominatim import RateLimiter
from roadwatch.models.pothole import GeocodeResult

real_mark_resolved = geocode_backfill._mark_resolved


def _response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


def _reload(session_factory, pothole_id):
    session = session_factory()
    try:
        return session.query(PotholeDB).filter(PotholeDB.id == pothole_id).one()
    finally:
        session.close()


class TestSelectCandidates:
    """Tests for select_candidates."""

    def test_eligibility(self, db, make_pothole) -> None:
        pending = make_pothole(geocode_status="pending")
        failed_unresolvable = make_pothole(
            geocode_status="failed", geocoded_at=datetime(2025, 1, 2), municipality=None
        )
        failed_never_attempted = make_pothole(geocode_status="failed", geocoded_at=None)
        failed_with_municipality = make_pothole(
            geocode_status="failed", geocoded_at=datetime(2025, 1, 2), municipality="Porto"
        )
        make_pothole(geocode_status="resolved", parish="Bonfim", municipality="Porto")
        resolved_blank_parish = make_pothole(geocode_status="resolved", parish="  ", municipality="Porto")
        make_pothole(geocode_status="manual")

        ids = [p.id for p in select_candidates(db)]

        assert ids == [pending, failed_never_attempted, failed_with_municipality, resolved_blank_parish]
        assert failed_unresolvable not in ids

    def test_retry_failed_includes_unresolvable(self, db, make_pothole) -> None:
        failed_unresolvable = make_pothole(
            geocode_status="failed", geocoded_at=datetime(2025, 1, 2), municipality=None
        )
        make_pothole(geocode_status="manual")

        ids = [p.id for p in select_candidates(db, retry_failed=True)]

        assert ids == [failed_unresolvable]

    def test_oldest_first_and_limit(self, db, make_pothole) -> None:
        later = make_pothole(created_at=datetime(2025, 3, 1))
        earlier = make_pothole(created_at=datetime(2025, 2, 1))
        make_pothole(created_at=datetime(2025, 4, 1))

        assert [p.id for p in select_candidates(db, limit=2)] == [earlier, later]

    def test_non_positive_limit_ignored(self, db, make_pothole) -> None:
        make_pothole()
        make_pothole()

        assert len(select_candidates(db, limit=0)) == 2
        assert len(select_candidates(db, limit=-5)) == 2


class TestProcessPothole:
    """Tests for process_pothole."""

    def test_invalid_coordinates_skipped(self) -> None:
        db = MagicMock()
        geocode = MagicMock()
        pothole = SimpleNamespace(id="p1", lat=float("nan"), lng=-9.1)

        outcome, result = process_pothole(db, pothole, geocode)

        assert outcome == INVALID_COORDINATES
        assert result is None
        geocode.assert_not_called()
        db.commit.assert_not_called()

    def test_out_of_territory_marks_failed(self, db, make_pothole) -> None:
        pothole_id = make_pothole(lat=40.4168, lng=-3.7038)
        pothole = db.get(PotholeDB, pothole_id)
        geocode = MagicMock()

        outcome, _ = process_pothole(db, pothole, geocode)

        assert outcome == OUT_OF_TERRITORY
        geocode.assert_not_called()
        assert pothole.geocode_status == "failed"
        assert pothole.geocoded_at is not None

    def test_no_municipality_marks_failed(self, db, make_pothole) -> None:
        pothole_id = make_pothole()
        pothole = db.get(PotholeDB, pothole_id)
        geocode = MagicMock(return_value=GeocodeResult(display_address="x", normalized_address="x"))

        outcome, _ = process_pothole(db, pothole, geocode)

        assert outcome == UNRESOLVED
        assert pothole.geocode_status == "failed"
        assert pothole.municipality is None

    def test_resolved_keeps_existing_address(self, db, make_pothole) -> None:
        pothole_id = make_pothole(address="Junto ao café")
        pothole = db.get(PotholeDB, pothole_id)
        geocode = MagicMock(return_value=GeocodeResult(
            display_address="Rua Augusta, Lisboa",
            normalized_address="Rua Augusta, 10, Lisboa, 1100-048 Lisboa",
            parish="Lisboa",
            municipality="Lisboa",
            postal_code="1100-048",
        ))

        outcome, _ = process_pothole(db, pothole, geocode)

        assert outcome == UPDATED
        assert pothole.address == "Junto ao café"
        assert pothole.normalized_address == "Rua Augusta, 10, Lisboa, 1100-048 Lisboa"
        assert pothole.municipality == "Lisboa"
        assert pothole.geocode_status == "resolved"
        assert pothole.geocoded_at is not None


class TestRunBackfill:
    """Tests for run_backfill."""

    @patch("roadwatch.geocoding.nominatim.requests.get")
    def test_resolves_pending_reports(self, mock_get, session_factory, make_pothole,
                                      no_wait_limiter, lisbon_response) -> None:
        mock_get.return_value = _response(payload=lisbon_response)
        first = make_pothole()
        second = make_pothole()

        summary = run_backfill(session_factory=session_factory, rate_limiter=no_wait_limiter)

        assert summary.candidates == 2
        assert summary.updated == 2
        assert summary.failed == 0
        for pothole_id in (first, second):
            pothole = _reload(session_factory, pothole_id)
            assert pothole.geocode_status == "resolved"
            assert pothole.parish == "Santa Maria Maior"
            assert pothole.address == lisbon_response["display_name"]
        # one wait between the two provider calls
        assert len(no_wait_limiter.waits) == 1
        assert 0 < no_wait_limiter.waits[0] <= 1.1

    @patch("roadwatch.geocoding.nominatim.requests.get")
    def test_dry_run_calls_provider_without_writing(self, mock_get, session_factory, make_pothole,
                                                    no_wait_limiter, lisbon_response) -> None:
        mock_get.return_value = _response(payload=lisbon_response)
        ids = [make_pothole() for _ in range(3)]

        summary = run_backfill(dry_run=True, session_factory=session_factory, rate_limiter=no_wait_limiter)

        assert mock_get.call_count == 3
        assert summary.dry_run is True
        assert summary.updated == 3
        for pothole_id in ids:
            pothole = _reload(session_factory, pothole_id)
            assert pothole.geocode_status == "pending"
            assert pothole.municipality is None
            assert pothole.geocoded_at is None

    @patch("roadwatch.geocoding.nominatim.requests.get")
    def test_outcomes_are_counted_separately(self, mock_get, session_factory, make_pothole,
                                             no_wait_limiter, lisbon_response) -> None:
        mock_get.side_effect = [
            _response(status_code=503),
            requests.ConnectionError("connection reset"),
            _response(payload=lisbon_response),
        ]
        outside = make_pothole(lat=48.8566, lng=2.3522)
        unresolved = make_pothole()
        broken = make_pothole()
        resolved = make_pothole()

        summary = run_backfill(session_factory=session_factory, rate_limiter=no_wait_limiter)

        assert summary.candidates == 4
        assert summary.out_of_territory == 1
        assert summary.unresolved == 1
        assert summary.failed == 1
        assert summary.failed_ids == [broken]
        assert summary.updated == 1
        assert _reload(session_factory, outside).geocode_status == "failed"
        assert _reload(session_factory, unresolved).geocode_status == "failed"
        assert _reload(session_factory, broken).geocode_status == "pending"
        assert _reload(session_factory, resolved).geocode_status == "resolved"

    @patch("roadwatch.geocoding.nominatim.requests.get")
    def test_rerun_skips_unresolvable_reports(self, mock_get, session_factory, make_pothole,
                                              no_wait_limiter) -> None:
        mock_get.return_value = _response(status_code=404)
        make_pothole()

        first = run_backfill(session_factory=session_factory, rate_limiter=no_wait_limiter)
        second = run_backfill(session_factory=session_factory, rate_limiter=no_wait_limiter)
        retried = run_backfill(retry_failed=True, session_factory=session_factory, rate_limiter=no_wait_limiter)

        assert first.unresolved == 1
        assert second.candidates == 0
        assert retried.candidates == 1
        assert mock_get.call_count == 2

    @patch("roadwatch.geocoding.nominatim.requests.get")
    def test_write_failure_is_rolled_back_and_batch_continues(self, mock_get, session_factory, make_pothole,
                                                              no_wait_limiter, lisbon_response) -> None:
        mock_get.return_value = _response(payload=lisbon_response)
        ids = [make_pothole() for _ in range(3)]
        calls = []

        def flaky_mark_resolved(db, pothole, result):
            calls.append(pothole.id)
            if len(calls) == 2:
                raise OperationalError("UPDATE potholes", {}, Exception("database is locked"))
            return real_mark_resolved(db, pothole, result)

        with patch("roadwatch.backfill.geocode_backfill._mark_resolved", side_effect=flaky_mark_resolved):
            summary = run_backfill(session_factory=session_factory, rate_limiter=no_wait_limiter)

        assert summary.updated == 2
        assert summary.failed == 1
        assert summary.failed_ids == [ids[1]]
        assert _reload(session_factory, ids[0]).geocode_status == "resolved"
        assert _reload(session_factory, ids[1]).geocode_status == "pending"
        assert _reload(session_factory, ids[1]).municipality is None
        assert _reload(session_factory, ids[2]).geocode_status == "resolved"

    @patch("roadwatch.geocoding.nominatim.requests.get")
    def test_runs_share_default_limiter(self, mock_get, session_factory, make_pothole,
                                        lisbon_response) -> None:
        mock_get.return_value = _response(payload=lisbon_response)
        make_pothole()
        make_pothole()
        waits = []
        shared = RateLimiter(sleep=waits.append)

        with patch("roadwatch.backfill.geocode_backfill.BACKFILL_RATE_LIMITER", shared):
            run_backfill(dry_run=True, session_factory=session_factory)
            run_backfill(dry_run=True, session_factory=session_factory)

        assert mock_get.call_count == 4
        # the second run's first call still waits on the first run's last call
        assert len(waits) == 3
        assert all(0 < wait <= 1.1 for wait in waits)

    def test_default_limiter_is_process_wide(self) -> None:
        assert geocode_backfill.BACKFILL_RATE_LIMITER is nominatim.BACKFILL_RATE_LIMITER
        assert nominatim.BACKFILL_RATE_LIMITER.min_interval == 1.1

    def test_nothing_to_do(self, session_factory, no_wait_limiter) -> None:
        summary = run_backfill(session_factory=session_factory, rate_limiter=no_wait_limiter)
        assert summary.candidates == 0
        assert summary.updated == 0
