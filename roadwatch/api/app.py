from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
from threading import Lock
from typing import Optional, List

import requests
from pydantic import ValidationError
from fastapi import FastAPI, HTTPException, Depends, BackgroundTasks
from sqlalchemy import func
from sqlalchemy.orm import Session

from roadwatch.backfill.geocode_backfill import run_backfill
from roadwatch.db.database import get_db, create_tables, PotholeDB
from roadwatch.geocoding.nominatim import GeocodingError, reverse_geocode, search_locations
from roadwatch.geocoding.territory import is_within_territory
from roadwatch.models.pothole import (
    Coordinate, GeocodeResult, GeocodeStatus, Pothole, PotholeCreate, ReportStatus, SearchResult, Severity
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app):
    create_tables()
    yield


app = FastAPI(
    title="Road Watch API",
    description="Pothole reports across Portugal with territory validation and address geocoding",
    version="1.0.0",
    lifespan=lifespan,
)

OUTSIDE_PORTUGAL_MESSAGE = "Reports are only accepted inside Portugal (mainland and islands)."

# Held while a backfill runs; one backfill at a time per process
backfill_lock = Lock()


def _validate_coordinates(lat, lng):
    try:
        Coordinate(latitude=lat, longitude=lng)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid latitude/longitude.")
    if not is_within_territory(lat, lng):
        raise HTTPException(status_code=400, detail=OUTSIDE_PORTUGAL_MESSAGE)


def _apply_geocode(pothole, result):
    pothole.address = result.display_address
    pothole.normalized_address = result.normalized_address
    pothole.parish = result.parish
    pothole.municipality = result.municipality
    pothole.district = result.district
    pothole.postal_code = result.postal_code
    pothole.geocode_status = GeocodeStatus.RESOLVED.value
    pothole.geocoded_at = datetime.now(timezone.utc)


def _get_pothole_or_404(db, pothole_id):
    pothole = db.query(PotholeDB).filter(PotholeDB.id == pothole_id).first()
    if not pothole:
        raise HTTPException(status_code=404, detail="Pothole not found")
    return pothole


# Background task for the geocoding backfill
def backfill_task(limit=None, dry_run=False, retry_failed=False):
    if not backfill_lock.acquire(blocking=False):
        logger.warning("Geocoding backfill already running, skipping this run")
        return False
    try:
        logger.info(f"Starting geocoding backfill (limit={limit}, dry_run={dry_run}, retry_failed={retry_failed})")
        summary = run_backfill(limit=limit, dry_run=dry_run, retry_failed=retry_failed)
        logger.info(f"Completed geocoding backfill: {summary.updated} updated, {summary.unresolved} unresolved, "
                    f"{summary.out_of_territory} outside Portugal, {summary.failed} errors")
    except Exception as e:
        logger.error(f"Error in geocoding backfill: {str(e)}")
    finally:
        backfill_lock.release()
    return True


@app.get("/")
def read_root():
    return {"message": "Welcome to the Road Watch API"}


@app.get("/api/health")
def health():
    return {"ok": True}


@app.get("/api/potholes", response_model=List[Pothole])
def list_potholes(
    db: Session = Depends(get_db),
    district: Optional[str] = None,
    municipality: Optional[str] = None,
    severity: Optional[Severity] = None,
    status: Optional[ReportStatus] = None,
    geocode_status: Optional[GeocodeStatus] = None,
):
    try:
        query = db.query(PotholeDB)

        if district:
            query = query.filter(PotholeDB.district == district)
        if municipality:
            query = query.filter(PotholeDB.municipality == municipality)
        if severity:
            query = query.filter(PotholeDB.severity == severity.value)
        if status:
            query = query.filter(PotholeDB.status == status.value)
        if geocode_status:
            query = query.filter(PotholeDB.geocode_status == geocode_status.value)

        potholes = query.order_by(PotholeDB.created_at.desc()).all()
        return [Pothole.model_validate(p) for p in potholes]
    except Exception as e:
        logger.error(f"Error retrieving potholes: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/potholes/{pothole_id}", response_model=Pothole)
def get_pothole(pothole_id: str, db: Session = Depends(get_db)):
    try:
        return Pothole.model_validate(_get_pothole_or_404(db, pothole_id))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error retrieving pothole {pothole_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/potholes", response_model=Pothole, status_code=201)
def create_pothole(report: PotholeCreate, db: Session = Depends(get_db)):
    """
    Create a pothole report.

    The territory check here is authoritative. The report is geocoded inline;
    when no municipality can be resolved it stays pending for the backfill.
    """
    _validate_coordinates(report.lat, report.lng)

    try:
        pothole = PotholeDB(
            user_id=report.user_id,
            lat=report.lat,
            lng=report.lng,
            description=report.description,
            photo_url=report.photo_url,
            severity=report.severity.value,
            geocode_status=GeocodeStatus.PENDING.value,
        )

        try:
            result = reverse_geocode(report.lat, report.lng)
            if result and result.municipality:
                _apply_geocode(pothole, result)
            elif result:
                # Keep what the provider returned; the backfill retries the rest
                pothole.address = result.display_address
                pothole.normalized_address = result.normalized_address
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Geocoding failed for new report at ({report.lat}, {report.lng}): {e}")

        db.add(pothole)
        db.commit()
        db.refresh(pothole)
        logger.info(f"Created pothole {pothole.id} ({pothole.geocode_status})")
        return Pothole.model_validate(pothole)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating pothole: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@app.patch("/api/potholes/{pothole_id}/reopen", response_model=Pothole)
def reopen_pothole(pothole_id: str, db: Session = Depends(get_db)):
    try:
        pothole = _get_pothole_or_404(db, pothole_id)
        pothole.status = ReportStatus.REPORTED.value
        pothole.repaired_at = None
        pothole.reopen_count = (pothole.reopen_count or 0) + 1
        db.commit()
        db.refresh(pothole)
        return Pothole.model_validate(pothole)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Error reopening pothole {pothole_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@app.delete("/api/potholes/{pothole_id}", status_code=204)
def delete_pothole(pothole_id: str, db: Session = Depends(get_db)):
    try:
        pothole = _get_pothole_or_404(db, pothole_id)
        db.delete(pothole)
        db.commit()
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting pothole {pothole_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/stats")
def get_stats(db: Session = Depends(get_db)):
    """Report counts grouped by district, severity, status and geocoding status"""
    try:
        def counts(column):
            rows = db.query(column, func.count(PotholeDB.id)).group_by(column).all()
            return {(key if key is not None else "unknown"): count for key, count in rows}

        return {
            "total": db.query(func.count(PotholeDB.id)).scalar(),
            "by_district": counts(PotholeDB.district),
            "by_severity": counts(PotholeDB.severity),
            "by_status": counts(PotholeDB.status),
            "by_geocode_status": counts(PotholeDB.geocode_status),
        }
    except Exception as e:
        logger.error(f"Error computing stats: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/geocoding/search", response_model=List[SearchResult])
def search(q: str = ""):
    try:
        return search_locations(q)
    except GeocodingError as e:
        logger.error(f"Error searching locations: {str(e)}")
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/api/geocoding/reverse", response_model=GeocodeResult)
def reverse(lat: float, lng: float):
    """Resolve an address for a coordinate, rejecting points outside Portugal"""
    _validate_coordinates(lat, lng)
    try:
        result = reverse_geocode(lat, lng)
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Error geocoding ({lat}, {lng}): {str(e)}")
        raise HTTPException(status_code=502, detail="Geocoding provider unavailable")

    if result is None:
        raise HTTPException(status_code=404, detail="Address not found")
    return result


@app.post("/api/backfill", status_code=202)
async def start_backfill(
    background_tasks: BackgroundTasks,
    limit: Optional[int] = None,
    dry_run: bool = False,
    retry_failed: bool = False,
):
    """
    Resolve geocoding for reports that are still pending or failed.
    The backfill runs in the background, one report at a time.

    Args:
        limit: Maximum number of reports to process
        dry_run: Geocode without writing results
        retry_failed: Also retry reports that failed without a municipality
    """
    if backfill_lock.locked():
        raise HTTPException(status_code=409, detail="Geocoding backfill already running")

    try:
        background_tasks.add_task(backfill_task, limit, dry_run, retry_failed)
        return {
            "message": f"Geocoding backfill started{' (dry-run)' if dry_run else ''}",
            "status": "processing",
            "limit": limit,
            "dry_run": dry_run,
            "retry_failed": retry_failed,
        }
    except Exception as e:
        logger.error(f"Error starting backfill: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
