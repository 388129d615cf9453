import time
import logging
import os
from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy import and_, or_, not_, func
from sqlalchemy.exc import SQLAlchemyError

from roadwatch.db.database import SessionLocal, PotholeDB
from roadwatch.geocoding.nominatim import BACKFILL_RATE_LIMITER, reverse_geocode
from roadwatch.geocoding.territory import is_within_territory
from roadwatch.models.pothole import BackfillSummary, Coordinate, GeocodeStatus

logger = logging.getLogger(__name__)

LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))

# Per-record outcomes
UPDATED = "updated"
UNRESOLVED = "unresolved"
OUT_OF_TERRITORY = "out_of_territory"
INVALID_COORDINATES = "invalid_coordinates"


def configure_logging(log_dir=LOG_DIR, level=logging.INFO):
    """Log to a dated file under log_dir and to the console."""
    os.makedirs(log_dir, exist_ok=True)
    log_filename = os.path.join(log_dir, f'backfill_{datetime.now().strftime("%Y%m%d")}.log')

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_filename),
            logging.StreamHandler()
        ]
    )
    return log_filename


def select_candidates(db, limit=None, retry_failed=False):
    """
    Return reports whose geocoding still needs to be resolved, oldest first.

    Reports already marked failed after a geocoding attempt that produced no
    municipality are skipped unless retry_failed is set. Manual overrides are
    never selected.
    """
    query = db.query(PotholeDB).filter(
        PotholeDB.geocode_status != GeocodeStatus.MANUAL.value,
        or_(
            PotholeDB.geocode_status.in_([GeocodeStatus.PENDING.value, GeocodeStatus.FAILED.value]),
            PotholeDB.parish == None,
            func.trim(PotholeDB.parish) == "",
        ),
    )

    if not retry_failed:
        query = query.filter(not_(and_(
            PotholeDB.geocode_status == GeocodeStatus.FAILED.value,
            PotholeDB.geocoded_at != None,
            PotholeDB.municipality == None,
        )))

    query = query.order_by(PotholeDB.created_at.asc())

    if isinstance(limit, int) and not isinstance(limit, bool) and limit > 0:
        query = query.limit(limit)

    return query.all()


def _coordinates(pothole):
    try:
        coordinate = Coordinate(latitude=pothole.lat, longitude=pothole.lng)
    except ValidationError:
        return None
    return coordinate.latitude, coordinate.longitude


def _mark_failed(db, pothole):
    pothole.geocode_status = GeocodeStatus.FAILED.value
    pothole.geocoded_at = datetime.now(timezone.utc)
    db.commit()


def _mark_resolved(db, pothole, result):
    if not (pothole.address or "").strip():
        pothole.address = result.display_address
    pothole.normalized_address = result.normalized_address
    pothole.parish = result.parish
    pothole.municipality = result.municipality
    pothole.district = result.district
    pothole.postal_code = result.postal_code
    pothole.geocode_status = GeocodeStatus.RESOLVED.value
    pothole.geocoded_at = datetime.now(timezone.utc)
    db.commit()


def process_pothole(db, pothole, geocode, dry_run=False):
    """
    Run one report through the territory check and reverse geocoding.

    Returns (outcome, geocode_result). Exceptions from the geocoder or the
    database propagate so the caller can count them per record.
    """
    coordinates = _coordinates(pothole)
    if coordinates is None:
        return INVALID_COORDINATES, None

    lat, lng = coordinates
    if not is_within_territory(lat, lng):
        if not dry_run:
            _mark_failed(db, pothole)
        return OUT_OF_TERRITORY, None

    result = geocode(lat, lng)
    if result is None or not result.municipality:
        if not dry_run:
            _mark_failed(db, pothole)
        return UNRESOLVED, result

    if not dry_run:
        _mark_resolved(db, pothole, result)
    return UPDATED, result


def run_backfill(limit=None, dry_run=False, retry_failed=False, session_factory=None, rate_limiter=None):
    """
    Resolve geocoding for every candidate report, one record at a time.

    Args:
        limit: Maximum number of reports to process, or None for all candidates
        dry_run: If True, geocode every candidate but write nothing
        retry_failed: If True, also retry reports previously failed without a municipality
        session_factory: Callable returning a SQLAlchemy session (defaults to SessionLocal)
        rate_limiter: Limiter for provider calls (defaults to the process-wide backfill limiter)

    Returns:
        BackfillSummary with per-outcome counters
    """
    session_factory = session_factory or SessionLocal
    rate_limiter = rate_limiter or BACKFILL_RATE_LIMITER

    def geocode(lat, lng):
        return reverse_geocode(lat, lng, rate_limiter=rate_limiter)

    summary = BackfillSummary(dry_run=dry_run)
    start_time = time.time()

    db = session_factory()
    try:
        candidates = select_candidates(db, limit=limit, retry_failed=retry_failed)
        summary.candidates = len(candidates)

        if not candidates:
            logger.info("No reports need geocoding.")
            return summary

        logger.info(f"Found {len(candidates)} reports to geocode.")
        if dry_run:
            logger.info("Dry-run mode: no changes will be written to the database.")

        total = len(candidates)
        for index, pothole in enumerate(candidates, start=1):
            # Captured before processing; a rollback expires loaded instances
            pothole_id = pothole.id
            prefix = f"[{index}/{total}] {pothole_id}"
            try:
                outcome, result = process_pothole(db, pothole, geocode, dry_run=dry_run)
            except SQLAlchemyError as e:
                db.rollback()
                summary.failed += 1
                summary.failed_ids.append(pothole_id)
                logger.error(f"{prefix} database error: {e}")
                continue
            except Exception as e:
                db.rollback()
                summary.failed += 1
                summary.failed_ids.append(pothole_id)
                logger.error(f"{prefix} error: {e}")
                continue

            if outcome == UPDATED:
                summary.updated += 1
                logger.info(f"{prefix} updated ({result.municipality}).")
            elif outcome == UNRESOLVED:
                summary.unresolved += 1
                logger.warning(f"{prefix} no municipality resolved.")
            elif outcome == OUT_OF_TERRITORY:
                summary.out_of_territory += 1
                logger.warning(f"{prefix} outside Portugal.")
            else:
                summary.failed += 1
                summary.failed_ids.append(pothole_id)
                logger.warning(f"{prefix} skipped: invalid coordinates.")
    finally:
        db.close()

    duration = time.time() - start_time
    logger.info("Backfill summary:")
    logger.info(f"  Total runtime: {duration:.2f} seconds")
    logger.info(f"  Candidates: {summary.candidates}")
    logger.info(f"  Updated: {summary.updated}")
    logger.info(f"  No municipality resolved: {summary.unresolved}")
    logger.info(f"  Outside Portugal: {summary.out_of_territory}")
    logger.info(f"  Errors: {summary.failed}")

    return summary
