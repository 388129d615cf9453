"""
Main entrypoint for the pothole geocoding backfill.

Usage:
    python main.py [--dry-run] [--limit=N] [--retry-failed]

Resolves parish, municipality, district and postal code for reports that
have not been geocoded yet.
"""
import argparse
import logging
import sys

from roadwatch.backfill.geocode_backfill import configure_logging, run_backfill
from roadwatch.db.database import create_tables

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Backfill reverse geocoding for pothole reports.")
    parser.add_argument("--dry-run", action="store_true",
                        help="geocode candidates without writing to the database")
    parser.add_argument("--limit", type=int, default=None,
                        help="maximum number of reports to process (zero or negative values are ignored)")
    parser.add_argument("--retry-failed", action="store_true",
                        help="also retry reports that previously failed without a municipality")
    return parser.parse_args(argv)


def main(argv=None):
    """
    Main function to run the backfill.
    """
    args = parse_args(argv)
    configure_logging()

    try:
        create_tables()
        summary = run_backfill(limit=args.limit, dry_run=args.dry_run, retry_failed=args.retry_failed)

        print(f"\nBackfill completed{' (dry-run)' if summary.dry_run else ''}")
        print(f"  Updated: {summary.updated}")
        print(f"  No municipality resolved: {summary.unresolved}")
        print(f"  Outside Portugal: {summary.out_of_territory}")
        print(f"  Errors: {summary.failed}")

        return 0
    except Exception as e:
        logger.error(f"Geocoding backfill failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
