"""Fill in missing specialist timezones from their province.

Run once after deploying the timezone column:
    python -m soradin.backfill_timezones [--dry-run]
"""
import argparse
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from soradin.core import config
from soradin.core.timezones import infer_timezone_from_province
from soradin.database import SessionLocal
from soradin.models.specialist import Specialist

logger = logging.getLogger(__name__)


def backfill_timezones(db: Session, dry_run: bool = False) -> dict[str, int]:
    """Assign an IANA zone to every specialist without one.

    Unrecognized or missing provinces get the configured default zone.
    """
    counts = {'matched': 0, 'defaulted': 0}
    specialists = db.query(Specialist).filter(
        (Specialist.timezone.is_(None)) | (Specialist.timezone == '')
    ).order_by(Specialist.id.asc()).all()

    for specialist in specialists:
        inferred = infer_timezone_from_province(specialist.province)
        if inferred is None:
            logger.warning(
                'No timezone for province %r of specialist %s; using %s',
                specialist.province,
                specialist.id,
                config.DEFAULT_TIMEZONE,
            )
            specialist.timezone = config.DEFAULT_TIMEZONE
            counts['defaulted'] += 1
        else:
            specialist.timezone = inferred
            counts['matched'] += 1

    if dry_run:
        db.rollback()
    else:
        db.commit()
    return counts


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('--dry-run', action='store_true', help='report changes without saving them')
    args = parser.parse_args(argv)

    logging.basicConfig(level=config.LOG_LEVEL.upper())
    db = SessionLocal()
    try:
        counts = backfill_timezones(db, dry_run=args.dry_run)
    except SQLAlchemyError as exc:
        db.rollback()
        print(f"Backfill failed: {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()

    prefix = "Would update" if args.dry_run else "Updated"
    print(f"{prefix} {counts['matched']} from province, {counts['defaulted']} with the default zone")


if __name__ == "__main__":
    main()
