from __future__ import annotations

import argparse

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_attributes.config import settings
from pos_attributes.db import SessionLocal
from pos_attributes.log import configure_logging
from pos_attributes.models import AttributeDefinition
from pos_attributes.services.attribute_value_service import delete_orphaned_links, delete_orphaned_values

logger = structlog.get_logger()


def purge_orphans(db: Session, *, definition_ids: list[int] | None = None) -> tuple[int, bool]:
    """Sweep links without an item and values without a link. Returns (definitions swept, success)."""
    if not definition_ids:
        definition_ids = db.execute(
            select(AttributeDefinition.definition_id).order_by(AttributeDefinition.definition_id.asc())
        ).scalars().all()

    success = True
    for definition_id in definition_ids:
        if not delete_orphaned_links(db, definition_id):
            success = False
    if not delete_orphaned_values(db):
        success = False
    return len(definition_ids), success


def main(argv: list[str] | None = None) -> None:
    configure_logging(settings.log_level)
    parser = argparse.ArgumentParser(description='Remove orphaned attribute links and values.')
    parser.add_argument(
        '--definition-id',
        type=int,
        action='append',
        dest='definition_ids',
        help='Limit the link sweep to this definition (repeatable). Values are always swept globally.',
    )
    parser.add_argument('--dry-run', action='store_true', help='Roll back instead of committing.')
    args = parser.parse_args(argv)

    with SessionLocal() as db:
        swept, success = purge_orphans(db, definition_ids=args.definition_ids)
        if args.dry_run or not success:
            db.rollback()
        else:
            db.commit()

    logger.info('attribute.purge_finished', definitions=swept, success=success, dry_run=args.dry_run)
    print(f'Orphan purge complete: definitions={swept}, success={success}, dry_run={args.dry_run}')
    if not success:
        raise SystemExit(1)


if __name__ == '__main__':
    main()
