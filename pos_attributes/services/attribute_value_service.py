from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import structlog
from sqlalchemy import Integer, delete, exists, insert, literal, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import InstrumentedAttribute, Session

from pos_attributes.models import AttributeDefinition, AttributeLink, AttributeValue, DefinitionType
from pos_attributes.services.appconfig_service import get_dateformat
from pos_attributes.services.date_format_service import format_date, parse_date, parse_decimal

logger = structlog.get_logger()

LINK_CONTEXT_COLUMNS = {
    'sale_id': AttributeLink.sale_id,
    'receiving_id': AttributeLink.receiving_id,
}


@dataclass
class LinkValues:
    attribute_values: str | None
    attribute_dtvalues: str | None


def _context_column(sale_receiving_fk: str) -> InstrumentedAttribute:
    try:
        return LINK_CONTEXT_COLUMNS[sale_receiving_fk]
    except KeyError as exc:
        raise ValueError(f'Unknown link context: {sale_receiving_fk}') from exc


def _item_scope() -> tuple:
    return (AttributeLink.sale_id.is_(None), AttributeLink.receiving_id.is_(None))


def typed_value(
    db: Session, attribute_value: str | None, definition_type: DefinitionType
) -> tuple[InstrumentedAttribute, str | Decimal | date | None]:
    """Pick the attribute_values column a definition type stores into and normalise the raw value for it."""
    if definition_type == DefinitionType.DATE:
        return AttributeValue.attribute_date, parse_date(attribute_value, get_dateformat(db))
    if definition_type == DefinitionType.DECIMAL:
        return AttributeValue.attribute_decimal, parse_decimal(attribute_value)
    return AttributeValue.attribute_value, attribute_value


def _lookup_value_id(db: Session, column: InstrumentedAttribute, value) -> int | None:
    return db.execute(
        select(AttributeValue.attribute_id).where(column == value).order_by(AttributeValue.attribute_id.asc()).limit(1)
    ).scalar_one_or_none()


def value_exists(db: Session, attribute_value: str | None, definition_type: DefinitionType = DefinitionType.TEXT) -> int | None:
    column, value = typed_value(db, attribute_value, DefinitionType(definition_type))
    return _lookup_value_id(db, column, value)


def find_or_create_value(db: Session, attribute_value: str | None, definition_type: DefinitionType) -> int:
    column, value = typed_value(db, attribute_value, definition_type)
    attribute_id = _lookup_value_id(db, column, value)
    if attribute_id is not None:
        return attribute_id

    row = AttributeValue(**{column.key: value})
    db.add(row)
    db.flush()
    return row.attribute_id


def _definition_active(db: Session, definition_id: int) -> bool:
    deleted = db.execute(
        select(AttributeDefinition.deleted).where(AttributeDefinition.definition_id == definition_id)
    ).scalar_one_or_none()
    return deleted is False


def link_exists(db: Session, item_id: int, definition_id: int | None = None) -> bool:
    query = select(AttributeLink.link_id).where(AttributeLink.item_id == item_id, *_item_scope())
    if definition_id:
        query = query.where(AttributeLink.definition_id == definition_id)
    return db.execute(query.limit(1)).first() is not None


def upsert_link(db: Session, *, item_id: int, definition_id: int, attribute_id: int | None) -> None:
    result = db.execute(
        update(AttributeLink)
        .where(
            AttributeLink.item_id == item_id,
            AttributeLink.definition_id == definition_id,
            *_item_scope(),
        )
        .values(attribute_id=attribute_id)
        .execution_options(synchronize_session='fetch')
    )
    if result.rowcount == 0:
        db.add(AttributeLink(attribute_id=attribute_id, item_id=item_id, definition_id=definition_id))
    db.flush()


def save_link(db: Session, *, item_id: int, definition_id: int, attribute_id: int | None) -> bool:
    try:
        with db.begin_nested():
            if not _definition_active(db, definition_id):
                logger.warning('attribute.link_rejected', item_id=item_id, definition_id=definition_id)
                return False
            upsert_link(db, item_id=item_id, definition_id=definition_id, attribute_id=attribute_id)
    except SQLAlchemyError:
        logger.exception('attribute.save_link_failed', item_id=item_id, definition_id=definition_id)
        return False
    return True


def delete_link(db: Session, *, item_id: int, definition_id: int | None = None) -> bool:
    query = delete(AttributeLink).where(AttributeLink.item_id == item_id, *_item_scope())
    if definition_id:
        query = query.where(AttributeLink.definition_id == definition_id)
    try:
        with db.begin_nested():
            db.execute(query.execution_options(synchronize_session='fetch'))
    except SQLAlchemyError:
        logger.exception('attribute.delete_link_failed', item_id=item_id, definition_id=definition_id)
        return False
    return True


def _is_sole_reference(db: Session, *, attribute_id: int, item_id: int, definition_id: int) -> bool:
    refs = db.execute(
        select(AttributeLink.item_id, AttributeLink.definition_id, AttributeLink.sale_id, AttributeLink.receiving_id)
        .where(AttributeLink.attribute_id == attribute_id)
        .limit(2)
    ).all()
    return len(refs) == 1 and tuple(refs[0]) == (item_id, definition_id, None, None)


def save_value(
    db: Session,
    *,
    attribute_value: str | None,
    definition_id: int,
    item_id: int | None = None,
    attribute_id: int | None = None,
    definition_type: DefinitionType = DefinitionType.DROPDOWN,
) -> int | None:
    """Store a value and link it to an item, or to the definition itself when no item is given.

    Value rows are shared between links. An existing row is only rewritten in place when the
    item's link is its sole reference and no other row already holds the new value; otherwise
    the link is repointed. Raises ValueError for values that do not fit the definition type.
    Returns None when the definition is missing or soft-deleted.
    """
    definition_type = DefinitionType(definition_type)
    try:
        with db.begin_nested():
            if not _definition_active(db, definition_id):
                logger.warning('attribute.value_rejected', item_id=item_id, definition_id=definition_id)
                return None
            column, value = typed_value(db, attribute_value, definition_type)
            existing_id = _lookup_value_id(db, column, value)

            if (
                item_id
                and attribute_id
                and existing_id is None
                and _is_sole_reference(db, attribute_id=attribute_id, item_id=item_id, definition_id=definition_id)
            ):
                db.execute(
                    update(AttributeValue)
                    .where(AttributeValue.attribute_id == attribute_id)
                    .values({column.key: value})
                    .execution_options(synchronize_session='fetch')
                )
                new_attribute_id = attribute_id
            elif existing_id is not None:
                new_attribute_id = existing_id
            else:
                row = AttributeValue(**{column.key: value})
                db.add(row)
                db.flush()
                new_attribute_id = row.attribute_id

            if item_id:
                upsert_link(db, item_id=item_id, definition_id=definition_id, attribute_id=new_attribute_id)
            elif not _option_link_exists(db, definition_id=definition_id, attribute_id=new_attribute_id):
                db.add(AttributeLink(attribute_id=new_attribute_id, item_id=None, definition_id=definition_id))
                db.flush()
    except SQLAlchemyError:
        logger.exception('attribute.save_value_failed', definition_id=definition_id, item_id=item_id)
        return None
    return new_attribute_id


def _option_link_exists(db: Session, *, definition_id: int, attribute_id: int) -> bool:
    return (
        db.execute(
            select(AttributeLink.link_id)
            .where(
                AttributeLink.definition_id == definition_id,
                AttributeLink.attribute_id == attribute_id,
                AttributeLink.item_id.is_(None),
                *_item_scope(),
            )
            .limit(1)
        ).first()
        is not None
    )


def delete_value(db: Session, attribute_value: str, definition_id: int) -> bool:
    attribute_ids = (
        db.execute(
            select(AttributeValue.attribute_id)
            .select_from(AttributeValue)
            .join(AttributeLink, AttributeLink.attribute_id == AttributeValue.attribute_id)
            .where(AttributeValue.attribute_value == attribute_value, AttributeLink.definition_id == definition_id)
            .distinct()
        )
        .scalars()
        .all()
    )
    if not attribute_ids:
        return True

    try:
        with db.begin_nested():
            db.execute(
                delete(AttributeLink)
                .where(AttributeLink.definition_id == definition_id, AttributeLink.attribute_id.in_(attribute_ids))
                .execution_options(synchronize_session='fetch')
            )
            db.execute(
                delete(AttributeValue)
                .where(
                    AttributeValue.attribute_id.in_(attribute_ids),
                    ~exists().where(AttributeLink.attribute_id == AttributeValue.attribute_id),
                )
                .execution_options(synchronize_session='fetch')
            )
    except SQLAlchemyError:
        logger.exception('attribute.delete_value_failed', definition_id=definition_id)
        return False
    return True


def get_link_value(db: Session, item_id: int, definition_id: int) -> AttributeLink | None:
    return db.execute(
        select(AttributeLink)
        .where(AttributeLink.item_id == item_id, AttributeLink.definition_id == definition_id, *_item_scope())
        .order_by(AttributeLink.link_id.asc())
        .limit(1)
    ).scalar_one_or_none()


def get_link_values(
    db: Session,
    *,
    item_id: int,
    sale_receiving_fk: str,
    id: int | None,
    definition_flags: int,
) -> LinkValues:
    context_column = _context_column(sale_receiving_fk)
    query = (
        select(AttributeValue.attribute_value, AttributeValue.attribute_date)
        .select_from(AttributeLink)
        .join(AttributeValue, AttributeValue.attribute_id == AttributeLink.attribute_id)
        .join(AttributeDefinition, AttributeDefinition.definition_id == AttributeLink.definition_id)
        .where(
            AttributeDefinition.definition_type != DefinitionType.GROUP,
            AttributeDefinition.deleted.is_(False),
            AttributeLink.item_id == int(item_id),
            AttributeDefinition.definition_flags.op('&')(int(definition_flags)) != 0,
        )
        .order_by(AttributeLink.definition_id.asc(), AttributeLink.link_id.asc())
    )
    if id:
        query = query.where(context_column == id)
    else:
        query = query.where(*_item_scope())

    rows = db.execute(query).all()
    dateformat = get_dateformat(db)
    text_values = [row.attribute_value for row in rows if row.attribute_value is not None]
    date_values = [format_date(row.attribute_date, dateformat) for row in rows if row.attribute_date is not None]
    return LinkValues(
        attribute_values=', '.join(text_values) if text_values else None,
        attribute_dtvalues=', '.join(date_values) if date_values else None,
    )


def get_attribute_value(db: Session, item_id: int, definition_id: int) -> AttributeValue | None:
    return db.execute(
        select(AttributeValue)
        .select_from(AttributeValue)
        .join(AttributeLink, AttributeLink.attribute_id == AttributeValue.attribute_id)
        .where(
            AttributeLink.item_id == int(item_id),
            AttributeLink.definition_id == definition_id,
            *_item_scope(),
        )
        .order_by(AttributeLink.link_id.asc())
        .limit(1)
    ).scalar_one_or_none()


def get_attribute_values(db: Session, item_id: int) -> dict[int, dict]:
    rows = db.execute(
        select(
            AttributeValue.attribute_value,
            AttributeValue.attribute_decimal,
            AttributeValue.attribute_date,
            AttributeLink.definition_id,
        )
        .select_from(AttributeLink)
        .join(AttributeValue, AttributeLink.attribute_id == AttributeValue.attribute_id)
        .where(AttributeLink.item_id == int(item_id), *_item_scope())
        .order_by(AttributeLink.link_id.asc())
    ).all()
    return {row.definition_id: dict(row._mapping) for row in rows}


def copy_attribute_links(db: Session, *, item_id: int, sale_receiving_fk: str, id: int) -> bool:
    context_column = _context_column(sale_receiving_fk)
    source = (
        select(
            literal(item_id, Integer),
            AttributeLink.definition_id,
            AttributeLink.attribute_id,
            literal(id, Integer),
        )
        .select_from(AttributeLink)
        .join(AttributeDefinition, AttributeDefinition.definition_id == AttributeLink.definition_id)
        .where(AttributeLink.item_id == item_id, AttributeDefinition.deleted.is_(False), *_item_scope())
    )
    try:
        with db.begin_nested():
            db.execute(
                insert(AttributeLink.__table__).from_select(
                    ['item_id', 'definition_id', 'attribute_id', context_column.key], source
                )
            )
    except SQLAlchemyError:
        logger.exception('attribute.copy_links_failed', item_id=item_id, context=sale_receiving_fk, context_id=id)
        return False
    return True


def get_suggestions(db: Session, definition_id: int, term: str) -> list[dict]:
    rows = db.execute(
        select(AttributeValue.attribute_value, AttributeValue.attribute_id)
        .distinct()
        .select_from(AttributeDefinition)
        .join(AttributeLink, AttributeLink.definition_id == AttributeDefinition.definition_id)
        .join(AttributeValue, AttributeValue.attribute_id == AttributeLink.attribute_id)
        .where(
            AttributeValue.attribute_value.icontains(term or '', autoescape=True),
            AttributeDefinition.deleted.is_(False),
            AttributeDefinition.definition_id == definition_id,
        )
        .order_by(AttributeValue.attribute_value.asc())
    ).all()
    return [{'value': row.attribute_id, 'label': row.attribute_value} for row in rows]


def get_attributes_by_definition(db: Session, definition_id: int) -> list[dict]:
    rows = db.execute(
        select(
            AttributeLink.link_id,
            AttributeLink.attribute_id,
            AttributeLink.item_id,
            AttributeValue.attribute_value,
            AttributeValue.attribute_decimal,
            AttributeValue.attribute_date,
        )
        .select_from(AttributeLink)
        .join(AttributeValue, AttributeValue.attribute_id == AttributeLink.attribute_id)
        .where(AttributeLink.definition_id == definition_id)
        .order_by(AttributeLink.link_id.asc())
    ).all()
    return [dict(row._mapping) for row in rows]


def get_items_by_value(db: Session, attribute_value: str | None, definition_id: int) -> list[int]:
    return (
        db.execute(
            select(AttributeLink.item_id)
            .select_from(AttributeLink)
            .join(AttributeValue, AttributeValue.attribute_id == AttributeLink.attribute_id)
            .where(
                AttributeLink.definition_id == definition_id,
                AttributeValue.attribute_value == attribute_value,
                AttributeLink.item_id.is_not(None),
            )
            .order_by(AttributeLink.item_id.asc())
        )
        .scalars()
        .all()
    )


def delete_orphaned_links(db: Session, definition_id: int) -> bool:
    """Remove links of a definition that belong to no item. Dropdown options are kept."""
    definition_type = db.execute(
        select(AttributeDefinition.definition_type).where(AttributeDefinition.definition_id == definition_id)
    ).scalar_one_or_none()
    if definition_type is None or definition_type == DefinitionType.DROPDOWN:
        return True

    try:
        with db.begin_nested():
            result = db.execute(
                delete(AttributeLink)
                .where(AttributeLink.item_id.is_(None), AttributeLink.definition_id == definition_id)
                .execution_options(synchronize_session='fetch')
            )
    except SQLAlchemyError:
        logger.exception('attribute.delete_orphaned_links_failed', definition_id=definition_id)
        return False
    logger.debug('attribute.orphaned_links_deleted', definition_id=definition_id, removed=result.rowcount)
    return True


def delete_orphaned_values(db: Session) -> bool:
    try:
        with db.begin_nested():
            result = db.execute(
                delete(AttributeValue)
                .where(~exists().where(AttributeLink.attribute_id == AttributeValue.attribute_id))
                .execution_options(synchronize_session='fetch')
            )
    except SQLAlchemyError:
        logger.exception('attribute.delete_orphaned_values_failed')
        return False
    logger.debug('attribute.orphaned_values_deleted', removed=result.rowcount)
    return True
