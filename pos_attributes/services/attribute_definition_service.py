from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass

import structlog
from sqlalchemy import String, cast, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from pos_attributes.models import AttributeDefinition, AttributeLink, AttributeValue, DefinitionFlag, DefinitionType
from pos_attributes.services.attribute_conversion_service import convert_definition_data

logger = structlog.get_logger()

NO_DEFINITION_ID = -1
CATEGORY_DEFINITION_ID = -2
NONE_SELECTED_TEXT = '[Select]'

ParentDefinition = aliased(AttributeDefinition, name='parent_definition')

SORT_COLUMNS = {
    'definition_id': AttributeDefinition.definition_id,
    'definition_name': func.lower(AttributeDefinition.definition_name),
    'definition_type': AttributeDefinition.definition_type,
    'definition_flags': AttributeDefinition.definition_flags,
    'definition_group': func.lower(ParentDefinition.definition_name),
}


class _ConversionAborted(Exception):
    pass


@dataclass
class DefinitionInfo:
    """Definition row joined with its group name. `empty()` stands in for a missing definition."""

    definition_id: int | None = None
    definition_name: str = ''
    definition_type: str = ''
    definition_flags: int | None = None
    definition_fk: int | None = None
    deleted: bool = False
    definition_group: str | None = None
    found: bool = False

    @classmethod
    def empty(cls) -> DefinitionInfo:
        return cls()

    @classmethod
    def from_row(cls, definition: AttributeDefinition, definition_group: str | None) -> DefinitionInfo:
        return cls(
            definition_id=definition.definition_id,
            definition_name=definition.definition_name,
            definition_type=DefinitionType(definition.definition_type).value,
            definition_flags=definition.definition_flags,
            definition_fk=definition.definition_fk,
            deleted=definition.deleted,
            definition_group=definition_group,
            found=True,
        )

    def to_dict(self) -> dict:
        return asdict(self)


def _definition_dict(definition: AttributeDefinition) -> dict:
    return {
        'definition_id': definition.definition_id,
        'definition_name': definition.definition_name,
        'definition_type': DefinitionType(definition.definition_type).value,
        'definition_flags': definition.definition_flags,
        'definition_fk': definition.definition_fk,
        'deleted': definition.deleted,
    }


def _with_group():
    return select(AttributeDefinition, ParentDefinition.definition_name.label('definition_group')).outerjoin(
        ParentDefinition, ParentDefinition.definition_id == AttributeDefinition.definition_fk
    )


def get_definition_flags() -> dict[int, str]:
    return {flag.value: flag.name for flag in DefinitionFlag}


def exists(db: Session, definition_id: int, deleted: bool = False) -> bool:
    count = db.execute(
        select(func.count())
        .select_from(AttributeDefinition)
        .where(AttributeDefinition.definition_id == definition_id, AttributeDefinition.deleted.is_(deleted))
    ).scalar_one()
    return count == 1


def get_info(db: Session, definition_id: int) -> DefinitionInfo:
    row = db.execute(_with_group().where(AttributeDefinition.definition_id == definition_id)).one_or_none()
    if row is None:
        return DefinitionInfo.empty()
    return DefinitionInfo.from_row(row[0], row.definition_group)


def _search_query(search: str):
    term = search or ''
    return _with_group().where(
        or_(
            AttributeDefinition.definition_name.icontains(term, autoescape=True),
            cast(AttributeDefinition.definition_type, String).icontains(term, autoescape=True),
        ),
        AttributeDefinition.deleted.is_(False),
    )


def search(
    db: Session,
    search: str,
    *,
    rows: int = 0,
    limit_from: int = 0,
    sort: str = 'definition_name',
    order: str = 'asc',
) -> list[DefinitionInfo]:
    sort_column = SORT_COLUMNS.get(sort.removeprefix('definition.'), SORT_COLUMNS['definition_name'])
    ordering = sort_column.desc() if order.lower() == 'desc' else sort_column.asc()
    query = _search_query(search).order_by(ordering, AttributeDefinition.definition_id.asc())
    if rows > 0:
        query = query.limit(rows).offset(max(limit_from, 0))
    return [DefinitionInfo.from_row(row[0], row.definition_group) for row in db.execute(query).all()]


def get_total_rows(db: Session) -> int:
    return db.execute(
        select(func.count()).select_from(AttributeDefinition).where(AttributeDefinition.deleted.is_(False))
    ).scalar_one()


def get_found_rows(db: Session, search: str) -> int:
    return db.execute(select(func.count()).select_from(_search_query(search).subquery())).scalar_one()


def get_attributes_by_item(db: Session, item_id: int) -> dict[int, dict]:
    rows = db.execute(
        select(AttributeDefinition, AttributeLink.attribute_id, AttributeLink.item_id)
        .join(AttributeLink, AttributeLink.definition_id == AttributeDefinition.definition_id)
        .where(
            AttributeLink.item_id == item_id,
            AttributeLink.sale_id.is_(None),
            AttributeLink.receiving_id.is_(None),
            AttributeDefinition.deleted.is_(False),
        )
        .order_by(AttributeDefinition.definition_name.asc())
    ).all()
    return {
        row[0].definition_id: {**_definition_dict(row[0]), 'attribute_id': row.attribute_id, 'item_id': row.item_id}
        for row in rows
    }


def get_values_by_definitions(db: Session, definition_ids: Iterable[int] | None) -> dict[int, dict]:
    ids = list(definition_ids or [])
    if not ids:
        return {}

    definitions = (
        db.execute(
            select(AttributeDefinition)
            .where(
                or_(
                    AttributeDefinition.definition_fk.in_(ids),
                    (AttributeDefinition.definition_id.in_(ids))
                    & (AttributeDefinition.definition_type != DefinitionType.GROUP),
                ),
                AttributeDefinition.deleted.is_(False),
            )
            .order_by(AttributeDefinition.definition_id.asc())
        )
        .scalars()
        .all()
    )
    return {definition.definition_id: _definition_dict(definition) for definition in definitions}


def get_definitions_by_type(
    db: Session, definition_type: DefinitionType, definition_id: int = NO_DEFINITION_ID
) -> dict[int, str]:
    query = select(AttributeDefinition.definition_id, AttributeDefinition.definition_name).where(
        AttributeDefinition.definition_type == DefinitionType(definition_type),
        AttributeDefinition.deleted.is_(False),
        AttributeDefinition.definition_fk.is_(None),
    )
    if definition_id != CATEGORY_DEFINITION_ID:
        query = query.where(AttributeDefinition.definition_id != definition_id)
    rows = db.execute(query.order_by(AttributeDefinition.definition_id.asc())).all()
    return {row.definition_id: row.definition_name for row in rows}


def get_definitions_by_flags(db: Session, definition_flags: int) -> dict[int, str]:
    rows = db.execute(
        select(AttributeDefinition.definition_id, AttributeDefinition.definition_name)
        .where(
            AttributeDefinition.definition_flags.op('&')(int(definition_flags)) != 0,
            AttributeDefinition.deleted.is_(False),
            AttributeDefinition.definition_type != DefinitionType.GROUP,
        )
        .order_by(AttributeDefinition.definition_id.asc())
    ).all()
    return {row.definition_id: row.definition_name for row in rows}


def get_definition_names(db: Session, groups: bool = True) -> dict[int, str]:
    query = select(AttributeDefinition.definition_id, AttributeDefinition.definition_name).where(
        AttributeDefinition.deleted.is_(False)
    )
    if not groups:
        query = query.where(AttributeDefinition.definition_type != DefinitionType.GROUP)
    rows = db.execute(query.order_by(AttributeDefinition.definition_name.asc())).all()

    definition_names = {NO_DEFINITION_ID: NONE_SELECTED_TEXT}
    definition_names.update({row.definition_id: row.definition_name for row in rows})
    return definition_names


def get_definition_values(db: Session, definition_id: int) -> dict[int, str]:
    if definition_id <= 0 and definition_id != CATEGORY_DEFINITION_ID:
        return {}

    rows = db.execute(
        select(AttributeValue.attribute_id, AttributeValue.attribute_value)
        .select_from(AttributeLink)
        .join(AttributeValue, AttributeValue.attribute_id == AttributeLink.attribute_id)
        .where(AttributeLink.item_id.is_(None), AttributeLink.definition_id == definition_id)
        .order_by(AttributeValue.attribute_value.asc())
    ).all()
    return {row.attribute_id: row.attribute_value for row in rows}


def get_definition_by_name(
    db: Session, definition_name: str, definition_type: DefinitionType | None = None
) -> list[dict]:
    query = select(AttributeDefinition).where(AttributeDefinition.definition_name == definition_name)
    if definition_type:
        query = query.where(AttributeDefinition.definition_type == DefinitionType(definition_type))
    definitions = db.execute(query.order_by(AttributeDefinition.definition_id.asc())).scalars().all()
    return [_definition_dict(definition) for definition in definitions]


def save_definition(
    db: Session,
    *,
    definition_name: str,
    definition_type: DefinitionType,
    definition_flags: int = 0,
    definition_fk: int | None = None,
    definition_id: int = NO_DEFINITION_ID,
) -> int | None:
    """Insert or update a definition, converting dependent values when its type changes.

    Everything runs in one savepoint: a rejected conversion or a database error leaves no trace.
    Returns the definition id, or None on failure.
    """
    definition_type = DefinitionType(definition_type)
    definition_name = (definition_name or '').strip()
    if not definition_name:
        raise ValueError('Definition name is required')
    if definition_fk is not None and definition_fk <= 0:
        definition_fk = None
    if definition_fk is not None and definition_fk == definition_id:
        raise ValueError('A definition cannot be its own group')

    try:
        with db.begin_nested():
            definition = db.get(AttributeDefinition, definition_id) if definition_id != NO_DEFINITION_ID else None

            if definition is None:
                definition = AttributeDefinition(
                    definition_name=definition_name,
                    definition_type=definition_type,
                    definition_flags=int(definition_flags),
                    definition_fk=definition_fk,
                    deleted=False,
                )
                db.add(definition)
                db.flush()
                logger.info(
                    'attribute.definition_created',
                    definition_id=definition.definition_id,
                    definition_type=definition_type.value,
                )
                return definition.definition_id

            if definition.deleted:
                definition.deleted = False

            from_type = DefinitionType(definition.definition_type)
            definition.definition_name = definition_name
            definition.definition_type = definition_type
            definition.definition_flags = int(definition_flags)
            definition.definition_fk = definition_fk
            db.flush()

            if from_type != definition_type:
                if not convert_definition_data(db, definition.definition_id, from_type, definition_type):
                    raise _ConversionAborted()
                logger.info(
                    'attribute.definition_converted',
                    definition_id=definition.definition_id,
                    from_type=from_type.value,
                    to_type=definition_type.value,
                )
            return definition.definition_id
    except _ConversionAborted:
        return None
    except SQLAlchemyError:
        logger.exception('attribute.save_definition_failed', definition_id=definition_id)
        return None


def _set_deleted(db: Session, definition_ids: list[int], deleted: bool) -> bool:
    if not definition_ids:
        return False
    try:
        with db.begin_nested():
            db.execute(
                update(AttributeDefinition)
                .where(AttributeDefinition.definition_id.in_(definition_ids))
                .values(deleted=deleted)
                .execution_options(synchronize_session='fetch')
            )
    except SQLAlchemyError:
        logger.exception('attribute.set_deleted_failed', definition_ids=definition_ids, deleted=deleted)
        return False
    return True


def delete_definition(db: Session, definition_id: int) -> bool:
    return _set_deleted(db, [definition_id], True)


def delete_definition_list(db: Session, definition_ids: Iterable[int]) -> bool:
    return _set_deleted(db, list(definition_ids), True)


def undelete(db: Session, definition_id: int) -> bool:
    return _set_deleted(db, [definition_id], False)
