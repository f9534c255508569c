from __future__ import annotations

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pos_attributes.models import AttributeLink, AttributeValue, DefinitionType
from pos_attributes.services.appconfig_service import get_dateformat
from pos_attributes.services.attribute_value_service import (
    delete_orphaned_links,
    delete_orphaned_values,
    find_or_create_value,
    get_attributes_by_definition,
    get_items_by_value,
)
from pos_attributes.services.date_format_service import valid_date, valid_decimal

logger = structlog.get_logger()

CHECKBOX_FALSE = '0'
CHECKBOX_TRUE = '1'
FALSE_CHECKBOX_VALUES = {'FALSE', '0', ''}


def is_false_checkbox_value(value: str | None) -> bool:
    return value is None or value.strip().upper() in FALSE_CHECKBOX_VALUES


def check_data_validity(db: Session, definition_id: int, from_type: DefinitionType, to_type: DefinitionType) -> bool:
    """Check that every text value linked to a definition survives conversion to a typed column.

    Each offending value is logged together with the items carrying it.
    """
    if from_type != DefinitionType.TEXT:
        return False
    if to_type not in {DefinitionType.DATE, DefinitionType.DECIMAL}:
        return True

    dateformat = get_dateformat(db)
    values = (
        db.execute(
            select(AttributeValue.attribute_value)
            .distinct()
            .select_from(AttributeValue)
            .join(AttributeLink, AttributeLink.attribute_id == AttributeValue.attribute_id)
            .where(AttributeLink.definition_id == definition_id)
        )
        .scalars()
        .all()
    )

    success = True
    for value in values:
        if to_type == DefinitionType.DATE:
            valid = valid_date(value, dateformat)
        else:
            valid = valid_decimal(value)
        if not valid:
            logger.error(
                'attribute.conversion_rejected',
                definition_id=definition_id,
                attribute_value=value,
                to_type=to_type.value,
                affected_items=get_items_by_value(db, value, definition_id),
            )
            success = False
    return success


def checkbox_attribute_values(db: Session) -> tuple[int, int]:
    return (
        find_or_create_value(db, CHECKBOX_FALSE, DefinitionType.TEXT),
        find_or_create_value(db, CHECKBOX_TRUE, DefinitionType.TEXT),
    )


def _retype_values(db: Session, definition_id: int, to_type: DefinitionType) -> bool:
    try:
        with db.begin_nested():
            for attribute in get_attributes_by_definition(db, definition_id):
                new_attribute_id = find_or_create_value(db, attribute['attribute_value'], to_type)
                db.execute(
                    update(AttributeLink)
                    .where(AttributeLink.link_id == attribute['link_id'])
                    .values(attribute_id=new_attribute_id)
                    .execution_options(synchronize_session='fetch')
                )
    except SQLAlchemyError:
        logger.exception('attribute.conversion_failed', definition_id=definition_id, to_type=to_type.value)
        return False
    return True


def _convert_to_checkbox(db: Session, definition_id: int) -> bool:
    try:
        with db.begin_nested():
            false_id, true_id = checkbox_attribute_values(db)
            rows = db.execute(
                select(AttributeLink.link_id, AttributeValue.attribute_value)
                .select_from(AttributeLink)
                .outerjoin(AttributeValue, AttributeValue.attribute_id == AttributeLink.attribute_id)
                .where(AttributeLink.definition_id == definition_id)
            ).all()

            false_links = [row.link_id for row in rows if is_false_checkbox_value(row.attribute_value)]
            true_links = [row.link_id for row in rows if not is_false_checkbox_value(row.attribute_value)]
            for link_ids, target_id in ((false_links, false_id), (true_links, true_id)):
                if not link_ids:
                    continue
                db.execute(
                    update(AttributeLink)
                    .where(AttributeLink.link_id.in_(link_ids))
                    .values(attribute_id=target_id)
                    .execution_options(synchronize_session='fetch')
                )
    except SQLAlchemyError:
        logger.exception('attribute.conversion_failed', definition_id=definition_id, to_type=DefinitionType.CHECKBOX.value)
        return False
    return True


def convert_definition_data(
    db: Session, definition_id: int, from_type: DefinitionType, to_type: DefinitionType
) -> bool:
    from_type = DefinitionType(from_type)
    to_type = DefinitionType(to_type)

    if from_type == DefinitionType.TEXT:
        if to_type in {DefinitionType.DATE, DefinitionType.DECIMAL}:
            success = check_data_validity(db, definition_id, from_type, to_type) and _retype_values(
                db, definition_id, to_type
            )
        elif to_type == DefinitionType.DROPDOWN:
            success = True
        elif to_type == DefinitionType.CHECKBOX:
            success = _convert_to_checkbox(db, definition_id)
        else:
            success = False
    elif from_type == DefinitionType.DROPDOWN:
        if to_type == DefinitionType.TEXT:
            success = True
        elif to_type == DefinitionType.CHECKBOX:
            success = _convert_to_checkbox(db, definition_id)
        else:
            success = False
    else:
        success = True

    if not success:
        logger.warning(
            'attribute.conversion_aborted',
            definition_id=definition_id,
            from_type=from_type.value,
            to_type=to_type.value,
        )

    swept = delete_orphaned_links(db, definition_id)
    swept = delete_orphaned_values(db) and swept
    return success and swept
