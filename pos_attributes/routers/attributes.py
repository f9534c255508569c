from __future__ import annotations

import operator
from functools import reduce

import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from pos_attributes.config import settings
from pos_attributes.db import get_db
from pos_attributes.dependencies import get_client_ip
from pos_attributes.models import DefinitionType
from pos_attributes.services.attribute_definition_service import (
    NO_DEFINITION_ID,
    delete_definition_list,
    get_definition_values,
    get_found_rows,
    get_info,
    save_definition,
    search,
    undelete,
)
from pos_attributes.services.attribute_value_service import delete_value, get_suggestions, save_value

router = APIRouter(prefix='/attributes', tags=['attributes'])
logger = structlog.get_logger()


def _result(success: bool, message: str, **extra) -> dict:
    return {'success': success, 'message': message, **extra}


def _int_or_none(raw) -> int | None:
    value = str(raw if raw is not None else '').strip()
    if not value.lstrip('-').isdigit():
        return None
    return int(value)


def _int_list(values) -> list[int]:
    return [parsed for parsed in (_int_or_none(value) for value in values) if parsed is not None]


@router.get('/search')
def search_definitions(request: Request, db: Session = Depends(get_db)):
    term = request.query_params.get('search', '').strip()
    limit = _int_or_none(request.query_params.get('limit'))
    offset = _int_or_none(request.query_params.get('offset')) or 0
    sort = request.query_params.get('sort', 'definition_name').strip() or 'definition_name'
    order = request.query_params.get('order', 'asc').strip() or 'asc'

    definitions = search(
        db,
        term,
        rows=settings.lines_per_page if limit is None else limit,
        limit_from=offset,
        sort=sort,
        order=order,
    )
    return {
        'total': get_found_rows(db, term),
        'rows': [definition.to_dict() for definition in definitions],
    }


@router.get('/suggest/{definition_id}')
def suggest(definition_id: int, request: Request, db: Session = Depends(get_db)):
    return get_suggestions(db, definition_id, request.query_params.get('term', ''))


@router.get('/definition_values/{definition_id}')
def definition_values(definition_id: int, db: Session = Depends(get_db)):
    return get_definition_values(db, definition_id)


@router.get('/{definition_id}')
def definition_info(definition_id: int, db: Session = Depends(get_db)):
    return get_info(db, definition_id).to_dict()


@router.post('/save_definition/{definition_id}')
async def save_definition_submit(definition_id: int, request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    definition_flags = reduce(operator.or_, _int_list(form.getlist('definition_flags')), 0)
    definition_fk = _int_or_none(form.get('definition_group'))

    try:
        saved_id = save_definition(
            db,
            definition_name=str(form.get('definition_name', '')),
            definition_type=DefinitionType(str(form.get('definition_type', DefinitionType.TEXT.value)).upper()),
            definition_flags=definition_flags,
            definition_fk=definition_fk,
            definition_id=definition_id,
        )
        if saved_id and str(form.get('definition_type', '')).upper() == DefinitionType.DROPDOWN.value:
            for option in form.getlist('definition_values'):
                option = str(option).strip()
                if option and save_value(db, attribute_value=option, definition_id=saved_id) is None:
                    saved_id = None
                    break
    except ValueError as exc:
        db.rollback()
        return _result(False, str(exc), definition_id=definition_id)

    if not saved_id:
        db.rollback()
        return _result(False, 'Attribute definition could not be saved', definition_id=definition_id)

    db.commit()
    logger.info('attribute.definition_saved', definition_id=saved_id, ip=get_client_ip(request))
    message = 'Attribute definition added' if definition_id == NO_DEFINITION_ID else 'Attribute definition updated'
    return _result(True, message, definition_id=saved_id)


@router.post('/save_attribute_value')
async def save_attribute_value(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    definition_id = _int_or_none(form.get('definition_id'))
    attribute_value = str(form.get('attribute_value', '')).strip()
    if definition_id is None or not attribute_value:
        return _result(False, 'Definition and value are required')

    attribute_id = save_value(db, attribute_value=attribute_value, definition_id=definition_id)
    if attribute_id is None:
        db.rollback()
        return _result(False, 'Attribute value could not be saved')

    db.commit()
    return _result(True, 'Attribute value saved', attribute_id=attribute_id)


@router.post('/delete_attribute_value')
async def delete_attribute_value(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    definition_id = _int_or_none(form.get('definition_id'))
    attribute_value = str(form.get('attribute_value', ''))
    if definition_id is None:
        return _result(False, 'Definition is required')

    if not delete_value(db, attribute_value, definition_id):
        db.rollback()
        return _result(False, 'Attribute value could not be deleted')

    db.commit()
    return _result(True, 'Attribute value deleted')


@router.post('/delete')
async def delete_definitions(request: Request, db: Session = Depends(get_db)):
    form = await request.form()
    definition_ids = _int_list(form.getlist('ids'))
    if not delete_definition_list(db, definition_ids):
        db.rollback()
        return _result(False, 'Attribute definitions could not be deleted')

    db.commit()
    logger.info('attribute.definitions_deleted', definition_ids=definition_ids, ip=get_client_ip(request))
    return _result(True, f'{len(definition_ids)} attribute definition(s) deleted', ids=definition_ids)


@router.post('/undelete/{definition_id}')
def undelete_definition(definition_id: int, request: Request, db: Session = Depends(get_db)):
    if not undelete(db, definition_id):
        db.rollback()
        return _result(False, 'Attribute definition could not be restored')

    db.commit()
    logger.info('attribute.definition_restored', definition_id=definition_id, ip=get_client_ip(request))
    return _result(True, 'Attribute definition restored')
