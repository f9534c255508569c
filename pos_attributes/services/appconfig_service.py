from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from pos_attributes.config import settings
from pos_attributes.models import AppConfig

DATEFORMAT_KEY = 'dateformat'


def get(db: Session, key: str, default: str = '') -> str:
    value = db.execute(select(AppConfig.value).where(AppConfig.key == key)).scalar_one_or_none()
    return default if value is None else value


def get_all(db: Session) -> dict[str, str]:
    rows = db.execute(select(AppConfig.key, AppConfig.value).order_by(AppConfig.key.asc())).all()
    return {row.key: row.value for row in rows}


def save(db: Session, key: str, value: str | None) -> None:
    row = db.get(AppConfig, key)
    if row is None:
        db.add(AppConfig(key=key, value=value or ''))
    else:
        row.value = value or ''
    db.flush()


def batch_save(db: Session, data: dict[str, str | None]) -> None:
    for key, value in data.items():
        save(db, key, value)


def delete_key(db: Session, key: str) -> bool:
    result = db.execute(delete(AppConfig).where(AppConfig.key == key))
    return result.rowcount > 0


def get_dateformat(db: Session) -> str:
    return get(db, DATEFORMAT_KEY) or settings.default_dateformat
