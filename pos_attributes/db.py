from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pos_attributes.config import settings


def create_db_engine(url: str, *, echo: bool = False) -> Engine:
    if not url.startswith('sqlite'):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    engine_kwargs = {'echo': echo, 'connect_args': {'check_same_thread': False}}
    if url in {'sqlite://', 'sqlite:///:memory:'}:
        engine_kwargs['poolclass'] = StaticPool
    engine = create_engine(url, **engine_kwargs)

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; take over transaction start.
    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_begin(dbapi_connection, _connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _emit_begin(conn) -> None:
        conn.exec_driver_sql('BEGIN')

    return engine


engine = create_db_engine(settings.database_url_normalized, echo=settings.database_echo)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
