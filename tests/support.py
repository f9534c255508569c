from __future__ import annotations

import unittest
from contextlib import contextmanager
from datetime import date
from decimal import Decimal

from sqlalchemy import event, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from pos_attributes.db import create_db_engine
from pos_attributes.models import AttributeDefinition, AttributeLink, AttributeValue, Base, DefinitionType
from pos_attributes.services import appconfig_service


class DatabaseTestCase(unittest.TestCase):
    """Fresh in-memory SQLite schema per test, with the m/d/Y date format configured."""

    def setUp(self) -> None:
        self.engine = create_db_engine('sqlite://')
        Base.metadata.create_all(bind=self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        self.db = self.session_factory()
        appconfig_service.save(self.db, appconfig_service.DATEFORMAT_KEY, 'm/d/Y')
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def add_definition(
        self,
        name: str,
        definition_type: DefinitionType = DefinitionType.TEXT,
        *,
        flags: int = 0,
        definition_fk: int | None = None,
        deleted: bool = False,
    ) -> int:
        definition = AttributeDefinition(
            definition_name=name,
            definition_type=definition_type,
            definition_flags=int(flags),
            definition_fk=definition_fk,
            deleted=deleted,
        )
        self.db.add(definition)
        self.db.flush()
        return definition.definition_id

    def add_value(
        self,
        text: str | None = None,
        *,
        decimal: Decimal | None = None,
        on: date | None = None,
    ) -> int:
        value = AttributeValue(attribute_value=text, attribute_decimal=decimal, attribute_date=on)
        self.db.add(value)
        self.db.flush()
        return value.attribute_id

    def add_link(
        self,
        definition_id: int,
        attribute_id: int | None,
        *,
        item_id: int | None = None,
        sale_id: int | None = None,
        receiving_id: int | None = None,
    ) -> int:
        link = AttributeLink(
            definition_id=definition_id,
            attribute_id=attribute_id,
            item_id=item_id,
            sale_id=sale_id,
            receiving_id=receiving_id,
        )
        self.db.add(link)
        self.db.flush()
        return link.link_id

    def links_for(self, definition_id: int) -> list[AttributeLink]:
        return (
            self.db.execute(
                select(AttributeLink)
                .where(AttributeLink.definition_id == definition_id)
                .order_by(AttributeLink.link_id.asc())
                .execution_options(populate_existing=True)
            )
            .scalars()
            .all()
        )

    def value_count(self) -> int:
        return self.db.execute(select(func.count()).select_from(AttributeValue)).scalar_one()

    def value_row(self, attribute_id: int) -> AttributeValue | None:
        return self.db.execute(
            select(AttributeValue)
            .where(AttributeValue.attribute_id == attribute_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @contextmanager
    def failing_statements(self, prefix: str):
        """Raise OperationalError for every statement starting with `prefix` while active."""

        def _fail(_conn, _cursor, statement, parameters, _context, _executemany) -> None:
            if statement.lstrip().upper().startswith(prefix.upper()):
                raise OperationalError(statement, parameters, Exception('disk I/O error'))

        event.listen(self.engine, 'before_cursor_execute', _fail)
        try:
            yield
        finally:
            event.remove(self.engine, 'before_cursor_execute', _fail)
