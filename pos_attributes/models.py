from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum, IntFlag

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class DefinitionType(str, Enum):
    TEXT = 'TEXT'
    DATE = 'DATE'
    DECIMAL = 'DECIMAL'
    DROPDOWN = 'DROPDOWN'
    CHECKBOX = 'CHECKBOX'
    GROUP = 'GROUP'


class DefinitionFlag(IntFlag):
    SHOW_IN_ITEMS = 1
    SHOW_IN_SALES = 2
    SHOW_IN_RECEIVINGS = 4


class AttributeDefinition(Base):
    __tablename__ = 'attribute_definitions'

    definition_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    definition_name: Mapped[str] = mapped_column(String(255), nullable=False)
    definition_type: Mapped[DefinitionType] = mapped_column(
        SQLEnum(DefinitionType, name='definition_type', native_enum=False, length=45),
        nullable=False,
        default=DefinitionType.TEXT,
        server_default='TEXT',
    )
    definition_flags: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    definition_fk: Mapped[int | None] = mapped_column(Integer, ForeignKey('attribute_definitions.definition_id'))
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='0')


class AttributeValue(Base):
    __tablename__ = 'attribute_values'

    attribute_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    attribute_value: Mapped[str | None] = mapped_column(String(255))
    attribute_decimal: Mapped[Decimal | None] = mapped_column(Numeric(7, 3))
    attribute_date: Mapped[date | None] = mapped_column(Date)


class AttributeLink(Base):
    __tablename__ = 'attribute_links'
    __table_args__ = (
        CheckConstraint('sale_id IS NULL OR receiving_id IS NULL', name='ck_attribute_links_single_context'),
        Index('ix_attribute_links_item_definition', 'item_id', 'definition_id'),
    )

    link_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    attribute_id: Mapped[int | None] = mapped_column(Integer, ForeignKey('attribute_values.attribute_id'))
    definition_id: Mapped[int] = mapped_column(
        Integer, ForeignKey('attribute_definitions.definition_id'), nullable=False
    )
    item_id: Mapped[int | None] = mapped_column(Integer)
    sale_id: Mapped[int | None] = mapped_column(Integer)
    receiving_id: Mapped[int | None] = mapped_column(Integer)


class AppConfig(Base):
    __tablename__ = 'app_config'

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
