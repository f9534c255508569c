from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_attributes.db import SessionLocal, engine
from pos_attributes.models import AttributeDefinition, Base, DefinitionFlag, DefinitionType
from pos_attributes.services import appconfig_service
from pos_attributes.services.attribute_value_service import save_value

DEMO_DEFINITIONS = [
    ('Apparel', DefinitionType.GROUP, 0, None),
    ('Color', DefinitionType.DROPDOWN, DefinitionFlag.SHOW_IN_ITEMS | DefinitionFlag.SHOW_IN_SALES, 'Apparel'),
    ('Size', DefinitionType.TEXT, DefinitionFlag.SHOW_IN_ITEMS, 'Apparel'),
    ('Expiration Date', DefinitionType.DATE, DefinitionFlag.SHOW_IN_ITEMS | DefinitionFlag.SHOW_IN_RECEIVINGS, None),
    ('Weight', DefinitionType.DECIMAL, DefinitionFlag.SHOW_IN_ITEMS, None),
    ('Gift Wrapped', DefinitionType.CHECKBOX, DefinitionFlag.SHOW_IN_SALES, None),
]
DEMO_COLORS = ['Black', 'Blue', 'Red', 'White']


def seed_attributes(db: Session) -> None:
    if not appconfig_service.get(db, appconfig_service.DATEFORMAT_KEY):
        appconfig_service.save(db, appconfig_service.DATEFORMAT_KEY, 'm/d/Y')

    ids_by_name: dict[str, int] = {}
    for name, definition_type, flags, group_name in DEMO_DEFINITIONS:
        definition = db.execute(
            select(AttributeDefinition).where(AttributeDefinition.definition_name == name)
        ).scalar_one_or_none()
        if not definition:
            definition = AttributeDefinition(
                definition_name=name,
                definition_type=definition_type,
                definition_flags=int(flags),
                definition_fk=ids_by_name.get(group_name) if group_name else None,
                deleted=False,
            )
            db.add(definition)
            db.flush()
        ids_by_name[name] = definition.definition_id

    for color in DEMO_COLORS:
        save_value(db, attribute_value=color, definition_id=ids_by_name['Color'])

    db.flush()


def seed() -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        seed_attributes(db)
        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
