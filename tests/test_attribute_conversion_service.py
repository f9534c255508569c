from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from structlog.testing import capture_logs

from support import DatabaseTestCase

from pos_attributes.models import DefinitionType
from pos_attributes.services.attribute_conversion_service import (
    check_data_validity,
    checkbox_attribute_values,
    is_false_checkbox_value,
)
from pos_attributes.services.attribute_definition_service import get_info, save_definition


class CheckboxValueTests(unittest.TestCase):
    def test_false_values(self) -> None:
        for raw in ('FALSE', 'false', ' False ', '0', '', None):
            with self.subTest(raw=raw):
                self.assertTrue(is_false_checkbox_value(raw))

    def test_everything_else_is_true(self) -> None:
        for raw in ('1', 'yes', 'no', 'true', 'off'):
            with self.subTest(raw=raw):
                self.assertFalse(is_false_checkbox_value(raw))


class ConversionTests(DatabaseTestCase):
    def _retype(self, definition_id: int, name: str, to_type: DefinitionType) -> int | None:
        return save_definition(self.db, definition_name=name, definition_type=to_type, definition_id=definition_id)

    def test_text_to_date_moves_values_into_date_column(self) -> None:
        expiry_id = self.add_definition('Expiry')
        old_value = self.add_value('01/31/2025')
        self.add_link(expiry_id, old_value, item_id=1)
        self.add_link(expiry_id, self.add_value('12/01/2024'), item_id=2)

        self.assertEqual(self._retype(expiry_id, 'Expiry', DefinitionType.DATE), expiry_id)

        self.assertEqual(get_info(self.db, expiry_id).definition_type, 'DATE')
        dates = {link.item_id: self.value_row(link.attribute_id).attribute_date for link in self.links_for(expiry_id)}
        self.assertEqual(dates, {1: date(2025, 1, 31), 2: date(2024, 12, 1)})
        self.assertIsNone(self.value_row(old_value))
        self.assertEqual(self.value_count(), 2)

    def test_text_to_date_rejects_unparseable_values_without_changes(self) -> None:
        expiry_id = self.add_definition('Expiry')
        valid = self.add_value('01/31/2025')
        invalid = self.add_value('soon')
        self.add_link(expiry_id, valid, item_id=1)
        self.add_link(expiry_id, invalid, item_id=2)
        self.db.commit()

        with capture_logs() as logs:
            result = self._retype(expiry_id, 'Expiry', DefinitionType.DATE)

        self.assertIsNone(result)
        self.assertEqual(get_info(self.db, expiry_id).definition_type, 'TEXT')
        self.assertEqual({link.attribute_id for link in self.links_for(expiry_id)}, {valid, invalid})
        self.assertEqual(self.value_row(invalid).attribute_value, 'soon')
        self.assertEqual(self.value_count(), 2)

        rejected = [entry for entry in logs if entry['event'] == 'attribute.conversion_rejected']
        self.assertEqual(len(rejected), 1)
        self.assertEqual(rejected[0]['attribute_value'], 'soon')
        self.assertEqual(rejected[0]['affected_items'], [2])
        self.assertEqual(rejected[0]['log_level'], 'error')

    def test_text_to_decimal(self) -> None:
        weight_id = self.add_definition('Weight')
        self.add_link(weight_id, self.add_value('2.5'), item_id=1)

        self.assertEqual(self._retype(weight_id, 'Weight', DefinitionType.DECIMAL), weight_id)

        link = self.links_for(weight_id)[0]
        self.assertEqual(self.value_row(link.attribute_id).attribute_decimal, Decimal('2.5'))

    def test_text_to_decimal_rejects_words(self) -> None:
        weight_id = self.add_definition('Weight')
        self.add_link(weight_id, self.add_value('heavy'), item_id=1)

        self.assertIsNone(self._retype(weight_id, 'Weight', DefinitionType.DECIMAL))
        self.assertEqual(get_info(self.db, weight_id).definition_type, 'TEXT')

    def test_text_to_decimal_rejects_non_plain_or_oversized_numbers(self) -> None:
        weight_id = self.add_definition('Weight')
        self.add_link(weight_id, self.add_value('1_000'), item_id=1)
        self.add_link(weight_id, self.add_value('1e5'), item_id=2)
        self.add_link(weight_id, self.add_value('12345'), item_id=3)
        self.add_link(weight_id, self.add_value('12.5'), item_id=4)

        with capture_logs() as logs:
            self.assertIsNone(self._retype(weight_id, 'Weight', DefinitionType.DECIMAL))

        rejected = {entry['attribute_value'] for entry in logs if entry['event'] == 'attribute.conversion_rejected'}
        self.assertEqual(rejected, {'1_000', '1e5', '12345'})
        self.assertEqual(get_info(self.db, weight_id).definition_type, 'TEXT')
        self.assertEqual(self.value_count(), 4)

    def test_text_to_dropdown_keeps_links(self) -> None:
        color_id = self.add_definition('Color')
        red = self.add_value('Red')
        blue = self.add_value('Blue')
        self.add_link(color_id, red, item_id=1)
        self.add_link(color_id, blue, item_id=2)
        self.add_link(color_id, red, item_id=3)

        self.assertEqual(self._retype(color_id, 'Color', DefinitionType.DROPDOWN), color_id)

        self.assertEqual(
            [(link.item_id, link.attribute_id) for link in self.links_for(color_id)],
            [(1, red), (2, blue), (3, red)],
        )
        self.assertEqual(self.value_count(), 2)

    def test_text_to_checkbox_collapses_to_canonical_rows(self) -> None:
        wrapped_id = self.add_definition('Gift Wrapped')
        self.add_link(wrapped_id, self.add_value('yes'), item_id=1)
        self.add_link(wrapped_id, self.add_value('FALSE'), item_id=2)
        self.add_link(wrapped_id, self.add_value(''), item_id=3)
        self.add_link(wrapped_id, self.add_value('no'), item_id=4)
        self.add_link(wrapped_id, None, item_id=5)

        self.assertEqual(self._retype(wrapped_id, 'Gift Wrapped', DefinitionType.CHECKBOX), wrapped_id)

        false_id, true_id = checkbox_attribute_values(self.db)
        self.assertEqual(
            {link.item_id: link.attribute_id for link in self.links_for(wrapped_id)},
            {1: true_id, 2: false_id, 3: false_id, 4: true_id, 5: false_id},
        )
        self.assertEqual(self.value_count(), 2)
        self.assertEqual(self.value_row(false_id).attribute_value, '0')
        self.assertEqual(self.value_row(true_id).attribute_value, '1')

    def test_dropdown_to_checkbox_drops_options(self) -> None:
        color_id = self.add_definition('Sale item', DefinitionType.DROPDOWN)
        yes = self.add_value('Yes')
        self.add_link(color_id, yes)
        self.add_link(color_id, yes, item_id=1)
        self.add_link(color_id, self.add_value('false'), item_id=2)

        self.assertEqual(self._retype(color_id, 'Sale item', DefinitionType.CHECKBOX), color_id)

        false_id, true_id = checkbox_attribute_values(self.db)
        self.assertEqual(
            [(link.item_id, link.attribute_id) for link in self.links_for(color_id)],
            [(1, true_id), (2, false_id)],
        )

    def test_unsupported_conversions_fail(self) -> None:
        size_id = self.add_definition('Size')
        color_id = self.add_definition('Color', DefinitionType.DROPDOWN)
        self.add_link(color_id, self.add_value('Red'))

        self.assertIsNone(self._retype(size_id, 'Size', DefinitionType.GROUP))
        self.assertIsNone(self._retype(color_id, 'Color', DefinitionType.DATE))

        self.assertEqual(get_info(self.db, size_id).definition_type, 'TEXT')
        self.assertEqual(get_info(self.db, color_id).definition_type, 'DROPDOWN')
        self.assertEqual(len(self.links_for(color_id)), 1)

    def test_conversion_from_typed_definitions_is_a_no_op(self) -> None:
        expiry_id = self.add_definition('Expiry', DefinitionType.DATE)
        stored = self.add_value(on=date(2025, 5, 1))
        self.add_link(expiry_id, stored, item_id=1)

        self.assertEqual(self._retype(expiry_id, 'Expiry', DefinitionType.TEXT), expiry_id)

        self.assertEqual(get_info(self.db, expiry_id).definition_type, 'TEXT')
        self.assertEqual([link.attribute_id for link in self.links_for(expiry_id)], [stored])

    def test_validity_check_only_applies_to_text(self) -> None:
        color_id = self.add_definition('Color', DefinitionType.DROPDOWN)

        self.assertFalse(check_data_validity(self.db, color_id, DefinitionType.DROPDOWN, DefinitionType.DATE))
        self.assertTrue(check_data_validity(self.db, color_id, DefinitionType.TEXT, DefinitionType.DROPDOWN))


if __name__ == '__main__':
    unittest.main()
