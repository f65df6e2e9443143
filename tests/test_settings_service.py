from __future__ import annotations

import unittest

from linen_count.errors import InvalidInput
from linen_count.models import StaffRole
from linen_count.services.settings_service import (
    get_location_settings,
    is_enabled_for_location,
    list_linen_items,
    sanitize_linen_items,
    save_location_settings,
)
from tests.fixtures import add_location, add_user, make_session_factory


class SanitizeLinenItemsTests(unittest.TestCase):
    def test_drops_items_without_name_or_shortcode(self) -> None:
        items = sanitize_linen_items([{'id': 'a', 'name': ' ', 'shortcode': ''}, {'id': 'b', 'shortcode': 'BT'}])
        self.assertEqual([item['id'] for item in items], ['b'])
        self.assertEqual(items[0]['name'], '')

    def test_clamps_quantities(self) -> None:
        [item] = sanitize_linen_items(
            [{'id': 'pc', 'name': 'Pillow Case', 'pack_qty': '0', 'target_stock_qty': -5}]
        )
        self.assertEqual(item['pack_qty'], 1)
        self.assertEqual(item['target_stock_qty'], 0)

        [item] = sanitize_linen_items([{'id': 'pc', 'name': 'Pillow Case', 'pack_qty': 'ten'}])
        self.assertEqual(item['pack_qty'], 1)

    def test_generates_missing_and_duplicate_ids(self) -> None:
        items = sanitize_linen_items(
            [
                {'name': 'Pillow Case'},
                {'id': 'ks', 'name': 'King Sheet'},
                {'id': 'ks', 'name': 'Queen Sheet'},
            ]
        )
        ids = [item['id'] for item in items]
        self.assertRegex(ids[0], r'^item_[0-9a-f]{8}$')
        self.assertEqual(ids[1], 'ks')
        self.assertRegex(ids[2], r'^item_[0-9a-f]{8}$')
        self.assertEqual(len(set(ids)), 3)

    def test_truncates_text_fields(self) -> None:
        [item] = sanitize_linen_items([{'id': 'x' * 80, 'name': 'Towel', 'shortcode': 'S' * 30, 'size': 'L' * 60}])
        self.assertEqual(len(item['id']), 50)
        self.assertEqual(len(item['shortcode']), 20)
        self.assertEqual(len(item['size']), 50)


class LocationSettingsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.location = add_location(self.db, items=())
        self.admin = add_user(self.db, 'admin', StaffRole.ADMIN)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _save(self, items, enabled=True) -> dict:
        return save_location_settings(
            self.db,
            location_id=self.location.id,
            enabled=enabled,
            linen_items=items,
            updated_by=self.admin.id,
        )

    def test_unconfigured_location_is_enabled(self) -> None:
        self.assertTrue(is_enabled_for_location(self.db, self.location.id))
        self.assertEqual(get_location_settings(self.db, location_id=self.location.id)['linen_items'], [])

    def test_save_upserts_reorders_and_removes_stale_items(self) -> None:
        self._save(
            [
                {'id': 'pc', 'name': 'Pillow Case', 'shortcode': 'PC'},
                {'id': 'ks', 'name': 'King Sheet', 'shortcode': 'KS'},
            ]
        )
        saved = self._save(
            [
                {'id': 'bt', 'name': 'Bath Towel', 'shortcode': 'BT', 'pack_qty': 10},
                {'id': 'pc', 'name': 'Pillowcase', 'shortcode': 'PC'},
            ],
            enabled=False,
        )
        self.db.commit()

        self.assertFalse(saved['enabled'])
        self.assertFalse(is_enabled_for_location(self.db, self.location.id))
        items = list_linen_items(self.db, location_id=self.location.id)
        self.assertEqual([item['id'] for item in items], ['bt', 'pc'])
        self.assertEqual(items[0]['pack_qty'], 10)
        self.assertEqual(items[1]['name'], 'Pillowcase')

    def test_unknown_location(self) -> None:
        with self.assertRaises(InvalidInput):
            get_location_settings(self.db, location_id=999)


if __name__ == '__main__':
    unittest.main()
