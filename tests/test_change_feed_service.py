from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from unittest.mock import patch

from linen_count.errors import Forbidden, InvalidInput
from linen_count.models import StaffRole
from linen_count.permissions import RoleCapabilityAuthorizer
from linen_count.services.change_feed_service import current_cursor, poll_changes
from linen_count.services.ledger_service import draft_save, submit_counts, unlock_counts
from linen_count.services.presence_service import PresenceTracker
from tests.fixtures import add_location, add_user, make_session_factory, principal_for

SERVICE_DATE = date(2024, 6, 1)
T0 = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)
T1 = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)
T2 = datetime(2024, 6, 1, 9, 5, tzinfo=timezone.utc)


class ChangeFeedServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.location = add_location(self.db)
        self.alex = principal_for(add_user(self.db, 'alex', StaffRole.HOUSEKEEPING, display_name='Alex'))
        self.blair = principal_for(add_user(self.db, 'blair', StaffRole.SUPERVISOR, display_name='Blair'))
        self.morgan = principal_for(add_user(self.db, 'morgan', StaffRole.MANAGER, display_name='Morgan'))
        self.db.commit()
        self.authorizer = RoleCapabilityAuthorizer()
        self.now = 1_000.0
        self.presence = PresenceTracker(ttl_seconds=120, clock=lambda: self.now)

    def tearDown(self) -> None:
        self.db.close()

    def _submit(self, actor, counts, *, room_id='101', at=T1):
        with patch('linen_count.services.ledger_service._now', return_value=at):
            submit_counts(
                self.db,
                authorizer=self.authorizer,
                actor=actor,
                location_id=self.location.id,
                room_id=room_id,
                service_date=SERVICE_DATE,
                counts=counts,
            )

    def _draft(self, actor, count, *, room_id='101', item_id='pc', at=T1):
        with patch('linen_count.services.ledger_service._now', return_value=at):
            draft_save(
                self.db,
                authorizer=self.authorizer,
                actor=actor,
                location_id=self.location.id,
                room_id=room_id,
                service_date=SERVICE_DATE,
                item_id=item_id,
                count=count,
            )

    def _poll(self, actor, **kwargs):
        return poll_changes(
            self.db,
            authorizer=self.authorizer,
            presence=self.presence,
            actor=actor,
            location_id=self.location.id,
            service_date=SERVICE_DATE,
            **kwargs,
        )

    def test_requires_last_check_or_cursor(self) -> None:
        with self.assertRaises(InvalidInput):
            self._poll(self.alex)

    def test_requires_module_access(self) -> None:
        with self.assertRaises(Forbidden):
            self._poll(self.morgan, cursor=0)

    def test_cursor_poll_does_not_redeliver(self) -> None:
        start = current_cursor(self.db, location_id=self.location.id, service_date=SERVICE_DATE)
        self.assertEqual(start, 0)
        self._submit(self.alex, {'pc': 5})

        first = self._poll(self.blair, cursor=start)
        self.assertEqual([row['linen_item_id'] for row in first['updates']], ['pc'])
        self.assertGreater(first['cursor'], start)
        self.assertEqual(first['cursor'], current_cursor(self.db, location_id=self.location.id, service_date=SERVICE_DATE))

        second = self._poll(self.blair, cursor=first['cursor'])
        self.assertEqual(second['updates'], [])
        self.assertEqual(second['cursor'], first['cursor'])

    def test_timestamp_poll_does_not_redeliver(self) -> None:
        self._submit(self.alex, {'pc': 5, 'ks': 1}, at=T1)

        first = self._poll(self.blair, last_check=T0)
        self.assertEqual(len(first['updates']), 2)
        self.assertGreaterEqual(first['timestamp'], T1)

        second = self._poll(self.blair, last_check=first['timestamp'])
        self.assertEqual(second['updates'], [])
        self.assertEqual(second['timestamp'], first['timestamp'])

    def test_naive_last_check_is_read_as_utc(self) -> None:
        self._submit(self.alex, {'pc': 5}, at=T1)
        result = self._poll(self.blair, last_check=datetime(2024, 6, 1, 8, 59))
        self.assertEqual(len(result['updates']), 1)

    def test_updates_identify_who_changed_them(self) -> None:
        self._submit(self.alex, {'pc': 5}, at=T1)
        self._draft(self.blair, 7, at=T2)

        for_alex = self._poll(self.alex, cursor=0)['updates'][0]
        self.assertEqual(for_alex['changed_by'], self.blair.id)
        self.assertEqual(for_alex['changed_by_name'], 'Blair')
        self.assertEqual(for_alex['submitted_by_name'], 'Alex')
        self.assertFalse(for_alex['is_own_change'])

        for_blair = self._poll(self.blair, cursor=0)['updates'][0]
        self.assertTrue(for_blair['is_own_change'])

    def test_updates_are_newest_first(self) -> None:
        self._submit(self.alex, {'pc': 1}, room_id='101', at=T1)
        self._submit(self.alex, {'pc': 2}, room_id='102', at=T2)
        rooms = [row['room_id'] for row in self._poll(self.blair, cursor=0)['updates']]
        self.assertEqual(rooms, ['102', '101'])

    def test_unlock_sorts_ahead_of_later_timestamps(self) -> None:
        self._submit(self.alex, {'pc': 1}, room_id='101', at=T1)
        self._submit(self.alex, {'pc': 2}, room_id='102', at=T2)
        unlock_counts(
            self.db,
            authorizer=self.authorizer,
            actor=self.blair,
            location_id=self.location.id,
            room_id='101',
            service_date=SERVICE_DATE,
        )

        updates = self._poll(self.alex, cursor=0)['updates']
        self.assertEqual([(row['room_id'], row['status']) for row in updates], [('101', 'REOPENED'), ('102', 'SUBMITTED')])

    def test_open_room_narrows_the_feed(self) -> None:
        self._submit(self.alex, {'pc': 1}, room_id='101')
        self._submit(self.alex, {'pc': 2}, room_id='102')

        narrowed = self._poll(self.blair, cursor=0, current_room='101')
        self.assertEqual([row['room_id'] for row in narrowed['updates']], ['101'])
        self.assertEqual(narrowed['for_room'], '101')

        closed = self._poll(self.blair, cursor=0, current_room='101', modal_open=False)
        self.assertEqual(len(closed['updates']), 2)
        self.assertIsNone(closed['for_room'])

    def test_active_users_exclude_the_caller(self) -> None:
        self._poll(self.alex, cursor=0, current_room='101')
        result = self._poll(self.blair, cursor=0)

        self.assertEqual([viewer['display_name'] for viewer in result['active_users']], ['Alex'])
        self.assertEqual(result['active_users'][0]['current_room'], '101')
        self.assertTrue(result['active_users'][0]['modal_open'])

    def test_active_users_expire(self) -> None:
        self._poll(self.alex, cursor=0)
        self.now += 121
        self.assertEqual(self._poll(self.blair, cursor=0)['active_users'], [])


if __name__ == '__main__':
    unittest.main()
