from __future__ import annotations

import csv
import unittest
from datetime import date, datetime, timezone
from io import StringIO
from unittest.mock import patch

from linen_count.errors import InvalidInput
from linen_count.models import StaffRole
from linen_count.permissions import RoleCapabilityAuthorizer
from linen_count.services.ledger_service import draft_save, submit_counts
from linen_count.services.report_service import (
    CSV_HEADERS,
    calendar_month,
    calendar_weeks,
    date_range_report,
    date_span,
    day_details,
    export_rows,
    item_totals,
    room_statuses,
    write_csv,
)
from tests.fixtures import add_location, add_user, make_session_factory, principal_for

JUNE_1 = date(2024, 6, 1)
JUNE_2 = date(2024, 6, 2)
T1 = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


class ReportServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.location = add_location(self.db)
        self.empty_location = add_location(self.db, 'Annex', items=())
        self.alex = principal_for(add_user(self.db, 'alex', StaffRole.HOUSEKEEPING, display_name='Alex'))
        self.db.commit()
        self.authorizer = RoleCapabilityAuthorizer()

    def tearDown(self) -> None:
        self.db.close()

    def _submit(self, room_id, counts, service_date=JUNE_1, booking_ref=None):
        with patch('linen_count.services.ledger_service._now', return_value=T1):
            submit_counts(
                self.db,
                authorizer=self.authorizer,
                actor=self.alex,
                location_id=self.location.id,
                room_id=room_id,
                service_date=service_date,
                counts=counts,
                booking_ref=booking_ref,
            )

    def _draft(self, room_id, item_id, count, service_date=JUNE_1):
        draft_save(
            self.db,
            authorizer=self.authorizer,
            actor=self.alex,
            location_id=self.location.id,
            room_id=room_id,
            service_date=service_date,
            item_id=item_id,
            count=count,
        )

    def test_room_statuses(self) -> None:
        self._submit('101', {'pc': 2})
        self._draft('102', 'ks', 1)
        self._submit('103', {'pc': 1}, service_date=JUNE_2)

        result = room_statuses(self.db, location_id=self.location.id, service_date=JUNE_1)
        statuses = {room['room_id']: room['status'] for room in result['rooms']}
        self.assertEqual(statuses, {'101': 'submitted', '102': 'unsubmitted', '103': 'none'})
        self.assertEqual(result['rooms'][0]['counts'], {'pc': 2})
        self.assertEqual([item['id'] for item in result['linen_items']], ['pc', 'ks', 'bt'])

    def test_room_statuses_need_a_catalog(self) -> None:
        with self.assertRaises(InvalidInput):
            room_statuses(self.db, location_id=self.empty_location.id, service_date=JUNE_1)

    def test_item_totals_cover_whole_catalog(self) -> None:
        self._submit('101', {'pc': 2, 'ks': 1})
        self._submit('102', {'pc': 3})
        totals = item_totals(self.db, location_id=self.location.id, service_date=JUNE_1)['totals']
        self.assertEqual([(item['id'], item['total']) for item in totals], [('pc', 5), ('ks', 1), ('bt', 0)])

    def test_calendar_weeks_start_on_sunday(self) -> None:
        weeks = calendar_weeks(date(2024, 6, 1))
        self.assertEqual(weeks[0], [None] * 6 + [date(2024, 6, 1)])
        self.assertEqual(weeks[1][0], date(2024, 6, 2))
        self.assertTrue(all(len(week) == 7 for week in weeks))

    def test_calendar_month(self) -> None:
        self._submit('101', {'pc': 2, 'ks': 1})
        self._submit('102', {'pc': 4}, service_date=JUNE_2)
        result = calendar_month(self.db, location_id=self.location.id, month='2024-06')

        self.assertEqual(result['title'], 'June 2024')
        self.assertEqual(set(result['data']), {'2024-06-01', '2024-06-02'})
        self.assertEqual(result['data']['2024-06-01']['total_items'], 3)
        self.assertEqual(result['data']['2024-06-02']['room_count'], 1)

    def test_calendar_month_rejects_bad_month(self) -> None:
        for month in ('2024-13', 'June', ''):
            with self.assertRaises(InvalidInput):
                calendar_month(self.db, location_id=None, month=month)

    def test_day_details(self) -> None:
        self._submit('101', {'pc': 2, 'ks': 1})
        self._submit('102', {'pc': 3, 'zz': 4})
        result = day_details(self.db, location_id=self.location.id, service_date=JUNE_1)

        self.assertEqual(result['title'], 'Linen Counts for June 1, 2024')
        self.assertEqual(result['total_rooms'], 2)
        self.assertEqual(result['total_items'], 10)
        self.assertEqual(result['item_totals'], {'KS': 1, 'PC': 5, 'zz': 4})
        room = result['rooms'][0]
        self.assertEqual(room['room_id'], '101')
        self.assertEqual(room['submitted_by'], 'Alex')
        self.assertEqual(room['total_count'], 3)
        self.assertEqual(room['items'][0]['name'], 'King Sheet')

    def test_date_range_is_zero_filled(self) -> None:
        self._submit('101', {'pc': 2})
        self._submit('102', {'pc': 1})
        result = date_range_report(self.db, location_id=self.location.id, date_from=JUNE_1, date_to=date(2024, 6, 3))

        self.assertEqual(result['dates'], ['2024-06-01', '2024-06-02', '2024-06-03'])
        pc = result['report'][0]
        self.assertEqual(pc['by_date'], {'2024-06-01': 3, '2024-06-02': 0, '2024-06-03': 0})
        self.assertEqual(pc['grand_total'], 3)
        self.assertEqual(result['report'][2]['grand_total'], 0)

    def test_date_span_limits(self) -> None:
        with self.assertRaises(InvalidInput):
            date_span(JUNE_2, JUNE_1)
        with self.assertRaises(InvalidInput):
            date_span(date(2023, 1, 1), date(2024, 6, 1))
        self.assertEqual(date_span(JUNE_1, JUNE_1), [JUNE_1])

    def test_export_csv(self) -> None:
        self._submit('101', {'pc': 2}, booking_ref='BK-9')
        self._submit('101', {'ks': 1}, service_date=JUNE_2)
        rows = export_rows(self.db, location_id=self.location.id, date_from=JUNE_1, date_to=JUNE_1)
        parsed = list(csv.reader(StringIO(write_csv(rows))))

        self.assertEqual(parsed[0], CSV_HEADERS)
        self.assertEqual(parsed[1], ['2024-06-01', '101', 'pc', '2', 'Alex', '2024-06-01 09:00:00', '', '', 'BK-9'])
        self.assertEqual(len(parsed), 2)

    def test_export_without_range_includes_everything(self) -> None:
        self._submit('101', {'pc': 2})
        self._submit('101', {'ks': 1}, service_date=JUNE_2)
        rows = export_rows(self.db, location_id=None)
        self.assertEqual([row['service_date'] for row in rows], [JUNE_1, JUNE_2])

    def test_export_with_one_bound_applies_it(self) -> None:
        self._submit('101', {'pc': 2})
        self._submit('101', {'ks': 1}, service_date=JUNE_2)

        since = export_rows(self.db, location_id=self.location.id, date_from=JUNE_2)
        self.assertEqual([row['service_date'] for row in since], [JUNE_2])

        until = export_rows(self.db, location_id=self.location.id, date_to=JUNE_1)
        self.assertEqual([row['service_date'] for row in until], [JUNE_1])

    def test_export_rejects_reversed_range(self) -> None:
        with self.assertRaises(InvalidInput):
            export_rows(self.db, location_id=None, date_from=JUNE_2, date_to=JUNE_1)


if __name__ == '__main__':
    unittest.main()
