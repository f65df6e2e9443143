from __future__ import annotations

import calendar
import csv
from datetime import date, timedelta
from io import StringIO

from sqlalchemy import select
from sqlalchemy.orm import Session

from linen_count.errors import InvalidInput
from linen_count.models import LinenCount, LinenCountStatus
from linen_count.services.ledger_service import as_utc, counts_with_names_query, fetch_aggregate
from linen_count.services.settings_service import list_linen_items

MAX_RANGE_DAYS = 366

CSV_HEADERS = [
    'Date',
    'Room',
    'Item ID',
    'Count',
    'Submitted By',
    'Submitted At',
    'Updated By',
    'Updated At',
    'Booking Ref',
]


def _require_linen_items(db: Session, location_id: int) -> list[dict]:
    items = list_linen_items(db, location_id=location_id)
    if not items:
        raise InvalidInput('No linen items configured')
    return items


def parse_month(value: str) -> tuple[date, date]:
    try:
        year_str, month_str = value.split('-', 1)
        first = date(int(year_str), int(month_str), 1)
    except ValueError as exc:
        raise InvalidInput('Month must be formatted YYYY-MM') from exc
    last = first.replace(day=calendar.monthrange(first.year, first.month)[1])
    return first, last


def date_span(date_from: date, date_to: date) -> list[date]:
    if date_from > date_to:
        raise InvalidInput('date_from must not be after date_to')
    days = (date_to - date_from).days + 1
    if days > MAX_RANGE_DAYS:
        raise InvalidInput(f'Date range is limited to {MAX_RANGE_DAYS} days')
    return [date_from + timedelta(days=offset) for offset in range(days)]


def room_statuses(db: Session, *, location_id: int, service_date: date) -> dict:
    linen_items = _require_linen_items(db, location_id)

    # Every room ever counted at this location, so untouched rooms show as 'none'.
    room_ids = db.execute(
        select(LinenCount.room_id)
        .where(LinenCount.location_id == location_id)
        .distinct()
        .order_by(LinenCount.room_id.asc())
    ).scalars().all()
    counts = db.execute(
        select(LinenCount.room_id, LinenCount.linen_item_id, LinenCount.count, LinenCount.status)
        .where(LinenCount.location_id == location_id, LinenCount.service_date == service_date)
    ).all()

    rooms = {
        room_id: {'room_id': room_id, 'counts': {}, 'status': 'none', 'has_any_count': False}
        for room_id in room_ids
    }
    locked_rooms: set[str] = set()
    for row in counts:
        room = rooms[row.room_id]
        room['counts'][row.linen_item_id] = row.count
        room['has_any_count'] = True
        if row.status == LinenCountStatus.SUBMITTED:
            locked_rooms.add(row.room_id)
    for room_id, room in rooms.items():
        if room_id in locked_rooms:
            room['status'] = 'submitted'
        elif room['has_any_count']:
            room['status'] = 'unsubmitted'

    return {
        'rooms': list(rooms.values()),
        'linen_items': linen_items,
        'date': service_date,
    }


def item_totals(db: Session, *, location_id: int, service_date: date) -> dict:
    linen_items = _require_linen_items(db, location_id)
    totals = {
        row['linen_item_id']: row['total']
        for row in fetch_aggregate(
            db,
            location_id=location_id,
            date_from=service_date,
            date_to=service_date,
            group_by='item',
        )
    }
    return {
        'totals': [
            {
                'id': item['id'],
                'name': item['name'],
                'shortcode': item['shortcode'],
                'total': totals.get(item['id'], 0),
            }
            for item in linen_items
        ],
        'date': service_date,
    }


def calendar_weeks(first: date) -> list[list[date | None]]:
    """Sunday-first weeks of the month, padded with None."""
    cal = calendar.Calendar(firstweekday=calendar.SUNDAY)
    return [
        [day if day.month == first.month else None for day in week]
        for week in cal.monthdatescalendar(first.year, first.month)
    ]


def calendar_month(db: Session, *, location_id: int | None, month: str) -> dict:
    first, last = parse_month(month)
    rows = fetch_aggregate(db, location_id=location_id, date_from=first, date_to=last, group_by='day')
    return {
        'month': first.strftime('%Y-%m'),
        'title': first.strftime('%B %Y'),
        'data': {row['service_date'].isoformat(): row for row in rows},
        'weeks': calendar_weeks(first),
    }


def day_details(db: Session, *, location_id: int | None, service_date: date) -> dict:
    query = counts_with_names_query().where(LinenCount.service_date == service_date)
    if location_id:
        query = query.where(LinenCount.location_id == location_id)
    rows = db.execute(query.order_by(LinenCount.room_id.asc(), LinenCount.linen_item_id.asc())).all()

    catalog = {item['id']: item for item in list_linen_items(db, location_id=location_id)} if location_id else {}

    rooms: dict[str, dict] = {}
    item_totals_by_label: dict[str, int] = {}
    for row, submitted_name, _updated_name in rows:
        room = rooms.setdefault(
            row.room_id,
            {
                'room_id': row.room_id,
                'submitted_by': submitted_name,
                'submitted_at': as_utc(row.submitted_at),
                'items': [],
                'total_count': 0,
            },
        )
        item = catalog.get(row.linen_item_id)
        name = item['name'] if item else row.linen_item_id
        shortcode = item['shortcode'] if item else ''
        room['items'].append(
            {
                'item_id': row.linen_item_id,
                'name': name,
                'shortcode': shortcode,
                'count': row.count,
            }
        )
        room['total_count'] += row.count
        label = shortcode or name
        item_totals_by_label[label] = item_totals_by_label.get(label, 0) + row.count

    return {
        'title': f'Linen Counts for {service_date.strftime("%B")} {service_date.day}, {service_date.year}',
        'date': service_date,
        'rooms': list(rooms.values()),
        'item_totals': item_totals_by_label,
        'total_rooms': len(rooms),
        'total_items': sum(item_totals_by_label.values()),
    }


def date_range_report(db: Session, *, location_id: int, date_from: date, date_to: date) -> dict:
    dates = date_span(date_from, date_to)
    linen_items = _require_linen_items(db, location_id)

    totals = db.execute(
        select(LinenCount.service_date, LinenCount.linen_item_id, LinenCount.count)
        .where(
            LinenCount.location_id == location_id,
            LinenCount.service_date >= date_from,
            LinenCount.service_date <= date_to,
        )
    ).all()
    by_item: dict[str, dict[date, int]] = {}
    for row in totals:
        per_date = by_item.setdefault(row.linen_item_id, {})
        per_date[row.service_date] = per_date.get(row.service_date, 0) + row.count

    report = []
    for item in linen_items:
        per_date = by_item.get(item['id'], {})
        by_date = {day.isoformat(): per_date.get(day, 0) for day in dates}
        report.append(
            {
                'id': item['id'],
                'name': item['name'],
                'shortcode': item['shortcode'],
                'by_date': by_date,
                'grand_total': sum(by_date.values()),
            }
        )

    return {
        'report': report,
        'dates': [day.isoformat() for day in dates],
        'date_from': date_from,
        'date_to': date_to,
    }


def export_rows(
    db: Session,
    *,
    location_id: int | None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[dict]:
    query = counts_with_names_query()
    if date_from and date_to and date_from > date_to:
        raise InvalidInput('date_from must not be after date_to')
    if date_from:
        query = query.where(LinenCount.service_date >= date_from)
    if date_to:
        query = query.where(LinenCount.service_date <= date_to)
    if location_id:
        query = query.where(LinenCount.location_id == location_id)
    query = query.order_by(
        LinenCount.service_date.asc(),
        LinenCount.room_id.asc(),
        LinenCount.linen_item_id.asc(),
    )
    return [
        {
            'service_date': row.service_date,
            'room_id': row.room_id,
            'linen_item_id': row.linen_item_id,
            'count': row.count,
            'submitted_by_name': submitted_name,
            'submitted_at': as_utc(row.submitted_at),
            'updated_by_name': updated_name,
            'last_updated_at': as_utc(row.last_updated_at),
            'booking_ref': row.booking_ref,
        }
        for row, submitted_name, updated_name in db.execute(query).all()
    ]


def _csv_datetime(value) -> str:
    return value.strftime('%Y-%m-%d %H:%M:%S') if value else ''


def write_csv(rows: list[dict]) -> str:
    sio = StringIO()
    writer = csv.writer(sio)
    writer.writerow(CSV_HEADERS)
    for row in rows:
        writer.writerow(
            [
                row['service_date'].isoformat(),
                row['room_id'],
                row['linen_item_id'],
                row['count'],
                row['submitted_by_name'] or '',
                _csv_datetime(row['submitted_at']),
                row['updated_by_name'] or '',
                _csv_datetime(row['last_updated_at']),
                row['booking_ref'] or '',
            ]
        )
    return sio.getvalue()
