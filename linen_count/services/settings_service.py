from __future__ import annotations

import secrets
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from linen_count.errors import InvalidInput
from linen_count.models import LinenItem, Location, LocationSetting


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def ensure_location(db: Session, location_id: int) -> Location:
    location = db.execute(
        select(Location).where(Location.id == location_id, Location.active.is_(True))
    ).scalar_one_or_none()
    if not location:
        raise InvalidInput('Location not found')
    return location


def is_enabled_for_location(db: Session, location_id: int) -> bool:
    enabled = db.execute(
        select(LocationSetting.enabled).where(LocationSetting.location_id == location_id)
    ).scalar_one_or_none()
    # Locations that were never configured are enabled.
    return True if enabled is None else bool(enabled)


def list_linen_items(db: Session, *, location_id: int) -> list[dict]:
    rows = db.execute(
        select(LinenItem)
        .where(LinenItem.location_id == location_id)
        .order_by(LinenItem.position.asc(), LinenItem.id.asc())
    ).scalars().all()
    return [
        {
            'id': row.item_key,
            'name': row.name,
            'shortcode': row.shortcode,
            'size': row.size,
            'pack_qty': row.pack_qty,
            'target_stock_qty': row.target_stock_qty,
        }
        for row in rows
    ]


def get_location_settings(db: Session, *, location_id: int) -> dict:
    location = ensure_location(db, location_id)
    return {
        'location_id': location.id,
        'location_name': location.name,
        'enabled': is_enabled_for_location(db, location_id),
        'linen_items': list_linen_items(db, location_id=location_id),
    }


def sanitize_linen_items(items: list[dict]) -> list[dict]:
    sanitized: list[dict] = []
    seen_ids: set[str] = set()
    for item in items:
        name = str(item.get('name') or '').strip()
        shortcode = str(item.get('shortcode') or '').strip()
        if not name and not shortcode:
            continue
        item_id = str(item.get('id') or '').strip()[:50]
        while not item_id or item_id in seen_ids:
            item_id = f'item_{secrets.token_hex(4)}'
        seen_ids.add(item_id)
        sanitized.append(
            {
                'id': item_id,
                'name': name,
                'shortcode': shortcode[:20],
                'size': str(item.get('size') or '').strip()[:50],
                'pack_qty': max(1, _as_int(item.get('pack_qty'), 1)),
                'target_stock_qty': max(0, _as_int(item.get('target_stock_qty'), 0)),
            }
        )
    return sanitized


def save_location_settings(
    db: Session,
    *,
    location_id: int,
    enabled: bool,
    linen_items: list[dict],
    updated_by: int,
) -> dict:
    ensure_location(db, location_id)

    setting = db.execute(
        select(LocationSetting).where(LocationSetting.location_id == location_id)
    ).scalar_one_or_none()
    if not setting:
        setting = LocationSetting(location_id=location_id)
        db.add(setting)
    setting.enabled = bool(enabled)
    setting.updated_by = updated_by
    setting.updated_at = _now()

    items = sanitize_linen_items(linen_items)
    existing = {
        row.item_key: row
        for row in db.execute(select(LinenItem).where(LinenItem.location_id == location_id)).scalars().all()
    }
    keep_keys = {item['id'] for item in items}
    stale_keys = [key for key in existing if key not in keep_keys]
    if stale_keys:
        db.execute(
            delete(LinenItem).where(
                LinenItem.location_id == location_id,
                LinenItem.item_key.in_(stale_keys),
            )
        )

    for position, item in enumerate(items):
        row = existing.get(item['id'])
        if not row:
            row = LinenItem(location_id=location_id, item_key=item['id'])
            db.add(row)
        row.name = item['name']
        row.shortcode = item['shortcode']
        row.size = item['size']
        row.pack_qty = item['pack_qty']
        row.target_stock_qty = item['target_stock_qty']
        row.position = position

    db.flush()
    return get_location_settings(db, location_id=location_id)
