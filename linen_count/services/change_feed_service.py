"""Polling change feed over the count ledger.

Clients poll every few seconds with the cursor from their previous answer
and receive the rows of the viewed location/date written since then. The
cursor is the highest ``change_seq`` delivered; clients that only know a
timestamp fall back to a strict ``>`` comparison on the audit timestamps.
Nothing is ever merged here: whichever write committed last is what the
feed reports, and ``is_own_change`` lets the client decide whether a
pending local edit was overwritten by someone else.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from linen_count.auth import assert_location_scope
from linen_count.errors import Forbidden, InvalidInput
from linen_count.models import LinenCount
from linen_count.permissions import Authorizer, Capability
from linen_count.services.ledger_service import as_utc, counts_with_names_query, serialize_count
from linen_count.services.presence_service import PresenceTracker

logger = logging.getLogger(__name__)


def _latest_write(row: dict) -> datetime:
    if row['last_updated_at'] is None:
        return row['submitted_at']
    return max(row['submitted_at'], row['last_updated_at'])


def poll_changes(
    db: Session,
    *,
    authorizer: Authorizer,
    presence: PresenceTracker,
    actor,
    location_id: int,
    service_date: date,
    last_check: datetime | None = None,
    cursor: int | None = None,
    current_room: str | None = None,
    modal_open: bool | None = None,
) -> dict:
    if not authorizer.can(actor, Capability.ACCESS_MODULE):
        raise Forbidden()
    assert_location_scope(actor, location_id)
    if last_check is None and cursor is None:
        raise InvalidInput('last_check or cursor is required')

    current_room = (current_room or '').strip() or None
    if modal_open is None:
        modal_open = current_room is not None

    presence.touch(
        location_id=location_id,
        service_date=service_date,
        user_id=actor.id,
        display_name=actor.display_name,
        current_room=current_room,
        modal_open=modal_open,
    )

    query = counts_with_names_query().where(
        LinenCount.location_id == location_id,
        LinenCount.service_date == service_date,
    )
    if cursor is not None:
        query = query.where(LinenCount.change_seq > cursor)
    else:
        last_check = as_utc(last_check).astimezone(timezone.utc)
        query = query.where(
            or_(
                LinenCount.submitted_at > last_check,
                LinenCount.last_updated_at > last_check,
            )
        )
    if modal_open and current_room:
        query = query.where(LinenCount.room_id == current_room)
    query = query.order_by(
        LinenCount.change_seq.desc(),
        func.coalesce(LinenCount.last_updated_at, LinenCount.submitted_at).desc(),
    )

    updates = []
    for row, submitted_name, updated_name in db.execute(query).all():
        payload = serialize_count(row, submitted_by_name=submitted_name, updated_by_name=updated_name)
        changed_by = row.last_updated_by if row.last_updated_by is not None else row.submitted_by
        payload['changed_by'] = changed_by
        payload['changed_by_name'] = updated_name if row.last_updated_by is not None else submitted_name
        payload['is_own_change'] = changed_by == actor.id
        updates.append(payload)

    if updates:
        timestamp = max(_latest_write(row) for row in updates)
        next_cursor = max(row['change_seq'] for row in updates)
        if cursor is not None:
            next_cursor = max(next_cursor, cursor)
    else:
        timestamp = as_utc(last_check)
        next_cursor = cursor

    return {
        'updates': updates,
        'timestamp': timestamp,
        'cursor': next_cursor,
        'for_room': current_room if modal_open else None,
        'active_users': presence.active_viewers(
            location_id=location_id,
            service_date=service_date,
            exclude_user_id=actor.id,
        ),
    }


def current_cursor(db: Session, *, location_id: int, service_date: date) -> int:
    """Highest change sequence for a location/date; clients start polling from here."""
    return db.execute(
        select(func.coalesce(func.max(LinenCount.change_seq), 0)).where(
            LinenCount.location_id == location_id,
            LinenCount.service_date == service_date,
        )
    ).scalar_one()
