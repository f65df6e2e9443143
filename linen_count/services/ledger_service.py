"""Count ledger: per-(location, room, item, service date) linen counts.

Row lifecycle::

    (none) --draft_save--> DRAFT --submit--> SUBMITTED --unlock--> REOPENED
                                                 ^                    |
                                                 +------submit--------+

A SUBMITTED row is locked. Amending it (through ``draft_save``) or
re-submitting its room needs ``Capability.EDIT_SUBMITTED``. Once a row has
been submitted, its ``submitted_by``/``submitted_at`` never change again;
later writers are recorded in ``last_updated_by``/``last_updated_at``.

Every write stamps the touched rows with a fresh ``change_seq`` taken from
``linen_change_counter``. The counter row is updated inside the writing
transaction, so concurrent writers serialise on it and sequence order
matches commit order; the change feed uses it as its cursor.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from linen_count.auth import assert_location_scope
from linen_count.errors import Forbidden, InvalidInput, Locked, ModuleDisabled, StorageFailure
from linen_count.models import LinenChangeCounter, LinenCount, LinenCountStatus, StaffUser
from linen_count.permissions import Authorizer, Capability
from linen_count.services.settings_service import ensure_location, is_enabled_for_location

logger = logging.getLogger(__name__)

KEY_MAX_LENGTH = 50
BOOKING_REF_MAX_LENGTH = 100
PREVIOUSLY_SUBMITTED = (LinenCountStatus.SUBMITTED, LinenCountStatus.REOPENED)
UNSUBMITTED = (LinenCountStatus.DRAFT, LinenCountStatus.REOPENED)


@dataclass(frozen=True)
class SaveAck:
    message: str
    saved_by: str
    saved_at: datetime
    timestamp: datetime
    status: str
    is_locked: bool


@dataclass(frozen=True)
class SubmitResult:
    message: str
    submitted_by: str
    submitted_at: datetime
    is_update: bool
    items: int


@dataclass(frozen=True)
class UnlockResult:
    message: str
    unlocked: int


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def clamp_count(value) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f'Invalid count: {value!r}') from exc
    return max(0, count)


def _clean_key(value, label: str) -> str:
    clean = str(value or '').strip()
    if not clean:
        raise InvalidInput(f'{label} is required')
    if len(clean) > KEY_MAX_LENGTH:
        raise InvalidInput(f'{label} is too long')
    return clean


def _clean_booking_ref(value: str | None) -> str | None:
    if value is None:
        return None
    return str(value).strip()[:BOOKING_REF_MAX_LENGTH] or None


def _require(authorizer: Authorizer, actor, capability: Capability, message: str | None = None) -> None:
    if not authorizer.can(actor, capability):
        raise Forbidden(message)


def _guard_write(db: Session, *, authorizer: Authorizer, actor, location_id: int) -> None:
    _require(authorizer, actor, Capability.ACCESS_MODULE)
    assert_location_scope(actor, location_id)
    ensure_location(db, location_id)
    if not is_enabled_for_location(db, location_id):
        raise ModuleDisabled()


def _next_change_seq(db: Session) -> int:
    bumped = db.execute(
        update(LinenChangeCounter)
        .where(LinenChangeCounter.id == 1)
        .values(value=LinenChangeCounter.value + 1)
        .execution_options(synchronize_session=False)
    )
    if bumped.rowcount == 0:
        try:
            with db.begin_nested():
                db.add(LinenChangeCounter(id=1, value=1))
            return 1
        except IntegrityError:
            return _next_change_seq(db)
    return db.execute(select(LinenChangeCounter.value).where(LinenChangeCounter.id == 1)).scalar_one()


def _find_row(db: Session, *, location_id: int, room_id: str, item_id: str, service_date: date) -> LinenCount | None:
    return db.execute(
        select(LinenCount).where(
            LinenCount.location_id == location_id,
            LinenCount.room_id == room_id,
            LinenCount.linen_item_id == item_id,
            LinenCount.service_date == service_date,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _room_rows(db: Session, *, location_id: int, room_id: str, service_date: date) -> list[LinenCount]:
    return db.execute(
        select(LinenCount).where(
            LinenCount.location_id == location_id,
            LinenCount.room_id == room_id,
            LinenCount.service_date == service_date,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all()


def _try_insert(db: Session, row: LinenCount) -> bool:
    try:
        with db.begin_nested():
            db.add(row)
    except IntegrityError:
        logger.warning(
            'Concurrent insert for location=%s room=%s item=%s date=%s, retrying as update',
            row.location_id,
            row.room_id,
            row.linen_item_id,
            row.service_date,
        )
        return False
    return True


def _insert_or_find(db: Session, row: LinenCount) -> LinenCount | None:
    """Insert ``row``; on a unique-key race return the row the other writer created."""
    if _try_insert(db, row):
        return None
    existing = _find_row(
        db,
        location_id=row.location_id,
        room_id=row.room_id,
        item_id=row.linen_item_id,
        service_date=row.service_date,
    )
    if existing is None:
        raise StorageFailure('Could not save linen count')
    return existing


def _apply_draft(
    row: LinenCount,
    *,
    count: int,
    actor_id: int,
    can_edit_submitted: bool,
    booking_ref: str | None,
    now: datetime,
    seq: int,
) -> None:
    if row.status == LinenCountStatus.SUBMITTED:
        if not can_edit_submitted:
            raise Locked()
        # Amending a submitted count keeps it locked and leaves its booking ref.
        row.count = count
    else:
        row.count = count
        row.booking_ref = booking_ref
    row.last_updated_by = actor_id
    row.last_updated_at = now
    row.change_seq = seq


def draft_save(
    db: Session,
    *,
    authorizer: Authorizer,
    actor,
    location_id: int,
    room_id: str,
    service_date: date,
    item_id: str,
    count,
    booking_ref: str | None = None,
) -> SaveAck:
    room_id = _clean_key(room_id, 'Room')
    item_id = _clean_key(item_id, 'Item')
    count = clamp_count(count)
    booking_ref = _clean_booking_ref(booking_ref)
    _guard_write(db, authorizer=authorizer, actor=actor, location_id=location_id)

    can_edit_submitted = authorizer.can(actor, Capability.EDIT_SUBMITTED)
    now = _now()
    try:
        with db.begin_nested():
            # Rows are read only after the counter row is held.
            seq = _next_change_seq(db)
            existing = row = _find_row(
                db,
                location_id=location_id,
                room_id=room_id,
                item_id=item_id,
                service_date=service_date,
            )
            if row is None:
                row = LinenCount(
                    location_id=location_id,
                    room_id=room_id,
                    linen_item_id=item_id,
                    service_date=service_date,
                    count=count,
                    status=LinenCountStatus.DRAFT,
                    submitted_by=actor.id,
                    submitted_at=now,
                    last_updated_by=actor.id,
                    last_updated_at=now,
                    booking_ref=booking_ref,
                    change_seq=seq,
                )
                raced = _insert_or_find(db, row)
                if raced is not None:
                    row = existing = raced
            if existing is not None:
                _apply_draft(
                    row,
                    count=count,
                    actor_id=actor.id,
                    can_edit_submitted=can_edit_submitted,
                    booking_ref=booking_ref,
                    now=now,
                    seq=seq,
                )
            db.flush()
    except SQLAlchemyError as exc:
        db.expire_all()
        logger.exception('Auto-save failed for location=%s room=%s item=%s', location_id, room_id, item_id)
        raise StorageFailure('Failed to auto-save') from exc

    logger.info(
        'Linen count saved location=%s room=%s item=%s date=%s count=%s status=%s by=%s',
        location_id,
        room_id,
        item_id,
        service_date,
        count,
        row.status.value,
        actor.id,
    )
    return SaveAck(
        message='Amended submitted count' if row.is_locked else 'Auto-saved',
        saved_by=actor.display_name,
        saved_at=now,
        timestamp=now,
        status=row.status.value,
        is_locked=row.is_locked,
    )


def _submit_line(
    db: Session,
    *,
    row: LinenCount | None,
    location_id: int,
    room_id: str,
    item_id: str,
    service_date: date,
    count: int,
    actor_id: int,
    can_edit_submitted: bool,
    booking_ref: str | None,
    now: datetime,
    seq: int,
) -> None:
    if row is None:
        row = _insert_or_find(
            db,
            LinenCount(
                location_id=location_id,
                room_id=room_id,
                linen_item_id=item_id,
                service_date=service_date,
                count=count,
                status=LinenCountStatus.SUBMITTED,
                submitted_by=actor_id,
                submitted_at=now,
                last_updated_by=None,
                last_updated_at=None,
                booking_ref=booking_ref,
                change_seq=seq,
            ),
        )
        if row is None:
            return
        if row.is_locked and not can_edit_submitted:
            raise Locked()

    if row.status in PREVIOUSLY_SUBMITTED:
        row.last_updated_by = actor_id
        row.last_updated_at = now
    else:
        row.submitted_by = actor_id
        row.submitted_at = now
        row.last_updated_by = None
        row.last_updated_at = None
    row.count = count
    row.status = LinenCountStatus.SUBMITTED
    row.booking_ref = booking_ref
    row.change_seq = seq
    db.flush()


def submit_counts(
    db: Session,
    *,
    authorizer: Authorizer,
    actor,
    location_id: int,
    room_id: str,
    service_date: date,
    counts: dict,
    booking_ref: str | None = None,
) -> SubmitResult:
    room_id = _clean_key(room_id, 'Room')
    if not counts:
        raise InvalidInput('No counts provided')
    cleaned: dict[str, int] = {}
    for item_id, value in counts.items():
        cleaned[_clean_key(item_id, 'Item')] = clamp_count(value)
    booking_ref = _clean_booking_ref(booking_ref)
    _guard_write(db, authorizer=authorizer, actor=actor, location_id=location_id)

    can_edit_submitted = authorizer.can(actor, Capability.EDIT_SUBMITTED)
    now = _now()
    try:
        with db.begin_nested():
            seq = _next_change_seq(db)
            existing = {
                row.linen_item_id: row
                for row in _room_rows(db, location_id=location_id, room_id=room_id, service_date=service_date)
            }
            if any(row.is_locked for row in existing.values()) and not can_edit_submitted:
                raise Locked()
            is_update = any(row.status in PREVIOUSLY_SUBMITTED for row in existing.values())
            for item_id, count in cleaned.items():
                _submit_line(
                    db,
                    row=existing.get(item_id),
                    location_id=location_id,
                    room_id=room_id,
                    item_id=item_id,
                    service_date=service_date,
                    count=count,
                    actor_id=actor.id,
                    can_edit_submitted=can_edit_submitted,
                    booking_ref=booking_ref,
                    now=now,
                    seq=seq,
                )
    except SQLAlchemyError as exc:
        db.expire_all()
        logger.exception('Submit failed for location=%s room=%s date=%s', location_id, room_id, service_date)
        raise StorageFailure(f'Database error: {exc.__class__.__name__}') from exc

    logger.info(
        'Linen count %s location=%s room=%s date=%s items=%s by=%s',
        'updated' if is_update else 'submitted',
        location_id,
        room_id,
        service_date,
        len(cleaned),
        actor.id,
    )
    return SubmitResult(
        message='Linen count updated successfully' if is_update else 'Linen count submitted successfully',
        submitted_by=actor.display_name,
        submitted_at=now,
        is_update=is_update,
        items=len(cleaned),
    )


def unlock_counts(
    db: Session,
    *,
    authorizer: Authorizer,
    actor,
    location_id: int,
    room_id: str,
    service_date: date,
) -> UnlockResult:
    room_id = _clean_key(room_id, 'Room')
    _guard_write(db, authorizer=authorizer, actor=actor, location_id=location_id)
    _require(authorizer, actor, Capability.EDIT_SUBMITTED, 'You do not have permission to edit submitted counts')

    try:
        with db.begin_nested():
            seq = _next_change_seq(db)
            result = db.execute(
                update(LinenCount)
                .where(
                    LinenCount.location_id == location_id,
                    LinenCount.room_id == room_id,
                    LinenCount.service_date == service_date,
                    LinenCount.status == LinenCountStatus.SUBMITTED,
                )
                .values(status=LinenCountStatus.REOPENED, change_seq=seq)
                .execution_options(synchronize_session='evaluate')
            )
    except SQLAlchemyError as exc:
        db.expire_all()
        logger.exception('Unlock failed for location=%s room=%s date=%s', location_id, room_id, service_date)
        raise StorageFailure('Failed to unlock count') from exc

    logger.info(
        'Linen count unlocked location=%s room=%s date=%s rows=%s by=%s',
        location_id,
        room_id,
        service_date,
        result.rowcount,
        actor.id,
    )
    return UnlockResult(message='Count unlocked for editing', unlocked=result.rowcount)


def submit_all_unsubmitted(
    db: Session,
    *,
    authorizer: Authorizer,
    actor,
    location_id: int,
    service_date: date,
) -> dict:
    _guard_write(db, authorizer=authorizer, actor=actor, location_id=location_id)

    now = _now()
    try:
        with db.begin_nested():
            seq = _next_change_seq(db)
            rows = db.execute(
                select(LinenCount)
                .where(
                    LinenCount.location_id == location_id,
                    LinenCount.service_date == service_date,
                    LinenCount.status.in_(UNSUBMITTED),
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars().all()
            if not rows:
                raise InvalidInput('No unsubmitted counts found')
            for row in rows:
                if row.status == LinenCountStatus.REOPENED:
                    row.last_updated_by = actor.id
                    row.last_updated_at = now
                else:
                    row.submitted_by = actor.id
                    row.submitted_at = now
                    row.last_updated_by = None
                    row.last_updated_at = None
                row.status = LinenCountStatus.SUBMITTED
                row.change_seq = seq
            db.flush()
    except SQLAlchemyError as exc:
        db.expire_all()
        logger.exception('Submit-all failed for location=%s date=%s', location_id, service_date)
        raise StorageFailure('Failed to submit counts') from exc

    rooms = len({row.room_id for row in rows})
    logger.info('Submitted %s unsubmitted rows in %s rooms location=%s date=%s', len(rows), rooms, location_id, service_date)
    return {
        'message': f'{rooms} room count(s) submitted successfully',
        'count': len(rows),
        'rooms': rooms,
    }


def serialize_count(row: LinenCount, *, submitted_by_name: str | None = None, updated_by_name: str | None = None) -> dict:
    return {
        'id': row.id,
        'location_id': row.location_id,
        'room_id': row.room_id,
        'linen_item_id': row.linen_item_id,
        'count': row.count,
        'service_date': row.service_date,
        'booking_ref': row.booking_ref,
        'status': row.status.value,
        'is_locked': row.is_locked,
        'submitted_by': row.submitted_by,
        'submitted_by_name': submitted_by_name,
        'submitted_at': as_utc(row.submitted_at),
        'last_updated_by': row.last_updated_by,
        'updated_by_name': updated_by_name,
        'last_updated_at': as_utc(row.last_updated_at),
        'change_seq': row.change_seq,
    }


def counts_with_names_query():
    submitter = aliased(StaffUser)
    updater = aliased(StaffUser)
    return (
        select(LinenCount, submitter.display_name, updater.display_name)
        .outerjoin(submitter, submitter.id == LinenCount.submitted_by)
        .outerjoin(updater, updater.id == LinenCount.last_updated_by)
    )


def fetch_room_counts(db: Session, *, location_id: int, room_id: str, service_date: date) -> list[dict]:
    room_id = _clean_key(room_id, 'Room')
    rows = db.execute(
        counts_with_names_query()
        .where(
            LinenCount.location_id == location_id,
            LinenCount.room_id == room_id,
            LinenCount.service_date == service_date,
        )
        .order_by(LinenCount.linen_item_id.asc())
    ).all()
    return [
        serialize_count(row, submitted_by_name=submitted_name, updated_by_name=updated_name)
        for row, submitted_name, updated_name in rows
    ]


def fetch_aggregate(
    db: Session,
    *,
    location_id: int | None,
    date_from: date,
    date_to: date,
    group_by: str,
) -> list[dict]:
    if date_from > date_to:
        raise InvalidInput('date_from must not be after date_to')

    filters = [LinenCount.service_date >= date_from, LinenCount.service_date <= date_to]
    if location_id:
        filters.append(LinenCount.location_id == location_id)

    if group_by == 'day':
        rows = db.execute(
            select(
                LinenCount.service_date,
                func.count(func.distinct(LinenCount.room_id)).label('room_count'),
                func.count(func.distinct(LinenCount.linen_item_id)).label('item_types'),
                func.coalesce(func.sum(LinenCount.count), 0).label('total_items'),
                func.count(func.distinct(LinenCount.submitted_by)).label('staff_count'),
            )
            .where(and_(*filters))
            .group_by(LinenCount.service_date)
            .order_by(LinenCount.service_date.asc())
        ).all()
        return [
            {
                'service_date': row.service_date,
                'room_count': int(row.room_count),
                'item_types': int(row.item_types),
                'total_items': int(row.total_items),
                'staff_count': int(row.staff_count),
            }
            for row in rows
        ]

    if group_by == 'item':
        rows = db.execute(
            select(
                LinenCount.linen_item_id,
                func.coalesce(func.sum(LinenCount.count), 0).label('total'),
            )
            .where(and_(*filters))
            .group_by(LinenCount.linen_item_id)
            .order_by(LinenCount.linen_item_id.asc())
        ).all()
        return [{'linen_item_id': row.linen_item_id, 'total': int(row.total)} for row in rows]

    raise InvalidInput(f'Unsupported grouping: {group_by}')
