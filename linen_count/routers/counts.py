from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from linen_count.auth import Principal, assert_location_scope, get_authorizer, require_capability
from linen_count.config import Settings
from linen_count.db import get_db
from linen_count.dependencies import get_client_ip, get_presence, get_settings
from linen_count.errors import StorageFailure
from linen_count.permissions import Authorizer, Capability
from linen_count.schemas import AutosaveRequest, PollRequest, SubmitAllRequest, SubmitCountRequest, UnlockRequest
from linen_count.security.csrf import verify_csrf
from linen_count.services.audit_service import log_audit
from linen_count.services.change_feed_service import current_cursor, poll_changes
from linen_count.services.ledger_service import (
    draft_save,
    fetch_room_counts,
    submit_all_unsubmitted,
    submit_counts,
    unlock_counts,
)
from linen_count.services.presence_service import PresenceTracker
from linen_count.services.report_service import item_totals, room_statuses

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/linen-counts', tags=['linen-counts'])
module_access = require_capability(Capability.ACCESS_MODULE)


@router.post('/autosave')
def autosave(
    payload: AutosaveRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(module_access),
    authorizer: Authorizer = Depends(get_authorizer),
    _: None = Depends(verify_csrf),
):
    ack = draft_save(
        db,
        authorizer=authorizer,
        actor=principal,
        location_id=payload.location_id,
        room_id=payload.room_id,
        service_date=payload.service_date,
        item_id=payload.item_id,
        count=payload.count,
        booking_ref=payload.booking_ref,
    )
    if ack.is_locked:
        log_audit(
            db,
            actor_user_id=principal.id,
            action='LINEN_COUNT_AMENDED',
            location_id=payload.location_id,
            ip=get_client_ip(request),
            metadata={
                'room_id': payload.room_id,
                'item_id': payload.item_id,
                'service_date': payload.service_date.isoformat(),
                'count': max(0, payload.count),
            },
        )
    db.commit()
    return {'ok': True, **asdict(ack)}


@router.post('/submit')
def submit(
    payload: SubmitCountRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(module_access),
    authorizer: Authorizer = Depends(get_authorizer),
    _: None = Depends(verify_csrf),
):
    result = submit_counts(
        db,
        authorizer=authorizer,
        actor=principal,
        location_id=payload.location_id,
        room_id=payload.room_id,
        service_date=payload.service_date,
        counts=payload.counts,
        booking_ref=payload.booking_ref,
    )
    log_audit(
        db,
        actor_user_id=principal.id,
        action='LINEN_COUNT_UPDATED' if result.is_update else 'LINEN_COUNT_SUBMITTED',
        location_id=payload.location_id,
        ip=get_client_ip(request),
        metadata={
            'room_id': payload.room_id,
            'service_date': payload.service_date.isoformat(),
            'items': result.items,
        },
    )
    db.commit()
    return {'ok': True, **asdict(result)}


@router.post('/unlock')
def unlock(
    payload: UnlockRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(module_access),
    authorizer: Authorizer = Depends(get_authorizer),
    _: None = Depends(verify_csrf),
):
    result = unlock_counts(
        db,
        authorizer=authorizer,
        actor=principal,
        location_id=payload.location_id,
        room_id=payload.room_id,
        service_date=payload.service_date,
    )
    log_audit(
        db,
        actor_user_id=principal.id,
        action='LINEN_COUNT_UNLOCKED',
        location_id=payload.location_id,
        ip=get_client_ip(request),
        metadata={
            'room_id': payload.room_id,
            'service_date': payload.service_date.isoformat(),
            'rows': result.unlocked,
        },
    )
    db.commit()
    return {'ok': True, **asdict(result)}


@router.post('/submit-all')
def submit_all(
    payload: SubmitAllRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(module_access),
    authorizer: Authorizer = Depends(get_authorizer),
    _: None = Depends(verify_csrf),
):
    result = submit_all_unsubmitted(
        db,
        authorizer=authorizer,
        actor=principal,
        location_id=payload.location_id,
        service_date=payload.service_date,
    )
    log_audit(
        db,
        actor_user_id=principal.id,
        action='LINEN_COUNT_SUBMIT_ALL',
        location_id=payload.location_id,
        ip=get_client_ip(request),
        metadata={'service_date': payload.service_date.isoformat(), **result},
    )
    db.commit()
    return {'ok': True, **result}


@router.post('/poll')
def poll(
    payload: PollRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(module_access),
    authorizer: Authorizer = Depends(get_authorizer),
    presence: PresenceTracker = Depends(get_presence),
    settings: Settings = Depends(get_settings),
):
    try:
        result = poll_changes(
            db,
            authorizer=authorizer,
            presence=presence,
            actor=principal,
            location_id=payload.location_id,
            service_date=payload.service_date,
            last_check=payload.last_check,
            cursor=payload.cursor,
            current_room=payload.current_room,
            modal_open=payload.modal_open,
        )
    except (SQLAlchemyError, StorageFailure):
        # The client keeps its state and tries again on the next tick.
        logger.exception(
            'Poll failed for user=%s location=%s date=%s',
            principal.id,
            payload.location_id,
            payload.service_date,
        )
        return {
            'ok': True,
            'updates': [],
            'timestamp': payload.last_check,
            'cursor': payload.cursor,
            'for_room': None,
            'active_users': [],
            'degraded': True,
            'poll_interval_seconds': settings.poll_interval_seconds,
        }
    return {'ok': True, **result, 'degraded': False, 'poll_interval_seconds': settings.poll_interval_seconds}


@router.get('/{location_id}/{service_date}/rooms/{room_id}')
def fetch_room(
    location_id: int,
    service_date: date,
    room_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(module_access),
):
    assert_location_scope(principal, location_id)
    counts = fetch_room_counts(db, location_id=location_id, room_id=room_id, service_date=service_date)
    return {
        'ok': True,
        'counts': counts,
        'is_locked': any(row['is_locked'] for row in counts),
        'cursor': current_cursor(db, location_id=location_id, service_date=service_date),
    }


@router.get('/{location_id}/{service_date}/rooms')
def list_room_statuses(
    location_id: int,
    service_date: date,
    db: Session = Depends(get_db),
    principal: Principal = Depends(module_access),
):
    assert_location_scope(principal, location_id)
    return {'ok': True, **room_statuses(db, location_id=location_id, service_date=service_date)}


@router.get('/{location_id}/{service_date}/totals')
def daily_item_totals(
    location_id: int,
    service_date: date,
    db: Session = Depends(get_db),
    principal: Principal = Depends(module_access),
):
    assert_location_scope(principal, location_id)
    return {'ok': True, **item_totals(db, location_id=location_id, service_date=service_date)}
