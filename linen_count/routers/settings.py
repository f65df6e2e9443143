from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from linen_count.auth import Principal, assert_location_scope, require_capability
from linen_count.db import get_db
from linen_count.dependencies import get_client_ip
from linen_count.permissions import Capability
from linen_count.schemas import LocationSettingsUpdate
from linen_count.security.csrf import verify_csrf
from linen_count.services.audit_service import log_audit
from linen_count.services.settings_service import get_location_settings, save_location_settings

router = APIRouter(prefix='/settings', tags=['settings'])
settings_access = require_capability(Capability.MANAGE_SETTINGS)


@router.get('/locations/{location_id}')
def read_location_settings(
    location_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(settings_access),
):
    assert_location_scope(principal, location_id)
    return {'ok': True, **get_location_settings(db, location_id=location_id)}


@router.put('/locations/{location_id}')
def update_location_settings(
    location_id: int,
    payload: LocationSettingsUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(settings_access),
    _: None = Depends(verify_csrf),
):
    assert_location_scope(principal, location_id)
    saved = save_location_settings(
        db,
        location_id=location_id,
        enabled=payload.enabled,
        linen_items=[item.model_dump() for item in payload.linen_items],
        updated_by=principal.id,
    )
    log_audit(
        db,
        actor_user_id=principal.id,
        action='LINEN_SETTINGS_UPDATED',
        location_id=location_id,
        ip=get_client_ip(request),
        metadata={'enabled': saved['enabled'], 'items': len(saved['linen_items'])},
    )
    db.commit()
    return {'ok': True, **saved}
