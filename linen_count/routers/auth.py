from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from linen_count.config import Settings
from linen_count.db import get_db
from linen_count.dependencies import get_client_ip, get_settings
from linen_count.models import StaffUser
from linen_count.schemas import LoginRequest
from linen_count.security.csrf import verify_csrf
from linen_count.security.passwords import verify_password
from linen_count.security.sessions import create_web_session, revoke_web_session
from linen_count.services.audit_service import log_audit

router = APIRouter(tags=['auth'])

INVALID_LOGIN = {'ok': False, 'error': 'Unauthenticated', 'detail': 'Invalid username or password'}


@router.get('/login')
def login_state(request: Request, settings: Settings = Depends(get_settings)):
    principal = getattr(request.state, 'principal', None)
    return {
        'authenticated': principal is not None,
        'csrf_token': request.state.csrf_token,
        'poll_interval_seconds': settings.poll_interval_seconds,
    }


@router.post('/login')
def login_submit(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    _: None = Depends(verify_csrf),
):
    username = payload.username.strip()
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    user = db.execute(select(StaffUser).where(StaffUser.username == username)).scalar_one_or_none()
    failure_reason = None
    if not user:
        failure_reason = 'UNKNOWN_USERNAME'
    elif not user.active:
        failure_reason = 'INACTIVE_USER'
    elif not verify_password(payload.password, user.password_hash):
        failure_reason = 'BAD_PASSWORD'

    if failure_reason:
        log_audit(
            db,
            actor_user_id=user.id if user else None,
            action='AUTH_LOGIN_FAILED',
            location_id=None,
            ip=ip,
            metadata={'username': username, 'reason': failure_reason},
        )
        db.commit()
        return JSONResponse(INVALID_LOGIN, status_code=401)

    token = create_web_session(
        db,
        user.id,
        ttl_minutes=settings.session_ttl_minutes,
        ip=ip,
        user_agent=user_agent,
    )
    log_audit(
        db,
        actor_user_id=user.id,
        action='AUTH_LOGIN',
        location_id=user.location_id,
        ip=ip,
        metadata={'username': username},
    )
    db.commit()

    response = JSONResponse(
        {
            'ok': True,
            'user': {
                'id': user.id,
                'username': user.username,
                'display_name': user.display_name,
                'role': user.role.value,
                'location_id': user.location_id,
            },
        }
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/logout')
def logout(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    _: None = Depends(verify_csrf),
):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)

    log_audit(
        db,
        actor_user_id=principal.id if principal else None,
        action='AUTH_LOGOUT',
        location_id=None,
        ip=get_client_ip(request),
    )
    db.commit()

    response = JSONResponse({'ok': True})
    response.delete_cookie(settings.session_cookie_name)
    return response
