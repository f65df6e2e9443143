from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from linen_count.auth import Principal
from linen_count.models import StaffUser, WebSession

AUTH_EXEMPT_PATHS = {'/login', '/robots.txt', '/health'}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _session_expiry(ttl_minutes: int) -> datetime:
    return _now() + timedelta(minutes=ttl_minutes)


def create_web_session(
    db: Session,
    user_id: int,
    *,
    ttl_minutes: int,
    ip: str | None,
    user_agent: str | None,
) -> str:
    token = secrets.token_urlsafe(48)
    db.add(
        WebSession(
            session_token=token,
            user_id=user_id,
            ip=ip,
            user_agent=user_agent,
            expires_at=_session_expiry(ttl_minutes),
        )
    )
    db.flush()
    return token


def revoke_web_session(db: Session, token: str) -> None:
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session or session.revoked_at is not None:
        return
    session.revoked_at = _now()


def load_principal_from_token(db: Session, token: str | None, *, ttl_minutes: int) -> Principal | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, StaffUser)
        .join(StaffUser, StaffUser.id == WebSession.user_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, user = row
    now = _now()
    if web_session.revoked_at is not None or _as_utc(web_session.expires_at) <= now:
        return None

    # Sliding expiry.
    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry(ttl_minutes)
    return Principal(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        role=user.role,
        location_id=user.location_id,
        active=user.active,
    )


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        settings = request.app.state.settings
        token = request.cookies.get(settings.session_cookie_name)
        with request.app.state.session_factory() as db:
            principal = load_principal_from_token(db, token, ttl_minutes=settings.session_ttl_minutes)
            request.state.principal = principal
            db.commit()

        if request.url.path not in AUTH_EXEMPT_PATHS and request.state.principal is None:
            return JSONResponse(
                {'ok': False, 'error': 'Unauthenticated', 'detail': 'Login required'},
                status_code=status.HTTP_401_UNAUTHORIZED,
            )

        return await call_next(request)
