from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates

from linen_count.config import Settings
from linen_count.db import create_db_engine, create_schema, create_session_factory
from linen_count.errors import LinenCountError
from linen_count.logging_config import configure_logging
from linen_count.permissions import Authorizer, build_authorizer
from linen_count.routers import auth, counts, reports, settings as settings_router
from linen_count.security.csrf import install_csrf_cookie_middleware
from linen_count.security.headers import install_security_headers
from linen_count.security.sessions import install_auth_session_middleware
from linen_count.services.presence_service import PresenceTracker

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'


async def _sweep_presence(presence: PresenceTracker, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        presence.sweep()


@asynccontextmanager
async def lifespan(app: FastAPI):
    presence: PresenceTracker = app.state.presence
    task = asyncio.create_task(_sweep_presence(presence, max(1, presence.ttl_seconds // 2)))
    try:
        yield
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def linen_count_error_handler(request: Request, exc: LinenCountError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error('%s on %s %s: %s', exc.code, request.method, request.url.path, exc.detail)
    return JSONResponse(exc.to_payload(), status_code=exc.status_code)


def create_app(
    settings: Settings | None = None,
    *,
    session_factory=None,
    authorizer: Authorizer | None = None,
    presence: PresenceTracker | None = None,
) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    if session_factory is None:
        engine = create_db_engine(settings.database_url_normalized, echo=settings.database_echo)
        create_schema(engine)
        session_factory = create_session_factory(engine)

    app = FastAPI(title='Housekeeping Linen Count', lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.authorizer = authorizer or build_authorizer(settings.permission_mode)
    app.state.presence = presence or PresenceTracker(ttl_seconds=settings.presence_ttl_seconds)
    app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

    app.add_exception_handler(LinenCountError, linen_count_error_handler)

    install_security_headers(app)
    install_csrf_cookie_middleware(app)
    install_auth_session_middleware(app)

    app.include_router(auth.router)
    app.include_router(counts.router)
    app.include_router(settings_router.router)
    app.include_router(reports.router)

    @app.get('/health')
    def health() -> dict:
        return {'status': 'ok'}

    @app.get('/robots.txt', response_class=PlainTextResponse)
    def robots_txt() -> str:
        return 'User-agent: *\nDisallow: /\n'

    logger.info('Linen count app created (permission_mode=%s)', settings.permission_mode)
    return app
