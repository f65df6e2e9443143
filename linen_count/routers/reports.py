from __future__ import annotations

from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, StreamingResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from linen_count.auth import Principal, assert_location_scope, require_capability
from linen_count.db import get_db
from linen_count.dependencies import get_client_ip, get_templates
from linen_count.permissions import Capability
from linen_count.services.audit_service import log_audit
from linen_count.services.report_service import (
    calendar_month,
    date_range_report,
    day_details,
    export_rows,
    write_csv,
)

router = APIRouter(prefix='/reports', tags=['reports'])
reports_access = require_capability(Capability.VIEW_REPORTS)


def _scoped_location(principal: Principal, location_id: int | None) -> int | None:
    # Location-bound staff only ever see their own location.
    if principal.location_id is not None:
        if location_id is None:
            return principal.location_id
        assert_location_scope(principal, location_id)
    return location_id


def _this_month() -> str:
    return datetime.now(tz=timezone.utc).strftime('%Y-%m')


@router.get('/calendar.json')
def calendar_data(
    month: str | None = None,
    location_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(reports_access),
):
    location_id = _scoped_location(principal, location_id)
    return {'ok': True, **calendar_month(db, location_id=location_id, month=month or _this_month())}


@router.get('/calendar', response_class=HTMLResponse)
def calendar_html(
    request: Request,
    month: str | None = None,
    location_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(reports_access),
    templates: Jinja2Templates = Depends(get_templates),
):
    location_id = _scoped_location(principal, location_id)
    data = calendar_month(db, location_id=location_id, month=month or _this_month())
    return templates.TemplateResponse(
        request,
        'report_calendar.html',
        {'calendar': data, 'location_id': location_id, 'today': date.today()},
    )


@router.get('/day')
def day_report(
    service_date: date,
    location_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(reports_access),
):
    location_id = _scoped_location(principal, location_id)
    return {'ok': True, **day_details(db, location_id=location_id, service_date=service_date)}


@router.get('/range')
def range_report(
    location_id: int,
    date_from: date,
    date_to: date,
    db: Session = Depends(get_db),
    principal: Principal = Depends(reports_access),
):
    assert_location_scope(principal, location_id)
    return {
        'ok': True,
        **date_range_report(db, location_id=location_id, date_from=date_from, date_to=date_to),
    }


@router.get('/export.csv')
def export_csv(
    request: Request,
    location_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(reports_access),
):
    location_id = _scoped_location(principal, location_id)
    rows = export_rows(db, location_id=location_id, date_from=date_from, date_to=date_to)
    body = write_csv(rows)

    log_audit(
        db,
        actor_user_id=principal.id,
        action='LINEN_REPORT_EXPORTED',
        location_id=location_id,
        ip=get_client_ip(request),
        metadata={
            'date_from': date_from.isoformat() if date_from else None,
            'date_to': date_to.isoformat() if date_to else None,
            'rows': len(rows),
        },
    )
    db.commit()

    filename = f'linen-counts-{date.today().isoformat()}.csv'
    return StreamingResponse(
        iter([body]),
        media_type='text/csv',
        headers={'Content-Disposition': f'attachment; filename={filename}'},
    )
