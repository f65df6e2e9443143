from __future__ import annotations

from sqlalchemy.orm import Session

from linen_count.models import AuditLog


def log_audit(
    db: Session,
    *,
    actor_user_id: int | None,
    action: str,
    location_id: int | None,
    ip: str | None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_user_id=actor_user_id,
            action=action,
            location_id=location_id,
            ip=ip,
            meta=metadata or {},
        )
    )
