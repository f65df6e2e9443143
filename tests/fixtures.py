from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from linen_count.auth import Principal
from linen_count.db import create_db_engine, create_schema, create_session_factory
from linen_count.models import LinenItem, Location, LocationSetting, StaffRole, StaffUser

DEFAULT_ITEMS = (
    ('pc', 'Pillow Case', 'PC'),
    ('ks', 'King Sheet', 'KS'),
    ('bt', 'Bath Towel', 'BT'),
)


def make_session_factory() -> sessionmaker[Session]:
    engine = create_db_engine('sqlite://')
    create_schema(engine)
    return create_session_factory(engine)


def add_location(db: Session, name: str = 'Harbour View', *, items=DEFAULT_ITEMS, enabled: bool = True) -> Location:
    location = Location(name=name, active=True)
    db.add(location)
    db.flush()
    for position, (key, item_name, shortcode) in enumerate(items):
        db.add(
            LinenItem(
                location_id=location.id,
                item_key=key,
                name=item_name,
                shortcode=shortcode,
                size='',
                pack_qty=1,
                target_stock_qty=0,
                position=position,
            )
        )
    if not enabled:
        db.add(LocationSetting(location_id=location.id, enabled=False))
    db.flush()
    return location


def add_user(
    db: Session,
    username: str,
    role: StaffRole,
    *,
    display_name: str | None = None,
    location_id: int | None = None,
    password_hash: str = 'not-a-real-hash',
    active: bool = True,
) -> StaffUser:
    user = StaffUser(
        username=username,
        display_name=display_name or username.title(),
        password_hash=password_hash,
        role=role,
        location_id=location_id,
        active=active,
    )
    db.add(user)
    db.flush()
    return user


def principal_for(user: StaffUser) -> Principal:
    return Principal(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        role=user.role,
        location_id=user.location_id,
        active=user.active,
    )
