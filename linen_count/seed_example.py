from sqlalchemy import select

from linen_count.config import Settings
from linen_count.db import create_db_engine, create_schema, create_session_factory
from linen_count.models import Location, StaffRole, StaffUser
from linen_count.security.passwords import hash_password
from linen_count.services.settings_service import list_linen_items, save_location_settings

DEMO_LINEN_ITEMS = [
    {'id': 'pc', 'name': 'Pillow Case', 'shortcode': 'PC', 'size': 'Standard', 'pack_qty': 10, 'target_stock_qty': 120},
    {'id': 'ks', 'name': 'King Sheet', 'shortcode': 'KS', 'size': 'King', 'pack_qty': 5, 'target_stock_qty': 60},
    {'id': 'qs', 'name': 'Queen Sheet', 'shortcode': 'QS', 'size': 'Queen', 'pack_qty': 5, 'target_stock_qty': 60},
    {'id': 'bt', 'name': 'Bath Towel', 'shortcode': 'BT', 'size': '', 'pack_qty': 10, 'target_stock_qty': 150},
    {'id': 'ht', 'name': 'Hand Towel', 'shortcode': 'HT', 'size': '', 'pack_qty': 10, 'target_stock_qty': 150},
    {'id': 'bm', 'name': 'Bath Mat', 'shortcode': 'BM', 'size': '', 'pack_qty': 10, 'target_stock_qty': 80},
]

DEMO_USERS = [
    ('housekeeper', 'Hana Housekeeping', 'housekeeperpass', StaffRole.HOUSEKEEPING, True),
    ('supervisor', 'Sam Supervisor', 'supervisorpass', StaffRole.SUPERVISOR, True),
    ('manager', 'Morgan Manager', 'managerpass', StaffRole.MANAGER, False),
    ('admin', 'Alex Admin', 'adminpass', StaffRole.ADMIN, False),
]


def seed(settings: Settings | None = None) -> None:
    settings = settings or Settings()
    engine = create_db_engine(settings.database_url_normalized, echo=settings.database_echo)
    create_schema(engine)
    session_factory = create_session_factory(engine)

    with session_factory() as db:
        location = db.execute(select(Location).where(Location.name == 'Harbour View')).scalar_one_or_none()
        if not location:
            location = Location(name='Harbour View', active=True)
            db.add(location)
            db.flush()

        admin = None
        for username, display_name, password, role, scoped in DEMO_USERS:
            user = db.execute(select(StaffUser).where(StaffUser.username == username)).scalar_one_or_none()
            if not user:
                user = StaffUser(
                    username=username,
                    display_name=display_name,
                    password_hash=hash_password(password),
                    role=role,
                    location_id=location.id if scoped else None,
                    active=True,
                )
                db.add(user)
                db.flush()
            if role == StaffRole.ADMIN:
                admin = user

        if not list_linen_items(db, location_id=location.id):
            save_location_settings(
                db,
                location_id=location.id,
                enabled=True,
                linen_items=DEMO_LINEN_ITEMS,
                updated_by=admin.id,
            )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
