from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigId = BigInteger().with_variant(Integer(), 'sqlite')


class Base(DeclarativeBase):
    pass


class StaffRole(str, Enum):
    HOUSEKEEPING = 'HOUSEKEEPING'
    SUPERVISOR = 'SUPERVISOR'
    MANAGER = 'MANAGER'
    ADMIN = 'ADMIN'


class LinenCountStatus(str, Enum):
    DRAFT = 'DRAFT'
    SUBMITTED = 'SUBMITTED'
    REOPENED = 'REOPENED'


class Location(Base):
    __tablename__ = 'locations'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='1')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class LocationSetting(Base):
    __tablename__ = 'location_settings'

    location_id: Mapped[int] = mapped_column(BigId, ForeignKey('locations.id', ondelete='CASCADE'), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='1')
    updated_by: Mapped[int | None] = mapped_column(BigId, ForeignKey('staff_users.id'))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class LinenItem(Base):
    __tablename__ = 'linen_items'
    __table_args__ = (
        UniqueConstraint('location_id', 'item_key', name='linen_items_location_key_uniq'),
        CheckConstraint('pack_qty >= 1', name='linen_items_pack_qty_positive'),
        CheckConstraint('target_stock_qty >= 0', name='linen_items_target_stock_non_negative'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    location_id: Mapped[int] = mapped_column(BigId, ForeignKey('locations.id', ondelete='CASCADE'), nullable=False)
    item_key: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False, default='')
    shortcode: Mapped[str] = mapped_column(String(20), nullable=False, default='')
    size: Mapped[str] = mapped_column(String(50), nullable=False, default='')
    pack_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')
    target_stock_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')


class StaffUser(Base):
    __tablename__ = 'staff_users'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[StaffRole] = mapped_column(SQLEnum(StaffRole, name='staff_role'), nullable=False)
    location_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('locations.id'))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='1')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[int] = mapped_column(BigId, ForeignKey('staff_users.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class LinenCount(Base):
    __tablename__ = 'linen_counts'
    __table_args__ = (
        UniqueConstraint('location_id', 'room_id', 'linen_item_id', 'service_date', name='unique_room_item_date'),
        CheckConstraint('count >= 0', name='linen_counts_count_non_negative'),
        Index('linen_counts_location_date_idx', 'location_id', 'service_date'),
        Index('linen_counts_room_date_idx', 'room_id', 'service_date'),
        Index('linen_counts_change_seq_idx', 'location_id', 'service_date', 'change_seq'),
    )

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    location_id: Mapped[int] = mapped_column(BigId, ForeignKey('locations.id'), nullable=False)
    room_id: Mapped[str] = mapped_column(String(50), nullable=False)
    linen_item_id: Mapped[str] = mapped_column(String(50), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    submitted_by: Mapped[int] = mapped_column(BigId, ForeignKey('staff_users.id'), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    booking_ref: Mapped[str | None] = mapped_column(String(100))
    status: Mapped[LinenCountStatus] = mapped_column(
        SQLEnum(LinenCountStatus, name='linen_count_status'),
        nullable=False,
        default=LinenCountStatus.DRAFT,
        server_default='DRAFT',
    )
    last_updated_by: Mapped[int | None] = mapped_column(BigId, ForeignKey('staff_users.id'))
    last_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    change_seq: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default='0')

    @property
    def is_locked(self) -> bool:
        return self.status == LinenCountStatus.SUBMITTED


class LinenChangeCounter(Base):
    __tablename__ = 'linen_change_counter'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default='0')


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigId, primary_key=True)
    actor_user_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('staff_users.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    location_id: Mapped[int | None] = mapped_column(BigId, ForeignKey('locations.id'))
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
