from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str
    password: str


class RoomKey(BaseModel):
    location_id: int
    room_id: str = Field(min_length=1, max_length=50)
    service_date: date


class AutosaveRequest(RoomKey):
    item_id: str = Field(min_length=1, max_length=50)
    count: int
    booking_ref: str | None = None


class SubmitCountRequest(RoomKey):
    counts: dict[str, int]
    booking_ref: str | None = None


class UnlockRequest(RoomKey):
    pass


class SubmitAllRequest(BaseModel):
    location_id: int
    service_date: date


class PollRequest(BaseModel):
    location_id: int
    service_date: date
    last_check: datetime | None = None
    cursor: int | None = Field(default=None, ge=0)
    current_room: str | None = None
    modal_open: bool | None = None


class LinenItemIn(BaseModel):
    id: str | None = None
    name: str = ''
    shortcode: str = ''
    size: str = ''
    pack_qty: int | str | None = 1
    target_stock_qty: int | str | None = 0


class LocationSettingsUpdate(BaseModel):
    enabled: bool = True
    linen_items: list[LinenItemIn] = Field(default_factory=list)
