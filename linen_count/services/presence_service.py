from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone

logger = logging.getLogger(__name__)


@dataclass
class ActiveViewer:
    user_id: int
    display_name: str
    last_seen: float
    current_room: str | None
    modal_open: bool

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload['last_active'] = datetime.fromtimestamp(self.last_seen, tz=timezone.utc)
        del payload['last_seen']
        return payload


class PresenceTracker:
    """Who is currently viewing a location's linen counts for a given date.

    Process-local and best effort: entries live for ``ttl_seconds`` after the
    viewer's last poll and are lost on restart.
    """

    def __init__(self, ttl_seconds: int = 120, clock=time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._viewers: dict[tuple[int, date], dict[int, ActiveViewer]] = {}
        self._lock = threading.Lock()

    def _prune(self, key: tuple[int, date], now: float) -> None:
        viewers = self._viewers.get(key)
        if viewers is None:
            return
        cutoff = now - self.ttl_seconds
        for user_id in [uid for uid, viewer in viewers.items() if viewer.last_seen < cutoff]:
            del viewers[user_id]
        if not viewers:
            del self._viewers[key]

    def touch(
        self,
        *,
        location_id: int,
        service_date: date,
        user_id: int,
        display_name: str,
        current_room: str | None = None,
        modal_open: bool = False,
    ) -> None:
        now = self._clock()
        key = (location_id, service_date)
        with self._lock:
            self._viewers.setdefault(key, {})[user_id] = ActiveViewer(
                user_id=user_id,
                display_name=display_name,
                last_seen=now,
                current_room=current_room or None,
                modal_open=modal_open,
            )
            self._prune(key, now)

    def active_viewers(self, *, location_id: int, service_date: date, exclude_user_id: int | None = None) -> list[dict]:
        key = (location_id, service_date)
        with self._lock:
            self._prune(key, self._clock())
            viewers = list(self._viewers.get(key, {}).values())
        return [
            viewer.as_dict()
            for viewer in sorted(viewers, key=lambda v: v.display_name.lower())
            if viewer.user_id != exclude_user_id
        ]

    def sweep(self) -> int:
        """Drop expired entries everywhere. Returns how many viewers were removed."""
        now = self._clock()
        with self._lock:
            before = sum(len(viewers) for viewers in self._viewers.values())
            for key in list(self._viewers):
                self._prune(key, now)
            after = sum(len(viewers) for viewers in self._viewers.values())
        removed = before - after
        if removed:
            logger.debug('Presence sweep removed %s expired viewers', removed)
        return removed
