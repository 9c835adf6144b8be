from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import Executor
from datetime import datetime, timedelta

from ..utils.geo import haversine_m
from .models import LocationAlert, TriggerEvent, utcnow
from .store import LocationStore, Notifier, submit_write

logger = logging.getLogger(__name__)

ALERT_COOLDOWN = timedelta(minutes=10)


class GeofenceEvaluator:
    """
    Checks a friend's fresh position against the owner's alerts for that friend.

    Order per trigger is notify first, then persist the cooldown: a failed
    persist may cause a duplicate notification later, never a missed one.

    Note:
      - There is no hysteresis band; the cooldown is the only protection
        against GPS jitter near the boundary.
      - now is taken from the system clock unless given (pass it in replays/tests).
    """

    def __init__(
        self,
        store: LocationStore,
        notifier: Notifier,
        cooldown: timedelta = ALERT_COOLDOWN,
        executor: Executor | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self.cooldown = cooldown
        self.executor = executor
        self._lock = threading.Lock()

    def check_alerts(
        self,
        friend_id: str,
        lat: float,
        lon: float,
        alerts: Iterable[LocationAlert],
        now: datetime | None = None,
    ) -> list[TriggerEvent]:
        now = utcnow() if now is None else now
        events: list[TriggerEvent] = []
        # cooldown check, notify and persist form one step per evaluator
        with self._lock:
            for alert in alerts:
                if alert.friend_id != friend_id or not alert.is_active:
                    continue
                d = haversine_m(alert.lat, alert.lon, lat, lon)
                if d > alert.radius_m:
                    continue
                if not self._cooled_down(alert, now):
                    continue
                ev = TriggerEvent(
                    alert_id=alert.id,
                    alert_name=alert.name,
                    friend_id=friend_id,
                    owner_id=alert.user_id,
                    distance_m=d,
                    triggered_at=now,
                )
                self._emit(ev)
                self._persist_cooldown(alert, now)
                events.append(ev)
        return events

    def _cooled_down(self, alert: LocationAlert, now: datetime) -> bool:
        if alert.last_triggered_at is None:
            return True
        return now - alert.last_triggered_at > self.cooldown

    def _emit(self, ev: TriggerEvent) -> None:
        logger.info("alert %s (%s) triggered by %s at %.1fm", ev.alert_id, ev.alert_name, ev.friend_id, ev.distance_m)
        try:
            self.notifier.notify("geofence", ev.payload())
        except Exception:
            logger.exception("notifier failed for alert %s", ev.alert_id)

    def _persist_cooldown(self, alert: LocationAlert, now: datetime) -> None:
        alert.last_triggered_at = now
        submit_write(self.executor, "alert_last_triggered", self.store.update_alert_last_triggered, alert.id, now)
