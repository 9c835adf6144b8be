from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from concurrent.futures import Executor, Future
from dataclasses import replace
from datetime import datetime
from typing import Any, Protocol

from .errors import AlertNotFound, PersistenceFailure
from .models import HistoryPoint, LiveLocation, LocationAlert, Message, utcnow

logger = logging.getLogger(__name__)


class LocationStore(Protocol):
    def upsert_live_location(self, loc: LiveLocation) -> None: ...

    def get_live_location(self, user_id: str) -> LiveLocation | None: ...

    def insert_history_point(self, point: HistoryPoint) -> None: ...

    def query_history_points(self, user_id: str, since: datetime) -> list[HistoryPoint]: ...

    def delete_history_before(self, user_id: str, cutoff: datetime) -> int: ...

    def set_history_address(self, point_id: str, address: str) -> None: ...

    def insert_alert(self, alert: LocationAlert) -> None: ...

    def get_alert(self, alert_id: str) -> LocationAlert: ...

    def list_alerts(self, owner_id: str) -> list[LocationAlert]: ...

    def alerts_targeting(self, friend_id: str) -> list[LocationAlert]: ...

    def update_alert_active(self, alert_id: str, is_active: bool) -> None: ...

    def update_alert_last_triggered(self, alert_id: str, ts: datetime) -> None: ...

    def delete_alert(self, alert_id: str) -> None: ...

    def accepted_friends(self, user_id: str) -> list[str]: ...

    def insert_message(self, msg: Message) -> None: ...


class Notifier(Protocol):
    def notify(self, kind: str, payload: dict[str, Any]) -> None: ...


def submit_write(executor: Executor | None, what: str, fn: Callable[..., Any], *args) -> Future:
    """
    Run a store write as an explicit task.

    With an executor the write is fire-and-forget; without one it runs inline
    and the returned future is already resolved. Failures are logged and kept
    on the future (as PersistenceFailure), never raised to the caller.
    """
    if executor is not None:
        fut = executor.submit(fn, *args)
    else:
        fut = Future()
        try:
            fut.set_result(fn(*args))
        except Exception as e:
            fut.set_exception(e)
    fut.add_done_callback(lambda f: _log_failure(what, f))
    return fut


def _log_failure(what: str, fut: Future) -> None:
    exc = fut.exception()
    if exc is not None:
        logger.warning("persistence failure (%s): %s", what, exc, exc_info=exc)


class InMemoryStore:
    """
    Thread-safe in-process store.

    Stands in for the hosted backend: live locations are keyed by user
    (upsert), history is append-only, friend links are symmetric.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.live: dict[str, LiveLocation] = {}
        self.history: list[HistoryPoint] = []
        self.alerts: dict[str, LocationAlert] = {}
        self.friends: dict[str, set[str]] = {}
        self.messages: list[Message] = []
        self.live_writes = 0

    # live
    def upsert_live_location(self, loc: LiveLocation) -> None:
        with self._lock:
            self.live[loc.user_id] = replace(loc)
            self.live_writes += 1

    def get_live_location(self, user_id: str) -> LiveLocation | None:
        with self._lock:
            return self.live.get(user_id)

    # history
    def insert_history_point(self, point: HistoryPoint) -> None:
        with self._lock:
            self.history.append(point)

    def query_history_points(self, user_id: str, since: datetime) -> list[HistoryPoint]:
        with self._lock:
            pts = [p for p in self.history if p.user_id == user_id and p.recorded_at >= since]
        return sorted(pts, key=lambda p: p.recorded_at)

    def delete_history_before(self, user_id: str, cutoff: datetime) -> int:
        with self._lock:
            keep = [p for p in self.history if p.user_id != user_id or p.recorded_at >= cutoff]
            removed = len(self.history) - len(keep)
            self.history = keep
        return removed

    def set_history_address(self, point_id: str, address: str) -> None:
        with self._lock:
            for p in self.history:
                if p.id == point_id:
                    p.address = address
                    return
        raise PersistenceFailure(f"history point not found: {point_id}")

    # alerts
    def insert_alert(self, alert: LocationAlert) -> None:
        with self._lock:
            self.alerts[alert.id] = alert

    def _alert_locked(self, alert_id: str) -> LocationAlert:
        # caller holds _lock
        try:
            return self.alerts[alert_id]
        except KeyError:
            raise AlertNotFound(alert_id) from None

    def get_alert(self, alert_id: str) -> LocationAlert:
        with self._lock:
            return self._alert_locked(alert_id)

    def list_alerts(self, owner_id: str) -> list[LocationAlert]:
        with self._lock:
            out = [a for a in self.alerts.values() if a.user_id == owner_id]
        return sorted(out, key=lambda a: a.created_at, reverse=True)

    def alerts_targeting(self, friend_id: str) -> list[LocationAlert]:
        with self._lock:
            return [a for a in self.alerts.values() if a.friend_id == friend_id]

    def update_alert_active(self, alert_id: str, is_active: bool) -> None:
        with self._lock:
            self._alert_locked(alert_id).is_active = is_active

    def update_alert_last_triggered(self, alert_id: str, ts: datetime) -> None:
        if ts > utcnow():
            raise PersistenceFailure("last_triggered_at cannot be in the future")
        with self._lock:
            self._alert_locked(alert_id).last_triggered_at = ts

    def delete_alert(self, alert_id: str) -> None:
        with self._lock:
            if self.alerts.pop(alert_id, None) is None:
                raise AlertNotFound(alert_id)

    # friends / messages
    def add_friend(self, user_id: str, friend_id: str) -> None:
        with self._lock:
            self.friends.setdefault(user_id, set()).add(friend_id)
            self.friends.setdefault(friend_id, set()).add(user_id)

    def accepted_friends(self, user_id: str) -> list[str]:
        with self._lock:
            return sorted(self.friends.get(user_id, ()))

    def insert_message(self, msg: Message) -> None:
        with self._lock:
            self.messages.append(msg)


class InMemoryNotifier:
    """Keeps the most recent notifications and logs each one."""

    def __init__(self, maxlen: int = 200):
        self.events: deque[tuple[str, dict[str, Any]]] = deque(maxlen=maxlen)

    def notify(self, kind: str, payload: dict[str, Any]) -> None:
        logger.info("notify %s: %s", kind, payload)
        self.events.append((kind, payload))

    def recent(self, limit: int = 50) -> list[tuple[str, dict[str, Any]]]:
        return list(self.events)[-limit:]
