from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol

from ..utils.geo import haversine_m
from .errors import PositionUnavailable
from .models import HistoryPoint, LiveLocation, RawPosition, utcnow
from .store import LocationStore, submit_write

logger = logging.getLogger(__name__)

MIN_DISTANCE_METERS = 50.0
MIN_TIME_BETWEEN_SAVES = timedelta(milliseconds=60000)


@dataclass
class _Last:
    lat: float
    lon: float
    time: datetime


@dataclass(frozen=True)
class WatchOptions:
    high_accuracy: bool = True
    timeout_sec: float = 10.0
    max_age_sec: float = 5.0


class PositionSource(Protocol):
    def subscribe(
        self,
        on_position: Callable[[RawPosition], Any],
        on_error: Callable[[PositionUnavailable], Any],
        options: WatchOptions,
    ) -> Any: ...

    def unsubscribe(self, handle: Any) -> None: ...


@dataclass
class TrackingSession:
    """
    State of one tracking session for one user.

    Holds the last *accepted* history marker; sessions never share it, so two
    sessions for the same user produce independent history streams.
    """

    user_id: str
    session_id: str = "default"
    last: _Last | None = None
    handle: Any = None
    source: Any = None
    last_error: PositionUnavailable | None = None
    reports: int = 0
    accepted: int = 0

    @property
    def is_tracking(self) -> bool:
        return self.handle is not None

    @property
    def location_unavailable(self) -> bool:
        return self.last_error is not None

    def handle_error(self, exc: PositionUnavailable) -> None:
        # nothing is retained; the next valid fix clears the state
        logger.warning("position error for %s/%s: %s", self.user_id, self.session_id, exc)
        self.last_error = exc


@dataclass
class ReportResult:
    accepted: bool
    distance_m: float | None
    live_write: Future
    history_write: Future | None = None
    point: HistoryPoint | None = field(default=None, repr=False)


class PositionSampler:
    def __init__(
        self,
        store: LocationStore,
        min_distance_m: float = MIN_DISTANCE_METERS,
        min_interval: timedelta = MIN_TIME_BETWEEN_SAVES,
        executor: Executor | None = None,
    ):
        self.store = store
        self.min_distance_m = min_distance_m
        self.min_interval = min_interval
        self.executor = executor

    def report_position(
        self, session: TrackingSession, pos: RawPosition, now: datetime | None = None
    ) -> ReportResult:
        """
        Live upsert on every fix; history insert only past the distance/time
        hysteresis relative to the session's last accepted point.
        """
        now = utcnow() if now is None else now
        session.reports += 1
        session.last_error = None

        live = LiveLocation(
            user_id=session.user_id,
            lat=pos.lat,
            lon=pos.lon,
            accuracy=pos.accuracy,
            heading=pos.heading,
            speed=pos.speed,
            updated_at=now,
        )
        live_fut = submit_write(self.executor, "live_location", self.store.upsert_live_location, live)

        accept, d = self._should_accept(session.last, pos)
        if not accept:
            logger.debug(
                "skip sample for %s: %.1fm, %ss since last",
                session.user_id,
                d,
                (pos.captured_at - session.last.time).total_seconds(),
            )
            return ReportResult(accepted=False, distance_m=d, live_write=live_fut)

        session.last = _Last(pos.lat, pos.lon, pos.captured_at)
        session.accepted += 1
        point = HistoryPoint(
            user_id=session.user_id,
            lat=pos.lat,
            lon=pos.lon,
            accuracy=pos.accuracy,
            recorded_at=pos.captured_at,
        )
        hist_fut = submit_write(self.executor, "history_point", self.store.insert_history_point, point)
        logger.debug("history point accepted for %s at %s", session.user_id, pos.captured_at)
        return ReportResult(
            accepted=True, distance_m=d, live_write=live_fut, history_write=hist_fut, point=point
        )

    def _should_accept(self, last: _Last | None, pos: RawPosition) -> tuple[bool, float | None]:
        if last is None:
            return True, None
        d = haversine_m(last.lat, last.lon, pos.lat, pos.lon)
        if d >= self.min_distance_m:
            return True, d
        return pos.captured_at - last.time >= self.min_interval, d

    # -------------------- subscription --------------------

    def start(
        self,
        session: TrackingSession,
        source: PositionSource,
        options: WatchOptions | None = None,
        on_error: Callable[[PositionUnavailable], Any] | None = None,
    ) -> None:
        if session.is_tracking:
            return

        def _on_error(exc: PositionUnavailable) -> None:
            session.handle_error(exc)
            if on_error is not None:
                on_error(exc)

        session.handle = source.subscribe(
            lambda pos: self.report_position(session, pos),
            _on_error,
            options or WatchOptions(),
        )
        session.source = source

    def stop(self, session: TrackingSession) -> None:
        # in-flight writes are left to complete on their own
        if session.handle is None:
            return
        session.source.unsubscribe(session.handle)
        session.handle = None
        session.source = None


class ReplaySource:
    """
    Finite position source: replays recorded fixes (or errors) synchronously
    on subscribe. Used for offline replay and tests.
    """

    def __init__(self, events: Iterable[RawPosition | PositionUnavailable]):
        self.events = list(events)
        self.active: set[int] = set()
        self.options: WatchOptions | None = None
        self._next = 0

    def subscribe(self, on_position, on_error, options: WatchOptions) -> int:
        self._next += 1
        handle = self._next
        self.active.add(handle)
        self.options = options
        for ev in self.events:
            if handle not in self.active:
                break
            if isinstance(ev, PositionUnavailable):
                on_error(ev)
            else:
                on_position(ev)
        return handle

    def unsubscribe(self, handle: int) -> None:
        self.active.discard(handle)
