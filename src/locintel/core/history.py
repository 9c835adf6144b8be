from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..utils.geocode import ReverseGeocoder
from .models import HistoryPoint, Place, utcnow
from .places import CLUSTER_DISTANCE_M, MIN_CLUSTER_POINTS, cluster_places
from .store import LocationStore

logger = logging.getLogger(__name__)


class HistoryService:
    def __init__(
        self,
        store: LocationStore,
        cluster_distance_m: float = CLUSTER_DISTANCE_M,
        min_points: int = MIN_CLUSTER_POINTS,
    ):
        self.store = store
        self.cluster_distance_m = cluster_distance_m
        self.min_points = min_points

    def recent(self, user_id: str, hours: int = 24, now: datetime | None = None) -> list[HistoryPoint]:
        now = utcnow() if now is None else now
        return self.store.query_history_points(user_id, now - timedelta(hours=hours))

    def places(self, user_id: str, hours: int = 168, now: datetime | None = None) -> list[Place]:
        """Places visited in the last `hours` (7 days by default), most recent first."""
        pts = self.recent(user_id, hours, now)
        return cluster_places(pts, self.cluster_distance_m, self.min_points)

    def prune(self, user_id: str, days: int = 7, now: datetime | None = None) -> int:
        now = utcnow() if now is None else now
        removed = self.store.delete_history_before(user_id, now - timedelta(days=days))
        if removed:
            logger.info("pruned %d history points for %s", removed, user_id)
        return removed

    def fill_addresses(
        self,
        user_id: str,
        geocoder: ReverseGeocoder,
        hours: int = 24,
        limit: int = 20,
        now: datetime | None = None,
    ) -> int:
        """Resolve addresses for up to `limit` recent points that have none."""
        filled = 0
        for p in self.recent(user_id, hours, now):
            if filled >= limit:
                break
            if p.address:
                continue
            addr = geocoder.reverse(p.lat, p.lon)
            if addr is None:
                continue
            self.store.set_history_address(p.id, addr)
            p.address = addr
            filled += 1
        return filled
