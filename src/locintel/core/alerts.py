from __future__ import annotations

import logging

from .errors import InvalidAlertParameters
from .models import LocationAlert
from .store import LocationStore

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_M = 100.0


def validate_alert_params(
    name: str,
    lat: float | None,
    lon: float | None,
    radius_m: float,
    min_radius_m: float | None = None,
    max_radius_m: float | None = None,
) -> None:
    if not name or not name.strip():
        raise InvalidAlertParameters("alert name is required")
    if lat is None or lon is None:
        raise InvalidAlertParameters("alert center coordinates are required")
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
        raise InvalidAlertParameters(f"alert center out of range: {lat}, {lon}")
    if radius_m <= 0:
        raise InvalidAlertParameters(f"radius must be positive: {radius_m}")
    if min_radius_m is not None and radius_m < min_radius_m:
        raise InvalidAlertParameters(f"radius {radius_m}m below minimum {min_radius_m}m")
    if max_radius_m is not None and radius_m > max_radius_m:
        raise InvalidAlertParameters(f"radius {radius_m}m above maximum {max_radius_m}m")


class AlertBook:
    """Owner-side alert management; alerts are validated here, not in the evaluator."""

    def __init__(
        self,
        store: LocationStore,
        default_radius_m: float = DEFAULT_RADIUS_M,
        min_radius_m: float | None = 50.0,
        max_radius_m: float | None = 1000.0,
    ):
        self.store = store
        self.default_radius_m = default_radius_m
        self.min_radius_m = min_radius_m
        self.max_radius_m = max_radius_m

    def create_alert(
        self,
        owner_id: str,
        friend_id: str,
        name: str,
        lat: float | None,
        lon: float | None,
        radius_m: float | None = None,
    ) -> LocationAlert:
        radius_m = self.default_radius_m if radius_m is None else radius_m
        validate_alert_params(name, lat, lon, radius_m, self.min_radius_m, self.max_radius_m)
        if owner_id == friend_id:
            raise InvalidAlertParameters("cannot watch yourself")
        alert = LocationAlert(
            user_id=owner_id,
            friend_id=friend_id,
            name=name.strip(),
            lat=lat,
            lon=lon,
            radius_m=float(radius_m),
        )
        self.store.insert_alert(alert)
        logger.info("alert %s created by %s for %s (%s, %.0fm)", alert.id, owner_id, friend_id, alert.name, radius_m)
        return alert

    def toggle_alert(self, alert_id: str, is_active: bool) -> LocationAlert:
        self.store.update_alert_active(alert_id, is_active)
        return self.store.get_alert(alert_id)

    def delete_alert(self, alert_id: str) -> None:
        self.store.delete_alert(alert_id)
        logger.info("alert %s deleted", alert_id)

    def list_alerts(self, owner_id: str) -> list[LocationAlert]:
        return self.store.list_alerts(owner_id)
