from __future__ import annotations

import logging
import os
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Literal

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from ..core.alerts import AlertBook
from ..core.config import Config, load_config
from ..core.errors import AlertNotFound, InvalidAlertParameters, NoSosRecipients, PositionUnavailable
from ..core.geofence import GeofenceEvaluator
from ..core.history import HistoryService
from ..core.models import LocationAlert, Place, RawPosition, TriggerEvent
from ..core.sampler import PositionSampler, TrackingSession
from ..core.sos import SosBroadcaster, SosInbox
from ..core.store import InMemoryNotifier, InMemoryStore
from ..utils.geocode import NominatimConfig, NominatimReverseGeocoder

logger = logging.getLogger(__name__)

# -------------------- Pydantic schemas --------------------


class PositionIn(BaseModel):
    user_id: str
    session_id: str = "default"
    timestamp: datetime | None = None
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    accuracy: float | None = Field(None, ge=0, description="m")
    heading: float | None = Field(None, description="degrees")
    speed: float | None = Field(None, description="m/s")


class PositionErrorIn(BaseModel):
    user_id: str
    session_id: str = "default"
    reason: Literal["permission_denied", "timeout", "unavailable"] = "unavailable"
    message: str | None = None


class TriggerOut(BaseModel):
    alert_id: str
    alert_name: str
    friend_id: str
    owner_id: str
    distance_m: float
    triggered_at: datetime


class PositionOut(BaseModel):
    user_id: str
    session_id: str
    accepted: bool
    triggers: list[TriggerOut] = []
    # verbose mode only
    distance_m: float | None = None


class LiveLocationOut(BaseModel):
    user_id: str
    lat: float
    lon: float
    accuracy: float | None = None
    heading: float | None = None
    speed: float | None = None
    updated_at: datetime


class AlertIn(BaseModel):
    owner_id: str
    friend_id: str
    name: str
    lat: float | None = None
    lon: float | None = None
    radius_m: float | None = None


class AlertPatch(BaseModel):
    is_active: bool


class AlertOut(BaseModel):
    id: str
    owner_id: str
    friend_id: str
    name: str
    lat: float
    lon: float
    radius_m: float
    is_active: bool
    last_triggered_at: datetime | None = None
    created_at: datetime


class HistoryPointOut(BaseModel):
    id: str
    lat: float
    lon: float
    accuracy: float | None = None
    recorded_at: datetime
    address: str | None = None


class PlaceOut(BaseModel):
    id: str
    lat: float
    lon: float
    address: str
    arrived_at: datetime
    left_at: datetime
    points: int
    ongoing: bool
    duration: str


class FriendIn(BaseModel):
    user_id: str
    friend_id: str


class SosIn(BaseModel):
    user_id: str
    lat: float | None = Field(None, ge=-90, le=90)
    lon: float | None = Field(None, ge=-180, le=180)


class SosOut(BaseModel):
    sender_id: str
    recipients: list[str]
    address: str


class NotificationOut(BaseModel):
    kind: str
    payload: dict


# -------------------- App & Config --------------------

app = FastAPI(title="locintel – location intelligence core")

CFG_PATH = Path(os.getenv("LOCINTEL_CONFIG", "configs/config.json"))
cfg: Config = load_config(CFG_PATH) if CFG_PATH.exists() else Config({})

logging.basicConfig(level=os.getenv("LOG_LEVEL", cfg.log_level).upper())

# API_MODE = "minimal" | "verbose" (env wins over config)
api_mode_env = os.getenv("API_MODE", "").strip().lower()
if api_mode_env in {"minimal", "verbose"}:
    VERBOSE = api_mode_env == "verbose"
else:
    VERBOSE = cfg.api_verbose

store = InMemoryStore()
notifier = InMemoryNotifier()
geocoder = (
    NominatimReverseGeocoder(
        NominatimConfig(
            base_url=cfg.geocode_base_url,
            accept_language=cfg.geocode_accept_language,
            timeout_sec=cfg.geocode_timeout_sec,
            min_interval_sec=cfg.geocode_min_interval_sec,
            user_agent=cfg.geocode_user_agent,
        )
    )
    if cfg.geocode_enabled
    else None
)

sampler = PositionSampler(
    store,
    min_distance_m=cfg.sampler_min_distance_m,
    min_interval=timedelta(seconds=cfg.sampler_min_interval_sec),
)
evaluator = GeofenceEvaluator(store, notifier, cooldown=timedelta(seconds=cfg.gf_cooldown_sec))
alert_book = AlertBook(
    store,
    default_radius_m=cfg.gf_default_radius_m,
    min_radius_m=cfg.gf_min_radius_m,
    max_radius_m=cfg.gf_max_radius_m,
)
history = HistoryService(
    store,
    cluster_distance_m=cfg.places_cluster_distance_m,
    min_points=cfg.places_min_points,
)
sos = SosBroadcaster(store, notifier, geocoder)
sos_inbox = SosInbox(notifier)

# (user_id, session_id) -> TrackingSession
sessions: dict[tuple[str, str], TrackingSession] = {}
# serialises session lookup, sampling and alert evaluation across request threads
_tracking_lock = threading.Lock()


def _session(user_id: str, session_id: str) -> TrackingSession:
    # caller holds _tracking_lock
    key = (user_id, session_id)
    if key not in sessions:
        sessions[key] = TrackingSession(user_id=user_id, session_id=session_id)
    return sessions[key]


def _as_utc(ts: datetime | None) -> datetime:
    if ts is None:
        return datetime.now(UTC)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def _alert_out(a: LocationAlert) -> AlertOut:
    return AlertOut(
        id=a.id,
        owner_id=a.user_id,
        friend_id=a.friend_id,
        name=a.name,
        lat=a.lat,
        lon=a.lon,
        radius_m=a.radius_m,
        is_active=a.is_active,
        last_triggered_at=a.last_triggered_at,
        created_at=a.created_at,
    )


def _trigger_out(ev: TriggerEvent) -> TriggerOut:
    return TriggerOut(
        alert_id=ev.alert_id,
        alert_name=ev.alert_name,
        friend_id=ev.friend_id,
        owner_id=ev.owner_id,
        distance_m=ev.distance_m,
        triggered_at=ev.triggered_at,
    )


def _place_out(p: Place) -> PlaceOut:
    return PlaceOut(
        id=p.id,
        lat=p.lat,
        lon=p.lon,
        address=p.address,
        arrived_at=p.arrived_at,
        left_at=p.left_at,
        points=p.points,
        ongoing=p.ongoing,
        duration=p.duration,
    )


# -------------------- Endpoints --------------------


@app.get("/health")
def health():
    return {
        "ok": True,
        "version": "0.1.0",
        "mode": "verbose" if VERBOSE else "minimal",
        "sampler": {
            "min_distance_m": cfg.sampler_min_distance_m,
            "min_interval_sec": cfg.sampler_min_interval_sec,
        },
        "geofence": {
            "cooldown_sec": cfg.gf_cooldown_sec,
            "min_radius_m": cfg.gf_min_radius_m,
            "max_radius_m": cfg.gf_max_radius_m,
        },
        "places": {"cluster_distance_m": cfg.places_cluster_distance_m},
    }


@app.post("/positions", response_model=PositionOut, response_model_exclude_none=True)
def report_position(inp: PositionIn):
    """
    Flow:
      1) live location upsert + history hysteresis (sampler)
      2) alerts that watch this user are evaluated against the new position
    """
    try:
        pos = RawPosition(
            lat=inp.lat,
            lon=inp.lon,
            captured_at=_as_utc(inp.timestamp),
            accuracy=inp.accuracy,
            heading=inp.heading,
            speed=inp.speed,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    with _tracking_lock:
        session = _session(inp.user_id, inp.session_id)
        res = sampler.report_position(session, pos)
        events = evaluator.check_alerts(inp.user_id, inp.lat, inp.lon, store.alerts_targeting(inp.user_id))

    return PositionOut(
        user_id=inp.user_id,
        session_id=inp.session_id,
        accepted=res.accepted,
        triggers=[_trigger_out(ev) for ev in events],
        distance_m=res.distance_m if VERBOSE else None,
    )


@app.post("/positions/error")
def report_position_error(inp: PositionErrorIn):
    """
    Records the error on the session. permission_denied ends the session:
    it is stopped and dropped, and the next fix starts a fresh one.
    """
    exc = PositionUnavailable(inp.reason, inp.message)
    with _tracking_lock:
        if inp.reason == "permission_denied":
            session = sessions.pop((inp.user_id, inp.session_id), None)
            if session is None:
                logger.warning("position error for %s/%s: %s", inp.user_id, inp.session_id, exc)
            else:
                session.handle_error(exc)
                sampler.stop(session)
        else:
            _session(inp.user_id, inp.session_id).handle_error(exc)
    return {"user_id": inp.user_id, "session_id": inp.session_id, "location_unavailable": True}


@app.get("/locations/{user_id}", response_model=LiveLocationOut)
def live_location(user_id: str):
    loc = store.get_live_location(user_id)
    if loc is None:
        raise HTTPException(status_code=404, detail=f"no live location for {user_id}")
    return LiveLocationOut(
        user_id=loc.user_id,
        lat=loc.lat,
        lon=loc.lon,
        accuracy=loc.accuracy,
        heading=loc.heading,
        speed=loc.speed,
        updated_at=loc.updated_at,
    )


@app.post("/alerts", response_model=AlertOut, status_code=201)
def create_alert(inp: AlertIn):
    lat, lon = inp.lat, inp.lon
    if lat is None and lon is None:
        # default to the friend's current position
        loc = store.get_live_location(inp.friend_id)
        if loc is not None:
            lat, lon = loc.lat, loc.lon
    try:
        alert = alert_book.create_alert(inp.owner_id, inp.friend_id, inp.name, lat, lon, inp.radius_m)
    except InvalidAlertParameters as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _alert_out(alert)


@app.get("/alerts", response_model=list[AlertOut])
def list_alerts(owner_id: str = Query(...)):
    return [_alert_out(a) for a in alert_book.list_alerts(owner_id)]


@app.patch("/alerts/{alert_id}", response_model=AlertOut)
def toggle_alert(alert_id: str, inp: AlertPatch):
    try:
        return _alert_out(alert_book.toggle_alert(alert_id, inp.is_active))
    except AlertNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.delete("/alerts/{alert_id}", status_code=204)
def delete_alert(alert_id: str):
    try:
        alert_book.delete_alert(alert_id)
    except AlertNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/history/{user_id}", response_model=list[HistoryPointOut])
def get_history(user_id: str, hours: int = Query(cfg.history_window_hours, ge=1)):
    return [
        HistoryPointOut(
            id=p.id,
            lat=p.lat,
            lon=p.lon,
            accuracy=p.accuracy,
            recorded_at=p.recorded_at,
            address=p.address,
        )
        for p in history.recent(user_id, hours)
    ]


@app.post("/history/{user_id}/prune")
def prune_history(user_id: str, days: int = Query(cfg.history_retention_days, ge=1)):
    return {"user_id": user_id, "removed": history.prune(user_id, days)}


@app.get("/places/{user_id}", response_model=list[PlaceOut])
def get_places(user_id: str, hours: int = Query(cfg.places_window_hours, ge=1)):
    if geocoder is not None:
        history.fill_addresses(user_id, geocoder, hours)
    return [_place_out(p) for p in history.places(user_id, hours)]


@app.post("/friends", status_code=201)
def add_friend(inp: FriendIn):
    if inp.user_id == inp.friend_id:
        raise HTTPException(status_code=422, detail="cannot befriend yourself")
    store.add_friend(inp.user_id, inp.friend_id)
    return {"user_id": inp.user_id, "friend_id": inp.friend_id, "status": "accepted"}


@app.post("/sos", response_model=SosOut)
def send_sos(inp: SosIn):
    lat, lon = inp.lat, inp.lon
    if lat is None or lon is None:
        loc = store.get_live_location(inp.user_id)
        if loc is not None:
            lat, lon = loc.lat, loc.lon
    try:
        res = sos.send(inp.user_id, lat, lon)
    except PositionUnavailable as e:
        raise HTTPException(status_code=422, detail=str(e))
    except NoSosRecipients as e:
        raise HTTPException(status_code=409, detail=str(e))

    # in-process delivery to the recipients' inbox
    for msg in res.messages:
        sos_inbox.receive(msg)
    return SosOut(sender_id=res.sender_id, recipients=res.recipients, address=res.address)


@app.get("/notifications", response_model=list[NotificationOut])
def notifications(limit: int = Query(50, ge=1, le=200)):
    return [NotificationOut(kind=k, payload=p) for k, p in notifier.recent(limit)]
