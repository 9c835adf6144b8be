from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ..utils.geo import format_coords
from ..utils.geocode import ReverseGeocoder
from .errors import NoSosRecipients, PositionUnavailable
from .models import Message, utcnow
from .store import LocationStore, Notifier

logger = logging.getLogger(__name__)

SOS_MARKER = "🚨 SOS EMERGENCY!"


def maps_url(lat: float, lon: float) -> str:
    return f"https://maps.google.com/maps?q={lat},{lon}"


def compose_sos_message(lat: float, lon: float, address: str) -> str:
    return (
        f"{SOS_MARKER} 🚨\n\nI need help!\n\n"
        f"📍 Location: {address}\n\n"
        f"🗺️ Google Maps: {maps_url(lat, lon)}"
    )


def is_sos_message(content: str | None) -> bool:
    return bool(content) and SOS_MARKER in content


@dataclass(frozen=True)
class SosResult:
    sender_id: str
    recipients: list[str]
    address: str
    messages: list[Message]


class SosBroadcaster:
    """Fans an emergency message with the sender's position out to every accepted friend."""

    def __init__(self, store: LocationStore, notifier: Notifier, geocoder: ReverseGeocoder | None = None):
        self.store = store
        self.notifier = notifier
        self.geocoder = geocoder

    def send(self, user_id: str, lat: float | None, lon: float | None, now: datetime | None = None) -> SosResult:
        if lat is None or lon is None:
            raise PositionUnavailable("unavailable", "no position for SOS")
        now = utcnow() if now is None else now

        friends = self.store.accepted_friends(user_id)
        if not friends:
            raise NoSosRecipients(f"{user_id} has no accepted friends")

        address = format_coords(lat, lon, 6)
        if self.geocoder is not None:
            address = self.geocoder.reverse(lat, lon) or address

        content = compose_sos_message(lat, lon, address)
        sent: list[Message] = []
        for friend_id in friends:
            msg = Message(
                sender_id=user_id,
                receiver_id=friend_id,
                content=content,
                lat=lat,
                lon=lon,
                address=address,
                created_at=now,
            )
            self.store.insert_message(msg)
            sent.append(msg)

        logger.info("SOS from %s sent to %d friends", user_id, len(sent))
        self.notifier.notify(
            "sos",
            {"sender_id": user_id, "recipients": friends, "lat": lat, "lon": lon, "address": address},
        )
        return SosResult(sender_id=user_id, recipients=friends, address=address, messages=sent)


class SosInbox:
    """Receiving side: raises one `sos_received` notification per SOS message."""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier
        self._seen: set[str] = set()

    def receive(self, msg: Message) -> bool:
        if not is_sos_message(msg.content) or msg.id in self._seen:
            return False
        self._seen.add(msg.id)
        self.notifier.notify(
            "sos_received",
            {
                "message_id": msg.id,
                "sender_id": msg.sender_id,
                "receiver_id": msg.receiver_id,
                "lat": msg.lat,
                "lon": msg.lon,
                "address": msg.address,
            },
        )
        return True
