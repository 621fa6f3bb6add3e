from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from chatorder.fsm.events import LocationAttachment, QuickReplyOrButton, TextMessage, UserEvent


@dataclass
class ParsedEvent:
    sender_id: str
    recipient_id: str | None
    event_id: str
    timestamp: datetime | None
    event: UserEvent | None = None
    # set when the event must not reach the state machine
    skip_reason: str | None = None


def _timestamp(raw: Any) -> datetime | None:
    if raw is None:
        return None
    try:
        return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _location(attachments: list[Any]) -> LocationAttachment | None:
    for attachment in attachments:
        if not isinstance(attachment, dict) or attachment.get("type") != "location":
            continue
        payload = _as_dict(attachment.get("payload"))
        coordinates = _as_dict(payload.get("coordinates"))
        lat = coordinates.get("lat")
        lng = coordinates.get("long", coordinates.get("lng"))
        if lat is None or lng is None:
            continue
        try:
            return LocationAttachment(latitude=float(lat), longitude=float(lng), title=attachment.get("title"))
        except (TypeError, ValueError):
            continue
    return None


def _normalize(messaging: dict[str, Any]) -> tuple[UserEvent | None, str | None, str | None]:
    """Return (event, provider event id, skip reason)."""
    message = messaging.get("message")
    postback = messaging.get("postback")

    if message is not None:
        if not isinstance(message, dict):
            return None, None, "unsupported_message"
        mid = message.get("mid")
        if message.get("is_echo"):
            return None, mid, "echo"
        quick_reply = _as_dict(message.get("quick_reply"))
        text = message.get("text") if isinstance(message.get("text"), str) else None
        if quick_reply.get("payload"):
            return QuickReplyOrButton(payload=str(quick_reply["payload"]), title=text), mid, None
        location = _location(_as_list(message.get("attachments")))
        if location is not None:
            return location, mid, None
        text = (text or "").strip()
        if text:
            return TextMessage(text=text), mid, None
        return None, mid, "unsupported_message"

    if postback is not None:
        if not isinstance(postback, dict):
            return None, None, "unsupported_postback"
        payload = postback.get("payload")
        if payload:
            return QuickReplyOrButton(payload=str(payload), title=postback.get("title")), postback.get("mid"), None
        return None, postback.get("mid"), "unsupported_postback"

    if "delivery" in messaging:
        return None, None, "delivery_receipt"
    if "read" in messaging:
        return None, None, "read_receipt"
    return None, None, "unsupported_event"


def parse_messenger_webhook(payload: dict[str, Any]) -> list[ParsedEvent]:
    events: list[ParsedEvent] = []
    if payload.get("object") != "page":
        return events

    for entry in _as_list(payload.get("entry")):
        for messaging in _as_list(_as_dict(entry).get("messaging")):
            if not isinstance(messaging, dict):
                continue
            sender_id = str(_as_dict(messaging.get("sender")).get("id") or "")
            recipient_id = _as_dict(messaging.get("recipient")).get("id")
            if not sender_id:
                continue
            timestamp = messaging.get("timestamp")
            event, mid, skip_reason = _normalize(messaging)
            if skip_reason is None and recipient_id is not None and str(recipient_id) == sender_id:
                skip_reason = "echo"
            events.append(
                ParsedEvent(
                    sender_id=sender_id,
                    recipient_id=str(recipient_id) if recipient_id is not None else None,
                    event_id=mid or f"{sender_id}:{timestamp}",
                    timestamp=_timestamp(timestamp),
                    event=event if skip_reason is None else None,
                    skip_reason=skip_reason,
                )
            )
    return events
