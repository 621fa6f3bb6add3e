from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal, Optional, Protocol

from pydantic import BaseModel, Field

MAX_TEXT_LENGTH = 2000
MAX_QUICK_REPLIES = 13
MAX_QUICK_REPLY_TITLE = 20
MAX_BUTTONS = 3
MAX_BUTTON_TITLE = 20
MAX_BUTTON_TEMPLATE_TEXT = 640
MAX_GENERIC_ELEMENTS = 10
MAX_ELEMENT_TITLE = 80
MAX_ELEMENT_SUBTITLE = 80

SendStatus = Literal["ok", "retryable_error", "rate_limited", "window_closed", "fatal_error"]


class QuickReply(BaseModel):
    title: str
    payload: str


class Button(BaseModel):
    title: str
    payload: Optional[str] = None
    url: Optional[str] = None

    def to_graph(self) -> dict[str, Any]:
        if self.url:
            return {"type": "web_url", "url": self.url, "title": self.title}
        return {"type": "postback", "title": self.title, "payload": self.payload or ""}


class GenericElement(BaseModel):
    title: str
    subtitle: Optional[str] = None
    image_url: Optional[str] = None
    buttons: list[Button] = Field(default_factory=list)

    def to_graph(self) -> dict[str, Any]:
        element: dict[str, Any] = {"title": self.title}
        if self.subtitle:
            element["subtitle"] = self.subtitle
        if self.image_url:
            element["image_url"] = self.image_url
        if self.buttons:
            element["buttons"] = [button.to_graph() for button in self.buttons]
        return element


class OutboundMessage(BaseModel):
    kind: Literal["text", "buttons", "generic", "image"] = "text"
    text: Optional[str] = None
    quick_replies: list[QuickReply] = Field(default_factory=list)
    buttons: list[Button] = Field(default_factory=list)
    elements: list[GenericElement] = Field(default_factory=list)
    image_url: Optional[str] = None
    requires_reactive_window: bool = True

    def to_graph_message(self) -> dict[str, Any]:
        if self.kind == "buttons":
            message: dict[str, Any] = {
                "attachment": {
                    "type": "template",
                    "payload": {
                        "template_type": "button",
                        "text": self.text or "",
                        "buttons": [button.to_graph() for button in self.buttons],
                    },
                }
            }
        elif self.kind == "generic":
            message = {
                "attachment": {
                    "type": "template",
                    "payload": {
                        "template_type": "generic",
                        "elements": [element.to_graph() for element in self.elements],
                    },
                }
            }
        elif self.kind == "image":
            message = {"attachment": {"type": "image", "payload": {"url": self.image_url, "is_reusable": True}}}
        else:
            message = {"text": self.text or ""}

        if self.quick_replies:
            message["quick_replies"] = [
                {"content_type": "text", "title": reply.title, "payload": reply.payload}
                for reply in self.quick_replies
            ]
        return message

    def preview(self) -> str:
        if self.kind == "generic":
            return ", ".join(element.title for element in self.elements)
        if self.kind == "image":
            return self.image_url or ""
        return self.text or ""


@dataclass
class SendResult:
    status: SendStatus
    provider_message_id: str | None = None
    error: str | None = None
    status_code: int | None = None
    retry_after_seconds: float | None = None
    response_payload: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class MessengerProvider(Protocol):
    name: str

    def send(self, *, tenant_id: str, page_access_token: str | None, recipient_id: str, message: OutboundMessage) -> SendResult:
        ...


SENSITIVE_KEYS = {"access_token", "page_access_token", "verify_token", "app_secret", "authorization", "token"}


def _mask_value(value: Any) -> Any:
    if value is None:
        return None
    text = str(value)
    if len(text) <= 4:
        return "****"
    return f"****{text[-4:]}"


def sanitize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            return {key: _sanitize_value(key, inner) for key, inner in value.items()}
        if isinstance(value, list):
            return [_sanitize(item) for item in value]
        return value

    def _sanitize_value(key: str, value: Any) -> Any:
        if key.lower() in SENSITIVE_KEYS:
            return _mask_value(value)
        return _sanitize(value)

    return _sanitize(payload)


def safe_json(payload: dict[str, Any]) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return "{}"
