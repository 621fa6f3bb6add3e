from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union


@dataclass(frozen=True)
class TextMessage:
    text: str


@dataclass(frozen=True)
class QuickReplyOrButton:
    payload: str
    title: str | None = None


@dataclass(frozen=True)
class LocationAttachment:
    latitude: float
    longitude: float
    title: str | None = None


@dataclass(frozen=True)
class QuoteSucceeded:
    fee_cents: int
    quote_ref: str
    expires_at: datetime | None = None


@dataclass(frozen=True)
class QuoteFailed:
    reason: str


@dataclass(frozen=True)
class OrderSubmitted:
    order_ref: str
    order_number: str


@dataclass(frozen=True)
class OrderSubmissionFailed:
    reason: str


UserEvent = Union[TextMessage, QuickReplyOrButton, LocationAttachment]
CommandResult = Union[QuoteSucceeded, QuoteFailed, OrderSubmitted, OrderSubmissionFailed]
ConversationEvent = Union[UserEvent, CommandResult]


@dataclass(frozen=True)
class InboundEvent:
    """A normalized webhook event for one sender."""

    tenant_id: str
    sender_id: str
    event_id: str
    event: UserEvent
    received_at: datetime | None = None
