from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from chatorder.schemas.session import ConversationSnapshot


@dataclass(frozen=True)
class Notice:
    text: str


@dataclass(frozen=True)
class SendImage:
    url: str


@dataclass(frozen=True)
class PromptState:
    """Render the prompt of the snapshot's current state."""


@dataclass(frozen=True)
class RequestQuote:
    order_type_id: str


@dataclass(frozen=True)
class SubmitOrder:
    idempotency_key: str


Intent = Union[Notice, SendImage, PromptState]
Command = Union[RequestQuote, SubmitOrder]


@dataclass
class Transition:
    snapshot: ConversationSnapshot
    intents: list[Intent] = field(default_factory=list)
    commands: list[Command] = field(default_factory=list)
    understood: bool = True
