from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock
from typing import Callable

from sqlalchemy.orm import Session

from chatorder.messenger.base import OutboundMessage
from chatorder.models.pending_outbound import PendingOutbound


@dataclass
class PendingMessage:
    id: int
    tenant_id: str
    recipient_id: str
    message: OutboundMessage
    reason: str
    attempts: int = 0
    last_error: str | None = None


class PendingOutbox(ABC):
    """Messages that could not be sent yet; flushed on the sender's next inbound event."""

    @abstractmethod
    def enqueue(
        self,
        *,
        tenant_id: str,
        recipient_id: str,
        message: OutboundMessage,
        reason: str,
        error: str | None = None,
    ) -> PendingMessage:
        ...

    @abstractmethod
    def pending_for(self, tenant_id: str, recipient_id: str) -> list[PendingMessage]:
        """Oldest first."""

    @abstractmethod
    def remove(self, message_id: int) -> None:
        ...

    @abstractmethod
    def record_attempt(self, message_id: int, error: str | None) -> None:
        ...


class SqlPendingOutbox(PendingOutbox):
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def enqueue(
        self,
        *,
        tenant_id: str,
        recipient_id: str,
        message: OutboundMessage,
        reason: str,
        error: str | None = None,
    ) -> PendingMessage:
        with self._session_factory() as db:
            row = PendingOutbound(
                tenant_id=tenant_id,
                recipient_id=recipient_id,
                message_json=message.model_dump_json(),
                reason=reason,
                attempts=0,
                last_error=error,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return _to_pending(row)

    def pending_for(self, tenant_id: str, recipient_id: str) -> list[PendingMessage]:
        with self._session_factory() as db:
            rows = (
                db.query(PendingOutbound)
                .filter(
                    PendingOutbound.tenant_id == tenant_id,
                    PendingOutbound.recipient_id == recipient_id,
                )
                .order_by(PendingOutbound.id.asc())
                .all()
            )
            return [_to_pending(row) for row in rows]

    def remove(self, message_id: int) -> None:
        with self._session_factory() as db:
            db.query(PendingOutbound).filter(PendingOutbound.id == message_id).delete()
            db.commit()

    def record_attempt(self, message_id: int, error: str | None) -> None:
        with self._session_factory() as db:
            row = db.get(PendingOutbound, message_id)
            if row is None:
                return
            row.attempts = (row.attempts or 0) + 1
            row.last_error = error
            db.commit()


def _to_pending(row: PendingOutbound) -> PendingMessage:
    return PendingMessage(
        id=row.id,
        tenant_id=row.tenant_id,
        recipient_id=row.recipient_id,
        message=OutboundMessage.model_validate_json(row.message_json),
        reason=row.reason,
        attempts=row.attempts or 0,
        last_error=row.last_error,
    )


class InMemoryPendingOutbox(PendingOutbox):
    def __init__(self) -> None:
        self._messages: dict[int, PendingMessage] = {}
        self._ids = itertools.count(1)
        self._lock = Lock()

    def enqueue(
        self,
        *,
        tenant_id: str,
        recipient_id: str,
        message: OutboundMessage,
        reason: str,
        error: str | None = None,
    ) -> PendingMessage:
        with self._lock:
            pending = PendingMessage(
                id=next(self._ids),
                tenant_id=tenant_id,
                recipient_id=recipient_id,
                message=message.model_copy(deep=True),
                reason=reason,
                last_error=error,
            )
            self._messages[pending.id] = pending
            return pending

    def pending_for(self, tenant_id: str, recipient_id: str) -> list[PendingMessage]:
        with self._lock:
            return [
                message
                for _, message in sorted(self._messages.items())
                if message.tenant_id == tenant_id and message.recipient_id == recipient_id
            ]

    def remove(self, message_id: int) -> None:
        with self._lock:
            self._messages.pop(message_id, None)

    def record_attempt(self, message_id: int, error: str | None) -> None:
        with self._lock:
            message = self._messages.get(message_id)
            if message is not None:
                message.attempts += 1
                message.last_error = error
