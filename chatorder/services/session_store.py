from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatorder.core.config import SESSION_TTL_HOURS
from chatorder.fsm.states import ConversationState
from chatorder.models.conversation_session import ConversationSession
from chatorder.models.processed_event import ProcessedEvent
from chatorder.schemas.session import CartLine, CheckoutState, ConversationSnapshot, PendingSelection

logger = logging.getLogger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_expired(snapshot: ConversationSnapshot, now: datetime, ttl: timedelta) -> bool:
    updated_at = as_utc(snapshot.updated_at)
    return updated_at is not None and as_utc(now) - updated_at > ttl


class SessionStore(ABC):
    """Owns persisted conversation sessions; callers only ever get copies."""

    def __init__(self, *, ttl: timedelta | None = None) -> None:
        self.ttl = ttl or timedelta(hours=SESSION_TTL_HOURS)

    def load(self, tenant_id: str, sender_id: str, *, now: datetime) -> ConversationSnapshot:
        """Return the sender's session, or a fresh ``menu`` session if absent or expired.

        An expired session keeps its stored version so the next swap targets the
        existing record.
        """
        snapshot = self._read(tenant_id, sender_id)
        if snapshot is None:
            return ConversationSnapshot.fresh(tenant_id, sender_id, now=now)
        if is_expired(snapshot, now, self.ttl):
            logger.info(
                "session expired, starting over",
                extra={"tenant_id": tenant_id, "sender_id": sender_id, "state": snapshot.state.value},
            )
            return ConversationSnapshot.fresh(tenant_id, sender_id, now=now, version=snapshot.version)
        return snapshot

    @abstractmethod
    def _read(self, tenant_id: str, sender_id: str) -> ConversationSnapshot | None:
        """Return the stored session as-is, or None."""

    @abstractmethod
    def compare_and_swap(
        self,
        snapshot: ConversationSnapshot,
        expected_version: int,
        *,
        processed_event_id: str | None = None,
    ) -> bool:
        """Persist ``snapshot`` as version ``expected_version + 1``.

        Returns False when the stored version moved on or the event id was already
        recorded. Nothing is written in that case.
        """

    @abstractmethod
    def is_processed(self, tenant_id: str, sender_id: str, event_id: str) -> bool:
        """Whether the event id was already applied for this sender."""


def _dump_cart(cart: list[CartLine]) -> str:
    return json.dumps([line.model_dump(mode="json") for line in cart], ensure_ascii=False)


def _row_values(snapshot: ConversationSnapshot) -> dict:
    return {
        "state": snapshot.state.value,
        "cart_json": _dump_cart(snapshot.cart),
        "checkout_json": snapshot.checkout.model_dump_json(),
        "pending_selection_json": (
            snapshot.pending_selection.model_dump_json() if snapshot.pending_selection is not None else None
        ),
        "browsing_category_id": snapshot.browsing_category_id,
        "last_order_ref": snapshot.last_order_ref,
        "last_event_id": snapshot.last_event_id,
        "last_inbound_at": snapshot.last_inbound_at,
        "updated_at": snapshot.updated_at,
    }


def _row_to_snapshot(row: ConversationSession) -> ConversationSnapshot:
    return ConversationSnapshot(
        tenant_id=row.tenant_id,
        sender_id=row.sender_id,
        state=ConversationState(row.state),
        cart=[CartLine.model_validate(item) for item in json.loads(row.cart_json or "[]")],
        checkout=CheckoutState.model_validate_json(row.checkout_json or "{}"),
        pending_selection=(
            PendingSelection.model_validate_json(row.pending_selection_json) if row.pending_selection_json else None
        ),
        browsing_category_id=row.browsing_category_id,
        last_order_ref=row.last_order_ref,
        last_event_id=row.last_event_id,
        last_inbound_at=as_utc(row.last_inbound_at),
        version=row.version,
        updated_at=as_utc(row.updated_at),
    )


class SqlSessionStore(SessionStore):
    def __init__(self, session_factory: Callable[[], Session], *, ttl: timedelta | None = None) -> None:
        super().__init__(ttl=ttl)
        self._session_factory = session_factory

    def _read(self, tenant_id: str, sender_id: str) -> ConversationSnapshot | None:
        with self._session_factory() as db:
            row = (
                db.query(ConversationSession)
                .filter(
                    ConversationSession.tenant_id == tenant_id,
                    ConversationSession.sender_id == sender_id,
                )
                .first()
            )
            if row is None:
                return None
            return _row_to_snapshot(row)

    def compare_and_swap(
        self,
        snapshot: ConversationSnapshot,
        expected_version: int,
        *,
        processed_event_id: str | None = None,
    ) -> bool:
        values = _row_values(snapshot)
        with self._session_factory() as db:
            try:
                if expected_version == 0:
                    db.add(
                        ConversationSession(
                            tenant_id=snapshot.tenant_id,
                            sender_id=snapshot.sender_id,
                            version=1,
                            **values,
                        )
                    )
                    db.flush()
                else:
                    result = db.execute(
                        update(ConversationSession)
                        .where(
                            ConversationSession.tenant_id == snapshot.tenant_id,
                            ConversationSession.sender_id == snapshot.sender_id,
                            ConversationSession.version == expected_version,
                        )
                        .values(version=expected_version + 1, **values)
                    )
                    if result.rowcount != 1:
                        db.rollback()
                        return False
                if processed_event_id:
                    db.add(
                        ProcessedEvent(
                            tenant_id=snapshot.tenant_id,
                            sender_id=snapshot.sender_id,
                            event_id=processed_event_id,
                        )
                    )
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
        return True

    def is_processed(self, tenant_id: str, sender_id: str, event_id: str) -> bool:
        with self._session_factory() as db:
            existing = (
                db.query(ProcessedEvent.id)
                .filter(
                    ProcessedEvent.tenant_id == tenant_id,
                    ProcessedEvent.sender_id == sender_id,
                    ProcessedEvent.event_id == event_id,
                )
                .first()
            )
            return existing is not None


class InMemorySessionStore(SessionStore):
    def __init__(self, *, ttl: timedelta | None = None) -> None:
        super().__init__(ttl=ttl)
        self._sessions: dict[tuple[str, str], ConversationSnapshot] = {}
        self._processed: set[tuple[str, str, str]] = set()
        self._lock = Lock()

    def _read(self, tenant_id: str, sender_id: str) -> ConversationSnapshot | None:
        with self._lock:
            stored = self._sessions.get((tenant_id, sender_id))
            return stored.model_copy(deep=True) if stored is not None else None

    def compare_and_swap(
        self,
        snapshot: ConversationSnapshot,
        expected_version: int,
        *,
        processed_event_id: str | None = None,
    ) -> bool:
        key = (snapshot.tenant_id, snapshot.sender_id)
        with self._lock:
            stored = self._sessions.get(key)
            current_version = stored.version if stored is not None else 0
            if current_version != expected_version:
                return False
            if processed_event_id and (*key, processed_event_id) in self._processed:
                return False
            self._sessions[key] = snapshot.model_copy(update={"version": expected_version + 1}, deep=True)
            if processed_event_id:
                self._processed.add((*key, processed_event_id))
        return True

    def is_processed(self, tenant_id: str, sender_id: str, event_id: str) -> bool:
        with self._lock:
            return (tenant_id, sender_id, event_id) in self._processed
