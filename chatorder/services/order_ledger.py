from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from chatorder.core.errors import SubmissionError, TransientInfraError
from chatorder.models.order import Order

logger = logging.getLogger(__name__)


@dataclass
class OrderDraft:
    tenant_id: str
    sender_id: str
    idempotency_key: str
    order_type_id: str | None
    payment_method_id: str | None
    customer_name: str | None
    customer_contact: str | None
    customer_data: dict[str, str]
    items: list[dict[str, Any]]
    subtotal_cents: int
    delivery_fee_cents: int
    total_cents: int
    delivery_fee_pending: bool = False
    quote_ref: str | None = None


@dataclass
class OrderRef:
    order_id: str
    order_number: str
    created: bool = True
    extra: dict[str, Any] = field(default_factory=dict)


class OrderLedger(Protocol):
    def submit(self, draft: OrderDraft) -> OrderRef:
        ...

    def attach_delivery(self, order_id: str, delivery_order_ref: str) -> None:
        ...

    def flag_follow_up(self, order_id: str, reason: str) -> None:
        ...


def _order_number(order_id: int) -> str:
    return f"M{order_id:06d}"


class SqlOrderLedger:
    """Writes orders with a unique idempotency key; a repeated key returns the stored order."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def submit(self, draft: OrderDraft) -> OrderRef:
        with self._session_factory() as db:
            existing = db.query(Order).filter(Order.idempotency_key == draft.idempotency_key).first()
            if existing is not None:
                logger.info("order already submitted for idempotency key order_id=%s", existing.id)
                return OrderRef(order_id=str(existing.id), order_number=existing.order_number, created=False)

            order = Order(
                tenant_id=draft.tenant_id,
                sender_id=draft.sender_id,
                idempotency_key=draft.idempotency_key,
                order_number="pending",
                order_type_id=draft.order_type_id,
                payment_method_id=draft.payment_method_id,
                customer_name=draft.customer_name,
                customer_contact=draft.customer_contact,
                customer_data_json=json.dumps(draft.customer_data, ensure_ascii=False),
                items_json=json.dumps(draft.items, ensure_ascii=False),
                subtotal_cents=draft.subtotal_cents,
                delivery_fee_cents=draft.delivery_fee_cents,
                total_cents=draft.total_cents,
                delivery_fee_pending=draft.delivery_fee_pending,
                needs_follow_up=draft.delivery_fee_pending,
                quote_ref=draft.quote_ref,
            )
            try:
                db.add(order)
                db.flush()
                order.order_number = _order_number(order.id)
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = db.query(Order).filter(Order.idempotency_key == draft.idempotency_key).first()
                if existing is None:
                    raise SubmissionError("order insert conflicted without a stored order")
                return OrderRef(order_id=str(existing.id), order_number=existing.order_number, created=False)
            except SQLAlchemyError as exc:
                db.rollback()
                raise TransientInfraError(f"order ledger write failed: {exc}") from exc

            logger.info("order created order_id=%s total_cents=%s", order.id, order.total_cents)
            return OrderRef(order_id=str(order.id), order_number=order.order_number, created=True)

    def attach_delivery(self, order_id: str, delivery_order_ref: str) -> None:
        with self._session_factory() as db:
            order = db.get(Order, int(order_id))
            if order is None:
                return
            order.delivery_order_ref = delivery_order_ref
            db.commit()

    def flag_follow_up(self, order_id: str, reason: str) -> None:
        with self._session_factory() as db:
            order = db.get(Order, int(order_id))
            if order is None:
                return
            order.needs_follow_up = True
            db.commit()
        logger.warning("order flagged for manual follow-up order_id=%s reason=%s", order_id, reason)


class InMemoryOrderLedger:
    def __init__(self) -> None:
        self.orders: dict[str, dict[str, Any]] = {}
        self._by_key: dict[str, str] = {}
        self._lock = Lock()

    def submit(self, draft: OrderDraft) -> OrderRef:
        with self._lock:
            order_id = self._by_key.get(draft.idempotency_key)
            if order_id is not None:
                return OrderRef(order_id=order_id, order_number=self.orders[order_id]["order_number"], created=False)
            order_id = str(len(self.orders) + 1)
            self.orders[order_id] = {
                "draft": draft,
                "order_number": _order_number(int(order_id)),
                "delivery_order_ref": None,
                "needs_follow_up": draft.delivery_fee_pending,
            }
            self._by_key[draft.idempotency_key] = order_id
            return OrderRef(order_id=order_id, order_number=self.orders[order_id]["order_number"], created=True)

    def attach_delivery(self, order_id: str, delivery_order_ref: str) -> None:
        with self._lock:
            if order_id in self.orders:
                self.orders[order_id]["delivery_order_ref"] = delivery_order_ref

    def flag_follow_up(self, order_id: str, reason: str) -> None:
        with self._lock:
            if order_id in self.orders:
                self.orders[order_id]["needs_follow_up"] = True
                self.orders[order_id]["follow_up_reason"] = reason
