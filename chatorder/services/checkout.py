from __future__ import annotations

import hashlib
import logging
import re
from typing import Sequence

from chatorder.core.errors import (
    ChatOrderError,
    ConfigurationError,
    ExternalProviderError,
    FieldValidationError,
    SubmissionError,
)
from chatorder.fsm.cart import cart_total_cents, line_id
from chatorder.schemas.session import CheckoutState, ConversationSnapshot
from chatorder.schemas.tenant_config import FieldSpec
from chatorder.services.delivery import Contact, DeliveryProviderRegistry
from chatorder.services.order_ledger import OrderDraft, OrderLedger, OrderRef
from chatorder.services.tenant_config import CachedTenantConfig

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 500
_PHONE_STRIP = re.compile(r"[\s\-().]")
_PHONE_PATTERN = re.compile(r"^\+?\d{7,15}$")
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_NUMBER_PATTERN = re.compile(r"^-?\d+(?:[.,]\d+)?$")
_NAME_KEYS = ("name", "full_name", "customer_name")
_CONTACT_KEYS = ("phone", "mobile", "contact", "contact_number", "phone_number")


def required_fields(config: CachedTenantConfig, order_type_id: str) -> list[FieldSpec]:
    return config.required_fields(order_type_id)


def next_unanswered_field(checkout: CheckoutState, fields: Sequence[FieldSpec]) -> FieldSpec | None:
    for field in fields:
        if field.id not in checkout.collected_fields:
            return field
    return None


def missing_required_fields(checkout: CheckoutState, fields: Sequence[FieldSpec]) -> list[FieldSpec]:
    return [
        field
        for field in fields
        if field.required and not (checkout.collected_fields.get(field.id) or "").strip()
    ]


def validate(field: FieldSpec, raw_answer: str | None) -> str:
    """Return the normalized answer or raise FieldValidationError."""
    answer = (raw_answer or "").strip()
    if not answer:
        if field.required:
            raise FieldValidationError(field.id, f"{field.label} is required.")
        return ""

    if field.kind in ("text", "textarea", "location"):
        if len(answer) > MAX_TEXT_LENGTH:
            raise FieldValidationError(field.id, f"{field.label} is too long (max {MAX_TEXT_LENGTH} characters).")
        return answer

    if field.kind == "phone":
        compact = _PHONE_STRIP.sub("", answer)
        if not _PHONE_PATTERN.match(compact):
            raise FieldValidationError(field.id, f"Please enter a valid phone number for {field.label}.")
        return compact

    if field.kind == "email":
        if not _EMAIL_PATTERN.match(answer):
            raise FieldValidationError(field.id, f"Please enter a valid email address for {field.label}.")
        return answer.lower()

    if field.kind == "number":
        if not _NUMBER_PATTERN.match(answer):
            raise FieldValidationError(field.id, f"{field.label} must be a number.")
        return answer.replace(",", ".")

    if field.kind == "select":
        for option in field.options:
            if option.lower() == answer.lower():
                return option
        raise FieldValidationError(
            field.id, f"Please choose one of: {', '.join(field.options)}." if field.options else f"Invalid {field.label}."
        )

    raise FieldValidationError(field.id, f"Unsupported field type {field.kind}.")


def idempotency_key(tenant_id: str, sender_id: str, version: int) -> str:
    raw = f"{tenant_id}:{sender_id}:{version}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def extract_customer(fields: Sequence[FieldSpec], collected: dict[str, str]) -> tuple[str | None, str | None]:
    name = None
    contact = None
    for field in fields:
        value = (collected.get(field.id) or "").strip()
        if not value:
            continue
        key = field.id.lower()
        if name is None and key in _NAME_KEYS:
            name = value
        if contact is None and (field.kind == "phone" or key in _CONTACT_KEYS):
            contact = value
    return name, contact


def order_items(snapshot: ConversationSnapshot) -> list[dict]:
    return [
        {
            "line_id": line_id(line),
            "menu_item_id": line.menu_item_id,
            "name": line.name,
            "quantity": line.quantity,
            "base_price_cents": line.base_price_cents,
            "unit_price_cents": line.unit_price_cents,
            "subtotal_cents": line.subtotal_cents,
            "variations": {choice.group_name: choice.option_name for choice in line.variations},
            "variation_ids": {choice.group_id: choice.option_id for choice in line.variations},
            "addons": [{"id": addon.addon_id, "name": addon.name, "price_cents": addon.price_cents} for addon in line.addons],
        }
        for line in snapshot.cart
    ]


class CheckoutOrchestrator:
    def __init__(self, ledger: OrderLedger, delivery_providers: DeliveryProviderRegistry | None = None) -> None:
        self.ledger = ledger
        self.delivery_providers = delivery_providers

    def submit_order(
        self,
        snapshot: ConversationSnapshot,
        config: CachedTenantConfig,
        *,
        idempotency_key: str,
    ) -> OrderRef:
        checkout = snapshot.checkout
        if not snapshot.cart:
            raise SubmissionError("cart is empty")
        order_type = config.order_type(checkout.order_type_id)
        if order_type is None:
            raise SubmissionError("order type is no longer available")
        fields = config.required_fields(order_type.id)
        missing = missing_required_fields(checkout, fields)
        if missing:
            raise SubmissionError(f"missing required fields: {[field.id for field in missing]}")

        subtotal = cart_total_cents(snapshot.cart)
        delivery_fee = checkout.delivery_fee_cents or 0
        customer_name, customer_contact = extract_customer(fields, checkout.collected_fields)
        draft = OrderDraft(
            tenant_id=snapshot.tenant_id,
            sender_id=snapshot.sender_id,
            idempotency_key=idempotency_key,
            order_type_id=order_type.id,
            payment_method_id=checkout.payment_method_id,
            customer_name=customer_name,
            customer_contact=customer_contact,
            customer_data=dict(checkout.collected_fields),
            items=order_items(snapshot),
            subtotal_cents=subtotal,
            delivery_fee_cents=delivery_fee,
            total_cents=subtotal + delivery_fee,
            delivery_fee_pending=checkout.delivery_fee_pending,
            quote_ref=checkout.quote_ref,
        )
        try:
            order_ref = self.ledger.submit(draft)
        except SubmissionError:
            raise
        except ChatOrderError as exc:
            raise SubmissionError(str(exc), retryable=True) from exc

        if order_ref.created and order_type.requires_delivery and checkout.quote_ref:
            self._book_delivery(snapshot, config, order_ref, customer_name, customer_contact)
        return order_ref

    def _book_delivery(
        self,
        snapshot: ConversationSnapshot,
        config: CachedTenantConfig,
        order_ref: OrderRef,
        customer_name: str | None,
        customer_contact: str | None,
    ) -> None:
        provider = self.delivery_providers.for_tenant(snapshot.tenant_id) if self.delivery_providers else None
        if provider is None:
            self.ledger.flag_follow_up(order_ref.order_id, "delivery provider not configured")
            return
        try:
            profile = config.profile()
            delivery = provider.create_delivery_order(
                tenant_id=snapshot.tenant_id,
                quote_ref=snapshot.checkout.quote_ref or "",
                sender=Contact(name=profile.name, phone=profile.contact_phone or ""),
                recipient=Contact(name=customer_name or "Customer", phone=customer_contact or ""),
                remarks=f"Order {order_ref.order_number}",
                metadata={"order_id": order_ref.order_id},
            )
        except (ExternalProviderError, ConfigurationError) as exc:
            logger.warning("delivery booking failed order_id=%s error=%s", order_ref.order_id, exc)
            self.ledger.flag_follow_up(order_ref.order_id, f"delivery booking failed: {exc}")
            return
        self.ledger.attach_delivery(order_ref.order_id, delivery.order_id)
        order_ref.extra["delivery_order_id"] = delivery.order_id
        if delivery.share_link:
            order_ref.extra["delivery_share_link"] = delivery.share_link
