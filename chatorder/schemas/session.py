from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from chatorder.fsm.states import ConversationState


class VariationChoice(BaseModel):
    group_id: str
    group_name: str
    option_id: str
    option_name: str
    price_modifier_cents: int = 0


class AddonChoice(BaseModel):
    addon_id: str
    name: str
    price_cents: int = 0


class CartLine(BaseModel):
    menu_item_id: str
    name: str
    base_price_cents: int
    variations: list[VariationChoice] = Field(default_factory=list)
    addons: list[AddonChoice] = Field(default_factory=list)
    quantity: int = 1

    @property
    def identity(self) -> tuple[str, tuple[tuple[str, str], ...], tuple[str, ...]]:
        variation_signature = tuple(sorted((choice.group_id, choice.option_id) for choice in self.variations))
        addon_signature = tuple(sorted(addon.addon_id for addon in self.addons))
        return self.menu_item_id, variation_signature, addon_signature

    @property
    def unit_price_cents(self) -> int:
        return (
            self.base_price_cents
            + sum(choice.price_modifier_cents for choice in self.variations)
            + sum(addon.price_cents for addon in self.addons)
        )

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity


class PendingSelection(BaseModel):
    menu_item_id: str
    # group_id -> option_id
    variations: dict[str, str] = Field(default_factory=dict)
    skipped_groups: list[str] = Field(default_factory=list)
    addon_ids: list[str] = Field(default_factory=list)


class Dropoff(BaseModel):
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class CheckoutState(BaseModel):
    order_type_id: Optional[str] = None
    collected_fields: dict[str, str] = Field(default_factory=dict)
    current_field: Optional[str] = None
    payment_method_id: Optional[str] = None
    delivery_fee_cents: Optional[int] = None
    quote_ref: Optional[str] = None
    quote_expires_at: Optional[datetime] = None
    quote_failed: bool = False
    delivery_fee_pending: bool = False
    dropoff: Optional[Dropoff] = None
    confirm_version: Optional[int] = None


class ConversationSnapshot(BaseModel):
    tenant_id: str
    sender_id: str
    state: ConversationState = ConversationState.MENU
    cart: list[CartLine] = Field(default_factory=list)
    checkout: CheckoutState = Field(default_factory=CheckoutState)
    pending_selection: Optional[PendingSelection] = None
    browsing_category_id: Optional[str] = None
    last_order_ref: Optional[str] = None
    last_event_id: Optional[str] = None
    last_inbound_at: Optional[datetime] = None
    version: int = 0
    updated_at: datetime

    @classmethod
    def fresh(cls, tenant_id: str, sender_id: str, *, now: datetime, version: int = 0) -> "ConversationSnapshot":
        return cls(tenant_id=tenant_id, sender_id=sender_id, version=version, updated_at=now)
