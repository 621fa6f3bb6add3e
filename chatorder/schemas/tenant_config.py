from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

FieldKind = Literal["text", "textarea", "phone", "email", "number", "select", "location"]
OrderTypeKind = Literal["dine_in", "pickup", "delivery"]


class VariationOptionConfig(BaseModel):
    id: str
    name: str
    price_modifier_cents: int = 0


class VariationGroupConfig(BaseModel):
    id: str
    name: str
    required: bool = True
    options: list[VariationOptionConfig] = Field(default_factory=list)

    def option(self, option_id: str) -> VariationOptionConfig | None:
        return next((option for option in self.options if option.id == option_id), None)


class AddonConfig(BaseModel):
    id: str
    name: str
    price_cents: int = 0


class MenuItemConfig(BaseModel):
    id: str
    category_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    price_cents: int
    variation_groups: list[VariationGroupConfig] = Field(default_factory=list)
    addons: list[AddonConfig] = Field(default_factory=list)

    def group(self, group_id: str) -> VariationGroupConfig | None:
        return next((group for group in self.variation_groups if group.id == group_id), None)

    def addon(self, addon_id: str) -> AddonConfig | None:
        return next((addon for addon in self.addons if addon.id == addon_id), None)


class CategoryConfig(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None


class Catalog(BaseModel):
    categories: list[CategoryConfig] = Field(default_factory=list)
    items: list[MenuItemConfig] = Field(default_factory=list)

    def category(self, category_id: str) -> CategoryConfig | None:
        return next((category for category in self.categories if category.id == category_id), None)

    def item(self, item_id: str) -> MenuItemConfig | None:
        return next((item for item in self.items if item.id == item_id), None)

    def items_in_category(self, category_id: str) -> list[MenuItemConfig]:
        return [item for item in self.items if item.category_id == category_id]


class OrderTypeConfig(BaseModel):
    id: str
    kind: OrderTypeKind
    name: str
    description: Optional[str] = None

    @property
    def requires_delivery(self) -> bool:
        return self.kind == "delivery"


class FieldSpec(BaseModel):
    id: str
    label: str
    required: bool = True
    kind: FieldKind = "text"
    options: list[str] = Field(default_factory=list)
    placeholder: Optional[str] = None


class PaymentMethodConfig(BaseModel):
    id: str
    name: str
    details: Optional[str] = None
    qr_code_url: Optional[str] = None


class TenantProfile(BaseModel):
    id: str
    name: str
    currency: str = "PHP"
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    contact_phone: Optional[str] = None
