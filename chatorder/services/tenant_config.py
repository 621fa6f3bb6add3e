from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy.orm import Session

from chatorder.core.errors import ConfigurationError
from chatorder.models.addon import Addon
from chatorder.models.checkout_field import CheckoutField
from chatorder.models.menu_category import MenuCategory
from chatorder.models.menu_item import MenuItem
from chatorder.models.order_type import OrderType
from chatorder.models.payment_method import PaymentMethod
from chatorder.models.tenant import Tenant
from chatorder.models.variation import VariationGroup, VariationOption
from chatorder.schemas.tenant_config import (
    AddonConfig,
    Catalog,
    CategoryConfig,
    FieldSpec,
    MenuItemConfig,
    OrderTypeConfig,
    PaymentMethodConfig,
    TenantProfile,
    VariationGroupConfig,
    VariationOptionConfig,
)

logger = logging.getLogger(__name__)

LEGACY_VARIATION_GROUP_ID = "default"
_FIELD_KIND_ALIASES = {"tel": "phone", "numeric": "number", "single_choice": "select", "address": "location"}


class TenantConfigProvider(ABC):
    @abstractmethod
    def get_profile(self, tenant_id: str) -> TenantProfile | None:
        """Tenant display data and pickup location."""

    @abstractmethod
    def get_catalog(self, tenant_id: str) -> Catalog:
        """Active categories and items, each item with its variation groups and add-ons."""

    @abstractmethod
    def get_order_types(self, tenant_id: str) -> list[OrderTypeConfig]:
        """Enabled order types in display order."""

    @abstractmethod
    def get_required_fields(self, tenant_id: str, order_type_id: str) -> list[FieldSpec]:
        """Customer form for an order type, in collection order."""

    @abstractmethod
    def get_payment_methods(self, tenant_id: str, order_type_id: str) -> list[PaymentMethodConfig]:
        """Active payment methods offered for an order type."""


def normalize_field_kind(raw: str | None) -> str:
    kind = (raw or "text").strip().lower()
    return _FIELD_KIND_ALIASES.get(kind, kind)


def _to_cents(value: Any) -> int:
    return int((Decimal(str(value)) * 100).to_integral_value())


def normalize_item(raw: dict[str, Any]) -> MenuItemConfig:
    """Build a catalog item, folding a flat legacy ``variations`` list into one group."""
    data = dict(raw)
    groups = list(data.pop("variation_groups", None) or [])
    legacy = data.pop("variations", None) or []
    if legacy and not groups:
        groups = [
            {
                "id": LEGACY_VARIATION_GROUP_ID,
                "name": data.pop("variation_label", None) or "Variation",
                "required": False,
                "options": [
                    {
                        "id": str(option["id"]),
                        "name": option["name"],
                        "price_modifier_cents": option.get("price_modifier_cents")
                        if option.get("price_modifier_cents") is not None
                        else _to_cents(option.get("price_modifier") or 0),
                    }
                    for option in legacy
                ],
            }
        ]
    if "price_cents" not in data and "price" in data:
        data["price_cents"] = _to_cents(data.pop("price"))
    addons = []
    for addon in data.pop("addons", None) or []:
        addon = dict(addon)
        if "price_cents" not in addon:
            addon["price_cents"] = _to_cents(addon.pop("price", 0) or 0)
        addons.append(addon)
    return MenuItemConfig(**data, variation_groups=groups, addons=addons)


class StaticTenantConfigProvider(TenantConfigProvider):
    """Configuration held in plain dicts, keyed by tenant id (simulator and tests)."""

    def __init__(self, tenants: dict[str, dict[str, Any]]) -> None:
        self._tenants = tenants

    def _tenant(self, tenant_id: str) -> dict[str, Any]:
        try:
            return self._tenants[tenant_id]
        except KeyError as exc:
            raise ConfigurationError(f"unknown tenant {tenant_id}") from exc

    def get_profile(self, tenant_id: str) -> TenantProfile | None:
        data = self._tenants.get(tenant_id)
        if data is None:
            return None
        return TenantProfile(id=tenant_id, **data.get("profile", {"name": tenant_id}))

    def get_catalog(self, tenant_id: str) -> Catalog:
        data = self._tenant(tenant_id)
        return Catalog(
            categories=[CategoryConfig(**category) for category in data.get("categories", [])],
            items=[normalize_item(item) for item in data.get("items", [])],
        )

    def get_order_types(self, tenant_id: str) -> list[OrderTypeConfig]:
        return [OrderTypeConfig(**order_type) for order_type in self._tenant(tenant_id).get("order_types", [])]

    def get_required_fields(self, tenant_id: str, order_type_id: str) -> list[FieldSpec]:
        fields = (self._tenant(tenant_id).get("fields") or {}).get(order_type_id, [])
        return [FieldSpec(**{**field, "kind": normalize_field_kind(field.get("kind"))}) for field in fields]

    def get_payment_methods(self, tenant_id: str, order_type_id: str) -> list[PaymentMethodConfig]:
        methods = (self._tenant(tenant_id).get("payment_methods") or {}).get(order_type_id, [])
        return [PaymentMethodConfig(**method) for method in methods]


class SqlTenantConfigProvider(TenantConfigProvider):
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get_profile(self, tenant_id: str) -> TenantProfile | None:
        with self._session_factory() as db:
            tenant = db.query(Tenant).filter(Tenant.id == tenant_id, Tenant.active.is_(True)).first()
            if tenant is None:
                return None
            return TenantProfile(
                id=tenant.id,
                name=tenant.name,
                currency=tenant.currency or "PHP",
                address=tenant.address,
                latitude=tenant.latitude,
                longitude=tenant.longitude,
                contact_phone=tenant.contact_phone,
            )

    def get_catalog(self, tenant_id: str) -> Catalog:
        with self._session_factory() as db:
            categories = (
                db.query(MenuCategory)
                .filter(MenuCategory.tenant_id == tenant_id, MenuCategory.active.is_(True))
                .order_by(MenuCategory.sort_order, MenuCategory.id)
                .all()
            )
            items = (
                db.query(MenuItem)
                .filter(MenuItem.tenant_id == tenant_id, MenuItem.active.is_(True))
                .order_by(MenuItem.sort_order, MenuItem.id)
                .all()
            )
            item_ids = [item.id for item in items]
            groups = (
                db.query(VariationGroup)
                .filter(VariationGroup.menu_item_id.in_(item_ids))
                .order_by(VariationGroup.sort_order, VariationGroup.id)
                .all()
                if item_ids
                else []
            )
            group_ids = [group.id for group in groups]
            options = (
                db.query(VariationOption)
                .filter(VariationOption.group_id.in_(group_ids), VariationOption.active.is_(True))
                .order_by(VariationOption.sort_order, VariationOption.id)
                .all()
                if group_ids
                else []
            )
            addons = (
                db.query(Addon)
                .filter(Addon.menu_item_id.in_(item_ids), Addon.active.is_(True))
                .order_by(Addon.sort_order, Addon.id)
                .all()
                if item_ids
                else []
            )

            options_by_group: dict[int, list[VariationOptionConfig]] = {}
            for option in options:
                options_by_group.setdefault(option.group_id, []).append(
                    VariationOptionConfig(
                        id=str(option.id),
                        name=option.name,
                        price_modifier_cents=option.price_modifier_cents or 0,
                    )
                )
            groups_by_item: dict[int, list[VariationGroupConfig]] = {}
            for group in groups:
                group_options = options_by_group.get(group.id, [])
                if not group_options:
                    # a group with nothing to choose would block the item
                    logger.warning("variation group without options skipped group_id=%s", group.id)
                    continue
                groups_by_item.setdefault(group.menu_item_id, []).append(
                    VariationGroupConfig(id=str(group.id), name=group.name, options=group_options)
                )
            addons_by_item: dict[int, list[AddonConfig]] = {}
            for addon in addons:
                addons_by_item.setdefault(addon.menu_item_id, []).append(
                    AddonConfig(id=str(addon.id), name=addon.name, price_cents=addon.price_cents or 0)
                )

            return Catalog(
                categories=[
                    CategoryConfig(
                        id=str(category.id),
                        name=category.name,
                        description=category.description,
                        image_url=category.image_url,
                    )
                    for category in categories
                ],
                items=[
                    MenuItemConfig(
                        id=str(item.id),
                        category_id=str(item.category_id) if item.category_id is not None else None,
                        name=item.name,
                        description=item.description,
                        image_url=item.image_url,
                        price_cents=item.price_cents,
                        variation_groups=groups_by_item.get(item.id, []),
                        addons=addons_by_item.get(item.id, []),
                    )
                    for item in items
                ],
            )

    def get_order_types(self, tenant_id: str) -> list[OrderTypeConfig]:
        with self._session_factory() as db:
            rows = (
                db.query(OrderType)
                .filter(OrderType.tenant_id == tenant_id, OrderType.active.is_(True))
                .order_by(OrderType.sort_order, OrderType.id)
                .all()
            )
            return [
                OrderTypeConfig(id=str(row.id), kind=row.kind, name=row.name, description=row.description)
                for row in rows
            ]

    def get_required_fields(self, tenant_id: str, order_type_id: str) -> list[FieldSpec]:
        with self._session_factory() as db:
            rows = (
                db.query(CheckoutField)
                .filter(CheckoutField.tenant_id == tenant_id, CheckoutField.order_type_id == int(order_type_id))
                .order_by(CheckoutField.sort_order, CheckoutField.id)
                .all()
            )
            fields: list[FieldSpec] = []
            for row in rows:
                try:
                    options = json.loads(row.options_json) if row.options_json else []
                except json.JSONDecodeError:
                    logger.warning("invalid options_json on checkout field id=%s", row.id)
                    options = []
                fields.append(
                    FieldSpec(
                        id=row.field_key,
                        label=row.label,
                        required=bool(row.is_required),
                        kind=normalize_field_kind(row.field_type),
                        options=[str(option) for option in options],
                        placeholder=row.placeholder,
                    )
                )
            return fields

    def get_payment_methods(self, tenant_id: str, order_type_id: str) -> list[PaymentMethodConfig]:
        with self._session_factory() as db:
            rows = (
                db.query(PaymentMethod)
                .filter(
                    PaymentMethod.tenant_id == tenant_id,
                    PaymentMethod.active.is_(True),
                    (PaymentMethod.order_type_id == int(order_type_id)) | (PaymentMethod.order_type_id.is_(None)),
                )
                .order_by(PaymentMethod.sort_order, PaymentMethod.id)
                .all()
            )
            return [
                PaymentMethodConfig(id=str(row.id), name=row.name, details=row.details, qr_code_url=row.qr_code_url)
                for row in rows
            ]


class CachedTenantConfig:
    """Read-only view over a provider, memoized for the lifetime of one event."""

    def __init__(self, provider: TenantConfigProvider, tenant_id: str) -> None:
        self._provider = provider
        self.tenant_id = tenant_id
        self._profile: TenantProfile | None = None
        self._catalog: Catalog | None = None
        self._order_types: list[OrderTypeConfig] | None = None
        self._fields: dict[str, list[FieldSpec]] = {}
        self._payment_methods: dict[str, list[PaymentMethodConfig]] = {}

    def profile(self) -> TenantProfile:
        if self._profile is None:
            profile = self._provider.get_profile(self.tenant_id)
            if profile is None:
                raise ConfigurationError(f"unknown tenant {self.tenant_id}")
            self._profile = profile
        return self._profile

    @property
    def currency(self) -> str:
        return self.profile().currency

    def catalog(self) -> Catalog:
        if self._catalog is None:
            self._catalog = self._provider.get_catalog(self.tenant_id)
        return self._catalog

    def order_types(self) -> list[OrderTypeConfig]:
        if self._order_types is None:
            self._order_types = self._provider.get_order_types(self.tenant_id)
        return self._order_types

    def order_type(self, order_type_id: str | None) -> OrderTypeConfig | None:
        if order_type_id is None:
            return None
        return next((order_type for order_type in self.order_types() if order_type.id == order_type_id), None)

    def required_fields(self, order_type_id: str) -> list[FieldSpec]:
        if order_type_id not in self._fields:
            self._fields[order_type_id] = self._provider.get_required_fields(self.tenant_id, order_type_id)
        return self._fields[order_type_id]

    def payment_methods(self, order_type_id: str) -> list[PaymentMethodConfig]:
        if order_type_id not in self._payment_methods:
            self._payment_methods[order_type_id] = self._provider.get_payment_methods(self.tenant_id, order_type_id)
        return self._payment_methods[order_type_id]

    def payment_method(self, order_type_id: str | None, method_id: str | None) -> PaymentMethodConfig | None:
        if order_type_id is None or method_id is None:
            return None
        return next((method for method in self.payment_methods(order_type_id) if method.id == method_id), None)
