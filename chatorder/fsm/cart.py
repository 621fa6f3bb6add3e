"""Cart arithmetic over integer minor units.

Every function returns a new list; input carts are never mutated.
"""
from __future__ import annotations

import hashlib
from typing import Iterable, Mapping

from chatorder.core.errors import InvalidSelection
from chatorder.schemas.session import AddonChoice, CartLine, VariationChoice
from chatorder.schemas.tenant_config import MenuItemConfig

MAX_LINE_QUANTITY = 99


def line_id(line: CartLine) -> str:
    item_id, variations, addons = line.identity
    raw = "|".join(
        [
            item_id,
            ",".join(f"{group}={option}" for group, option in variations),
            ",".join(addons),
        ]
    )
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:10]


def build_line(
    item: MenuItemConfig,
    *,
    variation_choices: Mapping[str, str] | None = None,
    addon_ids: Iterable[str] = (),
    quantity: int = 1,
) -> CartLine:
    variation_choices = variation_choices or {}
    variations: list[VariationChoice] = []
    for group in item.variation_groups:
        option_id = variation_choices.get(group.id)
        if option_id is None:
            if not group.required:
                continue
            raise InvalidSelection(f"missing choice for {group.name}")
        option = group.option(option_id)
        if option is None:
            raise InvalidSelection(f"unknown option {option_id} for {group.name}")
        variations.append(
            VariationChoice(
                group_id=group.id,
                group_name=group.name,
                option_id=option.id,
                option_name=option.name,
                price_modifier_cents=option.price_modifier_cents,
            )
        )
    unknown_groups = set(variation_choices) - {group.id for group in item.variation_groups}
    if unknown_groups:
        raise InvalidSelection(f"unknown variation groups: {sorted(unknown_groups)}")

    addons: list[AddonChoice] = []
    for addon_id in dict.fromkeys(addon_ids):
        addon = item.addon(addon_id)
        if addon is None:
            raise InvalidSelection(f"unknown addon {addon_id}")
        addons.append(AddonChoice(addon_id=addon.id, name=addon.name, price_cents=addon.price_cents))

    if quantity <= 0:
        raise InvalidSelection("quantity must be positive")

    return CartLine(
        menu_item_id=item.id,
        name=item.name,
        base_price_cents=item.price_cents,
        variations=variations,
        addons=addons,
        quantity=quantity,
    )


def add_or_merge_line(cart: list[CartLine], line: CartLine) -> list[CartLine]:
    updated = [existing.model_copy(deep=True) for existing in cart]
    for existing in updated:
        if existing.identity == line.identity:
            existing.quantity = min(existing.quantity + line.quantity, MAX_LINE_QUANTITY)
            return updated
    updated.append(line.model_copy(deep=True))
    return updated


def update_quantity(cart: list[CartLine], target_line_id: str, quantity: int) -> list[CartLine]:
    updated: list[CartLine] = []
    for existing in cart:
        if line_id(existing) != target_line_id:
            updated.append(existing.model_copy(deep=True))
            continue
        if quantity <= 0:
            continue
        updated.append(existing.model_copy(update={"quantity": quantity}, deep=True))
    return updated


def remove_line(cart: list[CartLine], target_line_id: str) -> list[CartLine]:
    return update_quantity(cart, target_line_id, 0)


def find_line(cart: list[CartLine], target_line_id: str) -> CartLine | None:
    return next((line for line in cart if line_id(line) == target_line_id), None)


def cart_total_cents(cart: Iterable[CartLine]) -> int:
    return sum(line.unit_price_cents * line.quantity for line in cart)


def item_count(cart: Iterable[CartLine]) -> int:
    return sum(line.quantity for line in cart)
