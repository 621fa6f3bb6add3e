from __future__ import annotations

import re
from dataclasses import dataclass

MENU = "MENU"
CATEGORY = "CATEGORY"
ITEM = "ITEM"
VARIATION = "VARIATION"
SKIP_VARIATION = "SKIP_VARIATION"
ADDON = "ADDON"
ADDONS_DONE = "ADDONS_DONE"
SHOW_ADDONS = "SHOW_ADDONS"
QTY = "QTY"
VIEW_CART = "VIEW_CART"
CLEAR_CART = "CLEAR_CART"
REMOVE_LINE = "REMOVE_LINE"
LINE_QTY = "LINE_QTY"
CHECKOUT = "CHECKOUT"
ORDER_TYPE = "ORDER_TYPE"
FIELD_OPTION = "FIELD_OPTION"
SKIP_FIELD = "SKIP_FIELD"
PAYMENT = "PAYMENT"
PAYMENT_NO_QUOTE = "PAYMENT_NO_QUOTE"
CONFIRM_ORDER = "CONFIRM_ORDER"
CANCEL_CHECKOUT = "CANCEL_CHECKOUT"
START_OVER = "START_OVER"

_ARITY = {
    MENU: 0,
    CATEGORY: 1,
    ITEM: 1,
    VARIATION: 2,
    SKIP_VARIATION: 1,
    ADDON: 1,
    ADDONS_DONE: 0,
    SHOW_ADDONS: 0,
    QTY: 1,
    VIEW_CART: 0,
    CLEAR_CART: 0,
    REMOVE_LINE: 1,
    LINE_QTY: 2,
    CHECKOUT: 0,
    ORDER_TYPE: 1,
    FIELD_OPTION: 1,
    SKIP_FIELD: 0,
    PAYMENT: 1,
    PAYMENT_NO_QUOTE: 1,
    CONFIRM_ORDER: 0,
    CANCEL_CHECKOUT: 0,
    START_OVER: 0,
}

# payloads emitted by the previous Messenger bot; still arrive from old conversations
_LEGACY_PATTERNS = [
    (re.compile(r"^(?:SHOW|BACK_TO)_CATEGORIES$"), lambda m: (MENU,)),
    (re.compile(r"^CATEGORY_(.+)$"), lambda m: (CATEGORY, m.group(1))),
    (re.compile(r"^(?:VIEW_ITEM|ADD)_(.+)$"), lambda m: (ITEM, m.group(1))),
    (re.compile(r"^SELECT_VARIATION_(.+?)_(.+)$"), lambda m: (VARIATION, "default", m.group(2))),
    (re.compile(r"^SKIP_VARIATION_(.+)$"), lambda m: (SKIP_VARIATION, "default")),
    (re.compile(r"^SELECT_ADDON_(.+?)_(.+)$"), lambda m: (ADDON, m.group(2))),
    (re.compile(r"^SHOW_ADDONS_(.+)$"), lambda m: (SHOW_ADDONS,)),
    (re.compile(r"^DONE_ADDONS_(.+)$"), lambda m: (ADDONS_DONE,)),
    (re.compile(r"^SET_QUANTITY_(.+)_(\d+)$"), lambda m: (QTY, m.group(2))),
    (re.compile(r"^ORDER_TYPE_(.+)$"), lambda m: (ORDER_TYPE, m.group(1))),
    (re.compile(r"^PAYMENT_(.+)$"), lambda m: (PAYMENT, m.group(1))),
]


@dataclass(frozen=True)
class Payload:
    action: str
    args: tuple[str, ...] = ()

    def arg(self, index: int = 0) -> str:
        return self.args[index]


def encode(action: str, *args: object) -> str:
    if action not in _ARITY:
        raise ValueError(f"unknown payload action: {action}")
    if len(args) != _ARITY[action]:
        raise ValueError(f"payload {action} expects {_ARITY[action]} args")
    return ":".join([action, *(str(arg) for arg in args)])


def parse(raw: str | None) -> Payload | None:
    """Parse a postback/quick-reply payload; unknown or malformed payloads return None."""
    if not raw:
        return None
    raw = raw.strip()

    action, _, rest = raw.partition(":")
    if action in _ARITY:
        arity = _ARITY[action]
        if arity == 0:
            return Payload(action) if not rest else None
        args = tuple(rest.split(":", arity - 1)) if rest else ()
        if len(args) != arity or any(not arg for arg in args):
            return None
        return Payload(action, args)

    for pattern, build in _LEGACY_PATTERNS:
        match = pattern.match(raw)
        if match:
            action, *args = build(match)
            return Payload(action, tuple(args))
    return None
