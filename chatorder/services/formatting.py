from __future__ import annotations

from chatorder.schemas.session import CartLine

_CURRENCY_SYMBOLS = {
    "PHP": "₱",
    "USD": "$",
    "SGD": "S$",
    "HKD": "HK$",
    "MYR": "RM",
    "THB": "฿",
    "BRL": "R$",
}

_ORDER_TYPE_EMOJIS = {
    "dine_in": "🍽️",
    "pickup": "📦",
    "delivery": "🚚",
}


def format_money(cents: int, currency: str = "PHP") -> str:
    symbol = _CURRENCY_SYMBOLS.get(currency.upper(), f"{currency.upper()} ")
    sign = "-" if cents < 0 else ""
    whole, fraction = divmod(abs(int(cents)), 100)
    return f"{sign}{symbol}{whole:,}.{fraction:02d}"


def order_type_emoji(kind: str) -> str:
    return _ORDER_TYPE_EMOJIS.get(kind, "📋")


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    if max_length <= 1:
        return text[:max_length]
    return text[: max_length - 1] + "…"


def is_absolute_url(url: str | None) -> bool:
    if not url or not isinstance(url, str):
        return False
    return url.strip().lower().startswith(("http://", "https://"))


def describe_line(line: CartLine) -> str:
    """One-line description of a cart line without prices, e.g. ``Pizza (Size: Medium; + Cheese)``."""
    details = [f"{choice.group_name}: {choice.option_name}" for choice in line.variations]
    details.extend(f"+ {addon.name}" for addon in line.addons)
    if not details:
        return line.name
    return f"{line.name} ({'; '.join(details)})"


def cart_summary_lines(cart: list[CartLine], currency: str) -> list[str]:
    return [
        f"{line.quantity} × {describe_line(line)} {format_money(line.subtotal_cents, currency)}" for line in cart
    ]
