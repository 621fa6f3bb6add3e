"""Rendering of conversation states into Messenger messages.

Everything here is pure; limits on quick replies, buttons and carousel
elements are enforced while rendering so the Send API never rejects a
message for size.
"""
from __future__ import annotations

import logging
from typing import Iterable

from chatorder.core.errors import InvalidSelection
from chatorder.fsm import cart as cart_engine
from chatorder.fsm import payloads
from chatorder.fsm.intents import Intent, Notice, PromptState, SendImage
from chatorder.fsm.states import ConversationState
from chatorder.messenger.base import (
    MAX_BUTTON_TEMPLATE_TEXT,
    MAX_BUTTON_TITLE,
    MAX_BUTTONS,
    MAX_ELEMENT_SUBTITLE,
    MAX_ELEMENT_TITLE,
    MAX_GENERIC_ELEMENTS,
    MAX_QUICK_REPLIES,
    MAX_QUICK_REPLY_TITLE,
    MAX_TEXT_LENGTH,
    Button,
    GenericElement,
    OutboundMessage,
    QuickReply,
)
from chatorder.schemas.session import ConversationSnapshot
from chatorder.services import checkout as checkout_rules
from chatorder.services.formatting import (
    cart_summary_lines,
    format_money,
    is_absolute_url,
    order_type_emoji,
    truncate,
)
from chatorder.services.tenant_config import CachedTenantConfig

logger = logging.getLogger(__name__)

State = ConversationState


def quick_replies(options: Iterable[tuple[str, str]]) -> list[QuickReply]:
    replies = [QuickReply(title=truncate(title, MAX_QUICK_REPLY_TITLE), payload=payload) for title, payload in options]
    if len(replies) > MAX_QUICK_REPLIES:
        logger.warning("quick replies truncated count=%s", len(replies))
    return replies[:MAX_QUICK_REPLIES]


def text_message(text: str, replies: Iterable[tuple[str, str]] = ()) -> OutboundMessage:
    return OutboundMessage(kind="text", text=truncate(text, MAX_TEXT_LENGTH), quick_replies=quick_replies(replies))


def button_message(text: str, buttons: Iterable[tuple[str, str]], replies: Iterable[tuple[str, str]] = ()) -> OutboundMessage:
    rendered = [Button(title=truncate(title, MAX_BUTTON_TITLE), payload=payload) for title, payload in buttons]
    return OutboundMessage(
        kind="buttons",
        text=truncate(text, MAX_BUTTON_TEMPLATE_TEXT),
        buttons=rendered[:MAX_BUTTONS],
        quick_replies=quick_replies(replies),
    )


def carousel_messages(elements: list[GenericElement], replies: Iterable[tuple[str, str]] = ()) -> list[OutboundMessage]:
    chunks = [elements[i : i + MAX_GENERIC_ELEMENTS] for i in range(0, len(elements), MAX_GENERIC_ELEMENTS)]
    messages = [OutboundMessage(kind="generic", elements=chunk) for chunk in chunks]
    if messages:
        messages[-1].quick_replies = quick_replies(replies)
    return messages


def _nav_replies(snapshot: ConversationSnapshot) -> list[tuple[str, str]]:
    replies = [("📋 Menu", payloads.encode(payloads.MENU))]
    if snapshot.cart:
        count = cart_engine.item_count(snapshot.cart)
        replies.append((f"🛒 Cart ({count})", payloads.encode(payloads.VIEW_CART)))
    return replies


def render_menu(snapshot: ConversationSnapshot, config: CachedTenantConfig) -> list[OutboundMessage]:
    catalog = config.catalog()
    categories = [category for category in catalog.categories if catalog.items_in_category(category.id)]
    if not categories:
        return [text_message("Our menu is empty right now. Please check back later.")]
    cart_reply = []
    if snapshot.cart:
        cart_reply = [(f"🛒 Cart ({cart_engine.item_count(snapshot.cart)})", payloads.encode(payloads.VIEW_CART))]
    room = MAX_QUICK_REPLIES - len(cart_reply)
    options = [(category.name, payloads.encode(payloads.CATEGORY, category.id)) for category in categories[:room]]
    profile = config.profile()
    return [text_message(f"Welcome to {profile.name}! 🍴\nWhat would you like to order?", [*options, *cart_reply])]


def render_items(snapshot: ConversationSnapshot, config: CachedTenantConfig) -> list[OutboundMessage]:
    catalog = config.catalog()
    items = catalog.items_in_category(snapshot.browsing_category_id) if snapshot.browsing_category_id else catalog.items
    if not items:
        return render_menu(snapshot, config)
    currency = config.currency
    elements = []
    for item in items:
        subtitle = format_money(item.price_cents, currency)
        if item.description:
            subtitle = f"{subtitle} · {item.description}"
        elements.append(
            GenericElement(
                title=truncate(item.name, MAX_ELEMENT_TITLE),
                subtitle=truncate(subtitle, MAX_ELEMENT_SUBTITLE),
                image_url=item.image_url if is_absolute_url(item.image_url) else None,
                buttons=[Button(title="Select", payload=payloads.encode(payloads.ITEM, item.id))],
            )
        )
    return carousel_messages(elements, _nav_replies(snapshot))


def render_variation(snapshot: ConversationSnapshot, config: CachedTenantConfig) -> list[OutboundMessage]:
    pending = snapshot.pending_selection
    item = config.catalog().item(pending.menu_item_id) if pending else None
    if item is None:
        return render_menu(snapshot, config)
    group = next(
        (g for g in item.variation_groups if g.id not in pending.variations and g.id not in pending.skipped_groups),
        None,
    )
    if group is None:
        return render_quantity(snapshot, config)
    currency = config.currency
    options = []
    for option in group.options:
        title = option.name
        if option.price_modifier_cents:
            title = f"{option.name} +{format_money(option.price_modifier_cents, currency)}"
        options.append((title, payloads.encode(payloads.VARIATION, group.id, option.id)))
    header = f"{item.name} · {format_money(item.price_cents, currency)}"
    if not group.required:
        options = [*options[: MAX_QUICK_REPLIES - 1], ("Skip", payloads.encode(payloads.SKIP_VARIATION, group.id))]
        return [text_message(f"{header}\nChoose {group.name} (optional):", options)]
    return [text_message(f"{header}\nChoose {group.name}:", options)]


def render_addons(snapshot: ConversationSnapshot, config: CachedTenantConfig) -> list[OutboundMessage]:
    pending = snapshot.pending_selection
    item = config.catalog().item(pending.menu_item_id) if pending else None
    if item is None:
        return render_menu(snapshot, config)
    currency = config.currency
    selected = [addon.name for addon in item.addons if addon.id in pending.addon_ids]
    options = []
    for addon in item.addons[: MAX_QUICK_REPLIES - 1]:
        if addon.id in pending.addon_ids:
            title = f"✓ {addon.name}"
        else:
            title = f"+ {addon.name} {format_money(addon.price_cents, currency)}"
        options.append((title, payloads.encode(payloads.ADDON, addon.id)))
    options.append(("✅ Done", payloads.encode(payloads.ADDONS_DONE)))
    text = f"Any add-ons for {item.name}? Tap to add or remove, then tap Done."
    if selected:
        text = f"{text}\nSelected: {', '.join(selected)}"
    return [text_message(text, options)]


def render_quantity(snapshot: ConversationSnapshot, config: CachedTenantConfig) -> list[OutboundMessage]:
    pending = snapshot.pending_selection
    item = config.catalog().item(pending.menu_item_id) if pending else None
    if item is None:
        return render_menu(snapshot, config)
    try:
        preview = cart_engine.build_line(
            item, variation_choices=pending.variations, addon_ids=pending.addon_ids, quantity=1
        )
        price = f" ({format_money(preview.unit_price_cents, config.currency)} each)"
    except InvalidSelection:
        price = ""
    options = [(str(qty), payloads.encode(payloads.QTY, qty)) for qty in range(1, 6)]
    return [text_message(f"How many {item.name}{price}?\nTap a number or type a quantity.", options)]


def render_cart(snapshot: ConversationSnapshot, config: CachedTenantConfig) -> list[OutboundMessage]:
    if not snapshot.cart:
        return [text_message("🛒 Your cart is empty.", _nav_replies(snapshot))]
    currency = config.currency
    lines = ["🛒 Your cart:", *cart_summary_lines(snapshot.cart, currency)]
    lines.append(f"Total: {format_money(cart_engine.cart_total_cents(snapshot.cart), currency)}")
    remove_options = [
        (f"❌ {line.name}", payloads.encode(payloads.REMOVE_LINE, cart_engine.line_id(line)))
        for line in snapshot.cart
    ]
    return [
        text_message("\n".join(lines)),
        button_message(
            "What would you like to do next?",
            [
                ("✅ Checkout", payloads.encode(payloads.CHECKOUT)),
                ("➕ Add more", payloads.encode(payloads.MENU)),
                ("🗑️ Clear cart", payloads.encode(payloads.CLEAR_CART)),
            ],
            remove_options,
        ),
    ]


def _leave_checkout_replies() -> list[tuple[str, str]]:
    return [
        ("🛒 Back to cart", payloads.encode(payloads.VIEW_CART)),
        ("❌ Cancel", payloads.encode(payloads.CANCEL_CHECKOUT)),
    ]


def render_order_type(snapshot: ConversationSnapshot, config: CachedTenantConfig) -> list[OutboundMessage]:
    order_types = config.order_types()
    if not order_types:
        return [text_message("No order types are available. Please contact the restaurant.")]
    options = [
        (f"{order_type_emoji(ot.kind)} {ot.name}", payloads.encode(payloads.ORDER_TYPE, ot.id))
        for ot in order_types[: MAX_QUICK_REPLIES - 2]
    ]
    return [text_message("How would you like to get your order?", [*options, *_leave_checkout_replies()])]


def render_customer_field(snapshot: ConversationSnapshot, config: CachedTenantConfig) -> list[OutboundMessage]:
    checkout = snapshot.checkout
    fields = checkout_rules.required_fields(config, checkout.order_type_id) if checkout.order_type_id else []
    field = next((f for f in fields if f.id == checkout.current_field), None)
    if field is None:
        field = checkout_rules.next_unanswered_field(checkout, fields)
    if field is None:
        return [text_message("Thanks! Let's continue with your order.")]

    text = f"Please enter your {field.label}:" if field.kind != "select" else f"Please choose your {field.label}:"
    if field.kind == "location":
        text = f"Please type your {field.label} or share your location 📍"
    if field.placeholder:
        text = f"{text}\n(e.g. {field.placeholder})"
    if not field.required:
        text = f"{text}\nThis one is optional."

    options: list[tuple[str, str]] = []
    if field.kind == "select":
        options.extend((option, payloads.encode(payloads.FIELD_OPTION, option)) for option in field.options[:10])
    if not field.required:
        options.append(("Skip", payloads.encode(payloads.SKIP_FIELD)))
    options.extend(_leave_checkout_replies())
    return [text_message(text, options)]


def render_payment(snapshot: ConversationSnapshot, config: CachedTenantConfig) -> list[OutboundMessage]:
    checkout = snapshot.checkout
    methods = config.payment_methods(checkout.order_type_id) if checkout.order_type_id else []
    if not methods:
        return [text_message("No payment methods are available. Please contact the restaurant.")]
    options = [(method.name, payloads.encode(payloads.PAYMENT, method.id)) for method in methods]
    if checkout.quote_failed:
        options.extend(
            (f"{method.name} (fee later)", payloads.encode(payloads.PAYMENT_NO_QUOTE, method.id)) for method in methods
        )
    options = options[: MAX_QUICK_REPLIES - 2]
    return [text_message("How would you like to pay?", [*options, *_leave_checkout_replies()])]


def render_confirm(snapshot: ConversationSnapshot, config: CachedTenantConfig) -> list[OutboundMessage]:
    checkout = snapshot.checkout
    currency = config.currency
    order_type = config.order_type(checkout.order_type_id)
    method = config.payment_method(checkout.order_type_id, checkout.payment_method_id)
    subtotal = cart_engine.cart_total_cents(snapshot.cart)
    fee = checkout.delivery_fee_cents or 0

    lines = ["📋 Order summary"]
    if order_type is not None:
        lines.append(f"{order_type_emoji(order_type.kind)} {order_type.name}")
    lines.append("")
    lines.extend(cart_summary_lines(snapshot.cart, currency))
    lines.append("")
    lines.append(f"Subtotal: {format_money(subtotal, currency)}")
    if order_type is not None and order_type.requires_delivery:
        if checkout.delivery_fee_pending:
            lines.append("Delivery fee: to be confirmed")
        else:
            lines.append(f"Delivery fee: {format_money(fee, currency)}")
    lines.append(f"Total: {format_money(subtotal + fee, currency)}")
    if method is not None:
        lines.append(f"Payment: {method.name}")

    fields = checkout_rules.required_fields(config, checkout.order_type_id) if checkout.order_type_id else []
    answered = [(field.label, checkout.collected_fields.get(field.id)) for field in fields]
    answered = [(label, value) for label, value in answered if value]
    if answered:
        lines.append("")
        lines.extend(f"{label}: {value}" for label, value in answered)

    return [
        text_message("\n".join(lines)),
        button_message(
            "Place this order?",
            [
                ("✅ Confirm order", payloads.encode(payloads.CONFIRM_ORDER)),
                *_leave_checkout_replies(),
            ],
        ),
    ]


def render_order_confirmed(snapshot: ConversationSnapshot, config: CachedTenantConfig) -> list[OutboundMessage]:
    reference = f" #{snapshot.last_order_ref}" if snapshot.last_order_ref else ""
    return [
        text_message(
            f"Thank you! Your order{reference} has been received. We'll message you with updates.",
            [("🍔 Order again", payloads.encode(payloads.MENU))],
        )
    ]


_RENDERERS = {
    State.MENU: render_menu,
    State.SELECTING_ITEM: render_items,
    State.SELECTING_VARIATION: render_variation,
    State.SELECTING_ADDONS: render_addons,
    State.SELECTING_QUANTITY: render_quantity,
    State.CART: render_cart,
    State.CHECKOUT_ORDER_TYPE: render_order_type,
    State.CHECKOUT_CUSTOMER: render_customer_field,
    State.CHECKOUT_PAYMENT: render_payment,
    State.CHECKOUT_CONFIRM: render_confirm,
    State.ORDER_CONFIRMED: render_order_confirmed,
}


def render(state: ConversationState, snapshot: ConversationSnapshot, config: CachedTenantConfig) -> list[OutboundMessage]:
    return _RENDERERS[state](snapshot, config)


def render_intents(
    intents: Iterable[Intent], snapshot: ConversationSnapshot, config: CachedTenantConfig
) -> list[OutboundMessage]:
    messages: list[OutboundMessage] = []
    for intent in intents:
        if isinstance(intent, Notice):
            messages.append(text_message(intent.text))
        elif isinstance(intent, SendImage):
            if is_absolute_url(intent.url):
                messages.append(OutboundMessage(kind="image", image_url=intent.url))
        elif isinstance(intent, PromptState):
            messages.extend(render(snapshot.state, snapshot, config))
    return messages
