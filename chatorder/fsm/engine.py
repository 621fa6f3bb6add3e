"""Conversation state machine.

``transition`` is pure: it never performs I/O, never mutates the snapshot it
receives and reads tenant configuration only through the injected view.
Side effects are requested as commands; their outcomes come back as
follow-up events (``QuoteSucceeded``, ``OrderSubmitted``, ...).
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from chatorder.core.errors import ConfigurationError, FieldValidationError, InvalidSelection
from chatorder.fsm import cart as cart_engine
from chatorder.fsm import payloads
from chatorder.fsm.events import (
    ConversationEvent,
    LocationAttachment,
    OrderSubmissionFailed,
    OrderSubmitted,
    QuickReplyOrButton,
    QuoteFailed,
    QuoteSucceeded,
    TextMessage,
)
from chatorder.fsm.intents import Notice, PromptState, RequestQuote, SendImage, SubmitOrder, Transition
from chatorder.fsm.states import BROWSING_STATES, CHECKOUT_STATES, ConversationState
from chatorder.schemas.session import CheckoutState, ConversationSnapshot, Dropoff, PendingSelection
from chatorder.schemas.tenant_config import MenuItemConfig, PaymentMethodConfig, VariationGroupConfig
from chatorder.services import checkout as checkout_rules
from chatorder.services.formatting import cart_summary_lines, format_money, order_type_emoji
from chatorder.services.tenant_config import LEGACY_VARIATION_GROUP_ID, CachedTenantConfig

logger = logging.getLogger(__name__)

State = ConversationState
Payload = payloads.Payload

GREETING_WORDS = {"menu", "start", "hi", "hello", "hey", "help", "order"}
CART_WORDS = {"cart", "view cart", "my cart"}
CANCEL_WORDS = {"cancel", "start over", "reset", "restart"}
CLEAR_WORDS = {"clear", "clear cart", "empty cart"}
CHECKOUT_WORDS = {"checkout", "check out"}
CONFIRM_WORDS = {"confirm", "yes", "place order"}
DONE_WORDS = {"done", "no", "none", "skip", "no thanks"}
SKIP_WORDS = {"skip", "-"}

NOT_UNDERSTOOD = "Sorry, I didn't understand that. Here are your options:"
NOT_AVAILABLE = "Sorry, ordering isn't available for this step right now. Please try again later."


def transition(
    snapshot: ConversationSnapshot,
    event: ConversationEvent,
    config: CachedTenantConfig,
    now: datetime,
) -> Transition:
    working = snapshot.model_copy(deep=True)
    try:
        result = _dispatch(working, event, config, now)
    except ConfigurationError as exc:
        logger.warning("tenant configuration incomplete: %s", exc, extra={"state": snapshot.state.value})
        return Transition(snapshot, [Notice(NOT_AVAILABLE), PromptState()], understood=False)
    except InvalidSelection as exc:
        logger.info("invalid selection: %s", exc, extra={"state": snapshot.state.value})
        result = None

    if result is None:
        return _fallback(snapshot)
    return result


def _fallback(snapshot: ConversationSnapshot) -> Transition:
    return Transition(snapshot, [Notice(NOT_UNDERSTOOD), PromptState()], understood=False)


def _dispatch(
    s: ConversationSnapshot, event: ConversationEvent, config: CachedTenantConfig, now: datetime
) -> Optional[Transition]:
    if isinstance(event, (QuoteSucceeded, QuoteFailed)):
        return _on_quote_result(s, event, config)
    if isinstance(event, (OrderSubmitted, OrderSubmissionFailed)):
        return _on_submission_result(s, event, config)

    action = _classify(s.state, event)
    if action is not None:
        handled = _handle_global(s, action, config)
        if handled is not None:
            return handled

    handler = _STATE_HANDLERS[s.state]
    return handler(s, event, action, config, now)


def _normalize_text(text: str) -> str:
    return " ".join(text.strip().lower().split())


def _classify(state: ConversationState, event: ConversationEvent) -> Optional[Payload]:
    if isinstance(event, QuickReplyOrButton):
        return payloads.parse(event.payload)
    if not isinstance(event, TextMessage):
        return None

    text = _normalize_text(event.text)
    if text in CANCEL_WORDS:
        return Payload(payloads.START_OVER)
    if state == State.CHECKOUT_CUSTOMER:
        # free text is the expected answer here
        if text in SKIP_WORDS:
            return Payload(payloads.SKIP_FIELD)
        return None
    if text in GREETING_WORDS:
        return Payload(payloads.MENU)
    if text in CART_WORDS:
        return Payload(payloads.VIEW_CART)
    if text in CLEAR_WORDS:
        return Payload(payloads.CLEAR_CART)
    if text in CHECKOUT_WORDS:
        return Payload(payloads.CHECKOUT)
    if state == State.CHECKOUT_CONFIRM and text in CONFIRM_WORDS:
        return Payload(payloads.CONFIRM_ORDER)
    if state == State.SELECTING_ADDONS and text in DONE_WORDS:
        return Payload(payloads.ADDONS_DONE)
    return None


def _reset(s: ConversationSnapshot, *, keep_cart: bool) -> None:
    if not keep_cart:
        s.cart = []
    s.checkout = CheckoutState()
    s.pending_selection = None
    s.browsing_category_id = None
    s.state = State.MENU


def _handle_global(s: ConversationSnapshot, action: Payload, config: CachedTenantConfig) -> Optional[Transition]:
    if action.action in (payloads.START_OVER, payloads.CANCEL_CHECKOUT):
        had_progress = bool(s.cart) or s.state in CHECKOUT_STATES
        _reset(s, keep_cart=False)
        intents = [Notice("Your order has been cancelled. Let's start over.")] if had_progress else []
        return Transition(s, [*intents, PromptState()])

    if action.action == payloads.CLEAR_CART:
        _reset(s, keep_cart=False)
        return Transition(s, [Notice("🗑️ Your cart has been cleared."), PromptState()])

    if action.action == payloads.MENU:
        _reset(s, keep_cart=s.state != State.ORDER_CONFIRMED)
        return Transition(s, [PromptState()])

    if action.action == payloads.VIEW_CART:
        _reset(s, keep_cart=True)
        if not s.cart:
            return Transition(s, [Notice("🛒 Your cart is empty."), PromptState()])
        s.state = State.CART
        return Transition(s, [PromptState()])

    if action.action in (payloads.CATEGORY, payloads.ITEM):
        if s.state == State.ORDER_CONFIRMED:
            _reset(s, keep_cart=False)
        elif s.state not in BROWSING_STATES:
            return None
        if action.action == payloads.CATEGORY:
            return _browse_category(s, action.arg(), config)
        return _start_item(s, action.arg(), config)

    if action.action == payloads.CHECKOUT and s.state in BROWSING_STATES:
        return _start_checkout(s, config)

    return None


# --- catalog browsing -------------------------------------------------------


def _browse_category(s: ConversationSnapshot, category_id: str, config: CachedTenantConfig) -> Optional[Transition]:
    catalog = config.catalog()
    if catalog.category(category_id) is None:
        return None
    if not catalog.items_in_category(category_id):
        return Transition(s, [Notice("There are no items in this category right now."), PromptState()])
    s.pending_selection = None
    s.browsing_category_id = category_id
    s.state = State.SELECTING_ITEM
    return Transition(s, [PromptState()])


def _start_item(s: ConversationSnapshot, item_id: str, config: CachedTenantConfig) -> Optional[Transition]:
    item = config.catalog().item(item_id)
    if item is None:
        return None
    s.pending_selection = PendingSelection(menu_item_id=item.id)
    if item.category_id:
        s.browsing_category_id = item.category_id
    s.state = _next_selection_state(item, s.pending_selection)
    return Transition(s, [PromptState()])


def _open_variation_group(item: MenuItemConfig, pending: PendingSelection) -> Optional[VariationGroupConfig]:
    return next(
        (
            group
            for group in item.variation_groups
            if group.id not in pending.variations and group.id not in pending.skipped_groups
        ),
        None,
    )


def _next_selection_state(item: MenuItemConfig, pending: PendingSelection) -> ConversationState:
    if _open_variation_group(item, pending) is not None:
        return State.SELECTING_VARIATION
    if item.addons:
        return State.SELECTING_ADDONS
    return State.SELECTING_QUANTITY


def _pending_item(s: ConversationSnapshot, config: CachedTenantConfig) -> Optional[MenuItemConfig]:
    if s.pending_selection is None:
        return None
    return config.catalog().item(s.pending_selection.menu_item_id)


def _item_gone(s: ConversationSnapshot) -> Transition:
    _reset(s, keep_cart=True)
    return Transition(s, [Notice("Sorry, that item is no longer available."), PromptState()])


def _match_name(text: str, candidates: list[tuple[str, str]]) -> Optional[str]:
    wanted = _normalize_text(text)
    for candidate_id, name in candidates:
        if _normalize_text(name) == wanted:
            return candidate_id
    return None


def _on_menu(s, event, action, config, now) -> Optional[Transition]:
    if not isinstance(event, TextMessage):
        return None
    catalog = config.catalog()
    category_id = _match_name(event.text, [(category.id, category.name) for category in catalog.categories])
    if category_id is not None:
        return _browse_category(s, category_id, config)
    item_id = _match_name(event.text, [(item.id, item.name) for item in catalog.items])
    if item_id is not None:
        return _start_item(s, item_id, config)
    return None


def _on_selecting_item(s, event, action, config, now) -> Optional[Transition]:
    if not isinstance(event, TextMessage):
        return None
    catalog = config.catalog()
    items = catalog.items_in_category(s.browsing_category_id) if s.browsing_category_id else catalog.items
    item_id = _match_name(event.text, [(item.id, item.name) for item in items])
    if item_id is None:
        return _on_menu(s, event, action, config, now)
    return _start_item(s, item_id, config)


def _on_selecting_variation(s, event, action, config, now) -> Optional[Transition]:
    if s.pending_selection is None:
        return None
    item = _pending_item(s, config)
    if item is None:
        return _item_gone(s)
    group = _open_variation_group(item, s.pending_selection)
    if group is None:
        s.state = _next_selection_state(item, s.pending_selection)
        return Transition(s, [PromptState()])

    skipping = action is not None and action.action == payloads.SKIP_VARIATION
    if skipping and action.arg() not in (group.id, LEGACY_VARIATION_GROUP_ID):
        return None
    if isinstance(event, TextMessage) and _normalize_text(event.text) in SKIP_WORDS:
        skipping = True
    if skipping:
        if group.required:
            return None
        s.pending_selection.skipped_groups.append(group.id)
        s.state = _next_selection_state(item, s.pending_selection)
        return Transition(s, [PromptState()])

    option_id = None
    if action is not None and action.action == payloads.VARIATION:
        group_id, option_id = action.args
        if group_id != group.id:
            target = item.group(group_id)
            if target is not None:
                group = target
            elif group_id != LEGACY_VARIATION_GROUP_ID:
                return None
        if group.option(option_id) is None:
            return None
    elif isinstance(event, TextMessage):
        option_id = _match_name(event.text, [(option.id, option.name) for option in group.options])
    if option_id is None:
        return None

    s.pending_selection.variations[group.id] = option_id
    s.state = _next_selection_state(item, s.pending_selection)
    return Transition(s, [PromptState()])


def _on_selecting_addons(s, event, action, config, now) -> Optional[Transition]:
    if s.pending_selection is None:
        return None
    item = _pending_item(s, config)
    if item is None:
        return _item_gone(s)

    if action is not None and action.action == payloads.ADDONS_DONE:
        s.state = State.SELECTING_QUANTITY
        return Transition(s, [PromptState()])
    if action is not None and action.action == payloads.SHOW_ADDONS:
        return Transition(s, [PromptState()])

    addon_id = None
    if action is not None and action.action == payloads.ADDON:
        addon_id = action.arg()
    elif isinstance(event, TextMessage):
        addon_id = _match_name(event.text, [(addon.id, addon.name) for addon in item.addons])
    if addon_id is None or item.addon(addon_id) is None:
        return None

    selected = s.pending_selection.addon_ids
    if addon_id in selected:
        selected.remove(addon_id)
    else:
        selected.append(addon_id)
    return Transition(s, [PromptState()])


def _parse_quantity(event, action) -> Optional[int]:
    raw = None
    if action is not None and action.action == payloads.QTY:
        raw = action.arg()
    elif isinstance(event, TextMessage):
        raw = event.text.strip()
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _on_selecting_quantity(s, event, action, config, now) -> Optional[Transition]:
    if s.pending_selection is None:
        return None
    quantity = _parse_quantity(event, action)
    if quantity is None:
        return None
    if quantity <= 0 or quantity > cart_engine.MAX_LINE_QUANTITY:
        return Transition(
            s, [Notice(f"Please enter a quantity from 1 to {cart_engine.MAX_LINE_QUANTITY}."), PromptState()]
        )
    item = _pending_item(s, config)
    if item is None:
        return _item_gone(s)

    line = cart_engine.build_line(
        item,
        variation_choices=s.pending_selection.variations,
        addon_ids=s.pending_selection.addon_ids,
        quantity=quantity,
    )
    requested = cart_engine.item_count(s.cart) + quantity
    s.cart = cart_engine.add_or_merge_line(s.cart, line)
    s.pending_selection = None
    s.state = State.CART
    notices = [Notice(f"✅ Added {quantity} × {line.name} to your cart.")]
    if cart_engine.item_count(s.cart) < requested:
        notices.append(
            Notice(f"A cart line holds at most {cart_engine.MAX_LINE_QUANTITY}; quantity set to the maximum.")
        )
    return Transition(s, [*notices, PromptState()])


def _on_cart(s, event, action, config, now) -> Optional[Transition]:
    if action is None:
        return None
    if action.action == payloads.REMOVE_LINE:
        line = cart_engine.find_line(s.cart, action.arg())
        if line is None:
            return None
        s.cart = cart_engine.remove_line(s.cart, action.arg())
        notice = Notice(f"Removed {line.name} from your cart.")
    elif action.action == payloads.LINE_QTY:
        target, raw_quantity = action.args
        line = cart_engine.find_line(s.cart, target)
        if line is None:
            return None
        try:
            quantity = int(raw_quantity)
        except ValueError:
            return None
        if quantity > cart_engine.MAX_LINE_QUANTITY:
            return Transition(
                s, [Notice(f"Please enter a quantity from 1 to {cart_engine.MAX_LINE_QUANTITY}."), PromptState()]
            )
        s.cart = cart_engine.update_quantity(s.cart, target, quantity)
        notice = Notice(f"Updated {line.name}.")
    else:
        return None

    if not s.cart:
        s.state = State.MENU
        return Transition(s, [notice, Notice("🛒 Your cart is empty."), PromptState()])
    return Transition(s, [notice, PromptState()])


# --- checkout ---------------------------------------------------------------


def _start_checkout(s: ConversationSnapshot, config: CachedTenantConfig) -> Transition:
    if not s.cart:
        _reset(s, keep_cart=True)
        return Transition(s, [Notice("🛒 Your cart is empty. Add something first."), PromptState()])
    if not config.order_types():
        raise ConfigurationError("no order types configured")
    s.pending_selection = None
    s.checkout = CheckoutState()
    s.state = State.CHECKOUT_ORDER_TYPE
    return Transition(s, [PromptState()])


def _on_checkout_order_type(s, event, action, config, now) -> Optional[Transition]:
    order_type_id = None
    if action is not None and action.action == payloads.ORDER_TYPE:
        order_type_id = action.arg()
    elif isinstance(event, TextMessage):
        order_type_id = _match_name(event.text, [(ot.id, ot.name) for ot in config.order_types()])
    order_type = config.order_type(order_type_id)
    if order_type is None:
        return None

    s.checkout = CheckoutState(order_type_id=order_type.id)
    intents = [Notice(f"{order_type_emoji(order_type.kind)} Order type: {order_type.name}")]
    return _advance_customer(s, config, intents)


def _advance_customer(s: ConversationSnapshot, config: CachedTenantConfig, intents: list) -> Transition:
    fields = checkout_rules.required_fields(config, s.checkout.order_type_id)
    field = checkout_rules.next_unanswered_field(s.checkout, fields)
    if field is not None:
        s.checkout.current_field = field.id
        s.state = State.CHECKOUT_CUSTOMER
        return Transition(s, [*intents, PromptState()])
    s.checkout.current_field = None
    return _enter_payment(s, config, intents)


def _enter_payment(s: ConversationSnapshot, config: CachedTenantConfig, intents: list) -> Transition:
    fields = checkout_rules.required_fields(config, s.checkout.order_type_id)
    missing = checkout_rules.missing_required_fields(s.checkout, fields)
    if missing:
        for field in missing:
            s.checkout.collected_fields.pop(field.id, None)
        s.checkout.current_field = missing[0].id
        s.state = State.CHECKOUT_CUSTOMER
        return Transition(s, [*intents, PromptState()])

    methods = config.payment_methods(s.checkout.order_type_id)
    if not methods:
        raise ConfigurationError(f"no payment methods for order type {s.checkout.order_type_id}")
    s.state = State.CHECKOUT_PAYMENT
    if len(methods) == 1:
        return _choose_payment(s, methods[0], config, intents)
    return Transition(s, [*intents, PromptState()])


def _on_checkout_customer(s, event, action, config, now) -> Optional[Transition]:
    fields = checkout_rules.required_fields(config, s.checkout.order_type_id)
    field = next((f for f in fields if f.id == s.checkout.current_field), None)
    if field is None:
        field = checkout_rules.next_unanswered_field(s.checkout, fields)
    if field is None:
        return _enter_payment(s, config, [])

    dropoff = None
    if action is not None and action.action == payloads.SKIP_FIELD:
        if field.required:
            return Transition(s, [Notice(f"{field.label} is required."), PromptState()])
        answer = ""
    elif action is not None and action.action == payloads.FIELD_OPTION:
        answer = action.arg()
    elif action is not None:
        return None
    elif isinstance(event, TextMessage):
        answer = event.text
    elif isinstance(event, LocationAttachment):
        if field.kind != "location":
            return Transition(s, [Notice(f"Please type your {field.label.lower()}."), PromptState()])
        answer = event.title or f"{event.latitude:.6f}, {event.longitude:.6f}"
        dropoff = Dropoff(address=event.title, latitude=event.latitude, longitude=event.longitude)
    else:
        return None

    try:
        value = checkout_rules.validate(field, answer)
    except FieldValidationError as exc:
        return Transition(s, [Notice(f"⚠️ {exc.message}"), PromptState()])

    s.checkout.collected_fields[field.id] = value
    if dropoff is not None:
        s.checkout.dropoff = dropoff
    elif value and (field.kind == "location" or "address" in field.id.lower()):
        if s.checkout.dropoff is None or field.kind == "location":
            s.checkout.dropoff = Dropoff(address=value)
    return _advance_customer(s, config, [])


def _payment_intents(method: PaymentMethodConfig) -> list:
    intents: list = []
    if method.details:
        intents.append(Notice(f"💳 {method.name}\n{method.details}"))
    if method.qr_code_url:
        intents.append(SendImage(method.qr_code_url))
    return intents


def _choose_payment(
    s: ConversationSnapshot, method: PaymentMethodConfig, config: CachedTenantConfig, intents: list
) -> Transition:
    order_type = config.order_type(s.checkout.order_type_id)
    if order_type is None:
        raise ConfigurationError("order type disappeared during checkout")
    s.checkout.payment_method_id = method.id
    s.checkout.quote_failed = False
    s.checkout.delivery_fee_pending = False
    intents = [*intents, Notice(f"Payment method: {method.name}"), *_payment_intents(method)]
    if order_type.requires_delivery:
        s.state = State.CHECKOUT_PAYMENT
        return Transition(s, intents, [RequestQuote(order_type_id=order_type.id)])
    s.checkout.delivery_fee_cents = None
    s.checkout.quote_ref = None
    s.checkout.quote_expires_at = None
    return _enter_confirm(s, intents)


def _enter_confirm(s: ConversationSnapshot, intents: list) -> Transition:
    s.state = State.CHECKOUT_CONFIRM
    s.checkout.confirm_version = s.version
    return Transition(s, [*intents, PromptState()])


def _on_checkout_payment(s, event, action, config, now) -> Optional[Transition]:
    order_type_id = s.checkout.order_type_id
    if action is not None and action.action == payloads.PAYMENT:
        method = config.payment_method(order_type_id, action.arg())
        if method is None:
            return None
        return _choose_payment(s, method, config, [])

    if action is not None and action.action == payloads.PAYMENT_NO_QUOTE:
        method = config.payment_method(order_type_id, action.arg())
        if method is None or not s.checkout.quote_failed:
            return None
        s.checkout.payment_method_id = method.id
        s.checkout.quote_failed = False
        s.checkout.delivery_fee_pending = True
        s.checkout.delivery_fee_cents = None
        s.checkout.quote_ref = None
        s.checkout.quote_expires_at = None
        intents = [
            Notice(f"Payment method: {method.name}"),
            *_payment_intents(method),
            Notice("We'll confirm the delivery fee with you after your order is placed."),
        ]
        return _enter_confirm(s, intents)

    if isinstance(event, TextMessage) and order_type_id:
        methods = config.payment_methods(order_type_id)
        method_id = _match_name(event.text, [(method.id, method.name) for method in methods])
        method = config.payment_method(order_type_id, method_id)
        if method is not None:
            return _choose_payment(s, method, config, [])
    return None


def _on_checkout_confirm(s, event, action, config, now) -> Optional[Transition]:
    if action is None or action.action != payloads.CONFIRM_ORDER:
        return None

    order_type = config.order_type(s.checkout.order_type_id)
    expires_at = s.checkout.quote_expires_at
    if order_type is not None and order_type.requires_delivery and expires_at is not None and now >= expires_at:
        s.checkout.payment_method_id = None
        s.checkout.delivery_fee_cents = None
        s.checkout.quote_ref = None
        s.checkout.quote_expires_at = None
        s.checkout.confirm_version = None
        s.state = State.CHECKOUT_PAYMENT
        return Transition(
            s,
            [Notice("Your delivery quote has expired. Please choose a payment method again for a fresh quote."), PromptState()],
        )

    version = s.checkout.confirm_version if s.checkout.confirm_version is not None else s.version
    key = checkout_rules.idempotency_key(s.tenant_id, s.sender_id, version)
    return Transition(s, [], [SubmitOrder(idempotency_key=key)])


def _on_order_confirmed(s, event, action, config, now) -> Optional[Transition]:
    return None


# --- command results ----------------------------------------------------------


def _on_quote_result(s: ConversationSnapshot, event, config: CachedTenantConfig) -> Optional[Transition]:
    if s.state != State.CHECKOUT_PAYMENT or s.checkout.payment_method_id is None:
        logger.info("stale quote result ignored", extra={"state": s.state.value})
        return None

    if isinstance(event, QuoteSucceeded):
        s.checkout.delivery_fee_cents = event.fee_cents
        s.checkout.quote_ref = event.quote_ref
        s.checkout.quote_expires_at = event.expires_at
        s.checkout.quote_failed = False
        s.checkout.delivery_fee_pending = False
        fee = format_money(event.fee_cents, config.currency)
        return _enter_confirm(s, [Notice(f"🚚 Delivery fee: {fee}")])

    s.checkout.payment_method_id = None
    s.checkout.delivery_fee_cents = None
    s.checkout.quote_ref = None
    s.checkout.quote_expires_at = None
    s.checkout.quote_failed = True
    return Transition(
        s,
        [
            Notice(
                "Sorry, we couldn't get a delivery quote right now. "
                "Choose a payment method to try again, or continue and we'll confirm the delivery fee with you."
            ),
            PromptState(),
        ],
    )


def build_receipt(s: ConversationSnapshot, config: CachedTenantConfig, order_number: str) -> str:
    currency = config.currency
    subtotal = cart_engine.cart_total_cents(s.cart)
    fee = s.checkout.delivery_fee_cents or 0
    lines = [f"✅ Order confirmed! Order #{order_number}", ""]
    lines.extend(cart_summary_lines(s.cart, currency))
    lines.append("")
    lines.append(f"Subtotal: {format_money(subtotal, currency)}")
    order_type = config.order_type(s.checkout.order_type_id)
    if order_type is not None and order_type.requires_delivery:
        if s.checkout.delivery_fee_pending:
            lines.append("Delivery fee: to be confirmed")
        else:
            lines.append(f"Delivery fee: {format_money(fee, currency)}")
    lines.append(f"Total: {format_money(subtotal + fee, currency)}")
    method = config.payment_method(s.checkout.order_type_id, s.checkout.payment_method_id)
    if method is not None:
        lines.append(f"Payment: {method.name}")
    return "\n".join(lines)


def _on_submission_result(s: ConversationSnapshot, event, config: CachedTenantConfig) -> Optional[Transition]:
    if s.state != State.CHECKOUT_CONFIRM:
        logger.info("stale submission result ignored", extra={"state": s.state.value})
        return None

    if isinstance(event, OrderSubmitted):
        receipt = build_receipt(s, config, event.order_number)
        s.cart = []
        s.checkout = CheckoutState()
        s.pending_selection = None
        s.browsing_category_id = None
        s.last_order_ref = event.order_number
        s.state = State.ORDER_CONFIRMED
        return Transition(s, [Notice(receipt), PromptState()])

    return Transition(
        s,
        [
            Notice("Sorry, we couldn't place your order. Your cart is saved. Tap Confirm to try again."),
            PromptState(),
        ],
    )


_STATE_HANDLERS: dict[ConversationState, Callable[..., Optional[Transition]]] = {
    State.MENU: _on_menu,
    State.SELECTING_ITEM: _on_selecting_item,
    State.SELECTING_VARIATION: _on_selecting_variation,
    State.SELECTING_ADDONS: _on_selecting_addons,
    State.SELECTING_QUANTITY: _on_selecting_quantity,
    State.CART: _on_cart,
    State.CHECKOUT_ORDER_TYPE: _on_checkout_order_type,
    State.CHECKOUT_CUSTOMER: _on_checkout_customer,
    State.CHECKOUT_PAYMENT: _on_checkout_payment,
    State.CHECKOUT_CONFIRM: _on_checkout_confirm,
    State.ORDER_CONFIRMED: _on_order_confirmed,
}
