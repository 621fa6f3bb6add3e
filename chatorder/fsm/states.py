from __future__ import annotations

from enum import Enum


class ConversationState(str, Enum):
    MENU = "menu"
    SELECTING_ITEM = "selecting_item"
    SELECTING_VARIATION = "selecting_variation"
    SELECTING_ADDONS = "selecting_addons"
    SELECTING_QUANTITY = "selecting_quantity"
    CART = "cart"
    CHECKOUT_ORDER_TYPE = "checkout_order_type"
    CHECKOUT_CUSTOMER = "checkout_customer"
    CHECKOUT_PAYMENT = "checkout_payment"
    CHECKOUT_CONFIRM = "checkout_confirm"
    ORDER_CONFIRMED = "order_confirmed"


SELECTION_STATES = frozenset(
    {
        ConversationState.SELECTING_ITEM,
        ConversationState.SELECTING_VARIATION,
        ConversationState.SELECTING_ADDONS,
        ConversationState.SELECTING_QUANTITY,
    }
)

CHECKOUT_STATES = frozenset(
    {
        ConversationState.CHECKOUT_ORDER_TYPE,
        ConversationState.CHECKOUT_CUSTOMER,
        ConversationState.CHECKOUT_PAYMENT,
        ConversationState.CHECKOUT_CONFIRM,
    }
)

# states where browsing the catalog is allowed without abandoning checkout
BROWSING_STATES = frozenset({ConversationState.MENU, ConversationState.CART, *SELECTION_STATES})
