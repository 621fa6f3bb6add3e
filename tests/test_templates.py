import pytest

from chatorder.fsm.states import ConversationState
from chatorder.messenger.base import GenericElement
from chatorder.messenger.templates import (
    button_message,
    carousel_messages,
    quick_replies,
    render,
    text_message,
)
from chatorder.schemas.session import ConversationSnapshot, PendingSelection
from chatorder.services.formatting import format_money, truncate
from chatorder.services.tenant_config import CachedTenantConfig, StaticTenantConfigProvider
from tests.fixtures_data import NOW, SENDER_ID, TENANT_ID, TENANTS


def _snapshot(state, **fields):
    snapshot = ConversationSnapshot.fresh(TENANT_ID, SENDER_ID, now=NOW)
    return snapshot.model_copy(update={"state": state, **fields})


def _config():
    return CachedTenantConfig(StaticTenantConfigProvider(TENANTS), TENANT_ID)


def test_quick_replies_are_capped_and_titles_truncated():
    replies = quick_replies((f"Option number {index} with a long title", f"P:{index}") for index in range(20))

    assert len(replies) == 13
    assert all(len(reply.title) <= 20 for reply in replies)
    assert replies[0].title.endswith("…")
    assert replies[12].payload == "P:12"


def test_carousel_is_split_and_replies_attach_to_last_chunk():
    elements = [GenericElement(title=f"Item {index}") for index in range(23)]

    messages = carousel_messages(elements, [("Cart", "CART")])

    assert [len(message.elements) for message in messages] == [10, 10, 3]
    assert [len(message.quick_replies) for message in messages] == [0, 0, 1]


def test_button_message_keeps_three_buttons():
    message = button_message("Pick one", [(f"B{index}", f"P:{index}") for index in range(5)])

    assert message.kind == "buttons"
    assert [button.payload for button in message.buttons] == ["P:0", "P:1", "P:2"]


def test_text_message_is_truncated_to_send_api_limit():
    message = text_message("x" * 2500)

    assert len(message.text) == 2000


@pytest.mark.parametrize(
    "cents, currency, expected",
    [(54000, "PHP", "₱540.00"), (123456, "usd", "$1,234.56"), (-550, "SGD", "-S$5.50"), (100, "EUR", "EUR 1.00")],
)
def test_format_money(cents, currency, expected):
    assert format_money(cents, currency) == expected


def test_truncate_short_text_is_untouched():
    assert truncate("Fries", 20) == "Fries"


def test_optional_variation_offers_skip():
    snapshot = _snapshot(ConversationState.SELECTING_VARIATION, pending_selection=PendingSelection(menu_item_id="cola"))

    (message,) = render(ConversationState.SELECTING_VARIATION, snapshot, _config())

    assert "(optional)" in message.text
    assert message.quick_replies[-1].payload == "SKIP_VARIATION:default"


def test_required_variation_has_no_skip():
    snapshot = _snapshot(
        ConversationState.SELECTING_VARIATION, pending_selection=PendingSelection(menu_item_id="margherita")
    )

    (message,) = render(ConversationState.SELECTING_VARIATION, snapshot, _config())

    assert all(not reply.payload.startswith("SKIP_VARIATION") for reply in message.quick_replies)


def test_checkout_prompts_offer_back_to_cart_before_cancel():
    snapshot = _snapshot(ConversationState.CHECKOUT_ORDER_TYPE)

    (message,) = render(ConversationState.CHECKOUT_ORDER_TYPE, snapshot, _config())

    assert [reply.payload for reply in message.quick_replies[-2:]] == ["VIEW_CART", "CANCEL_CHECKOUT"]
