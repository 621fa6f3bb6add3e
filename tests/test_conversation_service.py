from datetime import timedelta
from itertools import count

import pytest

from chatorder.core.errors import QuoteError, VersionConflict
from chatorder.core.locks import KeyedLockRegistry
from chatorder.fsm.events import InboundEvent, LocationAttachment, QuickReplyOrButton, TextMessage
from chatorder.fsm.states import ConversationState
from chatorder.messenger.mock_provider import MockMessengerProvider
from chatorder.messenger.service import MessengerService
from chatorder.services.checkout import CheckoutOrchestrator
from chatorder.services.conversation import ConversationService
from chatorder.services.delivery import DeliveryQuote
from chatorder.services.dispatcher import MessageDispatcher, TenantSendThrottle
from chatorder.services.order_ledger import InMemoryOrderLedger
from chatorder.services.pending_outbox import InMemoryPendingOutbox
from chatorder.services.session_store import InMemorySessionStore
from chatorder.services.tenant_config import StaticTenantConfigProvider
from tests.fixtures_data import NOW, PICKUP_CHECKOUT_STEPS, PIZZA_SELECTION_PAYLOADS, SENDER_ID, TENANT_ID, TENANTS

State = ConversationState


class FlakyStore(InMemorySessionStore):
    def __init__(self, failures):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def compare_and_swap(self, snapshot, expected_version, *, processed_event_id=None):
        self.attempts += 1
        if self.attempts <= self.failures:
            return False
        return super().compare_and_swap(snapshot, expected_version, processed_event_id=processed_event_id)


class FakeQuoteProvider:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def quote(self, *, tenant_id, pickup, dropoff):
        self.calls.append((pickup, dropoff))
        if self.error:
            raise self.error
        return DeliveryQuote(fee_cents=4900, quote_ref="q-1", currency="PHP", expires_at=NOW + timedelta(minutes=5))


class FakeRegistry:
    def __init__(self, provider):
        self.provider = provider

    def for_tenant(self, tenant_id):
        return self.provider


def _build_service(store=None, delivery_providers=None, max_cas_retries=3):
    provider = MockMessengerProvider()
    ledger = InMemoryOrderLedger()
    outbox = InMemoryPendingOutbox()
    dispatcher = MessageDispatcher(
        MessengerService(provider=provider),
        outbox,
        throttle=TenantSendThrottle(),
        sleep=lambda _seconds: None,
    )
    service = ConversationService(
        store=store or InMemorySessionStore(),
        config_provider=StaticTenantConfigProvider(TENANTS),
        orchestrator=CheckoutOrchestrator(ledger),
        dispatcher=dispatcher,
        delivery_providers=delivery_providers,
        locks=KeyedLockRegistry(),
        clock=lambda: NOW,
        max_cas_retries=max_cas_retries,
    )
    return service, provider, ledger, outbox


_ids = count(1)


def _inbound(event, event_id=None, received_at=NOW):
    return InboundEvent(
        tenant_id=TENANT_ID,
        sender_id=SENDER_ID,
        event_id=event_id or f"mid-{next(_ids)}",
        event=event,
        received_at=received_at,
    )


def _tap(payload):
    return QuickReplyOrButton(payload=payload)


def _send_all(service, events):
    result = None
    for event in events:
        result = service.handle_event(_inbound(event))
    return result


def _pickup_events():
    events = [_tap(raw) for raw in PIZZA_SELECTION_PAYLOADS]
    for kind, value in PICKUP_CHECKOUT_STEPS:
        events.append(_tap(value) if kind == "payload" else TextMessage(text=value))
    return events


def _delivery_events():
    return [
        *[_tap(raw) for raw in PIZZA_SELECTION_PAYLOADS],
        _tap("CHECKOUT"),
        _tap("ORDER_TYPE:delivery"),
        TextMessage(text="Maria"),
        TextMessage(text="09171234567"),
        LocationAttachment(latitude=14.55, longitude=121.02, title="Home"),
    ]


def test_full_pickup_conversation_places_one_order():
    service, provider, ledger, _ = _build_service()

    at_confirm = _send_all(service, _pickup_events())
    confirmed = service.handle_event(_inbound(TextMessage(text="confirm"), event_id="mid-confirm"))

    assert at_confirm.state == State.CHECKOUT_CONFIRM
    assert confirmed.outcome == "processed"
    assert confirmed.state == State.ORDER_CONFIRMED
    assert len(ledger.orders) == 1
    receipt = confirmed.messages[0].text
    assert "Order #M000001" in receipt
    assert "Total: ₱540.00" in receipt
    assert provider.messages_for(SENDER_ID)[-1].text.startswith("Thank you! Your order #M000001")
    assert confirmed.dispatch.sent == len(confirmed.messages)


def test_redelivered_event_is_ignored():
    service, provider, ledger, _ = _build_service()
    _send_all(service, _pickup_events())
    service.handle_event(_inbound(TextMessage(text="confirm"), event_id="mid-confirm"))
    sent_before = len(provider.sent)

    duplicate = service.handle_event(_inbound(TextMessage(text="confirm"), event_id="mid-confirm"))

    assert duplicate.outcome == "duplicate"
    assert duplicate.messages == []
    assert len(provider.sent) == sent_before
    assert len(ledger.orders) == 1


def test_second_confirm_after_order_does_not_create_another_order():
    service, _, ledger, _ = _build_service()
    _send_all(service, _pickup_events())
    service.handle_event(_inbound(TextMessage(text="confirm")))

    again = service.handle_event(_inbound(_tap("CONFIRM_ORDER")))

    assert again.outcome == "not_understood"
    assert again.state == State.ORDER_CONFIRMED
    assert len(ledger.orders) == 1


def test_unknown_input_replies_with_current_prompt():
    service, _, _, _ = _build_service()
    service.handle_event(_inbound(_tap("CATEGORY:pizza")))

    result = service.handle_event(_inbound(TextMessage(text="asdfgh")))

    assert result.outcome == "not_understood"
    assert result.state == State.SELECTING_ITEM
    assert result.messages[0].text.startswith("Sorry, I didn't understand")
    assert result.messages[1].kind == "generic"


def test_version_conflict_is_retried_by_reapplying_the_event():
    store = FlakyStore(failures=1)
    service, _, _, _ = _build_service(store=store)

    result = service.handle_event(_inbound(_tap("CATEGORY:pizza")))

    assert result.outcome == "processed"
    assert store.attempts == 2
    assert store.load(TENANT_ID, SENDER_ID, now=NOW).state == State.SELECTING_ITEM


def test_exhausted_conflicts_raise_without_replying():
    store = FlakyStore(failures=10)
    service, provider, _, _ = _build_service(store=store, max_cas_retries=2)

    with pytest.raises(VersionConflict):
        service.handle_event(_inbound(_tap("CATEGORY:pizza"), event_id="mid-conflict"))

    assert store.attempts == 3
    assert provider.sent == []
    assert store.is_processed(TENANT_ID, SENDER_ID, "mid-conflict") is False


def test_delivery_quote_is_requested_with_pickup_and_dropoff():
    quote_provider = FakeQuoteProvider()
    service, _, _, _ = _build_service(delivery_providers=FakeRegistry(quote_provider))

    result = _send_all(service, _delivery_events())

    assert result.state == State.CHECKOUT_CONFIRM
    pickup, dropoff = quote_provider.calls[0]
    assert (pickup.latitude, pickup.longitude) == (14.5995, 120.9842)
    assert (dropoff.latitude, dropoff.longitude) == (14.55, 121.02)
    assert any("Delivery fee: ₱49.00" in (message.text or "") for message in result.messages)


def test_failed_quote_offers_fee_later_options():
    quote_provider = FakeQuoteProvider(error=QuoteError("upstream 503", retryable=True))
    service, _, _, _ = _build_service(delivery_providers=FakeRegistry(quote_provider))

    result = _send_all(service, _delivery_events())

    assert result.state == State.CHECKOUT_PAYMENT
    payloads = [reply.payload for reply in result.messages[-1].quick_replies]
    assert "PAYMENT_NO_QUOTE:cod" in payloads


def test_delivery_without_provider_falls_back_to_payment():
    service, _, _, _ = _build_service()

    result = _send_all(service, _delivery_events())

    assert result.state == State.CHECKOUT_PAYMENT
    assert service.store.load(TENANT_ID, SENDER_ID, now=NOW).checkout.quote_failed is True


def test_replies_outside_reactive_window_wait_for_next_message():
    service, provider, _, outbox = _build_service()

    stale = service.handle_event(_inbound(_tap("CATEGORY:pizza"), received_at=NOW - timedelta(days=2)))

    assert stale.dispatch.sent == 0
    assert stale.dispatch.deferred == len(stale.messages)
    assert provider.sent == []
    assert len(outbox.pending_for(TENANT_ID, SENDER_ID)) == len(stale.messages)

    fresh = service.handle_event(_inbound(TextMessage(text="cart")))

    assert outbox.pending_for(TENANT_ID, SENDER_ID) == []
    assert fresh.dispatch.sent == len(stale.messages) + len(fresh.messages)
    assert [message for _, message in provider.sent][: len(stale.messages)] == stale.messages
