from datetime import timedelta
from threading import Thread

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chatorder import models  # noqa: F401
from chatorder.core.database import Base
from chatorder.core.locks import KeyedLockRegistry
from chatorder.fsm.states import ConversationState
from chatorder.schemas.session import CartLine, Dropoff, PendingSelection, VariationChoice
from chatorder.services.session_store import InMemorySessionStore, SqlSessionStore
from tests.fixtures_data import NOW, SENDER_ID, TENANT_ID


def _sql_store(**kwargs):
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return SqlSessionStore(sessionmaker(bind=engine, autocommit=False, autoflush=False), **kwargs)


@pytest.fixture(params=["memory", "sql"])
def make_store(request):
    def factory(**kwargs):
        if request.param == "sql":
            return _sql_store(**kwargs)
        return InMemorySessionStore(**kwargs)

    return factory


def _populated(snapshot):
    snapshot.state = ConversationState.CHECKOUT_CUSTOMER
    snapshot.cart = [
        CartLine(
            menu_item_id="margherita",
            name="Margherita",
            base_price_cents=15000,
            variations=[
                VariationChoice(
                    group_id="size",
                    group_name="Size",
                    option_id="medium",
                    option_name="Medium",
                    price_modifier_cents=2000,
                )
            ],
            quantity=2,
        )
    ]
    snapshot.checkout.order_type_id = "delivery"
    snapshot.checkout.collected_fields = {"name": "Maria"}
    snapshot.checkout.current_field = "phone"
    snapshot.checkout.dropoff = Dropoff(address="Home", latitude=14.55, longitude=121.02)
    snapshot.pending_selection = PendingSelection(menu_item_id="cola", variations={"default": "large"})
    snapshot.last_inbound_at = NOW
    return snapshot


def test_load_returns_fresh_session_when_absent(make_store):
    store = make_store()

    snapshot = store.load(TENANT_ID, SENDER_ID, now=NOW)

    assert snapshot.state == ConversationState.MENU
    assert snapshot.cart == []
    assert snapshot.version == 0


def test_compare_and_swap_persists_and_bumps_version(make_store):
    store = make_store()
    snapshot = _populated(store.load(TENANT_ID, SENDER_ID, now=NOW))

    assert store.compare_and_swap(snapshot, 0) is True
    loaded = store.load(TENANT_ID, SENDER_ID, now=NOW)

    assert loaded.version == 1
    assert loaded.state == ConversationState.CHECKOUT_CUSTOMER
    assert loaded.cart == snapshot.cart
    assert loaded.checkout == snapshot.checkout
    assert loaded.pending_selection == snapshot.pending_selection
    assert loaded.last_inbound_at == NOW

    loaded.checkout.collected_fields["phone"] = "09171234567"
    assert store.compare_and_swap(loaded, 1) is True
    assert store.load(TENANT_ID, SENDER_ID, now=NOW).version == 2


def test_stale_version_is_rejected_without_writing(make_store):
    store = make_store()
    snapshot = store.load(TENANT_ID, SENDER_ID, now=NOW)
    assert store.compare_and_swap(snapshot, 0) is True

    first = store.load(TENANT_ID, SENDER_ID, now=NOW)
    second = store.load(TENANT_ID, SENDER_ID, now=NOW)
    first.browsing_category_id = "pizza"
    second.browsing_category_id = "drinks"

    assert store.compare_and_swap(first, 1) is True
    assert store.compare_and_swap(second, 1) is False
    assert store.compare_and_swap(second, 0) is False
    assert store.load(TENANT_ID, SENDER_ID, now=NOW).browsing_category_id == "pizza"


def test_processed_event_is_recorded_with_the_swap(make_store):
    store = make_store()
    snapshot = store.load(TENANT_ID, SENDER_ID, now=NOW)

    assert store.is_processed(TENANT_ID, SENDER_ID, "mid-1") is False
    assert store.compare_and_swap(snapshot, 0, processed_event_id="mid-1") is True
    assert store.is_processed(TENANT_ID, SENDER_ID, "mid-1") is True
    assert store.is_processed(TENANT_ID, "someone-else", "mid-1") is False

    again = store.load(TENANT_ID, SENDER_ID, now=NOW)
    again.browsing_category_id = "pizza"
    assert store.compare_and_swap(again, 1, processed_event_id="mid-1") is False
    reloaded = store.load(TENANT_ID, SENDER_ID, now=NOW)
    assert reloaded.version == 1
    assert reloaded.browsing_category_id is None


def test_expired_session_starts_over_but_keeps_version(make_store):
    store = make_store(ttl=timedelta(hours=24))
    snapshot = _populated(store.load(TENANT_ID, SENDER_ID, now=NOW))
    assert store.compare_and_swap(snapshot, 0) is True

    still_fresh = store.load(TENANT_ID, SENDER_ID, now=NOW + timedelta(hours=23))
    expired = store.load(TENANT_ID, SENDER_ID, now=NOW + timedelta(hours=25))

    assert still_fresh.state == ConversationState.CHECKOUT_CUSTOMER
    assert expired.state == ConversationState.MENU
    assert expired.cart == []
    assert expired.version == 1
    assert store.compare_and_swap(expired, expired.version) is True


def test_sessions_are_isolated_per_sender(make_store):
    store = make_store()
    snapshot = _populated(store.load(TENANT_ID, SENDER_ID, now=NOW))
    store.compare_and_swap(snapshot, 0)

    other = store.load(TENANT_ID, "psid-200", now=NOW)
    other_tenant = store.load("t2", SENDER_ID, now=NOW)

    assert other.cart == []
    assert other_tenant.cart == []


def test_loaded_snapshot_is_a_copy(make_store):
    store = make_store()
    snapshot = _populated(store.load(TENANT_ID, SENDER_ID, now=NOW))
    store.compare_and_swap(snapshot, 0)

    loaded = store.load(TENANT_ID, SENDER_ID, now=NOW)
    loaded.cart.clear()

    assert len(store.load(TENANT_ID, SENDER_ID, now=NOW).cart) == 1


def test_keyed_locks_serialize_same_sender_and_are_released():
    registry = KeyedLockRegistry()
    order = []

    def worker(label):
        with registry.hold(tenant_id=TENANT_ID, sender_id=SENDER_ID):
            order.append(f"{label}-start")
            order.append(f"{label}-end")

    threads = [Thread(target=worker, args=(label,)) for label in ("a", "b", "c")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for index in range(0, len(order), 2):
        assert order[index].split("-")[0] == order[index + 1].split("-")[0]
    assert registry.active_keys() == 0
