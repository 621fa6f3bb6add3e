from datetime import timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chatorder import models  # noqa: F401
from chatorder.core.database import Base
from chatorder.messenger.base import OutboundMessage, QuickReply, SendResult
from chatorder.messenger.service import MessengerService
from chatorder.services.dispatcher import MessageDispatcher, TenantSendThrottle
from chatorder.services.pending_outbox import InMemoryPendingOutbox, SqlPendingOutbox
from tests.fixtures_data import NOW, SENDER_ID, TENANT_ID


class ScriptedProvider:
    name = "scripted"

    def __init__(self, *statuses, retry_after=None):
        self.statuses = list(statuses)
        self.retry_after = retry_after
        self.sent = []

    def send(self, *, tenant_id, page_access_token, recipient_id, message):
        status = self.statuses.pop(0) if self.statuses else "ok"
        self.sent.append((message.text, status))
        return SendResult(
            status=status,
            provider_message_id="mid" if status == "ok" else None,
            error=None if status == "ok" else status,
            retry_after_seconds=self.retry_after if status == "rate_limited" else None,
        )


def _messages(*texts):
    return [OutboundMessage(text=text) for text in texts]


def _build(provider, outbox=None, throttle=None, **kwargs):
    sleeps = []
    dispatcher = MessageDispatcher(
        MessengerService(provider=provider),
        outbox or InMemoryPendingOutbox(),
        throttle=throttle or TenantSendThrottle(threshold=10),
        sleep=sleeps.append,
        **kwargs,
    )
    return dispatcher, sleeps


def _dispatch(dispatcher, messages, last_inbound_at=NOW):
    return dispatcher.dispatch(
        tenant_id=TENANT_ID,
        recipient_id=SENDER_ID,
        messages=messages,
        last_inbound_at=last_inbound_at,
        now=NOW,
    )


def test_messages_are_sent_in_order():
    provider = ScriptedProvider()
    dispatcher, sleeps = _build(provider)

    report = _dispatch(dispatcher, _messages("one", "two", "three"))

    assert report.sent == 3
    assert [text for text, _ in provider.sent] == ["one", "two", "three"]
    assert sleeps == []


def test_retryable_errors_back_off_exponentially():
    provider = ScriptedProvider("retryable_error", "retryable_error", "ok")
    dispatcher, sleeps = _build(provider, max_attempts=3)

    report = _dispatch(dispatcher, _messages("hello"))

    assert report.sent == 1
    assert sleeps == [1.0, 2.0]


def test_backoff_is_capped():
    provider = ScriptedProvider(*(["retryable_error"] * 5), "ok")
    dispatcher, sleeps = _build(provider, max_attempts=6, max_backoff_seconds=4.0)

    _dispatch(dispatcher, _messages("hello"))

    assert sleeps == [1.0, 2.0, 4.0, 4.0, 4.0]


def test_rate_limit_honors_retry_after():
    provider = ScriptedProvider("rate_limited", "ok", retry_after=3)
    dispatcher, sleeps = _build(provider)

    _dispatch(dispatcher, _messages("hello"))

    assert sleeps == [3.0]


def test_rate_limit_without_retry_after_uses_cooldown():
    provider = ScriptedProvider("rate_limited", "ok")
    dispatcher, sleeps = _build(provider, rate_limit_cooldown_seconds=2.5)

    _dispatch(dispatcher, _messages("hello"))

    assert sleeps == [2.5]


def test_fatal_error_is_not_retried_and_later_messages_still_go_out():
    provider = ScriptedProvider("fatal_error", "ok")
    outbox = InMemoryPendingOutbox()
    dispatcher, sleeps = _build(provider, outbox=outbox)

    report = _dispatch(dispatcher, _messages("broken", "fine"))

    assert report.failed == 1
    assert report.sent == 1
    assert sleeps == []
    assert outbox.pending_for(TENANT_ID, SENDER_ID) == []


def test_exhausted_retries_park_message_and_everything_after_it():
    provider = ScriptedProvider("retryable_error", "retryable_error", "retryable_error")
    outbox = InMemoryPendingOutbox()
    dispatcher, _ = _build(provider, outbox=outbox, max_attempts=3)

    report = _dispatch(dispatcher, _messages("first", "second"))

    pending = outbox.pending_for(TENANT_ID, SENDER_ID)
    assert report.deferred == 2
    assert [item.message.text for item in pending] == ["first", "second"]
    assert [item.reason for item in pending] == ["retry_exhausted", "retry_exhausted"]
    assert len(provider.sent) == 3


def test_window_closed_response_defers_without_retry():
    provider = ScriptedProvider("window_closed")
    outbox = InMemoryPendingOutbox()
    dispatcher, sleeps = _build(provider, outbox=outbox)

    report = _dispatch(dispatcher, _messages("late", "later"))

    assert report.deferred == 2
    assert sleeps == []
    assert outbox.pending_for(TENANT_ID, SENDER_ID)[0].reason == "window_closed"


def test_messages_outside_reactive_window_are_not_sent():
    provider = ScriptedProvider()
    outbox = InMemoryPendingOutbox()
    dispatcher, _ = _build(provider, outbox=outbox, reactive_window=timedelta(hours=24))

    report = _dispatch(dispatcher, _messages("hello"), last_inbound_at=NOW - timedelta(hours=25))

    assert report.deferred == 1
    assert provider.sent == []
    assert outbox.pending_for(TENANT_ID, SENDER_ID)[0].reason == "outside_window"


def test_window_boundary_is_inclusive():
    dispatcher, _ = _build(ScriptedProvider(), reactive_window=timedelta(hours=24))

    assert dispatcher.in_reactive_window(NOW - timedelta(hours=24), NOW) is True
    assert dispatcher.in_reactive_window(NOW - timedelta(hours=24, seconds=1), NOW) is False
    assert dispatcher.in_reactive_window(None, NOW) is False


def test_flush_sends_pending_in_order_and_stops_at_first_failure():
    outbox = InMemoryPendingOutbox()
    for text in ("a", "b", "c"):
        outbox.enqueue(tenant_id=TENANT_ID, recipient_id=SENDER_ID, message=OutboundMessage(text=text), reason="outside_window")
    provider = ScriptedProvider("ok", "window_closed")
    dispatcher, _ = _build(provider, outbox=outbox)

    report = dispatcher.flush_pending(tenant_id=TENANT_ID, recipient_id=SENDER_ID)

    remaining = outbox.pending_for(TENANT_ID, SENDER_ID)
    assert report.sent == 1
    assert [item.message.text for item in remaining] == ["b", "c"]
    assert remaining[0].attempts == 1
    assert remaining[0].last_error == "window_closed"


def test_flush_drops_messages_that_fail_permanently():
    outbox = InMemoryPendingOutbox()
    outbox.enqueue(tenant_id=TENANT_ID, recipient_id=SENDER_ID, message=OutboundMessage(text="bad"), reason="window_closed")
    outbox.enqueue(tenant_id=TENANT_ID, recipient_id=SENDER_ID, message=OutboundMessage(text="good"), reason="window_closed")
    dispatcher, _ = _build(ScriptedProvider("fatal_error", "ok"), outbox=outbox)

    report = dispatcher.flush_pending(tenant_id=TENANT_ID, recipient_id=SENDER_ID)

    assert report.failed == 1
    assert report.sent == 1
    assert outbox.pending_for(TENANT_ID, SENDER_ID) == []


def test_tenant_throttle_delays_after_repeated_failures():
    throttle = TenantSendThrottle(threshold=2, max_delay_seconds=8.0)
    provider = ScriptedProvider("retryable_error", "retryable_error", "ok")
    dispatcher, sleeps = _build(provider, throttle=throttle, max_attempts=3)

    _dispatch(dispatcher, _messages("hello"))

    # retry delays 1 and 2, with a tenant throttle of 1 before the third attempt
    assert sleeps == [1.0, 2.0, 1.0]
    assert throttle.streak(TENANT_ID) == 0


def test_sql_outbox_round_trips_pending_messages():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    outbox = SqlPendingOutbox(sessionmaker(bind=engine, autocommit=False, autoflush=False))
    message = OutboundMessage(text="Pick one", quick_replies=[QuickReply(title="Pizza", payload="CATEGORY:pizza")])

    first = outbox.enqueue(tenant_id=TENANT_ID, recipient_id=SENDER_ID, message=message, reason="outside_window")
    outbox.enqueue(tenant_id=TENANT_ID, recipient_id=SENDER_ID, message=OutboundMessage(text="next"), reason="outside_window")
    outbox.record_attempt(first.id, "window_closed")

    pending = outbox.pending_for(TENANT_ID, SENDER_ID)
    assert pending[0].message == message
    assert pending[0].attempts == 1
    assert pending[1].message.text == "next"

    outbox.remove(first.id)
    assert [item.message.text for item in outbox.pending_for(TENANT_ID, SENDER_ID)] == ["next"]


def test_new_replies_queue_behind_messages_still_pending():
    outbox = InMemoryPendingOutbox()
    outbox.enqueue(tenant_id=TENANT_ID, recipient_id=SENDER_ID, message=OutboundMessage(text="first"), reason="retry_exhausted")
    provider = ScriptedProvider("rate_limited", "rate_limited", "rate_limited")
    dispatcher, _ = _build(provider, outbox=outbox, max_attempts=3)

    flushed = dispatcher.flush_pending(tenant_id=TENANT_ID, recipient_id=SENDER_ID)
    report = _dispatch(dispatcher, _messages("second"))

    assert flushed.deferred == 1
    assert report.sent == 0
    assert report.deferred == 1
    assert [text for text, status in provider.sent if status == "ok"] == []
    pending = outbox.pending_for(TENANT_ID, SENDER_ID)
    assert [item.message.text for item in pending] == ["first", "second"]
    assert pending[1].reason == "behind_pending"


def test_retry_after_beyond_backoff_cap_parks_message():
    provider = ScriptedProvider("rate_limited", retry_after=60)
    outbox = InMemoryPendingOutbox()
    dispatcher, sleeps = _build(provider, outbox=outbox, max_backoff_seconds=8.0)

    report = _dispatch(dispatcher, _messages("hello", "again"))

    assert sleeps == []
    assert len(provider.sent) == 1
    assert report.deferred == 2
    assert [item.reason for item in outbox.pending_for(TENANT_ID, SENDER_ID)] == ["rate_limited", "rate_limited"]
