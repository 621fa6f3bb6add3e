import json

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chatorder import models  # noqa: F401
from chatorder.core.database import Base
from chatorder.messenger.base import OutboundMessage, SendResult
from chatorder.messenger.service import MessengerService
from chatorder.models.messenger_config import MessengerConfig
from chatorder.models.messenger_message_log import MessengerMessageLog


class RecordingProvider:
    name = "recording"

    def __init__(self, status="ok"):
        self.status = status
        self.tokens = []

    def send(self, *, tenant_id, page_access_token, recipient_id, message):
        self.tokens.append(page_access_token)
        return SendResult(status=self.status, provider_message_id="mid.1" if self.status == "ok" else None)


def _session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def test_tenant_settings_override_defaults():
    session_factory = _session_factory()
    with session_factory() as db:
        db.add(MessengerConfig(tenant_id="t1", page_id="page-1", page_access_token="EAAtenant", verify_token="tenant-vt"))
        db.commit()
    provider = RecordingProvider()
    service = MessengerService(session_factory, provider=provider, verify_token="global-vt", page_access_token="EAAglobal")

    service.send(tenant_id="t1", recipient_id="psid", message=OutboundMessage(text="hi"))
    service.send(tenant_id="t2", recipient_id="psid", message=OutboundMessage(text="hi"))

    assert service.verify_token_for("t1") == "tenant-vt"
    assert service.verify_token_for("t2") == "global-vt"
    assert provider.tokens == ["EAAtenant", "EAAglobal"]


def test_sends_and_inbound_events_are_logged_without_tokens():
    session_factory = _session_factory()
    service = MessengerService(session_factory, provider=RecordingProvider())

    service.log_inbound(
        tenant_id="t1",
        sender_id="psid",
        recipient_id="page-1",
        message_type="text",
        payload={"event_id": "m-1", "access_token": "EAAsecret99"},
        provider_message_id="m-1",
    )
    service.send(tenant_id="t1", recipient_id="psid", message=OutboundMessage(text="hello"))

    with session_factory() as db:
        rows = db.query(MessengerMessageLog).order_by(MessengerMessageLog.id).all()

    assert [(row.direction, row.status) for row in rows] == [("in", "received"), ("out", "sent")]
    assert json.loads(rows[0].payload_json)["access_token"] == "****et99"
    assert json.loads(rows[1].payload_json)["message"] == {"text": "hello"}
    assert rows[1].provider_message_id == "mid.1"


def test_failed_send_is_logged_with_status():
    session_factory = _session_factory()
    service = MessengerService(session_factory, provider=RecordingProvider(status="fatal_error"))

    result = service.send(tenant_id="t1", recipient_id="psid", message=OutboundMessage(text="hello"))

    with session_factory() as db:
        row = db.query(MessengerMessageLog).one()
    assert result.ok is False
    assert row.status == "fatal_error"
