from __future__ import annotations

import logging
import uuid
from threading import Lock

from chatorder.messenger.base import OutboundMessage, SendResult

logger = logging.getLogger(__name__)


class MockMessengerProvider:
    """Records messages instead of calling the Send API (dev and simulator)."""

    name = "mock"

    def __init__(self) -> None:
        self.sent: list[tuple[str, OutboundMessage]] = []
        self._lock = Lock()

    def send(
        self,
        *,
        tenant_id: str,
        page_access_token: str | None,
        recipient_id: str,
        message: OutboundMessage,
    ) -> SendResult:
        with self._lock:
            self.sent.append((recipient_id, message))
        message_id = f"mock-{uuid.uuid4()}"
        logger.info("mock messenger send recipient=%s preview=%s", recipient_id, message.preview()[:80])
        return SendResult(status="ok", provider_message_id=message_id)

    def messages_for(self, recipient_id: str) -> list[OutboundMessage]:
        with self._lock:
            return [message for recipient, message in self.sent if recipient == recipient_id]
