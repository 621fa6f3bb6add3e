from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from chatorder.core.config import FACEBOOK_APP_SECRET
from chatorder.core.errors import VersionConflict
from chatorder.core.metrics import WebhookOutcomeCounters, webhook_outcomes
from chatorder.core.request_context import clear_event_context, set_request_context
from chatorder.fsm.events import InboundEvent, LocationAttachment, QuickReplyOrButton
from chatorder.messenger.parser import ParsedEvent, parse_messenger_webhook
from chatorder.messenger.service import MessengerService
from chatorder.messenger.signature import SIGNATURE_HEADER, verify_signature
from chatorder.services.conversation import ConversationService

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def _message_type(parsed: ParsedEvent) -> str:
    if isinstance(parsed.event, QuickReplyOrButton):
        return "postback"
    if isinstance(parsed.event, LocationAttachment):
        return "location"
    return "text"


@dataclass
class IngestResult:
    status: str
    processed: int = 0
    duplicates: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "processed": self.processed,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class WebhookGateway:
    """Turns raw Messenger webhook deliveries into per-sender conversation events.

    ``ingest`` never raises: every failure is logged and the delivery is still
    acknowledged so the platform does not redeliver in a loop.
    """

    def __init__(
        self,
        conversation: ConversationService,
        messenger: MessengerService | None = None,
        *,
        app_secret: str = FACEBOOK_APP_SECRET,
        counters: WebhookOutcomeCounters = webhook_outcomes,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.conversation = conversation
        self.messenger = messenger
        self.app_secret = app_secret
        self.counters = counters
        self.clock = clock

    def ingest(self, tenant_id: str, raw_body: bytes, headers: Mapping[str, str]) -> IngestResult:
        set_request_context(tenant_id=tenant_id)
        if self.app_secret:
            if not verify_signature(raw_body, _header(headers, SIGNATURE_HEADER), self.app_secret):
                logger.warning("invalid webhook signature; delivery dropped", extra={"outcome": "invalid_signature"})
                self.counters.incr("invalid_signature", tenant_id=tenant_id)
                return IngestResult(status="invalid_signature")
        else:
            logger.warning("FACEBOOK_APP_SECRET not set; webhook signature not verified")

        try:
            payload = json.loads(raw_body or b"{}")
        except (ValueError, UnicodeDecodeError):
            logger.warning("malformed webhook body ignored", extra={"outcome": "ignored"})
            self.counters.incr("malformed", tenant_id=tenant_id)
            return IngestResult(status="ignored")
        if not isinstance(payload, dict) or payload.get("object") != "page":
            logger.info("non-page webhook object ignored", extra={"outcome": "ignored"})
            return IngestResult(status="ignored")

        try:
            parsed_events = parse_messenger_webhook(payload)
        except (AttributeError, TypeError, ValueError):
            logger.warning("unparseable webhook body ignored", exc_info=True, extra={"outcome": "ignored"})
            self.counters.incr("malformed", tenant_id=tenant_id)
            return IngestResult(status="ignored")

        result = IngestResult(status="ok")
        for parsed in parsed_events:
            set_request_context(sender_id=parsed.sender_id, event_id=parsed.event_id)
            try:
                self._ingest_event(tenant_id, parsed, result)
            except Exception:
                logger.exception("webhook event processing failed", extra={"outcome": "failed"})
                self.counters.incr("failed", tenant_id=tenant_id)
                result.failed += 1
            finally:
                clear_event_context()
        return result

    def _ingest_event(self, tenant_id: str, parsed: ParsedEvent, result: IngestResult) -> None:
        if parsed.skip_reason is not None:
            if parsed.skip_reason == "echo":
                logger.debug("echo event dropped")
            else:
                logger.warning("unsupported messenger event dropped: %s", parsed.skip_reason)
            self.counters.incr(parsed.skip_reason, tenant_id=tenant_id)
            result.skipped += 1
            return

        if self.messenger is not None:
            self.messenger.log_inbound(
                tenant_id=tenant_id,
                sender_id=parsed.sender_id,
                recipient_id=parsed.recipient_id,
                message_type=_message_type(parsed),
                payload={"event_id": parsed.event_id, "event": repr(parsed.event)},
                provider_message_id=parsed.event_id,
            )

        try:
            handled = self.conversation.handle_event(
                InboundEvent(
                    tenant_id=tenant_id,
                    sender_id=parsed.sender_id,
                    event_id=parsed.event_id,
                    event=parsed.event,
                    received_at=self.clock(),
                )
            )
        except VersionConflict as exc:
            # not marked processed, so a redelivery is applied again
            logger.error("%s; event dropped", exc, extra={"outcome": "conflict"})
            self.counters.incr("conflict", tenant_id=tenant_id)
            result.failed += 1
            return
        self.counters.incr(handled.outcome, tenant_id=tenant_id)
        if handled.outcome == "duplicate":
            result.duplicates += 1
        else:
            result.processed += 1
