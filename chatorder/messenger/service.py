from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chatorder.core.config import FACEBOOK_PAGE_ACCESS_TOKEN, FACEBOOK_VERIFY_TOKEN, IS_DEV, MESSENGER_USE_MOCK
from chatorder.messenger.base import MessengerProvider, OutboundMessage, SendResult, safe_json, sanitize_payload
from chatorder.messenger.graph_provider import GraphMessengerProvider, build_send_body
from chatorder.messenger.mock_provider import MockMessengerProvider
from chatorder.models.messenger_config import MessengerConfig
from chatorder.models.messenger_message_log import MessengerMessageLog

logger = logging.getLogger(__name__)


@dataclass
class MessengerSettings:
    tenant_id: str
    page_id: str | None = None
    page_access_token: str | None = None
    verify_token: str | None = None
    is_enabled: bool = True


class MessengerService:
    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        provider: MessengerProvider | None = None,
        verify_token: str = FACEBOOK_VERIFY_TOKEN,
        page_access_token: str = FACEBOOK_PAGE_ACCESS_TOKEN,
    ) -> None:
        self._session_factory = session_factory
        self._forced_provider = provider
        self._default_verify_token = verify_token
        self._default_page_token = page_access_token
        self._mock_provider = MockMessengerProvider()
        self._graph_provider = GraphMessengerProvider()

    def get_settings(self, tenant_id: str) -> MessengerSettings | None:
        if self._session_factory is None:
            return None
        with self._session_factory() as db:
            config = db.query(MessengerConfig).filter(MessengerConfig.tenant_id == tenant_id).first()
            if config is None:
                return None
            return MessengerSettings(
                tenant_id=config.tenant_id,
                page_id=config.page_id,
                page_access_token=config.page_access_token,
                verify_token=config.verify_token,
                is_enabled=bool(config.is_enabled),
            )

    def verify_token_for(self, tenant_id: str) -> str:
        settings = self.get_settings(tenant_id)
        if settings and settings.verify_token:
            return settings.verify_token
        return self._default_verify_token

    def page_token_for(self, settings: MessengerSettings | None) -> str | None:
        if settings and settings.page_access_token:
            return settings.page_access_token
        return self._default_page_token or None

    def _select_provider(self, settings: MessengerSettings | None, page_token: str | None) -> MessengerProvider:
        if self._forced_provider is not None:
            return self._forced_provider
        if MESSENGER_USE_MOCK:
            return self._mock_provider
        if settings is not None and not settings.is_enabled:
            return self._mock_provider
        if not page_token and IS_DEV:
            return self._mock_provider
        return self._graph_provider

    def _should_fallback(self) -> bool:
        return IS_DEV

    def send(self, *, tenant_id: str, recipient_id: str, message: OutboundMessage) -> SendResult:
        settings = self.get_settings(tenant_id)
        page_token = self.page_token_for(settings)
        provider = self._select_provider(settings, page_token)
        if provider is self._mock_provider and self._forced_provider is None:
            logger.info("messenger mock provider in use", extra={"tenant_id": tenant_id})
        result = provider.send(
            tenant_id=tenant_id,
            page_access_token=page_token,
            recipient_id=recipient_id,
            message=message,
        )
        if provider is self._graph_provider and result.status == "fatal_error" and self._should_fallback():
            logger.warning("messenger graph send failed, using mock", extra={"tenant_id": tenant_id})
            result = self._mock_provider.send(
                tenant_id=tenant_id,
                page_access_token=page_token,
                recipient_id=recipient_id,
                message=message,
            )
        self._log(
            tenant_id=tenant_id,
            direction="out",
            sender_id=settings.page_id if settings else None,
            recipient_id=recipient_id,
            message_type=message.kind,
            payload=build_send_body(recipient_id, message),
            status="sent" if result.ok else result.status,
            error=result.error,
            provider_message_id=result.provider_message_id,
        )
        return result

    def log_inbound(
        self,
        *,
        tenant_id: str,
        sender_id: str,
        recipient_id: str | None,
        message_type: str,
        payload: dict[str, Any],
        provider_message_id: str | None = None,
    ) -> None:
        self._log(
            tenant_id=tenant_id,
            direction="in",
            sender_id=sender_id,
            recipient_id=recipient_id,
            message_type=message_type,
            payload=payload,
            status="received",
            error=None,
            provider_message_id=provider_message_id,
        )

    def _log(
        self,
        *,
        tenant_id: str,
        direction: str,
        sender_id: str | None,
        recipient_id: str | None,
        message_type: str,
        payload: dict[str, Any],
        status: str,
        error: str | None,
        provider_message_id: str | None,
    ) -> None:
        if self._session_factory is None:
            return
        entry = MessengerMessageLog(
            tenant_id=tenant_id,
            direction=direction,
            sender_id=sender_id,
            recipient_id=recipient_id,
            message_type=message_type,
            payload_json=safe_json(sanitize_payload(payload)),
            status=status,
            error=error,
            provider_message_id=provider_message_id,
        )
        try:
            with self._session_factory() as db:
                db.add(entry)
                db.commit()
        except SQLAlchemyError:
            # best effort
            logger.exception("failed to write messenger message log", extra={"tenant_id": tenant_id})
