from __future__ import annotations

from functools import lru_cache

from chatorder.core.database import SessionLocal
from chatorder.messenger.service import MessengerService
from chatorder.services.checkout import CheckoutOrchestrator
from chatorder.services.conversation import ConversationService
from chatorder.services.delivery import SqlDeliveryProviderRegistry
from chatorder.services.dispatcher import MessageDispatcher
from chatorder.services.order_ledger import SqlOrderLedger
from chatorder.services.pending_outbox import SqlPendingOutbox
from chatorder.services.session_store import SqlSessionStore
from chatorder.services.tenant_config import SqlTenantConfigProvider
from chatorder.services.webhook_gateway import WebhookGateway


@lru_cache
def get_messenger_service() -> MessengerService:
    return MessengerService(SessionLocal)


@lru_cache
def get_delivery_registry() -> SqlDeliveryProviderRegistry:
    return SqlDeliveryProviderRegistry(SessionLocal)


def _build_conversation_service(*, with_dispatcher: bool) -> ConversationService:
    delivery_registry = get_delivery_registry()
    dispatcher = None
    if with_dispatcher:
        dispatcher = MessageDispatcher(get_messenger_service(), SqlPendingOutbox(SessionLocal))
    return ConversationService(
        store=SqlSessionStore(SessionLocal),
        config_provider=SqlTenantConfigProvider(SessionLocal),
        orchestrator=CheckoutOrchestrator(SqlOrderLedger(SessionLocal), delivery_registry),
        dispatcher=dispatcher,
        delivery_providers=delivery_registry,
    )


@lru_cache
def get_conversation_service() -> ConversationService:
    return _build_conversation_service(with_dispatcher=True)


@lru_cache
def get_simulator_service() -> ConversationService:
    """Same engine and storage as the webhook, but replies are returned instead of sent."""
    return _build_conversation_service(with_dispatcher=False)


@lru_cache
def get_webhook_gateway() -> WebhookGateway:
    return WebhookGateway(get_conversation_service(), get_messenger_service())
