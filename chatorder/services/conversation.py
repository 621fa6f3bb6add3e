"""Imperative shell around the pure conversation state machine.

Per event: serialize on the sender, drop duplicates, run the transition,
execute its commands (delivery quote, order submission) and feed their outcomes
back in, persist with compare-and-swap, then send the rendered messages.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from chatorder.core.config import SESSION_CAS_MAX_RETRIES
from chatorder.core.errors import ChatOrderError, ConfigurationError, ExternalProviderError, VersionConflict
from chatorder.core.locks import KeyedLockRegistry, sender_locks
from chatorder.fsm.engine import transition
from chatorder.fsm.events import (
    ConversationEvent,
    InboundEvent,
    OrderSubmissionFailed,
    OrderSubmitted,
    QuoteFailed,
    QuoteSucceeded,
)
from chatorder.fsm.intents import Command, Intent, RequestQuote, SubmitOrder
from chatorder.fsm.states import ConversationState
from chatorder.messenger.base import OutboundMessage
from chatorder.messenger.templates import render_intents
from chatorder.schemas.session import ConversationSnapshot
from chatorder.services.checkout import CheckoutOrchestrator
from chatorder.services.delivery import DeliveryProviderRegistry, Location
from chatorder.services.dispatcher import DispatchReport, MessageDispatcher
from chatorder.services.session_store import SessionStore
from chatorder.services.tenant_config import CachedTenantConfig, TenantConfigProvider

logger = logging.getLogger(__name__)

# a follow-up event may itself request at most one more side effect
MAX_COMMAND_ROUNDS = 4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class HandleResult:
    outcome: str
    state: ConversationState | None = None
    messages: list[OutboundMessage] = field(default_factory=list)
    dispatch: DispatchReport | None = None


@dataclass
class _Applied:
    snapshot: ConversationSnapshot
    intents: list[Intent]
    understood: bool


class ConversationService:
    def __init__(
        self,
        *,
        store: SessionStore,
        config_provider: TenantConfigProvider,
        orchestrator: CheckoutOrchestrator,
        dispatcher: MessageDispatcher | None = None,
        delivery_providers: DeliveryProviderRegistry | None = None,
        locks: KeyedLockRegistry = sender_locks,
        clock: Callable[[], datetime] = _utcnow,
        max_cas_retries: int = SESSION_CAS_MAX_RETRIES,
    ) -> None:
        self.store = store
        self.config_provider = config_provider
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher
        self.delivery_providers = delivery_providers
        self.locks = locks
        self.clock = clock
        self.max_cas_retries = max(0, max_cas_retries)

    def handle_event(self, inbound: InboundEvent) -> HandleResult:
        tenant_id, sender_id, event_id = inbound.tenant_id, inbound.sender_id, inbound.event_id
        with self.locks.hold(tenant_id=tenant_id, sender_id=sender_id):
            if self.store.is_processed(tenant_id, sender_id, event_id):
                logger.info("duplicate delivery ignored", extra={"outcome": "duplicate"})
                return HandleResult(outcome="duplicate")

            config = CachedTenantConfig(self.config_provider, tenant_id)
            applied: _Applied | None = None
            for attempt in range(self.max_cas_retries + 1):
                now = self.clock()
                current = self.store.load(tenant_id, sender_id, now=now)
                expected_version = current.version
                applied = self._apply(current, inbound, config, now)
                applied.snapshot.last_event_id = event_id
                applied.snapshot.last_inbound_at = inbound.received_at or now
                applied.snapshot.updated_at = now
                if self.store.compare_and_swap(applied.snapshot, expected_version, processed_event_id=event_id):
                    logger.info(
                        "event applied",
                        extra={
                            "state": current.state.value,
                            "next_state": applied.snapshot.state.value,
                            "outcome": "processed" if applied.understood else "not_understood",
                        },
                    )
                    break
                if self.store.is_processed(tenant_id, sender_id, event_id):
                    logger.info("duplicate delivery ignored after conflict", extra={"outcome": "duplicate"})
                    return HandleResult(outcome="duplicate")
                logger.warning(
                    "session version conflict, re-applying event",
                    extra={"attempt": attempt + 1, "state": current.state.value},
                )
            else:
                raise VersionConflict(tenant_id, sender_id, expected_version)

            snapshot = applied.snapshot
            messages = render_intents(applied.intents, snapshot, config)
            report = None
            if self.dispatcher is not None:
                report = self.dispatcher.flush_pending(tenant_id=tenant_id, recipient_id=sender_id)
                report.merge(
                    self.dispatcher.dispatch(
                        tenant_id=tenant_id,
                        recipient_id=sender_id,
                        messages=messages,
                        last_inbound_at=snapshot.last_inbound_at,
                        now=self.clock(),
                    )
                )
            return HandleResult(
                outcome="processed" if applied.understood else "not_understood",
                state=snapshot.state,
                messages=messages,
                dispatch=report,
            )

    def _apply(
        self,
        snapshot: ConversationSnapshot,
        inbound: InboundEvent,
        config: CachedTenantConfig,
        now: datetime,
    ) -> _Applied:
        step = transition(snapshot, inbound.event, config, now)
        intents: list[Intent] = list(step.intents)
        understood = step.understood
        pending: list[Command] = list(step.commands)
        current = step.snapshot
        rounds = 0
        while pending:
            rounds += 1
            if rounds > MAX_COMMAND_ROUNDS:
                logger.error("command chain too long; remaining commands dropped")
                break
            command = pending.pop(0)
            follow_up = self._execute(command, current, config)
            step = transition(current, follow_up, config, now)
            current = step.snapshot
            intents.extend(step.intents)
            pending.extend(step.commands)
        return _Applied(snapshot=current, intents=intents, understood=understood)

    def _execute(
        self, command: Command, snapshot: ConversationSnapshot, config: CachedTenantConfig
    ) -> ConversationEvent:
        if isinstance(command, RequestQuote):
            return self._request_quote(snapshot, config)
        if isinstance(command, SubmitOrder):
            return self._submit_order(snapshot, config, command.idempotency_key)
        raise TypeError(f"unknown command {command!r}")

    def _request_quote(self, snapshot: ConversationSnapshot, config: CachedTenantConfig) -> ConversationEvent:
        provider = self.delivery_providers.for_tenant(snapshot.tenant_id) if self.delivery_providers else None
        if provider is None:
            logger.warning("delivery quote requested without a delivery provider", extra={"integration": "delivery"})
            return QuoteFailed("delivery provider not configured")

        try:
            profile = config.profile()
        except ConfigurationError as exc:
            return QuoteFailed(str(exc))
        dropoff = snapshot.checkout.dropoff
        pickup = Location(address=profile.address, latitude=profile.latitude, longitude=profile.longitude)
        destination = Location(
            address=dropoff.address if dropoff else None,
            latitude=dropoff.latitude if dropoff else None,
            longitude=dropoff.longitude if dropoff else None,
        )
        try:
            quote = provider.quote(tenant_id=snapshot.tenant_id, pickup=pickup, dropoff=destination)
        except ExternalProviderError as exc:
            logger.warning(
                "delivery quote failed: %s",
                exc,
                extra={"integration": "delivery", "outcome": "retryable" if exc.retryable else "failed"},
            )
            return QuoteFailed(str(exc))
        return QuoteSucceeded(fee_cents=quote.fee_cents, quote_ref=quote.quote_ref, expires_at=quote.expires_at)

    def _submit_order(
        self, snapshot: ConversationSnapshot, config: CachedTenantConfig, idempotency_key: str
    ) -> ConversationEvent:
        try:
            order_ref = self.orchestrator.submit_order(snapshot, config, idempotency_key=idempotency_key)
        except ChatOrderError as exc:
            logger.warning("order submission failed: %s", exc, extra={"outcome": "submission_failed"})
            return OrderSubmissionFailed(str(exc))
        return OrderSubmitted(order_ref=order_ref.order_id, order_number=order_ref.order_number)
