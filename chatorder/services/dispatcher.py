from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable

from chatorder.core.config import (
    RATE_LIMIT_COOLDOWN_SECONDS,
    REACTIVE_WINDOW_HOURS,
    SEND_MAX_ATTEMPTS,
    SEND_MAX_BACKOFF_SECONDS,
    SEND_THROTTLE_THRESHOLD,
)
from chatorder.messenger.base import OutboundMessage, SendResult
from chatorder.messenger.service import MessengerService
from chatorder.services.pending_outbox import PendingOutbox
from chatorder.services.session_store import as_utc

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = {"retryable_error", "rate_limited"}
_DEFERRAL_REASONS = {"window_closed": "window_closed", "rate_limited": "rate_limited"}


class TenantSendThrottle:
    """Streak of retryable Send API failures per tenant.

    From ``threshold`` consecutive failures on, every send for that tenant waits
    1, 2, 4... seconds (capped) first, whichever customer it is addressed to.
    A delivered message ends the streak; permanent errors leave it alone.
    """

    def __init__(
        self, *, threshold: int = SEND_THROTTLE_THRESHOLD, max_delay_seconds: float = SEND_MAX_BACKOFF_SECONDS
    ) -> None:
        self.threshold = max(1, threshold)
        self.max_delay_seconds = max_delay_seconds
        self._streaks: dict[str, int] = {}
        self._lock = Lock()

    def streak(self, tenant_id: str) -> int:
        with self._lock:
            return self._streaks.get(tenant_id, 0)

    def delay_for(self, tenant_id: str) -> float:
        streak = self.streak(tenant_id)
        if streak < self.threshold:
            return 0.0
        return float(min(2 ** (streak - self.threshold), self.max_delay_seconds))

    def record(self, tenant_id: str, result: SendResult) -> int:
        with self._lock:
            if result.ok:
                self._streaks.pop(tenant_id, None)
                return 0
            streak = self._streaks.get(tenant_id, 0)
            if result.status in RETRYABLE_STATUSES:
                streak += 1
                self._streaks[tenant_id] = streak
            return streak


send_throttle = TenantSendThrottle()


@dataclass
class DispatchReport:
    sent: int = 0
    deferred: int = 0
    failed: int = 0
    results: list[SendResult] = field(default_factory=list)

    def merge(self, other: "DispatchReport") -> None:
        self.sent += other.sent
        self.deferred += other.deferred
        self.failed += other.failed
        self.results.extend(other.results)


class MessageDispatcher:
    """Sends rendered messages in order; anything that cannot go out now is parked
    in the pending outbox and retried on the sender's next inbound event."""

    def __init__(
        self,
        messenger: MessengerService,
        outbox: PendingOutbox,
        *,
        throttle: TenantSendThrottle = send_throttle,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: int = SEND_MAX_ATTEMPTS,
        max_backoff_seconds: float = SEND_MAX_BACKOFF_SECONDS,
        rate_limit_cooldown_seconds: float = RATE_LIMIT_COOLDOWN_SECONDS,
        reactive_window: timedelta | None = None,
    ) -> None:
        self.messenger = messenger
        self.outbox = outbox
        self.throttle = throttle
        self._sleep = sleep
        self.max_attempts = max(1, max_attempts)
        self.max_backoff_seconds = max_backoff_seconds
        self.rate_limit_cooldown_seconds = rate_limit_cooldown_seconds
        self.reactive_window = reactive_window or timedelta(hours=REACTIVE_WINDOW_HOURS)

    def in_reactive_window(self, last_inbound_at: datetime | None, now: datetime) -> bool:
        if last_inbound_at is None:
            return False
        return as_utc(now) - as_utc(last_inbound_at) <= self.reactive_window

    def dispatch(
        self,
        *,
        tenant_id: str,
        recipient_id: str,
        messages: list[OutboundMessage],
        last_inbound_at: datetime | None,
        now: datetime,
    ) -> DispatchReport:
        report = DispatchReport()
        in_window = self.in_reactive_window(last_inbound_at, now)
        deferring_reason: str | None = None
        if messages and self.outbox.pending_for(tenant_id, recipient_id):
            # older messages are still waiting; new ones go behind them
            deferring_reason = "behind_pending"

        for message in messages:
            if deferring_reason is None and message.requires_reactive_window and not in_window:
                deferring_reason = "outside_window"
            if deferring_reason is not None:
                self.outbox.enqueue(
                    tenant_id=tenant_id,
                    recipient_id=recipient_id,
                    message=message,
                    reason=deferring_reason,
                )
                report.deferred += 1
                continue

            result = self.send_with_retry(tenant_id=tenant_id, recipient_id=recipient_id, message=message)
            report.results.append(result)
            if result.ok:
                report.sent += 1
            elif result.status == "fatal_error":
                logger.error(
                    "messenger send failed permanently: %s",
                    result.error,
                    extra={"tenant_id": tenant_id, "sender_id": recipient_id, "outcome": result.status},
                )
                report.failed += 1
            else:
                # keep ordering: everything after an undeliverable message waits too
                deferring_reason = _DEFERRAL_REASONS.get(result.status, "retry_exhausted")
                self.outbox.enqueue(
                    tenant_id=tenant_id,
                    recipient_id=recipient_id,
                    message=message,
                    reason=deferring_reason,
                    error=result.error,
                )
                report.deferred += 1
        return report

    def flush_pending(self, *, tenant_id: str, recipient_id: str) -> DispatchReport:
        report = DispatchReport()
        for pending in self.outbox.pending_for(tenant_id, recipient_id):
            result = self.send_with_retry(tenant_id=tenant_id, recipient_id=recipient_id, message=pending.message)
            report.results.append(result)
            if result.ok:
                self.outbox.remove(pending.id)
                report.sent += 1
                continue
            if result.status == "fatal_error":
                logger.error(
                    "dropping pending outbound message id=%s: %s",
                    pending.id,
                    result.error,
                    extra={"tenant_id": tenant_id, "sender_id": recipient_id},
                )
                self.outbox.remove(pending.id)
                report.failed += 1
                continue
            self.outbox.record_attempt(pending.id, result.error)
            report.deferred += 1
            break
        if report.sent:
            logger.info(
                "flushed %s pending outbound message(s)",
                report.sent,
                extra={"tenant_id": tenant_id, "sender_id": recipient_id},
            )
        return report

    def _retry_delay(self, result: SendResult, attempt: int) -> float:
        if result.status == "rate_limited":
            delay = result.retry_after_seconds
            if delay is None:
                delay = self.rate_limit_cooldown_seconds
        else:
            delay = 2 ** (attempt - 1)
        return float(min(delay, self.max_backoff_seconds))

    def send_with_retry(self, *, tenant_id: str, recipient_id: str, message: OutboundMessage) -> SendResult:
        attempt = 0
        while True:
            attempt += 1
            throttle_delay = self.throttle.delay_for(tenant_id)
            if throttle_delay > 0:
                logger.warning(
                    "tenant send throttled after repeated failures",
                    extra={
                        "tenant_id": tenant_id,
                        "integration": "messenger",
                        "delay_seconds": throttle_delay,
                        "consecutive_failures": self.throttle.streak(tenant_id),
                    },
                )
                self._sleep(throttle_delay)

            result = self.messenger.send(tenant_id=tenant_id, recipient_id=recipient_id, message=message)
            failures = self.throttle.record(tenant_id, result)
            if result.ok or result.status not in RETRYABLE_STATUSES:
                return result
            if (
                result.status == "rate_limited"
                and result.retry_after_seconds is not None
                and result.retry_after_seconds > self.max_backoff_seconds
            ):
                logger.warning(
                    "messenger rate limit retry-after exceeds backoff cap; not retrying now",
                    extra={
                        "tenant_id": tenant_id,
                        "sender_id": recipient_id,
                        "attempt": attempt,
                        "retry_after_seconds": result.retry_after_seconds,
                    },
                )
                return result
            if attempt >= self.max_attempts:
                logger.warning(
                    "messenger send retries exhausted: %s",
                    result.error,
                    extra={
                        "tenant_id": tenant_id,
                        "sender_id": recipient_id,
                        "attempt": attempt,
                        "consecutive_failures": failures,
                    },
                )
                return result

            delay = self._retry_delay(result, attempt)
            logger.warning(
                "messenger send %s, retrying",
                result.status,
                extra={
                    "tenant_id": tenant_id,
                    "sender_id": recipient_id,
                    "attempt": attempt,
                    "delay_seconds": delay,
                },
            )
            self._sleep(delay)
