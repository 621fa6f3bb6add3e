from __future__ import annotations

import json
import logging
from typing import Any, Callable

import httpx

from chatorder.core.config import MESSENGER_API_VERSION, MESSENGER_GRAPH_BASE_URL, MESSENGER_HTTP_TIMEOUT_SECONDS
from chatorder.messenger.base import OutboundMessage, SendResult

logger = logging.getLogger(__name__)

RATE_LIMIT_CODES = {4, 17, 32, 613}
TRANSIENT_CODES = {1, 2}
OUTSIDE_WINDOW_SUBCODE = 2018278
OUTSIDE_WINDOW_CODE = 10


def build_send_body(recipient_id: str, message: OutboundMessage) -> dict[str, Any]:
    return {
        "recipient": {"id": recipient_id},
        "messaging_type": "RESPONSE",
        "message": message.to_graph_message(),
    }


def _retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return None


def classify_response(response: httpx.Response) -> SendResult:
    body_text = response.text
    try:
        data = response.json()
    except json.JSONDecodeError:
        data = {"raw": body_text}

    if 200 <= response.status_code < 300:
        return SendResult(
            status="ok",
            provider_message_id=(data or {}).get("message_id"),
            status_code=response.status_code,
            response_payload=data,
        )

    error = (data or {}).get("error") or {}
    code = error.get("code")
    subcode = error.get("error_subcode")
    detail = f"Messenger error {response.status_code}: {error.get('message') or body_text}"

    if code == OUTSIDE_WINDOW_CODE and subcode == OUTSIDE_WINDOW_SUBCODE:
        status = "window_closed"
    elif response.status_code == 429 or code in RATE_LIMIT_CODES:
        status = "rate_limited"
    elif response.status_code >= 500 or code in TRANSIENT_CODES or error.get("is_transient"):
        status = "retryable_error"
    else:
        status = "fatal_error"

    return SendResult(
        status=status,
        error=detail,
        status_code=response.status_code,
        retry_after_seconds=_retry_after(response),
        response_payload=data,
    )


class GraphMessengerProvider:
    """Single Send API call; retries are the dispatcher's job."""

    name = "graph"

    def __init__(
        self,
        *,
        timeout: float = MESSENGER_HTTP_TIMEOUT_SECONDS,
        client_factory: Callable[..., httpx.Client] = httpx.Client,
    ) -> None:
        self.timeout = timeout
        self._client_factory = client_factory

    def send(
        self,
        *,
        tenant_id: str,
        page_access_token: str | None,
        recipient_id: str,
        message: OutboundMessage,
    ) -> SendResult:
        if not page_access_token:
            return SendResult(status="fatal_error", error="Messenger page access token not configured")

        url = f"{MESSENGER_GRAPH_BASE_URL}/{MESSENGER_API_VERSION}/me/messages"
        body = build_send_body(recipient_id, message)
        try:
            with self._client_factory(timeout=self.timeout) as client:
                response = client.post(url, params={"access_token": page_access_token}, json=body)
        except httpx.TimeoutException as exc:
            return SendResult(status="retryable_error", error=f"Messenger timeout: {exc}")
        except httpx.HTTPError as exc:
            return SendResult(status="retryable_error", error=f"Messenger network error: {exc}")

        result = classify_response(response)
        if not result.ok:
            logger.warning(
                "messenger send failed status=%s code=%s",
                result.status,
                result.status_code,
                extra={"tenant_id": tenant_id},
            )
        return result
