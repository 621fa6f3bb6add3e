from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Protocol

import httpx
from sqlalchemy.orm import Session

from chatorder.core.config import (
    DELIVERY_HTTP_TIMEOUT_SECONDS,
    QUOTE_TIMEOUT_SECONDS,
    LALAMOVE_BASE_URL,
    LALAMOVE_SANDBOX_BASE_URL,
)
from chatorder.core.errors import DeliveryOrderError, QuoteError
from chatorder.models.tenant import Tenant

logger = logging.getLogger(__name__)

_MARKET_LANGUAGES = {
    "HK": "en_HK",
    "SG": "en_SG",
    "TH": "th_TH",
    "PH": "en_PH",
    "TW": "zh_TW",
    "MY": "ms_MY",
    "VN": "vi_VN",
}


@dataclass
class Location:
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass
class Contact:
    name: str
    phone: str


@dataclass
class DeliveryQuote:
    fee_cents: int
    quote_ref: str
    currency: str
    expires_at: datetime | None = None


@dataclass
class DeliveryOrderRef:
    order_id: str
    status: str | None = None
    share_link: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class QuoteProvider(Protocol):
    def quote(self, *, tenant_id: str, pickup: Location, dropoff: Location) -> DeliveryQuote:
        ...


class DeliveryOrderProvider(Protocol):
    def create_delivery_order(
        self,
        *,
        tenant_id: str,
        quote_ref: str,
        sender: Contact,
        recipient: Contact,
        remarks: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DeliveryOrderRef:
        ...


def language_for_market(market: str) -> str:
    return _MARKET_LANGUAGES.get(market.upper(), "en_US")


def _parse_datetime(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("unparseable lalamove expiresAt value=%s", raw)
        return None


class LalamoveProvider:
    """Lalamove v3 REST client; quotes and books deliveries for one tenant."""

    INTEGRATION_NAME = "lalamove"

    def __init__(
        self,
        *,
        api_key: str,
        api_secret: str,
        market: str = "PH",
        service_type: str = "MOTORCYCLE",
        sandbox: bool = True,
        timeout: float = DELIVERY_HTTP_TIMEOUT_SECONDS,
        quote_timeout: float = QUOTE_TIMEOUT_SECONDS,
        client_factory: Callable[..., httpx.Client] = httpx.Client,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.market = (market or "PH").upper()
        self.service_type = service_type or "MOTORCYCLE"
        self.base_url = LALAMOVE_SANDBOX_BASE_URL if sandbox else LALAMOVE_BASE_URL
        self.timeout = timeout
        self.quote_timeout = quote_timeout
        self._client_factory = client_factory

    def sign(self, *, method: str, path: str, body: str, timestamp: str) -> str:
        raw = f"{timestamp}\r\n{method}\r\n{path}\r\n\r\n{body}"
        return hmac.new(self.api_secret.encode("utf-8"), raw.encode("utf-8"), hashlib.sha256).hexdigest()

    def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None, *, timeout: float | None = None
    ) -> dict[str, Any]:
        body = json.dumps(payload, separators=(",", ":")) if payload is not None else ""
        timestamp = str(int(time.time() * 1000))
        signature = self.sign(method=method, path=path, body=body, timestamp=timestamp)
        headers = {
            "Authorization": f"hmac {self.api_key}:{timestamp}:{signature}",
            "Market": self.market,
            "Request-ID": str(uuid.uuid4()),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        with self._client_factory(timeout=timeout if timeout is not None else self.timeout) as client:
            response = client.request(method, f"{self.base_url}{path}", headers=headers, content=body or None)

        if response.status_code >= 400:
            retryable = response.status_code == 429 or response.status_code >= 500
            raise _LalamoveHttpError(response.status_code, response.text, retryable=retryable)
        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise _LalamoveHttpError(response.status_code, response.text, retryable=False) from exc
        return data.get("data") or {}

    def quote(self, *, tenant_id: str, pickup: Location, dropoff: Location) -> DeliveryQuote:
        for label, stop in (("pickup", pickup), ("dropoff", dropoff)):
            if stop.latitude is None or stop.longitude is None:
                raise QuoteError(f"{label} coordinates are required for a delivery quote")

        payload = {
            "data": {
                "serviceType": self.service_type,
                "language": language_for_market(self.market),
                "stops": [
                    {
                        "coordinates": {"lat": str(stop.latitude), "lng": str(stop.longitude)},
                        "address": stop.address or "",
                    }
                    for stop in (pickup, dropoff)
                ],
            }
        }
        try:
            data = self._request("POST", "/v3/quotations", payload, timeout=self.quote_timeout)
        except _LalamoveHttpError as exc:
            raise QuoteError(f"Lalamove quotation failed {exc.status_code}: {exc.body_text}", retryable=exc.retryable) from exc
        except httpx.HTTPError as exc:
            raise QuoteError(f"Lalamove quotation failed: {exc}", retryable=True) from exc

        breakdown = data.get("priceBreakdown") or {}
        quotation_id = data.get("quotationId")
        if not quotation_id:
            raise QuoteError("Lalamove quotation response without quotationId")
        try:
            fee_cents = int((Decimal(str(breakdown.get("total") or "0")) * 100).to_integral_value())
        except InvalidOperation as exc:
            raise QuoteError(f"Lalamove quotation with invalid total: {breakdown.get('total')}") from exc

        logger.info(
            "lalamove quotation created",
            extra={"tenant_id": tenant_id, "integration": self.INTEGRATION_NAME},
        )
        return DeliveryQuote(
            fee_cents=fee_cents,
            quote_ref=str(quotation_id),
            currency=breakdown.get("currency") or "",
            expires_at=_parse_datetime(data.get("expiresAt")),
        )

    def create_delivery_order(
        self,
        *,
        tenant_id: str,
        quote_ref: str,
        sender: Contact,
        recipient: Contact,
        remarks: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DeliveryOrderRef:
        try:
            quotation = self._request("GET", f"/v3/quotations/{quote_ref}")
            stops = quotation.get("stops") or []
            if len(stops) < 2:
                raise DeliveryOrderError(f"Lalamove quotation {quote_ref} has no stops")
            payload = {
                "data": {
                    "quotationId": quote_ref,
                    "sender": {"stopId": stops[0].get("stopId") or "", "name": sender.name, "phone": sender.phone},
                    "recipients": [
                        {
                            "stopId": stops[1].get("stopId") or "",
                            "name": recipient.name,
                            "phone": recipient.phone,
                            "remarks": remarks or "",
                        }
                    ],
                    "isPODEnabled": True,
                    "metadata": metadata or {},
                }
            }
            data = self._request("POST", "/v3/orders", payload)
        except _LalamoveHttpError as exc:
            raise DeliveryOrderError(
                f"Lalamove order failed {exc.status_code}: {exc.body_text}", retryable=exc.retryable
            ) from exc
        except httpx.HTTPError as exc:
            raise DeliveryOrderError(f"Lalamove order failed: {exc}", retryable=True) from exc

        order_id = data.get("orderId")
        if not order_id:
            raise DeliveryOrderError("Lalamove order response without orderId")
        logger.info(
            "lalamove order created",
            extra={"tenant_id": tenant_id, "integration": self.INTEGRATION_NAME},
        )
        return DeliveryOrderRef(
            order_id=str(order_id),
            status=data.get("status"),
            share_link=data.get("shareLink"),
            metadata={"driverId": data.get("driverId")} if data.get("driverId") else {},
        )


class _LalamoveHttpError(Exception):
    def __init__(self, status_code: int, body_text: str, *, retryable: bool) -> None:
        super().__init__(f"{status_code}: {body_text}")
        self.status_code = status_code
        self.body_text = body_text
        self.retryable = retryable


class DeliveryProvider(QuoteProvider, DeliveryOrderProvider, Protocol):
    pass


class DeliveryProviderRegistry(Protocol):
    def for_tenant(self, tenant_id: str) -> DeliveryProvider | None:
        ...


class SqlDeliveryProviderRegistry:
    """Builds a Lalamove client from the tenant row; None when delivery is not set up."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def for_tenant(self, tenant_id: str) -> LalamoveProvider | None:
        with self._session_factory() as db:
            tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
            if tenant is None or not tenant.lalamove_enabled:
                return None
            if not tenant.lalamove_api_key or not tenant.lalamove_secret_key:
                logger.warning("lalamove enabled without credentials", extra={"tenant_id": tenant_id})
                return None
            return LalamoveProvider(
                api_key=tenant.lalamove_api_key,
                api_secret=tenant.lalamove_secret_key,
                market=tenant.lalamove_market or "PH",
                service_type=tenant.lalamove_service_type or "MOTORCYCLE",
                sandbox=bool(tenant.lalamove_sandbox),
            )
