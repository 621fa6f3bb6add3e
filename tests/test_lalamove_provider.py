import json
from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chatorder import models  # noqa: F401
from chatorder.core.database import Base
from chatorder.core.errors import DeliveryOrderError, QuoteError
from chatorder.models.tenant import Tenant
from chatorder.services.delivery import (
    Contact,
    LalamoveProvider,
    Location,
    SqlDeliveryProviderRegistry,
    language_for_market,
)

PICKUP = Location(address="1 Rizal Ave, Manila", latitude=14.5995, longitude=120.9842)
DROPOFF = Location(address="Home", latitude=14.55, longitude=121.02)


def _provider(handler, requests=None):
    def wrapped(request):
        if requests is not None:
            requests.append(request)
        return handler(request)

    transport = httpx.MockTransport(wrapped)
    return LalamoveProvider(
        api_key="pk_test",
        api_secret="sk_test",
        market="PH",
        sandbox=True,
        client_factory=lambda **kwargs: httpx.Client(transport=transport, **kwargs),
    )


def _quotation_response(request):
    return httpx.Response(
        201,
        json={
            "data": {
                "quotationId": "q-123",
                "priceBreakdown": {"total": "49.50", "currency": "PHP"},
                "expiresAt": "2026-03-02T12:05:00Z",
            }
        },
    )


def test_quote_is_signed_and_parsed_to_cents():
    requests = []
    provider = _provider(_quotation_response, requests)

    quote = provider.quote(tenant_id="t1", pickup=PICKUP, dropoff=DROPOFF)

    assert quote.fee_cents == 4950
    assert quote.quote_ref == "q-123"
    assert quote.currency == "PHP"
    assert quote.expires_at == datetime(2026, 3, 2, 12, 5, tzinfo=timezone.utc)

    request = requests[0]
    assert str(request.url) == "https://rest.sandbox.lalamove.com/v3/quotations"
    assert request.headers["Market"] == "PH"
    scheme, credentials = request.headers["Authorization"].split(" ", 1)
    api_key, timestamp, signature = credentials.split(":")
    body = request.content.decode("utf-8")
    assert scheme == "hmac"
    assert api_key == "pk_test"
    assert signature == provider.sign(method="POST", path="/v3/quotations", body=body, timestamp=timestamp)
    stops = json.loads(body)["data"]["stops"]
    assert stops[1] == {"coordinates": {"lat": "14.55", "lng": "121.02"}, "address": "Home"}
    assert json.loads(body)["data"]["language"] == "en_PH"


def test_signature_format():
    provider = _provider(_quotation_response)

    first = provider.sign(method="POST", path="/v3/quotations", body="{}", timestamp="1700000000000")
    second = provider.sign(method="GET", path="/v3/quotations", body="{}", timestamp="1700000000000")

    assert len(first) == 64
    assert first != second


def test_quote_requires_coordinates():
    requests = []
    provider = _provider(_quotation_response, requests)

    with pytest.raises(QuoteError):
        provider.quote(tenant_id="t1", pickup=PICKUP, dropoff=Location(address="Somewhere"))
    assert requests == []


@pytest.mark.parametrize("status_code, retryable", [(500, True), (429, True), (422, False)])
def test_quote_http_errors_carry_retryability(status_code, retryable):
    provider = _provider(lambda request: httpx.Response(status_code, json={"errors": [{"id": "ERR"}]}))

    with pytest.raises(QuoteError) as exc_info:
        provider.quote(tenant_id="t1", pickup=PICKUP, dropoff=DROPOFF)

    assert exc_info.value.retryable is retryable


def test_quote_network_error_is_retryable():
    def boom(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(QuoteError) as exc_info:
        _provider(boom).quote(tenant_id="t1", pickup=PICKUP, dropoff=DROPOFF)

    assert exc_info.value.retryable is True


def test_create_delivery_order_uses_quotation_stops():
    requests = []

    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json={"data": {"stops": [{"stopId": "s-1"}, {"stopId": "s-2"}]}})
        return httpx.Response(
            201,
            json={"data": {"orderId": "o-9", "status": "ASSIGNING_DRIVER", "shareLink": "https://share.example/o-9"}},
        )

    provider = _provider(handler, requests)

    ref = provider.create_delivery_order(
        tenant_id="t1",
        quote_ref="q-123",
        sender=Contact(name="Burger & Pizza House", phone="+639170000000"),
        recipient=Contact(name="Maria", phone="09171234567"),
        remarks="Order M000001",
    )

    assert ref.order_id == "o-9"
    assert ref.share_link == "https://share.example/o-9"
    assert requests[0].url.path == "/v3/quotations/q-123"
    body = json.loads(requests[1].content)["data"]
    assert body["sender"]["stopId"] == "s-1"
    assert body["recipients"][0] == {"stopId": "s-2", "name": "Maria", "phone": "09171234567", "remarks": "Order M000001"}


def test_create_delivery_order_without_stops_fails():
    provider = _provider(lambda request: httpx.Response(200, json={"data": {"stops": []}}))

    with pytest.raises(DeliveryOrderError):
        provider.create_delivery_order(
            tenant_id="t1",
            quote_ref="q-1",
            sender=Contact(name="Shop", phone="1"),
            recipient=Contact(name="Maria", phone="2"),
        )


def test_language_for_market_defaults_to_english():
    assert language_for_market("sg") == "en_SG"
    assert language_for_market("BR") == "en_US"


def test_registry_builds_provider_only_when_enabled_with_credentials():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    with session_factory() as db:
        db.add_all(
            [
                Tenant(id="off", name="Off"),
                Tenant(id="on", name="On", lalamove_enabled=True, lalamove_api_key="pk", lalamove_secret_key="sk", lalamove_market="SG"),
                Tenant(id="no-keys", name="No keys", lalamove_enabled=True),
            ]
        )
        db.commit()
    registry = SqlDeliveryProviderRegistry(session_factory)

    provider = registry.for_tenant("on")

    assert registry.for_tenant("off") is None
    assert registry.for_tenant("no-keys") is None
    assert registry.for_tenant("missing") is None
    assert isinstance(provider, LalamoveProvider)
    assert provider.market == "SG"


def test_quotation_uses_quote_timeout_and_booking_uses_http_timeout():
    timeouts = []

    def handler(request):
        if request.url.path == "/v3/quotations":
            return _quotation_response(request)
        if request.method == "GET":
            return httpx.Response(200, json={"data": {"stops": [{"stopId": "s-1"}, {"stopId": "s-2"}]}})
        return httpx.Response(201, json={"data": {"orderId": "o-1"}})

    transport = httpx.MockTransport(handler)

    def client_factory(**kwargs):
        timeouts.append(kwargs["timeout"])
        return httpx.Client(transport=transport, **kwargs)

    provider = LalamoveProvider(
        api_key="pk_test",
        api_secret="sk_test",
        timeout=10.0,
        quote_timeout=3.5,
        client_factory=client_factory,
    )

    provider.quote(tenant_id="t1", pickup=PICKUP, dropoff=DROPOFF)
    provider.create_delivery_order(
        tenant_id="t1",
        quote_ref="q-123",
        sender=Contact(name="Shop", phone="1"),
        recipient=Contact(name="Maria", phone="2"),
    )

    assert timeouts == [3.5, 10.0, 10.0]
