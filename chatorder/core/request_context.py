from __future__ import annotations

from contextvars import ContextVar


_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar("request_id", default=None)
_TENANT_ID_CTX: ContextVar[str | None] = ContextVar("tenant_id", default=None)
_SENDER_ID_CTX: ContextVar[str | None] = ContextVar("sender_id", default=None)
_EVENT_ID_CTX: ContextVar[str | None] = ContextVar("event_id", default=None)


def set_request_context(
    *,
    request_id: str | None = None,
    tenant_id: str | None = None,
    sender_id: str | None = None,
    event_id: str | None = None,
) -> None:
    if request_id is not None:
        _REQUEST_ID_CTX.set(request_id)
    if tenant_id is not None:
        _TENANT_ID_CTX.set(tenant_id)
    if sender_id is not None:
        _SENDER_ID_CTX.set(sender_id)
    if event_id is not None:
        _EVENT_ID_CTX.set(event_id)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


def get_tenant_id() -> str | None:
    return _TENANT_ID_CTX.get()


def get_sender_id() -> str | None:
    return _SENDER_ID_CTX.get()


def get_event_id() -> str | None:
    return _EVENT_ID_CTX.get()


def clear_event_context() -> None:
    _SENDER_ID_CTX.set(None)
    _EVENT_ID_CTX.set(None)


def clear_request_context() -> None:
    _REQUEST_ID_CTX.set(None)
    _TENANT_ID_CTX.set(None)
    clear_event_context()
