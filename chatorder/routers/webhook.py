import asyncio
import contextvars
import functools
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse

from chatorder.core.config import WEBHOOK_ACK_BUDGET_SECONDS
from chatorder.deps import get_messenger_service, get_webhook_gateway
from chatorder.messenger.service import MessengerService
from chatorder.services.webhook_gateway import WebhookGateway

router = APIRouter(prefix="/api/messenger", tags=["messenger"])
logger = logging.getLogger(__name__)


@router.get("/{tenant_id}/webhook")
def verify_webhook(
    tenant_id: str,
    request: Request,
    messenger: MessengerService = Depends(get_messenger_service),
):
    qp = request.query_params
    mode = qp.get("hub.mode")
    token = qp.get("hub.verify_token")
    challenge = qp.get("hub.challenge")

    verify_token = messenger.verify_token_for(tenant_id)
    if mode == "subscribe" and verify_token and token == verify_token:
        return PlainTextResponse(challenge or "")

    raise HTTPException(status_code=403, detail="Invalid verify token")


@router.post("/{tenant_id}/webhook")
async def receive_webhook(
    tenant_id: str,
    request: Request,
    gateway: WebhookGateway = Depends(get_webhook_gateway),
):
    raw_body = await request.body()
    headers = dict(request.headers)

    loop = asyncio.get_running_loop()
    context = contextvars.copy_context()
    future = loop.run_in_executor(
        None,
        functools.partial(context.run, gateway.ingest, tenant_id, raw_body, headers),
    )
    try:
        result = await asyncio.wait_for(asyncio.shield(future), timeout=WEBHOOK_ACK_BUDGET_SECONDS)
    except asyncio.TimeoutError:
        # the worker keeps running in the background
        logger.warning("webhook processing exceeded ack budget", extra={"tenant_id": tenant_id, "outcome": "accepted"})
        return {"status": "accepted"}
    return result.as_dict()
