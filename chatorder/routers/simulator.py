import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from chatorder.core.errors import VersionConflict
from chatorder.deps import get_simulator_service
from chatorder.fsm.events import InboundEvent, QuickReplyOrButton, TextMessage
from chatorder.services.conversation import ConversationService

router = APIRouter(prefix="/simulator", tags=["simulator"])


class SimulatorMessage(BaseModel):
    tenant_id: str
    sender_id: str
    text: Optional[str] = None
    payload: Optional[str] = None


@router.post("/message")
def simulate(body: SimulatorMessage, conversation: ConversationService = Depends(get_simulator_service)):
    if body.payload:
        event = QuickReplyOrButton(payload=body.payload)
    elif body.text and body.text.strip():
        event = TextMessage(text=body.text.strip())
    else:
        raise HTTPException(status_code=400, detail="text or payload is required")

    try:
        result = conversation.handle_event(
            InboundEvent(
                tenant_id=body.tenant_id,
                sender_id=body.sender_id,
                event_id=f"sim-{uuid.uuid4()}",
                event=event,
            )
        )
    except VersionConflict as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {
        "outcome": result.outcome,
        "state": result.state.value if result.state else None,
        "messages": [message.model_dump(exclude_defaults=True) for message in result.messages],
    }
