from __future__ import annotations

from fastapi import APIRouter

from chatorder.core.locks import sender_locks
from chatorder.core.metrics import request_metrics, webhook_outcomes

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"])


@router.get("")
def metrics():
    return {
        "requests": request_metrics.snapshot(),
        "tenants": request_metrics.snapshot_per_tenant(),
        "webhook_outcomes": webhook_outcomes.snapshot(),
        "active_sender_locks": sender_locks.active_keys(),
    }
