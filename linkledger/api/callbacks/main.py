# linkledger/api/callbacks/main.py
"""
Gateway webhooks. One URL per gateway, always answered with 200 and the
acknowledgement body that gateway expects: a gateway that does not get its
ack keeps redelivering, and malformed or unmatched payments are kept for
operators anyway.
"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from ...core.constants import PaymentGateway
from ...db.engine_sync import get_sync_session
from ...services.gateways import acknowledgement
from ...services.reconciliation_service import ReconciliationService
from ...services.runtime import build_subscription_service

logger = logging.getLogger(__name__)

router = APIRouter()

GATEWAYS = {g.value for g in PaymentGateway if g != PaymentGateway.MANUAL}


# --- Dependency Injectors ---
def get_reconciliation_service(session: Session = Depends(get_sync_session)) -> ReconciliationService:
    return ReconciliationService(session, build_subscription_service(session))


@router.post("/callbacks/{gateway}")
async def api_gateway_callback(
    gateway: str,
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    if gateway not in GATEWAYS:
        raise HTTPException(status_code=404, detail=f"Unknown gateway '{gateway}'")

    body = await request.body()
    try:
        payload = json.loads(body) if body else None
    except (UnicodeDecodeError, json.JSONDecodeError):
        payload = body.decode("utf-8", errors="replace")

    try:
        result = await run_in_threadpool(service.reconcile, gateway, payload)
    except Exception as e:
        logger.error(f"Error processing {gateway} callback: {e}", exc_info=True)
        return acknowledgement(gateway, accepted=False)

    logger.info(
        f"{gateway} callback -> payment {result.payment.id} {result.status}"
        f"{' (duplicate)' if result.duplicate else ''}"
    )
    return acknowledgement(gateway)
