import uuid
from contextlib import nullcontext
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session

from ...db.engine_sync import get_sync_session
from ...services.ledger_service import LedgerService
from ...services.network_gateway import list_network_actions
from ...services.reconciliation_service import ReconciliationResult, ReconciliationService
from ...services.renewal_job import run_renewal_sweep
from ...services.runtime import build_subscription_service
from ..clients.main import get_actor
from ..errors import DOMAIN_ERRORS, to_http_error
from .models import (
    ManualPaymentCreate,
    NetworkAction,
    Payment,
    PaymentMatch,
    PaymentRequest,
    PaymentRequestCreate,
    ReconciliationResponse,
    SweepReport,
)

router = APIRouter()


# --- Dependency Injectors ---
def get_ledger_service(session: Session = Depends(get_sync_session)) -> LedgerService:
    return LedgerService(session)


def get_reconciliation_service(session: Session = Depends(get_sync_session)) -> ReconciliationService:
    return ReconciliationService(session, build_subscription_service(session))


def _response(result: ReconciliationResult) -> ReconciliationResponse:
    return ReconciliationResponse(
        payment=Payment.model_validate(result.payment),
        status=result.status,
        duplicate=result.duplicate,
        client_id=result.client_id,
        renewed=result.renewed,
        message=result.message,
    )


# --- Payments ---


@router.get("/payments", response_model=List[Payment])
def api_list_payments(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=1000),
    service: LedgerService = Depends(get_ledger_service),
):
    return service.list_payments(status=status_filter, limit=limit)


@router.post("/payments/{payment_id}/match", response_model=ReconciliationResponse)
def api_match_payment(
    payment_id: int,
    body: PaymentMatch,
    service: ReconciliationService = Depends(get_reconciliation_service),
    actor: str = Depends(get_actor),
):
    try:
        return _response(service.match_unmatched(payment_id, body.client_id, actor))
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.post("/payments/manual", response_model=ReconciliationResponse, status_code=status.HTTP_201_CREATED)
def api_record_manual_payment(
    body: ManualPaymentCreate,
    service: ReconciliationService = Depends(get_reconciliation_service),
    actor: str = Depends(get_actor),
):
    if not (body.client_id or body.phone_number or body.billing_reference):
        raise HTTPException(
            status_code=400, detail="One of client_id, phone_number or billing_reference is required."
        )
    try:
        return _response(
            service.record_manual_payment(
                body.reference,
                body.amount,
                actor,
                client_id=body.client_id,
                phone_number=body.phone_number,
                billing_reference=body.billing_reference,
                note=body.note,
            )
        )
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.post("/payment-requests", response_model=PaymentRequest, status_code=status.HTTP_201_CREATED)
def api_register_payment_request(
    body: PaymentRequestCreate,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    try:
        return service.register_payment_request(**body.model_dump())
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


# --- Network audit ---


@router.get("/network-actions", response_model=List[NetworkAction])
def api_list_network_actions(
    client_id: Optional[uuid.UUID] = None,
    failed: bool = False,
    limit: int = Query(default=100, ge=1, le=1000),
    session: Session = Depends(get_sync_session),
):
    return list_network_actions(session, client_id=client_id, failed_only=failed, limit=limit)


# --- Internal ---


@router.post("/internal/sweep", response_model=SweepReport)
def api_run_sweep(session: Session = Depends(get_sync_session)):
    # The request owns the session; the sweep must not close it
    report = run_renewal_sweep(session_factory=lambda: nullcontext(session))
    if report is None:
        raise HTTPException(status_code=500, detail="Renewal sweep failed, see logs.")
    return report.as_dict()
