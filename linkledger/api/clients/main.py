import uuid
from typing import Callable

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlmodel import Session

from ...db.engine_sync import get_sync_session
from ...services.runtime import build_subscription_service
from ...services.subscription_service import SubscriptionService, TransitionResult
from ..errors import DOMAIN_ERRORS, to_http_error
from .models import (
    BandwidthUpdate,
    Client,
    ClientCreate,
    RejectRequest,
    TransitionResponse,
    Wallet,
    WalletTransaction,
)

router = APIRouter()


# --- Dependency Injectors ---
def get_subscription_service(session: Session = Depends(get_sync_session)) -> SubscriptionService:
    return build_subscription_service(session)


def get_actor(x_actor: str = Header(default="admin")) -> str:
    """Operator name for the audit trail (authentication lives in front of this API)."""
    return x_actor


def _run(operation: Callable[[], TransitionResult]) -> TransitionResponse:
    try:
        result = operation()
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)
    return TransitionResponse(
        transition=result.plan.name,
        applied=result.applied,
        client=Client.model_validate(result.client),
    )


# --- Client Endpoints ---


@router.post("/clients", response_model=Client, status_code=status.HTTP_201_CREATED)
def api_register_client(
    client: ClientCreate,
    service: SubscriptionService = Depends(get_subscription_service),
):
    try:
        return service.register_client(**client.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/clients/{client_id}", response_model=Client)
def api_get_client(
    client_id: uuid.UUID,
    service: SubscriptionService = Depends(get_subscription_service),
):
    try:
        return service.get_client(client_id)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.get("/clients/{client_id}/wallet", response_model=Wallet)
def api_get_wallet(
    client_id: uuid.UUID,
    service: SubscriptionService = Depends(get_subscription_service),
):
    try:
        client = service.get_client(client_id)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)
    return Wallet(
        client_id=client.id,
        balance=client.wallet_balance,
        transactions=[
            WalletTransaction.model_validate(t) for t in service.ledger.get_transactions(client_id)
        ],
    )


# --- Lifecycle ---


@router.post("/clients/{client_id}/approve", response_model=TransitionResponse)
def api_approve_client(
    client_id: uuid.UUID,
    service: SubscriptionService = Depends(get_subscription_service),
    actor: str = Depends(get_actor),
):
    return _run(lambda: service.approve(client_id, actor))


@router.post("/clients/{client_id}/activate", response_model=TransitionResponse)
def api_activate_client(
    client_id: uuid.UUID,
    service: SubscriptionService = Depends(get_subscription_service),
    actor: str = Depends(get_actor),
):
    return _run(lambda: service.activate(client_id, actor))


@router.post("/clients/{client_id}/reject", response_model=TransitionResponse)
def api_reject_client(
    client_id: uuid.UUID,
    body: RejectRequest,
    service: SubscriptionService = Depends(get_subscription_service),
    actor: str = Depends(get_actor),
):
    return _run(lambda: service.reject(client_id, body.reason, actor))


# --- Administrative overrides ---


@router.post("/clients/{client_id}/suspend", response_model=TransitionResponse)
def api_suspend_client(
    client_id: uuid.UUID,
    service: SubscriptionService = Depends(get_subscription_service),
    actor: str = Depends(get_actor),
):
    return _run(lambda: service.suspend(client_id, actor))


@router.post("/clients/{client_id}/restore", response_model=TransitionResponse)
def api_restore_client(
    client_id: uuid.UUID,
    service: SubscriptionService = Depends(get_subscription_service),
    actor: str = Depends(get_actor),
):
    return _run(lambda: service.restore(client_id, actor))


@router.post("/clients/{client_id}/disconnect", response_model=TransitionResponse)
def api_disconnect_client(
    client_id: uuid.UUID,
    service: SubscriptionService = Depends(get_subscription_service),
    actor: str = Depends(get_actor),
):
    return _run(lambda: service.disconnect(client_id, actor))


@router.put("/clients/{client_id}/bandwidth", response_model=TransitionResponse)
def api_update_bandwidth(
    client_id: uuid.UUID,
    body: BandwidthUpdate,
    service: SubscriptionService = Depends(get_subscription_service),
    actor: str = Depends(get_actor),
):
    return _run(lambda: service.update_bandwidth(client_id, body.speed, actor))


@router.post(
    "/clients/{client_id}/network/retry",
    response_model=TransitionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def api_retry_network(
    client_id: uuid.UUID,
    service: SubscriptionService = Depends(get_subscription_service),
    actor: str = Depends(get_actor),
):
    return _run(lambda: service.retry_network(client_id, actor))
