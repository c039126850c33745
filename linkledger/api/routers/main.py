# linkledger/api/routers/main.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ...db.engine_sync import get_sync_session
from ...services.router_service import (
    create_router as create_router_service,
    get_all_routers as get_all_routers_service,
    get_router_by_host as get_router_by_host_service,
    update_router as update_router_service,
)
from .models import RouterCreate, RouterResponse, RouterUpdate

router = APIRouter()


@router.get("/routers", response_model=List[RouterResponse])
def api_get_all_routers(session: Session = Depends(get_sync_session)):
    return get_all_routers_service(session)


@router.get("/routers/{host}", response_model=RouterResponse)
def api_get_router(host: str, session: Session = Depends(get_sync_session)):
    router_obj = get_router_by_host_service(session, host)
    if not router_obj:
        raise HTTPException(status_code=404, detail="Router not found")
    return router_obj


@router.post("/routers", response_model=RouterResponse, status_code=status.HTTP_201_CREATED)
def api_create_router(router_data: RouterCreate, session: Session = Depends(get_sync_session)):
    try:
        return create_router_service(session, router_data.model_dump())
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail=f"Router {router_data.host} already exists.")


@router.put("/routers/{host}", response_model=RouterResponse)
def api_update_router(host: str, router_data: RouterUpdate, session: Session = Depends(get_sync_session)):
    updated = update_router_service(session, host, router_data.model_dump(exclude_unset=True))
    if not updated:
        raise HTTPException(status_code=404, detail="Router not found")
    return updated
