# linkledger/api/settings/main.py
from typing import Dict

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from ...db.engine_sync import get_sync_session
from ...services.settings_service import SettingsService

router = APIRouter()


def get_settings_service(session: Session = Depends(get_sync_session)) -> SettingsService:
    return SettingsService(session)


@router.get("/settings", response_model=Dict[str, str])
def api_get_settings(service: SettingsService = Depends(get_settings_service)):
    return service.get_all_settings()


@router.put("/settings", status_code=status.HTTP_204_NO_CONTENT)
def api_update_settings(
    settings: Dict[str, str],
    service: SettingsService = Depends(get_settings_service),
):
    """Runtime overrides, e.g. renewal_sweep_interval (read when the scheduler starts)."""
    service.update_settings(settings)
