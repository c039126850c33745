# linkledger/models/network_action.py
import uuid
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from ..core.constants import utcnow


class NetworkAction(SQLModel, table=True):
    """Write-once audit row for every command sent to the network gateway."""

    __tablename__ = "network_actions"

    id: Optional[int] = Field(default=None, primary_key=True)
    client_id: uuid.UUID = Field(foreign_key="clients.id", nullable=False, index=True)
    action: str = Field(nullable=False)  # disconnect | reconnect | update_bandwidth
    success: bool = Field(default=False)
    error_message: Optional[str] = Field(default=None)
    triggered_by: str = Field(nullable=False)  # webhook | scheduler | manual
    attempts: int = Field(default=1)
    created_at: datetime = Field(default_factory=utcnow, index=True)
