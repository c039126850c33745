# linkledger/models/notification_log.py
import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from ..core.constants import utcnow


class NotificationLog(SQLModel, table=True):
    """One row per (client, kind, day); used to send reminders once a day."""

    __tablename__ = "notification_log"
    __table_args__ = (
        UniqueConstraint("client_id", "kind", "day_bucket", name="uq_notification_day"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    client_id: uuid.UUID = Field(foreign_key="clients.id", nullable=False, index=True)
    kind: str = Field(nullable=False)
    day_bucket: date = Field(nullable=False)
    created_at: datetime = Field(default_factory=utcnow)
