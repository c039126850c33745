from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from ..core.constants import utcnow


class Setting(SQLModel, table=True):
    """Runtime override for a configuration key (e.g. renewal_sweep_interval)."""

    __tablename__ = "settings"

    key: str = Field(primary_key=True)
    value: str
    updated_at: Optional[datetime] = Field(default_factory=utcnow)
