# linkledger/services/settings_service.py
"""Runtime overrides stored in the settings table (key/value strings)."""
import logging
from typing import Dict, Optional

from sqlmodel import Session, select

from ..core.constants import utcnow
from ..models.setting import Setting

logger = logging.getLogger(__name__)


class SettingsService:
    def __init__(self, session: Session):
        self.session = session

    def get_all_settings(self) -> Dict[str, str]:
        return {row.key: row.value for row in self.session.exec(select(Setting)).all()}

    def get_setting(self, key: str) -> Optional[str]:
        row = self.session.get(Setting, key)
        return row.value if row else None

    def get_positive_int(self, key: str, default: int) -> int:
        """Integer override for `key`; blank or invalid values fall back to `default`."""
        raw = (self.get_setting(key) or "").strip()
        if not raw:
            return default
        if raw.isdigit() and int(raw) > 0:
            return int(raw)
        logger.warning(f"Ignoring invalid value {raw!r} for setting '{key}', using {default}")
        return default

    def update_settings(self, values: Dict[str, str]):
        now = utcnow()
        for key, value in values.items():
            row = self.session.get(Setting, key) or Setting(key=key, value=value)
            row.value = value
            row.updated_at = now
            self.session.add(row)
        self.session.commit()
