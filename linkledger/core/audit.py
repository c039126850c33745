# linkledger/core/audit.py
"""
Audit trail for operator actions (approvals, overrides, manual credits,
manual matches, network retries), written as JSON lines to logs/audit.log.
"""
import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

LOG_DIR = os.getenv("LOG_DIR", "logs")
AUDIT_LOG_FILE = os.path.join(LOG_DIR, "audit.log")

audit_logger = logging.getLogger("audit")
audit_logger.setLevel(logging.INFO)
audit_logger.propagate = False  # Keep the audit file out of the process log


def _ensure_handler():
    if audit_logger.handlers:
        return
    os.makedirs(LOG_DIR, exist_ok=True)
    handler = logging.FileHandler(AUDIT_LOG_FILE, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)


def log_action(
    action: str,
    resource_type: str,
    resource_id,
    actor: Optional[str] = None,
    details: Optional[dict] = None,
    status: str = "success",
) -> dict:
    """
    Append one entry and return it.

    Args:
        action: e.g. "APPROVE", "SUSPEND", "MANUAL_CREDIT"
        resource_type: "client" or "payment"
        resource_id: id of the affected row
        actor: operator name from X-Actor, "system" when omitted
        details: extra context; Decimals, UUIDs and datetimes are stringified
        status: "success" or "failure"
    """
    _ensure_handler()

    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action.upper(),
        "resource_type": resource_type,
        "resource_id": str(resource_id),
        "actor": actor or "system",
        "status": status,
    }
    if details:
        entry["details"] = details

    audit_logger.info(json.dumps(entry, ensure_ascii=False, default=str))
    return entry
