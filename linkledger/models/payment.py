# linkledger/models/payment.py
"""
Payment model: one row per externally reported money movement.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from ..core.constants import utcnow


class Payment(SQLModel, table=True):
    """
    Fields:
    - gateway: mobile-money-push, mobile-money-bill, bank-push, bank-bill, manual
    - external_reference: gateway-assigned transaction id
    - status: received, matched, applied, failed, unmatched
    - raw: callback payload as received

    (gateway, external_reference) is the idempotency key; at most one row
    exists per pair, so at most one can ever reach 'applied'.
    """

    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("gateway", "external_reference", name="uq_payments_gateway_reference"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    gateway: str = Field(nullable=False)
    external_reference: str = Field(nullable=False)
    amount: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    payer_identifier: Optional[str] = Field(default=None)
    billing_reference: Optional[str] = Field(default=None)
    client_id: Optional[uuid.UUID] = Field(default=None, foreign_key="clients.id", index=True)
    isp_company_id: Optional[uuid.UUID] = Field(default=None, index=True)
    status: str = Field(default="received", nullable=False, index=True)
    raw: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    applied_at: Optional[datetime] = Field(default=None)
