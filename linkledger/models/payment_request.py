# linkledger/models/payment_request.py
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import Field, SQLModel

from ..core.constants import utcnow


class PaymentRequest(SQLModel, table=True):
    """
    A push (STK) payment initiated on behalf of a client.
    Push callbacks only carry the checkout id, so this is how they are
    matched back to the client who was prompted.
    """

    __tablename__ = "payment_requests"

    id: Optional[int] = Field(default=None, primary_key=True)
    gateway: str = Field(nullable=False)
    checkout_request_id: str = Field(nullable=False, unique=True)
    client_id: uuid.UUID = Field(foreign_key="clients.id", nullable=False, index=True)
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    phone_number: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
