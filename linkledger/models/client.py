# linkledger/models/client.py
"""
Client model for ISP subscribers.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import Field, SQLModel

from ..core.constants import utcnow


class Client(SQLModel, table=True):
    """
    Subscriber account, scoped to an ISP company (tenant).

    Fields:
    - status: pending, approved, active, suspended, disconnected, rejected
    - wallet_balance: materialized running balance of wallet_transactions
    - monthly_rate: price of one subscription period
    - subscription_type: monthly or weekly period length
    - subscription_end_date: end of the paid window (naive UTC)
    - billing_reference: pre-shared account number used on paybill payments
    - speed: package speed as entered by staff ("10Mbps", "512k", ...)
    - suspension_method: address_list, queue_limit, pppoe_secret_disable, radius
    - version: bumped on every state transition and balance write (compare-and-swap guard)
    """

    __tablename__ = "clients"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    isp_company_id: Optional[uuid.UUID] = Field(default=None, index=True)
    name: str = Field(nullable=False)
    phone_number: Optional[str] = Field(default=None, index=True)
    mpesa_number: Optional[str] = Field(default=None, index=True)
    email: Optional[str] = Field(default=None)
    billing_reference: Optional[str] = Field(default=None, unique=True)

    status: str = Field(default="pending", nullable=False, index=True)
    wallet_balance: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    monthly_rate: Decimal = Field(max_digits=12, decimal_places=2)
    subscription_type: str = Field(default="monthly")
    subscription_end_date: Optional[datetime] = Field(default=None, index=True)

    speed: Optional[str] = Field(default=None)
    router_host: Optional[str] = Field(default=None, foreign_key="routers.host")
    pppoe_username: Optional[str] = Field(default=None)
    router_secret_id: Optional[str] = Field(default=None)
    ip_address: Optional[str] = Field(default=None)
    suspension_method: str = Field(default="address_list")

    approved_by: Optional[str] = Field(default=None)
    approved_at: Optional[datetime] = Field(default=None)
    rejection_reason: Optional[str] = Field(default=None)

    version: int = Field(default=0, nullable=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
