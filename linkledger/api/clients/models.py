import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Client ---
class Client(BaseModel):
    id: uuid.UUID
    isp_company_id: Optional[uuid.UUID] = None
    name: str
    phone_number: Optional[str] = None
    mpesa_number: Optional[str] = None
    email: Optional[str] = None
    billing_reference: Optional[str] = None
    status: str
    wallet_balance: Decimal
    monthly_rate: Decimal
    subscription_type: str
    subscription_end_date: Optional[datetime] = None
    speed: Optional[str] = None
    router_host: Optional[str] = None
    pppoe_username: Optional[str] = None
    ip_address: Optional[str] = None
    suspension_method: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    version: int
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ClientCreate(BaseModel):
    name: str
    monthly_rate: Decimal = Field(gt=0)
    isp_company_id: Optional[uuid.UUID] = None
    phone_number: Optional[str] = None
    mpesa_number: Optional[str] = None
    email: Optional[str] = None
    billing_reference: Optional[str] = None
    subscription_type: str = Field(default="monthly", pattern="^(monthly|weekly)$")
    speed: Optional[str] = None
    router_host: Optional[str] = None
    pppoe_username: Optional[str] = None
    router_secret_id: Optional[str] = None
    ip_address: Optional[str] = None
    suspension_method: str = Field(
        default="address_list", pattern="^(address_list|queue_limit|pppoe_secret_disable|radius)$"
    )


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1)


class BandwidthUpdate(BaseModel):
    speed: str = Field(min_length=1)


class TransitionResponse(BaseModel):
    transition: str
    applied: bool
    client: Client


# --- Wallet ---
class WalletTransaction(BaseModel):
    id: int
    transaction_type: str
    amount: Decimal
    reference: str
    payment_id: Optional[int] = None
    description: Optional[str] = None
    balance_after: Decimal
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class Wallet(BaseModel):
    client_id: uuid.UUID
    balance: Decimal
    transactions: List[WalletTransaction]
