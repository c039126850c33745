import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Payment(BaseModel):
    id: int
    gateway: str
    external_reference: str
    amount: Decimal
    payer_identifier: Optional[str] = None
    billing_reference: Optional[str] = None
    client_id: Optional[uuid.UUID] = None
    status: str
    error_message: Optional[str] = None
    created_at: datetime
    applied_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class PaymentMatch(BaseModel):
    client_id: uuid.UUID


class ManualPaymentCreate(BaseModel):
    reference: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    client_id: Optional[uuid.UUID] = None
    phone_number: Optional[str] = None
    billing_reference: Optional[str] = None
    note: Optional[str] = None


class ReconciliationResponse(BaseModel):
    payment: Payment
    status: str
    duplicate: bool
    client_id: Optional[uuid.UUID] = None
    renewed: bool
    message: Optional[str] = None


class PaymentRequestCreate(BaseModel):
    gateway: str = Field(pattern="^(mobile-money-push|bank-push)$")
    checkout_request_id: str = Field(min_length=1)
    client_id: uuid.UUID
    amount: Decimal = Field(gt=0)
    phone_number: Optional[str] = None


class PaymentRequest(BaseModel):
    id: int
    gateway: str
    checkout_request_id: str
    client_id: uuid.UUID
    amount: Decimal
    phone_number: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class NetworkAction(BaseModel):
    id: int
    client_id: uuid.UUID
    action: str
    success: bool
    error_message: Optional[str] = None
    triggered_by: str
    attempts: int
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class SweepReport(BaseModel):
    started_at: datetime
    finished_at: Optional[datetime] = None
    evaluated: int
    renewed: List[str]
    suspended: List[str]
    reminded: List[str]
    failures: Dict[str, Any]
    discrepancies: List[str]
