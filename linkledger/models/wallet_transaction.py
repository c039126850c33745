# linkledger/models/wallet_transaction.py
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from ..core.constants import utcnow


class WalletTransaction(SQLModel, table=True):
    """
    Append-only wallet ledger entry.

    `reference` is "<gateway>:<external_reference>" for payment credits and
    "renewal:<client_id>:<period start>" for renewal debits. The
    (transaction_type, reference) pair is unique, which makes a second
    credit for the same payment or a second debit for the same period
    impossible at the storage level.
    """

    __tablename__ = "wallet_transactions"
    __table_args__ = (
        UniqueConstraint("transaction_type", "reference", name="uq_wallet_tx_type_reference"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    client_id: uuid.UUID = Field(foreign_key="clients.id", nullable=False, index=True)
    isp_company_id: Optional[uuid.UUID] = Field(default=None, index=True)
    transaction_type: str = Field(nullable=False)  # credit | debit
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    reference: str = Field(nullable=False)
    payment_id: Optional[int] = Field(default=None, foreign_key="payments.id")
    description: Optional[str] = Field(default=None)
    balance_after: Decimal = Field(max_digits=12, decimal_places=2)
    created_at: datetime = Field(default_factory=utcnow)
