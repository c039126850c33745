# linkledger/services/ledger_service.py
"""
Ledger Store: payments and wallet transactions.

Exactly-once crediting rests on two storage guarantees, not on
application locks:
- payments has a unique (gateway, external_reference) constraint, so a
  redelivered callback always lands on the same row;
- the move to 'applied' is a conditional UPDATE (status != 'applied'), so
  of several concurrent processes only one sees rowcount == 1 and posts
  the credit.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..core.config import CENTS
from ..core.constants import PaymentStatus, TransactionType, utcnow
from ..models import Client, Payment, WalletTransaction

logger = logging.getLogger(__name__)

APPLICABLE_STATUSES = (
    PaymentStatus.RECEIVED.value,
    PaymentStatus.MATCHED.value,
    PaymentStatus.UNMATCHED.value,
)

BALANCE_WRITE_ATTEMPTS = 5


class LedgerInvariantError(Exception):
    """Duplicate applied credit, negative-balance debit or similar contract breach."""


class BalanceChangedError(Exception):
    """The client row moved between reading the balance and writing it."""


class LedgerService:
    """
    Service layer for Payment and WalletTransaction rows.
    """

    def __init__(self, session: Session):
        self.session = session

    # --- Payments ---

    def get_payment(self, gateway: str, external_reference: str) -> Optional[Payment]:
        statement = select(Payment).where(
            Payment.gateway == gateway,
            Payment.external_reference == external_reference,
        )
        return self.session.exec(statement.execution_options(populate_existing=True)).first()

    def get_payment_by_id(self, payment_id: int) -> Optional[Payment]:
        return self.session.get(Payment, payment_id, populate_existing=True)

    def list_payments(self, status: Optional[str] = None, limit: int = 100) -> List[Payment]:
        statement = select(Payment).order_by(Payment.created_at.desc()).limit(limit)
        if status:
            statement = statement.where(Payment.status == status)
        return list(self.session.exec(statement).all())

    def record_payment(
        self,
        gateway: str,
        external_reference: str,
        amount: Decimal,
        payer_identifier: Optional[str] = None,
        billing_reference: Optional[str] = None,
        raw: Optional[Dict[str, Any]] = None,
        status: str = PaymentStatus.RECEIVED.value,
        error_message: Optional[str] = None,
    ) -> Tuple[Payment, bool]:
        """
        Insert the Payment row for (gateway, external_reference) or return the
        existing one. Returns (payment, created).
        """
        existing = self.get_payment(gateway, external_reference)
        if existing:
            return existing, False

        payment = Payment(
            gateway=gateway,
            external_reference=external_reference,
            amount=Decimal(amount).quantize(CENTS),
            payer_identifier=payer_identifier,
            billing_reference=billing_reference,
            raw=raw,
            status=status,
            error_message=error_message,
        )
        try:
            self.session.add(payment)
            self.session.commit()
            self.session.refresh(payment)
            return payment, True
        except IntegrityError:
            # Another process inserted the same key between our read and write
            self.session.rollback()
            existing = self.get_payment(gateway, external_reference)
            if existing is None:
                raise
            return existing, False

    def mark_payment(
        self,
        payment_id: int,
        status: str,
        client_id: Optional[uuid.UUID] = None,
        error_message: Optional[str] = None,
    ) -> Payment:
        """
        Move a payment to a non-applied status. Applied payments are immutable;
        trying to change one is an invariant violation.
        """
        if status == PaymentStatus.APPLIED.value:
            raise LedgerInvariantError("Use apply_credit() to apply a payment.")

        values: Dict[str, Any] = {"status": status}
        if client_id is not None:
            values["client_id"] = client_id
        if error_message is not None:
            values["error_message"] = error_message

        result = self.session.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status != PaymentStatus.APPLIED.value)
            .values(**values)
        )
        if result.rowcount != 1:
            self.session.rollback()
            raise LedgerInvariantError(f"Payment {payment_id} is already applied or missing.")
        self.session.commit()
        return self.get_payment_by_id(payment_id)

    def apply_credit(self, payment_id: int, client_id: uuid.UUID) -> Optional[WalletTransaction]:
        """
        Atomically mark the payment applied, post the credit and bump the
        client's running balance.

        Returns the WalletTransaction, or None when the payment had already
        been applied (by a redelivery or a concurrent worker).
        """
        for attempt in range(1, BALANCE_WRITE_ATTEMPTS + 1):
            try:
                return self._apply_credit_once(payment_id, client_id)
            except BalanceChangedError:
                self.session.rollback()
                logger.warning(
                    f"Balance of client {client_id} moved while crediting payment {payment_id} "
                    f"(attempt {attempt}/{BALANCE_WRITE_ATTEMPTS})"
                )
        raise LedgerInvariantError(
            f"Could not credit payment {payment_id}: client {client_id} kept changing."
        )

    def _apply_credit_once(self, payment_id: int, client_id: uuid.UUID) -> Optional[WalletTransaction]:
        now = utcnow()
        try:
            result = self.session.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status.in_(APPLICABLE_STATUSES))
                .values(status=PaymentStatus.APPLIED.value, client_id=client_id, applied_at=now)
            )
            if result.rowcount != 1:
                self.session.rollback()
                current = self.get_payment_by_id(payment_id)
                if current is None or current.status != PaymentStatus.APPLIED.value:
                    raise LedgerInvariantError(
                        f"Payment {payment_id} cannot be applied from status "
                        f"'{current.status if current else 'missing'}'."
                    )
                logger.info(f"Payment {payment_id} already applied, skipping credit.")
                return None

            payment = self.session.get(Payment, payment_id, populate_existing=True)
            if payment.amount is None or payment.amount <= 0:
                raise LedgerInvariantError(f"Payment {payment_id} has non-positive amount {payment.amount}.")

            reference = f"{payment.gateway}:{payment.external_reference}"
            transaction = self.post_transaction(
                client_id,
                TransactionType.CREDIT.value,
                payment.amount,
                reference,
                payment_id=payment.id,
                description=f"Payment via {payment.gateway} ({payment.external_reference})",
            )
            self.session.commit()
            self.session.refresh(transaction)
            return transaction
        except BalanceChangedError:
            raise
        except IntegrityError as e:
            self.session.rollback()
            raise LedgerInvariantError(f"Duplicate credit for payment {payment_id}: {e}") from e
        except Exception:
            self.session.rollback()
            raise

    # --- Wallet transactions ---

    def post_transaction(
        self,
        client_id: uuid.UUID,
        transaction_type: str,
        amount: Decimal,
        reference: str,
        payment_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> WalletTransaction:
        """
        Insert a ledger entry and move the running balance in the caller's
        transaction. Does NOT commit.

        The new balance is computed in Decimal from the current row and
        written under a `version` guard, so the column never goes through
        float arithmetic in the database. Raises BalanceChangedError when
        another writer moved the row in between.
        """
        amount = Decimal(amount).quantize(CENTS)
        if amount <= 0:
            raise LedgerInvariantError(f"Ledger amounts must be positive, got {amount}.")

        client = self.session.get(Client, client_id, populate_existing=True)
        if client is None:
            raise LedgerInvariantError(f"Cannot {transaction_type} {amount}: client {client_id} missing.")
        balance = Decimal(client.wallet_balance or 0).quantize(CENTS)

        if transaction_type == TransactionType.CREDIT.value:
            new_balance = balance + amount
        elif transaction_type == TransactionType.DEBIT.value:
            new_balance = balance - amount
            if new_balance < 0:
                raise LedgerInvariantError(
                    f"Cannot debit {amount} for client {client_id}: "
                    f"balance {balance} would go negative."
                )
        else:
            raise LedgerInvariantError(f"Unknown transaction type '{transaction_type}'.")

        version = client.version
        result = self.session.execute(
            update(Client)
            .where(Client.id == client_id, Client.version == version)
            .values(wallet_balance=new_balance, version=version + 1, updated_at=utcnow())
        )
        if result.rowcount != 1:
            raise BalanceChangedError(f"Client {client_id} changed since version {version}.")

        transaction = WalletTransaction(
            client_id=client_id,
            isp_company_id=client.isp_company_id,
            transaction_type=transaction_type,
            amount=amount,
            reference=reference,
            payment_id=payment_id,
            description=description,
            balance_after=new_balance,
        )
        self.session.add(transaction)
        self.session.flush()
        return transaction

    def get_transactions(self, client_id: uuid.UUID) -> List[WalletTransaction]:
        statement = (
            select(WalletTransaction)
            .where(WalletTransaction.client_id == client_id)
            .order_by(WalletTransaction.id)
        )
        return list(self.session.exec(statement).all())

    def compute_balance(self, client_id: uuid.UUID) -> Decimal:
        """Fold of all ledger entries; must always equal clients.wallet_balance."""
        balance = Decimal("0.00")
        for transaction in self.get_transactions(client_id):
            amount = Decimal(transaction.amount).quantize(CENTS)
            balance += amount if transaction.transaction_type == TransactionType.CREDIT.value else -amount
        return balance.quantize(CENTS)
