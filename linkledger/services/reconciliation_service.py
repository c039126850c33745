# linkledger/services/reconciliation_service.py
"""
Payment Reconciliation Engine.

webhook payload -> normalized callback -> Payment row (idempotent on
(gateway, external_reference)) -> client resolution -> exactly-once credit
-> onCredit evaluation. Malformed, failed and unmatched payments are kept
for operators and acknowledged to the gateway like any other.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, or_, select

from ..core.audit import log_action
from ..core.config import CENTS
from ..core.constants import NotificationKind, PaymentGateway, PaymentStatus, TriggerSource
from ..models import Client, Payment, PaymentRequest
from ..utils.phone import msisdn_variants, normalize_msisdn
from .gateways import CallbackParseError, NormalizedCallback, normalize_callback, synthetic_reference
from .ledger_service import LedgerService
from .notification_service import Recipient
from .subscription_service import SubscriptionService, TransitionResult

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    payment: Payment
    status: str
    duplicate: bool = False
    client_id: Optional[uuid.UUID] = None
    renewed: bool = False
    message: Optional[str] = None


class ReconciliationService:
    def __init__(self, session: Session, subscriptions: SubscriptionService):
        self.session = session
        self.subscriptions = subscriptions
        self.ledger = LedgerService(session)

    def reconcile(self, gateway: str, payload: Any) -> ReconciliationResult:
        try:
            callback = normalize_callback(gateway, payload)
        except CallbackParseError as e:
            return self._record_malformed(gateway, payload, str(e))

        payment, created = self.ledger.record_payment(
            gateway=callback.gateway,
            external_reference=callback.external_reference,
            amount=callback.amount or Decimal("0.00"),
            payer_identifier=callback.payer_identifier,
            billing_reference=callback.billing_reference,
            raw=callback.raw,
            status=PaymentStatus.RECEIVED.value if callback.succeeded else PaymentStatus.FAILED.value,
            error_message=None if callback.succeeded else (callback.result_description or "Rejected by gateway"),
        )

        if payment.status == PaymentStatus.APPLIED.value:
            logger.info(f"Duplicate {gateway} callback {callback.external_reference}, already applied")
            return ReconciliationResult(
                payment, payment.status, duplicate=True, client_id=payment.client_id,
                message="Already applied",
            )
        if payment.status == PaymentStatus.FAILED.value:
            if created:
                logger.warning(
                    f"{gateway} reported failed transaction {callback.external_reference}: "
                    f"{payment.error_message}"
                )
            return ReconciliationResult(
                payment, payment.status, duplicate=not created, message=payment.error_message
            )

        return self._settle(payment, callback, duplicate=not created)

    def _settle(self, payment: Payment, callback: NormalizedCallback, duplicate: bool) -> ReconciliationResult:
        request = self._find_payment_request(callback)
        client = self._resolve_client(callback, request)

        if client is None:
            if payment.status != PaymentStatus.UNMATCHED.value:
                payment = self.ledger.mark_payment(payment.id, PaymentStatus.UNMATCHED.value)
            logger.warning(
                f"Unmatched {payment.gateway} payment {payment.external_reference} "
                f"(payer={callback.payer_identifier}, ref={callback.billing_reference})"
            )
            return ReconciliationResult(payment, payment.status, duplicate=duplicate, message="No matching client")

        if payment.amount is None or payment.amount <= 0:
            # Bank push results often omit the amount; the request knows it
            if request is None or not request.amount:
                payment = self.ledger.mark_payment(
                    payment.id, PaymentStatus.FAILED.value, client_id=client.id,
                    error_message="Amount missing and no payment request to take it from",
                )
                return ReconciliationResult(payment, payment.status, client_id=client.id, message=payment.error_message)
            payment.amount = Decimal(request.amount).quantize(CENTS)
            self.session.add(payment)
            self.session.commit()

        return self.apply_to_client(payment, client.id, TriggerSource.WEBHOOK.value, duplicate=duplicate)

    def apply_to_client(
        self,
        payment: Payment,
        client_id: uuid.UUID,
        triggered_by: str,
        duplicate: bool = False,
    ) -> ReconciliationResult:
        """Credit once, then let the state machine decide on renewal."""
        transaction = self.ledger.apply_credit(payment.id, client_id)
        payment = self.ledger.get_payment_by_id(payment.id)
        if transaction is None:
            return ReconciliationResult(
                payment, payment.status, duplicate=True, client_id=client_id, message="Already applied"
            )

        logger.info(
            f"💰 Credited {payment.amount} to client {client_id} from {payment.gateway} "
            f"{payment.external_reference} (balance {transaction.balance_after})"
        )

        renewed = False
        try:
            outcome: TransitionResult = self.subscriptions.on_credit(client_id, triggered_by)
            renewed = outcome.applied
        except Exception as e:
            # The credit is committed; renewal is re-evaluated by the next sweep
            logger.error(f"onCredit failed for client {client_id} after credit: {e}", exc_info=True)

        self._notify_payment(client_id, payment)
        return ReconciliationResult(payment, payment.status, duplicate=duplicate, client_id=client_id, renewed=renewed)

    def _notify_payment(self, client_id: uuid.UUID, payment: Payment):
        notifier = self.subscriptions.notifier
        if notifier is None:
            return
        client = self.subscriptions.get_client(client_id)
        notifier.submit(
            Recipient.from_client(client),
            NotificationKind.PAYMENT_SUCCESS.value,
            {"amount": payment.amount, "receipt": payment.external_reference, "balance": client.wallet_balance},
        )

    def _record_malformed(self, gateway: str, payload: Any, error: str) -> ReconciliationResult:
        reference = synthetic_reference(payload)
        known = gateway if gateway in {g.value for g in PaymentGateway} else PaymentGateway.MANUAL.value
        raw = payload if isinstance(payload, (dict, list)) else {"body": str(payload)}
        if known != gateway:
            raw = {"gateway": gateway, "payload": raw}
        payment, _ = self.ledger.record_payment(
            gateway=known,
            external_reference=reference,
            amount=Decimal("0.00"),
            raw=raw,
            status=PaymentStatus.FAILED.value,
            error_message=f"Malformed callback: {error}",
        )
        logger.error(f"Malformed {gateway} callback stored as payment {payment.id}: {error}")
        return ReconciliationResult(payment, payment.status, message=error)

    # --- Client resolution ---

    def _find_payment_request(self, callback: NormalizedCallback) -> Optional[PaymentRequest]:
        if not callback.request_keys:
            return None
        statement = select(PaymentRequest).where(
            PaymentRequest.checkout_request_id.in_(list(callback.request_keys))
        )
        return self.session.exec(statement).first()

    def _resolve_client(
        self, callback: NormalizedCallback, request: Optional[PaymentRequest]
    ) -> Optional[Client]:
        """payment request, then billing reference, then payer phone number."""
        if callback.client_id:
            try:
                client = self.session.get(Client, uuid.UUID(callback.client_id))
            except ValueError:
                client = None
            if client:
                return client

        if request is not None:
            client = self.session.get(Client, request.client_id)
            if client:
                return client

        if callback.billing_reference:
            client = self.session.exec(
                select(Client).where(Client.billing_reference == callback.billing_reference)
            ).first()
            if client:
                return client

        variants = msisdn_variants(callback.payer_identifier)
        if variants:
            matches = self.session.exec(
                select(Client).where(
                    or_(Client.phone_number.in_(variants), Client.mpesa_number.in_(variants))
                )
            ).all()
            if len(matches) == 1:
                return matches[0]
            if len(matches) > 1:
                logger.warning(
                    f"Phone {callback.payer_identifier} matches {len(matches)} clients, leaving unmatched"
                )
        return None

    # --- Operator tools ---

    def match_unmatched(self, payment_id: int, client_id: uuid.UUID, actor: str) -> ReconciliationResult:
        payment = self.ledger.get_payment_by_id(payment_id)
        if payment is None:
            raise LookupError(f"Payment {payment_id} not found.")
        if payment.status not in (PaymentStatus.UNMATCHED.value, PaymentStatus.RECEIVED.value):
            raise ValueError(f"Payment {payment_id} is '{payment.status}', only unmatched payments can be matched.")
        if payment.amount is None or payment.amount <= 0:
            raise ValueError(f"Payment {payment_id} has no amount to credit.")
        self.subscriptions.get_client(client_id)

        self.ledger.mark_payment(payment.id, PaymentStatus.MATCHED.value, client_id=client_id)
        result = self.apply_to_client(payment, client_id, TriggerSource.MANUAL.value)
        log_action(
            "MATCH_PAYMENT", "payment", payment_id, actor=actor,
            details={"client_id": client_id, "amount": payment.amount},
        )
        return result

    def record_manual_payment(
        self,
        reference: str,
        amount: Decimal,
        actor: str,
        client_id: Optional[uuid.UUID] = None,
        phone_number: Optional[str] = None,
        billing_reference: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ReconciliationResult:
        payload = {
            "reference": reference,
            "amount": str(amount),
            "client_id": str(client_id) if client_id else None,
            "phone_number": phone_number,
            "billing_reference": billing_reference,
            "entered_by": actor,
            "note": note,
        }
        result = self.reconcile(PaymentGateway.MANUAL.value, payload)
        log_action(
            "MANUAL_CREDIT", "payment", result.payment.id, actor=actor,
            status="success" if result.status == PaymentStatus.APPLIED.value else "failure",
            details={"reference": reference, "amount": amount, "result": result.status},
        )
        return result

    def register_payment_request(
        self,
        gateway: str,
        checkout_request_id: str,
        client_id: uuid.UUID,
        amount: Decimal,
        phone_number: Optional[str] = None,
    ) -> PaymentRequest:
        """Remember an initiated push so its callback can be matched to the client."""
        if not PaymentGateway(gateway).is_push:
            raise ValueError(f"Gateway '{gateway}' does not initiate payment requests.")
        self.subscriptions.get_client(client_id)

        request = PaymentRequest(
            gateway=gateway,
            checkout_request_id=checkout_request_id,
            client_id=client_id,
            amount=Decimal(amount).quantize(CENTS),
            phone_number=normalize_msisdn(phone_number),
        )
        try:
            self.session.add(request)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            existing = self.session.exec(
                select(PaymentRequest).where(PaymentRequest.checkout_request_id == checkout_request_id)
            ).one()
            if existing.client_id != client_id:
                raise ValueError(f"Checkout id {checkout_request_id} already belongs to another client.")
            return existing
        self.session.refresh(request)
        return request

