# linkledger/services/gateways.py
"""
Per-gateway callback normalizers.

Each gateway reports money in its own envelope; these functions reduce
them to one NormalizedCallback. They only parse: no database, no side
effects. A payload that cannot be understood raises CallbackParseError.
"""

import hashlib
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Tuple

from ..core.config import CENTS
from ..core.constants import PaymentGateway
from ..utils.phone import normalize_msisdn


class CallbackParseError(Exception):
    """The payload is not a valid callback for the gateway."""


@dataclass
class NormalizedCallback:
    gateway: str
    external_reference: str
    amount: Optional[Decimal]
    payer_identifier: Optional[str] = None
    billing_reference: Optional[str] = None
    # Checkout ids to look up in payment_requests (push gateways)
    request_keys: Tuple[str, ...] = ()
    client_id: Optional[str] = None
    # False when the gateway reports a failed/cancelled transaction
    succeeded: bool = True
    result_description: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def synthetic_reference(payload: Any) -> str:
    """Stable reference for payloads that carry none, so redelivery still dedupes."""
    try:
        text = json.dumps(payload, sort_keys=True, default=str)
    except (TypeError, ValueError):
        text = repr(payload)
    return "malformed-" + hashlib.sha256(text.encode()).hexdigest()[:32]


def parse_amount(value: Any, required: bool = True) -> Optional[Decimal]:
    if value is None or value == "":
        if required:
            raise CallbackParseError("Missing amount")
        return None
    try:
        amount = Decimal(str(value)).quantize(CENTS)
    except (InvalidOperation, ValueError) as e:
        raise CallbackParseError(f"Invalid amount {value!r}") from e
    if amount <= 0:
        raise CallbackParseError(f"Non-positive amount {amount}")
    return amount


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _require_dict(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise CallbackParseError("Payload must be a JSON object")
    return payload


# --- Mobile money (M-Pesa Daraja) ---

def parse_mobile_money_push(payload: Any) -> NormalizedCallback:
    """STK push result: Body.stkCallback with CallbackMetadata.Item[]."""
    payload = _require_dict(payload)
    try:
        stk = payload["Body"]["stkCallback"]
    except (KeyError, TypeError) as e:
        raise CallbackParseError("Missing Body.stkCallback") from e
    if not isinstance(stk, dict):
        raise CallbackParseError("Body.stkCallback must be an object")

    checkout_id = _text(stk.get("CheckoutRequestID"))
    if not checkout_id:
        raise CallbackParseError("Missing CheckoutRequestID")
    try:
        result_code = int(stk.get("ResultCode"))
    except (TypeError, ValueError) as e:
        raise CallbackParseError(f"Invalid ResultCode {stk.get('ResultCode')!r}") from e

    if result_code != 0:
        return NormalizedCallback(
            gateway=PaymentGateway.MOBILE_MONEY_PUSH.value,
            external_reference=checkout_id,
            amount=None,
            request_keys=(checkout_id,),
            succeeded=False,
            result_description=_text(stk.get("ResultDesc")),
            raw=payload,
        )

    items = (stk.get("CallbackMetadata") or {}).get("Item") or []
    metadata = {item.get("Name"): item.get("Value") for item in items if isinstance(item, dict)}
    receipt = _text(metadata.get("MpesaReceiptNumber"))

    return NormalizedCallback(
        gateway=PaymentGateway.MOBILE_MONEY_PUSH.value,
        external_reference=receipt or checkout_id,
        amount=parse_amount(metadata.get("Amount")),
        payer_identifier=normalize_msisdn(_text(metadata.get("PhoneNumber"))),
        request_keys=(checkout_id,),
        raw=payload,
    )


def parse_mobile_money_bill(payload: Any) -> NormalizedCallback:
    """C2B paybill confirmation: flat TransID/TransAmount/MSISDN/BillRefNumber."""
    payload = _require_dict(payload)
    trans_id = _text(payload.get("TransID"))
    if not trans_id:
        raise CallbackParseError("Missing TransID")
    return NormalizedCallback(
        gateway=PaymentGateway.MOBILE_MONEY_BILL.value,
        external_reference=trans_id,
        amount=parse_amount(payload.get("TransAmount")),
        payer_identifier=normalize_msisdn(_text(payload.get("MSISDN"))),
        billing_reference=_text(payload.get("BillRefNumber")),
        raw=payload,
    )


# --- Bank (Family Bank) ---

def parse_bank_push(payload: Any) -> NormalizedCallback:
    """
    STK result from the bank. ResponseCode is a string; the amount is
    usually absent and comes from the matching payment request instead.
    """
    payload = _require_dict(payload)
    third_party_id = _text(payload.get("ThirdPartyTransID"))
    checkout_id = _text(payload.get("CheckoutRequestID"))
    reference = third_party_id or checkout_id
    if not reference:
        raise CallbackParseError("Missing ThirdPartyTransID and CheckoutRequestID")

    response_code = _text(payload.get("ResponseCode"))
    if response_code is None:
        raise CallbackParseError("Missing ResponseCode")

    keys = tuple(k for k in (third_party_id, checkout_id) if k)
    return NormalizedCallback(
        gateway=PaymentGateway.BANK_PUSH.value,
        external_reference=reference,
        amount=parse_amount(payload.get("Amount"), required=False),
        payer_identifier=normalize_msisdn(_text(payload.get("PhoneNumber") or payload.get("MSISDN"))),
        request_keys=keys,
        succeeded=response_code == "0",
        result_description=_text(payload.get("ResponseDescription") or payload.get("ResultDesc")),
        raw=payload,
    )


def parse_bank_bill(payload: Any) -> NormalizedCallback:
    payload = _require_dict(payload)
    trans_id = _text(payload.get("TransID"))
    if not trans_id:
        raise CallbackParseError("Missing TransID")
    result_code = _text(payload.get("ResultCode"))
    succeeded = result_code in (None, "0")
    return NormalizedCallback(
        gateway=PaymentGateway.BANK_BILL.value,
        external_reference=trans_id,
        amount=parse_amount(payload.get("TransAmount"), required=succeeded),
        payer_identifier=normalize_msisdn(_text(payload.get("MSISDN"))),
        billing_reference=_text(payload.get("BillRefNumber")),
        request_keys=tuple(k for k in (_text(payload.get("CheckoutRequestID")),) if k),
        succeeded=succeeded,
        result_description=_text(payload.get("ResultDesc")),
        raw=payload,
    )


# --- Operator entered ---

def parse_manual(payload: Any) -> NormalizedCallback:
    payload = _require_dict(payload)
    reference = _text(payload.get("reference"))
    if not reference:
        raise CallbackParseError("Missing reference")
    return NormalizedCallback(
        gateway=PaymentGateway.MANUAL.value,
        external_reference=reference,
        amount=parse_amount(payload.get("amount")),
        payer_identifier=normalize_msisdn(_text(payload.get("phone_number"))),
        billing_reference=_text(payload.get("billing_reference")),
        client_id=_text(payload.get("client_id")),
        raw=payload,
    )


PARSERS: Dict[str, Callable[[Any], NormalizedCallback]] = {
    PaymentGateway.MOBILE_MONEY_PUSH.value: parse_mobile_money_push,
    PaymentGateway.MOBILE_MONEY_BILL.value: parse_mobile_money_bill,
    PaymentGateway.BANK_PUSH.value: parse_bank_push,
    PaymentGateway.BANK_BILL.value: parse_bank_bill,
    PaymentGateway.MANUAL.value: parse_manual,
}


def normalize_callback(gateway: str, payload: Any) -> NormalizedCallback:
    parser = PARSERS.get(gateway)
    if parser is None:
        raise CallbackParseError(f"Unknown gateway '{gateway}'")
    return parser(payload)


def acknowledgement(gateway: str, accepted: bool = True) -> Dict[str, Any]:
    """Body each gateway expects back; anything else makes it redeliver."""
    if gateway in (PaymentGateway.BANK_PUSH.value, PaymentGateway.BANK_BILL.value):
        return {
            "ResultCode": "0" if accepted else "1",
            "ResultDesc": "Success. Transaction received" if accepted else "Rejected",
        }
    if gateway in (PaymentGateway.MOBILE_MONEY_PUSH.value, PaymentGateway.MOBILE_MONEY_BILL.value):
        return {"ResultCode": 0 if accepted else 1, "ResultDesc": "Accepted" if accepted else "Rejected"}
    return {"status": "accepted" if accepted else "rejected"}
