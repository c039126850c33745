# linkledger/utils/phone.py
"""Kenyan MSISDN helpers. Gateways report 2547XXXXXXXX, staff type 07XXXXXXXX."""
import re
from typing import List, Optional

_NON_DIGITS = re.compile(r"\D")


def normalize_msisdn(phone: Optional[str]) -> Optional[str]:
    """Canonical 254XXXXXXXXX form, or None for empty input."""
    if not phone:
        return None
    digits = _NON_DIGITS.sub("", str(phone))
    if not digits:
        return None
    if digits.startswith("0"):
        return "254" + digits[1:]
    if digits.startswith(("7", "1")) and len(digits) == 9:
        return "254" + digits
    return digits


def msisdn_variants(phone: Optional[str]) -> List[str]:
    """Every spelling a stored number may have: 2547..., 07..., +2547..."""
    canonical = normalize_msisdn(phone)
    if not canonical:
        return []
    variants = [canonical]
    if canonical.startswith("254"):
        local = canonical[3:]
        variants += ["0" + local, "+" + canonical, local]
    return variants
