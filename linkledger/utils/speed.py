# linkledger/utils/speed.py
"""
Package speed normalization.

Staff enter package speeds in whatever unit they like ("10Mbps", "512 kbps",
"1G", "10M/5M", "20"). Everything sent to a NAS is normalized to kbit/s.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

_UNIT_FACTORS = {"k": 1, "m": 1_000, "g": 1_000_000}
_PART_RE = re.compile(
    r"^\s*(?P<value>\d+(?:[.,]\d+)?)\s*(?P<unit>[kmg])?\s*(?:bps|bits|bit|b)?\s*$",
    re.IGNORECASE,
)
_PER_SECOND_RE = re.compile(r"(?:bits?|b)/s(?:ec)?", re.IGNORECASE)

# Single-value packages are asymmetric: upload is this share of download
UPLOAD_SHARE = 0.5


@dataclass(frozen=True)
class BandwidthLimits:
    """Upload/download limits in kbit/s."""

    upload_kbps: int
    download_kbps: int
    fallback: bool = False

    def to_max_limit(self) -> str:
        """RouterOS max-limit string: "<upload>/<download>"."""
        return f"{self.upload_kbps}k/{self.download_kbps}k"

    @property
    def upload_bps(self) -> int:
        return self.upload_kbps * 1000

    @property
    def download_bps(self) -> int:
        return self.download_kbps * 1000


def _parse_part(text: str) -> Optional[Tuple[float, Optional[str]]]:
    match = _PART_RE.match(text)
    if not match:
        return None
    value = float(match.group("value").replace(",", "."))
    unit = match.group("unit")
    return value, unit.lower() if unit else None


def _to_kbps(value: float, unit: str) -> int:
    return max(1, int(round(value * _UNIT_FACTORS[unit])))


def parse_speed(speed: Optional[str]) -> Optional[BandwidthLimits]:
    """
    Parse a human speed string. A single value is the download rate and the
    upload gets half of it; "a/b" follows the RouterOS max-limit order (upload/download). Parts
    without a unit inherit the unit of the other part, or Mbps when none
    has one. Returns None when the text cannot be parsed.
    """
    if speed is None:
        return None
    text = str(speed).strip()
    if not text:
        return None
    # "Mbit/s" must not be mistaken for an upload/download separator
    text = _PER_SECOND_RE.sub("bps", text)

    raw_parts = text.split("/")
    if len(raw_parts) > 2:
        return None

    parsed: List[Tuple[float, Optional[str]]] = []
    for raw in raw_parts:
        part = _parse_part(raw)
        if part is None:
            return None
        parsed.append(part)

    if any(value <= 0 for value, _ in parsed):
        return None

    known_units = [unit for _, unit in parsed if unit]
    default_unit = known_units[-1] if known_units else "m"
    values = [_to_kbps(value, unit or default_unit) for value, unit in parsed]

    if len(values) == 1:
        download = values[0]
        return BandwidthLimits(upload_kbps=max(1, int(round(download * UPLOAD_SHARE))), download_kbps=download)
    return BandwidthLimits(upload_kbps=values[0], download_kbps=values[1])


def normalize_speed(speed: Optional[str], default_speed: str) -> BandwidthLimits:
    """
    Total conversion: unparseable input falls back to `default_speed`
    (flagged as fallback), never to zero.
    """
    limits = parse_speed(speed)
    if limits is not None:
        return limits

    fallback = parse_speed(default_speed)
    if fallback is None:
        raise ValueError(f"Configured default speed '{default_speed}' is not a valid speed.")
    logger.warning(f"Unparseable speed {speed!r}; using default {default_speed!r}.")
    return BandwidthLimits(
        upload_kbps=fallback.upload_kbps,
        download_kbps=fallback.download_kbps,
        fallback=True,
    )
