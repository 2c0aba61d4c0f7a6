"""
Deterministic helpers around proposals: RFP-ID correlation, price confidence,
delivery normalization and forward-only status transitions.
"""
import math
import re
from typing import Optional

from procureflow.models.rfp import RFP, RFPStatus

# Only v4 UUIDs: version nibble 4, variant nibble 8/9/a/b. No trailing punctuation is captured.
UUID_V4_PATTERN = r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}"
RFP_ID_MARKER = re.compile(r"RFP-ID:\s*(" + UUID_V4_PATTERN + r")(?![0-9a-f-])", re.IGNORECASE)
UUID_V4 = re.compile(r"^" + UUID_V4_PATTERN + r"$", re.IGNORECASE)

_DELIVERY_PATTERN = re.compile(r"(\d+)\s*(day|week|month)")
_UNIT_DAYS = {"day": 1, "week": 7, "month": 30}

NEUTRAL_CONFIDENCE = 50


def extract_rfp_id(text: Optional[str]) -> Optional[str]:
    """Return the lowercased UUID following the first 'RFP-ID:' marker, or None."""
    if not text:
        return None
    m = RFP_ID_MARKER.search(text)
    return m.group(1).lower() if m else None


def is_uuid_v4(value: Optional[str]) -> bool:
    return bool(value) and bool(UUID_V4.match(value.strip()))


def price_confidence(email_total: Optional[float], ocr_total: Optional[float]) -> int:
    """
    Agreement between the email-quoted total and the attachment-derived total, 0-100.
    Missing, non-finite or a zero email total is neutral (50). Otherwise 100 * e^(-5r) where
    r is the relative difference against the email total.
    """
    if email_total is None or ocr_total is None:
        return NEUTRAL_CONFIDENCE
    try:
        email_total = float(email_total)
        ocr_total = float(ocr_total)
    except (TypeError, ValueError):
        return NEUTRAL_CONFIDENCE
    if not (math.isfinite(email_total) and math.isfinite(ocr_total)) or email_total == 0:
        return NEUTRAL_CONFIDENCE
    r = abs(email_total - ocr_total) / abs(email_total)
    score = 100 * math.exp(-5 * r)
    return int(round(min(max(score, 0), 100)))


def normalize_delivery_to_days(delivery: Optional[str]) -> Optional[int]:
    """
    '14 days' -> 14, '2 weeks' -> 14, '1 month' -> 30. None if nothing matches.
    The first number in the text wins regardless of unit, so '2 weeks or 10 days' -> 14
    rather than preferring the day figure.
    """
    if not delivery:
        return None
    m = _DELIVERY_PATTERN.search(str(delivery).lower())
    if not m:
        return None
    return int(m.group(1)) * _UNIT_DAYS[m.group(2)]


def advance_status(rfp: RFP, target: str) -> bool:
    """Move rfp.status forward to target. Returns False (and leaves it) if target is not ahead."""
    if target not in RFPStatus.ORDER:
        raise ValueError(f"Unknown RFP status: {target}")
    current = rfp.status if rfp.status in RFPStatus.ORDER else RFPStatus.DRAFT
    if RFPStatus.ORDER.index(target) <= RFPStatus.ORDER.index(current):
        return False
    rfp.status = target
    return True
