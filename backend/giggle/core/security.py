"""Security helpers (ID generation, constant-time comparison, redaction)."""
from __future__ import annotations
import hmac
import re
import secrets
import uuid

_PIN_PHRASE = re.compile(r"(pin(?:\s+is)?\s+)\d{4,6}", re.IGNORECASE)
_BARE_PIN = re.compile(r"^\s*\d{4,6}\s*$")


def generate_uuid() -> str:
    return str(uuid.uuid4())


def generate_coupon_code() -> str:
    """GIFT + 8 uppercase hex chars."""
    return "GIFT" + secrets.token_hex(4).upper()


def constant_time_compare(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def redact_pin(text: str) -> str:
    """Mask anything that looks like a PIN before it is persisted or logged."""
    if _BARE_PIN.match(text or ""):
        return "****"
    return _PIN_PHRASE.sub(r"\1****", text or "")
