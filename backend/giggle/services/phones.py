"""Phone number normalisation to E.164."""
from __future__ import annotations
import re
from typing import Optional

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat

DEFAULT_REGION = "US"
_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str, region: str = DEFAULT_REGION) -> Optional[str]:
    """
    E.164 form of ``raw`` or None.

    phonenumbers decides first; numbers it rejects (fictional 555 exchanges,
    unassigned ranges) still pass when they carry at least ten digits.
    """
    if not raw:
        return None
    try:
        parsed = phonenumbers.parse(raw, region)
        if phonenumbers.is_valid_number(parsed):
            return phonenumbers.format_number(parsed, PhoneNumberFormat.E164)
    except NumberParseException:
        pass
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) > 10:
        return f"+{digits}"
    return None
