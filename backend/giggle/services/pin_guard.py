"""
PIN guard: PBKDF2-HMAC-SHA512 hashing and constant-time verification.

Stored records look like ``<salt_hex>:<key_hex>``. Neither the PIN nor the
record is ever logged.
"""
from __future__ import annotations
import hashlib
import re
import secrets

from giggle.core.config import get_settings
from giggle.core.errors import ValidationError
from giggle.core.logging import get_logger
from giggle.core.security import constant_time_compare

logger = get_logger(__name__)
settings = get_settings()

# [0-9] rather than \d: unicode digits are not valid PIN characters.
PIN_PATTERN = re.compile(r"[0-9]{4,6}")
SALT_BYTES = 16
DIGEST = "sha512"


class PinGuard:
    def __init__(self, iterations: int = None, key_length: int = None):
        self.iterations = iterations or settings.PIN_ITERATIONS
        self.key_length = key_length or settings.PIN_KEY_LENGTH

    @staticmethod
    def is_valid_format(pin) -> bool:
        return isinstance(pin, str) and PIN_PATTERN.fullmatch(pin) is not None

    def _derive(self, pin: str, salt_hex: str) -> str:
        # The hex salt string itself is the PBKDF2 salt.
        return hashlib.pbkdf2_hmac(
            DIGEST, pin.encode(), salt_hex.encode(), self.iterations, dklen=self.key_length
        ).hex()

    def hash(self, pin: str) -> str:
        if not self.is_valid_format(pin):
            raise ValidationError("PIN must be 4-6 digits", user_message="❌ PIN must be 4-6 digits.")
        salt_hex = secrets.token_hex(SALT_BYTES)
        return f"{salt_hex}:{self._derive(pin, salt_hex)}"

    def verify(self, pin: str, record: str) -> bool:
        """True only when ``pin`` re-derives to the key stored in ``record``."""
        if not self.is_valid_format(pin) or not isinstance(record, str):
            return False
        salt_hex, sep, key_hex = record.partition(":")
        if not sep or not salt_hex or not key_hex:
            return False
        try:
            candidate = self._derive(pin, salt_hex)
        except (ValueError, UnicodeError) as exc:
            logger.warning("PIN verification failed on malformed record: %s", type(exc).__name__)
            return False
        return constant_time_compare(candidate, key_hex)


pin_guard = PinGuard()
