"""
Error taxonomy for the conversation core.

Every error carries a ``user_message`` that is safe to send back over the chat
channel; ``str(exc)`` stays the developer-facing description.
"""
from __future__ import annotations
from typing import Optional


class GiggleError(Exception):
    """Base class for all domain errors."""

    default_user_message = "Something went wrong. Please try again."

    def __init__(self, message: str = "", user_message: Optional[str] = None):
        super().__init__(message or self.default_user_message)
        self.user_message = user_message or message or self.default_user_message


class ValidationError(GiggleError):
    """Malformed amount / phone / PIN. User-correctable."""


class NotFoundError(GiggleError):
    """Unknown recipient, coupon code or pending action."""


class InsufficientFunds(GiggleError):
    def __init__(self, balance: str, required: str, shortfall: str):
        self.balance = balance
        self.required = required
        self.shortfall = shortfall
        super().__init__(
            f"balance {balance} < required {required}",
            user_message=(
                f"Insufficient balance.\n\nYou have ${balance} PYUSD but need ${required}.\n"
                f"You need ${shortfall} more."
            ),
        )


class InsufficientGas(GiggleError):
    default_user_message = (
        "Insufficient ETH for gas fees.\n\n"
        "💡 You need a small amount of ETH on Ethereum Sepolia for transaction fees."
    )


class AuthenticationError(GiggleError):
    default_user_message = "❌ Incorrect PIN. Transaction cancelled.\n\nPlease try again."


class CollaboratorError(GiggleError):
    """LLM / price / IPFS / messaging collaborator unreachable or misbehaving."""

    default_user_message = "A service we depend on is unavailable. Please try again later."


class ExecutionError(GiggleError):
    """The transfer itself failed at the wallet/chain layer."""

    def __init__(self, message: str = ""):
        detail = f"\n\n{message}" if message else ""
        super().__init__(message, user_message=f"Transaction failed. Please try again.{detail}")
