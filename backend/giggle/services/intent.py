"""
Intent classifier.
- Confirm/cancel words: matched locally, no LLM round-trip.
- LLM configured: closed-set JSON extraction, validated against the Intent union.
- Anything else (no key, bad JSON, schema mismatch, network error): rule-based matcher.

``IntentClassifier.parse`` never raises.
"""
from __future__ import annotations
import json
import re
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter

from giggle.core.logging import get_logger

logger = get_logger(__name__)


def _amount_to_str(value):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


AmountStr = Annotated[str, BeforeValidator(_amount_to_str)]


class _IntentBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SendIntent(_IntentBase):
    type: Literal["send"] = "send"
    amount: AmountStr
    recipient: str
    currency: Literal["PYUSD", "USD"] = "PYUSD"


class RequestIntent(_IntentBase):
    type: Literal["request"] = "request"
    amount: AmountStr
    from_: str = Field(alias="from")
    currency: Literal["PYUSD", "USD"] = "PYUSD"


class BalanceIntent(_IntentBase):
    type: Literal["balance"] = "balance"


class AccountIntent(_IntentBase):
    type: Literal["account"] = "account"


class HistoryIntent(_IntentBase):
    type: Literal["history"] = "history"
    limit: int = 5


class HelpIntent(_IntentBase):
    type: Literal["help"] = "help"


class ConfirmIntent(_IntentBase):
    type: Literal["confirm"] = "confirm"


class CancelIntent(_IntentBase):
    type: Literal["cancel"] = "cancel"


class SetPinIntent(_IntentBase):
    type: Literal["setPin"] = "setPin"
    pin: str


class CreateCouponIntent(_IntentBase):
    type: Literal["createCoupon"] = "createCoupon"
    amount: AmountStr = "5.00"
    token: Literal["PYUSD"] = "PYUSD"
    message: Optional[str] = None
    expiry_days: int = Field(0, alias="expiryDays")     # 0 = never expires


class RedeemCouponIntent(_IntentBase):
    type: Literal["redeemCoupon"] = "redeemCoupon"
    code: str


class CheckCouponIntent(_IntentBase):
    type: Literal["checkCoupon"] = "checkCoupon"
    code: Optional[str] = None


class ListCouponsIntent(_IntentBase):
    type: Literal["listCoupons"] = "listCoupons"


class UnknownIntent(_IntentBase):
    type: Literal["unknown"] = "unknown"
    original_message: str = Field("", alias="originalMessage")


Intent = Annotated[
    Union[
        SendIntent, RequestIntent, BalanceIntent, AccountIntent, HistoryIntent,
        HelpIntent, ConfirmIntent, CancelIntent, SetPinIntent, CreateCouponIntent,
        RedeemCouponIntent, CheckCouponIntent, ListCouponsIntent, UnknownIntent,
    ],
    Field(discriminator="type"),
]
IntentAdapter = TypeAdapter(Intent)

CONFIRM_WORDS = frozenset({"yes", "confirm", "proceed", "ok", "yeah", "yep", "sure", "accept"})
CANCEL_WORDS = frozenset({"no", "cancel", "stop", "abort", "decline", "reject"})

SYSTEM_PROMPT = """
You are the intent parser for a WhatsApp wallet that sends and receives PYUSD.
Read the user's message and answer with ONE JSON object from this closed set:

{"type": "send", "amount": "10.00", "recipient": "+15551234567", "currency": "PYUSD"}
{"type": "request", "amount": "10.00", "from": "+15551234567", "currency": "PYUSD"}
{"type": "balance"}
{"type": "account"}                      (wallet address / account info)
{"type": "history", "limit": 5}
{"type": "help"}                         (what can you do, commands, general questions)
{"type": "confirm"}                      (yes, confirm, proceed, ok, yeah, yep, sure, accept)
{"type": "cancel"}                       (no, cancel, stop, abort, decline, reject)
{"type": "setPin", "pin": "1234"}        (4-6 digits, "set pin 1234", "my pin is 1234")
{"type": "createCoupon", "amount": "5.00", "token": "PYUSD", "message": "optional", "expiryDays": 0}
    amount defaults to "5.00"; expiryDays 0 means no expiry
{"type": "redeemCoupon", "code": "GIFTAB12CD34"}
{"type": "checkCoupon", "code": "GIFTAB12CD34"}
{"type": "listCoupons"}
{"type": "unknown", "originalMessage": "<the user's message>"}

Phone numbers may be written as +15551234567, (555) 123-4567, 555-123-4567.
Amounts may be written as $10, 10 dollars, 10 USD, 10 PYUSD.
Return STRICT JSON only. No markdown, no commentary.
""".strip()

# ---------------------------------------------------------------------------
# Rule-based matcher patterns
# ---------------------------------------------------------------------------
AMOUNT_RE = re.compile(r"\$?(\d+(?:\.\d{1,2})?)")
PHONE_RE = re.compile(r"(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}")
COUNTERPARTY_PHONE_RE = re.compile(r"\b(?:to|from)\s+(" + PHONE_RE.pattern + ")", re.IGNORECASE)
SET_PIN_RE = re.compile(r"\b(?:set\s+pin|my\s+pin\s+is)\s+(\d{4,6})\b", re.IGNORECASE)
COUPON_CODE_RE = re.compile(r"\b(GIFT[0-9A-F]{8})\b", re.IGNORECASE)
CODE_AFTER_WORD_RE = re.compile(r"\b(?:coupon|code)\s+([A-Za-z0-9]{4,})\b", re.IGNORECASE)
LIST_COUPONS_RE = re.compile(
    r"^\s*(?:gift\s+)?coupons\s*$|\b(?:list|show|my|view)\b.*\bcoupons\b|\bwhat\s+coupons\b",
    re.IGNORECASE,
)
CHECK_COUPON_RE = re.compile(r"\b(?:check|verify|is)\b.*\b(?:coupon|code)\b", re.IGNORECASE)
REDEEM_COUPON_RE = re.compile(r"\b(?:redeem|claim|use)\b", re.IGNORECASE)
CREATE_COUPON_RE = re.compile(r"\b(?:create|make|gift|send|new)\b.*\bcoupons?\b", re.IGNORECASE)
EXPIRY_RE = re.compile(r"\bexpir\w*\s+in\s+(\d+)\s+days?\b", re.IGNORECASE)
COUPON_AMOUNT_RE = re.compile(r"\$(\d+(?:\.\d{1,2})?)|\b(\d+(?:\.\d{1,2})?)\s*(?:pyusd|usd|dollars?)\b", re.IGNORECASE)
COUPON_MESSAGE_RE = re.compile(r"\b(?:message|note)\s*[:=]\s*[\"']?(.+?)[\"']?\s*$", re.IGNORECASE)

BALANCE_RE = re.compile(r"balance|how much", re.IGNORECASE)
ACCOUNT_RE = re.compile(r"account|address|wallet", re.IGNORECASE)
HISTORY_RE = re.compile(r"history|transactions|past|previous", re.IGNORECASE)
HELP_RE = re.compile(r"help|what can|how do|commands", re.IGNORECASE)
SEND_RE = re.compile(r"\b(?:send|pay|transfer)\b", re.IGNORECASE)
REQUEST_RE = re.compile(r"\b(?:request|ask|get)\b", re.IGNORECASE)


def quick_match(text: str) -> Optional[Intent]:
    word = (text or "").strip().lower()
    if word in CONFIRM_WORDS:
        return ConfirmIntent()
    if word in CANCEL_WORDS:
        return CancelIntent()
    return None


def _amount_and_phone(text: str) -> tuple[Optional[str], Optional[str]]:
    anchored = COUNTERPARTY_PHONE_RE.search(text)
    if anchored:
        start, end = anchored.span(1)
    else:
        # No "to"/"from": the last phone-like run is the counterparty.
        matches = list(PHONE_RE.finditer(text))
        if not matches:
            return None, None
        start, end = matches[-1].span()
    # Look for the amount outside the phone number so its digits don't win.
    rest = text[:start] + " " + text[end:]
    amount = AMOUNT_RE.search(rest)
    return (amount.group(1) if amount else None), text[start:end].strip()


def _coupon_code(text: str) -> Optional[str]:
    m = COUPON_CODE_RE.search(text) or CODE_AFTER_WORD_RE.search(text)
    return m.group(1).upper() if m else None


def _create_coupon(text: str) -> CreateCouponIntent:
    expiry = EXPIRY_RE.search(text)
    message = COUPON_MESSAGE_RE.search(text)
    body = text
    if message:
        body = body[:message.start()]
    if expiry:
        body = body.replace(expiry.group(0), " ")
    amount = COUPON_AMOUNT_RE.search(body)
    return CreateCouponIntent(
        amount=(amount.group(1) or amount.group(2)) if amount else "5.00",
        message=message.group(1) if message else None,
        expiry_days=int(expiry.group(1)) if expiry else 0,
    )


def fallback_parse(text: str) -> Intent:
    """Ordered rules, first match wins."""
    message = text or ""

    quick = quick_match(message)
    if quick is not None:
        return quick

    pin = SET_PIN_RE.search(message)
    if pin:
        return SetPinIntent(pin=pin.group(1))

    # Transfers with an amount and a phone are never coupons; they need a PIN.
    if SEND_RE.search(message):
        amount, phone = _amount_and_phone(message)
        if amount and phone:
            return SendIntent(amount=amount, recipient=phone)
    if REQUEST_RE.search(message):
        amount, phone = _amount_and_phone(message)
        if amount and phone:
            return RequestIntent(amount=amount, from_=phone)

    if LIST_COUPONS_RE.search(message):
        return ListCouponsIntent()
    if CHECK_COUPON_RE.search(message):
        code = _coupon_code(message)
        if code:
            return CheckCouponIntent(code=code)
    if REDEEM_COUPON_RE.search(message):
        code = _coupon_code(message)
        if code:
            return RedeemCouponIntent(code=code)
    if CREATE_COUPON_RE.search(message):
        return _create_coupon(message)

    if BALANCE_RE.search(message):
        return BalanceIntent()
    if ACCOUNT_RE.search(message):
        return AccountIntent()
    if HISTORY_RE.search(message):
        return HistoryIntent(limit=5)
    if HELP_RE.search(message):
        return HelpIntent()

    return UnknownIntent(original_message=message)


def _extract_json(raw: str) -> dict:
    start, end = raw.find("{"), raw.rfind("}") + 1
    if start < 0 or end <= start:
        raise ValueError("no JSON object in LLM reply")
    return json.loads(raw[start:end])


class IntentClassifier:
    def __init__(self, llm=None):
        self.llm = llm

    async def parse(self, text: str) -> Intent:
        quick = quick_match(text)
        if quick is not None:
            logger.debug("Quick match: %s", quick.type)
            return quick

        if self.llm is not None:
            try:
                raw = await self.llm.complete(SYSTEM_PROMPT, text)
                intent = IntentAdapter.validate_python(_extract_json(raw))
                logger.info("LLM intent: %s", intent.type)
                return intent
            except Exception as exc:
                logger.warning("LLM intent parse failed, falling back to rules: %s", type(exc).__name__)

        intent = fallback_parse(text)
        logger.info("Rule intent: %s", intent.type)
        return intent
