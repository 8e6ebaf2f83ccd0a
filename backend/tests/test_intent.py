import pytest

from giggle.core.errors import CollaboratorError
from giggle.services.amounts import parse_amount
from giggle.services.intent import IntentClassifier, fallback_parse

from conftest import FakeLLM


@pytest.mark.parametrize("word,kind", [
    ("yes", "confirm"), ("  OK ", "confirm"), ("Sure", "confirm"),
    ("no", "cancel"), ("STOP", "cancel"), ("abort", "cancel"),
])
async def test_quick_match_skips_llm(word, kind):
    llm = FakeLLM(reply='{"type": "help"}')
    intent = await IntentClassifier(llm).parse(word)
    assert intent.type == kind
    assert llm.calls == []


async def test_llm_result_is_used():
    llm = FakeLLM(reply='Sure! {"type": "send", "amount": 12.5, "recipient": "+14155550102"} hope that helps')
    intent = await IntentClassifier(llm).parse("give bob twelve fifty")
    assert intent.type == "send"
    assert intent.amount == "12.5"
    assert intent.recipient == "+14155550102"


@pytest.mark.parametrize("reply", [
    "not json at all",
    '{"type": "launchRockets"}',
    '{"type": "send", "amount": "5"}',
    "{broken",
])
async def test_garbage_llm_output_falls_back_to_rules(reply):
    intent = await IntentClassifier(FakeLLM(reply=reply)).parse("what's my balance")
    assert intent.type == "balance"


async def test_llm_failure_falls_back_to_rules():
    llm = FakeLLM(error=CollaboratorError("timeout"))
    intent = await IntentClassifier(llm).parse("Send $10 to +14155550102")
    assert intent.type == "send"
    assert intent.amount == "10"


async def test_no_llm_uses_rules():
    intent = await IntentClassifier().parse("show my history")
    assert intent.type == "history"
    assert intent.limit == 5


def test_request_rule():
    intent = fallback_parse("Request $5 from (415) 555-0103")
    assert intent.type == "request"
    assert intent.amount == "5"
    assert intent.from_ == "(415) 555-0103"


@pytest.mark.parametrize("text,kind", [
    ("Set PIN 1234", "setPin"),
    ("my pin is 654321", "setPin"),
    ("show my coupons", "listCoupons"),
    ("check coupon GIFTAB12CD34", "checkCoupon"),
    ("redeem GIFTAB12CD34", "redeemCoupon"),
    ("create gift coupon $20", "createCoupon"),
    ("How much do I have", "balance"),
    ("what is my wallet address", "account"),
    ("help", "help"),
    ("pay 7.25 to 415-555-0102", "send"),
    ("Send $10 to +14155550102 as a gift", "send"),
    ("gift $10 to +14155550102", "unknown"),
    ("hello there", "unknown"),
])
def test_fallback_rules(text, kind):
    assert fallback_parse(text).type == kind


def test_send_amount_not_taken_from_phone_digits():
    intent = fallback_parse("send +14155550102 $3.50")
    assert intent.type == "send"
    assert intent.amount == "3.50"


def test_create_coupon_details():
    intent = fallback_parse('create gift coupon $15 expires in 7 days message: "Happy birthday"')
    assert intent.type == "createCoupon"
    assert intent.amount == "15"
    assert intent.expiry_days == 7
    assert intent.message == "Happy birthday"


def test_create_coupon_default_amount():
    assert fallback_parse("make a gift coupon").amount == "5.00"


def test_unknown_keeps_original_message():
    intent = fallback_parse("qwerty")
    assert intent.original_message == "qwerty"


def test_recipient_follows_to_keyword():
    intent = fallback_parse("Send $1234567890 to +14155550102")
    assert intent.type == "send"
    assert intent.recipient == "+14155550102"
    assert intent.amount == "1234567890"


def test_requester_follows_from_keyword():
    intent = fallback_parse("request 4155550199 from 415-555-0103")
    assert intent.type == "request"
    assert intent.from_ == "415-555-0103"
    assert intent.amount == "4155550199"


@pytest.mark.parametrize("raw", ["1e30", "1" + "0" * 30, "0", "-5", "1.005", "NaN", "abc", None])
def test_parse_amount_rejects(raw):
    assert parse_amount(raw) is None


def test_parse_amount_accepts():
    assert str(parse_amount("$7.5")) == "7.50"
    assert str(parse_amount(12)) == "12.00"
