import asyncio

from giggle.db import repo
from giggle.services import templates
from giggle.services.intent import SendIntent

from conftest import ALICE, BOB


async def _setup_alice(onboarded, wallet, balance="50"):
    alice = await onboarded(ALICE)
    handle = await wallet.get_or_create_wallet(alice.id, ALICE)
    wallet.fund(handle.address, pyusd=balance, eth="0.01")
    return alice, handle


async def _transactions(session_factory, phone):
    async with session_factory() as s:
        user = await repo.get_user_by_phone(s, phone)
        return await repo.list_user_transactions(s, user.id, 10)


async def test_send_with_correct_pin(say, onboarded, wallet, messenger, store, session_factory):
    alice, _ = await _setup_alice(onboarded, wallet)

    replies = await say(ALICE, "Send $10 to +14155550102")
    assert "Confirm Transaction" in replies[0]
    assert "PIN" in replies[0]
    assert await store.has_pending(alice.id)

    replies = await say(ALICE, "1234")
    assert replies[0] == templates.sending()
    assert "Sent!" in replies[1]
    assert not await store.has_pending(alice.id)
    assert len(wallet.transfers) == 1

    sent = await _transactions(session_factory, ALICE)
    received = await _transactions(session_factory, BOB)
    assert [(t.type, t.status, t.amount) for t in sent] == [("send", "confirmed", "10.00")]
    assert [(t.type, t.status, t.amount) for t in received] == [("receive", "confirmed", "10.00")]
    assert sent[0].tx_hash == received[0].tx_hash
    assert sent[0].tx_hash[:10] in replies[1]

    # counterparty notified after commit
    assert messenger.outbox[-1][0] == BOB
    assert "Received!" in messenger.outbox[-1][1]


async def test_wrong_pin_cancels_and_retry_is_fresh(say, onboarded, wallet, store, session_factory):
    alice, _ = await _setup_alice(onboarded, wallet)

    await say(ALICE, "Send $10 to +14155550102")
    first = await store.get(alice.id)
    replies = await say(ALICE, "9999")
    assert "Incorrect PIN" in replies[0]
    assert not await store.has_pending(alice.id)
    assert wallet.transfers == []
    assert await _transactions(session_factory, ALICE) == []

    await say(ALICE, "Send $10 to +14155550102")
    second = await store.get(alice.id)
    assert second is not None and second.id != first.id


async def test_confirm_word_on_send_asks_for_pin(say, onboarded, wallet, store):
    alice, _ = await _setup_alice(onboarded, wallet)
    await say(ALICE, "Send $10 to +14155550102")
    assert await say(ALICE, "yes") == [templates.pin_entry_prompt()]
    assert await store.has_pending(alice.id)
    assert wallet.transfers == []


async def test_pin_is_not_sent_to_llm(say, onboarded, wallet, llm):
    await _setup_alice(onboarded, wallet)
    await say(ALICE, "Send $10 to +14155550102")
    await say(ALICE, "1234")
    assert "1234" not in llm.calls


async def test_expired_action_cannot_be_confirmed(say, onboarded, wallet, clock):
    await _setup_alice(onboarded, wallet)
    await say(ALICE, "Send $10 to +14155550102")
    clock.advance(301)
    replies = await say(ALICE, "1234")
    assert replies == [templates.unknown_hint()]
    assert wallet.transfers == []


async def test_new_send_supersedes_pending(say, onboarded, wallet):
    await _setup_alice(onboarded, wallet)
    await say(ALICE, "Send $10 to +14155550102")
    await say(ALICE, "Send $20 to +14155550102")
    await say(ALICE, "1234")
    assert [t[2] for t in wallet.transfers] == ["20.00"]


async def test_concurrent_pin_replies_execute_once(router, onboarded, wallet):
    await _setup_alice(onboarded, wallet)
    await router.handle_inbound_message({"from": ALICE, "body": "Send $10 to +14155550102"})
    await asyncio.gather(*(router.handle_inbound_message({"From": f"whatsapp:{ALICE}", "Body": "1234"})
                           for _ in range(3)))
    assert len(wallet.transfers) == 1


async def test_send_rejections(say, onboarded, wallet, session_factory):
    alice, _ = await _setup_alice(onboarded, wallet, balance="5")
    assert "yourself" in (await say(ALICE, f"Send $1 to {ALICE}"))[0]
    assert "Insufficient balance" in (await say(ALICE, "Send $10 to +14155550102"))[0]
    assert "Daily limit" in (await say(ALICE, "Send $150 to +14155550102"))[0]

    async with session_factory() as s:
        await repo.update_user(s, alice.id, is_locked=True)
    assert "locked" in (await say(ALICE, "Send $1 to +14155550102"))[0]


async def test_send_requires_pin(say, onboarded, wallet):
    await onboarded(ALICE, pin=None)
    assert await say(ALICE, "Send $1 to +14155550102") == [templates.pin_required_setup()]


async def test_request_flow(say, onboarded, messenger, session_factory):
    await onboarded(ALICE)
    replies = await say(ALICE, "Request $5 from +14155550102")
    assert "Confirm Payment Request" in replies[0]
    replies = await say(ALICE, "yes")
    assert replies == [templates.request_recorded("5.00")]
    assert messenger.outbox[-1] == (BOB, templates.payment_request_notice(ALICE, "5.00"))
    rows = await _transactions(session_factory, ALICE)
    assert [(t.type, t.status) for t in rows] == [("request", "pending")]


async def test_request_recorded_even_if_notify_fails(say, onboarded, messenger):
    async def broken(to, body):
        raise RuntimeError("twilio down")

    messenger.send_message = broken
    await onboarded(ALICE)
    await say(ALICE, "Request $5 from +14155550102")
    assert await say(ALICE, "yes") == [templates.request_recorded("5.00")]


async def test_cancel(say, onboarded, wallet, store):
    alice, _ = await _setup_alice(onboarded, wallet)
    assert await say(ALICE, "cancel") == [templates.no_pending_to_cancel()]
    await say(ALICE, "Send $10 to +14155550102")
    assert await say(ALICE, "no") == [templates.transaction_cancelled()]
    assert not await store.has_pending(alice.id)
    assert await say(ALICE, "yes") == [templates.no_pending_to_confirm()]


async def test_set_pin_after_onboarding(say, onboarded, pins, session_factory):
    await onboarded(ALICE, pin=None)
    assert await say(ALICE, "set pin 5678") == [templates.pin_set_success()]
    async with session_factory() as s:
        user = await repo.get_user_by_phone(s, ALICE)
    assert pins.verify("5678", user.pin_hash)


async def test_read_only_intents(say, onboarded, wallet):
    _, handle = await _setup_alice(onboarded, wallet)
    balance = (await say(ALICE, "what's my balance"))[0]
    assert "PYUSD: $50.00" in balance
    assert "≈ $25.00" in balance
    account = (await say(ALICE, "show my account"))[0]
    assert handle.address in account
    assert "No transactions yet" in (await say(ALICE, "show history"))[0]
    assert "Set up your PIN" not in (await say(ALICE, "help"))[0]


async def test_help_hints_pin_setup(say, onboarded):
    await onboarded(ALICE, pin=None)
    assert "Set up your PIN" in (await say(ALICE, "help"))[0]


async def test_unknown_message(say, onboarded):
    await onboarded(ALICE)
    assert await say(ALICE, "hello there") == [templates.unknown_hint()]


async def test_unexpected_error_becomes_apology(router, onboarded, monkeypatch):
    await onboarded(ALICE)

    async def boom(text):
        raise RuntimeError("classifier exploded")

    monkeypatch.setattr(router.classifier, "parse", boom)
    assert await router.handle_inbound_message({"from": ALICE, "body": "hi"}) == [templates.GENERIC_APOLOGY]


async def test_missing_sender(router):
    replies = await router.handle_inbound_message({"body": "hi"})
    assert len(replies) == 1 and "sender" in replies[0]


async def test_invalid_recipient_phone(router, say, onboarded, monkeypatch):
    await onboarded(ALICE)

    async def parse(text):
        return SendIntent(amount="1", recipient="12345")

    monkeypatch.setattr(router.classifier, "parse", parse)
    assert await say(ALICE, "send a dollar to 12345") == [templates.invalid_phone("12345")]


async def test_oversized_amount_gets_validation_reply(say, onboarded, wallet, llm, store):
    alice, _ = await _setup_alice(onboarded, wallet)
    llm.error = None
    llm.reply = '{"type": "send", "amount": "1e30", "recipient": "+14155550102"}'

    replies = await say(ALICE, "send bob a fortune")
    assert len(replies) == 1
    assert "Invalid amount: 1e30" in replies[0]
    assert replies[0] != templates.GENERIC_APOLOGY
    assert not await store.has_pending(alice.id)


async def test_send_as_a_gift_is_staged_behind_pin(say, onboarded, wallet, store):
    alice, _ = await _setup_alice(onboarded, wallet)

    replies = await say(ALICE, "Send $10 to +14155550102 as a gift")
    assert "Confirm Transaction" in replies[0]
    assert await store.has_pending(alice.id)
    assert wallet.transfers == []
