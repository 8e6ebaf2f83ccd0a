import asyncio
import gc
from datetime import datetime, timedelta, timezone

import pytest_asyncio

from giggle.db import repo
from giggle.services import templates

from conftest import ALICE, BOB


@pytest_asyncio.fixture
async def parties(session, wallet):
    alice = await repo.get_or_create_user(session, ALICE)
    bob = await repo.get_or_create_user(session, BOB)
    handle = await wallet.get_or_create_wallet(alice.id, ALICE)
    wallet.fund(handle.address, pyusd="50", eth="0.01")
    return alice, bob, handle


async def _action(store, alice, bob, amount="10.00", kind="send"):
    await store.create(alice.id, ALICE, kind, amount, bob.id, BOB)
    return await store.confirm(alice.id, pin="1234")


async def test_send_commits_before_notifying(executor, session, store, parties, messenger):
    alice, bob, _ = parties

    async def broken(to, body):
        raise RuntimeError("twilio down")

    messenger.send_message = broken
    outcome = await executor.execute(session, await _action(store, alice, bob))
    assert outcome.success
    assert outcome.tx_hash
    rows = await repo.list_user_transactions(session, alice.id)
    assert rows[0].status == "confirmed"
    assert rows[0].tx_hash == outcome.tx_hash


async def test_recipient_wallet_created(executor, session, store, parties):
    alice, bob, _ = parties
    assert bob.wallet_address is None
    await executor.execute(session, await _action(store, alice, bob))
    bob = await repo.get_user(session, bob.id)
    assert bob.wallet_address


async def test_balance_rechecked_at_execution(executor, session, store, parties, wallet):
    alice, bob, handle = parties
    action = await _action(store, alice, bob, amount="10.00")
    wallet.fund(handle.address, pyusd="4")
    outcome = await executor.execute(session, action)
    assert not outcome.success
    assert "$6.00 more" in outcome.messages[0]
    assert wallet.transfers == []
    assert await repo.list_user_transactions(session, alice.id) == []


async def test_no_gas(executor, session, store, parties, wallet):
    alice, bob, handle = parties
    wallet.fund(handle.address, eth="0")
    outcome = await executor.execute(session, await _action(store, alice, bob))
    assert not outcome.success
    assert "ETH" in outcome.messages[0]


async def test_transfer_failure_marks_row_failed(executor, session, store, parties, wallet):
    alice, bob, _ = parties
    wallet.fail_next = "nonce too low"
    outcome = await executor.execute(session, await _action(store, alice, bob))
    assert not outcome.success
    assert "Transaction failed" in outcome.messages[0]
    assert "nonce too low" in outcome.messages[0]
    rows = await repo.list_user_transactions(session, alice.id)
    assert [(r.type, r.status) for r in rows] == [("send", "failed")]
    assert await repo.list_user_transactions(session, bob.id) == []
    logs = await repo.list_audit_logs(session, alice.id)
    assert logs[0].action == "transaction_failed"


async def test_terminal_status_is_final(session, parties):
    alice, _, _ = parties
    row = await repo.create_transaction(session, user_id=alice.id, type="send", amount="1.00")
    assert await repo.update_transaction_status(session, row.id, "confirmed")
    assert not await repo.update_transaction_status(session, row.id, "failed")
    assert (await repo.get_transaction(session, row.id)).status == "confirmed"


async def test_daily_total_counts_only_confirmed_sends(executor, session, store, parties, wallet):
    alice, bob, _ = parties
    await executor.execute(session, await _action(store, alice, bob, amount="10.00"))
    wallet.fail_next = "boom"
    await executor.execute(session, await _action(store, alice, bob, amount="5.00"))
    since = datetime.now(timezone.utc) - timedelta(hours=1)
    assert str(await repo.sum_sent_since(session, alice.id, since)) == "10.00"


async def test_request(executor, session, store, parties, messenger):
    alice, bob, _ = parties
    outcome = await executor.execute(session, await _action(store, alice, bob, amount="3.00", kind="request"))
    assert outcome.success
    assert outcome.messages == [templates.request_recorded("3.00")]
    assert messenger.outbox == [(BOB, templates.payment_request_notice(ALICE, "3.00"))]


async def test_user_locks_released_after_send(executor, session, store, parties):
    alice, bob, _ = parties
    outcome = await executor.execute(session, await _action(store, alice, bob))
    assert outcome.success
    gc.collect()
    assert alice.id not in executor._locks


async def test_waiting_sender_shares_the_held_lock(executor, parties):
    alice, _, _ = parties
    lock = executor._lock_for(alice.id)
    async with lock:
        waiter = asyncio.create_task(lock.acquire())
        await asyncio.sleep(0)
        assert executor._lock_for(alice.id) is lock
    await waiter
    lock.release()
