"""
Action executor: runs a confirmed PendingAction.

send:    re-check balance and gas → pending row → transfer → confirm rows →
         reply → notify the counterparty (best-effort).
request: notify the counterparty (best-effort) → record → reply.

Commit happens before notify: once a transfer is confirmed in the DB a failed
WhatsApp delivery never turns it into an error.
"""
from __future__ import annotations
import asyncio
import weakref
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from giggle.core.errors import (
    ExecutionError, GiggleError, InsufficientFunds, InsufficientGas, NotFoundError,
)
from giggle.core.logging import get_logger
from giggle.db import repo
from giggle.services import templates
from giggle.services.pending_actions import PendingAction
from giggle.services.wallet import ensure_user_wallet

logger = get_logger(__name__)


@dataclass
class Outcome:
    success: bool
    messages: list[str] = field(default_factory=list)
    tx_hash: Optional[str] = None
    error: Optional[GiggleError] = None


class ActionExecutor:
    def __init__(self, wallet, messenger):
        self.wallet = wallet
        self.messenger = messenger
        # An entry lives only while some task holds or waits on the lock.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        # No await between lookup and insert, so two tasks can't create different locks.
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def execute(self, session: AsyncSession, action: PendingAction) -> Outcome:
        if action.kind == "send":
            async with self._lock_for(action.user_id):
                try:
                    return await self._send(session, action)
                except GiggleError as exc:
                    logger.warning("Send %s rejected: %s", action.id, exc)
                    return Outcome(success=False, messages=[templates.error(exc.user_message)], error=exc)
        return await self._request(session, action)

    async def notify(self, phone_number: str, body: str) -> bool:
        """Best-effort delivery. Failures are logged, never raised."""
        try:
            await self.messenger.send_message(phone_number, body)
            return True
        except Exception as exc:
            logger.warning("Notification to %s failed (state already committed): %s", phone_number, exc)
            return False

    # ------------------------------------------------------------------
    async def _send(self, session: AsyncSession, action: PendingAction) -> Outcome:
        sender = await repo.get_user(session, action.user_id)
        if sender is None:
            raise NotFoundError(f"sender {action.user_id} missing", user_message="Sender not found.")
        recipient = await repo.get_user(session, action.counterparty)
        if recipient is None:
            raise NotFoundError(f"recipient {action.counterparty} missing", user_message="Recipient not found.")

        source = await ensure_user_wallet(session, self.wallet, sender)
        target = await ensure_user_wallet(session, self.wallet, recipient)

        amount = Decimal(action.amount)
        balance = await self.wallet.get_balance(source.address)
        if Decimal(balance) < amount:
            raise InsufficientFunds(balance, action.amount, f"{amount - Decimal(balance):.2f}")
        if not await self.wallet.has_gas(source.address):
            raise InsufficientGas()

        row = await repo.create_transaction(
            session, user_id=sender.id, type="send", token=action.currency,
            amount=action.amount, recipient=target.address, sender=source.address,
        )
        try:
            result = await self.wallet.transfer(source.signer, target.address, action.amount)
        except Exception as exc:
            await repo.update_transaction_status(session, row.id, "failed")
            await repo.log_audit(session, sender.id, "transaction_failed",
                                 {"amount": action.amount, "recipient": target.address, "error": str(exc)})
            logger.error("Transfer for action %s failed: %s", action.id, exc)
            if isinstance(exc, ExecutionError):
                raise
            raise ExecutionError(str(exc)) from exc

        await repo.update_transaction_hash(session, row.id, result.tx_hash)
        await repo.update_transaction_status(session, row.id, "confirmed",
                                             block_number=result.block_number, gas_used=result.gas_used)
        await repo.create_transaction(
            session, user_id=recipient.id, type="receive", token=action.currency,
            amount=action.amount, recipient=target.address, sender=source.address,
            tx_hash=result.tx_hash, status="confirmed", block_number=result.block_number,
        )
        await repo.log_audit(session, sender.id, "transaction_sent",
                             {"amount": action.amount, "recipient": target.address, "tx_hash": result.tx_hash})
        logger.info("Action %s executed tx=%s", action.id, result.tx_hash)

        explorer_url = self.wallet.tx_explorer_url(result.tx_hash)
        messages = [
            templates.sending(),
            templates.transfer_confirmation("send", action.amount, action.counterparty_phone,
                                            result.tx_hash, explorer_url),
        ]
        await self.notify(
            action.counterparty_phone,
            templates.transfer_confirmation("receive", action.amount, action.phone_number,
                                            result.tx_hash, explorer_url),
        )
        return Outcome(success=True, messages=messages, tx_hash=result.tx_hash)

    async def _request(self, session: AsyncSession, action: PendingAction) -> Outcome:
        notified = await self.notify(
            action.counterparty_phone,
            templates.payment_request_notice(action.phone_number, action.amount),
        )
        await repo.create_transaction(
            session, user_id=action.user_id, type="request", token=action.currency,
            amount=action.amount, sender=action.counterparty_phone, recipient=action.phone_number,
        )
        await repo.log_audit(session, action.user_id, "payment_requested",
                             {"amount": action.amount, "from": action.counterparty_phone, "notified": notified})
        return Outcome(success=True, messages=[templates.request_recorded(action.amount)])
