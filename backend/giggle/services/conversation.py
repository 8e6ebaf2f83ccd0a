"""
Conversation router: one inbound WhatsApp message in, reply messages out.

    get-or-create user → audit (PIN redacted) → onboarding gate → classify →
    dispatch → [pending action store] → executor

``handle_inbound_message`` never raises; unexpected failures become a generic
apology so the user always gets a reply.
"""
from __future__ import annotations
import asyncio
import re
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from giggle.core.errors import AuthenticationError, GiggleError
from giggle.core.logging import get_logger
from giggle.core.security import redact_pin
from giggle.db import repo
from giggle.db.models import User
from giggle.services import templates
from giggle.services.amounts import format_amount, parse_amount
from giggle.services.intent import UnknownIntent
from giggle.services.messaging import strip_channel_prefix
from giggle.services.phones import normalize_phone
from giggle.services.wallet import ensure_user_wallet

logger = get_logger(__name__)

BARE_PIN_RE = re.compile(r"^[0-9]{4,6}$")
MAX_HISTORY = 20


class ConversationRouter:
    def __init__(self, session_factory, store, classifier, onboarding, executor,
                 wallet, coupons, price_feed, pin_guard):
        self.session_factory = session_factory
        self.store = store
        self.classifier = classifier
        self.onboarding = onboarding
        self.executor = executor
        self.wallet = wallet
        self.coupons = coupons
        self.price_feed = price_feed
        self.pin_guard = pin_guard
        self._tasks: set[asyncio.Task] = set()
        self._handlers = {
            "help": self._help,
            "balance": self._balance,
            "account": self._account,
            "history": self._history,
            "send": self._send,
            "request": self._request,
            "confirm": self._confirm,
            "cancel": self._cancel,
            "setPin": self._set_pin,
            "createCoupon": self._create_coupon,
            "redeemCoupon": self._redeem_coupon,
            "checkCoupon": self._check_coupon,
            "listCoupons": self._list_coupons,
            "unknown": self._unknown,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    async def handle_inbound_message(self, payload: dict) -> list[str]:
        phone = strip_channel_prefix(payload.get("from") or payload.get("From") or "")
        body = (payload.get("body") if "body" in payload else payload.get("Body")) or ""
        message_id = payload.get("message_id") or payload.get("MessageSid")
        if not phone:
            logger.warning("Inbound message %s without sender", message_id)
            return [templates.error("Could not identify the sender of this message.")]
        try:
            async with self.session_factory() as session:
                messages = await self._handle(session, phone, body, message_id)
        except Exception:
            logger.exception("Unhandled error for inbound message %s", message_id)
            return [templates.GENERIC_APOLOGY]
        return messages or [templates.unknown_hint()]

    async def _handle(self, session: AsyncSession, phone: str, body: str, message_id) -> list[str]:
        user = await repo.get_or_create_user(session, phone)
        await repo.log_audit(session, user.id, "message_received", {"body": redact_pin(body)}, message_id)

        if self.onboarding.needs_onboarding(user):
            return await self.onboarding.handle(session, user, body)

        text = body.strip()
        # A bare PIN answering a staged send never leaves the process.
        if BARE_PIN_RE.match(text) and await self.store.has_pending(user.id):
            intent = UnknownIntent(original_message=text)
        else:
            intent = await self.classifier.parse(text)
        logger.info("User %s intent=%s", user.id, intent.type)
        return await self._handlers[intent.type](session, user, intent)

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for background coupon jobs (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Read-only intents
    # ------------------------------------------------------------------
    async def _help(self, session, user: User, intent) -> list[str]:
        return [templates.help_message(has_pin=bool(user.pin_hash))]

    async def _balance(self, session, user: User, intent) -> list[str]:
        try:
            handle = await ensure_user_wallet(session, self.wallet, user)
            pyusd = await self.wallet.get_balance(handle.address)
            eth = await self.wallet.get_gas_balance(handle.address)
        except Exception as exc:
            logger.error("Balance lookup failed for user %s: %s", user.id, exc)
            return [templates.error("Could not retrieve balance. Please try again.")]
        eth_usd = await self.price_feed.get_price("ETH/USD")
        return [templates.balance_message(pyusd, eth, eth_usd)]

    async def _account(self, session, user: User, intent) -> list[str]:
        try:
            handle = await ensure_user_wallet(session, self.wallet, user)
            pyusd = await self.wallet.get_balance(handle.address)
            eth = await self.wallet.get_gas_balance(handle.address)
        except Exception as exc:
            logger.error("Account lookup failed for user %s: %s", user.id, exc)
            return [templates.error("Could not retrieve account info. Please try again.")]
        return [templates.account_message(handle.address, pyusd, eth,
                                          self.wallet.address_explorer_url(handle.address))]

    async def _history(self, session, user: User, intent) -> list[str]:
        limit = max(1, min(intent.limit, MAX_HISTORY))
        transactions = await repo.list_user_transactions(session, user.id, limit)
        return [templates.history_message(transactions, self.wallet.tx_explorer_url)]

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------
    async def _send(self, session, user: User, intent) -> list[str]:
        recipient_phone = normalize_phone(intent.recipient)
        if not recipient_phone:
            return [templates.invalid_phone(intent.recipient)]
        if recipient_phone == user.phone_number:
            return [templates.error("You can't send PYUSD to yourself.")]
        if user.is_locked:
            return [templates.error("Your account is locked. Outgoing transfers are disabled.")]
        if not user.pin_hash:
            return [templates.pin_required_setup()]
        amount = parse_amount(intent.amount)
        if amount is None:
            return [templates.error(f"Invalid amount: {intent.amount}\n\nExample: {templates.SAMPLE_SEND}")]

        start_of_day = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        spent = await repo.sum_sent_since(session, user.id, start_of_day)
        limit = Decimal(str(user.daily_limit))
        if spent + amount > limit:
            return [templates.error(
                f"Daily limit reached.\n\nYour limit is ${limit:.2f} per day and you've sent ${spent:.2f} today."
            )]

        try:
            recipient = await repo.get_or_create_user(session, recipient_phone)
            handle = await ensure_user_wallet(session, self.wallet, user)
            balance = await self.wallet.get_balance(handle.address)
        except Exception as exc:
            logger.error("Send pre-check failed for user %s: %s", user.id, exc)
            return [templates.error("Could not process send request. Please try again.")]
        amount_str = format_amount(amount)
        if Decimal(balance) < amount:
            return [templates.insufficient_balance(balance, amount_str)]

        await self.store.create(user.id, user.phone_number, "send", amount_str, recipient.id, recipient_phone)
        return [templates.send_confirmation_request(amount_str, recipient_phone, balance)]

    async def _request(self, session, user: User, intent) -> list[str]:
        from_phone = normalize_phone(intent.from_)
        if not from_phone:
            return [templates.invalid_phone(intent.from_)]
        if from_phone == user.phone_number:
            return [templates.error("You can't request PYUSD from yourself.")]
        amount = parse_amount(intent.amount)
        if amount is None:
            return [templates.error(f"Invalid amount: {intent.amount}")]
        payer = await repo.get_or_create_user(session, from_phone)
        amount_str = format_amount(amount)
        await self.store.create(user.id, user.phone_number, "request", amount_str, payer.id, from_phone)
        return [templates.request_confirmation_request(amount_str, from_phone)]

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------
    async def _confirm(self, session, user: User, intent) -> list[str]:
        action = await self.store.get(user.id)
        if action is None:
            return [templates.no_pending_to_confirm()]
        if action.kind == "send":
            # Sends leave the store only through a verified PIN.
            return [templates.pin_entry_prompt()]
        action = await self.store.confirm(user.id)
        if action is None:
            return [templates.no_pending_to_confirm()]
        outcome = await self.executor.execute(session, action)
        return outcome.messages

    async def _cancel(self, session, user: User, intent) -> list[str]:
        if await self.store.cancel(user.id):
            await repo.log_audit(session, user.id, "transaction_cancelled")
            return [templates.transaction_cancelled()]
        return [templates.no_pending_to_cancel()]

    async def _confirm_with_pin(self, session, user: User, pin: str) -> list[str]:
        if not user.pin_hash:
            return [templates.no_pin_set()]
        valid = await asyncio.to_thread(self.pin_guard.verify, pin, user.pin_hash)
        if not valid:
            await self.store.cancel(user.id)
            await repo.log_audit(session, user.id, "pin_verification_failed")
            logger.warning("Wrong PIN for user %s, pending action cancelled", user.id)
            return [AuthenticationError().user_message]
        action = await self.store.confirm(user.id, pin=pin)
        if action is None:
            return [templates.no_pending_to_confirm()]
        outcome = await self.executor.execute(session, action)
        return outcome.messages

    async def _set_pin(self, session, user: User, intent) -> list[str]:
        if not self.pin_guard.is_valid_format(intent.pin):
            return [templates.invalid_pin_format()]
        pin_hash = await asyncio.to_thread(self.pin_guard.hash, intent.pin)
        await repo.update_user(session, user.id, pin_hash=pin_hash)
        await repo.log_audit(session, user.id, "pin_set")
        return [templates.pin_set_success()]

    async def _unknown(self, session, user: User, intent) -> list[str]:
        text = intent.original_message.strip()
        if BARE_PIN_RE.match(text) and await self.store.has_pending(user.id):
            return await self._confirm_with_pin(session, user, text)
        return [templates.unknown_hint()]

    # ------------------------------------------------------------------
    # Gift coupons
    # ------------------------------------------------------------------
    async def _create_coupon(self, session, user: User, intent) -> list[str]:
        if not await self.coupons.is_configured():
            return [templates.coupons_unavailable()]
        self._spawn(self._create_coupon_job(user.id, user.phone_number, intent))
        return [templates.coupon_creating()]

    async def _create_coupon_job(self, user_id: str, phone: str, intent) -> None:
        try:
            async with self.session_factory() as session:
                user = await repo.get_user(session, user_id)
                coupon, tx_hash = await self.coupons.create(
                    session, user, intent.amount, intent.token, intent.message, intent.expiry_days
                )
            body = templates.coupon_created(coupon.code, coupon.amount, coupon.token, intent.expiry_days,
                                            self.wallet.tx_explorer_url(tx_hash))
        except GiggleError as exc:
            logger.warning("Coupon creation for user %s failed: %s", user_id, exc)
            body = templates.coupon_failed("create", exc.user_message)
        except Exception:
            logger.exception("Coupon creation for user %s crashed", user_id)
            body = templates.coupon_failed("create", "")
        await self.executor.notify(phone, body)

    async def _redeem_coupon(self, session, user: User, intent) -> list[str]:
        if not await self.coupons.is_configured():
            return [templates.coupons_unavailable()]
        self._spawn(self._redeem_coupon_job(user.id, user.phone_number, intent.code))
        return [templates.coupon_redeeming()]

    async def _redeem_coupon_job(self, user_id: str, phone: str, code: str) -> None:
        try:
            async with self.session_factory() as session:
                user = await repo.get_user(session, user_id)
                info, tx_hash = await self.coupons.redeem(session, user, code)
            body = templates.coupon_redeemed(info.amount, info.token, info.metadata.get("message"),
                                             self.wallet.tx_explorer_url(tx_hash))
        except GiggleError as exc:
            logger.warning("Coupon %s redemption by user %s failed: %s", code, user_id, exc)
            body = templates.coupon_failed("redeem", exc.user_message)
        except Exception:
            logger.exception("Coupon %s redemption by user %s crashed", code, user_id)
            body = templates.coupon_failed("redeem", "")
        await self.executor.notify(phone, body)

    async def _check_coupon(self, session, user: User, intent) -> list[str]:
        if not await self.coupons.is_configured():
            return [templates.coupons_unavailable()]
        if not intent.code:
            return [templates.coupon_code_missing()]
        code = intent.code.upper()
        try:
            info = await self.coupons.check(code)
        except GiggleError as exc:
            logger.error("Coupon check %s failed: %s", code, exc)
            return [templates.error("Could not check gift coupon. Please try again.")]
        if not info.exists:
            return [templates.coupon_not_found(code)]
        return [templates.coupon_status(code, info)]

    async def _list_coupons(self, session, user: User, intent) -> list[str]:
        active, redeemed = await self.coupons.list_for_user(session, user.id)
        return [templates.coupon_list(active, redeemed)]
