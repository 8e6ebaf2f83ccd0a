"""
Pending action store: one staged send/request per user awaiting confirmation.

- MemoryPendingActionStore (default): dict + loop timers. None of its coroutine
  methods await anything, so each call runs to completion without another task
  interleaving. That is what makes ``confirm`` an atomic pop.
- RedisPendingActionStore: SET EX for supersede + expiry, GETDEL for confirm.
"""
from __future__ import annotations
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Literal, Optional

from pydantic import BaseModel

from giggle.core.config import get_settings
from giggle.core.logging import get_logger
from giggle.core.security import generate_uuid

logger = get_logger(__name__)
settings = get_settings()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PendingAction(BaseModel):
    id: str
    user_id: str
    phone_number: str
    kind: Literal["send", "request"]
    amount: str
    counterparty: str                 # counterparty user id
    counterparty_phone: str
    currency: Literal["PYUSD"] = "PYUSD"
    pin: Optional[str] = None
    created_at: datetime
    expires_at: datetime

    def __repr__(self) -> str:          # never show the pin
        return f"<PendingAction id={self.id} kind={self.kind} amount={self.amount}>"

    __str__ = __repr__


class MemoryPendingActionStore:
    def __init__(self, ttl_seconds: int = None, clock: Callable[[], datetime] = None):
        self.ttl = timedelta(seconds=ttl_seconds or settings.PENDING_ACTION_TTL_SECONDS)
        self._clock = clock or _utcnow
        self._actions: dict[str, PendingAction] = {}        # user_id -> action
        self._timers: dict[str, asyncio.TimerHandle] = {}   # user_id -> expiry timer

    # -- internal ----------------------------------------------------------
    def _remove(self, user_id: str) -> Optional[PendingAction]:
        timer = self._timers.pop(user_id, None)
        if timer is not None:
            timer.cancel()
        return self._actions.pop(user_id, None)

    def _expire(self, user_id: str, action_id: str) -> None:
        current = self._actions.get(user_id)
        # The timer only owns the action it was armed for.
        if current is not None and current.id == action_id:
            self._remove(user_id)
            logger.info("Pending action %s for user %s expired", action_id, user_id)

    def _live(self, user_id: str) -> Optional[PendingAction]:
        action = self._actions.get(user_id)
        if action is None:
            return None
        if self._clock() > action.expires_at:
            self._remove(user_id)
            return None
        return action

    # -- interface ---------------------------------------------------------
    async def create(self, user_id: str, phone_number: str, kind: str, amount: str,
                     counterparty: str, counterparty_phone: str) -> PendingAction:
        if self._remove(user_id) is not None:
            logger.info("Superseded pending action for user %s", user_id)
        now = self._clock()
        action = PendingAction(
            id=generate_uuid(),
            user_id=user_id,
            phone_number=phone_number,
            kind=kind,
            amount=amount,
            counterparty=counterparty,
            counterparty_phone=counterparty_phone,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self._actions[user_id] = action
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._timers[user_id] = loop.call_later(
                self.ttl.total_seconds(), self._expire, user_id, action.id
            )
        logger.info("Staged %s action %s for user %s", kind, action.id, user_id)
        return action

    async def get(self, user_id: str) -> Optional[PendingAction]:
        return self._live(user_id)

    async def confirm(self, user_id: str, pin: str = None) -> Optional[PendingAction]:
        action = self._live(user_id)
        if action is None:
            return None
        self._remove(user_id)
        if pin:
            action = action.model_copy(update={"pin": pin})
        return action

    async def cancel(self, user_id: str) -> bool:
        live = self._live(user_id)
        self._remove(user_id)
        return live is not None

    async def has_pending(self, user_id: str) -> bool:
        return self._live(user_id) is not None

    async def sweep(self) -> int:
        now = self._clock()
        expired = [uid for uid, a in self._actions.items() if now > a.expires_at]
        for uid in expired:
            self._remove(uid)
        if expired:
            logger.info("Swept %d expired pending action(s)", len(expired))
        return len(expired)


class RedisPendingActionStore:
    KEY_PREFIX = "giggle:pending:"

    def __init__(self, client, ttl_seconds: int = None):
        self._redis = client
        self.ttl_seconds = ttl_seconds or settings.PENDING_ACTION_TTL_SECONDS

    def _key(self, user_id: str) -> str:
        return f"{self.KEY_PREFIX}{user_id}"

    async def create(self, user_id: str, phone_number: str, kind: str, amount: str,
                     counterparty: str, counterparty_phone: str) -> PendingAction:
        now = _utcnow()
        action = PendingAction(
            id=generate_uuid(),
            user_id=user_id,
            phone_number=phone_number,
            kind=kind,
            amount=amount,
            counterparty=counterparty,
            counterparty_phone=counterparty_phone,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        # SET replaces whatever was staged before.
        await self._redis.set(self._key(user_id), action.model_dump_json(), ex=self.ttl_seconds)
        logger.info("Staged %s action %s for user %s (redis)", kind, action.id, user_id)
        return action

    async def get(self, user_id: str) -> Optional[PendingAction]:
        raw = await self._redis.get(self._key(user_id))
        return PendingAction.model_validate_json(raw) if raw else None

    async def confirm(self, user_id: str, pin: str = None) -> Optional[PendingAction]:
        raw = await self._redis.getdel(self._key(user_id))
        if not raw:
            return None
        action = PendingAction.model_validate_json(raw)
        if pin:
            action = action.model_copy(update={"pin": pin})
        return action

    async def cancel(self, user_id: str) -> bool:
        return bool(await self._redis.delete(self._key(user_id)))

    async def has_pending(self, user_id: str) -> bool:
        return bool(await self._redis.exists(self._key(user_id)))

    async def sweep(self) -> int:
        return 0    # keys expire server-side


def build_pending_store(redis_client=None):
    if redis_client is not None:
        logger.info("Pending actions: redis")
        return RedisPendingActionStore(redis_client)
    logger.info("Pending actions: in-memory")
    return MemoryPendingActionStore()
