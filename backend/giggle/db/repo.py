"""Data access / repository layer (async SQLAlchemy + optional Redis)."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from giggle.core.config import get_settings
from giggle.core.logging import get_logger
from giggle.db.models import Base, User, Transaction, ScheduledIntent, GiftCoupon, AuditLog

logger = get_logger(__name__)
settings = get_settings()

TERMINAL_TX_STATUSES = ("confirmed", "failed")
TERMINAL_INTENT_STATUSES = ("approved", "executed", "cancelled")

# ---------------------------------------------------------------------------
# Engine / Session
# ---------------------------------------------------------------------------
engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB tables initialised")


async def get_session() -> AsyncSession:      # noqa: D401
    async with AsyncSessionLocal() as session:
        yield session


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; treat them as UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Redis (optional backing for the pending action store)
# ---------------------------------------------------------------------------
_redis_client = None


async def _init_redis() -> None:
    global _redis_client
    if settings.REDIS_URL:
        try:
            import redis.asyncio as aioredis
            _redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
            await _redis_client.ping()
            logger.info("Redis connected")
        except Exception as exc:
            logger.warning("Redis unavailable, using in-memory store: %s", exc)
            _redis_client = None


def get_redis():
    return _redis_client


# ---------------------------------------------------------------------------
# User helpers
# ---------------------------------------------------------------------------
async def get_user(session: AsyncSession, user_id: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_phone(session: AsyncSession, phone_number: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.phone_number == phone_number))
    return result.scalar_one_or_none()


async def get_or_create_user(session: AsyncSession, phone_number: str) -> User:
    existing = await get_user_by_phone(session, phone_number)
    if existing:
        return existing
    user = User(phone_number=phone_number, daily_limit=settings.DEFAULT_DAILY_LIMIT)
    session.add(user)
    try:
        await session.commit()
    except IntegrityError:
        # Another task created the same phone number first.
        await session.rollback()
        existing = await get_user_by_phone(session, phone_number)
        if existing is None:
            raise
        return existing
    await session.refresh(user)
    logger.info("Created user %s", user.id)
    return user


async def update_user(session: AsyncSession, user_id: str, **fields) -> Optional[User]:
    user = await get_user(session, user_id)
    if user:
        for key, value in fields.items():
            setattr(user, key, value)
        await session.commit()
    return user


async def set_wallet_address(session: AsyncSession, user: User, address: str) -> User:
    """Assign the wallet address once. An existing address is never replaced."""
    if user.wallet_address:
        if user.wallet_address != address:
            logger.warning("Refusing to replace wallet address for user %s", user.id)
        return user
    user.wallet_address = address
    await session.commit()
    return user


# ---------------------------------------------------------------------------
# Transaction helpers
# ---------------------------------------------------------------------------
async def create_transaction(session: AsyncSession, **kwargs) -> Transaction:
    kwargs.setdefault("status", "pending")
    t = Transaction(**kwargs)
    session.add(t)
    await session.commit()
    await session.refresh(t)
    return t


async def get_transaction(session: AsyncSession, tx_id: str) -> Optional[Transaction]:
    result = await session.execute(select(Transaction).where(Transaction.id == tx_id))
    return result.scalar_one_or_none()


async def update_transaction_hash(session: AsyncSession, tx_id: str, tx_hash: str) -> None:
    t = await get_transaction(session, tx_id)
    if t:
        t.tx_hash = tx_hash
        await session.commit()


async def update_transaction_status(session: AsyncSession, tx_id: str, status: str,
                                    block_number: int = None, gas_used: str = None) -> bool:
    """Move a transaction out of ``pending``. Terminal rows are left untouched."""
    t = await get_transaction(session, tx_id)
    if t is None:
        return False
    if t.status in TERMINAL_TX_STATUSES:
        logger.warning("Ignoring status change %s -> %s for tx %s", t.status, status, tx_id)
        return False
    t.status = status
    if block_number is not None:
        t.block_number = block_number
    if gas_used is not None:
        t.gas_used = gas_used
    await session.commit()
    return True


async def list_user_transactions(session: AsyncSession, user_id: str, limit: int = 10) -> list[Transaction]:
    result = await session.execute(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def sum_sent_since(session: AsyncSession, user_id: str, since: datetime) -> Decimal:
    """Total confirmed outgoing amount since ``since`` (amounts are strings)."""
    result = await session.execute(
        select(Transaction.amount).where(
            Transaction.user_id == user_id,
            Transaction.type == "send",
            Transaction.status == "confirmed",
            Transaction.created_at >= since,
        )
    )
    return sum((Decimal(a) for a in result.scalars().all()), Decimal("0"))


# ---------------------------------------------------------------------------
# Scheduled intent helpers
# ---------------------------------------------------------------------------
async def create_scheduled_intent(session: AsyncSession, **kwargs) -> ScheduledIntent:
    metadata = kwargs.pop("metadata", None)
    intent = ScheduledIntent(**kwargs)
    if metadata is not None:
        intent.metadata_json = json.dumps(metadata)
    session.add(intent)
    await session.commit()
    await session.refresh(intent)
    return intent


async def get_scheduled_intent(session: AsyncSession, intent_id: str) -> Optional[ScheduledIntent]:
    result = await session.execute(select(ScheduledIntent).where(ScheduledIntent.id == intent_id))
    return result.scalar_one_or_none()


async def list_due_scheduled_intents(session: AsyncSession, now: datetime) -> list[ScheduledIntent]:
    result = await session.execute(
        select(ScheduledIntent).where(
            ScheduledIntent.status == "pending",
            ScheduledIntent.scheduled_for <= now,
        ).order_by(ScheduledIntent.scheduled_for)
    )
    return list(result.scalars().all())


async def list_user_scheduled_intents(session: AsyncSession, user_id: str) -> list[ScheduledIntent]:
    result = await session.execute(
        select(ScheduledIntent)
        .where(ScheduledIntent.user_id == user_id)
        .order_by(ScheduledIntent.scheduled_for)
    )
    return list(result.scalars().all())


async def update_scheduled_intent_status(session: AsyncSession, intent_id: str, status: str,
                                         metadata: dict = None) -> bool:
    intent = await get_scheduled_intent(session, intent_id)
    if intent is None or intent.status in TERMINAL_INTENT_STATUSES:
        return False
    intent.status = status
    if metadata is not None:
        intent.metadata_json = json.dumps(metadata)
    await session.commit()
    return True


# ---------------------------------------------------------------------------
# Gift coupon helpers
# ---------------------------------------------------------------------------
async def save_coupon(session: AsyncSession, **kwargs) -> GiftCoupon:
    coupon = GiftCoupon(status="active", **kwargs)
    session.add(coupon)
    await session.commit()
    await session.refresh(coupon)
    return coupon


async def get_coupon_by_code(session: AsyncSession, code: str) -> Optional[GiftCoupon]:
    result = await session.execute(select(GiftCoupon).where(GiftCoupon.code == code))
    return result.scalar_one_or_none()


async def mark_coupon_redeemed(session: AsyncSession, code: str, redeemed_by: str,
                               tx_hash: Optional[str]) -> bool:
    coupon = await get_coupon_by_code(session, code)
    if coupon is None or coupon.status != "active":
        return False
    coupon.status = "redeemed"
    coupon.redeemed_by = redeemed_by
    coupon.redeemed_at = datetime.now(timezone.utc)
    if tx_hash:
        coupon.tx_hash = tx_hash
    await session.commit()
    return True


async def list_active_coupons(session: AsyncSession, creator_id: str) -> list[GiftCoupon]:
    result = await session.execute(
        select(GiftCoupon)
        .where(GiftCoupon.creator_id == creator_id, GiftCoupon.status == "active")
        .order_by(GiftCoupon.created_at)
    )
    return list(result.scalars().all())


async def list_redeemed_coupons(session: AsyncSession, user_id: str) -> list[GiftCoupon]:
    result = await session.execute(
        select(GiftCoupon)
        .where(GiftCoupon.redeemed_by == user_id)
        .order_by(GiftCoupon.redeemed_at.desc())
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------
async def log_audit(session: AsyncSession, user_id: Optional[str], action: str,
                    details: Optional[dict] = None, channel_message_id: Optional[str] = None) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        action=action,
        details_json=json.dumps(details, default=str) if details else None,
        channel_message_id=channel_message_id,
    )
    session.add(entry)
    await session.commit()
    return entry


async def list_audit_logs(session: AsyncSession, user_id: Optional[str] = None,
                          limit: int = 50) -> list[AuditLog]:
    query = select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit)
    if user_id:
        query = query.where(AuditLog.user_id == user_id)
    result = await session.execute(query)
    return list(result.scalars().all())
