"""SQLAlchemy async models for users, transfers, scheduled intents and coupons."""
from __future__ import annotations
import json
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Float, Integer, Boolean, Text, DateTime, ForeignKey
)
from sqlalchemy.orm import DeclarativeBase

from giggle.core.security import generate_uuid


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    phone_number = Column(String, nullable=False, unique=True, index=True)
    wallet_address = Column(String, nullable=True)
    pin_hash = Column(String, nullable=True)              # salt:hash, never logged
    daily_limit = Column(Float, nullable=False, default=100.0)
    is_locked = Column(Boolean, nullable=False, default=False)
    onboarding_completed = Column(Boolean, nullable=False, default=False)
    onboarding_step = Column(String, nullable=False, default="welcome")  # welcome|pin|network|token|completed
    default_network = Column(String, nullable=True)
    default_token = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    def __repr__(self) -> str:
        return f"<User id={self.id} phone={self.phone_number} step={self.onboarding_step}>"


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    tx_hash = Column(String, nullable=True, index=True)
    type = Column(String, nullable=False)          # send | receive | request
    token = Column(String, nullable=False, default="PYUSD")
    amount = Column(String, nullable=False)        # decimal string
    recipient = Column(String, nullable=True)
    sender = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending|confirmed|failed
    block_number = Column(Integer, nullable=True)
    gas_used = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)


class ScheduledIntent(Base):
    __tablename__ = "scheduled_intents"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    intent_type = Column(String, nullable=False, default="schedule")
    token = Column(String, nullable=False, default="PYUSD")
    amount = Column(String, nullable=False)
    recipient = Column(String, nullable=False)
    scheduled_for = Column(DateTime, nullable=False, index=True)
    status = Column(String, nullable=False, default="pending")  # pending|approved|executed|cancelled
    delegation_ref = Column(String, nullable=True)
    metadata_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    @property
    def meta(self) -> dict:
        return json.loads(self.metadata_json or "{}")


class GiftCoupon(Base):
    __tablename__ = "gift_coupons"

    id = Column(String, primary_key=True, default=generate_uuid)
    code = Column(String, nullable=False, unique=True, index=True)
    creator_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(String, nullable=False)
    token = Column(String, nullable=False, default="PYUSD")
    message = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="active")   # active|redeemed
    redeemed_by = Column(String, ForeignKey("users.id"), nullable=True)
    redeemed_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    tx_hash = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    action = Column(String, nullable=False)
    details_json = Column(Text, nullable=True)
    channel_message_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=_now)

    @property
    def details(self) -> dict:
        return json.loads(self.details_json or "{}")
