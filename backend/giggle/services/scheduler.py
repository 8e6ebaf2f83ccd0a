"""
Background jobs on an APScheduler AsyncIOScheduler.

- sweep_pending_actions: drops expired staged actions (memory store only;
  Redis expires keys itself).
- process_due_intents: scheduled payments that came due. The owner gets a
  reminder and the intent moves to ``approved``. Intents whose owner no longer
  exists are ``cancelled``.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession

from giggle.core.config import get_settings
from giggle.core.errors import NotFoundError, ValidationError
from giggle.core.logging import get_logger
from giggle.db import repo
from giggle.db.models import ScheduledIntent
from giggle.services import templates
from giggle.services.amounts import format_amount, parse_amount
from giggle.services.phones import normalize_phone

logger = get_logger(__name__)
settings = get_settings()


async def schedule_intent(session: AsyncSession, user_id: str, amount: str, recipient: str,
                          scheduled_for: datetime, token: str = "PYUSD",
                          metadata: Optional[dict] = None) -> ScheduledIntent:
    user = await repo.get_user(session, user_id)
    if user is None:
        raise NotFoundError(f"user {user_id} missing", user_message="User not found.")
    value = parse_amount(amount)
    if value is None:
        raise ValidationError(f"Invalid amount: {amount}")
    recipient_phone = normalize_phone(recipient)
    if not recipient_phone:
        raise ValidationError(f"Invalid phone number: {recipient}")
    if scheduled_for.tzinfo is None:
        scheduled_for = scheduled_for.replace(tzinfo=timezone.utc)

    intent = await repo.create_scheduled_intent(
        session, user_id=user_id, token=token, amount=format_amount(value),
        recipient=recipient_phone, scheduled_for=scheduled_for, metadata=metadata,
    )
    await repo.log_audit(session, user_id, "intent_scheduled",
                         {"intent_id": intent.id, "amount": intent.amount, "recipient": recipient_phone})
    logger.info("Scheduled intent %s for user %s at %s", intent.id, user_id, scheduled_for.isoformat())
    return intent


async def cancel_intent(session: AsyncSession, intent_id: str) -> bool:
    intent = await repo.get_scheduled_intent(session, intent_id)
    if intent is None:
        raise NotFoundError(f"scheduled intent {intent_id} missing", user_message="Scheduled intent not found.")
    cancelled = await repo.update_scheduled_intent_status(session, intent_id, "cancelled",
                                                          {**intent.meta, "reason": "cancelled by user"})
    if cancelled:
        await repo.log_audit(session, intent.user_id, "intent_cancelled", {"intent_id": intent_id})
    return cancelled


class GiggleScheduler:
    def __init__(self, session_factory, store, messenger):
        self.session_factory = session_factory
        self.store = store
        self.messenger = messenger
        self.scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
            timezone="UTC",
        )

    def setup_jobs(self) -> None:
        self.scheduler.add_job(
            self.sweep_pending_actions,
            trigger=IntervalTrigger(seconds=settings.PENDING_SWEEP_INTERVAL_SECONDS),
            id="sweep_pending_actions",
            name="Sweep expired pending actions",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.process_due_intents,
            trigger=IntervalTrigger(seconds=settings.SCHEDULER_INTERVAL_SECONDS),
            id="process_due_intents",
            name="Process due scheduled intents",
            replace_existing=True,
        )

    def start(self) -> None:
        self.setup_jobs()
        self.scheduler.start()
        logger.info("Scheduler started (%d jobs)", len(self.scheduler.get_jobs()))

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    async def sweep_pending_actions(self) -> int:
        return await self.store.sweep()

    async def process_due_intents(self, now: datetime = None) -> dict:
        now = now or datetime.now(timezone.utc)
        counts = {"approved": 0, "cancelled": 0}
        async with self.session_factory() as session:
            due = await repo.list_due_scheduled_intents(session, now)
            for intent in due:
                user = await repo.get_user(session, intent.user_id)
                if user is None:
                    await repo.update_scheduled_intent_status(
                        session, intent.id, "cancelled", {**intent.meta, "reason": "owner not found"}
                    )
                    counts["cancelled"] += 1
                    logger.warning("Scheduled intent %s cancelled: owner %s missing", intent.id, intent.user_id)
                    continue
                try:
                    await self.messenger.send_message(
                        user.phone_number,
                        templates.scheduled_reminder(intent.amount, intent.token, intent.recipient),
                    )
                except Exception as exc:
                    # Stays pending; the next run retries the reminder.
                    logger.warning("Reminder for scheduled intent %s failed: %s", intent.id, exc)
                    continue
                await repo.update_scheduled_intent_status(
                    session, intent.id, "approved", {**intent.meta, "reminded_at": now.isoformat()}
                )
                await repo.log_audit(session, user.id, "intent_reminded",
                                     {"intent_id": intent.id, "amount": intent.amount,
                                      "recipient": intent.recipient})
                counts["approved"] += 1
        if due:
            logger.info("Processed %d due scheduled intent(s): %s", len(due), counts)
        return counts

