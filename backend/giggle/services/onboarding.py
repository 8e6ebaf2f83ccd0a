"""
Onboarding sequencer: welcome → pin → completed.

``network`` and ``token`` are legacy steps from an older flow; users still sitting
on them are completed on their next message.
"""
from __future__ import annotations
import asyncio
import re

from sqlalchemy.ext.asyncio import AsyncSession

from giggle.core.config import get_settings
from giggle.core.logging import get_logger
from giggle.db import repo
from giggle.db.models import User
from giggle.services import templates
from giggle.services.pin_guard import pin_guard as default_pin_guard
from giggle.services.wallet import ensure_user_wallet

logger = get_logger(__name__)
settings = get_settings()

STEPS = ("welcome", "pin", "network", "token", "completed")
PROGRESS = {"welcome": 0, "pin": 25, "network": 50, "token": 75, "completed": 100}
SET_PIN_RE = re.compile(r"set\s+pin\s+(\d{4,6})\b", re.IGNORECASE)


class OnboardingSequencer:
    def __init__(self, wallet, pin_guard=None):
        self.wallet = wallet
        self.pin_guard = pin_guard or default_pin_guard

    @staticmethod
    def needs_onboarding(user: User) -> bool:
        return not user.onboarding_completed

    @staticmethod
    def current_step(user: User) -> str:
        return user.onboarding_step if user.onboarding_step in STEPS else "welcome"

    @staticmethod
    def progress(step: str) -> int:
        return PROGRESS.get(step, 0)

    async def reset(self, session: AsyncSession, user: User) -> None:
        await repo.update_user(session, user.id, onboarding_completed=False,
                               onboarding_step="welcome", pin_hash=None)
        logger.info("Onboarding reset for user %s", user.id)

    async def _complete(self, session: AsyncSession, user: User) -> list[str]:
        await repo.update_user(session, user.id, onboarding_completed=True, onboarding_step="completed")
        handle = await ensure_user_wallet(session, self.wallet, user)
        logger.info("Onboarding completed for user %s", user.id)
        return [templates.onboarding_complete(handle.address, self.wallet.address_explorer_url(handle.address))]

    async def handle(self, session: AsyncSession, user: User, text: str) -> list[str]:
        step = self.current_step(user)
        lowered = (text or "").strip().lower()
        logger.info("Onboarding user=%s step=%s", user.id, step)

        if step == "welcome":
            await repo.update_user(session, user.id, onboarding_step="pin")
            return [templates.onboarding_welcome()]

        if step == "pin":
            if "continue" in lowered:
                return [templates.onboarding_pin()]
            if lowered.startswith("set pin"):
                match = SET_PIN_RE.match(lowered)
                if not match or not self.pin_guard.is_valid_format(match.group(1)):
                    return [templates.invalid_pin_format()]
                pin_hash = await asyncio.to_thread(self.pin_guard.hash, match.group(1))
                await repo.update_user(
                    session, user.id,
                    pin_hash=pin_hash,
                    default_network=settings.DEFAULT_NETWORK,
                    default_token=settings.DEFAULT_TOKEN,
                )
                return [templates.onboarding_pin_success(), *await self._complete(session, user)]
            return [templates.onboarding_pin()]

        if step in ("network", "token"):
            return await self._complete(session, user)

        # completed but flag unset: repair the row
        return await self._complete(session, user)
