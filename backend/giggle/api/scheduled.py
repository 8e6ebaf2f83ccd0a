"""
POST /scheduled-intents
GET  /scheduled-intents?user_id=...
POST /scheduled-intents/{intent_id}/cancel
"""
from __future__ import annotations
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from giggle.core.errors import NotFoundError, ValidationError
from giggle.core.logging import get_logger
from giggle.db import repo
from giggle.db.models import ScheduledIntent
from giggle.services import scheduler

router = APIRouter()
logger = get_logger(__name__)


class ScheduleRequest(BaseModel):
    user_id: str
    amount: str
    recipient: str
    scheduled_for: datetime
    token: str = "PYUSD"
    metadata: Optional[dict] = None


def _serialize(intent: ScheduledIntent) -> dict:
    scheduled_for = repo.as_utc(intent.scheduled_for)
    return {
        "id": intent.id,
        "user_id": intent.user_id,
        "type": intent.intent_type,
        "token": intent.token,
        "amount": intent.amount,
        "recipient": intent.recipient,
        "scheduled_for": scheduled_for.isoformat() if scheduled_for else None,
        "status": intent.status,
        "metadata": intent.meta,
    }


@router.post("/scheduled-intents", status_code=201)
async def create_intent(req: ScheduleRequest, session: AsyncSession = Depends(repo.get_session)):
    try:
        intent = await scheduler.schedule_intent(
            session, req.user_id, req.amount, req.recipient, req.scheduled_for, req.token, req.metadata
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.user_message)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.user_message)
    return _serialize(intent)


@router.get("/scheduled-intents")
async def list_intents(user_id: str, session: AsyncSession = Depends(repo.get_session)):
    intents = await repo.list_user_scheduled_intents(session, user_id)
    return {"intents": [_serialize(i) for i in intents]}


@router.post("/scheduled-intents/{intent_id}/cancel")
async def cancel_intent(intent_id: str, session: AsyncSession = Depends(repo.get_session)):
    try:
        cancelled = await scheduler.cancel_intent(session, intent_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.user_message)
    if not cancelled:
        raise HTTPException(status_code=409, detail="Scheduled intent is no longer pending")
    intent = await repo.get_scheduled_intent(session, intent_id)
    return _serialize(intent)
