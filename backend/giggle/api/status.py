"""
POST /status-callback — Twilio delivery status updates (logged only).
"""
from __future__ import annotations

from fastapi import APIRouter, Request

from giggle.core.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/status-callback")
async def status_callback(request: Request):
    form = await request.form()
    status = form.get("MessageStatus")
    if status in ("failed", "undelivered"):
        logger.warning("Message %s to %s %s (error %s)", form.get("MessageSid"), form.get("To"),
                       status, form.get("ErrorCode"))
    else:
        logger.info("Message %s status=%s", form.get("MessageSid"), status)
    return {"ok": True}
