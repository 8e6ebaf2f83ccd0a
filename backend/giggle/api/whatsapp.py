"""
POST /whatsapp — Twilio WhatsApp inbound webhook.

Replies go back inline as TwiML, one <Message> per reply.
"""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, Response
from twilio.request_validator import RequestValidator
from twilio.twiml.messaging_response import MessagingResponse

from giggle.core.config import get_settings
from giggle.core.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)
settings = get_settings()


def _signature_ok(request: Request, form: dict) -> bool:
    validator = RequestValidator(settings.TWILIO_AUTH_TOKEN)
    url = f"{settings.PUBLIC_BASE_URL.rstrip('/')}{request.url.path}"
    return validator.validate(url, form, request.headers.get("X-Twilio-Signature", ""))


@router.post("/whatsapp")
async def whatsapp_webhook(request: Request):
    form = dict(await request.form())
    if settings.TWILIO_VERIFY_SIGNATURES and not _signature_ok(request, form):
        logger.warning("Rejected webhook with bad Twilio signature from %s", form.get("From"))
        raise HTTPException(status_code=403, detail="Invalid signature")

    logger.info("Inbound WhatsApp message %s", form.get("MessageSid"))
    replies = await request.app.state.router.handle_inbound_message({
        "from": form.get("From", ""),
        "body": form.get("Body", ""),
        "message_id": form.get("MessageSid"),
    })

    twiml = MessagingResponse()
    for reply in replies:
        twiml.message(reply)
    return Response(content=str(twiml), media_type="application/xml")
