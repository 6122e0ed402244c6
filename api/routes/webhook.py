"""
OpenPhone webhook endpoint.

Answers 200 for every parseable delivery, even when the best contact could
not be found or the note could not be written. OpenPhone retries non-2xx
responses.
"""
import logging

from fastapi import APIRouter, Request

from api.services.resilience import ValidationError
from api.services.webhook_relay import get_webhook_relay

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["webhook"])


@router.post("/openphone")
async def openphone_webhook(request: Request):
    """Relay an OpenPhone call event into a SalesNexus note."""
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("Webhook body must be valid JSON")

    result = await get_webhook_relay().handle(payload)
    return {
        "message": result.message,
        "contactId": result.contact_id,
        "source": result.source,
    }
