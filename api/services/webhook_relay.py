"""
OpenPhone webhook relay.

payload -> CallEvent -> ResolutionEngine -> note text -> CRM note.

Only call recording, summary and transcript events are relayed; anything
else is acknowledged and ignored. A payload without "type" or "data.object"
is rejected.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from api.services.call_context import normalize_direction
from api.services.note_composer import (
    EVENT_RECORDING,
    compose_note,
    event_kind_for,
)
from api.services.resilience import ValidationError
from api.services.resolution import CallEvent, ResolutionEngine
from api.services.service_health import record_degradation

logger = logging.getLogger(__name__)

STATUS_PROCESSED = "processed"
STATUS_IGNORED = "ignored"


@dataclass
class RelayResult:
    """What happened to one webhook delivery."""
    status: str
    event_kind: Optional[str] = None
    contact_id: Optional[str] = None
    source: Optional[str] = None
    note_created: bool = False

    @property
    def message(self) -> str:
        if self.status == STATUS_IGNORED:
            return "Unhandled webhook type"
        return "Webhook processed successfully"


def _event_object(payload: Any) -> tuple[str, dict]:
    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be a JSON object")

    event_type = payload.get("type")
    if not event_type or not isinstance(event_type, str):
        raise ValidationError("Webhook payload is missing 'type'")

    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise ValidationError("Webhook payload is missing 'data.object'")

    return event_type, obj


def parse_call_event(payload: Any) -> CallEvent:
    """
    Extract the resolution-relevant fields of a webhook payload.

    Recording events carry the call id in object.id and the from/to numbers;
    summary and transcript events carry only object.callId.

    Raises:
        ValidationError: payload lacks "type" or "data.object"
    """
    event_type, obj = _event_object(payload)
    kind = event_kind_for(event_type)

    if kind == EVENT_RECORDING:
        return CallEvent(
            call_id=str(obj.get("id") or ""),
            event_kind=kind,
            direction=normalize_direction(obj.get("direction")),
            from_number=obj.get("from") or None,
            to_number=obj.get("to") or None,
        )

    return CallEvent(
        call_id=str(obj.get("callId") or ""),
        event_kind=kind or "",
        direction=normalize_direction(obj.get("direction")),
    )


class WebhookRelay:
    """Resolves the contact for a call event and attaches a note to it."""

    def __init__(self, engine: ResolutionEngine, crm):
        self.engine = engine
        self.crm = crm

    async def _create_note(self, contact_id: str, details: str) -> bool:
        try:
            await self.crm.create_note(contact_id, details)
        except Exception as e:
            logger.error(f"Failed to create note on contact {contact_id}: {e}")
            record_degradation("crm", "create_note", "note_dropped", str(e))
            return False
        return True

    async def handle(self, payload: Any) -> RelayResult:
        """
        Relay one webhook delivery.

        Raises:
            ValidationError: payload is malformed
        """
        event_type, obj = _event_object(payload)
        kind = event_kind_for(event_type)
        if kind is None:
            logger.info(f"Unhandled webhook type: {event_type}")
            return RelayResult(status=STATUS_IGNORED)

        event = parse_call_event(payload)
        logger.info(f"Processing {kind} event for call {event.call_id!r}")

        resolution = await self.engine.resolve_contact(event)
        logger.info(f"Using contact {resolution.contact_id} ({resolution.source}) for call {event.call_id!r}")

        details = compose_note(kind, obj, obj.get("createdAt") or payload.get("createdAt"))
        note_created = await self._create_note(resolution.contact_id, details)

        return RelayResult(
            status=STATUS_PROCESSED,
            event_kind=kind,
            contact_id=resolution.contact_id,
            source=resolution.source,
            note_created=note_created,
        )


# Singleton relay instance
_relay_instance: Optional[WebhookRelay] = None


def get_webhook_relay() -> WebhookRelay:
    """
    Get the singleton relay wired to the shared engine and CRM client.

    Raises:
        ConfigurationError: FALLBACK_CONTACT_ID is not set
    """
    global _relay_instance
    if _relay_instance is None:
        from api.services.crm_client import get_crm_client
        from api.services.resolution import get_resolution_engine

        _relay_instance = WebhookRelay(get_resolution_engine(), get_crm_client())
    return _relay_instance


def reset_webhook_relay() -> None:
    """Drop the singleton (tests)."""
    global _relay_instance
    _relay_instance = None
