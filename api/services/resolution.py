"""
Contact Resolution Engine for PhoneBridge.

Turns a call event into a SalesNexus contact id. The engine is a priority
chain that short-circuits on the first success:

1. Override by number    - phone is in the direct contact-id overrides
2. Override by email     - phone is in the direct email overrides
3. Directory by number   - phone directory lookup (time-bounded), then
                           CRM search for each email in order
4. Fallback              - the configured fallback contact

A failing step degrades to the next one; there are no retries. The only
fatal condition is a missing fallback contact id, which is rejected when the
engine is built.

Call context: OpenPhone sends the from/to numbers only on the recording
event. The engine remembers them per call id (in-process cache first,
persisted call_details second) so summary and transcript events for the same
call resolve to the same contact.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

from api.services.call_context import (
    CallContext,
    CallContextCache,
    DIRECTION_OUTGOING,
    normalize_direction,
)
from api.services.phone_utils import normalize_phone, is_valid_email
from api.services.resilience import ConfigurationError, graceful_degradation, with_timeout
from api.services.service_health import mark_service_healthy, record_degradation

if TYPE_CHECKING:
    from config.override_config import DirectOverrideTable

logger = logging.getLogger(__name__)

SOURCE_OVERRIDE_CONTACT = "override_contact"
SOURCE_OVERRIDE_EMAIL = "override_email"
SOURCE_DIRECTORY = "directory"
SOURCE_FALLBACK = "fallback"

DEFAULT_LOOKUP_TIMEOUT = 2.0


@dataclass
class CallEvent:
    """The parts of a webhook event that matter for resolution."""
    call_id: str
    event_kind: str
    direction: str = DIRECTION_OUTGOING
    from_number: Optional[str] = None
    to_number: Optional[str] = None

    @property
    def has_numbers(self) -> bool:
        return bool(self.from_number or self.to_number)


@dataclass
class Resolution:
    """Outcome of resolving a call event."""
    contact_id: str
    source: str
    lookup_number: Optional[str] = None
    email: Optional[str] = None


def select_lookup_number(context: CallContext) -> str:
    """
    Pick the other party's number.

    Outgoing calls are placed by us, so the other party is "to"; incoming
    calls are placed to us, so the other party is "from".
    """
    if context.direction == DIRECTION_OUTGOING:
        return context.to_number
    return context.from_number


class ResolutionEngine:
    """
    Resolves call events to CRM contact ids.

    Collaborators are injected so each can be swapped in tests:
        directory: object with get(phone), save_call_context(ctx), get_call_context(call_id)
        call_cache: CallContextCache (best-effort, may always miss)
        crm: object with async search_contact_by_email(email)
    """

    def __init__(
        self,
        directory,
        call_cache: CallContextCache,
        crm,
        overrides: "DirectOverrideTable",
        fallback_contact_id: str,
        lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT,
    ):
        if not fallback_contact_id or not str(fallback_contact_id).strip():
            raise ConfigurationError("FALLBACK_CONTACT_ID must be configured")
        self.directory = directory
        self.call_cache = call_cache
        self.crm = crm
        self.overrides = overrides
        self.fallback_contact_id = str(fallback_contact_id).strip()
        self.lookup_timeout = lookup_timeout

    # ------------------------------------------------------------------
    # Step 1: call context
    # ------------------------------------------------------------------

    @graceful_degradation("call_context_store", fallback_value=False)
    async def _persist_context(self, context: CallContext) -> bool:
        stored = await with_timeout(
            self._save_context(context),
            self.lookup_timeout,
            "call_context_store",
            fallback_value=False,
        )
        if stored:
            logger.info(f"Stored call details for call {context.call_id}")
        return stored

    async def _save_context(self, context: CallContext) -> bool:
        await asyncio.to_thread(self.directory.save_call_context, context)
        return True

    @graceful_degradation("call_context_store", fallback_value=None)
    async def _load_context(self, call_id: str) -> Optional[CallContext]:
        return await with_timeout(
            asyncio.to_thread(self.directory.get_call_context, call_id),
            self.lookup_timeout,
            "call_context_store",
        )

    async def recover_context(self, event: CallEvent) -> CallContext:
        """
        Get from/to numbers for the event's call.

        Events carrying numbers are remembered (cache + best-effort store
        write). Events without numbers read them back; if nothing is found
        the context is empty and resolution ends at the fallback.
        """
        if event.has_numbers:
            from_number = event.from_number or ""
            to_number = event.to_number or ""
            context = self.call_cache.new_context(
                call_id=event.call_id,
                from_number=from_number,
                to_number=to_number,
                direction=event.direction,
                is_override_match=(
                    self.overrides.matches(normalize_phone(from_number))
                    or self.overrides.matches(normalize_phone(to_number))
                ),
            )
            if event.call_id:
                self.call_cache.put(context)
                stored = await self._persist_context(context)
                if not stored:
                    record_degradation("call_context_store", "save", "memory_only")
            return context

        context = self.call_cache.get(event.call_id)
        if context:
            logger.info(f"Recovered call details from memory for call {event.call_id}")
            return context

        context = await self._load_context(event.call_id) if event.call_id else None
        if context:
            logger.info(f"Recovered call details from store for call {event.call_id}")
            self.call_cache.put(context)
            return context

        logger.warning(f"No stored phone numbers for call {event.call_id!r}, continuing without them")
        record_degradation("call_context_store", "recover", "empty_numbers")
        return CallContext(
            call_id=event.call_id,
            direction=normalize_direction(event.direction),
        )

    # ------------------------------------------------------------------
    # Step 4: directory lookup
    # ------------------------------------------------------------------

    async def lookup_emails(self, phone: str) -> list[str]:
        """
        Directory lookup bounded by lookup_timeout.

        Timeouts, store errors and misses all yield an empty list.
        """
        try:
            record = await asyncio.wait_for(
                asyncio.to_thread(self.directory.get, phone),
                timeout=self.lookup_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Directory lookup timed out for {phone} after {self.lookup_timeout:.1f}s")
            record_degradation("directory_store", "lookup", "empty_email_list", "timed out")
            return []
        except Exception as e:
            logger.error(f"Directory lookup failed for {phone}: {e}")
            record_degradation("directory_store", "lookup", "empty_email_list", str(e))
            return []

        if not record:
            logger.info(f"No directory entry for {phone}")
            return []
        return list(record.emails)

    # ------------------------------------------------------------------
    # Step 5: CRM search
    # ------------------------------------------------------------------

    async def search_contact(self, emails: list[str]) -> tuple[Optional[str], Optional[str]]:
        """
        Search the CRM for each email in order; first hit wins.

        Malformed emails are skipped. A CRM error for one email moves on to
        the next.

        Returns:
            (contact_id, email) or (None, None)
        """
        for email in emails:
            if not is_valid_email(email):
                logger.warning(f"Skipping malformed email {email!r}")
                continue
            try:
                contact_id = await self.crm.search_contact_by_email(email)
            except Exception as e:
                logger.error(f"CRM search failed for {email}: {e}")
                record_degradation("crm", "search_contact", "next_email", str(e))
                continue
            if contact_id:
                return contact_id, email
        return None, None

    # ------------------------------------------------------------------
    # Full chain
    # ------------------------------------------------------------------

    def _fallback(self, lookup_number: Optional[str], reason: str) -> Resolution:
        logger.info(f"Using fallback contact {self.fallback_contact_id} ({reason})")
        record_degradation("resolution", "resolve_contact", "fallback_contact", reason)
        return Resolution(
            contact_id=self.fallback_contact_id,
            source=SOURCE_FALLBACK,
            lookup_number=lookup_number,
        )

    async def resolve_contact(self, event: CallEvent) -> Resolution:
        """Resolve a call event to a contact id. Never raises for step failures."""
        resolution = await self._resolve(event)
        if resolution.source != SOURCE_FALLBACK:
            mark_service_healthy("resolution")
        return resolution

    async def _resolve(self, event: CallEvent) -> Resolution:
        context = await self.recover_context(event)

        raw_number = select_lookup_number(context)
        phone = normalize_phone(raw_number)
        if not phone:
            return self._fallback(None, f"no usable lookup number ({raw_number!r})")

        logger.info(f"Using {phone} to look up contact for call {event.call_id}")

        contact_id = self.overrides.contact_id_for(phone)
        if contact_id:
            logger.info(f"Direct contact override for {phone}: {contact_id}")
            return Resolution(contact_id=contact_id, source=SOURCE_OVERRIDE_CONTACT, lookup_number=phone)

        emails = self.overrides.emails_for(phone)
        source = SOURCE_OVERRIDE_EMAIL
        if emails is None:
            emails = await self.lookup_emails(phone)
            source = SOURCE_DIRECTORY

        if not emails:
            return self._fallback(phone, "no email mapping")

        contact_id, email = await self.search_contact(emails)
        if contact_id:
            return Resolution(contact_id=contact_id, source=source, lookup_number=phone, email=email)

        return self._fallback(phone, "no CRM contact for mapped emails")


# Singleton engine instance
_engine_instance: Optional[ResolutionEngine] = None


def get_resolution_engine() -> ResolutionEngine:
    """
    Build (once) the engine from settings and the shared collaborators.

    Raises:
        ConfigurationError: FALLBACK_CONTACT_ID is not set
    """
    global _engine_instance
    if _engine_instance is None:
        from config.settings import settings
        from config.override_config import get_overrides
        from api.services.call_context import get_call_context_cache
        from api.services.crm_client import get_crm_client
        from api.services.directory_store import get_directory_store

        _engine_instance = ResolutionEngine(
            directory=get_directory_store(),
            call_cache=get_call_context_cache(),
            crm=get_crm_client(),
            overrides=get_overrides(),
            fallback_contact_id=settings.fallback_contact_id,
            lookup_timeout=settings.lookup_timeout_seconds,
        )
    return _engine_instance


def reset_resolution_engine() -> None:
    """Drop the singleton (tests, override reload)."""
    global _engine_instance
    _engine_instance = None
