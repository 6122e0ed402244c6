"""
SalesNexus CRM client for PhoneBridge.

SalesNexus exposes a single RPC-style endpoint. Every request is a JSON list
of calls:

    [{"function": "get-contacts", "parameters": {"login-token": KEY, ...}}]

and every response is a list with one entry per call, each carrying either
a "result" object (with success == "true") or an "error".

Two capabilities are used:
- search_contact_by_email: first contact id matching an email, or None
- create_note: attach a note to a contact
"""
import logging
from typing import Any, Optional

import httpx

from api.services.resilience import UpstreamApiError, UpstreamTimeout
from api.services.service_health import mark_service_failed, mark_service_healthy
from api.utils.datetime_utils import epoch_millis

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://logon.salesnexus.com/api/call-v1"
DEFAULT_NOTE_TYPE = 1
SEARCH_PAGE_SIZE = "10"
REQUEST_ID_PREFIX = "openphone-webhook-"


def _first_result(payload: Any) -> Optional[dict]:
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        return payload[0]
    return None


def extract_contact_id(payload: Any) -> Optional[str]:
    """
    Pull the first contact id out of a get-contacts response.

    Prefers contact-list.contact-ids; falls back to the keys of
    contact-list.contact-info when total-record-count is positive.
    """
    entry = _first_result(payload)
    if not entry:
        return None
    result = entry.get("result") or {}
    if str(result.get("success")) != "true":
        return None

    contact_list = result.get("contact-list") or {}
    contact_ids = contact_list.get("contact-ids") or []
    if contact_ids:
        return str(contact_ids[0])

    try:
        total = int(contact_list.get("total-record-count") or 0)
    except (TypeError, ValueError):
        total = 0
    if total > 0:
        info = contact_list.get("contact-info") or {}
        if isinstance(info, dict) and info:
            return str(next(iter(info)))
    return None


class CrmClient:
    """
    Async SalesNexus client.

    Raises UpstreamTimeout when a call exceeds its timeout and
    UpstreamApiError for transport failures, non-2xx responses and
    unsuccessful results.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self._client = client

    async def _call(self, function: str, parameters: dict, request_id: Optional[str] = None) -> Any:
        call = {
            "function": function,
            "parameters": {"login-token": self.api_key, **parameters},
        }
        if request_id:
            call["request-id"] = request_id

        try:
            if self._client is not None:
                resp = await self._client.post(self.api_url, json=[call], timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.api_url, json=[call])
        except httpx.TimeoutException as e:
            mark_service_failed("crm", f"{function} timed out")
            raise UpstreamTimeout("crm", f"{function} timed out") from e
        except httpx.HTTPError as e:
            mark_service_failed("crm", str(e))
            raise UpstreamApiError(f"{function} request failed: {e}") from e

        if resp.status_code >= 400:
            mark_service_failed("crm", f"HTTP {resp.status_code}")
            raise UpstreamApiError(f"{function} returned HTTP {resp.status_code}: {resp.text[:200]}")

        try:
            payload = resp.json()
        except ValueError as e:
            mark_service_failed("crm", "invalid JSON")
            raise UpstreamApiError(f"{function} returned invalid JSON") from e

        mark_service_healthy("crm")
        return payload

    async def search_contact_by_email(self, email: str) -> Optional[str]:
        """
        Find a contact by email.

        Returns:
            First matching contact id, or None if there is no match
        """
        if not email:
            return None

        logger.info(f"Searching CRM for contact with email: {email}")
        payload = await self._call("get-contacts", {
            "filter-value": email,
            "start-after": "0",
            "page-size": SEARCH_PAGE_SIZE,
        })

        entry = _first_result(payload)
        if entry and entry.get("error"):
            raise UpstreamApiError(f"get-contacts error: {entry['error']}")

        contact_id = extract_contact_id(payload)
        if contact_id:
            logger.info(f"Found CRM contact {contact_id} for {email}")
        else:
            logger.info(f"No CRM contact found for {email}")
        return contact_id

    async def create_note(self, contact_id: str, details: str, note_type: int = DEFAULT_NOTE_TYPE) -> dict:
        """
        Create a note on a contact.

        Returns:
            The result object from SalesNexus
        """
        payload = await self._call(
            "create-note",
            {
                "contact-id": contact_id,
                "details": details,
                "type": note_type,
            },
            request_id=f"{REQUEST_ID_PREFIX}{epoch_millis()}",
        )

        entry = _first_result(payload)
        if not entry:
            raise UpstreamApiError("create-note returned an empty response")
        if entry.get("error"):
            raise UpstreamApiError(f"SalesNexus API error: {entry['error']}")

        result = entry.get("result") or {}
        if str(result.get("success")) != "true":
            raise UpstreamApiError("Unknown error creating note")

        logger.info(f"Created note on contact {contact_id}")
        return result


# Singleton client instance
_client_instance: Optional[CrmClient] = None


def get_crm_client() -> CrmClient:
    """Get the singleton CrmClient configured from settings."""
    global _client_instance
    if _client_instance is None:
        from config.settings import settings
        _client_instance = CrmClient(
            api_key=settings.salesnexus_api_key,
            api_url=settings.salesnexus_api_url,
            timeout=settings.crm_timeout_seconds,
        )
    return _client_instance


def reset_crm_client() -> None:
    """Drop the singleton (tests)."""
    global _client_instance
    _client_instance = None
