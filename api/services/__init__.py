"""
PhoneBridge Services Package.

This package contains the business logic and data access services.

Example:
    from api.services import (
        get_directory_store,
        get_resolution_engine,
        normalize_phone,
    )

Key service modules:
- phone_utils: phone normalization and email validation
- directory_store: phone -> email directory (SQLite)
- call_context: per-call from/to memory across webhook events
- crm_client: SalesNexus API client
- resolution: call event -> contact id priority chain
- webhook_relay: OpenPhone payload -> CRM note
"""

from api.services.phone_utils import (
    normalize_phone,
    format_phone_display,
    is_valid_email,
)

from api.services.directory_store import (
    DirectoryRecord,
    DirectoryStore,
    get_directory_store,
)

from api.services.call_context import (
    CallContext,
    CallContextCache,
    get_call_context_cache,
)

from api.services.crm_client import (
    CrmClient,
    get_crm_client,
)

from api.services.resolution import (
    CallEvent,
    Resolution,
    ResolutionEngine,
    get_resolution_engine,
)

from api.services.webhook_relay import (
    RelayResult,
    WebhookRelay,
    get_webhook_relay,
)


__all__ = [
    # Phone
    "normalize_phone",
    "format_phone_display",
    "is_valid_email",
    # Directory
    "DirectoryRecord",
    "DirectoryStore",
    "get_directory_store",
    # Call context
    "CallContext",
    "CallContextCache",
    "get_call_context_cache",
    # CRM
    "CrmClient",
    "get_crm_client",
    # Resolution
    "CallEvent",
    "Resolution",
    "ResolutionEngine",
    "get_resolution_engine",
    # Webhook
    "RelayResult",
    "WebhookRelay",
    "get_webhook_relay",
]
