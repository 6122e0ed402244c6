"""
Call context for PhoneBridge.

OpenPhone splits one call into several webhook deliveries (recording,
transcript, summary). Only the recording event carries the from/to numbers,
so they are remembered per call id for the later events.

Two layers hold a context:
- CallContextCache: in-process, best-effort. Its lifetime across requests
  is undefined (a new worker starts empty), so nothing may depend on a hit.
- DirectoryStore.call_details: persisted, consulted on a cache miss.

Both expire entries after a retention window (default one hour). Expiry is
lazy: expired entries are ignored on read and purged opportunistically.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger(__name__)

DIRECTION_INCOMING = "incoming"
DIRECTION_OUTGOING = "outgoing"

DEFAULT_TTL_SECONDS = 3600


def normalize_direction(value: Optional[str]) -> str:
    """Map provider direction strings onto incoming/outgoing (default outgoing)."""
    lowered = str(value or "").strip().lower()
    if lowered in ("incoming", "inbound"):
        return DIRECTION_INCOMING
    return DIRECTION_OUTGOING


@dataclass
class CallContext:
    """From/to numbers remembered for a call id."""
    call_id: str
    from_number: str = ""
    to_number: str = ""
    direction: str = DIRECTION_OUTGOING
    is_override_match: bool = False
    expires_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc) + timedelta(seconds=DEFAULT_TTL_SECONDS)
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now

    def to_dict(self) -> dict:
        return {
            "callId": self.call_id,
            "from": self.from_number,
            "to": self.to_number,
            "direction": self.direction,
            "isOverrideMatch": self.is_override_match,
            "expireAt": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CallContext":
        expires_at = data.get("expireAt")
        if isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at)
        if expires_at is None:
            expires_at = datetime.now(timezone.utc)
        elif expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return cls(
            call_id=data.get("callId", ""),
            from_number=data.get("from") or "",
            to_number=data.get("to") or "",
            direction=normalize_direction(data.get("direction")),
            is_override_match=bool(data.get("isOverrideMatch", False)),
            expires_at=expires_at,
        )


class CallContextCache:
    """
    In-process call context cache with a TTL.

    Best-effort: a miss is always a legal answer. Thread-safe.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, max_entries: int = 10_000):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: dict[str, CallContext] = {}
        self._lock = threading.Lock()

    def new_context(
        self,
        call_id: str,
        from_number: str,
        to_number: str,
        direction: str,
        is_override_match: bool = False,
    ) -> CallContext:
        """Build a context that expires after this cache's TTL."""
        return CallContext(
            call_id=call_id,
            from_number=from_number,
            to_number=to_number,
            direction=normalize_direction(direction),
            is_override_match=is_override_match,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds),
        )

    def put(self, context: CallContext) -> None:
        if not context.call_id:
            return
        with self._lock:
            if len(self._entries) >= self.max_entries:
                self._purge_locked()
            self._entries[context.call_id] = context

    def get(self, call_id: str) -> Optional[CallContext]:
        if not call_id:
            return None
        with self._lock:
            context = self._entries.get(call_id)
            if context is None:
                return None
            if context.is_expired():
                del self._entries[call_id]
                return None
            return context

    def _purge_locked(self) -> int:
        now = datetime.now(timezone.utc)
        expired = [k for k, v in self._entries.items() if v.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired call contexts from memory")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Singleton cache instance
_cache_instance: Optional[CallContextCache] = None


def get_call_context_cache() -> CallContextCache:
    """Get the process-wide CallContextCache instance."""
    global _cache_instance
    if _cache_instance is None:
        from config.settings import settings
        _cache_instance = CallContextCache(ttl_seconds=settings.call_context_ttl_seconds)
    return _cache_instance


def reset_call_context_cache() -> None:
    """Drop the singleton cache (tests)."""
    global _cache_instance
    _cache_instance = None
