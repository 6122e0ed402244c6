"""
Collaborator health for PhoneBridge.

Tracks the directory store, the SalesNexus API, the persisted call details
and contact resolution. A collaborator is healthy, unavailable (last call
failed) or degraded (the last call was answered from a fallback). Fallbacks
taken in the last 24h are kept in memory and reported by /health/services.

The webhook relay answers 200 even when every collaborator is down, so this
registry is where those failures become visible.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ServiceStatus(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


# name -> (severity when unavailable, description)
MONITORED_SERVICES = {
    "directory_store": (Severity.CRITICAL, "Phone directory (SQLite)"),
    "crm": (Severity.WARNING, "SalesNexus CRM API"),
    "call_context_store": (Severity.INFO, "Persisted call details"),
    "resolution": (Severity.INFO, "Contact resolution (degraded while the last call used the fallback)"),
}

FALLBACK_WINDOW = timedelta(hours=24)
REPORTED_FALLBACKS = 20


@dataclass
class ServiceState:
    severity: Severity
    description: str = ""
    status: ServiceStatus = ServiceStatus.UNKNOWN
    changed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    failures: int = 0
    failure_streak: int = 0
    fallback: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "severity": self.severity.value,
            "description": self.description,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
            "last_error": self.last_error,
            "failures": self.failures,
            "failure_streak": self.failure_streak,
            "fallback": self.fallback,
        }


@dataclass
class FallbackEvent:
    """One time a collaborator's answer was replaced by a fallback."""
    service: str
    operation: str
    fallback: str
    error: Optional[str] = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "at": self.at.isoformat(),
            "service": self.service,
            "operation": self.operation,
            "fallback": self.fallback,
            "error": self.error,
        }


class ServiceHealthRegistry:
    """Thread-safe status board for PhoneBridge collaborators."""

    def __init__(self, services: Optional[dict] = None):
        self._lock = threading.Lock()
        self._states: dict[str, ServiceState] = {
            name: ServiceState(severity=severity, description=description)
            for name, (severity, description) in (services or MONITORED_SERVICES).items()
        }
        self._fallbacks: list[FallbackEvent] = []

    def _state(self, service: str) -> ServiceState:
        # Caller holds self._lock
        state = self._states.get(service)
        if state is None:
            state = self._states[service] = ServiceState(severity=Severity.WARNING)
        return state

    def mark_healthy(self, service: str) -> None:
        with self._lock:
            state = self._state(service)
            recovered = state.status in (ServiceStatus.UNAVAILABLE, ServiceStatus.DEGRADED)
            state.status = ServiceStatus.HEALTHY
            state.changed_at = datetime.now(timezone.utc)
            state.failure_streak = 0
            state.fallback = None

        if recovered:
            logger.info(f"{service} recovered")

    def mark_failed(self, service: str, error: str, severity: Optional[Severity] = None) -> None:
        """
        Mark a collaborator unavailable.

        Only the transition into the unavailable state is logged: at CRITICAL
        for critical collaborators, at WARNING otherwise.
        """
        with self._lock:
            state = self._state(service)
            first_failure = state.status != ServiceStatus.UNAVAILABLE
            state.status = ServiceStatus.UNAVAILABLE
            state.changed_at = datetime.now(timezone.utc)
            state.last_error = (error or "")[:500] or None
            state.failures += 1
            state.failure_streak += 1
            level = severity or state.severity

        if first_failure:
            message = f"{service} unavailable: {(error or '')[:100]}"
            if level == Severity.CRITICAL:
                logger.critical(message)
            else:
                logger.warning(message)

    def record_degradation(
        self,
        service: str,
        operation: str,
        fallback: str,
        error: Optional[str] = None,
    ) -> None:
        """Note that `operation` on `service` was answered with `fallback`."""
        event = FallbackEvent(
            service=service,
            operation=operation,
            fallback=fallback,
            error=error[:200] if error else None,
        )
        cutoff = event.at - FALLBACK_WINDOW

        with self._lock:
            self._fallbacks = [e for e in self._fallbacks if e.at > cutoff]
            self._fallbacks.append(event)

            state = self._state(service)
            if state.status != ServiceStatus.UNAVAILABLE:
                state.status = ServiceStatus.DEGRADED
                state.changed_at = event.at
            state.fallback = fallback

        logger.info(f"{service}/{operation} fell back to {fallback}" + (f": {error[:50]}" if error else ""))

    def recent_fallbacks(self, window: timedelta = FALLBACK_WINDOW) -> list[FallbackEvent]:
        cutoff = datetime.now(timezone.utc) - window
        with self._lock:
            return [e for e in self._fallbacks if e.at > cutoff]

    def get_summary(self) -> dict:
        """
        Snapshot for GET /health/services.

        overall_status is "critical" when a critical collaborator is
        unavailable, "degraded" when any collaborator is unavailable or
        degraded, else "healthy".
        """
        fallbacks = self.recent_fallbacks()

        with self._lock:
            services = {name: state.to_dict() for name, state in self._states.items()}
            critical = [
                {"service": name, "error": state.last_error or "Unknown error"}
                for name, state in self._states.items()
                if state.severity == Severity.CRITICAL and state.status == ServiceStatus.UNAVAILABLE
            ]
            impaired = any(
                state.status in (ServiceStatus.UNAVAILABLE, ServiceStatus.DEGRADED)
                for state in self._states.values()
            )

        if critical:
            overall = "critical"
        elif impaired:
            overall = "degraded"
        else:
            overall = "healthy"

        return {
            "overall_status": overall,
            "services": services,
            "critical_issues": critical,
            "recent_fallbacks": [e.to_dict() for e in fallbacks[-REPORTED_FALLBACKS:]],
            "fallbacks_24h": len(fallbacks),
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }


_registry: Optional[ServiceHealthRegistry] = None
_registry_lock = threading.Lock()


def get_service_health() -> ServiceHealthRegistry:
    """Get the process-wide registry."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = ServiceHealthRegistry()
    return _registry


def reset_service_health() -> None:
    """Drop the registry (tests)."""
    global _registry
    _registry = None


def record_degradation(service: str, operation: str, fallback: str, error: Optional[str] = None) -> None:
    get_service_health().record_degradation(service, operation, fallback, error)


def mark_service_healthy(service: str) -> None:
    get_service_health().mark_healthy(service)


def mark_service_failed(service: str, error: str, severity: Optional[Severity] = None) -> None:
    get_service_health().mark_failed(service, error, severity)
