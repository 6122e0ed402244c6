"""
Direct Override Configuration Loader.

Loads the direct phone overrides from YAML. Overrides take precedence over
the phone directory during contact resolution:

    contact_ids:   phone -> SalesNexus contact id (used as-is)
    emails:        phone -> list of emails (searched in the CRM in order)

Phone keys are normalized on load, so the file may use any common format.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from api.services.phone_utils import normalize_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectOverrideTable:
    """Read-only override maps keyed by normalized phone number."""
    emails: dict[str, list[str]] = field(default_factory=dict)
    contact_ids: dict[str, str] = field(default_factory=dict)

    def contact_id_for(self, phone: Optional[str]) -> Optional[str]:
        if not phone:
            return None
        return self.contact_ids.get(phone)

    def emails_for(self, phone: Optional[str]) -> Optional[list[str]]:
        if not phone:
            return None
        emails = self.emails.get(phone)
        return list(emails) if emails else None

    def matches(self, phone: Optional[str]) -> bool:
        """True if the phone appears in either override map."""
        return bool(phone) and (phone in self.contact_ids or phone in self.emails)


# Cached table
_overrides: Optional[DirectOverrideTable] = None


def _load_yaml(path: Path) -> dict:
    """Load YAML file with error handling."""
    try:
        if path.exists():
            with open(path, "r") as f:
                return yaml.safe_load(f) or {}
    except Exception as e:
        logger.error(f"Failed to load {path}: {e}")
    return {}


def parse_overrides(data: dict) -> DirectOverrideTable:
    """
    Build a DirectOverrideTable from raw YAML data.

    Entries with phone numbers that fail normalization are skipped. Email
    entries may be a single string or a list.
    """
    emails: dict[str, list[str]] = {}
    for raw_phone, value in (data.get("emails") or {}).items():
        phone = normalize_phone(str(raw_phone))
        if not phone:
            logger.warning(f"Skipping email override with invalid phone: {raw_phone!r}")
            continue
        values = [value] if isinstance(value, str) else list(value or [])
        cleaned = [str(v).strip() for v in values if v and str(v).strip()]
        if cleaned:
            emails[phone] = cleaned

    contact_ids: dict[str, str] = {}
    for raw_phone, contact_id in (data.get("contact_ids") or {}).items():
        phone = normalize_phone(str(raw_phone))
        if not phone or not contact_id:
            logger.warning(f"Skipping contact override with invalid entry: {raw_phone!r}")
            continue
        contact_ids[phone] = str(contact_id).strip()

    return DirectOverrideTable(emails=emails, contact_ids=contact_ids)


def load_overrides(path: Optional[Path] = None) -> DirectOverrideTable:
    """Load overrides from a YAML file (missing file means no overrides)."""
    if path is None:
        from config.settings import settings
        path = settings.overrides_path
    table = parse_overrides(_load_yaml(Path(path)))
    logger.info(
        f"Loaded {len(table.contact_ids)} contact overrides and "
        f"{len(table.emails)} email overrides from {path}"
    )
    return table


def get_overrides() -> DirectOverrideTable:
    """Get the cached override table, loading it on first use."""
    global _overrides
    if _overrides is None:
        _overrides = load_overrides()
    return _overrides


def reload_overrides() -> DirectOverrideTable:
    """
    Reload overrides from file.

    Also drops the resolution engine and webhook relay singletons; they are
    rebuilt with the new table on next use.
    """
    global _overrides
    from api.services.resolution import reset_resolution_engine
    from api.services.webhook_relay import reset_webhook_relay

    _overrides = None
    reset_resolution_engine()
    reset_webhook_relay()
    logger.info("Direct overrides reloaded")
    return get_overrides()
