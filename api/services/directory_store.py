"""
Phone Directory Store for PhoneBridge.

Maps normalized phone numbers to one or more email addresses plus contact
metadata. Records are stored as JSON documents keyed by phone number, so
documents written by older versions (single "email" field instead of an
"emails" list) are still readable. Every read goes through
DirectoryRecord.from_document, which is the only place the legacy shape is
handled.

Writes merge: a second write for the same phone number unions its emails
into the existing list instead of replacing it. The merge is read-then-write
inside a single connection and is not isolated from other processes, so two
concurrent writers to the same number can lose an email (last write wins on
the merged list). SQLite has no atomic array-union to lean on here.

Also holds the auxiliary call_details collection used to carry call context
between the webhook deliveries of one call.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional, Union

from api.services.call_context import CallContext
from api.services.phone_utils import normalize_phone, is_valid_email
from api.services.resilience import StoreUnavailable, ValidationError
from api.services.service_health import mark_service_failed, mark_service_healthy
from api.utils.datetime_utils import make_aware
from api.utils.db_paths import get_directory_db_path

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 500
DEFAULT_BATCH_SIZE = 500


def merge_emails(existing: Iterable[str], new: Iterable[str]) -> list[str]:
    """Ordered union: existing emails first, then unseen new ones."""
    merged: list[str] = []
    for email in list(existing) + list(new):
        if email and email not in merged:
            merged.append(email)
    return merged


def _clean_emails(values) -> list[str]:
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, (list, tuple)):
        return []
    return merge_emails([], (v.strip() for v in values if isinstance(v, str)))


def _parse_timestamp(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return make_aware(value)
    if isinstance(value, str) and value:
        try:
            return make_aware(datetime.fromisoformat(value))
        except ValueError:
            return None
    return None


@dataclass
class DirectoryRecord:
    """
    A phone directory entry.

    emails is never empty and keeps write order.
    """
    phone_number: str
    emails: list[str]
    contact_name: Optional[str] = None
    company_name: Optional[str] = None
    phone_type: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def email(self) -> str:
        """Primary email, kept for readers that predate multi-email records."""
        return self.emails[0]

    def to_document(self) -> dict:
        """Convert to the stored/API document shape."""
        doc = {
            "phoneNumber": self.phone_number,
            "emails": list(self.emails),
            "email": self.email,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.contact_name:
            doc["contactName"] = self.contact_name
        if self.company_name:
            doc["companyName"] = self.company_name
        if self.phone_type:
            doc["phoneType"] = self.phone_type
        return doc

    def to_dict(self) -> dict:
        return self.to_document()

    @classmethod
    def from_document(cls, key: str, data: dict) -> Optional["DirectoryRecord"]:
        """
        Build a record from a stored document of any known shape.

        Returns None for documents with no usable email.
        """
        if not isinstance(data, dict):
            return None

        emails = _clean_emails(data.get("emails"))
        if not emails:
            # Legacy single-email document
            emails = _clean_emails(data.get("email"))
        if not emails:
            logger.warning(f"Directory document {key} has no emails, skipping")
            return None

        return cls(
            phone_number=data.get("phoneNumber") or key,
            emails=emails,
            contact_name=data.get("contactName") or None,
            company_name=data.get("companyName") or None,
            phone_type=data.get("phoneType") or None,
            updated_at=_parse_timestamp(data.get("updatedAt")),
        )


@dataclass
class MappingWrite:
    """A validated write request for one phone number."""
    phone_number: str
    emails: list[str] = field(default_factory=list)
    contact_name: Optional[str] = None
    company_name: Optional[str] = None
    phone_type: Optional[str] = None


def filter_records(records: list[DirectoryRecord], search: Optional[str]) -> list[DirectoryRecord]:
    """
    Case-insensitive substring filter over phone, emails, name and company.

    Runs on an already-fetched page; it is not pushed down to the store.
    """
    if not search:
        return records
    needle = search.strip().lower()
    if not needle:
        return records

    matched = []
    for record in records:
        haystack = [record.phone_number, *record.emails, record.contact_name or "", record.company_name or ""]
        if any(needle in value.lower() for value in haystack):
            matched.append(record)
    return matched


class DirectoryStore:
    """
    SQLite-backed phone directory.

    One JSON document per phone number, plus the call_details collection.
    Any sqlite3 error surfaces as StoreUnavailable.
    """

    def __init__(self, db_path: Optional[str] = None, timeout: float = 5.0):
        """
        Initialize directory store.

        Args:
            db_path: Path to SQLite database (default from settings)
            timeout: Seconds to wait on a locked database
        """
        self.db_path = db_path or get_directory_db_path()
        self.timeout = timeout
        self._init_db()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            mark_service_failed("directory_store", str(e))
            raise StoreUnavailable(f"Cannot open directory database: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            mark_service_failed("directory_store", str(e))
            raise StoreUnavailable(f"Directory database error: {e}") from e
        finally:
            conn.close()

    def _init_db(self):
        """Create database tables if they don't exist."""
        with self._connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS phone_email_mappings (
                    phone_number TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS call_details (
                    call_id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    expire_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_call_details_expire
                ON call_details(expire_at)
            """)
            conn.commit()

    # ------------------------------------------------------------------
    # Phone directory
    # ------------------------------------------------------------------

    def get(self, phone: str) -> Optional[DirectoryRecord]:
        """
        Get the record for a phone number.

        Args:
            phone: Phone number in any format (normalized before lookup)

        Returns:
            DirectoryRecord or None if not found or unusable
        """
        key = normalize_phone(phone)
        if not key:
            return None

        with self._connection() as conn:
            row = conn.execute(
                "SELECT data FROM phone_email_mappings WHERE phone_number = ?",
                (key,)
            ).fetchone()

        mark_service_healthy("directory_store")
        if not row:
            return None
        return DirectoryRecord.from_document(key, json.loads(row[0]))

    def _validate_write(self, write: MappingWrite) -> MappingWrite:
        key = normalize_phone(write.phone_number)
        if not key:
            raise ValidationError(f"Invalid phone number format: {write.phone_number!r}")
        emails = _clean_emails(write.emails)
        if not emails:
            raise ValidationError("At least one email is required")
        for email in emails:
            if not is_valid_email(email):
                raise ValidationError(f"Invalid email format: {email!r}")
        return MappingWrite(
            phone_number=key,
            emails=emails,
            contact_name=(write.contact_name or "").strip() or None,
            company_name=(write.company_name or "").strip() or None,
            phone_type=(write.phone_type or "").strip() or None,
        )

    def _merge_into(self, conn: sqlite3.Connection, write: MappingWrite) -> DirectoryRecord:
        row = conn.execute(
            "SELECT data FROM phone_email_mappings WHERE phone_number = ?",
            (write.phone_number,)
        ).fetchone()
        existing = DirectoryRecord.from_document(write.phone_number, json.loads(row[0])) if row else None

        record = DirectoryRecord(
            phone_number=write.phone_number,
            emails=merge_emails(existing.emails if existing else [], write.emails),
            contact_name=write.contact_name or (existing.contact_name if existing else None),
            company_name=write.company_name or (existing.company_name if existing else None),
            phone_type=write.phone_type or (existing.phone_type if existing else None),
            updated_at=datetime.now(timezone.utc),
        )

        conn.execute(
            """INSERT OR REPLACE INTO phone_email_mappings (phone_number, data, updated_at)
               VALUES (?, ?, ?)""",
            (record.phone_number, json.dumps(record.to_document()), record.updated_at.isoformat())
        )
        return record

    def put(
        self,
        phone: str,
        emails: Union[str, Iterable[str]],
        contact_name: Optional[str] = None,
        company_name: Optional[str] = None,
        phone_type: Optional[str] = None,
    ) -> DirectoryRecord:
        """
        Create or merge a directory record.

        Emails are unioned with the existing list. Metadata fields are
        overwritten only by non-empty new values.

        Raises:
            ValidationError: invalid phone, or missing/invalid email
            StoreUnavailable: database unreachable
        """
        write = self._validate_write(MappingWrite(
            phone_number=phone,
            emails=[emails] if isinstance(emails, str) else list(emails),
            contact_name=contact_name,
            company_name=company_name,
            phone_type=phone_type,
        ))

        with self._connection() as conn:
            record = self._merge_into(conn, write)
            conn.commit()

        mark_service_healthy("directory_store")
        logger.info(f"Saved directory record {record.phone_number} ({len(record.emails)} email(s))")
        return record

    def put_many(self, writes: Iterable[MappingWrite]) -> int:
        """
        Merge a batch of writes in one transaction.

        Either the whole batch lands or none of it does.

        Returns:
            Number of writes applied
        """
        validated = [self._validate_write(w) for w in writes]
        if not validated:
            return 0

        with self._connection() as conn:
            for write in validated:
                self._merge_into(conn, write)
            conn.commit()

        mark_service_healthy("directory_store")
        logger.info(f"Saved batch of {len(validated)} directory records")
        return len(validated)

    def delete(self, phone: str) -> bool:
        """
        Delete the record for a phone number.

        Returns:
            True if a record was removed
        """
        key = normalize_phone(phone) or phone
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM phone_email_mappings WHERE phone_number = ?",
                (key,)
            )
            conn.commit()
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted directory record {key}")
        return deleted

    def clear(self) -> int:
        """Delete every directory record. Returns the number removed."""
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM phone_email_mappings")
            conn.commit()
            removed = cursor.rowcount

        logger.warning(f"Cleared directory ({removed} records)")
        return removed

    def scan(
        self,
        limit: int = DEFAULT_PAGE_SIZE,
        start_after: Optional[str] = None,
    ) -> tuple[list[DirectoryRecord], Optional[str]]:
        """
        Page through records ordered by phone number.

        Args:
            limit: Page size (clamped to 1..MAX_PAGE_SIZE)
            start_after: Phone number to resume after (exclusive)

        Returns:
            (records, last_key) where last_key is the final key of the raw
            page, or None if the page was empty
        """
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))

        with self._connection() as conn:
            if start_after:
                rows = conn.execute(
                    """SELECT phone_number, data FROM phone_email_mappings
                       WHERE phone_number > ? ORDER BY phone_number LIMIT ?""",
                    (start_after, limit)
                ).fetchall()
            else:
                rows = conn.execute(
                    """SELECT phone_number, data FROM phone_email_mappings
                       ORDER BY phone_number LIMIT ?""",
                    (limit,)
                ).fetchall()

        records = []
        for key, data in rows:
            record = DirectoryRecord.from_document(key, json.loads(data))
            if record:
                records.append(record)

        last_key = rows[-1][0] if rows else None
        return records, last_key

    def count(self) -> int:
        """Number of stored directory documents."""
        with self._connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM phone_email_mappings").fetchone()[0]

    def bulk_import(self, source, batch_size: Optional[int] = None):
        """
        Import rows from CSV text or pre-parsed rows.

        Invalid rows are rejected with a reason; valid rows are merged in
        batches, each batch atomic on its own.

        Args:
            source: CSV text (phone, email, name, company, type) or list of CsvRow
            batch_size: Rows per transaction

        Returns:
            ImportResult
        """
        from api.services.csv_import import ImportResult, parse_csv, validate_row

        rows = parse_csv(source) if isinstance(source, str) else list(source)
        batch_size = batch_size or DEFAULT_BATCH_SIZE
        result = ImportResult()

        pending: list[MappingWrite] = []
        for row in rows:
            write, reason = validate_row(row)
            if reason:
                result.rejected.append(reason)
                continue
            pending.append(write)
            if len(pending) >= batch_size:
                result.accepted += self.put_many(pending)
                pending = []

        if pending:
            result.accepted += self.put_many(pending)

        logger.info(
            f"Bulk import: {result.accepted} accepted, {len(result.rejected)} rejected"
        )
        return result

    # ------------------------------------------------------------------
    # Call details (auxiliary collection)
    # ------------------------------------------------------------------

    def save_call_context(self, context: CallContext) -> None:
        """Persist call context for later webhook events of the same call."""
        with self._connection() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO call_details (call_id, data, expire_at)
                   VALUES (?, ?, ?)""",
                (context.call_id, json.dumps(context.to_dict()), context.expires_at.isoformat(timespec="microseconds"))
            )
            conn.commit()

    def get_call_context(self, call_id: str) -> Optional[CallContext]:
        """Get persisted call context, ignoring expired entries."""
        if not call_id:
            return None
        with self._connection() as conn:
            row = conn.execute(
                "SELECT data FROM call_details WHERE call_id = ?",
                (call_id,)
            ).fetchone()

        if not row:
            return None
        context = CallContext.from_dict(json.loads(row[0]))
        if context.is_expired():
            return None
        return context

    def purge_expired_call_contexts(self) -> int:
        """Delete expired call details. Returns the number removed."""
        now = datetime.now(timezone.utc).isoformat(timespec="microseconds")
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM call_details WHERE expire_at <= ?", (now,))
            conn.commit()
            removed = cursor.rowcount

        if removed:
            logger.info(f"Purged {removed} expired call details")
        return removed


# Singleton store instance
_store_instance: Optional[DirectoryStore] = None


def get_directory_store() -> DirectoryStore:
    """Get the singleton DirectoryStore instance."""
    global _store_instance
    if _store_instance is None:
        _store_instance = DirectoryStore()
    return _store_instance


def reset_directory_store() -> None:
    """Drop the singleton (tests)."""
    global _store_instance
    _store_instance = None
