"""
Tests for the phone directory store.
"""
import json
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from api.services.call_context import CallContext
from api.services.directory_store import (
    DirectoryRecord,
    DirectoryStore,
    MappingWrite,
    filter_records,
    merge_emails,
)
from api.services.resilience import StoreUnavailable, ValidationError

pytestmark = pytest.mark.unit


def _insert_raw(store: DirectoryStore, key: str, doc: dict):
    conn = sqlite3.connect(store.db_path)
    conn.execute(
        "INSERT OR REPLACE INTO phone_email_mappings (phone_number, data, updated_at) VALUES (?, ?, ?)",
        (key, json.dumps(doc), datetime.now(timezone.utc).isoformat()),
    )
    conn.commit()
    conn.close()


class TestMergeEmails:

    def test_union_keeps_order(self):
        assert merge_emails(["a@x.com"], ["b@x.com"]) == ["a@x.com", "b@x.com"]

    def test_dedupes(self):
        assert merge_emails(["a@x.com", "b@x.com"], ["b@x.com", "a@x.com"]) == ["a@x.com", "b@x.com"]

    def test_case_sensitive(self):
        assert merge_emails(["a@x.com"], ["A@x.com"]) == ["a@x.com", "A@x.com"]


class TestDirectoryRecord:

    def test_from_document_multi_email(self):
        record = DirectoryRecord.from_document("+15551234567", {
            "phoneNumber": "+15551234567",
            "emails": ["a@x.com", "b@x.com"],
            "contactName": "Ann",
        })
        assert record.emails == ["a@x.com", "b@x.com"]
        assert record.email == "a@x.com"
        assert record.contact_name == "Ann"

    def test_from_document_legacy_single_email(self):
        record = DirectoryRecord.from_document("+15551234567", {
            "phoneNumber": "+15551234567",
            "email": "legacy@x.com",
        })
        assert record.emails == ["legacy@x.com"]

    def test_from_document_without_email_is_none(self):
        assert DirectoryRecord.from_document("+15551234567", {"phoneNumber": "+15551234567"}) is None
        assert DirectoryRecord.from_document("+15551234567", {"emails": []}) is None

    def test_to_dict_includes_primary_email(self):
        record = DirectoryRecord(phone_number="+15551234567", emails=["a@x.com", "b@x.com"])
        data = record.to_dict()
        assert data["phoneNumber"] == "+15551234567"
        assert data["emails"] == ["a@x.com", "b@x.com"]
        assert data["email"] == "a@x.com"
        assert "contactName" not in data


class TestDirectoryStorePut:

    def test_put_then_get(self, directory_store):
        directory_store.put("555-123-4567", "a@b.com")

        record = directory_store.get("+15551234567")
        assert record is not None
        assert record.phone_number == "+15551234567"
        assert record.emails == ["a@b.com"]
        assert record.updated_at is not None

    def test_get_normalizes_key(self, directory_store):
        directory_store.put("+15551234567", ["a@b.com"])
        assert directory_store.get("(555) 123-4567").emails == ["a@b.com"]

    def test_put_merges_emails_in_order(self, directory_store):
        directory_store.put("5551234567", ["a@x.com"])
        directory_store.put("5551234567", ["b@x.com"])

        assert directory_store.get("5551234567").emails == ["a@x.com", "b@x.com"]

    def test_put_same_email_twice_dedupes(self, directory_store):
        directory_store.put("5551234567", ["a@x.com"])
        directory_store.put("5551234567", ["a@x.com"])

        assert directory_store.get("5551234567").emails == ["a@x.com"]

    def test_metadata_kept_when_new_write_omits_it(self, directory_store):
        directory_store.put("5551234567", "a@x.com", contact_name="Ann", company_name="Acme")
        directory_store.put("5551234567", "b@x.com", phone_type="mobile")

        record = directory_store.get("5551234567")
        assert record.contact_name == "Ann"
        assert record.company_name == "Acme"
        assert record.phone_type == "mobile"

    def test_metadata_overwritten_by_new_value(self, directory_store):
        directory_store.put("5551234567", "a@x.com", contact_name="Ann")
        directory_store.put("5551234567", "a@x.com", contact_name="Annie")

        assert directory_store.get("5551234567").contact_name == "Annie"

    def test_updated_at_refreshed(self, directory_store):
        first = directory_store.put("5551234567", "a@x.com").updated_at
        second = directory_store.put("5551234567", "b@x.com").updated_at
        assert second >= first

    def test_put_merges_into_legacy_document(self, directory_store):
        _insert_raw(directory_store, "+15551234567", {"phoneNumber": "+15551234567", "email": "old@x.com"})

        directory_store.put("5551234567", "new@x.com")

        record = directory_store.get("5551234567")
        assert record.emails == ["old@x.com", "new@x.com"]

    def test_put_writes_primary_email_field(self, directory_store):
        directory_store.put("5551234567", ["a@x.com", "b@x.com"])

        conn = sqlite3.connect(directory_store.db_path)
        data = json.loads(conn.execute("SELECT data FROM phone_email_mappings").fetchone()[0])
        conn.close()
        assert data["emails"] == ["a@x.com", "b@x.com"]
        assert data["email"] == "a@x.com"

    def test_invalid_phone_rejected(self, directory_store):
        with pytest.raises(ValidationError):
            directory_store.put("555-1234", "a@x.com")

    def test_invalid_email_rejected(self, directory_store):
        with pytest.raises(ValidationError):
            directory_store.put("5551234567", "not-an-email")

    def test_empty_emails_rejected(self, directory_store):
        with pytest.raises(ValidationError):
            directory_store.put("5551234567", [])
        assert directory_store.count() == 0


class TestDirectoryStoreRead:

    def test_get_missing(self, directory_store):
        assert directory_store.get("5559999999") is None

    def test_get_invalid_phone(self, directory_store):
        assert directory_store.get("123") is None

    def test_get_legacy_document(self, directory_store):
        _insert_raw(directory_store, "+15551234567", {"phoneNumber": "+15551234567", "email": "legacy@x.com"})

        record = directory_store.get("5551234567")
        assert record.emails == ["legacy@x.com"]
        assert record.email == "legacy@x.com"

    def test_document_without_emails_reads_as_missing(self, directory_store):
        _insert_raw(directory_store, "+15551234567", {"phoneNumber": "+15551234567"})
        assert directory_store.get("5551234567") is None

    def test_scan_pages_in_key_order(self, directory_store):
        for suffix in ("3", "1", "2"):
            directory_store.put(f"555123456{suffix}", f"p{suffix}@x.com")

        page, last_key = directory_store.scan(limit=2)
        assert [r.phone_number for r in page] == ["+15551234561", "+15551234562"]
        assert last_key == "+15551234562"

        page, last_key = directory_store.scan(limit=2, start_after=last_key)
        assert [r.phone_number for r in page] == ["+15551234563"]
        assert last_key == "+15551234563"

        page, last_key = directory_store.scan(limit=2, start_after=last_key)
        assert page == []
        assert last_key is None

    def test_scan_clamps_limit(self, directory_store):
        directory_store.put("5551234567", "a@x.com")
        page, _ = directory_store.scan(limit=0)
        assert len(page) == 1

    def test_count(self, directory_store):
        assert directory_store.count() == 0
        directory_store.put("5551234567", "a@x.com")
        directory_store.put("5551234568", "b@x.com")
        assert directory_store.count() == 2


class TestDirectoryStoreDelete:

    def test_delete(self, directory_store):
        directory_store.put("5551234567", "a@x.com")
        assert directory_store.delete("(555) 123-4567") is True
        assert directory_store.get("5551234567") is None

    def test_delete_missing(self, directory_store):
        assert directory_store.delete("5551234567") is False

    def test_clear(self, directory_store):
        directory_store.put("5551234567", "a@x.com")
        directory_store.put("5551234568", "b@x.com")

        assert directory_store.clear() == 2
        assert directory_store.count() == 0


class TestPutMany:

    def test_put_many(self, directory_store):
        count = directory_store.put_many([
            MappingWrite(phone_number="5551234567", emails=["a@x.com"]),
            MappingWrite(phone_number="5551234568", emails=["b@x.com"], contact_name="Bo"),
        ])
        assert count == 2
        assert directory_store.get("5551234568").contact_name == "Bo"

    def test_put_many_is_all_or_nothing_on_validation(self, directory_store):
        with pytest.raises(ValidationError):
            directory_store.put_many([
                MappingWrite(phone_number="5551234567", emails=["a@x.com"]),
                MappingWrite(phone_number="bad", emails=["b@x.com"]),
            ])
        assert directory_store.count() == 0

    def test_put_many_same_key_merges(self, directory_store):
        directory_store.put_many([
            MappingWrite(phone_number="5551234567", emails=["a@x.com"]),
            MappingWrite(phone_number="555-123-4567", emails=["b@x.com"]),
        ])
        assert directory_store.get("5551234567").emails == ["a@x.com", "b@x.com"]

    def test_put_many_empty(self, directory_store):
        assert directory_store.put_many([]) == 0


class TestBulkImport:

    def test_one_valid_one_malformed_row(self, directory_store):
        csv_text = (
            "phone,email,name,company,type\n"
            "555-123-4567,a@b.com,Ann,Acme,mobile\n"
            "555-123-4568,not-an-email,Bob,,\n"
        )

        result = directory_store.bulk_import(csv_text)

        assert result.accepted == 1
        assert len(result.rejected) == 1
        assert "Row 3" in result.rejected[0]
        assert "not-an-email" in result.rejected[0]
        assert directory_store.get("5551234567").contact_name == "Ann"
        assert directory_store.get("5551234568") is None

    def test_batches(self, directory_store):
        lines = [f"55512345{i:02d},user{i}@x.com" for i in range(7)]

        result = directory_store.bulk_import("\n".join(lines), batch_size=3)

        assert result.accepted == 7
        assert directory_store.count() == 7

    def test_multi_email_cell(self, directory_store):
        result = directory_store.bulk_import("5551234567,a@x.com;b@x.com\n")
        assert result.accepted == 1
        assert directory_store.get("5551234567").emails == ["a@x.com", "b@x.com"]


class TestStoreUnavailable:

    def test_unopenable_database(self, tmp_path):
        with pytest.raises(StoreUnavailable):
            DirectoryStore(db_path=str(tmp_path / "missing-dir" / "directory.db"))

    def test_marks_service_failed(self, tmp_path):
        from api.services.service_health import get_service_health

        with pytest.raises(StoreUnavailable):
            DirectoryStore(db_path=str(tmp_path / "missing-dir" / "directory.db"))

        summary = get_service_health().get_summary()
        assert summary["services"]["directory_store"]["status"] == "unavailable"
        assert summary["overall_status"] == "critical"


class TestCallDetails:

    def test_save_and_get(self, directory_store):
        ctx = CallContext(call_id="AC1", from_number="+15551234567", to_number="+15557654321",
                          direction="incoming")
        directory_store.save_call_context(ctx)

        loaded = directory_store.get_call_context("AC1")
        assert loaded.from_number == "+15551234567"
        assert loaded.to_number == "+15557654321"
        assert loaded.direction == "incoming"

    def test_get_missing(self, directory_store):
        assert directory_store.get_call_context("nope") is None
        assert directory_store.get_call_context("") is None

    def test_expired_ignored_and_purged(self, directory_store):
        expired = CallContext(call_id="old", from_number="1", to_number="2",
                              expires_at=datetime.now(timezone.utc) - timedelta(seconds=5))
        live = CallContext(call_id="new", from_number="1", to_number="2")
        directory_store.save_call_context(expired)
        directory_store.save_call_context(live)

        assert directory_store.get_call_context("old") is None
        assert directory_store.purge_expired_call_contexts() == 1
        assert directory_store.get_call_context("new") is not None


class TestFilterRecords:

    @pytest.fixture
    def records(self):
        return [
            DirectoryRecord(phone_number="+15551234567", emails=["ann@acme.com"], contact_name="Ann"),
            DirectoryRecord(phone_number="+15557654321", emails=["bob@other.com"], company_name="Globex"),
        ]

    def test_no_search(self, records):
        assert filter_records(records, None) == records
        assert filter_records(records, "  ") == records

    def test_matches_email_case_insensitive(self, records):
        assert [r.contact_name for r in filter_records(records, "ACME")] == ["Ann"]

    def test_matches_phone_and_company(self, records):
        assert len(filter_records(records, "7654")) == 1
        assert len(filter_records(records, "globex")) == 1
