"""
Phone directory API routes for PhoneBridge.

CRUD over phone -> email mappings, plus the CSV upload and the lookup used
by tooling. Phone numbers in paths and bodies are normalized before use.
"""
import logging
from typing import Any, Optional, Union

from fastapi import APIRouter, Body, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from api.services.directory_store import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    MappingWrite,
    filter_records,
    get_directory_store,
)
from api.services.phone_utils import normalize_phone
from api.services.resilience import NotFoundError, ValidationError
from config.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mapping", tags=["mapping"])


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class MappingRequest(BaseModel):
    """One mapping in a POST body. Accepts "email", "emails" or both."""
    model_config = ConfigDict(populate_by_name=True)

    phone_number: str = Field(..., alias="phoneNumber", min_length=1)
    email: Optional[str] = None
    emails: list[str] = Field(default_factory=list)
    contact_name: Optional[str] = Field(default=None, alias="contactName")
    company_name: Optional[str] = Field(default=None, alias="companyName")
    phone_type: Optional[str] = Field(default=None, alias="phoneType")

    def all_emails(self) -> list[str]:
        emails = list(self.emails)
        if self.email:
            emails.insert(0, self.email)
        return emails

    def to_write(self) -> MappingWrite:
        return MappingWrite(
            phone_number=self.phone_number,
            emails=self.all_emails(),
            contact_name=self.contact_name,
            company_name=self.company_name,
            phone_type=self.phone_type,
        )


class UploadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    csv_content: str = Field(..., alias="csvContent")


class LookupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")


class LookupResponse(BaseModel):
    emails: list[str]
    email: str
    count: int


def _parse_mappings(body: Any) -> list[MappingWrite]:
    items = body if isinstance(body, list) else [body]
    if not items:
        raise ValidationError("At least one mapping is required")

    writes = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("Each mapping must be a JSON object")
        try:
            request = MappingRequest.model_validate(item)
        except PydanticValidationError:
            raise ValidationError("Phone number and email are required for each mapping")
        if not request.all_emails():
            raise ValidationError("Phone number and email are required for each mapping")
        writes.append(request.to_write())
    return writes


# ---------------------------------------------------------------------------
# Routes (static paths MUST come before {phone} to avoid capture)
# ---------------------------------------------------------------------------

@router.get("")
async def list_mappings(
    search: Optional[str] = Query(default=None),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    start_after: Optional[str] = Query(default=None, alias="startAfter"),
):
    """
    Page through mappings.

    The search filter applies to the fetched page only; lastKey always
    refers to the raw page so paging never skips records.
    """
    store = get_directory_store()
    records, last_key = store.scan(limit=limit, start_after=start_after)
    records = filter_records(records, search)
    return {
        "mappings": [r.to_dict() for r in records],
        "lastKey": last_key,
    }


@router.get("/count")
async def count_mappings():
    """Number of stored mappings."""
    return {"count": get_directory_store().count()}


@router.post("/lookup", response_model=LookupResponse)
async def lookup_mapping(request: LookupRequest):
    """Emails mapped to a phone number."""
    if not request.phone_number:
        raise ValidationError("Phone number is required")

    phone = normalize_phone(request.phone_number)
    if not phone:
        raise ValidationError("Invalid phone number format")

    record = get_directory_store().get(phone)
    if not record:
        raise NotFoundError("No mapping found for this phone number")

    return LookupResponse(emails=record.emails, email=record.email, count=len(record.emails))


@router.post("")
async def save_mappings(
    body: Union[list[Any], dict[str, Any]] = Body(...),
    action: Optional[str] = Query(default=None),
):
    """
    Save one mapping, a list of mappings, or (action=upload) a CSV file.

    A list is validated in full before anything is written and then saved
    in one transaction.
    """
    store = get_directory_store()

    if action == "upload":
        if not isinstance(body, dict):
            raise ValidationError("CSV content is required")
        try:
            upload = UploadRequest.model_validate(body)
        except PydanticValidationError:
            raise ValidationError("CSV content is required")

        result = store.bulk_import(upload.csv_content, batch_size=settings.import_batch_size)
        return {
            "success": True,
            "count": result.accepted,
            "rejected": result.rejected,
        }
    if action:
        raise ValidationError(f"Unknown action: {action}")

    writes = _parse_mappings(body)
    count = store.put_many(writes)
    return {"success": True, "count": count}


@router.delete("")
async def clear_mappings():
    """Delete every mapping."""
    removed = get_directory_store().clear()
    return {"success": True, "count": removed}


@router.get("/{phone}")
async def get_mapping(phone: str):
    """Get the mapping for a phone number (any format)."""
    key = normalize_phone(phone)
    if not key:
        raise ValidationError("Invalid phone number format")

    record = get_directory_store().get(key)
    if not record:
        raise NotFoundError("Mapping not found")
    return record.to_dict()


@router.delete("/{phone}")
async def delete_mapping(phone: str):
    """Delete the mapping for a phone number. Deleting a missing key succeeds."""
    deleted = get_directory_store().delete(phone)
    return {"success": True, "deleted": deleted}
