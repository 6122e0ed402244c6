"""
CSV parsing for bulk directory imports.

Column order is fixed: phone, email, name, company, type. A header row is
detected and skipped. The email column may hold several addresses separated
by ";" which all map to the same phone number.
"""
import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Optional

from api.services.directory_store import MappingWrite
from api.services.phone_utils import normalize_phone, is_valid_email

logger = logging.getLogger(__name__)

EMAIL_SEPARATOR = ";"


@dataclass
class CsvRow:
    """One data row from an import file (1-based row number in the file)."""
    row_number: int
    phone_number: str
    email: str
    contact_name: Optional[str] = None
    company_name: Optional[str] = None
    phone_type: Optional[str] = None


@dataclass
class ImportResult:
    """Outcome of a bulk import."""
    accepted: int = 0
    rejected: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"accepted": self.accepted, "rejected": self.rejected}


def _cell(row: list[str], index: int) -> Optional[str]:
    if index >= len(row):
        return None
    value = row[index].strip()
    return value or None


def _is_header(row: list[str]) -> bool:
    first = (row[0] if row else "").strip().lower()
    second = (row[1] if len(row) > 1 else "").strip().lower()
    return "phone" in first or "email" in second


def parse_csv(content: str) -> list[CsvRow]:
    """
    Parse CSV text into rows.

    Blank lines are skipped. Row numbers refer to lines in the original
    file, header included, so rejection reasons point at the right line.
    """
    rows: list[CsvRow] = []
    reader = csv.reader(io.StringIO(content or ""))
    header_checked = False

    for line_number, raw in enumerate(reader, start=1):
        if not raw or not any(cell.strip() for cell in raw):
            continue
        if not header_checked:
            header_checked = True
            if _is_header(raw):
                continue
        rows.append(CsvRow(
            row_number=line_number,
            phone_number=_cell(raw, 0) or "",
            email=_cell(raw, 1) or "",
            contact_name=_cell(raw, 2),
            company_name=_cell(raw, 3),
            phone_type=_cell(raw, 4),
        ))

    return rows


def validate_row(row: CsvRow) -> tuple[Optional[MappingWrite], Optional[str]]:
    """
    Validate a row.

    Returns:
        (validated row, None) on success, (None, reason) on rejection
    """
    phone = normalize_phone(row.phone_number)
    if not phone:
        return None, f"Row {row.row_number}: invalid phone number {row.phone_number!r}"

    emails = [e.strip() for e in (row.email or "").split(EMAIL_SEPARATOR) if e.strip()]
    if not emails:
        return None, f"Row {row.row_number}: missing email"

    bad = [e for e in emails if not is_valid_email(e)]
    if bad:
        return None, f"Row {row.row_number}: invalid email {bad[0]!r}"

    return MappingWrite(
        phone_number=phone,
        emails=emails,
        contact_name=row.contact_name,
        company_name=row.company_name,
        phone_type=row.phone_type,
    ), None
