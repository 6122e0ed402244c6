"""
Phone number and email utilities for PhoneBridge.

Provides normalization to E.164-like phone keys and the email validator
used to gate directory writes.

Known limitation: numbers typed with a leading "+" are digit-stripped and
reprocessed like any other input. A "+" number with exactly 10 digits is
therefore treated as a US number ("+4420712345" -> "+14420712345"). This
keeps normalization idempotent and comparisons consistent.
"""
import re
from typing import Optional

DEFAULT_COUNTRY_CODE = "1"
MIN_DIGITS = 10
MAX_DIGITS = 15

_EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


def normalize_phone(raw) -> Optional[str]:
    """
    Normalize phone number to a canonical "+<digits>" key.

    Args:
        raw: Raw phone number in any common format

    Returns:
        Normalized phone (+1XXXXXXXXXX for US numbers) or None if invalid

    Examples:
        >>> normalize_phone("(901) 229-5017")
        '+19012295017'
        >>> normalize_phone("+1 901 229 5017")
        '+19012295017'
        >>> normalize_phone("447700900123")
        '+447700900123'
        >>> normalize_phone("123")
        None
    """
    if not raw or not isinstance(raw, str):
        return None

    # Strip all non-digit characters (including a leading +)
    digits = re.sub(r'\D', '', raw)

    if len(digits) == 10:
        # US number without country code
        digits = DEFAULT_COUNTRY_CODE + digits

    if len(digits) < MIN_DIGITS or len(digits) > MAX_DIGITS:
        return None

    return f"+{digits}"


def format_phone_display(phone: str) -> str:
    """
    Format a normalized phone number for display.

    Args:
        phone: Normalized phone (+1XXXXXXXXXX)

    Returns:
        Display-friendly format: (XXX) XXX-XXXX for US numbers

    Examples:
        >>> format_phone_display("+19012295017")
        '(901) 229-5017'
        >>> format_phone_display("+447700900123")
        '+447700900123'
    """
    if not phone:
        return ""

    # US/Canada numbers (11 digits starting with +1)
    if phone.startswith("+1") and len(phone) == 12:
        area = phone[2:5]
        exchange = phone[5:8]
        subscriber = phone[8:12]
        return f"({area}) {exchange}-{subscriber}"

    return phone


def is_valid_email(email) -> bool:
    """
    Conservative syntactic email check.

    Non-whitespace local part, "@", and a non-whitespace domain containing
    at least one ".". Gate for directory writes only.
    """
    if not email or not isinstance(email, str):
        return False
    return bool(_EMAIL_RE.match(email))
