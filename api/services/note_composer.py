"""
Note text for OpenPhone call events.

One template per event kind. Every note ends with a direct link back to the
call in OpenPhone.
"""
from datetime import datetime, timezone
from typing import Optional

from api.services.phone_utils import normalize_phone, format_phone_display
from api.utils.datetime_utils import parse_provider_timestamp

EVENT_RECORDING = "recording"
EVENT_SUMMARY = "summary"
EVENT_TRANSCRIPT = "transcript"
EVENT_KINDS = (EVENT_RECORDING, EVENT_SUMMARY, EVENT_TRANSCRIPT)

OPENPHONE_CALL_URL = "https://app.openphone.com/calls/"
DATE_FORMAT = "%Y-%m-%d %H:%M UTC"


def event_kind_for(event_type: Optional[str]) -> Optional[str]:
    """Map an OpenPhone event type (e.g. "call.summary.completed") to a kind."""
    if not event_type:
        return None
    for kind in EVENT_KINDS:
        if kind in event_type:
            return kind
    return None


def call_link(call_id: str) -> str:
    return f"Direct link to call in OpenPhone: {OPENPHONE_CALL_URL}{call_id or ''}"


def _display_number(raw: Optional[str], unknown: str) -> str:
    if not raw:
        return unknown
    phone = normalize_phone(raw)
    return format_phone_display(phone) if phone else raw


def _format_date(value) -> str:
    dt = parse_provider_timestamp(value) or datetime.now(timezone.utc)
    return dt.astimezone(timezone.utc).strftime(DATE_FORMAT)


def _heading(title: str) -> list[str]:
    return [title, "-" * len(title)]


def _recording_body(obj: dict) -> list[str]:
    media = obj.get("media") or []
    first = media[0] if media and isinstance(media[0], dict) else {}
    recording_url = first.get("url") or "No recording URL available"

    duration = first.get("duration")
    if isinstance(duration, (int, float)) and duration > 0:
        call_duration = f"{round(duration / 60)} minutes"
    else:
        call_duration = "Unknown duration"

    return [
        f"From: {_display_number(obj.get('from'), 'Unknown caller')}",
        f"To: {_display_number(obj.get('to'), 'Unknown receiver')}",
        f"Duration: {call_duration}",
        f"Recording: {recording_url}",
    ]


def _summary_body(obj: dict) -> list[str]:
    points = [str(p) for p in (obj.get("summary") or []) if p]
    if not points:
        return ["No summary available"]

    lines = ["Summary:"] + [f"- {p}" for p in points]
    next_steps = [str(s) for s in (obj.get("nextSteps") or []) if s]
    if next_steps:
        lines += ["", "Next Steps:"] + [f"- {s}" for s in next_steps]
    return lines


def _transcript_body(obj: dict) -> list[str]:
    segments = [s for s in (obj.get("dialogue") or []) if isinstance(s, dict)]
    if not segments:
        return ["No transcript content"]
    return [f"{s.get('identifier') or 'Speaker'}: {s.get('content') or ''}" for s in segments]


def compose_note(event_kind: str, obj: dict, created_at=None) -> str:
    """
    Build the note text for a call event.

    Args:
        event_kind: "recording", "summary" or "transcript"
        obj: The event's data.object
        created_at: Event timestamp (ISO string or epoch); falls back to
            obj["createdAt"], then now

    Returns:
        Note text
    """
    obj = obj or {}
    when = _format_date(created_at or obj.get("createdAt"))

    if event_kind == EVENT_RECORDING:
        lines = _heading(f"OpenPhone Call Recording - {when}") + _recording_body(obj)
        call_id = obj.get("id") or ""
    elif event_kind == EVENT_SUMMARY:
        lines = _heading(f"OpenPhone Call Summary - {when}") + _summary_body(obj)
        call_id = obj.get("callId") or ""
    elif event_kind == EVENT_TRANSCRIPT:
        lines = _heading(f"OpenPhone Call Transcript - {when}") + _transcript_body(obj)
        call_id = obj.get("callId") or ""
    else:
        raise ValueError(f"Unknown event kind: {event_kind}")

    lines += ["", call_link(call_id)]
    return "\n".join(lines)
