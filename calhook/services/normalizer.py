"""Turn loosely shaped webhook payloads into a validated EventRequest.

Tool-calling platforms wrap the call arguments in several different envelopes.
Each extractor below understands one envelope and returns the raw arguments it
finds there, or None. Extractors are tried in order and the first hit wins.
"""

import json
import re
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pydantic

from calhook.exceptions import ValidationError
from calhook.models.calendar import Attendee, EventRequest

# Keys are compared case-insensitively after stripping whitespace
FIELD_ALIASES = {
    "summary": ("summary", "title"),
    "start": ("start", "start_time", "starttime", "start_datetime", "startdatetime"),
    "end": ("end", "end_time", "endtime", "end_datetime", "enddatetime"),
    "description": ("description",),
    "location": ("location",),
    "attendees": ("attendees",),
    "timezone": ("timezone", "time_zone"),
    "calendar_id": ("calendar_id", "calendarid"),
}

_DIRECT_KEYS = {alias for aliases in FIELD_ALIASES.values() for alias in aliases}


def _decode(value):
    """Parse JSON text; anything unparsable is kept as an opaque value."""
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def _fold_keys(mapping: dict) -> dict:
    return {str(key).strip().lower(): value for key, value in mapping.items()}


def _first(items):
    if isinstance(items, list) and items:
        return items[0]
    return None


def _message(body: dict) -> dict:
    message = body.get("message")
    return message if isinstance(message, dict) else {}


def _call_arguments(call):
    if not isinstance(call, dict):
        return None
    function = call.get("function")
    if isinstance(function, dict) and function.get("arguments") is not None:
        return function["arguments"]
    for key in ("arguments", "parameters"):
        if call.get(key) is not None:
            return call[key]
    return None


# --- Extractors ---

def _from_direct_fields(body: dict):
    if any(key in _DIRECT_KEYS for key in _fold_keys(body)):
        return body
    return None


def _from_body_arguments(body: dict):
    return _call_arguments(body)


def _from_tool_call(body: dict):
    return _call_arguments(body.get("toolCall"))


def _from_tool_calls(body: dict):
    return _call_arguments(_first(body.get("toolCalls")))


def _from_message_tool_call(body: dict):
    return _call_arguments(_message(body).get("toolCall"))


def _from_message_tool_calls(body: dict):
    return _call_arguments(_first(_message(body).get("toolCalls")))


def _from_message_tool_call_list(body: dict):
    return _call_arguments(_first(_message(body).get("toolCallList")))


EXTRACTORS = (
    _from_direct_fields,
    _from_body_arguments,
    _from_tool_call,
    _from_tool_calls,
    _from_message_tool_call,
    _from_message_tool_calls,
    _from_message_tool_call_list,
)


def extract_arguments(raw_body):
    """Return the argument payload from the first envelope that carries one."""
    body = _decode(raw_body)
    if not isinstance(body, dict):
        return None
    for extractor in EXTRACTORS:
        arguments = extractor(body)
        if arguments is not None:
            return _decode(arguments)
    return None


def find_tool_call_id(raw_body) -> str | None:
    """Locate the id of the tool call being answered, if the payload is a tool-call envelope."""
    body = _decode(raw_body)
    if not isinstance(body, dict):
        return None
    message = _message(body)
    candidates = (
        body.get("toolCall"),
        _first(body.get("toolCalls")),
        message.get("toolCall"),
        _first(message.get("toolCalls")),
        _first(message.get("toolCallList")),
        body if _call_arguments(body) is not None else None,
    )
    for call in candidates:
        if not isinstance(call, dict):
            continue
        for key in ("id", "toolCallId"):
            if isinstance(call.get(key), str) and call[key]:
                return call[key]
    return None


# --- Field parsing ---

def _pick(fields: dict, name: str):
    for alias in FIELD_ALIASES[name]:
        value = fields.get(alias)
        if value is not None and value != "":
            return value
    return None


def _text(value) -> str | None:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise TypeError(value)
    text = str(value).strip()
    return text or None


def _timestamp(value) -> tuple[datetime, str | None]:
    """Parse an ISO 8601 string or a provider-style {dateTime, timeZone} object."""
    zone = None
    if isinstance(value, dict):
        folded = _fold_keys(value)
        value = folded.get("datetime")
        zone = folded.get("timezone")
    if not isinstance(value, str):
        raise ValueError(value)
    return datetime.fromisoformat(value.strip()), zone if isinstance(zone, str) else None


def _zone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(name) from e


def _localize(value: datetime, zone: tzinfo) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=zone)


def _attendees(value) -> tuple[Attendee, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = re.split(r"[,;]", value)
    elif isinstance(value, (list, tuple)):
        items = value
    elif isinstance(value, dict):
        items = [value]
    else:
        raise ValueError(value)

    seen = set()
    attendees = []
    for item in items:
        email = _fold_keys(item).get("email") if isinstance(item, dict) else item
        if not isinstance(email, str):
            raise ValueError(item)
        email = email.strip()
        if not email:
            continue
        if "@" not in email:
            raise ValueError(email)
        if email.lower() in seen:
            continue
        seen.add(email.lower())
        attendees.append(Attendee(email=email))
    return tuple(attendees)


def normalize(raw_body, *, default_timezone: str = "UTC") -> EventRequest:
    """Build an EventRequest from any supported payload shape.

    Raises ValidationError naming missing fields (summary, start, end) and
    invalid ones (unparsable timestamps, unknown timezone, end not after start,
    malformed attendees).
    """
    arguments = extract_arguments(raw_body)
    fields = _fold_keys(arguments) if isinstance(arguments, dict) else {}
    missing, invalid = [], []

    values = {}
    for name in ("summary", "description", "location", "calendar_id", "timezone"):
        raw = _pick(fields, name)
        try:
            values[name] = _text(raw) if raw is not None else None
        except TypeError:
            invalid.append(name)
            values[name] = None
    if values["summary"] is None and "summary" not in invalid:
        missing.append("summary")

    times = {}
    zones = []
    for name in ("start", "end"):
        raw = _pick(fields, name)
        if raw is None:
            missing.append(name)
            continue
        try:
            times[name], zone = _timestamp(raw)
        except ValueError:
            invalid.append(name)
            continue
        if zone:
            zones.append(zone)

    timezone_name = values["timezone"] or (zones[0] if zones else None) or default_timezone
    try:
        zone = _zone(timezone_name)
    except ValueError:
        invalid.append("timezone")
        zone = None

    try:
        attendees = _attendees(_pick(fields, "attendees"))
    except ValueError:
        invalid.append("attendees")
        attendees = ()

    if zone is not None and "start" in times and "end" in times:
        if _localize(times["end"], zone) <= _localize(times["start"], zone):
            invalid.append("end")

    if missing or invalid:
        raise ValidationError(missing=missing, invalid=sorted(set(invalid), key=invalid.index))

    try:
        return EventRequest(
            summary=values["summary"],
            start=times["start"],
            end=times["end"],
            description=values["description"],
            location=values["location"],
            attendees=attendees,
            timezone=timezone_name,
            calendar_id=values["calendar_id"],
        )
    except pydantic.ValidationError as e:
        fields_in_error = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise ValidationError(invalid=fields_in_error) from e
