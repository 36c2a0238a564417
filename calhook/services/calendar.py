import json
import logging

import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calhook.auth import CredentialStore, get_credential_store
from calhook.config import Settings, get_settings
from calhook.exceptions import UpstreamError
from calhook.models.calendar import EventRequest, EventResult, EventTime

logger = logging.getLogger(__name__)


def _get_calendar_service(store: CredentialStore):
    creds = store.get_valid_credential()
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


def _provider_message(e: HttpError) -> str:
    try:
        payload = json.loads(e.content.decode("utf-8"))
        return payload["error"]["message"]
    except (ValueError, KeyError, TypeError, AttributeError):
        return str(e)


def _handle_api_error(e: HttpError):
    status = e.resp.status
    message = _provider_message(e)
    logger.warning("Calendar API rejected insert (status %s): %s", status, message)
    raise UpstreamError(f"Calendar API error: {message}", status=status) from e


def _parse_event_time(time_dict: dict) -> EventTime:
    return EventTime(
        date_time=time_dict.get("dateTime"),
        date=time_dict.get("date"),
        time_zone=time_dict.get("timeZone"),
    )


def _parse_event(item: dict) -> EventResult:
    attendees = [a["email"] for a in item.get("attendees", []) if a.get("email")]
    return EventResult(
        id=item["id"],
        html_link=item.get("htmlLink"),
        summary=item.get("summary"),
        status=item.get("status"),
        start=_parse_event_time(item.get("start", {})),
        end=_parse_event_time(item.get("end", {})),
        attendees=attendees,
        raw=item,
    )


def build_event_resource(event: EventRequest) -> dict:
    """Map an EventRequest onto the Calendar API event body."""
    body = {
        "summary": event.summary,
        "start": {"dateTime": event.start.isoformat(), "timeZone": event.timezone},
        "end": {"dateTime": event.end.isoformat(), "timeZone": event.timezone},
    }
    if event.description:
        body["description"] = event.description
    if event.location:
        body["location"] = event.location
    if event.attendees:
        body["attendees"] = [{"email": a.email} for a in event.attendees]
    return body


def insert_event(
    event: EventRequest,
    store: CredentialStore | None = None,
    settings: Settings | None = None,
) -> EventResult:
    """Insert one event. Failures surface as UpstreamError and are never retried."""
    store = store or get_credential_store()
    settings = settings or get_settings()
    service = _get_calendar_service(store)
    calendar_id = event.calendar_id or settings.default_calendar_id
    try:
        item = service.events().insert(
            calendarId=calendar_id,
            body=build_event_resource(event),
            sendUpdates=settings.send_updates,
        ).execute()
    except HttpError as e:
        _handle_api_error(e)
    except (httplib2.HttpLib2Error, OSError) as e:
        logger.warning("Calendar API unreachable: %s", e)
        raise UpstreamError(f"Calendar API unreachable: {e}") from e
    except GoogleAuthError as e:
        logger.warning("Calendar credentials could not be used: %s", e)
        raise UpstreamError(f"Calendar credentials could not be used: {e}") from e
    result = _parse_event(item)
    logger.info("Event created: %s", result.html_link)
    return result
