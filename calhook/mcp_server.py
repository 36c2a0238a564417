from fastmcp import FastMCP

from calhook.auth import get_credential_store
from calhook.config import get_settings
from calhook.exceptions import (
    ConfigurationError,
    NotAuthorizedError,
    UpstreamError,
    ValidationError,
)
from calhook.services import calendar as calendar_service
from calhook.services.normalizer import normalize

mcp = FastMCP("calhook")


def _handle_mcp_error(e: Exception) -> dict:
    """Convert exceptions to agent-friendly error dicts."""
    if isinstance(e, NotAuthorizedError):
        return {
            "error": "not_authorized",
            "message": str(e),
            "auth_url": e.auth_url,
            "action": "Ask the user to open auth_url and complete Google sign-in, then retry",
        }
    if isinstance(e, ValidationError):
        return {"error": "invalid_request", "message": str(e), "missing": e.missing, "invalid": e.invalid}
    if isinstance(e, UpstreamError):
        return {"error": "upstream_error", "message": str(e)}
    if isinstance(e, ConfigurationError):
        return {"error": "configuration_error", "message": str(e)}
    return {"error": "unknown_error", "message": str(e)}


@mcp.tool
def create_calendar_event(
    summary: str,
    start: str,
    end: str,
    description: str | None = None,
    location: str | None = None,
    attendees: list[str] | None = None,
    timezone: str | None = None,
    calendar_id: str | None = None,
) -> dict:
    """Create a Google Calendar event. start and end are ISO 8601 timestamps (e.g. 2025-01-01T10:00:00Z).
    attendees is a list of email addresses to invite. timezone is an IANA name such as 'Europe/Paris'."""
    arguments = {
        "summary": summary,
        "start": start,
        "end": end,
        "description": description,
        "location": location,
        "attendees": attendees,
        "timezone": timezone,
        "calendar_id": calendar_id,
    }
    try:
        event = normalize(arguments, default_timezone=get_settings().default_timezone)
        result = calendar_service.insert_event(event)
        return {"id": result.id, "link": result.html_link, "summary": result.summary, "status": result.status}
    except (NotAuthorizedError, ValidationError, UpstreamError, ConfigurationError) as e:
        return _handle_mcp_error(e)


@mcp.tool
def calendar_auth_status() -> dict:
    """Check whether the server holds usable Google Calendar credentials."""
    return get_credential_store().status().model_dump()
