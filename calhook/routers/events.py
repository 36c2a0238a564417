import json
import logging
import secrets

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from calhook.config import Settings, get_settings
from calhook.exceptions import ConfigurationError, UnauthorizedError
from calhook.models.webhook import EventCreatedResponse, ToolCallResponse, ToolCallResult
from calhook.services import calendar as calendar_service
from calhook.services.normalizer import find_tool_call_id, normalize

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


def verify_shared_secret(request: Request, settings: Settings) -> None:
    if not settings.vapi_shared_secret:
        raise ConfigurationError("VAPI_SHARED_SECRET is not configured")
    provided = request.headers.get(settings.shared_secret_header, "")
    if not secrets.compare_digest(provided.encode(), settings.vapi_shared_secret.encode()):
        logger.warning("Unauthorized webhook call (invalid %s)", settings.shared_secret_header)
        raise UnauthorizedError(f"Unauthorized: invalid {settings.shared_secret_header}")


async def _read_payload(request: Request):
    """Decode the JSON body; malformed JSON is passed on as raw text."""
    raw = await request.body()
    try:
        return json.loads(raw)
    except ValueError:
        return raw.decode("utf-8", errors="replace")


@router.post("/events", response_model=None)
@router.post("/webhook/v1/events", response_model=None)
@router.post("/webhook/v1", response_model=None)
async def create_event(request: Request) -> EventCreatedResponse | ToolCallResponse:
    """Create one calendar event from a flat payload or a tool-call envelope."""
    settings = get_settings()
    verify_shared_secret(request, settings)

    payload = await _read_payload(request)
    event = normalize(payload, default_timezone=settings.default_timezone)
    result = await run_in_threadpool(calendar_service.insert_event, event)

    message = f"Event '{result.summary or event.summary}' created"
    tool_call_id = find_tool_call_id(payload)
    if tool_call_id:
        summary = f"{message}: {result.html_link}" if result.html_link else message
        return ToolCallResponse(results=[ToolCallResult(tool_call_id=tool_call_id, result=summary)])
    return EventCreatedResponse(message=message, link=result.html_link, data=result.raw)
