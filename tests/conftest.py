import json

import pytest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from calhook.auth import get_credential_store
from calhook.config import get_settings


# --- Canned payloads ---

CLIENT_ID = "test-client.apps.googleusercontent.com"

CLIENT_SECRET = {
    "web": {
        "client_id": CLIENT_ID,
        "client_secret": "test-secret",
        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
        "token_uri": "https://oauth2.googleapis.com/token",
        "redirect_uris": ["http://localhost:3000/oauth2callback"],
    }
}

VALID_TOKEN = {
    "token": "access-123",
    "refresh_token": "refresh-456",
    "token_uri": "https://oauth2.googleapis.com/token",
    "client_id": CLIENT_ID,
    "client_secret": "test-secret",
    "scopes": ["https://www.googleapis.com/auth/calendar"],
    "expiry": "2099-01-01T00:00:00Z",
}

EXPIRED_TOKEN = {**VALID_TOKEN, "token": "stale-access", "expiry": "2000-01-01T00:00:00Z"}

CALENDAR_API_EVENT = {
    "id": "evt123",
    "status": "confirmed",
    "htmlLink": "https://www.google.com/calendar/event?eid=evt123",
    "summary": "Standup",
    "start": {"dateTime": "2025-01-01T10:00:00Z", "timeZone": "UTC"},
    "end": {"dateTime": "2025-01-01T10:30:00Z", "timeZone": "UTC"},
    "attendees": [{"email": "alice@example.com"}],
}

STANDUP = {"summary": "Standup", "start": "2025-01-01T10:00:00Z", "end": "2025-01-01T10:30:00Z"}

_ISOLATED_ENV = (
    "CLIENT_SECRET_JSON",
    "CLIENT_SECRET_DIR",
    "REDIRECT_URI",
    "TOKEN_JSON",
    "SERVICE_ACCOUNT_FILE",
    "SERVICE_ACCOUNT_JSON",
    "SERVICE_ACCOUNT_SUBJECT",
    "DEFAULT_CALENDAR_ID",
    "DEFAULT_TIMEZONE",
    "SEND_UPDATES",
    "SHARED_SECRET_HEADER",
)


@pytest.fixture
def settings_env(tmp_path, monkeypatch):
    """Point settings at a temp dir holding a client secret and no token."""
    secret_file = tmp_path / "client_secret.json"
    secret_file.write_text(json.dumps(CLIENT_SECRET))
    monkeypatch.chdir(tmp_path)
    for name in _ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("VAPI_SHARED_SECRET", "correct-secret")
    monkeypatch.setenv("CLIENT_SECRET_FILE", str(secret_file))
    monkeypatch.setenv("TOKEN_FILE", str(tmp_path / "token.json"))
    get_settings.cache_clear()
    get_credential_store.cache_clear()
    yield tmp_path
    get_settings.cache_clear()
    get_credential_store.cache_clear()


@pytest.fixture
def store(settings_env):
    return get_credential_store()


@pytest.fixture
def stored_token(store):
    store.persist(VALID_TOKEN)
    return VALID_TOKEN


@pytest.fixture
def mock_calendar_build(mocker):
    mock_svc = MagicMock()
    mock_svc.events().insert().execute.return_value = CALENDAR_API_EVENT
    mocker.patch("calhook.services.calendar.build", return_value=mock_svc)
    return mock_svc


@pytest.fixture
def api_client(settings_env):
    """FastAPI TestClient for router tests."""
    from calhook.main import api
    return TestClient(api)
