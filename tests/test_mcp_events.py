import pytest

from conftest import CALENDAR_API_EVENT


@pytest.fixture(autouse=True)
def isolated_settings(settings_env):
    return settings_env


class TestCreateCalendarEvent:
    def test_returns_dict(self, stored_token, mock_calendar_build):
        from calhook.mcp_server import create_calendar_event
        result = create_calendar_event.fn(
            summary="Standup", start="2025-01-01T10:00:00Z", end="2025-01-01T10:30:00Z",
            attendees=["alice@example.com"],
        )
        assert result == {
            "id": "evt123",
            "link": CALENDAR_API_EVENT["htmlLink"],
            "summary": "Standup",
            "status": "confirmed",
        }
        body = mock_calendar_build.events().insert.call_args.kwargs["body"]
        assert body["attendees"] == [{"email": "alice@example.com"}]

    def test_not_authorized_returns_auth_url(self, store, mock_calendar_build):
        from calhook.mcp_server import create_calendar_event
        result = create_calendar_event.fn(summary="Standup", start="2025-01-01T10:00:00Z", end="2025-01-01T10:30:00Z")
        assert result["error"] == "not_authorized"
        assert result["auth_url"].startswith("https://accounts.google.com/")

    def test_invalid_request_returns_dict(self, stored_token, mock_calendar_build):
        from calhook.mcp_server import create_calendar_event
        result = create_calendar_event.fn(summary="Standup", start="2025-01-01T10:00:00Z", end="2025-01-01T09:00:00Z")
        assert result["error"] == "invalid_request"
        assert result["invalid"] == ["end"]


class TestCalendarAuthStatus:
    def test_reports_status(self, stored_token):
        from calhook.mcp_server import calendar_auth_status
        result = calendar_auth_status.fn()
        assert result["mode"] == "oauth"
        assert result["authenticated"] is True
