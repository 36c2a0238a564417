import json

import pytest
from unittest.mock import MagicMock

from oauthlib.oauth2.rfc6749.errors import InvalidGrantError

from conftest import CLIENT_ID, VALID_TOKEN


@pytest.fixture
def mock_flow(mocker):
    flow = MagicMock()
    flow.credentials.to_json.return_value = json.dumps(VALID_TOKEN)
    flow.authorization_url.return_value = ("https://accounts.google.com/o/oauth2/auth?client_id=test", "state")
    flow_cls = mocker.patch("calhook.auth.Flow")
    flow_cls.from_client_config.return_value = flow
    return flow


class TestAuthorize:
    def test_redirects_to_consent_screen(self, api_client):
        resp = api_client.get("/authorize", follow_redirects=False)
        assert resp.status_code == 307
        location = resp.headers["location"]
        assert location.startswith("https://accounts.google.com/o/oauth2/auth")
        assert CLIENT_ID in location

    def test_missing_client_config(self, api_client, settings_env):
        (settings_env / "client_secret.json").unlink()
        resp = api_client.get("/authorize", follow_redirects=False)
        assert resp.status_code == 500


class TestOAuthCallback:
    @pytest.mark.parametrize("path", ["/oauth2callback", "/webhook/v1/oauth2callback"])
    def test_code_in_query(self, api_client, store, mock_flow, path):
        resp = api_client.get(f"{path}?code=4/abc")
        assert resp.status_code == 200
        assert "Token saved" in resp.text
        mock_flow.fetch_token.assert_called_once_with(code="4/abc")
        assert store.load() == VALID_TOKEN

    def test_code_in_json_body(self, api_client, store, mock_flow):
        resp = api_client.post("/oauth2callback", json={"code": "4/json"})
        assert resp.status_code == 200
        mock_flow.fetch_token.assert_called_once_with(code="4/json")

    def test_code_in_form_body(self, api_client, store, mock_flow):
        resp = api_client.post("/oauth2callback", data={"code": "4/form"})
        assert resp.status_code == 200
        mock_flow.fetch_token.assert_called_once_with(code="4/form")

    def test_missing_code(self, api_client, store, mock_flow):
        resp = api_client.get("/oauth2callback")
        assert resp.status_code == 400
        assert "Missing code" in resp.text
        mock_flow.fetch_token.assert_not_called()

    def test_uploaded_file_is_not_a_code(self, api_client, store, mock_flow):
        resp = api_client.post("/oauth2callback", files={"code": ("code.txt", b"4/file", "text/plain")})
        assert resp.status_code == 400
        mock_flow.fetch_token.assert_not_called()

    def test_non_string_json_code(self, api_client, store, mock_flow):
        resp = api_client.post("/oauth2callback", json={"code": 123})
        assert resp.status_code == 400
        mock_flow.fetch_token.assert_not_called()

    def test_rejected_code(self, api_client, store, mock_flow):
        mock_flow.fetch_token.side_effect = InvalidGrantError("Bad Request")
        resp = api_client.get("/oauth2callback?code=4/old")
        assert resp.status_code == 400
        assert resp.json()["ok"] is False
        assert store.load() is None

    def test_unblocks_event_creation(self, api_client, store, mock_flow, mock_calendar_build):
        headers = {"x-vapi-key": "correct-secret"}
        body = {"summary": "Standup", "start": "2025-01-01T10:00:00Z", "end": "2025-01-01T10:30:00Z"}
        assert api_client.post("/events", json=body, headers=headers).status_code == 400
        api_client.get("/oauth2callback?code=4/abc")
        assert api_client.post("/events", json=body, headers=headers).status_code == 200


class TestAuthStatus:
    def test_not_authenticated(self, api_client):
        resp = api_client.get("/auth/status")
        assert resp.status_code == 200
        assert resp.json() == {
            "mode": "oauth",
            "authenticated": False,
            "message": "Not authenticated. Visit /authorize to connect.",
        }

    def test_authenticated(self, api_client, stored_token):
        assert api_client.get("/auth/status").json()["authenticated"] is True

    def test_malformed_token_record(self, api_client, store):
        store.persist({"access_token": "ya29.node", "refresh_token": "1//node", "expiry_date": "soon"})
        resp = api_client.get("/auth/status")
        assert resp.status_code == 200
        assert resp.json()["authenticated"] is False
