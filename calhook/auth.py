import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

# Allow Google to return broader scopes than requested (e.g. from prior grants)
os.environ["OAUTHLIB_RELAX_TOKEN_SCOPE"] = "1"

import requests
from fastapi import APIRouter, Request as HttpRequest
from fastapi.responses import PlainTextResponse, RedirectResponse
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from starlette.concurrency import run_in_threadpool

from calhook.config import Settings, get_settings
from calhook.exceptions import AuthExchangeError, ConfigurationError, NotAuthorizedError, UpstreamError
from calhook.models.calendar import DEFAULT_REDIRECT_URI, OAuthClientConfig
from calhook.models.common import StatusResponse

logger = logging.getLogger(__name__)

CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]

_FALLBACK_SECRET_FILES = ("client_secret.json", "credentials.json")


def _coerce_token_record(record: dict) -> dict:
    """Accept token files written by the googleapis Node client as well as google-auth's own."""
    if "token" in record or "access_token" not in record:
        return record
    converted = {
        "token": record.get("access_token"),
        "refresh_token": record.get("refresh_token"),
    }
    scope = record.get("scope")
    if scope:
        converted["scopes"] = scope if isinstance(scope, list) else scope.split()
    if record.get("expiry_date"):
        expiry = datetime.fromtimestamp(record["expiry_date"] / 1000, tz=timezone.utc)
        converted["expiry"] = expiry.replace(tzinfo=None).isoformat() + "Z"
    return converted


class CredentialStore:
    """Owns the OAuth client config and the persisted token record.

    Every token read-modify-write happens under one lock, and the token file is
    replaced atomically, so concurrent refreshes never interleave their writes.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._lock = threading.RLock()
        self._service_account = None

    # --- Client configuration ---

    def _find_client_secret_file(self) -> Path | None:
        if self.settings.client_secret_file is not None:
            return self.settings.client_secret_file
        directory = self.settings.client_secret_dir
        if not directory.is_dir():
            return None
        matches = sorted(directory.glob("client_secret_*.json"))
        if matches:
            return matches[0]
        for name in _FALLBACK_SECRET_FILES:
            candidate = directory / name
            if candidate.exists():
                return candidate
        return None

    def _read_client_secret(self) -> tuple[str, str]:
        if self.settings.client_secret_json:
            return self.settings.client_secret_json, "CLIENT_SECRET_JSON"
        path = self._find_client_secret_file()
        if path is None or not path.exists():
            raise ConfigurationError(
                "No Google OAuth client configuration found. Set CLIENT_SECRET_JSON, CLIENT_SECRET_FILE, "
                "or place a client_secret_*.json in the project folder."
            )
        return path.read_text(encoding="utf-8"), str(path)

    def load_config(self) -> OAuthClientConfig:
        raw, source = self._read_client_secret()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Failed to parse client secret JSON from {source}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid client secret JSON from {source}: expected an object")

        client_type = "web" if "web" in data else "installed" if "installed" in data else None
        if client_type is None or not isinstance(data[client_type], dict):
            raise ConfigurationError(f"Invalid client secret JSON from {source}: missing 'web' or 'installed' section")
        section = data[client_type]

        missing = [key for key in ("client_id", "client_secret") if not section.get(key)]
        if missing:
            raise ConfigurationError(f"Invalid client secret JSON from {source}: missing {', '.join(missing)}")

        redirect_uris = section.get("redirect_uris")
        redirect_uri = self.settings.redirect_uri
        if not redirect_uri:
            redirect_uri = redirect_uris[0] if isinstance(redirect_uris, list) and redirect_uris else DEFAULT_REDIRECT_URI

        extra = {key: section[key] for key in ("auth_uri", "token_uri") if section.get(key)}
        return OAuthClientConfig(
            client_type=client_type,
            client_id=section["client_id"],
            client_secret=section["client_secret"],
            redirect_uri=redirect_uri,
            **extra,
        )

    def _create_flow(self, scopes: list[str] | None = None) -> Flow:
        config = self.load_config()
        return Flow.from_client_config(
            config.to_client_config(),
            scopes=scopes or CALENDAR_SCOPES,
            redirect_uri=config.redirect_uri,
            autogenerate_code_verifier=False,
        )

    def build_authorization_url(self, scopes: list[str] | None = None) -> str:
        flow = self._create_flow(scopes)
        auth_url, _ = flow.authorization_url(
            access_type="offline",
            include_granted_scopes="true",
            prompt="consent",
        )
        return auth_url

    # --- Token record ---

    def load(self) -> dict | None:
        """Read the token record. Corrupt or missing storage means no token."""
        path = self.settings.token_file
        if path.exists():
            raw, source = path.read_text(encoding="utf-8"), str(path)
        elif self.settings.token_json:
            raw, source = self.settings.token_json, "TOKEN_JSON"
        else:
            return None
        try:
            record = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable token record in %s", source)
            return None
        if not isinstance(record, dict):
            logger.warning("Ignoring token record in %s: expected an object", source)
            return None
        try:
            return _coerce_token_record(record)
        except (ValueError, TypeError, AttributeError, OverflowError):
            logger.warning("Ignoring token record in %s: malformed fields", source)
            return None

    def persist(self, token: dict) -> None:
        path = self.settings.token_file
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(token, fh, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        logger.info("Token stored to %s", path)

    def exchange_code(self, code: str) -> None:
        if not code:
            raise AuthExchangeError("Missing authorization code")
        flow = self._create_flow()
        try:
            flow.fetch_token(code=code)
        except (OAuth2Error, ValueError, requests.RequestException) as e:
            raise AuthExchangeError(f"Authorization code exchange failed: {e}") from e
        self.persist(json.loads(flow.credentials.to_json()))

    # --- Credentials ---

    @property
    def uses_service_account(self) -> bool:
        return bool(self.settings.service_account_json or self.settings.service_account_file)

    def _service_account_credentials(self):
        if self.settings.service_account_json:
            raw, source = self.settings.service_account_json, "SERVICE_ACCOUNT_JSON"
        else:
            path = self.settings.service_account_file
            if not path.exists():
                raise ConfigurationError(f"Service account key file not found at {path}")
            raw, source = path.read_text(encoding="utf-8"), str(path)
        try:
            info = json.loads(raw)
            if not isinstance(info, dict):
                raise ValueError("expected an object")
            if isinstance(info.get("private_key"), str):
                info["private_key"] = info["private_key"].replace("\\n", "\n")
            creds = service_account.Credentials.from_service_account_info(info, scopes=CALENDAR_SCOPES)
        except (KeyError, ValueError) as e:
            raise ConfigurationError(f"Invalid service account key from {source}: {e}") from e
        if self.settings.service_account_subject:
            creds = creds.with_subject(self.settings.service_account_subject)
        return creds

    def _valid_service_account_credential(self):
        with self._lock:
            if self._service_account is None:
                self._service_account = self._service_account_credentials()
            creds = self._service_account
            if creds.valid:
                return creds
            try:
                creds.refresh(Request())
            except RefreshError as e:
                self._service_account = None
                raise ConfigurationError(f"Service account token request was rejected: {e}") from e
            except TransportError as e:
                raise UpstreamError(f"Service account token request failed: {e}") from e
            return creds

    def _not_authorized(self, message: str) -> NotAuthorizedError:
        return NotAuthorizedError(
            f"{message} Authorize the app by visiting the URL, then pass the returned code to /oauth2callback.",
            auth_url=self.build_authorization_url(),
        )

    def get_valid_credential(self):
        """Return credentials with a usable access token, refreshing and persisting if expired."""
        if self.uses_service_account:
            return self._valid_service_account_credential()

        with self._lock:
            record = self.load()
            if not record or not record.get("refresh_token"):
                raise self._not_authorized("No refresh token on record.")

            config = self.load_config()
            info = {"client_id": config.client_id, "client_secret": config.client_secret, **record}
            try:
                creds = Credentials.from_authorized_user_info(info, record.get("scopes") or CALENDAR_SCOPES)
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning("Ignoring malformed token record: %s", e)
                raise self._not_authorized("Stored token record is malformed.") from e
            if creds.valid:
                return creds

            try:
                creds.refresh(Request())
            except RefreshError as e:
                logger.warning("Refresh token rejected: %s", e)
                raise self._not_authorized("Stored refresh token was rejected.") from e
            except TransportError as e:
                raise UpstreamError(f"Token refresh failed: {e}") from e
            self.persist(json.loads(creds.to_json()))
            return creds

    def status(self) -> StatusResponse:
        if self.uses_service_account:
            return StatusResponse(mode="service_account", authenticated=True, message="Using service account key")
        record = self.load()
        authenticated = bool(record and record.get("refresh_token"))
        return StatusResponse(
            mode="oauth",
            authenticated=authenticated,
            message="Authenticated" if authenticated else "Not authenticated. Visit /authorize to connect.",
        )


@lru_cache
def get_credential_store() -> CredentialStore:
    return CredentialStore(get_settings())


# --- Auth router ---

router = APIRouter(tags=["auth"])


@router.get("/authorize")
def authorize():
    """Redirect to the Google OAuth consent screen."""
    return RedirectResponse(get_credential_store().build_authorization_url())


async def _extract_code(request: HttpRequest) -> str:
    code = request.query_params.get("code")
    if code or request.method != "POST":
        return code or ""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            return ""
        code = payload.get("code") if isinstance(payload, dict) else None
    else:
        code = (await request.form()).get("code")
    return code if isinstance(code, str) else ""


@router.api_route("/oauth2callback", methods=["GET", "POST"], response_class=PlainTextResponse)
@router.api_route("/webhook/v1/oauth2callback", methods=["GET", "POST"], response_class=PlainTextResponse)
async def oauth2callback(request: HttpRequest):
    """Exchange the authorization code for tokens and store them."""
    code = await _extract_code(request)
    if not code:
        return PlainTextResponse(
            "Missing code parameter. Example: /oauth2callback?code=4/...",
            status_code=400,
        )
    await run_in_threadpool(get_credential_store().exchange_code, code)
    return "Token saved to server. You can now close this page and re-run the webhook request."


@router.get("/auth/status")
def auth_status() -> StatusResponse:
    return get_credential_store().status()
