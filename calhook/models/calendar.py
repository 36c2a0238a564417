from datetime import datetime

from pydantic import BaseModel, ConfigDict

DEFAULT_REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"


class OAuthClientConfig(BaseModel):
    client_type: str = "web"
    client_id: str
    client_secret: str
    redirect_uri: str = DEFAULT_REDIRECT_URI
    auth_uri: str = "https://accounts.google.com/o/oauth2/auth"
    token_uri: str = "https://oauth2.googleapis.com/token"

    def to_client_config(self) -> dict:
        """Shape expected by google_auth_oauthlib.flow.Flow.from_client_config."""
        return {
            self.client_type: {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": self.auth_uri,
                "token_uri": self.token_uri,
                "redirect_uris": [self.redirect_uri],
            }
        }


class Attendee(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str


class EventRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str
    start: datetime
    end: datetime
    description: str | None = None
    location: str | None = None
    attendees: tuple[Attendee, ...] = ()
    timezone: str = "UTC"
    calendar_id: str | None = None


class EventTime(BaseModel):
    date_time: str | None = None
    date: str | None = None
    time_zone: str | None = None


class EventResult(BaseModel):
    id: str
    html_link: str | None = None
    summary: str | None = None
    status: str | None = None
    start: EventTime
    end: EventTime
    attendees: list[str] = []
    raw: dict = {}
