class ConfigurationError(Exception):
    """Raised when the OAuth client or service-account configuration is missing or invalid."""


class UnauthorizedError(Exception):
    """Raised when a webhook caller presents the wrong shared secret."""


class ValidationError(Exception):
    """Raised when an inbound payload lacks required event fields or carries invalid ones."""

    def __init__(self, missing: list[str] | None = None, invalid: list[str] | None = None):
        self.missing = list(missing or [])
        self.invalid = list(invalid or [])
        parts = []
        if self.missing:
            parts.append(f"missing fields: {', '.join(self.missing)}")
        if self.invalid:
            parts.append(f"invalid fields: {', '.join(self.invalid)}")
        super().__init__("Invalid request: " + "; ".join(parts or ["no event details found"]))


class NotAuthorizedError(Exception):
    """Raised when no refresh token is on record. Carries the consent URL to finish setup."""

    def __init__(self, message: str, auth_url: str | None = None):
        super().__init__(message)
        self.auth_url = auth_url


class AuthExchangeError(Exception):
    """Raised when the provider rejects an authorization code."""


class UpstreamError(Exception):
    """Raised when the calendar provider rejects or fails an API call."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
