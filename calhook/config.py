from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    # Webhook caller authentication
    vapi_shared_secret: str = ""
    shared_secret_header: str = "x-vapi-key"

    # OAuth client configuration: env blob, explicit file, or discovery directory
    client_secret_json: str = ""
    client_secret_file: Path | None = None
    client_secret_dir: Path = Path(".")
    redirect_uri: str = ""

    # Token record: file is authoritative, env blob seeds it
    token_file: Path = Path("token.json")
    token_json: str = ""

    # Service-account mode replaces the OAuth handshake when configured
    service_account_file: Path | None = None
    service_account_json: str = ""
    service_account_subject: str = ""

    default_calendar_id: str = "primary"
    default_timezone: str = "UTC"
    send_updates: str = "all"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
