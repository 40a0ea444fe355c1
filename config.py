"""Config management for youtube-music-mcp.

Settings come from environment variables. A .env file in the working
directory is loaded first when present (it never overrides variables that
are already set).
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from oauth.token_storage import default_token_path

TRANSPORTS = ("stdio", "http", "sse")

DEFAULTS = {
    "TRANSPORT": "stdio",
    "HOST": "0.0.0.0",
    "PORT": "8080",
    "OAUTH_REDIRECT_URL": "http://localhost:8080/callback",
    "OAUTH_PORT": "8080",
    "UPSTREAM_TIMEOUT": "10",
    "LOG_FORMAT": "json",
    "LOG_LEVEL": "INFO",
    "SERVICE_NAME": "youtube-music-mcp",
}


class ConfigError(Exception):
    """Missing or invalid configuration."""


class Config:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = {**DEFAULTS, **(data or {})}

    def _get(self, key: str) -> Optional[str]:
        value = self.data.get(key)
        return value if value else None

    def _int(self, key: str) -> int:
        try:
            return int(self.data[key])
        except (KeyError, TypeError, ValueError):
            raise ConfigError(f"{key} must be an integer, got {self.data.get(key)!r}")

    @property
    def google_client_id(self) -> Optional[str]:
        return self._get("GOOGLE_CLIENT_ID")

    @property
    def google_client_secret(self) -> Optional[str]:
        return self._get("GOOGLE_CLIENT_SECRET")

    @property
    def transport(self) -> str:
        return self.data["TRANSPORT"].lower()

    @property
    def base_url(self) -> Optional[str]:
        url = self._get("BASE_URL")
        return url.rstrip("/") if url else None

    @property
    def host(self) -> str:
        return self.data["HOST"]

    @property
    def port(self) -> int:
        return self._int("PORT")

    @property
    def oauth_redirect_url(self) -> str:
        return self.data["OAUTH_REDIRECT_URL"]

    @property
    def oauth_port(self) -> int:
        return self._int("OAUTH_PORT")

    @property
    def token_json(self) -> Optional[str]:
        return self._get("OAUTH_TOKEN_JSON")

    @property
    def token_path(self) -> Path:
        path = self._get("TOKEN_PATH")
        return Path(path).expanduser() if path else default_token_path()

    @property
    def upstream_timeout(self) -> float:
        try:
            return float(self.data["UPSTREAM_TIMEOUT"])
        except (TypeError, ValueError):
            raise ConfigError(f"UPSTREAM_TIMEOUT must be a number, got {self.data['UPSTREAM_TIMEOUT']!r}")

    @property
    def log_format(self) -> str:
        return self.data["LOG_FORMAT"].lower()

    @property
    def log_level(self) -> str:
        return self.data["LOG_LEVEL"].upper()

    @property
    def supabase_url(self) -> Optional[str]:
        return self._get("SUPABASE_URL")

    @property
    def supabase_anon_key(self) -> Optional[str]:
        return self._get("SUPABASE_ANON_KEY")

    @property
    def service_name(self) -> str:
        return self.data["SERVICE_NAME"]

    @property
    def is_http(self) -> bool:
        return self.transport in ("http", "sse")

    def validate(self) -> None:
        """Raise ConfigError listing every problem at once."""
        problems = []
        if not self.google_client_id:
            problems.append("GOOGLE_CLIENT_ID is required")
        if not self.google_client_secret:
            problems.append("GOOGLE_CLIENT_SECRET is required")
        if self.transport not in TRANSPORTS:
            problems.append(f"TRANSPORT must be one of {', '.join(TRANSPORTS)}")
        if self.is_http and not self.base_url:
            problems.append("BASE_URL is required for http/sse transport")
        for key in ("PORT", "OAUTH_PORT"):
            try:
                self._int(key)
            except ConfigError as e:
                problems.append(str(e))
        try:
            self.upstream_timeout
        except ConfigError as e:
            problems.append(str(e))
        if problems:
            raise ConfigError("; ".join(problems))


def load_config(env_file: Optional[Path] = None) -> Config:
    """Load config from the environment, after an optional .env file."""
    env_file = env_file or Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    keys = set(DEFAULTS) | {
        "GOOGLE_CLIENT_ID",
        "GOOGLE_CLIENT_SECRET",
        "BASE_URL",
        "OAUTH_TOKEN_JSON",
        "TOKEN_PATH",
        "SUPABASE_URL",
        "SUPABASE_ANON_KEY",
    }
    return Config({key: os.environ[key] for key in keys if os.environ.get(key)})
