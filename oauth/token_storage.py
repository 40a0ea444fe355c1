"""Persistence for the upstream (Google) token.

Used by stdio mode, where the server authenticates once through a local
browser flow and reuses the saved token on later runs. HTTP mode keeps the
upstream token in OAuthState instead and never touches disk.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

from oauth.upstream import GoogleOAuthClient, UpstreamToken

logger = logging.getLogger(__name__)

APP_DIR_NAME = "youtube-music-mcp"


class TokenStorageError(Exception):
    """No usable token in storage."""


class TokenStorage(Protocol):
    def load(self) -> UpstreamToken: ...

    def save(self, token: UpstreamToken) -> None: ...


def default_token_path() -> Path:
    """~/.config/youtube-music-mcp/token.json, honouring XDG_CONFIG_HOME."""
    config_home = os.getenv("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else Path.home() / ".config"
    return base / APP_DIR_NAME / "token.json"


class FileTokenStorage:
    """Token stored as JSON in a file with owner-only permissions."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> UpstreamToken:
        try:
            data = json.loads(self.path.read_text())
        except FileNotFoundError as e:
            raise TokenStorageError(f"No token file at {self.path}") from e
        except (OSError, ValueError) as e:
            raise TokenStorageError(f"Failed to read token file: {e}") from e

        try:
            return UpstreamToken.from_dict(data)
        except (AttributeError, ValueError) as e:
            raise TokenStorageError(f"Malformed token file: {e}") from e

    def save(self, token: UpstreamToken) -> None:
        """Write atomically: temp file first, then rename over the target."""
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")

        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(token.to_dict(), f, indent=2)
        os.replace(tmp_path, self.path)

    def exists(self) -> bool:
        return self.path.exists()

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


class EnvTokenStorage:
    """Token provided as JSON in OAUTH_TOKEN_JSON.

    For hosts without a writable filesystem. Refreshed tokens cannot be
    persisted, so save() only warns.
    """

    def __init__(self, token_json: str):
        self.token_json = token_json

    def load(self) -> UpstreamToken:
        if not self.token_json:
            raise TokenStorageError("OAUTH_TOKEN_JSON is empty")
        try:
            return UpstreamToken.from_dict(json.loads(self.token_json))
        except (AttributeError, ValueError) as e:
            raise TokenStorageError(f"Failed to parse OAUTH_TOKEN_JSON: {e}") from e

    def save(self, token: UpstreamToken) -> None:
        logger.warning("[TOKEN_STORE] Refreshed token cannot be persisted; "
                       "update OAUTH_TOKEN_JSON when the refresh token expires")


class PersistingTokenSource:
    """Hands out valid access tokens, refreshing and persisting as needed."""

    def __init__(self, client: GoogleOAuthClient, storage: TokenStorage,
                 token: Optional[UpstreamToken] = None):
        self.client = client
        self.storage = storage
        self._token = token
        self._refresh_lock = asyncio.Lock()

    async def access_token(self) -> str:
        async with self._refresh_lock:
            if self._token is None:
                self._token = self.storage.load()
            if self._token.expired:
                logger.info("[TOKEN_STORE] Refreshing expired upstream token")
                self._token = await self.client.refresh(self._token)
                try:
                    self.storage.save(self._token)
                except OSError as e:
                    # The refreshed token is still valid for this process
                    logger.error(f"[TOKEN_STORE] Failed to persist refreshed token: {e}")
                else:
                    logger.info("[TOKEN_STORE] Persisted refreshed token")
            return self._token.access_token
