"""In-memory state for the OAuth authorization server.

All OAuth state (registered clients, pending authorizations, authorization
codes, access and refresh tokens, and the single upstream token) lives in one
OAuthState object guarded by one lock. State is intentionally lost on restart.

Every method holds the lock only for O(1) dictionary work and never awaits,
so it is safe to call from async request handlers.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from oauth.upstream import UpstreamToken


@dataclass(frozen=True)
class RegisteredClient:
    client_id: str
    client_secret: str
    redirect_uris: tuple[str, ...]


@dataclass(frozen=True)
class PendingAuthorization:
    """An /authorize request waiting for the upstream provider to call back."""

    client_id: str
    redirect_uri: str
    client_state: str
    code_challenge: str
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class AuthorizationCode:
    client_id: str
    redirect_uri: str
    code_challenge: str
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class AccessToken:
    client_id: str
    expires_at: float


@dataclass(frozen=True)
class RefreshToken:
    client_id: str


class OAuthState:
    """Lock-guarded maps backing the authorization server."""

    def __init__(self):
        self._lock = threading.Lock()
        self._clients: dict[str, RegisteredClient] = {}
        self._pending: dict[str, PendingAuthorization] = {}  # upstream state -> pending
        self._codes: dict[str, AuthorizationCode] = {}
        self._access_tokens: dict[str, AccessToken] = {}
        self._refresh_tokens: dict[str, RefreshToken] = {}
        self._upstream_token: Optional[UpstreamToken] = None

    # ============== Clients ==============

    def add_client(self, client: RegisteredClient) -> None:
        with self._lock:
            self._clients[client.client_id] = client

    def get_client(self, client_id: str) -> Optional[RegisteredClient]:
        with self._lock:
            return self._clients.get(client_id)

    # ============== Pending authorizations ==============

    def add_pending(self, upstream_state: str, pending: PendingAuthorization) -> None:
        with self._lock:
            self._pending[upstream_state] = pending

    def pop_pending(self, upstream_state: str) -> Optional[PendingAuthorization]:
        """Remove and return a pending authorization; a state can be consumed once."""
        with self._lock:
            return self._pending.pop(upstream_state, None)

    # ============== Authorization codes ==============

    def add_code(self, code: str, record: AuthorizationCode) -> None:
        with self._lock:
            self._codes[code] = record

    def pop_code(self, code: str) -> Optional[AuthorizationCode]:
        """Remove and return a code before it is validated, so it is single-use."""
        with self._lock:
            return self._codes.pop(code, None)

    # ============== Tokens ==============

    def add_token_pair(self, access_token: str, access: AccessToken,
                       refresh_token: str, refresh: RefreshToken) -> None:
        with self._lock:
            self._access_tokens[access_token] = access
            self._refresh_tokens[refresh_token] = refresh

    def get_access_token(self, token: str) -> Optional[AccessToken]:
        with self._lock:
            return self._access_tokens.get(token)

    def delete_access_token(self, token: str) -> None:
        with self._lock:
            self._access_tokens.pop(token, None)

    def pop_refresh_token(self, token: str) -> Optional[RefreshToken]:
        """Remove and return a refresh token; rotation leaves no reuse window."""
        with self._lock:
            return self._refresh_tokens.pop(token, None)

    # ============== Upstream token ==============

    def set_upstream_token(self, token: UpstreamToken) -> None:
        with self._lock:
            self._upstream_token = token

    def get_upstream_token(self) -> Optional[UpstreamToken]:
        with self._lock:
            return self._upstream_token

    def replace_upstream_token(self, expected: UpstreamToken, token: UpstreamToken) -> bool:
        """Store a refreshed token only if no newer one was stored meanwhile."""
        with self._lock:
            if self._upstream_token is not expected:
                return False
            self._upstream_token = token
            return True

    # ============== Housekeeping ==============

    def prune(self, max_age: float, now: Optional[float] = None) -> tuple[int, int, int]:
        """Delete stale pending authorizations and codes, and expired access tokens.

        Returns the number of (pending, codes, access tokens) removed.
        """
        now = time.time() if now is None else now
        with self._lock:
            stale_pending = [k for k, v in self._pending.items() if now - v.created_at > max_age]
            for k in stale_pending:
                del self._pending[k]
            stale_codes = [k for k, v in self._codes.items() if now - v.created_at > max_age]
            for k in stale_codes:
                del self._codes[k]
            expired = [k for k, v in self._access_tokens.items() if now > v.expires_at]
            for k in expired:
                del self._access_tokens[k]
        return len(stale_pending), len(stale_codes), len(expired)

    def counts(self) -> dict[str, int]:
        with self._lock:
            return {
                "clients": len(self._clients),
                "pending_authorizations": len(self._pending),
                "authorization_codes": len(self._codes),
                "access_tokens": len(self._access_tokens),
                "refresh_tokens": len(self._refresh_tokens),
            }
