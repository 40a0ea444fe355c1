"""MCP OAuth 2.0 Authorization Server that proxies end-user login to Google.

The server registers MCP clients dynamically, runs a PKCE-mandatory
authorization-code flow whose consent step is delegated to Google, and issues
its own opaque access and refresh tokens. The Google token obtained on the
callback is kept as a single upstream token shared by every MCP client.

The HTTP layer lives in oauth/endpoints.py; this module only raises
OAuthError subclasses and never builds responses.
"""

import asyncio
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oauth.errors import (
    ClientError,
    GrantError,
    InvalidClientError,
    InvalidTokenError,
    UnsupportedGrantError,
    UpstreamError,
)
from oauth.stores import (
    AccessToken,
    AuthorizationCode,
    OAuthState,
    PendingAuthorization,
    RefreshToken,
    RegisteredClient,
)
from oauth.token_utils import (
    ACCESS_TOKEN_EXPIRE_SECONDS,
    AUTHORIZATION_TTL_SECONDS,
    CLIENT_ID_BYTES,
    SECRET_BYTES,
    STATE_BYTES,
    generate_token,
    verify_pkce,
)
from oauth.upstream import GoogleOAuthClient

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 5 * 60
UPSTREAM_CALLBACK_PATH = "/google-callback"


@dataclass(frozen=True)
class TokenResponse:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "refresh_token": self.refresh_token,
        }


def _is_absolute_uri(uri: str) -> bool:
    parts = urlsplit(uri)
    if not parts.scheme or parts.fragment:
        return False
    if parts.scheme in ("http", "https"):
        return bool(parts.netloc)
    return bool(parts.netloc or parts.path)


def _add_query_params(uri: str, params: dict) -> str:
    parts = urlsplit(uri)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class AuthorizationServer:
    """Authorization server state machine.

    Args:
        base_url: Public base URL of this server (issuer and resource).
        upstream: OAuth client for the upstream provider.
        state: State store; a fresh one is created when omitted.
        clock: Returns the current Unix time; injectable for tests.
    """

    def __init__(
        self,
        base_url: str,
        upstream: GoogleOAuthClient,
        state: Optional[OAuthState] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self.upstream = upstream
        self.state = state or OAuthState()
        self._clock = clock

    # ============== Metadata ==============

    @property
    def resource_metadata_url(self) -> str:
        return f"{self.base_url}/.well-known/oauth-protected-resource"

    def protected_resource_metadata(self) -> dict:
        """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
        return {
            "resource": self.base_url,
            "authorization_servers": [self.base_url],
            "bearer_methods_supported": ["header"],
        }

    def authorization_server_metadata(self) -> dict:
        """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
        return {
            "issuer": self.base_url,
            "authorization_endpoint": f"{self.base_url}/authorize",
            "token_endpoint": f"{self.base_url}/token",
            "jwks_uri": f"{self.base_url}/jwks",
            "registration_endpoint": f"{self.base_url}/register",
            "response_types_supported": ["code"],
            "grant_types_supported": ["authorization_code", "refresh_token"],
            "token_endpoint_auth_methods_supported": ["client_secret_post"],
            "code_challenge_methods_supported": ["S256"],
        }

    # ============== Client Registration ==============

    def register_client(self, redirect_uris) -> RegisteredClient:
        """Dynamic Client Registration (RFC 7591).

        Only redirect_uris is honoured; it must be a non-empty list of
        absolute URIs.
        """
        if not isinstance(redirect_uris, list) or not redirect_uris:
            raise ClientError("redirect_uris required")
        for uri in redirect_uris:
            if not isinstance(uri, str) or not _is_absolute_uri(uri):
                raise ClientError(f"Invalid redirect_uri: {uri!r}")

        client = RegisteredClient(
            client_id=generate_token(CLIENT_ID_BYTES),
            client_secret=generate_token(SECRET_BYTES),
            redirect_uris=tuple(redirect_uris),
        )
        self.state.add_client(client)
        logger.info(f"[DCR] Registered new client: {client.client_id}")
        return client

    # ============== Authorization Flow ==============

    def authorize(
        self,
        client_id: str,
        redirect_uri: str,
        code_challenge: str,
        code_challenge_method: str,
        client_state: str = "",
    ) -> str:
        """Validate an /authorize request and return the upstream consent URL.

        Nothing is stored and no redirect happens unless every check passes,
        so an unverified redirect_uri never receives anything.
        """
        client = self.state.get_client(client_id) if client_id else None
        if client is None:
            raise ClientError("Unknown client_id")

        # Exact match only: no prefix or wildcard matching
        if redirect_uri not in client.redirect_uris:
            raise ClientError("Invalid redirect_uri")

        if not code_challenge or code_challenge_method != "S256":
            raise ClientError("PKCE S256 required")

        upstream_state = generate_token(STATE_BYTES)
        self.state.add_pending(upstream_state, PendingAuthorization(
            client_id=client_id,
            redirect_uri=redirect_uri,
            client_state=client_state or "",
            code_challenge=code_challenge,
            created_at=self._clock(),
        ))
        logger.info(f"[AUTHORIZE] Redirecting client {client_id} to upstream consent")
        return self.upstream.authorization_url(upstream_state)

    # ============== Upstream Callback ==============

    async def handle_callback(self, code: str, upstream_state: str) -> str:
        """Finish the upstream leg and return the client redirect URL.

        The pending record is consumed before the exchange, so a replayed
        callback fails even if the first one is still in flight. The exchange
        itself runs without holding the state lock.
        """
        if not code or not upstream_state:
            raise ClientError("Missing code or state")

        pending = self.state.pop_pending(upstream_state)
        if pending is None or self._clock() - pending.created_at > AUTHORIZATION_TTL_SECONDS:
            raise ClientError("Unknown or expired state")

        token = await self.upstream.exchange_code(code)

        self.state.set_upstream_token(token)
        logger.info("[CALLBACK] Upstream token obtained successfully")

        local_code = generate_token(SECRET_BYTES)
        self.state.add_code(local_code, AuthorizationCode(
            client_id=pending.client_id,
            redirect_uri=pending.redirect_uri,
            code_challenge=pending.code_challenge,
            created_at=self._clock(),
        ))

        params = {"code": local_code}
        if pending.client_state:
            params["state"] = pending.client_state
        return _add_query_params(pending.redirect_uri, params)

    # ============== Token Endpoint ==============

    def exchange_token(
        self,
        grant_type: Optional[str],
        client_id: Optional[str],
        client_secret: Optional[str],
        code: Optional[str] = None,
        code_verifier: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> TokenResponse:
        """Authenticate the client, then dispatch on grant_type."""
        client = self.state.get_client(client_id) if client_id else None
        if client is None or not hmac.compare_digest(
            client.client_secret.encode(), (client_secret or "").encode()
        ):
            logger.info("[TOKEN] Rejected: invalid client credentials")
            raise InvalidClientError("Invalid client credentials")

        if grant_type == "authorization_code":
            return self._authorization_code_grant(client.client_id, code, code_verifier)
        if grant_type == "refresh_token":
            return self._refresh_token_grant(client.client_id, refresh_token)
        raise UnsupportedGrantError("Unsupported grant_type")

    def _authorization_code_grant(self, client_id: str, code: Optional[str],
                                  code_verifier: Optional[str]) -> TokenResponse:
        # Consume first: a failed attempt burns the code
        record = self.state.pop_code(code) if code else None
        if record is None:
            raise GrantError("Invalid or expired authorization code")

        if self._clock() - record.created_at > AUTHORIZATION_TTL_SECONDS:
            raise GrantError("Authorization code expired")
        if record.client_id != client_id:
            logger.warning(f"[TOKEN] Code presented by wrong client: {client_id}")
            raise GrantError("Client mismatch")
        if not verify_pkce(code_verifier or "", record.code_challenge):
            logger.info(f"[TOKEN] PKCE verification failed for client: {client_id}")
            raise GrantError("PKCE verification failed")

        return self._issue_tokens(client_id)

    def _refresh_token_grant(self, client_id: str, refresh_token: Optional[str]) -> TokenResponse:
        # Rotation: the presented token is dead whatever happens next
        record = self.state.pop_refresh_token(refresh_token) if refresh_token else None
        if record is None:
            raise GrantError("Invalid refresh token")
        if record.client_id != client_id:
            logger.warning(f"[TOKEN] Refresh token presented by wrong client: {client_id}")
            raise GrantError("Client mismatch")
        return self._issue_tokens(client_id)

    def _issue_tokens(self, client_id: str) -> TokenResponse:
        access_token = generate_token(SECRET_BYTES)
        refresh_token = generate_token(SECRET_BYTES)
        self.state.add_token_pair(
            access_token, AccessToken(client_id=client_id,
                                      expires_at=self._clock() + ACCESS_TOKEN_EXPIRE_SECONDS),
            refresh_token, RefreshToken(client_id=client_id),
        )
        logger.info(f"[TOKEN] Issued token pair for client: {client_id}")
        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=ACCESS_TOKEN_EXPIRE_SECONDS,
        )

    # ============== Token Verifier ==============

    def verify_access_token(self, token: str) -> AccessToken:
        """Resolve a bearer token for the resource-server middleware."""
        record = self.state.get_access_token(token) if token else None
        if record is None:
            raise InvalidTokenError("Unknown token")
        if self._clock() > record.expires_at:
            self.state.delete_access_token(token)
            raise InvalidTokenError("Token expired")
        return record

    # ============== Upstream Token ==============

    def has_upstream_token(self) -> bool:
        return self.state.get_upstream_token() is not None

    async def upstream_access_token(self) -> str:
        """Return a valid upstream access token, refreshing it when expired.

        The refresh request runs outside the state lock. If a callback stored
        a newer token in the meantime, that token wins.
        """
        token = self.state.get_upstream_token()
        if token is None:
            raise UpstreamError("No upstream token available; authorize through an MCP client first")
        if not token.expired:
            return token.access_token

        logger.info("[UPSTREAM] Refreshing expired upstream token")
        refreshed = await self.upstream.refresh(token)
        if not self.state.replace_upstream_token(token, refreshed):
            current = self.state.get_upstream_token()
            return current.access_token
        return refreshed.access_token

    # ============== Cleanup Sweeper ==============

    def cleanup(self) -> None:
        pending, codes, tokens = self.state.prune(AUTHORIZATION_TTL_SECONDS, now=self._clock())
        if pending or codes or tokens:
            logger.info(f"[CLEANUP] Pruned {pending} pending, {codes} codes, {tokens} access tokens")

    async def run_cleanup_loop(self, interval: float = CLEANUP_INTERVAL_SECONDS) -> None:
        """Prune expired state every interval seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                self.cleanup()
            except Exception:
                logger.exception("[CLEANUP] Sweep failed")
