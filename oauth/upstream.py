"""Upstream (Google) OAuth 2.0 client.

This server is an Authorization Server to MCP clients but an ordinary OAuth
client to Google. This module builds the Google consent URL and performs the
code exchange and refresh requests with httpx.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import httpx

from oauth.errors import UpstreamError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
YOUTUBE_SCOPE = "https://www.googleapis.com/auth/youtube"

DEFAULT_TIMEOUT = 10.0

# Treat tokens as expired slightly early so a request never races the real expiry
EXPIRY_SKEW = timedelta(seconds=60)

_FRACTION_RE = re.compile(r"\.(\d+)")


def _parse_expiry(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # Fractions may carry 1 to 9 digits and a trailing Z; fromisoformat wants 6
    value = _FRACTION_RE.sub(lambda m: "." + (m.group(1) + "000000")[:6], value.replace("Z", "+00:00"))
    expiry = datetime.fromisoformat(value)
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    # 0001-01-01 means "no expiry"
    if expiry.year <= 1:
        return None
    return expiry


@dataclass
class UpstreamToken:
    """An OAuth2 token issued by the upstream provider."""

    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None

    @property
    def expired(self) -> bool:
        if self.expiry is None:
            return False
        return datetime.now(timezone.utc) >= self.expiry - EXPIRY_SKEW

    def to_dict(self) -> dict:
        """Serialize with the standard oauth2 token file keys."""
        data = {
            "access_token": self.access_token,
            "token_type": self.token_type,
        }
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.expiry:
            data["expiry"] = self.expiry.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "UpstreamToken":
        access_token = data.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise ValueError("token is missing access_token")
        return cls(
            access_token=access_token,
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token") or None,
            expiry=_parse_expiry(data.get("expiry")),
        )


class GoogleOAuthClient:
    """Minimal OAuth2 client for the Google authorization server."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: Optional[list[str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        auth_url: str = GOOGLE_AUTH_URL,
        token_url: str = GOOGLE_TOKEN_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or [YOUTUBE_SCOPE]
        self.timeout = timeout
        self.auth_url = auth_url
        self.token_url = token_url
        # Injected in tests to stub Google
        self._transport = transport

    def authorization_url(self, state: str) -> str:
        """Build the consent URL.

        access_type=offline and prompt=consent make Google return a refresh
        token even when the user has approved this app before.
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{self.auth_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> UpstreamToken:
        """Exchange an authorization code for a token."""
        return await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        })

    async def refresh(self, token: UpstreamToken) -> UpstreamToken:
        """Refresh an expired token. Google may omit refresh_token; the old one is kept."""
        if not token.refresh_token:
            raise UpstreamError("Upstream token has no refresh token; re-authorization required")
        refreshed = await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
        })
        if not refreshed.refresh_token:
            refreshed.refresh_token = token.refresh_token
        return refreshed

    async def _token_request(self, form: dict) -> UpstreamToken:
        form = {**form, "client_id": self.client_id, "client_secret": self.client_secret}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error(f"[UPSTREAM] Token request failed: {e!r}")
            raise UpstreamError("Upstream token request failed") from e

        if response.status_code != 200:
            logger.error(f"[UPSTREAM] Token endpoint returned {response.status_code}: {response.text[:200]}")
            raise UpstreamError(f"Upstream token endpoint returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("Upstream token response is not JSON") from e

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise UpstreamError("Upstream token response has no access_token")

        expiry = None
        expires_in = data.get("expires_in")
        if expires_in:
            try:
                expiry = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
            except (TypeError, ValueError):
                logger.warning(f"[UPSTREAM] Ignoring malformed expires_in: {expires_in!r}")

        return UpstreamToken(
            access_token=access_token,
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token") or None,
            expiry=expiry,
        )
