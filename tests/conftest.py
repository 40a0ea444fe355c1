"""Pytest configuration and fixtures for youtube-music-mcp tests."""

import tempfile
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from config import Config
from main import create_app
from oauth.provider import UPSTREAM_CALLBACK_PATH, AuthorizationServer
from oauth.token_utils import compute_code_challenge
from oauth.upstream import GoogleOAuthClient

BASE_URL = "https://mcp.example.com"
CLIENT_REDIRECT_URI = "https://client.example/cb"
GOOGLE_CODE = "google-auth-code"
CODE_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGoogle:
    """Google token endpoint stub served through httpx.MockTransport."""

    def __init__(self):
        self.requests: list[dict] = []
        self.fail_exchange = False
        self.refresh_count = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.requests.append(form)

        if form.get("grant_type") == "authorization_code":
            if self.fail_exchange or form.get("code") != GOOGLE_CODE:
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(200, json={
                "access_token": "google-access-1",
                "refresh_token": "google-refresh",
                "token_type": "Bearer",
                "expires_in": 3599,
            })

        if form.get("grant_type") == "refresh_token":
            self.refresh_count += 1
            return httpx.Response(200, json={
                "access_token": f"google-access-refreshed-{self.refresh_count}",
                "token_type": "Bearer",
                "expires_in": 3599,
            })

        return httpx.Response(400, json={"error": "unsupported_grant_type"})


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def google_client(fake_google: FakeGoogle) -> GoogleOAuthClient:
    """A real GoogleOAuthClient whose HTTP calls hit FakeGoogle."""
    return GoogleOAuthClient(
        client_id="google-client-id",
        client_secret="google-client-secret",
        redirect_uri=f"{BASE_URL}{UPSTREAM_CALLBACK_PATH}",
        transport=httpx.MockTransport(fake_google.handler),
    )


@pytest.fixture
def oauth_server(google_client: GoogleOAuthClient, clock: FakeClock) -> AuthorizationServer:
    return AuthorizationServer(BASE_URL, google_client, clock=clock)


@pytest.fixture
def http_config() -> Config:
    return Config({
        "GOOGLE_CLIENT_ID": "google-client-id",
        "GOOGLE_CLIENT_SECRET": "google-client-secret",
        "TRANSPORT": "http",
        "BASE_URL": BASE_URL,
    })


@pytest.fixture
def app(http_config: Config, oauth_server: AuthorizationServer):
    return create_app(http_config, server=oauth_server)


@pytest.fixture
def client(app) -> TestClient:
    """Test client that does not follow redirects, so 302s can be inspected."""
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def registered_client(client: TestClient) -> dict:
    """Register an MCP client through DCR and return the response body."""
    response = client.post("/register", json={"redirect_uris": [CLIENT_REDIRECT_URI]})
    assert response.status_code == 201
    return response.json()


def query_params(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def obtain_code(client: TestClient, registered: dict, verifier: str = CODE_VERIFIER,
                state: str = "client-state") -> str:
    """Run /authorize and the upstream callback, returning the local code."""
    response = client.get("/authorize", params={
        "client_id": registered["client_id"],
        "redirect_uri": CLIENT_REDIRECT_URI,
        "code_challenge": compute_code_challenge(verifier),
        "code_challenge_method": "S256",
        "state": state,
    })
    assert response.status_code == 302
    upstream_state = query_params(response.headers["location"])["state"]

    response = client.get(UPSTREAM_CALLBACK_PATH, params={"code": GOOGLE_CODE, "state": upstream_state})
    assert response.status_code == 302
    return query_params(response.headers["location"])["code"]


def exchange_code(client: TestClient, registered: dict, code: str,
                  verifier: str = CODE_VERIFIER) -> httpx.Response:
    return client.post("/token", data={
        "grant_type": "authorization_code",
        "client_id": registered["client_id"],
        "client_secret": registered["client_secret"],
        "code": code,
        "code_verifier": verifier,
    })
