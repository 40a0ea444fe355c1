"""Tests for the OAuth HTTP endpoints.

This module drives the FastAPI app end to end:
- Discovery metadata and JWKS
- Dynamic client registration
- /authorize validation and the Google callback
- /token for both grant types, including code reuse and refresh rotation
"""

from fastapi.testclient import TestClient

from conftest import (
    BASE_URL,
    CLIENT_REDIRECT_URI,
    CODE_VERIFIER,
    GOOGLE_CODE,
    exchange_code,
    obtain_code,
    query_params,
)
from oauth.provider import UPSTREAM_CALLBACK_PATH
from oauth.token_utils import compute_code_challenge


class TestDiscovery:
    """Tests for metadata endpoints."""

    def test_authorization_server_metadata_s256_only(self, client: TestClient) -> None:
        """Scenario E: metadata advertises S256 and never plain."""
        response = client.get("/.well-known/oauth-authorization-server")

        assert response.status_code == 200
        data = response.json()
        assert data["code_challenge_methods_supported"] == ["S256"]
        assert "plain" not in response.text

    def test_authorization_server_metadata_endpoints(self, client: TestClient) -> None:
        data = client.get("/.well-known/oauth-authorization-server").json()

        assert data["issuer"] == BASE_URL
        assert data["authorization_endpoint"] == f"{BASE_URL}/authorize"
        assert data["token_endpoint"] == f"{BASE_URL}/token"
        assert data["registration_endpoint"] == f"{BASE_URL}/register"
        assert data["jwks_uri"] == f"{BASE_URL}/jwks"
        assert data["grant_types_supported"] == ["authorization_code", "refresh_token"]
        assert data["response_types_supported"] == ["code"]

    def test_authorization_server_metadata_cors(self, client: TestClient) -> None:
        response = client.get("/.well-known/oauth-authorization-server")
        assert response.headers["access-control-allow-origin"] == "*"

    def test_authorization_server_metadata_preflight(self, client: TestClient) -> None:
        """OPTIONS without CORS request headers gets a bare 204."""
        response = client.options("/.well-known/oauth-authorization-server")

        assert response.status_code == 204
        assert "GET" in response.headers["access-control-allow-methods"]

    def test_protected_resource_metadata(self, client: TestClient) -> None:
        response = client.get("/.well-known/oauth-protected-resource")

        assert response.status_code == 200
        assert response.json() == {
            "resource": BASE_URL,
            "authorization_servers": [BASE_URL],
            "bearer_methods_supported": ["header"],
        }

    def test_protected_resource_metadata_path_suffix(self, client: TestClient) -> None:
        """Clients that append the resource path still find the metadata."""
        response = client.get("/.well-known/oauth-protected-resource/mcp")
        assert response.status_code == 200
        assert response.json()["resource"] == BASE_URL

    def test_jwks_is_empty(self, client: TestClient) -> None:
        response = client.get("/jwks")
        assert response.status_code == 200
        assert response.json() == {"keys": []}


class TestRegistration:
    """Tests for Dynamic Client Registration."""

    def test_register_returns_credentials(self, client: TestClient) -> None:
        """Scenario A: 201 with matching redirect_uris."""
        response = client.post("/register", json={"redirect_uris": [CLIENT_REDIRECT_URI]})

        assert response.status_code == 201
        data = response.json()
        assert data["redirect_uris"] == [CLIENT_REDIRECT_URI]
        assert data["client_id"]
        assert data["client_secret"]

    def test_register_credentials_are_unique(self, client: TestClient) -> None:
        ids, secrets = set(), set()
        for _ in range(20):
            data = client.post("/register", json={"redirect_uris": [CLIENT_REDIRECT_URI]}).json()
            ids.add(data["client_id"])
            secrets.add(data["client_secret"])

        assert len(ids) == 20
        assert len(secrets) == 20
        assert not ids & secrets

    def test_register_missing_redirect_uris(self, client: TestClient) -> None:
        response = client.post("/register", json={"client_name": "x"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_redirect_uri"

    def test_register_empty_redirect_uris(self, client: TestClient) -> None:
        response = client.post("/register", json={"redirect_uris": []})
        assert response.status_code == 400

    def test_register_relative_redirect_uri(self, client: TestClient) -> None:
        response = client.post("/register", json={"redirect_uris": ["/cb"]})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_redirect_uri"

    def test_register_non_json_body(self, client: TestClient) -> None:
        response = client.post(
            "/register", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_client_metadata"

    def test_register_accepts_custom_scheme(self, client: TestClient) -> None:
        """Native clients register private-use scheme redirects."""
        response = client.post("/register", json={"redirect_uris": ["com.example.app:/callback"]})
        assert response.status_code == 201


class TestAuthorize:
    """Tests for the authorization endpoint."""

    def _params(self, registered: dict, **overrides) -> dict:
        params = {
            "client_id": registered["client_id"],
            "redirect_uri": CLIENT_REDIRECT_URI,
            "code_challenge": compute_code_challenge(CODE_VERIFIER),
            "code_challenge_method": "S256",
            "state": "xyz",
        }
        params.update(overrides)
        return params

    def test_unknown_client(self, client: TestClient) -> None:
        """Scenario B: unknown client_id gets 400 and no redirect."""
        response = client.get("/authorize", params={
            "client_id": "unknown",
            "redirect_uri": CLIENT_REDIRECT_URI,
            "code_challenge": "abc",
            "code_challenge_method": "S256",
            "state": "xyz",
        })

        assert response.status_code == 400
        assert "location" not in response.headers
        assert "text/html" in response.headers["content-type"]

    def test_redirects_to_google_consent(self, client: TestClient, registered_client: dict) -> None:
        response = client.get("/authorize", params=self._params(registered_client))

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith("https://accounts.google.com/")
        params = query_params(location)
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert params["redirect_uri"] == f"{BASE_URL}{UPSTREAM_CALLBACK_PATH}"
        # The client's own state is never sent upstream
        assert params["state"] != "xyz"

    def test_redirect_uri_prefix_rejected(self, client: TestClient, registered_client: dict) -> None:
        params = self._params(registered_client, redirect_uri=CLIENT_REDIRECT_URI + "/evil")
        response = client.get("/authorize", params=params)

        assert response.status_code == 400
        assert "location" not in response.headers

    def test_plain_pkce_rejected(self, client: TestClient, registered_client: dict) -> None:
        params = self._params(registered_client, code_challenge_method="plain")
        assert client.get("/authorize", params=params).status_code == 400

    def test_missing_code_challenge_rejected(self, client: TestClient, registered_client: dict) -> None:
        params = self._params(registered_client, code_challenge="")
        assert client.get("/authorize", params=params).status_code == 400

    def test_error_page_escapes_input(self, client: TestClient) -> None:
        response = client.get("/authorize", params={"client_id": "<script>"})
        assert "<script>" not in response.text


class TestCallback:
    """Tests for the Google callback endpoint."""

    def _start(self, client: TestClient, registered: dict) -> str:
        response = client.get("/authorize", params={
            "client_id": registered["client_id"],
            "redirect_uri": CLIENT_REDIRECT_URI,
            "code_challenge": compute_code_challenge(CODE_VERIFIER),
            "code_challenge_method": "S256",
            "state": "xyz",
        })
        return query_params(response.headers["location"])["state"]

    def test_redirects_to_client_with_code_and_state(
        self, client: TestClient, registered_client: dict
    ) -> None:
        upstream_state = self._start(client, registered_client)
        response = client.get(UPSTREAM_CALLBACK_PATH, params={"code": GOOGLE_CODE, "state": upstream_state})

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith(CLIENT_REDIRECT_URI + "?")
        params = query_params(location)
        assert params["code"]
        assert params["state"] == "xyz"

    def test_stores_upstream_token(self, client: TestClient, registered_client: dict, oauth_server) -> None:
        upstream_state = self._start(client, registered_client)
        client.get(UPSTREAM_CALLBACK_PATH, params={"code": GOOGLE_CODE, "state": upstream_state})

        assert oauth_server.has_upstream_token()
        assert oauth_server.state.get_upstream_token().access_token == "google-access-1"

    def test_unknown_state(self, client: TestClient) -> None:
        response = client.get(UPSTREAM_CALLBACK_PATH, params={"code": GOOGLE_CODE, "state": "bogus"})
        assert response.status_code == 400

    def test_replayed_callback_rejected(self, client: TestClient, registered_client: dict) -> None:
        upstream_state = self._start(client, registered_client)
        first = client.get(UPSTREAM_CALLBACK_PATH, params={"code": GOOGLE_CODE, "state": upstream_state})
        second = client.get(UPSTREAM_CALLBACK_PATH, params={"code": GOOGLE_CODE, "state": upstream_state})

        assert first.status_code == 302
        assert second.status_code == 400

    def test_upstream_failure_is_terminal(
        self, client: TestClient, registered_client: dict, fake_google
    ) -> None:
        upstream_state = self._start(client, registered_client)
        fake_google.fail_exchange = True

        response = client.get(UPSTREAM_CALLBACK_PATH, params={"code": GOOGLE_CODE, "state": upstream_state})
        assert response.status_code == 500

        # The pending authorization was consumed; a retry must restart at /authorize
        fake_google.fail_exchange = False
        retry = client.get(UPSTREAM_CALLBACK_PATH, params={"code": GOOGLE_CODE, "state": upstream_state})
        assert retry.status_code == 400

    def test_consent_denied(self, client: TestClient, registered_client: dict) -> None:
        upstream_state = self._start(client, registered_client)
        response = client.get(UPSTREAM_CALLBACK_PATH, params={"error": "access_denied", "state": upstream_state})

        assert response.status_code == 400
        assert "access_denied" in response.text

    def test_pending_authorization_expires(
        self, client: TestClient, registered_client: dict, clock
    ) -> None:
        upstream_state = self._start(client, registered_client)
        clock.advance(11 * 60)

        response = client.get(UPSTREAM_CALLBACK_PATH, params={"code": GOOGLE_CODE, "state": upstream_state})
        assert response.status_code == 400


class TestTokenEndpoint:
    """Tests for the token endpoint."""

    def test_authorization_code_grant(self, client: TestClient, registered_client: dict) -> None:
        """Scenario C: the full flow ends in a token pair."""
        code = obtain_code(client, registered_client)
        response = exchange_code(client, registered_client, code)

        assert response.status_code == 200
        data = response.json()
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["expires_in"] == 3600
        assert data["token_type"] == "Bearer"
        assert response.headers["cache-control"] == "no-store"
        assert response.headers["pragma"] == "no-cache"

    def test_code_reuse_rejected(self, client: TestClient, registered_client: dict) -> None:
        """Scenario D: a code works exactly once."""
        code = obtain_code(client, registered_client)
        assert exchange_code(client, registered_client, code).status_code == 200

        response = exchange_code(client, registered_client, code)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_grant"

    def test_failed_pkce_burns_code(self, client: TestClient, registered_client: dict) -> None:
        code = obtain_code(client, registered_client)

        wrong = exchange_code(client, registered_client, code, verifier="x" * 43)
        assert wrong.status_code == 400
        assert wrong.json()["error"] == "invalid_grant"

        right = exchange_code(client, registered_client, code)
        assert right.status_code == 400
        assert right.json()["error"] == "invalid_grant"

    def test_expired_code_rejected(self, client: TestClient, registered_client: dict, clock) -> None:
        code = obtain_code(client, registered_client)
        clock.advance(10 * 60 + 1)

        response = exchange_code(client, registered_client, code)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_grant"

    def test_code_bound_to_client(self, client: TestClient, registered_client: dict) -> None:
        code = obtain_code(client, registered_client)
        other = client.post("/register", json={"redirect_uris": [CLIENT_REDIRECT_URI]}).json()

        response = exchange_code(client, other, code)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_grant"

    def test_wrong_client_secret(self, client: TestClient, registered_client: dict) -> None:
        code = obtain_code(client, registered_client)
        response = exchange_code(client, {**registered_client, "client_secret": "wrong"}, code)

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_client"

    def test_unknown_client(self, client: TestClient) -> None:
        response = client.post("/token", data={
            "grant_type": "authorization_code",
            "client_id": "nobody",
            "client_secret": "nothing",
            "code": "abc",
        })
        assert response.status_code == 401
        assert response.json()["error"] == "invalid_client"

    def test_unsupported_grant_type(self, client: TestClient, registered_client: dict) -> None:
        response = client.post("/token", data={
            "grant_type": "password",
            "client_id": registered_client["client_id"],
            "client_secret": registered_client["client_secret"],
        })
        assert response.status_code == 400
        assert response.json()["error"] == "unsupported_grant_type"

    def test_refresh_rotation(self, client: TestClient, registered_client: dict) -> None:
        code = obtain_code(client, registered_client)
        first = exchange_code(client, registered_client, code).json()

        def refresh(token: str):
            return client.post("/token", data={
                "grant_type": "refresh_token",
                "client_id": registered_client["client_id"],
                "client_secret": registered_client["client_secret"],
                "refresh_token": token,
            })

        rotated = refresh(first["refresh_token"])
        assert rotated.status_code == 200
        second = rotated.json()
        assert second["refresh_token"] != first["refresh_token"]
        assert second["access_token"] != first["access_token"]

        reused = refresh(first["refresh_token"])
        assert reused.status_code == 400
        assert reused.json()["error"] == "invalid_grant"

        assert refresh(second["refresh_token"]).status_code == 200


class TestServerInfo:
    """Tests for the informational endpoints."""

    def test_health(self, client: TestClient) -> None:
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["authenticated"] is False

    def test_root_lists_tools_and_metadata(self, client: TestClient) -> None:
        data = client.get("/").json()

        assert "analyze_my_tastes" in data["tools"]
        assert data["oauth"]["protected_resource"] == f"{BASE_URL}/.well-known/oauth-protected-resource"
