"""OAuth error taxonomy.

Every failure in the authorization server is raised as an OAuthError subclass
and converted to the standard OAuth error shape at the HTTP boundary:
JSON for API-facing endpoints, HTML pages for browser-facing ones.
"""


class OAuthError(Exception):
    """Base class for errors that map to an OAuth error response."""

    error = "server_error"
    status_code = 500

    def __init__(self, description: str):
        super().__init__(description)
        self.description = description

    def to_dict(self) -> dict:
        return {"error": self.error, "error_description": self.description}


class ClientError(OAuthError):
    """Malformed request: bad client_id, redirect_uri, PKCE params or DCR body."""

    error = "invalid_request"
    status_code = 400


class InvalidClientError(OAuthError):
    """Client authentication failed at the token endpoint."""

    error = "invalid_client"
    status_code = 401


class GrantError(OAuthError):
    """Expired, unknown or reused code/refresh token, or a PKCE/binding mismatch."""

    error = "invalid_grant"
    status_code = 400


class UnsupportedGrantError(OAuthError):
    error = "unsupported_grant_type"
    status_code = 400


class UpstreamError(OAuthError):
    """The upstream provider rejected or failed a token request."""

    error = "server_error"
    status_code = 500


class InvalidTokenError(OAuthError):
    """Bearer token is unknown or expired."""

    error = "invalid_token"
    status_code = 401
