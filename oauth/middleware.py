"""OAuth middleware for MCP endpoints.

Validates Bearer tokens issued by the local authorization server before a
request reaches the MCP app. Missing or invalid tokens get a 401 whose
WWW-Authenticate header points MCP clients at the protected-resource
metadata, which is how they discover where to authorize.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from oauth.errors import InvalidTokenError
from oauth.provider import AuthorizationServer

logger = logging.getLogger(__name__)


def unauthorized_response(server: AuthorizationServer, error_description: str) -> JSONResponse:
    """Return 401 with WWW-Authenticate header pointing to resource metadata (RFC 9728)."""
    return JSONResponse(
        {"error": "invalid_token", "error_description": error_description},
        status_code=401,
        headers={"WWW-Authenticate": f'Bearer resource_metadata="{server.resource_metadata_url}"'},
    )


class MCPOAuthMiddleware(BaseHTTPMiddleware):
    """Middleware to validate OAuth Bearer tokens for the MCP endpoint."""

    def __init__(self, app, server: AuthorizationServer):
        super().__init__(app)
        self.server = server

    async def dispatch(self, request: Request, call_next):
        # CORS preflight carries no credentials
        if request.method == "OPTIONS":
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        scheme, _, token = auth_header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            logger.info("[AUTH] Request rejected: no Bearer token")
            return unauthorized_response(self.server, "Missing or invalid Authorization header")

        try:
            record = self.server.verify_access_token(token.strip())
        except InvalidTokenError as e:
            logger.info(f"[AUTH] Request rejected: {e.description}")
            return unauthorized_response(self.server, "Invalid or expired token")

        request.state.client_id = record.client_id
        request.state.token_expires_at = record.expires_at
        return await call_next(request)
