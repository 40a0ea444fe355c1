"""OAuth 2.0 endpoints for MCP client authentication.

This module contains all OAuth-related endpoints:
- Discovery metadata (/.well-known/*, /jwks)
- Client registration (/register)
- Authorization flow (/authorize, /google-callback)
- Token endpoint (/token)

Handlers are thin: they parse the request, call the AuthorizationServer
stored on app.state, and convert OAuthError into the right response shape.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from oauth.errors import OAuthError
from oauth.provider import UPSTREAM_CALLBACK_PATH, AuthorizationServer
from oauth.templates import error_page

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

METADATA_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def get_oauth_server(request: Request) -> AuthorizationServer:
    """Dependency returning the AuthorizationServer installed by create_app()."""
    return request.app.state.oauth_server


def oauth_error_response(error: OAuthError) -> JSONResponse:
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers=NO_STORE_HEADERS)


def oauth_error_page(error: OAuthError, title: str) -> HTMLResponse:
    return HTMLResponse(error_page(title, error.description), status_code=error.status_code)


# ============== OAuth 2.0 Discovery Endpoints ==============

@router.get("/.well-known/oauth-protected-resource")
@router.get("/.well-known/oauth-protected-resource/mcp")
async def oauth_protected_resource(server: AuthorizationServer = Depends(get_oauth_server)):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    return server.protected_resource_metadata()


@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server(server: AuthorizationServer = Depends(get_oauth_server)):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    return JSONResponse(server.authorization_server_metadata(), headers=METADATA_CORS_HEADERS)


@router.options("/.well-known/oauth-authorization-server")
async def oauth_authorization_server_preflight():
    return Response(status_code=204, headers=METADATA_CORS_HEADERS)


@router.get("/jwks")
async def jwks():
    """Empty key set: tokens are opaque, not JWTs."""
    return {"keys": []}


# ============== Client Registration ==============

@router.post("/register")
async def register_client(request: Request, server: AuthorizationServer = Depends(get_oauth_server)):
    """OAuth 2.0 Dynamic Client Registration (RFC 7591)."""
    try:
        data = await request.json()
    except ValueError:
        logger.info("[DCR] Rejected: request body is not JSON")
        return JSONResponse(
            {"error": "invalid_client_metadata", "error_description": "Invalid request body"},
            status_code=400,
        )

    redirect_uris = data.get("redirect_uris") if isinstance(data, dict) else None
    try:
        client = server.register_client(redirect_uris)
    except OAuthError as e:
        logger.info(f"[DCR] Rejected: {e.description}")
        return JSONResponse(
            {"error": "invalid_redirect_uri", "error_description": e.description},
            status_code=e.status_code,
        )

    return JSONResponse({
        "client_id": client.client_id,
        "client_secret": client.client_secret,
        "redirect_uris": list(client.redirect_uris),
    }, status_code=201)


# ============== Authorization Flow ==============

@router.get("/authorize")
async def authorize(
    client_id: str = "",
    redirect_uri: str = "",
    code_challenge: str = "",
    code_challenge_method: str = "",
    state: str = "",
    server: AuthorizationServer = Depends(get_oauth_server),
):
    """OAuth 2.0 Authorization Endpoint - redirects to Google consent."""
    try:
        upstream_url = server.authorize(
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            client_state=state,
        )
    except OAuthError as e:
        logger.info(f"[AUTHORIZE] Rejected: {e.description}")
        return oauth_error_page(e, "Authorization failed")

    return RedirectResponse(url=upstream_url, status_code=302)


@router.get(UPSTREAM_CALLBACK_PATH)
async def google_callback(
    code: str = "",
    state: str = "",
    error: str = "",
    server: AuthorizationServer = Depends(get_oauth_server),
):
    """Google redirects here after consent."""
    if error:
        # The user denied consent or Google refused; the pending record expires on its own
        logger.info(f"[CALLBACK] Upstream returned error: {error}")
        return HTMLResponse(error_page("Authorization denied", f"Google returned: {error}"), status_code=400)

    try:
        redirect_url = await server.handle_callback(code, state)
    except OAuthError as e:
        if e.status_code >= 500:
            logger.error(f"[CALLBACK] Upstream exchange failed: {e.description}")
            return oauth_error_page(e, "Google authentication failed")
        logger.info(f"[CALLBACK] Rejected: {e.description}")
        return oauth_error_page(e, "Authorization failed")

    return RedirectResponse(url=redirect_url, status_code=302)


# ============== Token Endpoint ==============

@router.post("/token")
async def token(
    grant_type: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
    code: Optional[str] = Form(None),
    code_verifier: Optional[str] = Form(None),
    refresh_token: Optional[str] = Form(None),
    server: AuthorizationServer = Depends(get_oauth_server),
):
    """OAuth 2.0 Token Endpoint (client_secret_post)."""
    logger.debug(f"[TOKEN] grant_type: {grant_type}, client_id: {client_id}")

    try:
        result = server.exchange_token(
            grant_type=grant_type,
            client_id=client_id,
            client_secret=client_secret,
            code=code,
            code_verifier=code_verifier,
            refresh_token=refresh_token,
        )
    except OAuthError as e:
        return oauth_error_response(e)

    return JSONResponse(result.to_dict(), headers=NO_STORE_HEADERS)
