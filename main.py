"""MCP Server - HTTP mode.

The HTTP app hosts both halves of the OAuth dance:
- OAuth authorization server endpoints (discovery, DCR, /authorize,
  /google-callback, /token) via oauth/endpoints.py
- MCP protocol endpoint at /mcp (Streamable HTTP, or SSE when
  TRANSPORT=sse), protected by Bearer tokens issued by this server

MCP clients (Claude, ChatGPT, ...) discover the authorization server from the
401 on /mcp, register, and log in through Google. The Google token obtained
on the callback authorizes every YouTube API call made by the tools.
"""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware import Middleware

from config import Config
from oauth.endpoints import router as oauth_router
from oauth.middleware import MCPOAuthMiddleware
from oauth.provider import CLEANUP_INTERVAL_SECONDS, UPSTREAM_CALLBACK_PATH, AuthorizationServer
from oauth.upstream import GoogleOAuthClient
from tools import SERVER_NAME, TOOL_NAMES, create_mcp_server
from youtube.client import YouTubeClient

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def create_app(
    config: Config,
    upstream: Optional[GoogleOAuthClient] = None,
    server: Optional[AuthorizationServer] = None,
    cleanup_interval: float = CLEANUP_INTERVAL_SECONDS,
) -> FastAPI:
    """Assemble the HTTP app.

    Args:
        config: Loaded configuration; base_url must be set.
        upstream: Google OAuth client. Built from config when omitted.
        server: Authorization server. Built around upstream when omitted.
        cleanup_interval: Seconds between expired-state sweeps.
    """
    base_url = config.base_url
    if server is None:
        if upstream is None:
            upstream = GoogleOAuthClient(
                client_id=config.google_client_id,
                client_secret=config.google_client_secret,
                redirect_uri=f"{base_url}{UPSTREAM_CALLBACK_PATH}",
                timeout=config.upstream_timeout,
            )
        server = AuthorizationServer(base_url, upstream)

    logger.info(f"[STARTUP] BASE_URL: {server.base_url}")

    # ============== FastMCP Server ==============
    # Tools resolve the upstream token per call; it appears once the first
    # MCP client completes the OAuth flow.
    mcp = create_mcp_server(lambda: YouTubeClient(server.upstream_access_token))

    # ============== MCP App ==============
    # Created before the FastAPI app: its lifespan drives FastMCP's task group
    mcp_transport = "sse" if config.transport == "sse" else "streamable-http"
    mcp_http_app = mcp.http_app(
        path="/",  # Route at root of mounted app
        transport=mcp_transport,
        middleware=[Middleware(MCPOAuthMiddleware, server=server)],
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with mcp_http_app.lifespan(app):
            cleanup_task = asyncio.create_task(server.run_cleanup_loop(cleanup_interval))
            logger.info(f"[STARTUP] Cleanup sweeper running every {cleanup_interval:.0f}s")
            try:
                yield
            finally:
                cleanup_task.cancel()
                with suppress(asyncio.CancelledError):
                    await cleanup_task
                logger.info("[SHUTDOWN] Cleanup sweeper stopped")

    # ============== FastAPI App ==============
    app = FastAPI(
        title="YouTube Music MCP Server",
        description="MCP server for YouTube Music with an OAuth 2.0 authorization server",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.oauth_server = server

    # Add CORS middleware for browser-based MCP client access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.mount("/mcp", mcp_http_app)
    app.include_router(oauth_router)

    # ============== Server Info Endpoints ==============

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": SERVER_NAME,
            "transport": config.transport,
            "authenticated": server.has_upstream_token(),
        }

    @app.get("/")
    async def root():
        """Root endpoint with server info."""
        return {
            "name": SERVER_NAME,
            "version": VERSION,
            "transport": config.transport,
            "endpoints": {
                "mcp": "/mcp",
            },
            "tools": TOOL_NAMES,
            "oauth": {
                "protected_resource": server.resource_metadata_url,
                "authorization_server": f"{server.base_url}/.well-known/oauth-authorization-server",
            },
        }

    return app
