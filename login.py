"""Browser-based Google login for stdio mode.

Runs a one-shot local HTTP server on OAUTH_PORT, sends the user to the
Google consent page and exchanges the returned code for a token that is
saved to token storage. HTTP mode does not use this: there the MCP client
drives the OAuth flow against the server itself.
"""
import asyncio
import logging
import os
import subprocess
import sys
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Optional
from urllib.parse import parse_qs, urlparse

from config import Config
from oauth.templates import error_page, success_page
from oauth.token_storage import FileTokenStorage
from oauth.token_utils import STATE_BYTES, generate_token
from oauth.upstream import GoogleOAuthClient, UpstreamToken

logger = logging.getLogger(__name__)

# Seconds to wait for the browser to come back
LOGIN_TIMEOUT = 300


class LoginError(Exception):
    """The browser login did not produce a token."""


def is_wsl() -> bool:
    """Check if running inside WSL."""
    if os.environ.get("WSL_DISTRO_NAME"):
        return True
    try:
        with open("/proc/version", "r") as f:
            version = f.read().lower()
    except OSError:
        return False
    return "microsoft" in version or "wsl" in version


def open_browser(url: str) -> None:
    """Open URL in browser, handling WSL gracefully."""
    if is_wsl():
        # wslview ships with wslu; cmd.exe reaches the Windows browser directly
        for command in (["wslview", url], ["cmd.exe", "/c", "start", url]):
            try:
                result = subprocess.run(command, capture_output=True, timeout=5)
            except (FileNotFoundError, subprocess.TimeoutExpired):
                continue
            if result.returncode == 0:
                return

    webbrowser.open(url)


class CallbackHandler(BaseHTTPRequestHandler):
    """Handle the Google redirect back to the local callback server."""

    def log_message(self, format, *args):
        """Suppress default logging."""
        pass

    def do_GET(self):
        parsed = urlparse(self.path)
        if parsed.path != self.server.callback_path:
            self.send_error(404)
            return

        params = parse_qs(parsed.query)
        error = params.get("error", [None])[0]
        state = params.get("state", [None])[0]
        code = params.get("code", [None])[0]

        if error:
            self.server.login_error = f"Authorization denied: {error}"
        elif state != self.server.expected_state:
            self.server.login_error = "State mismatch"
        elif not code:
            self.server.login_error = "No authorization code received"
        else:
            self.server.code = code

        if self.server.login_error:
            self._send_page(400, error_page("Login Failed", self.server.login_error))
        else:
            self._send_page(200, success_page(
                "Authorization Successful",
                "You can close this window and return to the terminal.",
            ))

        # Signal to stop server
        self.server.should_stop = True

    def _send_page(self, status: int, html: str):
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write(html.encode())


class CallbackServer(HTTPServer):
    """One-shot server that records the code or error from a single callback."""

    def __init__(self, address: tuple, callback_path: str, expected_state: str):
        super().__init__(address, CallbackHandler)
        self.callback_path = callback_path
        self.expected_state = expected_state
        self.code: Optional[str] = None
        self.login_error: Optional[str] = None
        self.should_stop = False
        self.timeout = 1  # Check every second

    def wait_for_code(self, max_wait: int = LOGIN_TIMEOUT) -> str:
        waited = 0
        while not self.should_stop and waited < max_wait:
            self.handle_request()
            waited += 1

        if self.login_error:
            raise LoginError(self.login_error)
        if not self.code:
            raise LoginError("Timed out waiting for authorization")
        return self.code


def run_login_flow(
    config: Config,
    storage: FileTokenStorage,
    client: Optional[GoogleOAuthClient] = None,
    browser: Callable[[str], None] = open_browser,
    max_wait: int = LOGIN_TIMEOUT,
) -> UpstreamToken:
    """Run the browser login and save the resulting token.

    Raises:
        LoginError: The user denied access, the callback was invalid, or no
            callback arrived in time.
        UpstreamError: Google rejected the code exchange.
    """
    client = client or GoogleOAuthClient(
        client_id=config.google_client_id,
        client_secret=config.google_client_secret,
        redirect_uri=config.oauth_redirect_url,
        timeout=config.upstream_timeout,
    )
    state = generate_token(STATE_BYTES)
    callback_path = urlparse(config.oauth_redirect_url).path or "/"

    server = CallbackServer(("127.0.0.1", config.oauth_port), callback_path, state)
    try:
        auth_url = client.authorization_url(state)
        print("Opening browser for login...", file=sys.stderr)
        print(f"If browser doesn't open, visit:\n  {auth_url}\n", file=sys.stderr)
        browser(auth_url)

        print("Waiting for login callback...", file=sys.stderr)
        code = server.wait_for_code(max_wait)
    finally:
        server.server_close()

    token = asyncio.run(client.exchange_code(code))
    storage.save(token)
    logger.info(f"[LOGIN] Token saved to {storage.path}")
    return token
