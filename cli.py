"""CLI entry point for youtube-music-mcp.

Copyright (c) 2025 Contoro. All rights reserved.

In stdio mode the server authenticates once through a local browser login
and reuses the saved Google token. In http/sse mode it runs the OAuth
authorization server and MCP clients log in through it.
"""
import argparse
import asyncio
import logging
import sys

import uvicorn

from config import Config, ConfigError, load_config
from logging_config import create_supabase_client, setup_logging
from login import LoginError, run_login_flow
from main import VERSION, create_app
from oauth.errors import UpstreamError
from oauth.token_storage import (
    EnvTokenStorage,
    FileTokenStorage,
    PersistingTokenSource,
    TokenStorageError,
)
from oauth.upstream import GoogleOAuthClient
from tools import create_mcp_server
from youtube.client import YouTubeClient, YouTubeError

logger = logging.getLogger(__name__)


# ============== Helper Functions ==============

def init_logging(config: Config) -> None:
    setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        service_name=config.service_name,
        transport=config.transport,
        supabase_client=create_supabase_client(config.supabase_url, config.supabase_anon_key),
    )


def get_token_storage(config: Config):
    """OAUTH_TOKEN_JSON wins over the token file when set."""
    if config.token_json:
        return EnvTokenStorage(config.token_json)
    return FileTokenStorage(config.token_path)


def local_oauth_client(config: Config) -> GoogleOAuthClient:
    return GoogleOAuthClient(
        client_id=config.google_client_id,
        client_secret=config.google_client_secret,
        redirect_uri=config.oauth_redirect_url,
        timeout=config.upstream_timeout,
    )


def require_google_credentials(config: Config) -> None:
    if not config.google_client_id or not config.google_client_secret:
        print("\n[ERROR] GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set.", file=sys.stderr)
        print("  Create OAuth credentials at https://console.cloud.google.com/apis/credentials",
              file=sys.stderr)
        sys.exit(1)


def login(config: Config, storage: FileTokenStorage) -> None:
    """Run the browser login, exiting with status 1 on failure."""
    try:
        run_login_flow(config, storage)
    except (LoginError, UpstreamError) as e:
        print(f"\n[X] Login failed: {e}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"\n[X] Could not start callback server on port {config.oauth_port}: {e}",
              file=sys.stderr)
        sys.exit(1)
    print(f"\n[OK] Logged in. Token saved to: {storage.path}", file=sys.stderr)


# ============== CLI Commands ==============

def cmd_serve(config: Config):
    """Start the MCP server on the configured transport."""
    try:
        config.validate()
    except ConfigError as e:
        print(f"\n[ERROR] Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    logger.info(f"[STARTUP] Starting youtube-music-mcp {VERSION} with transport: {config.transport}")

    if config.is_http:
        app = create_app(config)
        logger.info(f"[STARTUP] MCP endpoint: {config.base_url}/mcp")
        uvicorn.run(app, host=config.host, port=config.port, log_level="info")
        return

    storage = get_token_storage(config)
    if isinstance(storage, FileTokenStorage) and not storage.exists():
        print("\nNo saved token found. Starting login...\n", file=sys.stderr)
        login(config, storage)

    source = PersistingTokenSource(local_oauth_client(config), storage)
    mcp = create_mcp_server(lambda: YouTubeClient(source.access_token))
    mcp.run(transport="stdio")


def cmd_login(config: Config):
    """Log in to Google and save the token for stdio mode."""
    require_google_credentials(config)
    storage = FileTokenStorage(config.token_path)
    if storage.exists():
        print(f"\nA token is already saved at {storage.path}", file=sys.stderr)
        response = input("Replace it by logging in again? [y/N]: ").strip().lower()
        if response != "y":
            print("Login cancelled.", file=sys.stderr)
            return
    login(config, storage)


def cmd_logout(config: Config):
    """Delete the saved token."""
    storage = FileTokenStorage(config.token_path)
    if storage.exists():
        storage.clear()
        print(f"Logged out. Removed {storage.path}")
    else:
        print("Not logged in.")
    if config.token_json:
        print("Note: OAUTH_TOKEN_JSON is still set in the environment.")


def cmd_status(config: Config):
    """Show configuration and token status."""
    print("\n" + "=" * 50)
    print("  YouTube Music MCP Status")
    print("=" * 50)

    print("\n[Config]")
    print(f"  Transport:  {config.transport}")
    print(f"  Client ID:  {'set' if config.google_client_id else 'missing'}")
    print(f"  Secret:     {'set' if config.google_client_secret else 'missing'}")
    if config.is_http:
        print(f"  Base URL:   {config.base_url or 'missing'}")
        print(f"  Listen:     {config.host}:{config.port}")
    try:
        config.validate()
        print("  Valid:      yes")
    except ConfigError as e:
        print(f"  Valid:      no ({e})")

    print("\n[Token]")
    storage = get_token_storage(config)
    if isinstance(storage, EnvTokenStorage):
        print("  Source:     OAUTH_TOKEN_JSON")
    else:
        print(f"  Source:     {storage.path}")

    try:
        token = storage.load()
    except TokenStorageError as e:
        print(f"  Status:     Not logged in ({e})")
        print("  Action:     Run 'youtube-music-mcp login'")
        print("\n" + "=" * 50 + "\n")
        return

    print(f"  Status:     {'expired (will refresh)' if token.expired else 'valid'}")
    if token.expiry:
        print(f"  Expiry:     {token.expiry.isoformat()}")
    print(f"  Refresh:    {'yes' if token.refresh_token else 'no'}")

    print("\n[Account]")
    if config.google_client_id and config.google_client_secret:
        source = PersistingTokenSource(local_oauth_client(config), storage, token)
        try:
            channel = asyncio.run(YouTubeClient(source.access_token).validate_auth())
            print(f"  Channel:    {channel}")
        except (UpstreamError, YouTubeError) as e:
            print(f"  Check:      failed ({e})")
    else:
        print("  Check:      skipped (Google credentials missing)")

    print("\n" + "=" * 50 + "\n")


def cmd_version():
    print(f"youtube-music-mcp {VERSION}")


def main(argv=None):
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        prog="youtube-music-mcp",
        description="YouTube Music MCP Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  serve     Start the MCP server (default)
  login     Log in to Google (stdio mode)
  logout    Delete the saved token
  status    Show configuration and token status
  version   Show version

Examples:
  youtube-music-mcp
  TRANSPORT=http BASE_URL=https://example.com youtube-music-mcp serve
  youtube-music-mcp status
"""
    )

    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "login", "logout", "status", "version"],
        help="Command to run (default: serve)"
    )

    args = parser.parse_args(argv)

    if args.command == "version":
        cmd_version()
        return

    config = load_config()
    init_logging(config)

    if args.command == "serve":
        cmd_serve(config)
    elif args.command == "login":
        cmd_login(config)
    elif args.command == "logout":
        cmd_logout(config)
    elif args.command == "status":
        cmd_status(config)


if __name__ == "__main__":
    main()
