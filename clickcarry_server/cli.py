"""CLI entry point for Click & Carry MCP server."""

import argparse
import asyncio
import logging
import sys

from .auth import AuthManager
from .config import Settings, configure_logging
from .exceptions import StoreError
from .seed import promote_to_admin, seed_catalog
from .store_client import RemoteStoreClient

logger = logging.getLogger("clickcarry-cli")


async def run_seed(settings: Settings) -> int:
    """Replace the catalog with the laptop products."""
    store = RemoteStoreClient(
        settings.supabase_url,
        settings.supabase_anon_key,
        AuthManager(settings.session_file),
        timeout=settings.timeout,
    )
    try:
        await seed_catalog(store)
    except StoreError as e:
        logger.error(f"Error seeding database: {e}")
        return 1
    finally:
        await store.close()
    return 0


async def run_promote(settings: Settings, user_id: str) -> int:
    """Give a user the admin role."""
    store = RemoteStoreClient(
        settings.supabase_url,
        settings.supabase_anon_key,
        AuthManager(settings.session_file),
        timeout=settings.timeout,
    )
    try:
        await promote_to_admin(store, user_id)
    except StoreError as e:
        logger.error(f"Error updating user role: {e}")
        return 1
    finally:
        await store.close()
    return 0


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Click & Carry MCP Server")
    parser.add_argument(
        "--mode",
        choices=["stdio", "http", "seed", "promote"],
        default="stdio",
        help="stdio (MCP protocol), http (REST API), seed (load the laptop catalog) or promote (make a user admin)",
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (HTTP mode only, default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (HTTP mode only, default: 8000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable hot reloading (HTTP mode only, watches for file changes)",
    )
    parser.add_argument(
        "--user-id",
        help="User ID to give the admin role (promote mode only)",
    )

    args = parser.parse_args()

    if args.mode == "http":
        from .http_server import run_http_server
        run_http_server(host=args.host, port=args.port, reload=args.reload)
    elif args.mode in ("seed", "promote"):
        if args.mode == "promote" and not args.user_id:
            parser.error("--user-id is required in promote mode")
        try:
            settings = Settings.from_env()
        except ValueError as e:
            parser.error(str(e))
        configure_logging(settings.log_level)
        if args.mode == "seed":
            sys.exit(asyncio.run(run_seed(settings)))
        sys.exit(asyncio.run(run_promote(settings, args.user_id)))
    else:
        from .server import main as server_main
        asyncio.run(server_main())


if __name__ == "__main__":
    main()
