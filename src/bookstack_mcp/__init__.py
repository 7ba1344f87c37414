"""bookstack-mcp: MCP server for BookStack with short-lived export downloads."""

from __future__ import annotations

import logging
import sys

from bookstack_mcp.bookstack_client import BookStackClient
from bookstack_mcp.config import Settings
from bookstack_mcp.file_cache import FileCache
from bookstack_mcp.server import create_server

log = logging.getLogger("bookstack-mcp")

USAGE = """\
BookStack MCP Server

Environment Variables Required:
  BOOKSTACK_BASE_URL      BookStack instance URL (e.g. https://docs.example.com)
  BOOKSTACK_TOKEN_ID      API token id
  BOOKSTACK_TOKEN_SECRET  API token secret

Optional Environment Variables:
  BOOKSTACK_ENABLE_WRITE  Enable create/update tools (default: false)
  BOOKSTACK_TIMEOUT       API timeout in seconds (default: 30)
  CACHE_DIR               Export download directory (default: ./cache)
  CACHE_DURATION_MINUTES  Download link lifetime (default: 10)
  CACHE_SWEEP_SECONDS     Expired file sweep interval (default: 60)
  HOST / PORT             HTTP bind address (default: 0.0.0.0 / 8007)
  PUBLIC_URL              Base URL used in download links
  MCP_TRANSPORT           sse, streamable-http or stdio (default: sse)
"""


def main() -> None:
    """CLI entry point: starts the MCP server on the configured transport."""
    if any(arg in ("-h", "--help") for arg in sys.argv[1:]):
        print(USAGE)
        return

    try:
        settings = Settings.from_env()
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from None

    log.info("BookStack URL: %s", settings.base_url)
    log.info("Write operations: %s", "ENABLED" if settings.enable_write else "DISABLED")

    cache = FileCache(
        settings.cache_dir,
        ttl_minutes=settings.cache_ttl_minutes,
        sweep_interval_seconds=settings.cache_sweep_seconds,
    )
    client = BookStackClient(
        settings.base_url,
        settings.token_id,
        settings.token_secret,
        timeout=settings.timeout_seconds,
    )
    try:
        mcp = create_server(settings, cache, client)
        mcp.run(transport=settings.transport)
    finally:
        cache.close()
