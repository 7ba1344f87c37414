"""MCP server definition: wires tools and download routes onto FastMCP."""

from __future__ import annotations

from mcp.server.fastmcp import FastMCP

from bookstack_mcp.bookstack_client import BookStackClient
from bookstack_mcp.config import Settings
from bookstack_mcp.download import DOWNLOAD_ROUTE, download_endpoint, health_endpoint
from bookstack_mcp.file_cache import FileCache
from bookstack_mcp.tools import BookStackTools

INSTRUCTIONS = (
    "BookStack MCP server. Search and read books, chapters, pages, shelves and "
    "attachments. PDF exports are returned as short-lived download links."
)


def create_server(settings: Settings, cache: FileCache, client: BookStackClient) -> FastMCP:
    """Build the FastMCP server for one cache and one API client."""
    mcp = FastMCP(
        name="bookstack-mcp",
        instructions=INSTRUCTIONS,
        host=settings.host,
        port=settings.port,
    )

    tools = BookStackTools(
        client,
        cache,
        public_url=settings.public_url,
        enable_write=settings.enable_write,
    )
    tools.register(mcp)

    mcp.custom_route(DOWNLOAD_ROUTE, methods=["GET"])(download_endpoint(cache))
    mcp.custom_route("/health", methods=["GET"])(health_endpoint(cache))
    return mcp
