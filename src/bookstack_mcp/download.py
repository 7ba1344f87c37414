"""HTTP endpoints served next to the MCP transport: file downloads and health."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import re
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from urllib.parse import quote

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from bookstack_mcp.file_cache import DOWNLOAD_PREFIX, FileCache

log = logging.getLogger("bookstack-mcp")

DOWNLOAD_ROUTE = DOWNLOAD_PREFIX + "/{file_id}"

Endpoint = Callable[[Request], Awaitable[Response]]

_UNSAFE_HEADER_CHARS = re.compile(r'[^A-Za-z0-9._ ()-]')


def content_disposition(filename: str) -> str:
    """Build an ``attachment`` header with an ASCII fallback and a UTF-8 name."""
    fallback = _UNSAFE_HEADER_CHARS.sub("_", filename).strip() or "download"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def download_endpoint(cache: FileCache) -> Endpoint:
    """Return a Starlette endpoint serving ``/download/{file_id}`` from *cache*."""

    async def download(request: Request) -> Response:
        file_id = request.path_params["file_id"]
        cached = await asyncio.to_thread(cache.fetch, file_id)
        if cached is None:
            log.info("Download miss for %s", file_id)
            return PlainTextResponse("File not found or expired", status_code=404)

        meta = cached.file
        log.info("Serving %s (%d bytes) for %s", meta.filename, meta.size, file_id)
        return Response(
            content=cached.data,
            media_type=meta.mime_type,
            headers={
                "Content-Disposition": content_disposition(meta.filename),
                "Cache-Control": "no-store",
            },
        )

    return download


def health_endpoint(cache: FileCache) -> Endpoint:
    async def health(request: Request) -> Response:
        return JSONResponse(
            {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "cache": dataclasses.asdict(cache.stats()),
            }
        )

    return health
