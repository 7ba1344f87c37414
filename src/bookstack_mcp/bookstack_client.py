"""Async BookStack REST API client using httpx.

Features:
- Token authentication (``Authorization: Token <id>:<secret>``)
- Automatic retry with exponential backoff for transient errors
- Document export (html / pdf / plaintext / markdown) as raw bytes
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

import httpx

_MAX_RETRIES = 3
_BACKOFF_BASE = 1.0  # seconds: 1, 2, 4
_MAX_COUNT = 500

log = logging.getLogger("bookstack-mcp")

_TRANSIENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout)

EXPORT_KINDS = ("page", "chapter", "book")
EXPORT_FORMATS = {
    "html": ("html", "text/html"),
    "pdf": ("pdf", "application/pdf"),
    "plaintext": ("txt", "text/plain"),
    "markdown": ("md", "text/markdown"),
}

_FILENAME_STAR = re.compile(r"filename\*\s*=\s*(?:UTF-8|utf-8)''([^;]+)")
_FILENAME = re.compile(r'filename\s*=\s*"?([^";]+)"?')


class BookStackError(RuntimeError):
    """Non-2xx response from the BookStack API."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"BookStack API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


@dataclass(frozen=True, slots=True)
class ExportedDocument:
    """One exported page/chapter/book."""

    data: bytes
    filename: str
    mime_type: str
    format: str

    @property
    def is_binary(self) -> bool:
        return self.format == "pdf"

    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


async def _request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """Execute an HTTP request with automatic retry on transient errors.

    Retries up to _MAX_RETRIES times with exponential backoff (1s, 2s, 4s).
    """
    last_exc: Exception | None = None
    for attempt in range(_MAX_RETRIES):
        try:
            return await client.request(method, url, **kwargs)
        except _TRANSIENT_ERRORS as exc:
            last_exc = exc
            if attempt < _MAX_RETRIES - 1:
                wait = _BACKOFF_BASE * (2**attempt)
                log.warning(
                    "Retry %d/%d for %s %s: %s (wait %.1fs)",
                    attempt + 1,
                    _MAX_RETRIES,
                    method,
                    url,
                    type(exc).__name__,
                    wait,
                )
                await asyncio.sleep(wait)
    raise last_exc  # type: ignore[misc]


def _raise_for_status(resp: httpx.Response) -> None:
    if not resp.is_error:
        return
    message = resp.reason_phrase or "request failed"
    try:
        body = resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message") or message
    raise BookStackError(resp.status_code, message)


def _list_params(
    offset: int = 0,
    count: int = 50,
    sort: str | None = None,
    filters: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Build BookStack listing params (``filter[field]=value`` style)."""
    params: dict[str, Any] = {
        "offset": max(offset, 0),
        "count": min(max(count, 1), _MAX_COUNT),
    }
    if sort:
        params["sort"] = sort
    for field, value in (filters or {}).items():
        params[f"filter[{field}]"] = value
    return params


def filename_from_disposition(header: str | None) -> str | None:
    """Pull the suggested filename out of a Content-Disposition header."""
    if not header:
        return None
    match = _FILENAME_STAR.search(header)
    if match:
        return unquote(match.group(1).strip().strip('"'))
    match = _FILENAME.search(header)
    if match:
        return match.group(1).strip()
    return None


class BookStackClient:
    """Thin wrapper over the BookStack API; responses are passed through as JSON."""

    def __init__(
        self,
        base_url: str,
        token_id: str,
        token_secret: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = f"{token_id}:{token_secret}"
        self._timeout = timeout
        self._transport = transport

    def _make_client(self) -> httpx.AsyncClient:
        """Create an AsyncClient (caller manages lifecycle)."""
        return httpx.AsyncClient(
            base_url=f"{self.base_url}/api",
            headers={
                "Authorization": f"Token {self._token}",
                "Accept": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _get_json(self, url: str, params: Mapping[str, Any] | None = None) -> Any:
        async with self._make_client() as client:
            resp = await _request_with_retry(client, "GET", url, params=params)
            _raise_for_status(resp)
            return resp.json()

    async def _send_json(self, method: str, url: str, payload: Mapping[str, Any]) -> Any:
        async with self._make_client() as client:
            resp = await _request_with_retry(client, method, url, json=dict(payload))
            _raise_for_status(resp)
            return resp.json()

    # -- search -------------------------------------------------------------

    async def search(
        self,
        query: str,
        type: str | None = None,
        count: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Run a BookStack search. *type* appends a ``{type:X}`` filter.

        BookStack pages search results, so an *offset* that is not a multiple
        of *count* straddles two pages; both are fetched and sliced to
        ``[offset, offset + count)``.
        """
        if type:
            query = f"{query} {{type:{type}}}"
        count = min(max(count, 1), _MAX_COUNT)
        offset = max(offset, 0)
        page, skip = divmod(offset, count)

        params = {"query": query, "count": count, "page": page + 1}
        result = await self._get_json("/search", params)
        if not skip:
            return result

        items = list(result.get("data", []))
        if len(items) == count:
            following = await self._get_json("/search", {**params, "page": page + 2})
            items.extend(following.get("data", []))
        return {**result, "data": items[skip : skip + count]}

    async def search_pages(
        self,
        query: str,
        book_id: int | None = None,
        count: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Search pages only, optionally narrowed to one book.

        The book filter applies to the fetched window only, so the upstream
        ``total`` no longer describes the result and is dropped.
        """
        result = await self.search(query, type="page", count=count, offset=offset)
        if book_id is not None:
            items = [i for i in result.get("data", []) if i.get("book_id") == book_id]
            result = {k: v for k, v in result.items() if k != "total"}
            result["data"] = items
        return result

    # -- listings -----------------------------------------------------------

    async def list_books(
        self,
        offset: int = 0,
        count: int = 50,
        sort: str | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._get_json("/books", _list_params(offset, count, sort, filters))

    async def list_pages(
        self,
        book_id: int | None = None,
        chapter_id: int | None = None,
        offset: int = 0,
        count: int = 50,
        sort: str | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        merged = dict(filters or {})
        if book_id is not None:
            merged["book_id"] = book_id
        if chapter_id is not None:
            merged["chapter_id"] = chapter_id
        return await self._get_json("/pages", _list_params(offset, count, sort, merged))

    async def list_chapters(
        self,
        book_id: int | None = None,
        offset: int = 0,
        count: int = 50,
        sort: str | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        merged = dict(filters or {})
        if book_id is not None:
            merged["book_id"] = book_id
        return await self._get_json("/chapters", _list_params(offset, count, sort, merged))

    async def list_shelves(
        self,
        offset: int = 0,
        count: int = 50,
        sort: str | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._get_json("/shelves", _list_params(offset, count, sort, filters))

    async def list_attachments(
        self,
        offset: int = 0,
        count: int = 50,
        sort: str | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._get_json("/attachments", _list_params(offset, count, sort, filters))

    # -- single items -------------------------------------------------------

    async def get_book(self, book_id: int) -> dict[str, Any]:
        return await self._get_json(f"/books/{book_id}")

    async def get_page(self, page_id: int) -> dict[str, Any]:
        return await self._get_json(f"/pages/{page_id}")

    async def get_chapter(self, chapter_id: int) -> dict[str, Any]:
        return await self._get_json(f"/chapters/{chapter_id}")

    async def get_shelf(self, shelf_id: int) -> dict[str, Any]:
        return await self._get_json(f"/shelves/{shelf_id}")

    async def get_attachment(self, attachment_id: int) -> dict[str, Any]:
        return await self._get_json(f"/attachments/{attachment_id}")

    # -- writes -------------------------------------------------------------

    async def create_page(
        self,
        name: str,
        book_id: int | None = None,
        chapter_id: int | None = None,
        html: str | None = None,
        markdown: str | None = None,
    ) -> dict[str, Any]:
        if book_id is None and chapter_id is None:
            raise ValueError("create_page needs a book_id or a chapter_id")
        if html is None and markdown is None:
            raise ValueError("create_page needs html or markdown content")
        payload: dict[str, Any] = {"name": name}
        for key, value in (
            ("book_id", book_id),
            ("chapter_id", chapter_id),
            ("html", html),
            ("markdown", markdown),
        ):
            if value is not None:
                payload[key] = value
        return await self._send_json("POST", "/pages", payload)

    async def update_page(
        self,
        page_id: int,
        name: str | None = None,
        html: str | None = None,
        markdown: str | None = None,
    ) -> dict[str, Any]:
        payload = {
            k: v for k, v in (("name", name), ("html", html), ("markdown", markdown)) if v is not None
        }
        if not payload:
            raise ValueError("update_page needs at least one of name, html, markdown")
        return await self._send_json("PUT", f"/pages/{page_id}", payload)

    # -- export -------------------------------------------------------------

    async def export(self, kind: str, item_id: int, format: str) -> ExportedDocument:
        """Export a page, chapter or book in the given format."""
        if kind not in EXPORT_KINDS:
            raise ValueError(f"Unknown export kind {kind!r}; expected one of {EXPORT_KINDS}")
        if format not in EXPORT_FORMATS:
            raise ValueError(
                f"Unknown export format {format!r}; expected one of {tuple(EXPORT_FORMATS)}"
            )
        ext, default_mime = EXPORT_FORMATS[format]

        async with self._make_client() as client:
            resp = await _request_with_retry(
                client, "GET", f"/{kind}s/{item_id}/export/{format}"
            )
            _raise_for_status(resp)

        mime_type = resp.headers.get("content-type", default_mime).split(";")[0].strip()
        filename = filename_from_disposition(resp.headers.get("content-disposition"))
        return ExportedDocument(
            data=resp.content,
            filename=filename or f"{kind}-{item_id}.{ext}",
            mime_type=mime_type or default_mime,
            format=format,
        )
