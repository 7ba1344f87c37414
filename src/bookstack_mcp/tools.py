"""MCP tool implementations for BookStack content.

Read tools pass BookStack JSON through (HTML fields flattened to text).
Export tools return text formats inline; PDFs go into the file cache and
the tool answers with a download link instead.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import re
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import Any

import httpx
from bs4 import BeautifulSoup
from mcp.server.fastmcp import FastMCP

from bookstack_mcp.bookstack_client import BookStackClient, BookStackError
from bookstack_mcp.file_cache import FileCache, FileCacheError

log = logging.getLogger("bookstack-mcp")

_API_ERRORS = (BookStackError, httpx.HTTPError, OSError, ValueError)

READ_TOOLS = (
    "search_content",
    "search_pages",
    "get_books",
    "get_book",
    "get_pages",
    "get_page",
    "get_chapters",
    "get_chapter",
    "get_shelves",
    "get_shelf",
    "get_attachments",
    "get_attachment",
    "export_page",
    "export_chapter",
    "export_book",
    "get_cache_stats",
)
WRITE_TOOLS = ("create_page", "update_page")


# ---------------------------------------------------------------------------
# Internal: HTML flattening
# ---------------------------------------------------------------------------


def _html_to_text(html: str) -> str:
    """Strip tags from a BookStack HTML fragment, keeping line structure."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "lxml")
    for el in soup.find_all(["script", "style"]):
        el.decompose()
    text = soup.get_text(separator="\n")
    text = re.sub(r"[ \t]+\n", "\n", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _clean_search_results(result: dict[str, Any]) -> dict[str, Any]:
    """Flatten the highlighted ``preview_html`` snippets in search results."""
    items = []
    for item in result.get("data", []):
        item = dict(item)
        preview = item.pop("preview_html", None)
        if isinstance(preview, dict):
            item["preview"] = {
                "name": _html_to_text(preview.get("name", "")),
                "content": _html_to_text(preview.get("content", "")),
            }
        items.append(item)
    return {**result, "data": items}


def _clean_page(page: dict[str, Any]) -> dict[str, Any]:
    """Replace page HTML with plain text unless markdown is available."""
    page = dict(page)
    html = page.pop("html", None)
    page.pop("raw_html", None)
    if not page.get("markdown") and html:
        page["text"] = _html_to_text(html)
    return page


def _to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="seconds")


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class BookStackTools:
    """Tool handlers bound to one API client and one file cache."""

    def __init__(
        self,
        client: BookStackClient,
        cache: FileCache,
        public_url: str,
        enable_write: bool = False,
    ) -> None:
        self.client = client
        self.cache = cache
        self.public_url = public_url.rstrip("/")
        self.enable_write = enable_write

    def register(self, mcp: FastMCP) -> None:
        """Add every tool to *mcp*; write tools only when writes are enabled."""
        names = READ_TOOLS + (WRITE_TOOLS if self.enable_write else ())
        for name in names:
            mcp.add_tool(getattr(self, name), name=name)
        log.info(
            "Registered %d tools (writes %s)",
            len(names),
            "enabled" if self.enable_write else "disabled",
        )

    async def _json_call(self, label: str, call: Awaitable[Any]) -> str:
        try:
            result = await call
        except _API_ERRORS as exc:
            log.error("%s failed: %s", label, exc)
            return f"Error: {label} failed: {exc}"
        return _to_json(result)

    # -- search -------------------------------------------------------------

    async def search_content(
        self, query: str, type: str | None = None, count: int = 20, offset: int = 0
    ) -> str:
        """Search across BookStack content.

        Args:
            query: Search query; BookStack syntax such as {created_by:me} works.
            type: Optional content type filter: book, page, chapter or bookshelf.
            count: Number of results to return (max 500).
            offset: Number of results to skip.
        """
        return await self._json_call(
            "search_content", self._search(query, type=type, count=count, offset=offset)
        )

    async def _search(self, query: str, **kwargs: Any) -> dict[str, Any]:
        return _clean_search_results(await self.client.search(query, **kwargs))

    async def search_pages(
        self, query: str, book_id: int | None = None, count: int = 20, offset: int = 0
    ) -> str:
        """Search for pages, optionally within one book.

        Args:
            query: Search query; BookStack syntax such as {created_by:me} works.
            book_id: Only keep hits from this book (applied to the fetched window).
            count: Number of results to fetch (max 500).
            offset: Number of results to skip.
        """
        return await self._json_call(
            "search_pages", self._search_pages(query, book_id, count, offset)
        )

    async def _search_pages(
        self, query: str, book_id: int | None, count: int, offset: int
    ) -> dict[str, Any]:
        result = await self.client.search_pages(query, book_id=book_id, count=count, offset=offset)
        return _clean_search_results(result)

    # -- listings -----------------------------------------------------------

    async def get_books(
        self,
        offset: int = 0,
        count: int = 50,
        sort: str | None = None,
        filter: dict[str, Any] | None = None,
    ) -> str:
        """List books. *sort* is a field such as 'name' or '-updated_at'."""
        return await self._json_call(
            "get_books", self.client.list_books(offset, count, sort, filter)
        )

    async def get_pages(
        self,
        book_id: int | None = None,
        chapter_id: int | None = None,
        offset: int = 0,
        count: int = 50,
        sort: str | None = None,
        filter: dict[str, Any] | None = None,
    ) -> str:
        """List pages, optionally filtered by book or chapter."""
        return await self._json_call(
            "get_pages",
            self.client.list_pages(book_id, chapter_id, offset, count, sort, filter),
        )

    async def get_chapters(
        self,
        book_id: int | None = None,
        offset: int = 0,
        count: int = 50,
        sort: str | None = None,
        filter: dict[str, Any] | None = None,
    ) -> str:
        """List chapters, optionally filtered by book."""
        return await self._json_call(
            "get_chapters", self.client.list_chapters(book_id, offset, count, sort, filter)
        )

    async def get_shelves(
        self,
        offset: int = 0,
        count: int = 50,
        sort: str | None = None,
        filter: dict[str, Any] | None = None,
    ) -> str:
        """List bookshelves."""
        return await self._json_call(
            "get_shelves", self.client.list_shelves(offset, count, sort, filter)
        )

    async def get_attachments(
        self,
        offset: int = 0,
        count: int = 50,
        sort: str | None = None,
        filter: dict[str, Any] | None = None,
    ) -> str:
        """List attachments (filter by uploaded_to for a single page)."""
        return await self._json_call(
            "get_attachments", self.client.list_attachments(offset, count, sort, filter)
        )

    # -- single items -------------------------------------------------------

    async def get_book(self, id: int) -> str:
        """Get details of a book, including its contents."""
        return await self._json_call("get_book", self.client.get_book(id))

    async def get_page(self, id: int) -> str:
        """Get a page with its content as markdown or plain text."""
        return await self._json_call("get_page", self._get_page(id))

    async def _get_page(self, page_id: int) -> dict[str, Any]:
        return _clean_page(await self.client.get_page(page_id))

    async def get_chapter(self, id: int) -> str:
        """Get details of a chapter and its pages."""
        return await self._json_call("get_chapter", self.client.get_chapter(id))

    async def get_shelf(self, id: int) -> str:
        """Get details of a bookshelf and its books."""
        return await self._json_call("get_shelf", self.client.get_shelf(id))

    async def get_attachment(self, id: int) -> str:
        """Get details of an attachment."""
        return await self._json_call("get_attachment", self.client.get_attachment(id))

    # -- writes -------------------------------------------------------------

    async def create_page(
        self,
        name: str,
        book_id: int | None = None,
        chapter_id: int | None = None,
        html: str | None = None,
        markdown: str | None = None,
    ) -> str:
        """Create a page in a book or chapter from HTML or markdown."""
        if not self.enable_write:
            return "Error: write operations are disabled (set BOOKSTACK_ENABLE_WRITE=true)."
        return await self._json_call(
            "create_page",
            self.client.create_page(
                name, book_id=book_id, chapter_id=chapter_id, html=html, markdown=markdown
            ),
        )

    async def update_page(
        self,
        id: int,
        name: str | None = None,
        html: str | None = None,
        markdown: str | None = None,
    ) -> str:
        """Update a page's name or content."""
        if not self.enable_write:
            return "Error: write operations are disabled (set BOOKSTACK_ENABLE_WRITE=true)."
        return await self._json_call(
            "update_page", self.client.update_page(id, name=name, html=html, markdown=markdown)
        )

    # -- export -------------------------------------------------------------

    async def export_page(self, id: int, format: str = "pdf") -> str:
        """Export a page as html, pdf, plaintext or markdown.

        PDFs are returned as a temporary download link.
        """
        return await self._export("page", id, format)

    async def export_chapter(self, id: int, format: str = "pdf") -> str:
        """Export a chapter as html, pdf, plaintext or markdown."""
        return await self._export("chapter", id, format)

    async def export_book(self, id: int, format: str = "pdf") -> str:
        """Export a whole book as html, pdf, plaintext or markdown."""
        return await self._export("book", id, format)

    async def _export(self, kind: str, item_id: int, format: str) -> str:
        try:
            doc = await self.client.export(kind, item_id, format)
        except _API_ERRORS as exc:
            log.error("export_%s %s as %s failed: %s", kind, item_id, format, exc)
            return f"Error: export of {kind} {item_id} failed: {exc}"

        if not doc.is_binary:
            return doc.text()

        try:
            stored = await asyncio.to_thread(
                self.cache.store, doc.data, doc.filename, doc.mime_type
            )
        except FileCacheError as exc:
            log.error("Could not cache export %s: %s", doc.filename, exc)
            return f"Error: could not prepare download for {doc.filename}: {exc}"

        return (
            f"Exported {kind} {item_id} as {format}: {doc.filename} "
            f"({len(doc.data) / 1024:.1f} KB)\n"
            f"Download: {self.public_url}{stored.download_path}\n"
            f"Link expires at {_iso(stored.expires_at)} "
            f"({self.cache.ttl_minutes} minutes)."
        )

    # -- cache --------------------------------------------------------------

    async def get_cache_stats(self) -> str:
        """Show how many exported files are waiting for download."""
        return _to_json(dataclasses.asdict(self.cache.stats()))
