"""Unit tests for the BookStack API client (fully mocked via httpx.MockTransport)."""

from __future__ import annotations

import json

import httpx
import pytest

from bookstack_mcp import bookstack_client
from bookstack_mcp.bookstack_client import (
    BookStackClient,
    BookStackError,
    filename_from_disposition,
)


def _json_response(data: object, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        content=json.dumps(data).encode(),
        headers={"content-type": "application/json"},
    )


def _make_client(handler) -> BookStackClient:
    return BookStackClient(
        "https://docs.example.com/",
        "tid",
        "tsecret",
        transport=httpx.MockTransport(handler),
    )


class TestRequests:
    @pytest.mark.asyncio
    async def test_sends_token_header_and_api_prefix(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _json_response({"id": 7, "name": "Handbook"})

        book = await _make_client(handler).get_book(7)
        assert book["name"] == "Handbook"
        assert seen[0].url.path == "/api/books/7"
        assert seen[0].headers["authorization"] == "Token tid:tsecret"

    @pytest.mark.asyncio
    async def test_list_pages_encodes_filters(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _json_response({"data": [], "total": 0})

        await _make_client(handler).list_pages(
            book_id=3, offset=10, count=900, sort="-updated_at", filters={"draft": 0}
        )
        params = seen[0].url.params
        assert params["filter[book_id]"] == "3"
        assert params["filter[draft]"] == "0"
        assert params["offset"] == "10"
        assert params["count"] == "500"
        assert params["sort"] == "-updated_at"

    @pytest.mark.asyncio
    async def test_search_appends_type_filter(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _json_response({"data": [], "total": 0})

        await _make_client(handler).search("deploy", type="chapter", count=10, offset=20)
        params = seen[0].url.params
        assert params["query"] == "deploy {type:chapter}"
        assert params["page"] == "3"

    @pytest.mark.asyncio
    async def test_search_pages_filters_by_book(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return _json_response(
                {
                    "data": [
                        {"type": "page", "id": 1, "book_id": 5},
                        {"type": "page", "id": 2, "book_id": 6},
                    ],
                    "total": 2,
                }
            )

        result = await _make_client(handler).search_pages("x", book_id=5)
        assert [i["id"] for i in result["data"]] == [1]
        assert "total" not in result

    @pytest.mark.asyncio
    async def test_search_unaligned_offset_spans_two_pages(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            page = int(request.url.params["page"])
            start = (page - 1) * 20
            data = [{"id": n} for n in range(start, start + 20)]
            return _json_response({"data": data, "total": 100})

        result = await _make_client(handler).search("q", count=20, offset=30)
        assert [r.url.params["page"] for r in seen] == ["2", "3"]
        assert [i["id"] for i in result["data"]] == list(range(30, 50))
        assert result["total"] == 100

    @pytest.mark.asyncio
    async def test_search_unaligned_offset_on_last_page(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _json_response({"data": [{"id": n} for n in range(20, 25)], "total": 25})

        result = await _make_client(handler).search("q", count=20, offset=22)
        assert len(seen) == 1
        assert [i["id"] for i in result["data"]] == [22, 23, 24]

    @pytest.mark.asyncio
    async def test_error_response_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return _json_response({"error": {"code": 404, "message": "Page not found"}}, 404)

        with pytest.raises(BookStackError) as excinfo:
            await _make_client(handler).get_page(99)
        assert excinfo.value.status_code == 404
        assert "Page not found" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self, monkeypatch) -> None:
        monkeypatch.setattr(bookstack_client, "_BACKOFF_BASE", 0.0)
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] < 3:
                raise httpx.ConnectError("boom", request=request)
            return _json_response({"id": 1})

        assert await _make_client(handler).get_shelf(1) == {"id": 1}
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_create_page_requires_location(self) -> None:
        with pytest.raises(ValueError):
            await _make_client(lambda r: _json_response({})).create_page(
                "New", markdown="# hi"
            )

    @pytest.mark.asyncio
    async def test_update_page_sends_only_given_fields(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _json_response({"id": 4, "name": "Renamed"})

        await _make_client(handler).update_page(4, name="Renamed")
        assert seen[0].method == "PUT"
        assert json.loads(seen[0].content) == {"name": "Renamed"}


class TestExport:
    @pytest.mark.asyncio
    async def test_pdf_export_uses_disposition_filename(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                content=b"%PDF-1.7 body",
                headers={
                    "content-type": "application/pdf",
                    "content-disposition": 'attachment; filename="getting-started.pdf"',
                },
            )

        doc = await _make_client(handler).export("page", 12, "pdf")
        assert seen[0].url.path == "/api/pages/12/export/pdf"
        assert doc.data == b"%PDF-1.7 body"
        assert doc.filename == "getting-started.pdf"
        assert doc.mime_type == "application/pdf"
        assert doc.is_binary

    @pytest.mark.asyncio
    async def test_markdown_export_falls_back_to_default_name(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, content=b"# Book", headers={"content-type": "text/markdown; charset=UTF-8"}
            )

        doc = await _make_client(handler).export("book", 3, "markdown")
        assert doc.filename == "book-3.md"
        assert doc.mime_type == "text/markdown"
        assert doc.text() == "# Book"
        assert not doc.is_binary

    @pytest.mark.asyncio
    async def test_rejects_unknown_format(self) -> None:
        with pytest.raises(ValueError):
            await _make_client(lambda r: _json_response({})).export("page", 1, "docx")


class TestFilenameFromDisposition:
    def test_quoted(self) -> None:
        assert filename_from_disposition('attachment; filename="a b.pdf"') == "a b.pdf"

    def test_utf8_star_wins(self) -> None:
        header = "attachment; filename=\"x.pdf\"; filename*=UTF-8''r%C3%A9sum%C3%A9.pdf"
        assert filename_from_disposition(header) == "résumé.pdf"

    def test_missing(self) -> None:
        assert filename_from_disposition(None) is None
        assert filename_from_disposition("inline") is None
