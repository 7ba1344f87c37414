"""Tests for the download and health HTTP endpoints."""

from __future__ import annotations

import uuid

import pytest
from starlette.applications import Starlette
from starlette.routing import Route
from starlette.testclient import TestClient

from bookstack_mcp.download import (
    DOWNLOAD_ROUTE,
    content_disposition,
    download_endpoint,
    health_endpoint,
)


@pytest.fixture
def client(cache):
    app = Starlette(
        routes=[
            Route(DOWNLOAD_ROUTE, download_endpoint(cache), methods=["GET"]),
            Route("/health", health_endpoint(cache), methods=["GET"]),
        ]
    )
    return TestClient(app)


class TestDownload:
    def test_serves_payload_with_headers(self, client, cache) -> None:
        payload = b"%PDF-1.7" + b"\x00" * 1016
        stored = cache.store(payload, "report.pdf", "application/pdf")

        resp = client.get(stored.download_path)
        assert resp.status_code == 200
        assert resp.content == payload
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.headers["content-length"] == "1024"
        assert 'filename="report.pdf"' in resp.headers["content-disposition"]
        assert resp.headers["content-disposition"].startswith("attachment;")
        assert resp.headers["cache-control"] == "no-store"

    def test_unknown_id_is_404(self, client) -> None:
        resp = client.get(f"/download/{uuid.uuid4().hex}")
        assert resp.status_code == 404

    def test_expired_id_is_404(self, client, cache, clock) -> None:
        stored = cache.store(b"data", "a.pdf", "application/pdf")
        clock.advance(61)
        assert client.get(stored.download_path).status_code == 404

    def test_expired_and_unknown_look_the_same(self, client, cache, clock) -> None:
        stored = cache.store(b"data", "a.pdf", "application/pdf")
        clock.advance(61)
        expired = client.get(stored.download_path)
        unknown = client.get(f"/download/{uuid.uuid4().hex}")
        assert expired.status_code == unknown.status_code
        assert expired.text == unknown.text

    def test_can_download_twice_before_expiry(self, client, cache) -> None:
        stored = cache.store(b"data", "a.pdf", "application/pdf")
        assert client.get(stored.download_path).status_code == 200
        assert client.get(stored.download_path).status_code == 200


class TestHealth:
    def test_reports_cache_stats(self, client, cache) -> None:
        cache.store(b"12345", "a.pdf", "application/pdf")
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["cache"] == {
            "total_files": 1,
            "total_size": 5,
            "cache_duration_minutes": 1,
        }


class TestContentDisposition:
    def test_plain_name(self) -> None:
        header = content_disposition("report.pdf")
        assert header == "attachment; filename=\"report.pdf\"; filename*=UTF-8''report.pdf"

    def test_non_ascii_name_has_fallback(self) -> None:
        header = content_disposition("résumé.pdf")
        assert 'filename="r_sum_.pdf"' in header
        assert "filename*=UTF-8''r%C3%A9sum%C3%A9.pdf" in header

    def test_quotes_and_newlines_are_neutralised(self) -> None:
        header = content_disposition('a"b\r\nSet-Cookie: x.pdf')
        assert "\r" not in header and "\n" not in header
        assert 'filename="a_b__Set-Cookie_ x.pdf"' in header
