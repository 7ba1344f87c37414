"""Shared pytest fixtures for bookstack-mcp test suite."""

from __future__ import annotations

import pytest

from bookstack_mcp.file_cache import FileCache


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(tmp_path, clock):
    """A one-minute cache whose sweeper never fires on its own during a test."""
    fc = FileCache(
        tmp_path / "cache",
        ttl_minutes=1,
        sweep_interval_seconds=3600,
        clock=clock,
    )
    yield fc
    fc.close()
