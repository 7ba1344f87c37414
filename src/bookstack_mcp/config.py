"""Environment-driven settings for the BookStack MCP server."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass

_TRANSPORTS = ("sse", "streamable-http", "stdio")


def _env_str(key: str, default: str) -> str:
    val = os.environ.get(key)
    return default if val is None or val.strip() == "" else val.strip()


def _env_required(key: str) -> str:
    val = os.environ.get(key, "").strip()
    if not val:
        raise ValueError(f"{key} environment variable is required")
    return val


def _env_positive_int(key: str, default: int) -> int:
    raw = _env_str(key, str(default))
    try:
        val = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None
    if val <= 0:
        raise ValueError(f"{key} must be positive, got {val}")
    return val


def _env_positive_float(key: str, default: float) -> float:
    raw = _env_str(key, str(default))
    try:
        val = float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None
    if not math.isfinite(val) or val <= 0:
        raise ValueError(f"{key} must be a positive number, got {raw!r}")
    return val


def _env_bool(key: str, default: bool = False) -> bool:
    val = os.environ.get(key)
    if val is None or val.strip() == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True, slots=True)
class Settings:
    base_url: str
    token_id: str
    token_secret: str
    enable_write: bool = False
    timeout_seconds: float = 30.0
    cache_dir: str = "./cache"
    cache_ttl_minutes: int = 10
    cache_sweep_seconds: int = 60
    host: str = "0.0.0.0"
    port: int = 8007
    public_url: str = "http://localhost:8007"
    transport: str = "sse"

    @staticmethod
    def from_env() -> Settings:
        port = _env_positive_int("PORT", 8007)
        transport = _env_str("MCP_TRANSPORT", "sse").lower()
        if transport not in _TRANSPORTS:
            raise ValueError(
                f"MCP_TRANSPORT must be one of {', '.join(_TRANSPORTS)}, got {transport!r}"
            )

        return Settings(
            base_url=_env_required("BOOKSTACK_BASE_URL").rstrip("/"),
            token_id=_env_required("BOOKSTACK_TOKEN_ID"),
            token_secret=_env_required("BOOKSTACK_TOKEN_SECRET"),
            enable_write=_env_bool("BOOKSTACK_ENABLE_WRITE"),
            timeout_seconds=_env_positive_float("BOOKSTACK_TIMEOUT", 30.0),
            cache_dir=_env_str("CACHE_DIR", "./cache"),
            cache_ttl_minutes=_env_positive_int("CACHE_DURATION_MINUTES", 10),
            cache_sweep_seconds=_env_positive_int("CACHE_SWEEP_SECONDS", 60),
            host=_env_str("HOST", "0.0.0.0"),
            port=port,
            public_url=_env_str("PUBLIC_URL", f"http://localhost:{port}").rstrip("/"),
            transport=transport,
        )
