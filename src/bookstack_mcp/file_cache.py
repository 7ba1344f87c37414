"""Short-lived on-disk cache for exported documents.

Exports (PDFs mostly) are too large to hand back inline through an MCP tool
result, so the tool stores the bytes here and answers with a download link.
A later, unrelated HTTP request turns the id back into bytes.

Cache layout:
    {storage_root}/
        {id}{ext}               ← one artifact per entry, e.g. 3f2a…c9.pdf
        .{id}.partial           ← in-flight write, renamed into place when done

The index lives in memory only. A daemon thread sweeps expired entries every
``sweep_interval_seconds``; ``close()`` stops it and purges everything.
"""

from __future__ import annotations

import contextlib
import logging
import os
import re
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath, PureWindowsPath

log = logging.getLogger("bookstack-mcp")

DOWNLOAD_PREFIX = "/download"

_DEFAULT_TTL_MINUTES = 10
_DEFAULT_SWEEP_SECONDS = 60
_SAFE_EXTENSION = re.compile(r"^\.[A-Za-z0-9]{1,16}$")


class FileCacheError(RuntimeError):
    pass


class EmptyPayload(FileCacheError, ValueError):
    pass


class StorageWriteFailed(FileCacheError):
    pass


class CacheClosed(FileCacheError):
    pass


@dataclass(frozen=True, slots=True)
class CachedFile:
    """Metadata for one cached artifact."""

    id: str
    filename: str  # display only, never used to build paths
    mime_type: str
    size: int
    created_at: float
    expires_at: float
    path: Path

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class StoredFile:
    """What a producer gets back from :meth:`FileCache.store`."""

    id: str
    download_path: str
    expires_at: float


@dataclass(frozen=True, slots=True)
class CachedData:
    data: bytes
    file: CachedFile


@dataclass(frozen=True, slots=True)
class CacheStats:
    total_files: int
    total_size: int
    cache_duration_minutes: int


def safe_extension(filename: str) -> str:
    """Return the extension of the last path component, or "" if it looks odd.

    Both ``/`` and ``\\`` count as separators so ``..\\..\\x.pdf`` yields ``.pdf``.
    """
    name = PureWindowsPath(filename).name
    suffix = PurePosixPath(name).suffix
    if _SAFE_EXTENSION.match(suffix):
        return suffix.lower()
    return ""


class FileCache:
    """Ephemeral file store with TTL expiry and a background sweeper.

    ``store`` and ``fetch`` are safe to call from several threads at once.
    The index is guarded by a lock; disk I/O happens outside it.
    """

    def __init__(
        self,
        storage_root: str | Path = "./cache",
        ttl_minutes: int = _DEFAULT_TTL_MINUTES,
        sweep_interval_seconds: float = _DEFAULT_SWEEP_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_minutes <= 0:
            raise ValueError(f"ttl_minutes must be positive, got {ttl_minutes}")
        if sweep_interval_seconds <= 0:
            raise ValueError(
                f"sweep_interval_seconds must be positive, got {sweep_interval_seconds}"
            )

        self.root = Path(storage_root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._ttl_minutes = ttl_minutes
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock

        self._files: dict[str, CachedFile] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._stop = threading.Event()
        self._sweeper = threading.Thread(
            target=self._run_sweeper, name="file-cache-sweeper", daemon=True
        )
        self._sweeper.start()

        log.info("File cache initialized: %s (%d min expiry)", self.root, ttl_minutes)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def store(self, data: bytes, filename: str, mime_type: str) -> StoredFile:
        """Write *data* to disk and register it under a fresh id.

        Raises:
            EmptyPayload: *data* is empty. Nothing is written.
            StorageWriteFailed: the write failed. Nothing is registered.
            CacheClosed: the cache has been torn down.
        """
        if not data:
            raise EmptyPayload(f"refusing to cache empty payload for {filename!r}")
        if self._closed:
            raise CacheClosed("file cache is closed")

        file_id = uuid.uuid4().hex
        path = self.root / f"{file_id}{safe_extension(filename)}"
        tmp = self.root / f".{file_id}.partial"

        try:
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp.unlink(missing_ok=True)
            raise StorageWriteFailed(f"could not write {path.name}: {exc}") from exc

        now = self._clock()
        entry = CachedFile(
            id=file_id,
            filename=filename,
            mime_type=mime_type,
            size=len(data),
            created_at=now,
            expires_at=now + self._ttl_minutes * 60,
            path=path,
        )
        with self._lock:
            registered = not self._closed
            if registered:
                self._files[file_id] = entry
        if not registered:
            self._unlink(entry)
            raise CacheClosed("file cache closed during store")

        log.info(
            "Cached file: %s (%.1f KB) - expires at %s",
            filename,
            len(data) / 1024,
            time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(entry.expires_at)),
        )
        return StoredFile(
            id=file_id,
            download_path=f"{DOWNLOAD_PREFIX}/{file_id}",
            expires_at=entry.expires_at,
        )

    put = store

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def lookup(self, file_id: str) -> CachedFile | None:
        """Return metadata for a live entry without touching its bytes."""
        with self._lock:
            entry = self._files.get(file_id)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._purge(entry)
            return None
        return entry

    def fetch(self, file_id: str) -> CachedData | None:
        """Return bytes and metadata for *file_id*, or None if it is not live.

        Unknown, expired and unreadable entries all come back as None;
        the latter two are purged on the way out.
        """
        entry = self.lookup(file_id)
        if entry is None:
            return None
        try:
            data = entry.path.read_bytes()
        except OSError as exc:
            log.warning("Error reading cached file %s: %s", file_id, exc)
            self._purge(entry)
            return None
        log.debug("Cache hit for %s (%d bytes)", file_id, len(data))
        return CachedData(data=data, file=entry)

    get = fetch

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Purge every expired entry. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [e for e in self._files.values() if e.is_expired(now)]
            for entry in expired:
                del self._files[entry.id]

        for entry in expired:
            self._unlink(entry)

        if expired:
            log.info("Cleaned up %d expired cached files", len(expired))
        return len(expired)

    def _run_sweeper(self) -> None:
        while not self._stop.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception:
                log.exception("File cache sweep failed")

    def _purge(self, entry: CachedFile) -> None:
        # Only whoever removes the index row deletes the file.
        with self._lock:
            if self._files.get(entry.id) is not entry:
                return
            del self._files[entry.id]
        self._unlink(entry)

    def _unlink(self, entry: CachedFile) -> None:
        try:
            entry.path.unlink(missing_ok=True)
        except OSError as exc:
            # The index row is already gone; the file is left behind.
            log.warning("Error removing cached file %s: %s", entry.id, exc)

    # ------------------------------------------------------------------
    # Introspection / lifecycle
    # ------------------------------------------------------------------

    @property
    def ttl_minutes(self) -> int:
        return self._ttl_minutes

    def set_ttl_minutes(self, minutes: int) -> None:
        """Change the TTL for entries stored from now on."""
        if minutes <= 0:
            raise ValueError(f"ttl_minutes must be positive, got {minutes}")
        self._ttl_minutes = minutes
        log.info("Cache duration updated to %d minutes", minutes)

    def stats(self) -> CacheStats:
        now = self._clock()
        with self._lock:
            live = [e for e in self._files.values() if not e.is_expired(now)]
        return CacheStats(
            total_files=len(live),
            total_size=sum(e.size for e in live),
            cache_duration_minutes=self._ttl_minutes,
        )

    def __contains__(self, file_id: object) -> bool:
        with self._lock:
            return file_id in self._files

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)

    def close(self) -> None:
        """Stop the sweeper and delete every cached artifact."""
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        if self._sweeper is not threading.current_thread():
            self._sweeper.join(timeout=5)

        with self._lock:
            entries = list(self._files.values())
            self._files.clear()
        for entry in entries:
            self._unlink(entry)
        log.info("File cache closed (%d files removed)", len(entries))

    def __enter__(self) -> FileCache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
