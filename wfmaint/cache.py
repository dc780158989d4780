"""Content-addressed result cache stored as one JSON envelope per key."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .errors import InvalidKey, ResourceUnavailable

logger = logging.getLogger(__name__)

ENTRY_SUFFIX = ".json"
TEMP_PREFIX = ".tmp-"
ORPHAN_TEMP_AGE = 3600.0
_KEY_PATTERN = re.compile(r"^[0-9a-f]{64}$")
_HASH_CHUNK = 1 << 16


@dataclass(slots=True)
class CacheStats:
    entries: int = 0
    total_bytes: int = 0


def file_digest(path: Path) -> str:
    """Return the SHA-256 hex digest of *path*, or "" when it cannot be read."""

    digest = hashlib.sha256()
    try:
        with path.open("rb") as handle:
            for block in iter(lambda: handle.read(_HASH_CHUNK), b""):
                digest.update(block)
    except OSError:
        return ""
    return digest.hexdigest()


def _file_mtime(path: Path) -> int:
    try:
        return path.stat().st_mtime_ns
    except OSError:
        return 0


def validate_key(key: str) -> str:
    if not isinstance(key, str) or not _KEY_PATTERN.match(key):
        raise InvalidKey(f"Invalid cache key: {key!r}")
    return key


class CacheStore:
    """TTL-bounded cache rooted at a single directory.

    Entries are written to a temp file inside the cache root and renamed into
    place, so readers only ever observe complete envelopes. Expiry is lazy:
    ``get`` treats an entry older than the TTL as absent and ``prune`` removes
    old entries on request.

    ``base_dir`` is the directory that file-backed keys must stay inside;
    ``key_for`` rejects any path that resolves outside of it.
    """

    def __init__(
        self,
        root: Path | str,
        *,
        ttl: float,
        base_dir: Path | str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl < 0:
            raise ValueError("ttl must be >= 0")
        self.root = Path(root).expanduser()
        self.ttl = float(ttl)
        self.base_dir = Path(base_dir if base_dir is not None else Path.cwd()).expanduser().resolve()
        self._clock = clock

    def ensure_root(self) -> Path:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            os.chmod(self.root, 0o700)
        except OSError as exc:
            raise ResourceUnavailable(f"Cannot create cache directory {self.root}: {exc}") from exc
        return self.root

    def key_for(self, path: Path | str, context: str | None = None) -> str:
        """Derive the cache key for *path* and an optional *context* string.

        The key folds the absolute path, the content hash, the modification
        time and the context, so editing or touching the file yields a new key.
        """

        raw = os.fspath(path) if path is not None else ""
        if not raw.strip():
            raise InvalidKey("Cache path must not be empty")
        candidate = Path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = self.base_dir / candidate
        absolute = candidate.resolve()
        if not absolute.is_relative_to(self.base_dir):
            raise InvalidKey(f"Cache path escapes {self.base_dir}: {raw}")
        content_hash = file_digest(absolute)
        mtime = _file_mtime(absolute)
        combined = f"{absolute}:{content_hash}:{mtime}:{context or ''}"
        return hashlib.sha256(combined.encode("utf-8")).hexdigest()

    @staticmethod
    def key_for_text(text: str) -> str:
        """Return a key for computations that are not tied to a file."""

        return hashlib.sha256((text or "").encode("utf-8")).hexdigest()

    def entry_path(self, key: str) -> Path:
        return self.root / f"{validate_key(key)}{ENTRY_SUFFIX}"

    def get(self, key: str) -> str | None:
        """Return the cached payload, or None when absent, expired or unreadable."""

        entry = self.entry_path(key)
        try:
            raw = entry.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.debug("Cache read failed for %s: %s", entry, exc)
            return None
        try:
            envelope = json.loads(raw)
            written_at = float(envelope["written_at"])
            payload = envelope["payload"]
        except (ValueError, KeyError, TypeError):
            logger.debug("Ignoring corrupt cache entry %s", entry)
            return None
        if self._clock() - written_at > self.ttl:
            return None
        if not isinstance(payload, str):
            return None
        return payload

    def put(self, key: str, payload: str) -> Path:
        """Atomically store *payload* under *key*, replacing any previous entry."""

        entry = self.entry_path(key)
        root = self.ensure_root()
        envelope = json.dumps(
            {"key": key, "written_at": self._clock(), "payload": payload},
            ensure_ascii=False,
        )
        tmp_name: str | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=root,
                prefix=TEMP_PREFIX,
                suffix=ENTRY_SUFFIX,
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(envelope)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, entry)
        except OSError as exc:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass
            raise ResourceUnavailable(f"Cannot write cache entry {entry}: {exc}") from exc
        return entry

    def _iter_entries(self):
        if not self.root.is_dir():
            return
        for entry in self.root.iterdir():
            if entry.name.startswith(TEMP_PREFIX) or entry.suffix != ENTRY_SUFFIX:
                continue
            if not _KEY_PATTERN.match(entry.stem):
                continue
            yield entry

    def _written_at(self, entry: Path) -> float | None:
        try:
            envelope = json.loads(entry.read_text(encoding="utf-8"))
            return float(envelope["written_at"])
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError):
            try:
                return entry.stat().st_mtime
            except OSError:
                return None

    def prune(self, max_age: float | None = None) -> int:
        """Delete entries older than *max_age* seconds (defaults to the TTL)."""

        limit = self.ttl if max_age is None else float(max_age)
        now = self._clock()
        removed = 0
        for entry in list(self._iter_entries()):
            written_at = self._written_at(entry)
            if written_at is None or now - written_at <= limit:
                continue
            try:
                entry.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        removed += self._remove_orphan_temps(now)
        if removed:
            logger.debug("Pruned %d cache entries from %s", removed, self.root)
        return removed

    def _remove_orphan_temps(self, now: float) -> int:
        if not self.root.is_dir():
            return 0
        removed = 0
        for entry in self.root.glob(f"{TEMP_PREFIX}*"):
            try:
                if now - entry.stat().st_mtime <= ORPHAN_TEMP_AGE:
                    continue
                entry.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        return removed

    def clear(self) -> int:
        removed = 0
        for entry in list(self._iter_entries()):
            try:
                entry.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        return removed

    def stats(self) -> CacheStats:
        stats = CacheStats()
        for entry in self._iter_entries():
            try:
                size = entry.stat().st_size
            except OSError:
                continue
            stats.entries += 1
            stats.total_bytes += size
        return stats
