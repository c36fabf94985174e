"""TTL result cache keyed by artifact, backend and backend configuration."""

import asyncio
import json
import logging
import threading
import time
from hashlib import sha256
from pathlib import Path
from typing import Callable, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, TypeAdapter

from securechain.config.settings import BackendConfig, CacheConfig
from securechain.models.identity import BackendIdentity
from securechain.models.results import BackendTaskResult, TaskStatus

logger = logging.getLogger(__name__)

# Fields that change scheduling but not what a backend reports.
_SCHEDULING_FIELDS = {"enabled", "max_concurrency"}


def config_fingerprint(config: BackendConfig) -> str:
    """Stable hash of the result-relevant part of a backend configuration."""
    data = config.model_dump(mode="json", exclude=_SCHEDULING_FIELDS)
    data["platforms"] = sorted(data["platforms"])
    encoded = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return sha256(encoded.encode()).hexdigest()


class CacheKey(NamedTuple):
    artifact_fingerprint: str
    backend: BackendIdentity
    config_fingerprint: str


class CacheEntry(BaseModel):
    """One cached result. Entries are replaced whole, never edited."""

    model_config = ConfigDict(frozen=True)

    artifact_fingerprint: str
    backend: BackendIdentity
    config_fingerprint: str
    value: BackendTaskResult
    inserted_at: float
    ttl: float

    @property
    def key(self) -> CacheKey:
        return CacheKey(self.artifact_fingerprint, self.backend, self.config_fingerprint)

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


_ENTRY_LIST = TypeAdapter(List[CacheEntry])


class ResultCache:
    """Maps (artifact, backend, config) to the backend's last result.

    Expired entries are removed on read and by :meth:`sweep`. A lock
    guards the table so concurrent readers never see a torn value and
    the last completed ``put`` wins.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: CacheKey) -> Optional[BackendTaskResult]:
        """Return the cached result, or None if missing or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(now):
                del self._entries[key]
                self._evictions += 1
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def put(
        self,
        key: CacheKey,
        result: BackendTaskResult,
        ttl: Optional[float] = None,
    ) -> bool:
        """Store a result, replacing any existing entry.

        Failed and timed-out results are stored only when failure
        caching is enabled; skipped results never are.

        Returns:
            True if the result was stored
        """
        if not self.is_cacheable(result):
            return False
        entry = CacheEntry(
            artifact_fingerprint=key.artifact_fingerprint,
            backend=key.backend,
            config_fingerprint=key.config_fingerprint,
            value=result.model_copy(update={"from_cache": False}),
            inserted_at=self._clock(),
            ttl=self.config.ttl if ttl is None else ttl,
        )
        with self._lock:
            self._entries[key] = entry
        return True

    def is_cacheable(self, result: BackendTaskResult) -> bool:
        if result.status is TaskStatus.SUCCESS:
            return True
        if result.status in (TaskStatus.FAILED, TaskStatus.TIMED_OUT):
            return self.config.cache_failures
        return False

    def invalidate(self, key: CacheKey) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in expired:
                del self._entries[k]
            self._evictions += len(expired)
        if expired:
            logger.debug("event=cache_sweep evicted=%d", len(expired))
        return len(expired)

    async def run_sweeper(self, interval: Optional[float] = None) -> None:
        """Sweep periodically until cancelled."""
        interval = interval or self.config.sweep_interval
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        return len(self._entries)

    def save(self, path: Path) -> None:
        """Write unexpired entries to a JSON snapshot."""
        now = self._clock()
        with self._lock:
            entries = [e for e in self._entries.values() if not e.is_expired(now)]
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(_ENTRY_LIST.dump_json(entries, indent=2))
        tmp.replace(path)

    def load(self, path: Path) -> int:
        """Merge unexpired entries from a snapshot written by :meth:`save`.

        Returns:
            Number of entries loaded
        """
        path = Path(path)
        if not path.exists():
            return 0
        entries = _ENTRY_LIST.validate_json(path.read_bytes())
        now = self._clock()
        loaded = 0
        with self._lock:
            for entry in entries:
                if not entry.is_expired(now):
                    self._entries[entry.key] = entry
                    loaded += 1
        logger.info("event=cache_loaded entries=%d path=%s", loaded, path)
        return loaded
