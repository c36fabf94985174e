"""Tests for the TTL result cache."""

import asyncio

import pytest

from securechain.config.settings import BackendConfig, CacheConfig
from securechain.core.cache import CacheKey, ResultCache, config_fingerprint
from securechain.errors import ErrorKind
from securechain.models.finding import RawFinding
from securechain.models.identity import BackendIdentity
from securechain.models.results import BackendTaskResult


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def key():
    return CacheKey("a" * 64, BackendIdentity(name="slither", version="0.10.0"), "cfg")


@pytest.fixture
def success():
    return BackendTaskResult.success([RawFinding(title="Reentrancy", severity="High")])


class TestResultCache:
    """Test ResultCache behaviour."""

    def test_put_then_get(self, clock, key, success):
        cache = ResultCache(CacheConfig(ttl=60), clock=clock)

        assert cache.put(key, success)
        assert cache.get(key) == success

    def test_miss(self, clock, key):
        cache = ResultCache(clock=clock)

        assert cache.get(key) is None
        assert cache.stats()["misses"] == 1

    def test_entry_expires_at_ttl(self, clock, key, success):
        cache = ResultCache(CacheConfig(ttl=60), clock=clock)
        cache.put(key, success)

        clock.advance(59.9)
        assert cache.get(key) is not None

        clock.advance(0.1)
        assert cache.get(key) is None

    def test_zero_ttl_never_hits(self, clock, key, success):
        cache = ResultCache(CacheConfig(ttl=0), clock=clock)
        cache.put(key, success)

        assert cache.get(key) is None

    def test_expired_entry_evicted_on_read(self, clock, key, success):
        cache = ResultCache(CacheConfig(ttl=10), clock=clock)
        cache.put(key, success)
        clock.advance(11)

        assert len(cache) == 1
        cache.get(key)
        assert len(cache) == 0
        assert cache.stats()["evictions"] == 1

    def test_per_entry_ttl(self, clock, key, success):
        cache = ResultCache(CacheConfig(ttl=10), clock=clock)
        cache.put(key, success, ttl=100)
        clock.advance(50)

        assert cache.get(key) == success

    def test_last_put_wins(self, clock, key, success):
        cache = ResultCache(clock=clock)
        newer = BackendTaskResult.success([], attempts=2)

        cache.put(key, success)
        cache.put(key, newer)

        assert cache.get(key) == newer

    def test_failures_not_cached_by_default(self, clock, key):
        cache = ResultCache(clock=clock)

        assert not cache.put(key, BackendTaskResult.failed(ErrorKind.TRANSIENT, 3))
        assert not cache.put(key, BackendTaskResult.timed_out())
        assert cache.get(key) is None

    def test_failures_cached_when_enabled(self, clock, key):
        cache = ResultCache(CacheConfig(cache_failures=True), clock=clock)
        failed = BackendTaskResult.failed(ErrorKind.FATAL, 1, "bad auth")

        assert cache.put(key, failed)
        assert cache.get(key) == failed

    def test_skipped_never_cached(self, clock, key):
        cache = ResultCache(CacheConfig(cache_failures=True), clock=clock)

        assert not cache.put(key, BackendTaskResult.skipped("disabled"))

    def test_cached_value_not_marked_from_cache(self, clock, key, success):
        cache = ResultCache(clock=clock)
        cache.put(key, success.as_cached())

        assert cache.get(key).from_cache is False

    def test_keys_distinguish_backend_version(self, clock, key, success):
        cache = ResultCache(clock=clock)
        cache.put(key, success)
        other = key._replace(backend=BackendIdentity(name="slither", version="0.11.0"))

        assert cache.get(other) is None

    def test_invalidate_and_clear(self, clock, key, success):
        cache = ResultCache(clock=clock)
        cache.put(key, success)

        assert cache.invalidate(key)
        assert not cache.invalidate(key)

        cache.put(key, success)
        cache.clear()
        assert len(cache) == 0

    def test_sweep_removes_only_expired(self, clock, key, success):
        cache = ResultCache(CacheConfig(ttl=10), clock=clock)
        cache.put(key, success)
        clock.advance(5)
        fresh = key._replace(config_fingerprint="other")
        cache.put(fresh, success)
        clock.advance(6)

        assert cache.sweep() == 1
        assert cache.get(fresh) == success

    @pytest.mark.asyncio
    async def test_background_sweeper(self, clock, key, success):
        cache = ResultCache(CacheConfig(ttl=10), clock=clock)
        cache.put(key, success)
        clock.advance(11)

        sweeper = asyncio.create_task(cache.run_sweeper(interval=0.01))
        await asyncio.sleep(0.05)
        sweeper.cancel()

        assert len(cache) == 0
        assert cache.stats()["evictions"] == 1

    def test_save_and_load(self, tmp_path, clock, key, success):
        path = tmp_path / "cache" / "results.json"
        cache = ResultCache(CacheConfig(ttl=100), clock=clock)
        cache.put(key, success)
        cache.save(path)

        restored = ResultCache(CacheConfig(ttl=100), clock=clock)
        assert restored.load(path) == 1
        assert restored.get(key) == success

    def test_load_skips_expired_entries(self, tmp_path, clock, key, success):
        path = tmp_path / "results.json"
        cache = ResultCache(CacheConfig(ttl=10), clock=clock)
        cache.put(key, success)
        cache.save(path)

        clock.advance(20)
        restored = ResultCache(clock=clock)
        assert restored.load(path) == 0

    def test_load_missing_file(self, tmp_path):
        assert ResultCache().load(tmp_path / "missing.json") == 0


class TestConfigFingerprint:
    def test_stable(self):
        assert config_fingerprint(BackendConfig()) == config_fingerprint(BackendConfig())

    def test_options_change_fingerprint(self):
        base = BackendConfig(options={"test-limit": 1000})
        changed = BackendConfig(options={"test-limit": 5000})

        assert config_fingerprint(base) != config_fingerprint(changed)

    def test_scheduling_fields_ignored(self):
        assert config_fingerprint(BackendConfig(max_concurrency=1)) == config_fingerprint(
            BackendConfig(max_concurrency=4)
        )
