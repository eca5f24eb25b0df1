"""
Cache Service
=============
Caching of test-case listings to avoid refetching whole runs per bug.

Cacheable:
    - Test-case listings of a run (steps, preconditions, expected results)
      keyed by ``tests-run-<run_id>``

NOT Cacheable:
    - Result histories (change every time a result is posted)
    - Issue statuses (external workflow state, gate must see it fresh)

Cache invalidation:
    - Entries expire after CACHE_TTL_SECONDS (24h by default)
    - Expired files are dropped by load_from_disk() and on read
    - /api/cache/clear and /api/cache/refresh drop entries on demand

Storage:
    - In-memory dict mirrored to one JSON file per key under CACHE_DIR so a
      restart does not force a full refetch
"""
import json
import logging
import os
import time
from typing import Any, Optional

from linker.core import config

logger = logging.getLogger(__name__)


class TestCaseCache:
    """
    TTL cache for run listings.

    Usage:
        cache = TestCaseCache()
        key = TestCaseCache.tests_key("1234")
        if (tests := cache.get(key)) is None:
            tests = fetch()
            cache.set(key, tests)
    """

    __test__ = False

    def __init__(
        self,
        cache_dir: str = config.CACHE_DIR,
        default_ttl: int = config.CACHE_TTL_SECONDS,
    ) -> None:
        self.cache_dir = cache_dir
        self.default_ttl = default_ttl
        # key → {"data", "cached_at", "expires_at"} (epoch seconds)
        self._entries: dict[str, dict] = {}

    @staticmethod
    def tests_key(run_id: str) -> str:
        return f"tests-run-{run_id}"

    def _file_for(self, key: str) -> str:
        return os.path.join(self.cache_dir, f"{key}.json")

    def load_from_disk(self) -> int:
        """
        Load unexpired cache files into memory and delete expired ones.

        Returns
        -------
        int
            Number of entries loaded.
        """
        os.makedirs(self.cache_dir, exist_ok=True)
        loaded = 0
        now = time.time()
        for name in os.listdir(self.cache_dir):
            if not name.endswith(".json"):
                continue
            path = os.path.join(self.cache_dir, name)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    entry = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable cache file %s: %s", name, e)
                continue

            if entry.get("expires_at", 0) > now:
                self._entries[name[: -len(".json")]] = entry
                loaded += 1
            else:
                os.remove(path)
                logger.info("Deleted expired cache: %s", name)
        logger.info("Cache service initialized (%d entries)", loaded)
        return loaded

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            logger.info("Cache miss: %s", key)
            return None
        if entry["expires_at"] < time.time():
            logger.info("Cache expired: %s", key)
            self.delete(key)
            return None
        logger.info("Cache hit: %s", key)
        return entry["data"]

    def set(self, key: str, data: Any, ttl: Optional[int] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        now = time.time()
        entry = {"data": data, "cached_at": now, "expires_at": now + ttl}
        self._entries[key] = entry

        # Disk mirror is best effort; the in-memory entry is already usable
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            with open(self._file_for(key), "w", encoding="utf-8") as f:
                json.dump(entry, f)
            logger.info("Cached: %s (TTL: %d minutes)", key, ttl // 60)
        except OSError as e:
            logger.error("Failed to write cache to disk: %s", e)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)
        try:
            os.remove(self._file_for(key))
            logger.info("Deleted cache: %s", key)
        except FileNotFoundError:
            pass

    def clear_all(self) -> None:
        self._entries.clear()
        if os.path.isdir(self.cache_dir):
            for name in os.listdir(self.cache_dir):
                if name.endswith(".json"):
                    os.remove(os.path.join(self.cache_dir, name))
        logger.info("All cache cleared")

    def get_stats(self) -> dict:
        caches = []
        for key, entry in self._entries.items():
            caches.append({
                "key": key,
                "cached_at": _iso(entry["cached_at"]),
                "expires_at": _iso(entry["expires_at"]),
                "data_size": len(json.dumps(entry["data"])),
            })
        return {"total_cached": len(self._entries), "caches": caches}


def _iso(epoch: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(epoch))
