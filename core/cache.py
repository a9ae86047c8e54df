"""
Three-Tier Page Cache.

Rendered profile pages are cached in three tiers, each behind the same
`CacheBackend` interface:

- short-term: in-memory, 100 entries, 5 second TTL. Always consulted, even on a
  forced refresh, so refresh-button double clicks never reach the upstream API.
- mid-term: in-memory, 1000 entries, 3 hour TTL.
- persistent: one HTML file per account on disk, never expired by time. Files
  are only removed when a fetch finds that the user has opted out.

Key Components:
- `CacheEntry`: A cached value with creation/expiry metadata.
- `CacheBackend` (ABC): The interface every tier implements.
- `MemoryCacheBackend`: Size-bounded LRU with a per-backend TTL. Expired entries
  are never returned, even while still resident.
- `FileCacheBackend`: The persistent tier. Files are named by the MD5 of the
  cache key. Missing and empty files are misses; any other I/O error is a
  `StorageFailureError`.
- `CacheHierarchy`: Lookup order, promotion on read, write-through and
  invalidation across the three tiers.

All keys are canonical encoded account names, never raw input.
"""

import asyncio
import hashlib
import os
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from core.exceptions import StorageFailureError
from core.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """Cache entry with metadata"""

    value: Any
    created_at: float
    expires_at: Optional[float] = None
    access_count: int = 0

    def is_expired(self, now: float) -> bool:
        """Check if cache entry has expired"""
        if self.expires_at is None:
            return False
        return now >= self.expires_at


class CacheBackend(ABC):
    """Abstract base class for cache backends"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get cache entry value by key"""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Set cache entry with optional TTL"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete cache entry"""
        pass

    @abstractmethod
    async def clear(self) -> bool:
        """Clear all cache entries"""
        pass

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        """Get cache statistics"""
        pass


class MemoryCacheBackend(CacheBackend):
    """In-memory cache backend with LRU eviction and TTL expiry"""

    def __init__(
        self,
        max_size: int = 1000,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "memory",
    ):
        self.max_size = max_size
        self.default_ttl = ttl
        self.name = name
        self._clock = clock
        self.cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    async def get(self, key: str) -> Optional[Any]:
        entry = self.cache.get(key)
        if entry is None:
            self.misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self.cache[key]
            self.misses += 1
            logger.debug(f"{self.name} cache expired for key: {key}")
            return None

        entry.access_count += 1
        self.cache.move_to_end(key)
        self.hits += 1
        return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        ttl = self.default_ttl if ttl is None else ttl
        now = self._clock()
        entry = CacheEntry(
            value=value,
            created_at=now,
            expires_at=now + ttl if ttl is not None else None,
        )

        if key in self.cache:
            del self.cache[key]
        self._ensure_capacity()
        self.cache[key] = entry
        return True

    async def delete(self, key: str) -> bool:
        return self.cache.pop(key, None) is not None

    async def clear(self) -> bool:
        self.cache.clear()
        return True

    async def stats(self) -> Dict[str, Any]:
        total_requests = self.hits + self.misses
        return {
            "backend": "memory",
            "tier": self.name,
            "entries": len(self.cache),
            "max_size": self.max_size,
            "ttl_seconds": self.default_ttl,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total_requests if total_requests else 0.0,
            "evictions": self.evictions,
        }

    def _ensure_capacity(self) -> None:
        while len(self.cache) >= self.max_size and self.cache:
            lru_key, _ = self.cache.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Evicted LRU key from {self.name} cache: {lru_key}")


class FileCacheBackend(CacheBackend):
    """Persistent cache backend storing one HTML file per key"""

    def __init__(self, directory: Path, suffix: str = ".html"):
        self.directory = Path(directory)
        self.suffix = suffix
        self.directory.mkdir(parents=True, exist_ok=True)
        self.hits = 0
        self.misses = 0

    def path_for(self, key: str) -> Path:
        digest = hashlib.md5(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}{self.suffix}"

    async def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            self.misses += 1
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error reading cache file {path} for key {key}: {e}")
            raise StorageFailureError("read", str(path), str(e))

        # A crash mid-write can leave an empty file behind
        if not content.strip():
            self.misses += 1
            return None

        self.hits += 1
        return content

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(self._write_atomic, path, value)
        except OSError as e:
            logger.error(f"Error writing cache file {path} for key {key}: {e}")
            raise StorageFailureError("write", str(path), str(e))
        return True

    async def delete(self, key: str) -> bool:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Error deleting cache file {path} for key {key}: {e}")
            raise StorageFailureError("delete", str(path), str(e))
        return True

    async def clear(self) -> bool:
        for path in self.directory.glob(f"*{self.suffix}"):
            await asyncio.to_thread(path.unlink, missing_ok=True)
        return True

    async def stats(self) -> Dict[str, Any]:
        return {
            "backend": "file",
            "tier": "persistent",
            "directory": str(self.directory),
            "hits": self.hits,
            "misses": self.misses,
        }

    @staticmethod
    def _write_atomic(path: Path, value: str) -> None:
        tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        tmp_path.write_text(value, encoding="utf-8")
        os.replace(tmp_path, path)


class CacheTier(str, Enum):
    SHORT_TERM = "short_term"
    MID_TERM = "mid_term"
    PERSISTENT = "persistent"


@dataclass(frozen=True)
class CacheHit:
    tier: CacheTier
    html: str


class CacheHierarchy:
    """Short-term, mid-term and persistent tiers behind one lookup/write API"""

    def __init__(
        self,
        short_term: CacheBackend,
        mid_term: CacheBackend,
        persistent: CacheBackend,
        promote_on_read: bool = True,
    ):
        self.short_term = short_term
        self.mid_term = mid_term
        self.persistent = persistent
        self.promote_on_read = promote_on_read

    async def lookup(self, key: str, allow_stale: bool = True) -> Optional[CacheHit]:
        """
        Find a cached page for `key`.

        The short-term tier is always consulted. `allow_stale=False` (a forced
        refresh) skips the mid-term and persistent tiers. Hits in a lower tier
        are copied into the faster tiers above it when `promote_on_read` is set.
        Raises StorageFailureError when the persistent tier cannot be read.
        """
        html = await self.short_term.get(key)
        if html is not None:
            logger.info(f"ShortTerm cache hit for key: {key}")
            return CacheHit(CacheTier.SHORT_TERM, html)

        if not allow_stale:
            return None

        html = await self.mid_term.get(key)
        if html is not None:
            logger.info(f"MidTerm cache hit for key: {key}")
            if self.promote_on_read:
                await self.short_term.set(key, html)
            return CacheHit(CacheTier.MID_TERM, html)

        html = await self.persistent.get(key)
        if html is not None:
            logger.info(f"File cache hit for key: {key}")
            if self.promote_on_read:
                await self.mid_term.set(key, html)
                await self.short_term.set(key, html)
            return CacheHit(CacheTier.PERSISTENT, html)

        return None

    async def put(self, key: str, html: str) -> None:
        """Write a freshly rendered page through all three tiers"""
        await self.short_term.set(key, html)
        await self.mid_term.set(key, html)
        await self.persistent.set(key, html)
        logger.debug(f"Wrote page through all cache tiers for key: {key}")

    async def invalidate(self, key: str) -> None:
        """Drop `key` from every tier; a missing file is not an error"""
        await self.short_term.delete(key)
        await self.mid_term.delete(key)
        removed = await self.persistent.delete(key)
        logger.info(f"Invalidated cache for key: {key} (file removed: {removed})")

    async def stats(self) -> Dict[str, Any]:
        return {
            CacheTier.SHORT_TERM.value: await self.short_term.stats(),
            CacheTier.MID_TERM.value: await self.mid_term.stats(),
            CacheTier.PERSISTENT.value: await self.persistent.stats(),
        }
