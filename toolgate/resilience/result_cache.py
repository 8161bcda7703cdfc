"""
toolgate - Result Cache
=======================

In-memory TTL memoization keyed by a stable hash of (operation, parameters).

Only successful results are stored, so a transient failure never poisons
later identical calls. Entries expire lazily on read and through a sweep that
runs at most once per ``check_period``.

Usage:
    cache = ResultCache()
    key = generate_cache_key("npm-exec", {"command": "view", "args": ["left-pad"]})
    result = await cache.with_cache(key, lambda: run_npm_view())
"""

import functools
import hashlib
import json
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

from ..observability.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

CACHE_VERSION = "v1"

# Seconds
CACHE_TTL_CONFIG: dict[str, float] = {
    "npm-view": 14400,
    "npm-exec": 7200,
    "gh-exec": 1800,
    "default": 86400,
}

_KEY_PREFIX_RE = re.compile(r"^v\d+-([^:]+):")
_MISSING = object()


def normalize_params(value: Any) -> Any:
    """Normalize a parameter value into a canonical JSON-compatible shape."""
    if isinstance(value, dict):
        return {str(k): normalize_params(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_params(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((normalize_params(v) for v in value), key=lambda v: json.dumps(v, sort_keys=True, default=str))
    if isinstance(value, Enum):
        return normalize_params(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def generate_cache_key(prefix: str, params: Any) -> str:
    """Compute a versioned key whose hash ignores mapping field order."""
    canonical = json.dumps(
        normalize_params(params),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{CACHE_VERSION}-{prefix}:{digest}"


def ttl_for_key(key: str, ttl_config: dict[str, float] | None = None) -> float:
    config = ttl_config or CACHE_TTL_CONFIG
    match = _KEY_PREFIX_RE.match(key)
    prefix = match.group(1) if match else "default"
    return config.get(prefix, config.get("default", CACHE_TTL_CONFIG["default"]))


def is_cacheable_result(result: Any) -> bool:
    """Default success test: anything not flagged as an error."""
    if isinstance(result, dict):
        return not (result.get("is_error") or result.get("isError"))
    return not getattr(result, "is_error", False)


@dataclass(frozen=True)
class CacheEntry:
    """A stored value. Replaced wholesale on rewrite, never mutated."""
    key: str
    value: Any
    inserted_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.inserted_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    total_keys: int = 0
    last_reset: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "total_keys": self.total_keys,
            "hit_rate": self.hit_rate,
            "last_reset": self.last_reset.isoformat(),
        }


class ResultCache:
    """
    TTL cache for command results.

    The map is only touched from the event loop thread, between awaits, so
    it needs no lock under asyncio. A threaded caller must add one.
    """

    def __init__(
        self,
        default_ttl: float | None = None,
        check_period: float = 3600.0,
        ttl_config: dict[str, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_config = dict(ttl_config or CACHE_TTL_CONFIG)
        if default_ttl is not None:
            self.ttl_config["default"] = default_ttl
        self.check_period = check_period
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._last_sweep = clock()
        self._stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for ``key``, evicting it if expired."""
        self._maybe_sweep()
        entry = self._entries.get(key)
        if entry is None:
            return default
        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._stats.total_keys = len(self._entries)
            return default
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> CacheEntry:
        self._maybe_sweep()
        entry = CacheEntry(
            key=key,
            value=value,
            inserted_at=self._clock(),
            ttl=ttl if ttl is not None else ttl_for_key(key, self.ttl_config),
        )
        self._entries[key] = entry
        self._stats.sets += 1
        self._stats.total_keys = len(self._entries)
        return entry

    def delete(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        self._stats.total_keys = len(self._entries)
        return removed

    def keys(self) -> list[str]:
        now = self._clock()
        return [k for k, e in self._entries.items() if not e.is_expired(now)]

    def sweep(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._last_sweep = now
        self._stats.total_keys = len(self._entries)
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    def _maybe_sweep(self):
        if self._clock() - self._last_sweep >= self.check_period:
            self.sweep()

    def clear(self):
        """Remove all entries and reset statistics."""
        self._entries.clear()
        self._stats = CacheStats()
        self._last_sweep = self._clock()

    def get_stats(self) -> dict[str, Any]:
        return self._stats.to_dict()

    async def with_cache(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: float | None = None,
        skip_cache: bool = False,
        force_refresh: bool = False,
        should_cache: Callable[[T], bool] | None = None,
    ) -> T:
        """
        Return the cached value for ``key`` or run ``producer`` and store it.

        Args:
            key: Cache key, usually from generate_cache_key()
            producer: Zero-argument coroutine function computing the value
            ttl: Override the prefix TTL for this entry
            skip_cache: Neither read nor write the cache
            force_refresh: Ignore a cached value but store the fresh one
            should_cache: Predicate deciding whether a value is a success

        Returns:
            The cached or freshly produced value
        """
        if skip_cache:
            return await producer()

        if not force_refresh:
            cached = self.get(key, _MISSING)
            if cached is not _MISSING:
                self._stats.hits += 1
                logger.debug(f"Cache hit: {key}")
                return cached

        self._stats.misses += 1
        result = await producer()

        accept = should_cache or is_cacheable_result
        if accept(result):
            self.set(key, result, ttl)
        else:
            logger.debug(f"Not caching unsuccessful result for {key}")

        return result

    def memoize(
        self,
        prefix: str,
        ttl: float | None = None,
        should_cache: Callable[[Any], bool] | None = None,
    ) -> Callable:
        """
        Decorator memoizing an async function on its call arguments.

        Usage:
            @cache.memoize("npm-view")
            async def view_package(name: str) -> ExecutionResult:
                ...
        """
        def decorator(func: Callable) -> Callable:
            @functools.wraps(func)
            async def wrapper(*args: Any, **kwargs: Any) -> Any:
                key = generate_cache_key(prefix, {"args": args, "kwargs": kwargs})
                return await self.with_cache(
                    key,
                    lambda: func(*args, **kwargs),
                    ttl=ttl,
                    should_cache=should_cache,
                )
            return wrapper
        return decorator


# Global cache instance
_default_cache: ResultCache | None = None


def get_result_cache() -> ResultCache:
    """Get or create the default ResultCache instance"""
    global _default_cache
    if _default_cache is None:
        from ..config import get_settings

        settings = get_settings()
        _default_cache = ResultCache(
            default_ttl=settings.CACHE_DEFAULT_TTL,
            check_period=settings.CACHE_CHECK_PERIOD,
        )
    return _default_cache


def set_result_cache(cache: ResultCache | None):
    """Set the default ResultCache instance"""
    global _default_cache
    _default_cache = cache
