"""Client-side policy caching with TTL support.

Scaling policies change rarely, while a batch run may be triggered every
minute. This module keeps loaded policies in memory for a short TTL so the
config table is scanned at most once per TTL. The cache is owned by a
PolicyRepository and invalidated by its save/delete operations.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, cast

from .models import LoadedPolicies, ScalingPolicy

# Sentinel value to distinguish "no policy exists" from "not yet cached"
_NO_POLICY: object = object()


@dataclass
class CacheEntry:
    """A cached value with expiration time."""

    value: Any
    expires_at: float


@dataclass
class CacheStats:
    """Statistics for cache performance monitoring."""

    hits: int = 0
    misses: int = 0
    size: int = 0
    ttl_seconds: int = 0

    def as_dict(self) -> dict[str, int]:
        """Return stats as a dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "ttl": self.ttl_seconds,
        }


@dataclass
class PolicyCache:
    """
    In-memory cache for scaling policies with TTL expiration.

    Caches:
    - The full policy set (what a batch run loads)
    - Single policies by table name (with negative caching)

    A full load also refreshes the per-table entries, so a fetch after a
    load is a hit.

    Args:
        ttl_seconds: Time-to-live for cached entries (0 = disabled)
    """

    ttl_seconds: int = 60
    _enabled: bool = field(init=False, default=True)

    _all: CacheEntry | None = field(init=False, default=None)
    _by_table: dict[str, CacheEntry] = field(init=False, default_factory=dict)

    _hits: int = field(init=False, default=0)
    _misses: int = field(init=False, default=0)

    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        """Initialize derived state after dataclass init."""
        self._enabled = self.ttl_seconds > 0

    def _is_expired(self, entry: CacheEntry) -> bool:
        """Check if a cache entry has expired."""
        return time.time() > entry.expires_at

    def _make_entry(self, value: Any) -> CacheEntry:
        """Create a new cache entry with TTL."""
        return CacheEntry(value=value, expires_at=time.time() + self.ttl_seconds)

    async def get_all(
        self,
        fetch_fn: Callable[[], Awaitable[LoadedPolicies]],
    ) -> LoadedPolicies:
        """
        Get the full policy set, using cache if valid.

        Args:
            fetch_fn: Async function scanning the config table

        Returns:
            LoadedPolicies with parsed policies and rejected entries
        """
        if not self._enabled:
            return await fetch_fn()

        async with self._lock:
            if self._all is not None and not self._is_expired(self._all):
                self._hits += 1
                return cast(LoadedPolicies, self._all.value)

            self._misses += 1
            value = await fetch_fn()
            self._all = self._make_entry(value)
            for policy in value.policies:
                self._by_table[policy.table_name] = self._make_entry(policy)
            return value

    async def get_policy(
        self,
        table_name: str,
        fetch_fn: Callable[[str], Awaitable[ScalingPolicy | None]],
    ) -> ScalingPolicy | None:
        """
        Get one table's policy, using cache if valid (with negative caching).

        Args:
            table_name: Table the policy applies to
            fetch_fn: Async function reading one config item

        Returns:
            The policy, or None if the table is not configured
        """
        if not self._enabled:
            return await fetch_fn(table_name)

        async with self._lock:
            entry = self._by_table.get(table_name)
            if entry is not None and not self._is_expired(entry):
                self._hits += 1
                if entry.value is _NO_POLICY:
                    return None
                return cast(ScalingPolicy, entry.value)

            self._misses += 1
            value = await fetch_fn(table_name)
            self._by_table[table_name] = self._make_entry(
                value if value is not None else _NO_POLICY
            )
            return value

    async def invalidate(self) -> None:
        """
        Invalidate all cached entries.

        Call this after config changes to force refresh.
        """
        async with self._lock:
            self._all = None
            self._by_table.clear()

    def get_stats(self) -> CacheStats:
        """
        Get cache performance statistics.

        Returns:
            CacheStats with hits, misses, size, and TTL
        """
        size = (1 if self._all is not None else 0) + len(self._by_table)
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=size,
            ttl_seconds=self.ttl_seconds,
        )

    @property
    def enabled(self) -> bool:
        """Whether caching is enabled (TTL > 0)."""
        return self._enabled
