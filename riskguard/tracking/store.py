"""
Card Testing Tracker Storage

Every tracker write is a read-modify-write of the whole record keyed by
(organization, invoice, session). Both backends make that cycle atomic
per key without a global lock:

- InMemoryTrackerStore: one asyncio.Lock per key
- RedisTrackerStore: WATCH/MULTI optimistic transaction on the key,
  retried when a concurrent writer bumps it first

Key format: {prefix}tracker:{organization}:{invoice}:{session}
Example: riskguard:tracker:org_1:in_123:_
"""

import asyncio
import logging
import weakref
from typing import Callable, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from ..errors import TrackerStorageError
from ..metrics import metrics
from ..schemas import CardTestingTracker

logger = logging.getLogger("riskguard.tracking")

NO_SESSION = "_"

# Receives the current record (None if absent) and returns the record to
# persist, or None to leave storage untouched.
TrackerMutation = Callable[[Optional[CardTestingTracker]], Optional[CardTestingTracker]]


def tracker_key(organization_id: str, invoice_id: str, session_id: Optional[str] = None) -> tuple[str, str, str]:
    """Normalized tracker identity."""
    return organization_id, invoice_id, session_id or NO_SESSION


class TrackerStore(Protocol):
    """Storage contract for card testing trackers."""

    async def get(
        self, organization_id: str, invoice_id: str, session_id: Optional[str] = None
    ) -> Optional[CardTestingTracker]: ...

    async def update(
        self,
        organization_id: str,
        invoice_id: str,
        session_id: Optional[str],
        mutate: TrackerMutation,
    ) -> Optional[CardTestingTracker]: ...

    async def list_by_organization(self, organization_id: str) -> list[CardTestingTracker]: ...


class InMemoryTrackerStore:
    """
    Process-local tracker store.

    Records are copied on the way in and out so callers can never mutate
    stored state without going through update().
    """

    def __init__(self):
        self._trackers: dict[tuple[str, str, str], CardTestingTracker] = {}
        # Locks live only while some update holds or awaits them
        self._locks: weakref.WeakValueDictionary[tuple[str, str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, key: tuple[str, str, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _load(self, key: tuple[str, str, str]) -> Optional[CardTestingTracker]:
        return self._trackers.get(key)

    async def get(
        self, organization_id: str, invoice_id: str, session_id: Optional[str] = None
    ) -> Optional[CardTestingTracker]:
        tracker = self._trackers.get(tracker_key(organization_id, invoice_id, session_id))
        return tracker.model_copy(deep=True) if tracker else None

    async def update(
        self,
        organization_id: str,
        invoice_id: str,
        session_id: Optional[str],
        mutate: TrackerMutation,
    ) -> Optional[CardTestingTracker]:
        """
        Apply mutate under the key's lock.

        Returns:
            The persisted record, or the current record if mutate wrote nothing
        """
        key = tracker_key(organization_id, invoice_id, session_id)
        async with self._lock_for(key):
            current = await self._load(key)
            snapshot = current.model_copy(deep=True) if current else None
            updated = mutate(snapshot)
            if updated is None:
                return snapshot
            updated.version = (current.version if current else 0) + 1
            self._trackers[key] = updated.model_copy(deep=True)
            return updated

    async def list_by_organization(self, organization_id: str) -> list[CardTestingTracker]:
        return [
            t.model_copy(deep=True)
            for (org, _, _), t in self._trackers.items()
            if org == organization_id
        ]


class RedisTrackerStore:
    """
    Redis-backed tracker store.

    Each tracker is one JSON string key. A per-organization set indexes
    the tracker keys for list_by_organization().
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str = "riskguard:",
        ttl_seconds: int = 2592000,  # 30 days
        max_retries: int = 5,
    ):
        """
        Initialize tracker store.

        Args:
            redis_client: Async Redis client
            key_prefix: Prefix for all Redis keys
            ttl_seconds: TTL refreshed on every write
            max_retries: Optimistic write attempts before giving up
        """
        self.redis = redis_client
        self.prefix = key_prefix
        self.ttl = ttl_seconds
        self.max_retries = max_retries

    def _make_key(self, organization_id: str, invoice_id: str, session_id: Optional[str]) -> str:
        org, invoice, session = tracker_key(organization_id, invoice_id, session_id)
        return f"{self.prefix}tracker:{org}:{invoice}:{session}"

    def _index_key(self, organization_id: str) -> str:
        return f"{self.prefix}trackers:{organization_id}"

    @staticmethod
    def _decode(raw) -> Optional[CardTestingTracker]:
        if raw is None:
            return None
        return CardTestingTracker.model_validate_json(raw)

    async def get(
        self, organization_id: str, invoice_id: str, session_id: Optional[str] = None
    ) -> Optional[CardTestingTracker]:
        key = self._make_key(organization_id, invoice_id, session_id)
        try:
            raw = await self.redis.get(key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            metrics.storage_errors.labels(store="tracker").inc()
            raise TrackerStorageError(f"Tracker read failed for {key}: {e}") from e
        return self._decode(raw)

    async def update(
        self,
        organization_id: str,
        invoice_id: str,
        session_id: Optional[str],
        mutate: TrackerMutation,
    ) -> Optional[CardTestingTracker]:
        """
        Apply mutate inside a WATCH/MULTI transaction.

        The version read under WATCH must still be current at EXEC time;
        otherwise Redis aborts the transaction and the whole cycle is
        retried against the fresh record.

        Raises:
            TrackerStorageError: retries exhausted or Redis unavailable
        """
        key = self._make_key(organization_id, invoice_id, session_id)
        index_key = self._index_key(organization_id)

        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    current = self._decode(await pipe.get(key))

                    updated = mutate(current.model_copy(deep=True) if current else None)
                    if updated is None:
                        await pipe.unwatch()
                        return current

                    updated.version = (current.version if current else 0) + 1

                    pipe.multi()
                    pipe.set(key, updated.model_dump_json(), ex=self.ttl)
                    pipe.sadd(index_key, key)
                    pipe.expire(index_key, self.ttl)
                    await pipe.execute()
                    return updated

            except WatchError:
                metrics.tracker_conflicts.inc()
                logger.info(
                    "Tracker write conflict on %s (attempt %d/%d), retrying",
                    key, attempt, self.max_retries,
                )
                continue
            except (RedisConnectionError, RedisTimeoutError) as e:
                metrics.storage_errors.labels(store="tracker").inc()
                raise TrackerStorageError(f"Tracker write failed for {key}: {e}") from e

        metrics.storage_errors.labels(store="tracker").inc()
        logger.warning("Tracker write on %s gave up after %d conflicts", key, self.max_retries)
        raise TrackerStorageError(
            f"Tracker write for {key} lost {self.max_retries} optimistic races"
        )

    async def list_by_organization(self, organization_id: str) -> list[CardTestingTracker]:
        try:
            keys = await self.redis.smembers(self._index_key(organization_id))
            if not keys:
                return []
            values = await self.redis.mget(sorted(keys))
        except (RedisConnectionError, RedisTimeoutError) as e:
            metrics.storage_errors.labels(store="tracker").inc()
            raise TrackerStorageError(f"Tracker listing failed for {organization_id}: {e}") from e
        return [t for t in (self._decode(v) for v in values) if t is not None]
