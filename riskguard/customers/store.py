"""
Customer Trust Record Storage

One record per (organization, customer). Updates are read-modify-write
cycles, made atomic per key the same way as tracker writes.

Key format: {prefix}customer:{organization}:{customer}
"""

import asyncio
import logging
import weakref
from typing import Callable, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from ..errors import TrustStorageError
from ..metrics import metrics
from ..schemas import CustomerTrustRecord

logger = logging.getLogger("riskguard.customers")

RecordMutation = Callable[[Optional[CustomerTrustRecord]], Optional[CustomerTrustRecord]]


class CustomerTrustStore(Protocol):
    """Storage contract for customer trust records."""

    async def get(self, organization_id: str, customer_id: str) -> Optional[CustomerTrustRecord]: ...

    async def update(
        self, organization_id: str, customer_id: str, mutate: RecordMutation
    ) -> Optional[CustomerTrustRecord]: ...

    async def list_by_organization(self, organization_id: str) -> list[CustomerTrustRecord]: ...


class InMemoryCustomerStore:
    """Process-local trust record store with per-key locks."""

    def __init__(self):
        self._records: dict[tuple[str, str], CustomerTrustRecord] = {}
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def get(self, organization_id: str, customer_id: str) -> Optional[CustomerTrustRecord]:
        record = self._records.get((organization_id, customer_id))
        return record.model_copy(deep=True) if record else None

    async def update(
        self, organization_id: str, customer_id: str, mutate: RecordMutation
    ) -> Optional[CustomerTrustRecord]:
        key = (organization_id, customer_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            current = self._records.get(key)
            snapshot = current.model_copy(deep=True) if current else None
            updated = mutate(snapshot)
            if updated is None:
                return snapshot
            self._records[key] = updated.model_copy(deep=True)
            return updated

    async def list_by_organization(self, organization_id: str) -> list[CustomerTrustRecord]:
        return [
            r.model_copy(deep=True)
            for (org, _), r in self._records.items()
            if org == organization_id
        ]


class RedisCustomerStore:
    """Redis-backed trust record store (JSON string per customer)."""

    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str = "riskguard:",
        max_retries: int = 5,
    ):
        """
        Initialize customer store.

        Args:
            redis_client: Async Redis client
            key_prefix: Prefix for all Redis keys
            max_retries: Optimistic write attempts before giving up
        """
        self.redis = redis_client
        self.prefix = key_prefix
        self.max_retries = max_retries

    def _make_key(self, organization_id: str, customer_id: str) -> str:
        return f"{self.prefix}customer:{organization_id}:{customer_id}"

    def _index_key(self, organization_id: str) -> str:
        return f"{self.prefix}customers:{organization_id}"

    @staticmethod
    def _decode(raw) -> Optional[CustomerTrustRecord]:
        if raw is None:
            return None
        return CustomerTrustRecord.model_validate_json(raw)

    async def get(self, organization_id: str, customer_id: str) -> Optional[CustomerTrustRecord]:
        key = self._make_key(organization_id, customer_id)
        try:
            return self._decode(await self.redis.get(key))
        except (RedisConnectionError, RedisTimeoutError) as e:
            metrics.storage_errors.labels(store="customer").inc()
            raise TrustStorageError(f"Trust record read failed for {key}: {e}") from e

    async def update(
        self, organization_id: str, customer_id: str, mutate: RecordMutation
    ) -> Optional[CustomerTrustRecord]:
        """
        Apply mutate inside a WATCH/MULTI transaction, retrying on conflict.

        Raises:
            TrustStorageError: retries exhausted or Redis unavailable
        """
        key = self._make_key(organization_id, customer_id)
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

                    pipe.multi()
                    pipe.set(key, updated.model_dump_json())
                    pipe.sadd(index_key, key)
                    await pipe.execute()
                    return updated

            except WatchError:
                logger.info(
                    "Trust record conflict on %s (attempt %d/%d), retrying",
                    key, attempt, self.max_retries,
                )
                continue
            except (RedisConnectionError, RedisTimeoutError) as e:
                metrics.storage_errors.labels(store="customer").inc()
                raise TrustStorageError(f"Trust record write failed for {key}: {e}") from e

        metrics.storage_errors.labels(store="customer").inc()
        raise TrustStorageError(f"Trust record write for {key} lost {self.max_retries} optimistic races")

    async def list_by_organization(self, organization_id: str) -> list[CustomerTrustRecord]:
        try:
            keys = await self.redis.smembers(self._index_key(organization_id))
            if not keys:
                return []
            values = await self.redis.mget(sorted(keys))
        except (RedisConnectionError, RedisTimeoutError) as e:
            metrics.storage_errors.labels(store="customer").inc()
            raise TrustStorageError(f"Trust record listing failed for {organization_id}: {e}") from e
        return [r for r in (self._decode(v) for v in values) if r is not None]
