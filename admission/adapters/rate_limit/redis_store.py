"""Redis-backed counter store.

Layout:
- One hash per counter at ``{collection}:{doc_id}`` with fields ``count``
  and ``windowStart`` (epoch milliseconds).
- One sorted set ``{collection}#index`` scoring each ``doc_id`` by its
  ``windowStart`` so the sweeper can find aged-out records without a scan.

Transactions use optimistic locking (WATCH/MULTI/EXEC). A conflicting
writer aborts the EXEC and the body is re-run against fresh data, up to a
bounded number of attempts.
"""

from __future__ import annotations

import logging
from typing import Callable

import redis
from redis.exceptions import RedisError, WatchError

from admission.adapters.rate_limit.base import (
    BufferedTransaction,
    CounterRecord,
    CounterStore,
    CounterTransaction,
    T,
)
from admission.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

_COUNT_FIELD = "count"
_WINDOW_START_FIELD = "windowStart"


class RedisCounterStore(CounterStore):
    """Counter store shared by every process talking to one Redis."""

    backend_name = "redis"

    def __init__(
        self,
        client: redis.Redis,
        *,
        collection: str = "_rateLimits",
        max_transaction_retries: int = 5,
    ) -> None:
        if max_transaction_retries < 1:
            raise ValueError("max_transaction_retries must be >= 1")

        self._client = client
        self._collection = collection
        self._index_key = f"{collection}#index"
        self._max_attempts = max_transaction_retries

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        collection: str = "_rateLimits",
        max_transaction_retries: int = 5,
        socket_timeout_seconds: float = 1.0,
    ) -> "RedisCounterStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout_seconds,
            socket_connect_timeout=socket_timeout_seconds,
        )
        return cls(
            client,
            collection=collection,
            max_transaction_retries=max_transaction_retries,
        )

    def _doc_key(self, doc_id: str) -> str:
        return f"{self._collection}:{doc_id}"

    def _decode(self, doc_id: str, raw: dict) -> CounterRecord | None:
        if not raw:
            return None
        try:
            return CounterRecord(
                count=int(raw[_COUNT_FIELD]),
                window_start_ms=int(raw[_WINDOW_START_FIELD]),
            )
        except (KeyError, ValueError):
            # A malformed record is treated as absent and gets overwritten.
            logger.warning(
                "store.malformed_record",
                extra={"doc_id": doc_id, "fields": sorted(raw)},
            )
            return None

    def _parse_window_start(self, doc_id: str, raw: str) -> int | None:
        try:
            return int(raw)
        except ValueError:
            # Unreadable start: the record is garbage and is swept like an expired one.
            logger.warning(
                "store.malformed_record",
                extra={"doc_id": doc_id, "fields": [_WINDOW_START_FIELD]},
            )
            return None

    def run_transaction(
        self, doc_id: str, body: Callable[[CounterTransaction], T]
    ) -> T:
        key = self._doc_key(doc_id)

        try:
            with self._client.pipeline() as pipe:
                for attempt in range(1, self._max_attempts + 1):
                    try:
                        pipe.watch(key)
                        tx = BufferedTransaction(self._decode(doc_id, pipe.hgetall(key)))
                        result = body(tx)

                        if tx.has_writes:
                            pipe.multi()
                            if tx.pending_set is not None:
                                pipe.hset(
                                    key,
                                    mapping={
                                        _COUNT_FIELD: tx.pending_set.count,
                                        _WINDOW_START_FIELD: tx.pending_set.window_start_ms,
                                    },
                                )
                                pipe.zadd(
                                    self._index_key,
                                    {doc_id: tx.pending_set.window_start_ms},
                                )
                            else:
                                pipe.hincrby(key, _COUNT_FIELD, tx.pending_increment)
                            pipe.execute()
                        else:
                            pipe.unwatch()
                        return result
                    except WatchError:
                        logger.debug(
                            "store.transaction_conflict",
                            extra={"doc_id": doc_id, "attempt": attempt},
                        )
                        pipe.reset()
        except RedisError as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Counter store transaction failed",
                details={"backend": self.backend_name, "doc_id": doc_id},
            ) from exc

        raise StoreUnavailableError(
            code="transaction_conflict",
            message="Counter store transaction kept conflicting",
            details={
                "backend": self.backend_name,
                "doc_id": doc_id,
                "attempts": self._max_attempts,
            },
        )

    def delete_expired(self, cutoff_ms: int, limit: int) -> int:
        if limit < 1:
            raise ValueError("limit must be >= 1")

        try:
            candidates = self._client.zrangebyscore(
                self._index_key, "-inf", f"({cutoff_ms}", start=0, num=limit
            )
            if not candidates:
                return 0

            keys = [self._doc_key(doc_id) for doc_id in candidates]
            with self._client.pipeline() as pipe:
                pipe.watch(*keys)
                starts = [pipe.hget(key, _WINDOW_START_FIELD) for key in keys]

                deleted = 0
                pipe.multi()
                for doc_id, key, start in zip(candidates, keys, starts):
                    if start is None:
                        # Index entry left behind by a record that is already gone.
                        pipe.zrem(self._index_key, doc_id)
                        continue
                    window_start = self._parse_window_start(doc_id, start)
                    if window_start is not None and window_start >= cutoff_ms:
                        # Window reset since the index was read.
                        continue
                    pipe.delete(key)
                    pipe.zrem(self._index_key, doc_id)
                    deleted += 1
                pipe.execute()
                return deleted
        except WatchError as exc:
            raise StoreUnavailableError(
                code="sweep_conflict",
                message="Counters changed while the sweep batch was running",
                details={"backend": self.backend_name},
            ) from exc
        except RedisError as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Counter store sweep batch failed",
                details={"backend": self.backend_name},
            ) from exc

    def close(self) -> None:
        self._client.close()
