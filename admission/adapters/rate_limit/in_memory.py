"""In-memory counter store.

Notes:
- Per-process only: running multiple workers gives each worker its own
  counters, so limits are enforced per process, not globally.
- Thread-safe: one lock serializes every transaction and sweep batch.
"""

from __future__ import annotations

import threading
from typing import Callable

from admission.adapters.rate_limit.base import (
    BufferedTransaction,
    CounterRecord,
    CounterStore,
    CounterTransaction,
    T,
)


class InMemoryCounterStore(CounterStore):
    """Counter store backed by a dict guarded by a lock.

    Intended for tests and single-process development. Transactions are
    trivially serialized, so concurrent requests on one key never observe
    the same pre-increment value.
    """

    backend_name = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, CounterRecord] = {}

    def run_transaction(
        self, doc_id: str, body: Callable[[CounterTransaction], T]
    ) -> T:
        with self._lock:
            tx = BufferedTransaction(self._records.get(doc_id))
            result = body(tx)
            self._commit(doc_id, tx)
            return result

    def _commit(self, doc_id: str, tx: BufferedTransaction) -> None:
        if tx.pending_set is not None:
            self._records[doc_id] = tx.pending_set
        elif tx.pending_increment:
            current = self._records[doc_id]
            self._records[doc_id] = CounterRecord(
                count=current.count + tx.pending_increment,
                window_start_ms=current.window_start_ms,
            )

    def delete_expired(self, cutoff_ms: int, limit: int) -> int:
        if limit < 1:
            raise ValueError("limit must be >= 1")

        with self._lock:
            expired = [
                doc_id
                for doc_id, record in self._records.items()
                if record.window_start_ms < cutoff_ms
            ][:limit]
            for doc_id in expired:
                del self._records[doc_id]
            return len(expired)

    def get(self, doc_id: str) -> CounterRecord | None:
        """Return a record outside any transaction (inspection only)."""
        with self._lock:
            return self._records.get(doc_id)

    def put(self, doc_id: str, record: CounterRecord) -> None:
        """Write a record outside any transaction (seeding only)."""
        with self._lock:
            self._records[doc_id] = record

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
