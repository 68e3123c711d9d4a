"""Counter store interfaces.

The decision engine and the sweeper depend on this abstraction only, so the
backing store (in-process memory for development, Redis for shared
deployments) can be swapped without touching them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CounterRecord:
    """Persisted counter for one ``(key_prefix, client_key)`` pair.

    Attributes:
        count: Requests observed in the current window.
        window_start_ms: UNIX epoch milliseconds when the window began.
    """

    count: int
    window_start_ms: int


class CounterTransaction(ABC):
    """Handle passed to a transaction body.

    Writes are buffered and applied atomically when the body returns.
    """

    @abstractmethod
    def get(self) -> CounterRecord | None:
        """Return the record as read at the start of the transaction."""
        raise NotImplementedError

    @abstractmethod
    def set(self, record: CounterRecord) -> None:
        """Create or replace the record."""
        raise NotImplementedError

    @abstractmethod
    def increment(self, amount: int = 1) -> None:
        """Increment ``count`` of the existing record."""
        raise NotImplementedError


class BufferedTransaction(CounterTransaction):
    """Transaction handle that records the pending write for the backend."""

    def __init__(self, snapshot: CounterRecord | None) -> None:
        self._snapshot = snapshot
        self.pending_set: CounterRecord | None = None
        self.pending_increment = 0

    def get(self) -> CounterRecord | None:
        return self._snapshot

    def set(self, record: CounterRecord) -> None:
        self.pending_set = record
        self.pending_increment = 0

    def increment(self, amount: int = 1) -> None:
        if self._snapshot is None and self.pending_set is None:
            raise ValueError("cannot increment a counter that does not exist")
        if self.pending_set is not None:
            self.pending_set = CounterRecord(
                count=self.pending_set.count + amount,
                window_start_ms=self.pending_set.window_start_ms,
            )
            return
        self.pending_increment += amount

    @property
    def has_writes(self) -> bool:
        return self.pending_set is not None or self.pending_increment != 0


class CounterStore(ABC):
    """Interface for transactional counter storage."""

    backend_name = "abstract"

    @abstractmethod
    def run_transaction(
        self, doc_id: str, body: Callable[[CounterTransaction], T]
    ) -> T:
        """Run ``body`` as one atomic read-modify-write on ``doc_id``.

        Concurrent transactions on the same document serialize. The body
        may be re-run on conflict, so it must not have side effects beyond
        the writes it makes through the transaction handle.

        Args:
            doc_id: Sanitized document identifier.
            body: Callable receiving the transaction handle.

        Returns:
            Whatever ``body`` returns from its committed run.

        Raises:
            StoreUnavailableError: If the transaction cannot be read or
                committed.
        """
        raise NotImplementedError

    @abstractmethod
    def delete_expired(self, cutoff_ms: int, limit: int) -> int:
        """Delete up to ``limit`` records with ``window_start_ms < cutoff_ms``.

        Records whose window is reset while the batch runs are kept.

        Returns:
            Number of records deleted.

        Raises:
            StoreUnavailableError: If the batch cannot be committed.
        """
        raise NotImplementedError

    def close(self) -> None:
        """Release backend resources."""
