"""Periodic cleanup of aged-out rate limit counters.

Counters outlive their window so they can be inspected, but not forever:
anything whose window started before the retention horizon is deleted in
bounded batches. A sweep is best effort; leftovers are picked up by the
next scheduled run.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from admission.adapters.rate_limit.base import CounterStore
from admission.core.config import SweeperSettings, settings
from admission.core.errors import StoreUnavailableError, ValidationAppError
from admission.core.policies import PolicyRegistry

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_MS = 24 * 60 * 60 * 1000
MAX_BATCH_SIZE = 500


class CounterSweeper:
    """Deletes counter records older than the retention horizon."""

    def __init__(
        self,
        store: CounterStore,
        *,
        retention_ms: int = DEFAULT_RETENTION_MS,
        batch_size: int = MAX_BATCH_SIZE,
        max_batches: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the sweeper.

        Args:
            store: Counter store to clean; owned by the caller.
            retention_ms: Records whose window began earlier than
                ``now - retention_ms`` are deleted.
            batch_size: Deletions per store batch (1..500).
            max_batches: Batches per invocation.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If any bound is invalid.
        """
        if retention_ms < 1:
            raise ValueError("retention_ms must be >= 1")
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        if max_batches < 1:
            raise ValueError("max_batches must be >= 1")

        self._store = store
        self._retention_ms = retention_ms
        self._batch_size = batch_size
        self._max_batches = max_batches
        self._clock = clock

    @property
    def retention_ms(self) -> int:
        return self._retention_ms

    def cutoff_ms(self) -> int:
        return int(self._clock() * 1000) - self._retention_ms

    def sweep(self, cutoff_ms: int | None = None) -> int:
        """Run one pass and return the number of records deleted.

        A failing batch ends the pass early; it is not retried here.

        Args:
            cutoff_ms: Horizon to sweep below; defaults to ``now - retention``.
        """

        if cutoff_ms is None:
            cutoff_ms = self.cutoff_ms()
        total = 0
        batches = 0

        while batches < self._max_batches:
            try:
                deleted = self._store.delete_expired(cutoff_ms, self._batch_size)
            except StoreUnavailableError as exc:
                logger.error(
                    "sweeper.batch_failed",
                    extra={
                        "error_code": exc.code,
                        "error_msg": exc.message,
                        "batch": batches + 1,
                        "deleted_so_far": total,
                    },
                )
                break

            batches += 1
            total += deleted
            if deleted < self._batch_size:
                break

        logger.info(
            "sweeper.completed",
            extra={
                "deleted": total,
                "batches": batches,
                "cutoff_ms": cutoff_ms,
                "backend": self._store.backend_name,
            },
        )
        return total


def build_counter_sweeper(
    store: CounterStore,
    registry: PolicyRegistry,
    sweeper_settings: SweeperSettings | None = None,
) -> CounterSweeper:
    """Create the sweeper from settings, checking the retention horizon.

    Raises:
        ValidationAppError: If retention does not exceed every policy window,
            which would delete counters of windows still open.
    """
    cfg = sweeper_settings or settings.sweeper
    retention_ms = int(cfg.retention_hours * 60 * 60 * 1000)

    if retention_ms <= registry.longest_window_ms:
        raise ValidationAppError(
            code="retention_too_short",
            message=(
                f"Sweeper retention ({retention_ms} ms) must exceed the longest "
                f"policy window ({registry.longest_window_ms} ms)"
            ),
        )

    return CounterSweeper(
        store,
        retention_ms=retention_ms,
        batch_size=cfg.batch_size,
        max_batches=cfg.max_batches,
    )
