"""Scheduled counter cleanup.

Run from cron (or any scheduler) once a day, e.g.::

    0 2 * * *  python -m admission.jobs.sweep_counters

Each run opens its own store connection, performs one best-effort sweep,
logs the number of deleted records and closes the connection.
"""

from __future__ import annotations

import logging
import sys

from admission.adapters.rate_limit.factory import create_counter_store
from admission.core.config import settings
from admission.core.errors import AppError
from admission.core.logging import configure_logging
from admission.core.policies import build_policy_registry
from admission.services.counter_sweeper import build_counter_sweeper

logger = logging.getLogger(__name__)


def run() -> int:
    """Sweep once and return the number of deleted records."""
    store = create_counter_store(settings.store)
    try:
        registry = build_policy_registry(settings.rate_limit.policies)
        sweeper = build_counter_sweeper(store, registry, settings.sweeper)
        return sweeper.sweep()
    finally:
        store.close()


def main() -> int:
    configure_logging(settings.log)
    try:
        deleted = run()
    except AppError as exc:
        logger.error(
            "sweeper.aborted",
            extra={"error_code": exc.code, "error_msg": exc.message},
        )
        return 1

    logger.info("sweeper.job_finished", extra={"deleted": deleted})
    return 0


if __name__ == "__main__":
    sys.exit(main())
