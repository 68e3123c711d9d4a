"""Factory pattern for creating counter store instances."""

from admission.adapters.rate_limit.base import CounterStore
from admission.adapters.rate_limit.in_memory import InMemoryCounterStore
from admission.adapters.rate_limit.redis_store import RedisCounterStore
from admission.core.config import StoreSettings, settings
from admission.core.errors import ValidationAppError


def create_counter_store(store_settings: StoreSettings | None = None) -> CounterStore:
    """Instantiate the configured counter store backend.

    The caller owns the returned store and must ``close()`` it on shutdown.

    Args:
        store_settings: Store settings; defaults to the global settings.

    Returns:
        CounterStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend is unknown or misconfigured.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryCounterStore()

    if backend == "redis":
        if not cfg.redis_url:
            raise ValidationAppError(
                code="store_missing_url",
                message="Redis counter store requires STORE_REDIS_URL environment variable",
            )
        return RedisCounterStore.from_url(
            cfg.redis_url,
            collection=cfg.collection,
            max_transaction_retries=cfg.max_transaction_retries,
            socket_timeout_seconds=cfg.socket_timeout_seconds,
        )

    raise ValidationAppError(
        code="store_unknown_backend",
        message=(
            f"Unknown counter store backend: '{backend}'. Supported backends: memory, redis"
        ),
    )
