"""Application factory for the FastAPI app.

Builds the counter store, policy registry, decision engine and sweeper once
per process and hangs them on ``app.state``. The store's lifecycle belongs
here (closed on shutdown) unless the caller passes its own store.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from admission.adapters.rate_limit.base import CounterStore
from admission.adapters.rate_limit.factory import create_counter_store
from admission.api.routes import health_router, tasks_router
from admission.core.config import settings
from admission.core.exception_handlers import setup_exception_handlers
from admission.core.logging import configure_logging
from admission.core.middleware import request_id_middleware
from admission.core.openapi import apply_openapi_customizations
from admission.core.policies import build_policy_registry
from admission.core.rate_limit import configure_rate_limiting
from admission.services.counter_sweeper import build_counter_sweeper


def create_app(store: CounterStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        store: Counter store to use. When omitted one is created from
            settings and closed when the app shuts down.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    owns_store = store is None
    counter_store = store if store is not None else create_counter_store(settings.store)
    registry = build_policy_registry(settings.rate_limit.policies)
    sweeper = build_counter_sweeper(counter_store, registry, settings.sweeper)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            if owns_store:
                counter_store.close()

    app = FastAPI(
        title="Portal Admission Control",
        description=(
            "Fixed-window rate limiting for the student portal backend. "
            "Protected routes return X-RateLimit-Limit, X-RateLimit-Remaining "
            "and X-RateLimit-Reset headers and answer 429 once the quota of "
            "their endpoint class (standard, auth, mutation, bulk) is used up."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.counter_store = counter_store
    app.state.counter_sweeper = sweeper
    configure_rate_limiting(app, counter_store, registry=registry)

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(tasks_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
