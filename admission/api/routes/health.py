from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Liveness check for load balancers and monitors.

    Not rate limited and does not touch the counter store, so it stays
    green while the store is degraded (admission fails open meanwhile).

    Returns:
        dict: ``status`` plus the configured counter store backend.
    """

    store = getattr(request.app.state, "counter_store", None)
    return {
        "status": "ok",
        "counter_store": store.backend_name if store is not None else None,
    }
