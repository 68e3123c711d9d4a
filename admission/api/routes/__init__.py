from __future__ import annotations

from admission.api.routes.health import router as health_router
from admission.api.routes.tasks import router as tasks_router

__all__ = ["health_router", "tasks_router"]
