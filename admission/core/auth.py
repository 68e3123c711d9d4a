"""API key check for maintenance task endpoints.

Task endpoints (e.g. triggering a counter sweep) are called by the
scheduler or an operator, not by portal users. They are guarded by a shared
key from ``APP_TASK_API_KEYS``; end-user authentication lives elsewhere.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Annotated

from fastapi import Header

from admission.core.config import settings
from admission.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 ,key3 ")
        {'key1', 'key2', 'key3'}
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()
    return {key.strip() for key in keys_string.split(",") if key.strip()}


def validate_task_api_key(provided_key: str | None) -> None:
    """Validate a task API key against the configured keys.

    Raises:
        AuthenticationAppError: If the key is missing or invalid, or if no
            keys are configured while the check is required.
    """
    if not settings.app.task_api_key_required:
        return

    valid_keys = parse_api_keys(settings.app.task_api_keys)
    if not valid_keys:
        logger.error(
            "auth.task_keys_not_configured",
            extra={"auth_required": True},
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="Task authentication is enabled but no API keys are configured",
            details={
                "hint": "Set APP_TASK_API_KEYS or disable with APP_TASK_API_KEY_REQUIRED=false"
            },
        )

    if not provided_key:
        logger.warning("auth.missing_key", extra={"api_key_present": False})
        raise AuthenticationAppError(
            code="missing_api_key",
            message="Missing API key. Provide X-API-Key header.",
        )

    if not any(hmac.compare_digest(provided_key, key) for key in valid_keys):
        logger.warning(
            "auth.invalid_key",
            extra={"api_key_hash": hashlib.sha256(provided_key.encode()).hexdigest()[:16]},
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


async def verify_task_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency guarding task endpoints.

    Failures raise ``AuthenticationAppError``, rendered as 403 by the
    exception handlers.
    """
    validate_task_api_key(x_api_key)
