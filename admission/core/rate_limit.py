"""Admission control for FastAPI routes and plain Starlette endpoints.

This module wires the decision engine into the HTTP layer.

Two ways to protect a handler:
- ``Depends(rate_limit(PolicyName.AUTH))`` on a FastAPI route.
- ``with_rate_limit(PolicyName.AUTH, handler)`` around an
  ``async def handler(request) -> Response`` endpoint.

Both derive the client key, run one store transaction with a bounded
timeout, emit the ``X-RateLimit-*`` headers and reject with HTTP 429 when
the quota is exhausted. Store failures and timeouts fail open.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Awaitable, Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from admission.adapters.rate_limit.base import CounterStore
from admission.core.client_identity import get_client_key, hash_client_key
from admission.core.config import settings
from admission.core.errors import RateLimitExceededError, StoreUnavailableError
from admission.core.policies import PolicyName, PolicyRegistry, build_policy_registry
from admission.schemas.rate_limit import RateLimitExceededResponse
from admission.services.rate_limiter import RateLimitDecision, RateLimiter

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[Response]]


def configure_rate_limiting(
    app: FastAPI,
    store: CounterStore,
    *,
    registry: PolicyRegistry | None = None,
    limiter: RateLimiter | None = None,
) -> None:
    """Attach the policy registry and decision engine to ``app.state``.

    Args:
        app: Application whose routes will be protected.
        store: Counter store; its lifecycle stays with the caller.
        registry: Policy registry; built from settings when omitted.
        limiter: Decision engine; built around ``store`` when omitted.
    """

    if registry is None:
        registry = build_policy_registry(settings.rate_limit.policies)
    if limiter is None:
        limiter = RateLimiter(store)

    app.state.policy_registry = registry
    app.state.rate_limiter = limiter


def build_rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    """Headers sent with every response that went through admission."""
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(max(0, decision.remaining)),
        "X-RateLimit-Reset": decision.reset_at_iso,
    }


def build_rejection_body(decision: RateLimitDecision, now_ms: int) -> dict:
    """JSON body for a 429 response."""
    return RateLimitExceededResponse(
        retry_after=decision.retry_after_seconds(now_ms),
        reset_at=decision.reset_at_iso,
    ).model_dump(by_alias=True)


def build_rejection_response(decision: RateLimitDecision, now_ms: int) -> JSONResponse:
    """Complete 429 response with body, quota headers and ``Retry-After``."""
    body = build_rejection_body(decision, now_ms)
    headers = build_rate_limit_headers(decision)
    headers["Retry-After"] = str(body["retryAfter"])
    return JSONResponse(status_code=429, content=body, headers=headers)


async def admit(request: Request, policy_name: PolicyName) -> RateLimitDecision:
    """Run one admission check for the current request.

    The store transaction runs in the thread pool under
    ``RATE_LIMIT_CHECK_TIMEOUT_SECONDS``. On a store error or timeout the
    fail-open policy is applied here, explicitly, and logged.

    Args:
        request: Incoming request.
        policy_name: Endpoint class being protected.

    Returns:
        RateLimitDecision for this request.
    """

    limiter: RateLimiter = request.app.state.rate_limiter
    policy = request.app.state.policy_registry.get(policy_name)
    client_key = get_client_key(request)
    key_hash = hash_client_key(client_key)
    timeout_seconds = settings.rate_limit.check_timeout_seconds

    loop = asyncio.get_running_loop()
    try:
        result = await asyncio.wait_for(
            loop.run_in_executor(None, limiter.evaluate, client_key, policy),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        decision = limiter.fail_open(
            policy,
            StoreUnavailableError(
                code="store_timeout",
                message=f"Admission check exceeded {timeout_seconds}s",
            ),
        )
    else:
        if result.decision is not None:
            decision = result.decision
        else:
            decision = limiter.fail_open(policy, result.error)

    if decision.allowed:
        logger.debug(
            "rate_limit.allowed",
            extra={
                "policy": policy_name.value,
                "key_hash": key_hash,
                "limit": decision.limit,
                "remaining": decision.remaining,
                "failed_open": decision.failed_open,
            },
        )
    else:
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "policy": policy_name.value,
                "key_hash": key_hash,
                "limit": decision.limit,
                "reset_at": decision.reset_at_iso,
            },
        )

    return decision


def rate_limit(policy_name: PolicyName) -> Callable[..., Awaitable[RateLimitDecision | None]]:
    """Build a FastAPI dependency enforcing ``policy_name``.

    Usage:
        @router.post("/login", dependencies=[Depends(rate_limit(PolicyName.AUTH))])
        async def login(): ...

    On deny the dependency raises ``RateLimitExceededError`` (rendered as
    429 by the exception handler) so the route body never runs.
    """

    async def enforce_rate_limit(
        request: Request, response: Response
    ) -> RateLimitDecision | None:
        if not settings.app.rate_limit_enabled:
            return None

        decision = await admit(request, policy_name)
        if not decision.allowed:
            raise RateLimitExceededError(decision, policy_name)

        response.headers.update(build_rate_limit_headers(decision))
        return decision

    enforce_rate_limit.__name__ = f"enforce_rate_limit_{policy_name.value}"
    return enforce_rate_limit


def with_rate_limit(policy_name: PolicyName, handler: Handler) -> Handler:
    """Wrap a request handler with admission control.

    Denied requests get a 429 response and the handler is not invoked.
    Exceptions raised by the handler propagate unchanged.
    """

    @functools.wraps(handler)
    async def wrapped(request: Request) -> Response:
        if not settings.app.rate_limit_enabled:
            return await handler(request)

        decision = await admit(request, policy_name)
        if not decision.allowed:
            limiter: RateLimiter = request.app.state.rate_limiter
            return build_rejection_response(decision, limiter.now_ms())

        response = await handler(request)
        response.headers.update(build_rate_limit_headers(decision))
        return response

    return wrapped
