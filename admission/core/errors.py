"""Application-level exception types.

Domain errors shared by adapters, services and the HTTP layer. The HTTP
mapping lives in ``admission.core.exception_handlers``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from admission.core.policies import PolicyName
    from admission.services.rate_limiter import RateLimitDecision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    backend: str
    doc_id: str
    attempts: int
    policy: str
    key_prefix: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when a task endpoint API key is missing or invalid."""


class StoreUnavailableError(AppError):
    """Raised when the counter store cannot read or commit a transaction.

    Covers connection failures, socket timeouts and exhausting the
    optimistic-transaction retry budget on a contended key.
    """


class RateLimitExceededError(AppError):
    """Raised by the admission dependency when a request is denied."""

    def __init__(self, decision: RateLimitDecision, policy_name: PolicyName) -> None:
        self.decision = decision
        self.policy_name = policy_name
        super().__init__(
            code="rate_limit_exceeded",
            message="Rate limit exceeded. Please try again later.",
            details={"policy": policy_name.value},
        )
