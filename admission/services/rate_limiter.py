"""Fixed-window rate limiting decision engine.

Every decision is one transaction against the counter store, keyed by
``{key_prefix}_{sanitized client key}``. Nothing is cached in process, so
any number of stateless workers sharing a transactional store agree on the
count.

Known boundary behaviour: a fixed window admits up to ``2 * max_requests``
in a short span straddling a window reset. This is accepted in exchange for
one small record and one transaction per request.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from admission.adapters.rate_limit.base import CounterRecord, CounterStore, CounterTransaction
from admission.core.client_identity import sanitize_client_key
from admission.core.errors import StoreUnavailableError
from admission.core.policies import RateLimitPolicy

logger = logging.getLogger(__name__)

# Remaining-quota sentinel meaning "unknown" (store failed, request let through).
UNKNOWN_REMAINING = -1


def format_epoch_ms(epoch_ms: int) -> str:
    """Format epoch milliseconds as ISO-8601 UTC, e.g. ``2024-05-01T12:00:00.000Z``."""
    moment = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window for the applied policy.
        remaining: Requests left in the window; ``-1`` when unknown.
        reset_at_ms: Epoch milliseconds when the current window ends.
        failed_open: True when the store failed and the request was let through.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    failed_open: bool = False

    @property
    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.reset_at_ms / 1000, tz=timezone.utc)

    @property
    def reset_at_iso(self) -> str:
        return format_epoch_ms(self.reset_at_ms)

    def retry_after_seconds(self, now_ms: int) -> int:
        """Whole seconds until the window resets (never negative)."""
        return max(0, math.ceil((self.reset_at_ms - now_ms) / 1000))


@dataclass(frozen=True)
class CheckResult:
    """Either a decision or the store error that prevented one."""

    decision: RateLimitDecision | None = None
    error: StoreUnavailableError | None = None

    def __post_init__(self) -> None:
        if (self.decision is None) == (self.error is None):
            raise ValueError("CheckResult needs exactly one of decision or error")

    @property
    def ok(self) -> bool:
        return self.error is None


def counter_id(client_key: str, policy: RateLimitPolicy) -> str:
    """Storage id for the counter of ``client_key`` under ``policy``."""
    return f"{policy.key_prefix}_{sanitize_client_key(client_key)}"


class RateLimiter:
    """Decides allow/deny for a client key under a policy.

    The store is injected and its lifecycle belongs to the caller.
    """

    def __init__(
        self,
        store: CounterStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _decide(
        self, tx: CounterTransaction, policy: RateLimitPolicy, now_ms: int
    ) -> RateLimitDecision:
        record = tx.get()

        if record is None or now_ms - record.window_start_ms >= policy.window_ms:
            # First request, or the previous window has expired.
            tx.set(CounterRecord(count=1, window_start_ms=now_ms))
            return RateLimitDecision(
                allowed=True,
                limit=policy.max_requests,
                remaining=policy.max_requests - 1,
                reset_at_ms=now_ms + policy.window_ms,
            )

        reset_at_ms = record.window_start_ms + policy.window_ms

        if record.count >= policy.max_requests:
            # Denied requests leave the counter untouched.
            return RateLimitDecision(
                allowed=False,
                limit=policy.max_requests,
                remaining=0,
                reset_at_ms=reset_at_ms,
            )

        tx.increment(1)
        return RateLimitDecision(
            allowed=True,
            limit=policy.max_requests,
            remaining=policy.max_requests - record.count - 1,
            reset_at_ms=reset_at_ms,
        )

    def evaluate(self, client_key: str, policy: RateLimitPolicy) -> CheckResult:
        """Run the admission transaction without applying any failure policy.

        Args:
            client_key: Opaque client identifier (sanitized before use).
            policy: Policy to enforce.

        Returns:
            CheckResult holding the decision, or the store error.
        """

        doc_id = counter_id(client_key, policy)
        now_ms = self.now_ms()

        try:
            decision = self._store.run_transaction(
                doc_id, lambda tx: self._decide(tx, policy, now_ms)
            )
        except StoreUnavailableError as exc:
            return CheckResult(error=exc)

        return CheckResult(decision=decision)

    def fail_open(
        self, policy: RateLimitPolicy, error: Exception | None = None
    ) -> RateLimitDecision:
        """Admit the request when no decision could be made.

        Store failures and timeouts let the request through with an
        unknown remaining quota.
        """

        logger.warning(
            "rate_limit.fail_open",
            extra={
                "key_prefix": policy.key_prefix,
                "error_type": type(error).__name__ if error else None,
                "error_code": getattr(error, "code", None),
                "error_msg": str(error) if error else None,
            },
        )
        return RateLimitDecision(
            allowed=True,
            limit=policy.max_requests,
            remaining=UNKNOWN_REMAINING,
            reset_at_ms=self.now_ms() + policy.window_ms,
            failed_open=True,
        )

    def check(self, client_key: str, policy: RateLimitPolicy) -> RateLimitDecision:
        """Decide allow/deny, failing open on store errors. Never raises them."""
        result = self.evaluate(client_key, policy)
        if result.decision is not None:
            return result.decision
        return self.fail_open(policy, result.error)
