"""Named rate limit policies for endpoint classes.

Each protected route picks one ``PolicyName``. The registry maps every name
to a concrete ``RateLimitPolicy`` and is built once at start-up from the
defaults below plus any configured overrides.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Iterator, Mapping

from admission.core.config import PolicyOverride
from admission.core.errors import ValidationAppError

_KEY_PREFIX_RE = re.compile(r"^[A-Za-z0-9_]+$")


@dataclass(frozen=True)
class RateLimitPolicy:
    """Quota applied per client key within one fixed window.

    Attributes:
        max_requests: Requests admitted per window.
        window_ms: Window length in milliseconds.
        key_prefix: Namespace for counters so policies never share one.
    """

    max_requests: int
    window_ms: int
    key_prefix: str

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValidationAppError(
                code="invalid_policy",
                message="max_requests must be >= 1",
                details={"key_prefix": self.key_prefix},
            )
        if self.window_ms < 1:
            raise ValidationAppError(
                code="invalid_policy",
                message="window_ms must be >= 1",
                details={"key_prefix": self.key_prefix},
            )
        if not _KEY_PREFIX_RE.match(self.key_prefix):
            raise ValidationAppError(
                code="invalid_policy",
                message="key_prefix must be non-empty and match [A-Za-z0-9_]+",
                details={"key_prefix": self.key_prefix},
            )


class PolicyName(str, Enum):
    """Endpoint classes with their own quota."""

    STANDARD = "standard"
    AUTH = "auth"
    MUTATION = "mutation"
    BULK = "bulk"

    @property
    def default_policy(self) -> RateLimitPolicy:
        return DEFAULT_POLICIES[self]


DEFAULT_POLICIES: Mapping[PolicyName, RateLimitPolicy] = MappingProxyType(
    {
        # General read endpoints
        PolicyName.STANDARD: RateLimitPolicy(
            max_requests=60, window_ms=60_000, key_prefix="rate_standard"
        ),
        # Credential-related, brute-force sensitive
        PolicyName.AUTH: RateLimitPolicy(
            max_requests=10, window_ms=60_000, key_prefix="rate_auth"
        ),
        # State-changing writes
        PolicyName.MUTATION: RateLimitPolicy(
            max_requests=30, window_ms=60_000, key_prefix="rate_mutation"
        ),
        # Expensive batch operations
        PolicyName.BULK: RateLimitPolicy(
            max_requests=5, window_ms=60_000, key_prefix="rate_bulk"
        ),
    }
)


class PolicyRegistry:
    """Immutable mapping of every ``PolicyName`` to its policy."""

    def __init__(self, policies: Mapping[PolicyName, RateLimitPolicy]) -> None:
        missing = [name.value for name in PolicyName if name not in policies]
        if missing:
            raise ValidationAppError(
                code="policy_registry_incomplete",
                message=f"No policy configured for: {', '.join(missing)}",
            )

        seen: dict[str, PolicyName] = {}
        for name, policy in policies.items():
            other = seen.get(policy.key_prefix)
            if other is not None:
                raise ValidationAppError(
                    code="duplicate_key_prefix",
                    message=(
                        f"Policies '{other.value}' and '{name.value}' share "
                        f"key_prefix '{policy.key_prefix}'"
                    ),
                    details={"key_prefix": policy.key_prefix},
                )
            seen[policy.key_prefix] = name

        self._policies = MappingProxyType(dict(policies))

    def get(self, name: PolicyName) -> RateLimitPolicy:
        return self._policies[name]

    def __getitem__(self, name: PolicyName) -> RateLimitPolicy:
        return self._policies[name]

    def __iter__(self) -> Iterator[PolicyName]:
        return iter(self._policies)

    def __len__(self) -> int:
        return len(self._policies)

    def items(self):
        return self._policies.items()

    @property
    def longest_window_ms(self) -> int:
        return max(policy.window_ms for policy in self._policies.values())


def build_policy_registry(
    overrides: Mapping[str, PolicyOverride] | None = None,
) -> PolicyRegistry:
    """Merge configured overrides over the default policies.

    Args:
        overrides: Partial overrides keyed by policy name (e.g. ``"auth"``).

    Returns:
        PolicyRegistry covering every ``PolicyName``.

    Raises:
        ValidationAppError: On unknown policy names, invalid values, or two
            policies sharing a key prefix.
    """

    policies = dict(DEFAULT_POLICIES)

    for raw_name, override in (overrides or {}).items():
        try:
            name = PolicyName(raw_name.lower())
        except ValueError:
            raise ValidationAppError(
                code="unknown_policy",
                message=(
                    f"Unknown rate limit policy '{raw_name}'. "
                    f"Expected one of: {', '.join(n.value for n in PolicyName)}"
                ),
                details={"policy": raw_name},
            ) from None

        changes = override.model_dump(exclude_none=True)
        if changes:
            policies[name] = replace(policies[name], **changes)

    return PolicyRegistry(policies)
