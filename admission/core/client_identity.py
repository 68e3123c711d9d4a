"""Client identification for rate limiting.

The client key is derived from network identity, never from an account:
the first forwarded-for entry when running behind a trusted proxy chain,
otherwise the transport peer address. Keys are opaque; no address
validation is attempted.
"""

from __future__ import annotations

import hashlib
import re

from fastapi import Request

from admission.core.config import settings

UNKNOWN_CLIENT = "unknown"

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_]")


def get_client_key(request: Request) -> str:
    """Return a stable key for the requester. Never raises.

    Args:
        request: Incoming request.

    Returns:
        First forwarded-for address, the peer address, or ``"unknown"``.
    """

    if settings.app.trust_forwarded_for:
        forwarded_for = request.headers.get(settings.app.forwarded_for_header)
        if forwarded_for:
            first = forwarded_for.split(",")[0].strip()
            if first:
                return first

    if request.client and request.client.host:
        return request.client.host

    return UNKNOWN_CLIENT


def sanitize_client_key(client_key: str) -> str:
    """Restrict a client key to ``[A-Za-z0-9_]`` for storage addressing."""
    return _UNSAFE_CHARS_RE.sub("_", client_key)


def hash_client_key(client_key: str) -> str:
    """Hash the client key for logging without exposing addresses."""
    return hashlib.sha256(client_key.encode()).hexdigest()[:16]
