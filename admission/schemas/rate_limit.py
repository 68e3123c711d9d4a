"""Pydantic schemas for admission-control responses."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RateLimitExceededResponse(BaseModel):
    """Body returned with HTTP 429 when a client exhausts its quota."""

    model_config = ConfigDict(populate_by_name=True)

    error: str = Field(
        "Too Many Requests",
        description="Short error label.",
    )
    message: str = Field(
        "Rate limit exceeded. Please try again later.",
        description="Human-readable explanation.",
    )
    retry_after: int = Field(
        ...,
        alias="retryAfter",
        ge=0,
        description="Seconds until the current window resets.",
    )
    reset_at: str = Field(
        ...,
        alias="resetAt",
        description="ISO-8601 UTC timestamp when the current window resets.",
    )
