"""Pydantic schemas for maintenance task endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SweepResponse(BaseModel):
    """Result of one counter sweep."""

    deleted: int = Field(..., ge=0, description="Counter records deleted by this run.")
    cutoff: str = Field(
        ...,
        description="ISO-8601 UTC horizon; records whose window began earlier were eligible.",
    )
