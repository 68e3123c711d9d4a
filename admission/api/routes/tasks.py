"""Maintenance task endpoints triggered by the scheduler or an operator."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Request

from admission.core.auth import verify_task_api_key
from admission.core.policies import PolicyName
from admission.core.rate_limit import rate_limit
from admission.schemas.rate_limit import RateLimitExceededResponse
from admission.schemas.tasks import SweepResponse
from admission.services.counter_sweeper import CounterSweeper
from admission.services.rate_limiter import format_epoch_ms

router = APIRouter(tags=["Tasks"])


@router.post(
    "/tasks/sweep-counters",
    response_model=SweepResponse,
    # Admission must precede the key check: rejected keys count against the quota.
    dependencies=[Depends(rate_limit(PolicyName.BULK)), Depends(verify_task_api_key)],
    responses={429: {"model": RateLimitExceededResponse}},
)
async def sweep_counters(request: Request) -> SweepResponse:
    """Delete counter records older than the retention horizon.

    Same work as the scheduled ``admission.jobs.sweep_counters`` job, for
    manual runs. One best-effort pass; any backlog is left for the next run.
    """
    sweeper: CounterSweeper = request.app.state.counter_sweeper
    cutoff_ms = sweeper.cutoff_ms()
    deleted = await asyncio.get_running_loop().run_in_executor(
        None, sweeper.sweep, cutoff_ms
    )
    return SweepResponse(deleted=deleted, cutoff=format_epoch_ms(cutoff_ms))
