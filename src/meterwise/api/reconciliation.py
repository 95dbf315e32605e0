"""On-demand reconciliation trigger — POST /v1/reconciliation/run."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from meterwise.api.deps import get_provider, require_operator
from meterwise.database import get_session_factory
from meterwise.metering.orchestrator import run_reconciliation
from meterwise.providers.base import MeteringProvider
from meterwise.schema import ReconciliationReport

router = APIRouter(
    prefix="/v1/reconciliation",
    tags=["reconciliation"],
    dependencies=[Depends(require_operator)],
)

# One batch per process at a time; overlapping runs could race the same subscriber.
_run_lock = asyncio.Lock()


@router.post("/run", response_model=ReconciliationReport)
async def trigger_reconciliation(
    test_mode: bool = Query(default=False),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    provider: MeteringProvider = Depends(get_provider),
) -> ReconciliationReport:
    if _run_lock.locked():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A reconciliation run is already in progress.",
        )
    async with _run_lock:
        return await run_reconciliation(session_factory, provider, test_mode=test_mode)
