"""
Call Statistics Endpoints
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from leaddialer.api.v1.dependencies import get_attempt_store
from leaddialer.domain.models.call_attempt import CallAttempt, CallAttemptStatus, CallStats
from leaddialer.infrastructure.storage.call_attempt_store import CallAttemptStore

router = APIRouter(prefix="/calls", tags=["calls"])


@router.get("/stats/summary", response_model=CallStats)
async def call_stats_summary(
    start: Optional[datetime] = Query(None, description="Calls started at or after"),
    end: Optional[datetime] = Query(None, description="Calls started at or before"),
    agent_id: Optional[str] = Query(None),
    status: Optional[CallAttemptStatus] = Query(None),
    attempts: CallAttemptStore = Depends(get_attempt_store),
):
    """Totals, answered/completed counts, durations and cost over the filtered calls."""
    return attempts.get_call_stats(start=start, end=end, agent_id=agent_id, status=status)


@router.get("/recent", response_model=List[CallAttempt])
async def recent_calls(
    limit: int = Query(50, ge=1, le=200),
    attempts: CallAttemptStore = Depends(get_attempt_store),
):
    return attempts.get_recent(limit)
