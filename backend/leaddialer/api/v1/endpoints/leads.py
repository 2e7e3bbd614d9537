"""
Lead Endpoints
Manual lead entry, lookup and requeue
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict

from leaddialer.api.v1.dependencies import get_lead_store, get_attempt_store, to_http_error
from leaddialer.core.exceptions import DialerError
from leaddialer.domain.models.call_attempt import CallAttempt
from leaddialer.domain.models.lead import Lead, LeadCreate, LeadStatus, LeadPriority
from leaddialer.infrastructure.storage.call_attempt_store import CallAttemptStore
from leaddialer.infrastructure.storage.lead_store import LeadStore

router = APIRouter(prefix="/leads", tags=["leads"])


class RequeueRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    priority: Optional[LeadPriority] = None


@router.post("/", response_model=Lead, status_code=201)
async def create_lead(data: LeadCreate, leads: LeadStore = Depends(get_lead_store)):
    try:
        return leads.create(data)
    except DialerError as e:
        raise to_http_error(e)


@router.get("/", response_model=List[Lead])
async def list_leads(
    status: LeadStatus = Query(LeadStatus.PENDING, description="Filter by status"),
    leads: LeadStore = Depends(get_lead_store),
):
    return leads.list_by_status(status)


@router.get("/{lead_id}", response_model=Lead)
async def get_lead(lead_id: str, leads: LeadStore = Depends(get_lead_store)):
    try:
        return leads.get(lead_id)
    except DialerError as e:
        raise to_http_error(e)


@router.get("/{lead_id}/attempts", response_model=List[CallAttempt])
async def list_lead_attempts(
    lead_id: str,
    leads: LeadStore = Depends(get_lead_store),
    attempts: CallAttemptStore = Depends(get_attempt_store),
):
    try:
        leads.get(lead_id)
    except DialerError as e:
        raise to_http_error(e)
    return attempts.list_for_lead(lead_id)


@router.post("/{lead_id}/requeue", response_model=Lead)
async def requeue_lead(
    lead_id: str,
    request: Optional[RequeueRequest] = None,
    leads: LeadStore = Depends(get_lead_store),
):
    """
    Reschedule a pending lead: urgent/high immediately, medium in two
    minutes, low in ten.
    """
    try:
        return leads.requeue(lead_id, priority=request.priority if request else None)
    except DialerError as e:
        raise to_http_error(e)
