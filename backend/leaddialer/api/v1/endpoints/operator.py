"""
Operator Endpoints
Agent console: lead claims, manual calls, status updates and availability
"""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from leaddialer.api.v1.dependencies import (
    get_agent_id, get_dispatcher, get_reconciler, get_lead_store, get_agent_directory, to_http_error
)
from leaddialer.core.exceptions import DialerError, TelephonyError
from leaddialer.domain.models.agent import Agent
from leaddialer.domain.models.call_attempt import CallAttempt, ManualCallUpdate
from leaddialer.domain.models.lead import Lead
from leaddialer.domain.services.status_reconciler import StatusReconciler
from leaddialer.infrastructure.storage.agent_directory import AgentDirectory
from leaddialer.infrastructure.storage.lead_store import LeadStore
from leaddialer.workers.dialer_worker import Dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/operator", tags=["operator"])


class StartCallRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    lead_id: str


class AvailabilityRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    available: bool


@router.post("/leads/{lead_id}/claim", response_model=Lead)
async def claim_lead(
    lead_id: str,
    agent_id: str = Depends(get_agent_id),
    leads: LeadStore = Depends(get_lead_store),
):
    """Reserve a pending lead for this agent."""
    try:
        return leads.claim_for_agent(lead_id, agent_id)
    except DialerError as e:
        raise to_http_error(e)


@router.post("/leads/{lead_id}/release", response_model=Lead)
async def release_lead(
    lead_id: str,
    agent_id: str = Depends(get_agent_id),
    leads: LeadStore = Depends(get_lead_store),
):
    try:
        return leads.release_claim(lead_id, agent_id)
    except DialerError as e:
        raise to_http_error(e)


@router.post("/calls/start", response_model=CallAttempt, status_code=201)
async def start_call(
    request: StartCallRequest,
    agent_id: str = Depends(get_agent_id),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Place a call now on a pending lead or one this agent has claimed."""
    try:
        return await dispatcher.start_manual_call(request.lead_id, agent_id)
    except (DialerError, TelephonyError) as e:
        raise to_http_error(e)


@router.put("/calls/{call_attempt_id}/update")
async def update_call(
    call_attempt_id: str,
    update: ManualCallUpdate,
    agent_id: str = Depends(get_agent_id),
    reconciler: StatusReconciler = Depends(get_reconciler),
):
    """Record the outcome of a call from the agent console."""
    try:
        result = await reconciler.apply_manual_update(call_attempt_id, agent_id, update)
    except DialerError as e:
        raise to_http_error(e)

    return {
        "message": "Call updated successfully",
        "call_attempt_id": result.call_attempt_id,
        "status": result.status,
        "lead_status": result.lead_status,
    }


@router.put("/availability", response_model=Agent)
async def set_availability(
    request: AvailabilityRequest,
    agent_id: str = Depends(get_agent_id),
    agents: AgentDirectory = Depends(get_agent_directory),
):
    try:
        agent = agents.update_availability(agent_id, request.available)
        if request.available:
            agents.record_login(agent_id)
        return agent
    except DialerError as e:
        raise to_http_error(e)
