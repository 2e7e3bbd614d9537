"""
Admin Endpoints
Dispatcher control and agent management
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from leaddialer.api.v1.dependencies import get_dispatcher, get_agent_directory, to_http_error
from leaddialer.core.exceptions import DialerError
from leaddialer.domain.models.agent import Agent, AgentCreate
from leaddialer.infrastructure.storage.agent_directory import AgentDirectory
from leaddialer.workers.dialer_worker import Dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/dialer/status")
async def dialer_status(dispatcher: Dispatcher = Depends(get_dispatcher)):
    return dispatcher.get_status()


@router.post("/dialer/pause")
async def pause_dialer(dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Stop placing new calls. Calls in flight continue to be reconciled."""
    dispatcher.pause()
    return dispatcher.get_status()


@router.post("/dialer/resume")
async def resume_dialer(dispatcher: Dispatcher = Depends(get_dispatcher)):
    dispatcher.resume()
    return dispatcher.get_status()


@router.post("/dialer/reset-stuck")
async def reset_stuck_leads(dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Run stuck-lead recovery now."""
    result = dispatcher.reset_stuck_leads()
    logger.info(f"Manual stuck-lead reset: {result['reset_count']} leads")
    return result


@router.get("/dialer/active-calls")
async def active_calls(dispatcher: Dispatcher = Depends(get_dispatcher)):
    return {"active_calls": dispatcher.get_active_calls()}


@router.get("/dialer/stats")
async def dialer_stats(dispatcher: Dispatcher = Depends(get_dispatcher)):
    return dispatcher.get_stats()


@router.post("/agents", response_model=Agent, status_code=201)
async def create_agent(
    data: AgentCreate,
    agents: AgentDirectory = Depends(get_agent_directory),
):
    try:
        return agents.create(data)
    except DialerError as e:
        raise to_http_error(e)


@router.get("/agents/available", response_model=List[Agent])
async def list_available_agents(agents: AgentDirectory = Depends(get_agent_directory)):
    return agents.list_available()


@router.get("/agents/{agent_id}", response_model=Agent)
async def get_agent(agent_id: str, agents: AgentDirectory = Depends(get_agent_directory)):
    try:
        return agents.get(agent_id)
    except DialerError as e:
        raise to_http_error(e)
