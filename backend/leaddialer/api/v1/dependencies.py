"""
API Dependencies
Shared dependencies for component access and error translation
"""
from typing import Optional

from fastapi import HTTPException, Header, Request, status

from leaddialer.core.exceptions import (
    DialerError, DuplicateLeadError, LeadNotFoundError, LeadNotAvailableError,
    AgentNotFoundError, AgentUnavailableError, CallAttemptNotFoundError,
    CallAttemptOwnershipError, UnresolvableCallbackError, InvalidTransitionError,
    ConcurrencyLimitReachedError, TelephonyError,
)
from leaddialer.domain.interfaces.telephony_gateway import TelephonyGateway
from leaddialer.domain.services.status_reconciler import StatusReconciler
from leaddialer.infrastructure.storage.agent_directory import AgentDirectory
from leaddialer.infrastructure.storage.call_attempt_store import CallAttemptStore
from leaddialer.infrastructure.storage.lead_store import LeadStore
from leaddialer.workers.dialer_worker import Dispatcher


def get_dispatcher(request: Request) -> Dispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise RuntimeError("Dispatcher is not initialized. Is the application lifespan running?")
    return dispatcher


def get_reconciler(request: Request) -> StatusReconciler:
    return get_dispatcher(request).reconciler


def get_gateway(request: Request) -> TelephonyGateway:
    return get_dispatcher(request).gateway


def get_lead_store(request: Request) -> LeadStore:
    return get_dispatcher(request).leads


def get_attempt_store(request: Request) -> CallAttemptStore:
    return get_dispatcher(request).attempts


def get_agent_directory(request: Request) -> AgentDirectory:
    return get_dispatcher(request).agents


async def get_agent_id(x_agent_id: Optional[str] = Header(None, alias="X-Agent-ID")) -> str:
    """
    Identify the calling agent.

    Authentication is handled in front of this service; the gateway
    forwards the agent id in the X-Agent-ID header.
    """
    if not x_agent_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Agent-ID header",
        )
    return x_agent_id


_STATUS_CODES = [
    (UnresolvableCallbackError, status.HTTP_404_NOT_FOUND),
    (LeadNotFoundError, status.HTTP_404_NOT_FOUND),
    (AgentNotFoundError, status.HTTP_404_NOT_FOUND),
    (CallAttemptNotFoundError, status.HTTP_404_NOT_FOUND),
    (CallAttemptOwnershipError, status.HTTP_403_FORBIDDEN),
    (DuplicateLeadError, status.HTTP_409_CONFLICT),
    (LeadNotAvailableError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (AgentUnavailableError, status.HTTP_409_CONFLICT),
    (ConcurrencyLimitReachedError, status.HTTP_429_TOO_MANY_REQUESTS),
    (TelephonyError, status.HTTP_502_BAD_GATEWAY),
]


def to_http_error(error: Exception) -> HTTPException:
    """Translate a dialer error into the matching HTTP error."""
    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=code, detail=str(error))
    if isinstance(error, DialerError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
