"""
Webhooks API Endpoints
Handles call progress callbacks from telephony providers (Vonage)
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, Depends
from pydantic import BaseModel, ConfigDict

from leaddialer.core.exceptions import UnresolvableCallbackError
from leaddialer.api.v1.dependencies import get_reconciler, get_gateway, to_http_error
from leaddialer.domain.interfaces.telephony_gateway import TelephonyGateway
from leaddialer.domain.services.status_reconciler import StatusReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class StatusCallback(BaseModel):
    """Provider-neutral status callback"""
    model_config = ConfigDict(extra="ignore")

    provider_call_id: str
    status: str
    duration: Optional[int] = None
    detail: Optional[str] = None


async def _read_payload(request: Request) -> Dict[str, Any]:
    """Vonage sends GET query parameters or a JSON body depending on method."""
    data: Dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            data.update(body)
    return data


@router.api_route("/vonage/answer", methods=["GET", "POST"])
async def vonage_answer(
    request: Request,
    reconciler: StatusReconciler = Depends(get_reconciler),
    gateway: TelephonyGateway = Depends(get_gateway),
):
    """
    Handle Vonage call answer webhook.

    Called when the callee picks up. Returns the NCCO that connects the
    call to the assigned agent.
    """
    data = await _read_payload(request)
    call_uuid = data.get("uuid")
    logger.info(f"Vonage answer webhook: call_uuid={call_uuid}, to={data.get('to')}")

    try:
        instruction = await reconciler.handle_answer(call_uuid)
    except UnresolvableCallbackError as e:
        raise to_http_error(e)

    return gateway.render_connect(instruction)


@router.post("/vonage/event")
async def vonage_event(
    request: Request,
    reconciler: StatusReconciler = Depends(get_reconciler),
):
    """
    Handle Vonage call events.

    Processes call status changes:
    - started/ringing: progress only
    - answered: call was picked up
    - completed: call ended normally
    - busy, timeout/unanswered, failed/rejected: counted retry outcomes
    - cancelled: call withdrawn, lead returns to the queue

    Duplicates and out-of-order events are acknowledged and ignored.
    """
    data = await _read_payload(request)

    call_uuid = data.get("uuid")
    status = data.get("status")
    duration = data.get("duration")

    logger.info(
        f"Vonage event: call_uuid={call_uuid}, status={status}, "
        f"direction={data.get('direction')}, duration={duration}"
    )

    if not call_uuid or not status:
        return {"message": "Event received (missing data)"}

    try:
        result = await reconciler.apply_outcome(
            call_uuid,
            status,
            duration=duration,
            detail=data.get("detail"),
        )
        if data.get("price") is not None:
            reconciler.apply_correction(call_uuid, cost=data["price"])
    except UnresolvableCallbackError as e:
        raise to_http_error(e)

    if not result.applied:
        return {"message": f"Event ignored: attempt already {result.status}"}
    return {"message": f"Event processed: {status}", "status": result.status}


@router.post("/status")
async def status_callback(
    payload: StatusCallback,
    reconciler: StatusReconciler = Depends(get_reconciler),
):
    """Generic status callback used by the simulated gateway and other providers."""
    try:
        result = await reconciler.apply_outcome(
            payload.provider_call_id,
            payload.status,
            duration=payload.duration,
            detail=payload.detail,
        )
    except UnresolvableCallbackError as e:
        raise to_http_error(e)

    return {
        "applied": result.applied,
        "status": result.status,
        "lead_status": result.lead_status,
    }
