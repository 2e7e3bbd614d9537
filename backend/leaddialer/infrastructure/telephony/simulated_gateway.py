"""
Simulated Telephony Gateway
Used when no provider credentials are configured
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from leaddialer.domain.interfaces.telephony_gateway import (
    TelephonyGateway, CallbackTargets, PlacementResult, ConnectInstruction
)

logger = logging.getLogger(__name__)


@dataclass
class PlacedCall:
    provider_call_id: str
    to_number: str
    from_number: str
    callbacks: CallbackTargets


class SimulatedGateway(TelephonyGateway):
    """
    Accepts every placement and hands out ``sim_`` call ids.

    Nothing calls back on its own; progress is driven by posting to the
    webhook endpoints (or calling the reconciler directly in tests).
    """

    def __init__(self):
        self.placed_calls: List[PlacedCall] = []
        self._fail_reason: Optional[str] = None

    @property
    def name(self) -> str:
        return "simulated"

    async def initialize(self) -> None:
        logger.warning("Telephony provider not configured - calls will be simulated")

    def fail_next(self, reason: str = "simulated placement failure") -> None:
        """Reject the next placement."""
        self._fail_reason = reason

    async def place_call(
        self,
        to_number: str,
        from_number: str,
        callbacks: CallbackTargets,
    ) -> PlacementResult:
        if self._fail_reason is not None:
            reason, self._fail_reason = self._fail_reason, None
            logger.info(f"Simulated placement to {to_number} rejected: {reason}")
            return PlacementResult.failed(reason, error_code="simulated")

        call_id = f"sim_{uuid.uuid4().hex}"
        self.placed_calls.append(PlacedCall(call_id, to_number, from_number, callbacks))
        logger.info(f"Simulating call to {to_number} with id {call_id}")
        return PlacementResult.ok(call_id)

    def render_connect(self, instruction: ConnectInstruction) -> Dict[str, Any]:
        if not instruction.agent_phone:
            return {"action": "hangup", "reason": "no_agent"}
        return {"action": "connect", "number": instruction.agent_phone, "greeting": instruction.greeting}

    async def cleanup(self) -> None:
        self.placed_calls.clear()
