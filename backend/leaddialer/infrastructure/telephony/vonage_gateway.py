"""
Vonage Call Origination Gateway
Places outbound calls via the Vonage Voice API
"""
import asyncio
import os
import logging
from typing import Any, Dict, List, Optional

from vonage import Auth, Vonage
from vonage_voice import CreateCallRequest

from leaddialer.domain.interfaces.telephony_gateway import (
    TelephonyGateway, CallbackTargets, PlacementResult, ConnectInstruction
)

logger = logging.getLogger(__name__)


class VonageGateway(TelephonyGateway):
    """
    Vonage Voice API client for outbound call origination.

    Responsibilities:
    - Create outbound calls with answer/event webhooks and ring timeout
    - Render the connect-to-agent NCCO for answered calls

    Requirements:
    - VONAGE_APPLICATION_ID and a private key file for the Voice API
    """

    def __init__(
        self,
        application_id: Optional[str] = None,
        private_key_path: Optional[str] = None,
        client: Optional[Vonage] = None,
    ):
        self._client = client
        self._initialized = client is not None
        self._application_id = application_id or os.getenv("VONAGE_APPLICATION_ID")
        self._private_key_path = private_key_path or os.getenv(
            "VONAGE_PRIVATE_KEY_PATH", "./config/private.key"
        )

    @property
    def name(self) -> str:
        return "vonage"

    async def initialize(self) -> None:
        """Initialize Vonage client."""
        if self._initialized:
            return

        if not self._application_id or not os.path.exists(self._private_key_path):
            raise RuntimeError(
                "Vonage gateway requires VONAGE_APPLICATION_ID and a readable private key"
            )

        with open(self._private_key_path, 'r') as f:
            private_key = f.read()

        self._client = Vonage(Auth(application_id=self._application_id, private_key=private_key))
        self._initialized = True
        logger.info("VonageGateway initialized successfully")

    async def place_call(
        self,
        to_number: str,
        from_number: str,
        callbacks: CallbackTargets,
    ) -> PlacementResult:
        """Create the call; any API error becomes a failed placement."""
        if not self._initialized:
            await self.initialize()

        to_number = self._normalize_number(to_number)
        from_number = self._normalize_number(from_number)

        logger.info(f"Initiating call: {from_number} -> {to_number}")

        try:
            request = CreateCallRequest(
                to=[{"type": "phone", "number": to_number.lstrip("+")}],
                from_={"type": "phone", "number": from_number.lstrip("+")},
                answer_url=[callbacks.answer_url],
                event_url=[callbacks.status_url],
                ringing_timer=callbacks.ring_timeout_seconds,
            )
            response = await asyncio.to_thread(self._client.voice.create_call, request)
        except Exception as e:
            logger.error(f"Failed to initiate call to {to_number}: {e}")
            return PlacementResult.failed(str(e), error_code=getattr(e, "code", None))

        call_uuid = getattr(response, "uuid", None)
        if not call_uuid:
            return PlacementResult.failed("No UUID returned from Vonage", error_code="no_uuid")

        logger.info(f"Call initiated: UUID={call_uuid}")
        return PlacementResult.ok(call_uuid)

    def render_connect(self, instruction: ConnectInstruction) -> List[Dict[str, Any]]:
        """Build the NCCO returned from the answer webhook."""
        if not instruction.agent_phone:
            return [{
                "action": "talk",
                "text": "We are unable to connect you at this time. Please try again later.",
            }]

        connect: Dict[str, Any] = {
            "action": "connect",
            "endpoint": [{
                "type": "phone",
                "number": self._normalize_number(instruction.agent_phone).lstrip("+"),
            }],
        }
        if instruction.caller_id:
            connect["from"] = self._normalize_number(instruction.caller_id).lstrip("+")

        return [{"action": "talk", "text": instruction.greeting}, connect]

    def _normalize_number(self, number: str) -> str:
        """
        Normalize phone number to E.164 format.

        Args:
            number: Phone number in various formats

        Returns:
            Normalized number
        """
        number = number.replace(" ", "").replace("-", "").replace("(", "").replace(")", "")

        # Add country code if missing (assuming US/Canada)
        if not number.startswith("+"):
            if len(number) == 10:
                number = "+1" + number
            else:
                number = "+" + number

        return number

    async def cleanup(self) -> None:
        """Clean up resources."""
        self._client = None
        self._initialized = False
