"""
Telephony Gateway Interface
Abstract base class for outbound call providers
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class CallbackTargets:
    """Where the provider reports progress for a placed call."""
    status_url: str
    answer_url: str
    ring_timeout_seconds: int = 30


@dataclass(frozen=True)
class PlacementResult:
    """Synchronous outcome of a placement request."""
    success: bool
    provider_call_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, provider_call_id: str) -> "PlacementResult":
        return cls(success=True, provider_call_id=provider_call_id)

    @classmethod
    def failed(cls, error: str, error_code: Optional[str] = None) -> "PlacementResult":
        return cls(success=False, error=error, error_code=error_code)


@dataclass(frozen=True)
class ConnectInstruction:
    """
    Provider-neutral answer instruction: bridge the callee to an agent.

    ``agent_phone`` is None when no agent can take the call; gateways then
    render a short apology instead of a bridge.
    """
    agent_phone: Optional[str]
    greeting: str
    caller_id: Optional[str] = None


class TelephonyGateway(ABC):
    """Abstract base class for telephony gateways"""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the gateway (credentials, clients)"""
        pass

    @abstractmethod
    async def place_call(
        self,
        to_number: str,
        from_number: str,
        callbacks: CallbackTargets,
    ) -> PlacementResult:
        """
        Request an outbound call.

        Implementations report rejections through the result rather than
        raising; callers still treat an unexpected exception as a failed
        placement.
        """
        pass

    @abstractmethod
    def render_connect(self, instruction: ConnectInstruction) -> Any:
        """Translate a connect instruction into the provider's call-control format"""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Release resources"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass
