"""
Telephony Gateway Factory
"""
from typing import Callable, Dict

from leaddialer.core.config import Settings
from leaddialer.domain.interfaces.telephony_gateway import TelephonyGateway


def _create_vonage(settings: Settings) -> TelephonyGateway:
    from leaddialer.infrastructure.telephony.vonage_gateway import VonageGateway
    return VonageGateway(
        application_id=settings.vonage_application_id,
        private_key_path=settings.vonage_private_key_path,
    )


def _create_simulated(settings: Settings) -> TelephonyGateway:
    from leaddialer.infrastructure.telephony.simulated_gateway import SimulatedGateway
    return SimulatedGateway()


class TelephonyFactory:
    """Factory for creating telephony gateway instances"""

    _providers: Dict[str, Callable[[Settings], TelephonyGateway]] = {
        "vonage": _create_vonage,
        "simulated": _create_simulated,
    }

    @classmethod
    def create(cls, provider_name: str, settings: Settings) -> TelephonyGateway:
        """Create telephony gateway instance"""
        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(f"Unknown telephony provider: {provider_name}. Available: {available}")

        return cls._providers[provider_name](settings)

    @classmethod
    def register(cls, name: str, builder: Callable[[Settings], TelephonyGateway]) -> None:
        """Register a provider"""
        cls._providers[name] = builder

    @classmethod
    def list_providers(cls) -> list[str]:
        """List available providers"""
        return list(cls._providers.keys())
