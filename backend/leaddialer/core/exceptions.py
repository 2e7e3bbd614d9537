"""
Dialer Exceptions
Error taxonomy shared by stores, dispatcher and reconciler
"""
from typing import Optional


class DialerError(Exception):
    """Base class for all dialer core errors."""


class DuplicateLeadError(DialerError):
    """A lead with the same phone number already exists."""

    def __init__(self, phone: str):
        super().__init__(f"Lead with phone {phone} already exists")
        self.phone = phone


class LeadNotFoundError(DialerError):
    """Lead id does not exist."""


class LeadNotAvailableError(DialerError):
    """Lead exists but is not in a state that allows the requested operation."""


class AgentNotFoundError(DialerError):
    """Agent id does not exist."""


class AgentUnavailableError(DialerError):
    """Agent is inactive or not available for calls."""


class CallAttemptNotFoundError(DialerError):
    """Call attempt id does not exist."""


class UnresolvableCallbackError(DialerError):
    """
    A provider callback referenced a call id the system never created.

    Surfaced to the webhook caller instead of being dropped so that
    integration problems are visible to operators.
    """

    def __init__(self, provider_call_id: Optional[str]):
        super().__init__(f"No call attempt for provider call id {provider_call_id!r}")
        self.provider_call_id = provider_call_id


class CallAttemptOwnershipError(DialerError):
    """Call attempt belongs to a different agent."""


class InvalidTransitionError(DialerError):
    """Requested status transition is not allowed from the current state."""


class ConcurrencyLimitReachedError(DialerError):
    """The dispatcher working set is full."""


class TelephonyError(Exception):
    """Base exception for telephony gateway errors."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code


class CallPlacementError(TelephonyError):
    """Gateway rejected the call synchronously."""
