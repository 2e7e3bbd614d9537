"""
Call Attempt Domain Models
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Set
from datetime import datetime
from enum import Enum


class CallAttemptStatus(str, Enum):
    """Call attempt status (mirror of provider call states)"""
    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    COMPLETED = "completed"
    BUSY = "busy"
    NO_ANSWER = "no_answer"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATUSES: Set[str] = {
    CallAttemptStatus.COMPLETED.value,
    CallAttemptStatus.BUSY.value,
    CallAttemptStatus.NO_ANSWER.value,
    CallAttemptStatus.FAILED.value,
    CallAttemptStatus.CANCELED.value,
}

# Outcomes that count against the lead's attempt cap
COUNTABLE_OUTCOMES: Set[str] = {
    CallAttemptStatus.BUSY.value,
    CallAttemptStatus.NO_ANSWER.value,
    CallAttemptStatus.FAILED.value,
}

# Statuses a transition into the key status may come from.
# Status only moves forward; nothing leaves a terminal status.
ALLOWED_PREDECESSORS: Dict[str, Set[str]] = {
    CallAttemptStatus.INITIATED.value: set(),
    CallAttemptStatus.RINGING.value: {CallAttemptStatus.INITIATED.value},
    CallAttemptStatus.ANSWERED.value: {
        CallAttemptStatus.INITIATED.value,
        CallAttemptStatus.RINGING.value,
    },
}
for _terminal in TERMINAL_STATUSES:
    ALLOWED_PREDECESSORS[_terminal] = {
        CallAttemptStatus.INITIATED.value,
        CallAttemptStatus.RINGING.value,
        CallAttemptStatus.ANSWERED.value,
    }


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


class CallAttempt(BaseModel):
    """One outbound call placed for a lead"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    lead_id: str
    agent_id: Optional[str] = None
    provider_call_id: Optional[str] = None
    status: CallAttemptStatus = CallAttemptStatus.INITIATED
    from_number: str
    to_number: str
    started_at: datetime
    answered_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration: int = 0
    cost: float = 0.0
    notes: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)


class ManualCallUpdate(BaseModel):
    """
    Status update entered from an agent's console.

    Only these fields may be written; anything else in the request body is
    rejected.
    """
    model_config = ConfigDict(extra="forbid")

    status: CallAttemptStatus
    duration: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)


class CallStats(BaseModel):
    """Aggregate call statistics"""
    total_calls: int = 0
    answered_calls: int = 0
    completed_calls: int = 0
    total_duration: int = 0
    average_duration: float = 0.0
    total_cost: float = 0.0
