"""
Lifecycle Event Models
Fire-and-forget notifications consumed by external dashboards
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum

from leaddialer.utils.time_utils import utcnow


class LifecycleEventType(str, Enum):
    CALL_INITIATED = "call_initiated"
    CALL_ANSWERED = "call_answered"
    CALL_STATUS_UPDATED = "call_status_updated"


class LifecycleEvent(BaseModel):
    """Call lifecycle notification"""
    event: LifecycleEventType
    lead_id: str
    agent_id: Optional[str] = None
    call_attempt_id: str
    status: str
    timestamp: datetime = Field(default_factory=utcnow)

    def to_message(self) -> str:
        """Serialize for pub/sub delivery."""
        return self.model_dump_json()
