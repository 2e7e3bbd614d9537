"""
Lead Domain Models
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum


class LeadPriority(str, Enum):
    """Call ordering priority"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Explicit rank table: lower rank is called first. Labels do not sort
# correctly as strings, so ordering must always go through this table.
PRIORITY_RANK: Dict[str, int] = {
    LeadPriority.URGENT.value: 0,
    LeadPriority.HIGH.value: 1,
    LeadPriority.MEDIUM.value: 2,
    LeadPriority.LOW.value: 3,
}

# Delay applied by a manual requeue, per priority
REQUEUE_DELAY_SECONDS: Dict[str, int] = {
    LeadPriority.URGENT.value: 0,
    LeadPriority.HIGH.value: 0,
    LeadPriority.MEDIUM.value: 2 * 60,
    LeadPriority.LOW.value: 10 * 60,
}


class LeadStatus(str, Enum):
    """Lead lifecycle status"""
    PENDING = "pending"
    CLAIMED = "claimed"
    CALLING = "calling"
    ANSWERED = "answered"
    NO_ANSWER = "no_answer"
    BUSY = "busy"
    FAILED = "failed"
    COMPLETED = "completed"
    TRANSFERRED = "transferred"


PHONE_PATTERN = r"^\+?[\d\s\-\(\)]+$"


class AttemptHistoryEntry(BaseModel):
    """One countable call outcome in a lead's history"""
    model_config = ConfigDict(from_attributes=True)

    attempt_number: int
    timestamp: datetime
    outcome: str
    duration: int = 0
    notes: Optional[str] = None


class Lead(BaseModel):
    """Lead/Contact for calling"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    phone: str
    name: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    source: str = "manual"
    priority: LeadPriority = LeadPriority.MEDIUM
    status: LeadStatus = LeadStatus.PENDING
    attempt_count: int = 0
    next_eligible_at: Optional[datetime] = None
    assigned_agent_id: Optional[str] = None
    active: bool = True
    created_at: datetime
    updated_at: datetime
    last_attempt_at: Optional[datetime] = None
    attempt_history: List[AttemptHistoryEntry] = Field(default_factory=list)


class LeadCreate(BaseModel):
    """Manual lead entry"""
    model_config = ConfigDict(extra="forbid")

    phone: str = Field(..., pattern=PHONE_PATTERN)
    name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    tags: List[str] = Field(default_factory=list)
    source: str = "manual"
    priority: LeadPriority = LeadPriority.MEDIUM
