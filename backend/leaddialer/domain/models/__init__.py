"""Domain models"""

# Lead models
from .lead import (
    LeadPriority,
    LeadStatus,
    AttemptHistoryEntry,
    Lead,
    LeadCreate,
    PRIORITY_RANK,
)

# Call attempt models
from .call_attempt import (
    CallAttemptStatus,
    CallAttempt,
    ManualCallUpdate,
    CallStats,
)

# Agent models
from .agent import (
    Agent,
    AgentCreate,
)

# Lifecycle events
from .events import (
    LifecycleEventType,
    LifecycleEvent,
)

__all__ = [
    # Leads
    "LeadPriority",
    "LeadStatus",
    "AttemptHistoryEntry",
    "Lead",
    "LeadCreate",
    "PRIORITY_RANK",
    # Call attempts
    "CallAttemptStatus",
    "CallAttempt",
    "ManualCallUpdate",
    "CallStats",
    # Agents
    "Agent",
    "AgentCreate",
    # Events
    "LifecycleEventType",
    "LifecycleEvent",
]
