"""
Working Set
Bounded in-memory record of the calls the dispatcher currently has in flight
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Set

from leaddialer.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class WorkingSetEntry:
    lead_id: str
    agent_id: str
    started_at: datetime
    call_attempt_id: Optional[str] = None

    def elapsed_seconds(self, now: Optional[datetime] = None) -> int:
        return max(0, int(((now or utcnow()) - self.started_at).total_seconds()))


class WorkingSet:
    """
    Leads with a call in flight, keyed by lead id.

    The capacity check and the insert happen in the same synchronous call,
    so nothing can slip in between them on the event loop.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("concurrency limit must be at least 1")
        self._limit = limit
        self._entries: Dict[str, WorkingSetEntry] = {}

    @property
    def limit(self) -> int:
        return self._limit

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, lead_id: str) -> bool:
        return lead_id in self._entries

    def has_capacity(self) -> bool:
        return len(self._entries) < self._limit

    def try_add(self, lead_id: str, agent_id: str, now: Optional[datetime] = None) -> bool:
        """Reserve a slot. False when full or the lead is already tracked."""
        if lead_id in self._entries or not self.has_capacity():
            return False
        self._entries[lead_id] = WorkingSetEntry(lead_id, agent_id, now or utcnow())
        return True

    def attach_attempt(self, lead_id: str, call_attempt_id: str) -> None:
        entry = self._entries.get(lead_id)
        if entry is not None:
            entry.call_attempt_id = call_attempt_id

    def remove(self, lead_id: str) -> Optional[WorkingSetEntry]:
        entry = self._entries.pop(lead_id, None)
        if entry is not None:
            logger.debug(f"Released working-set slot for lead {lead_id} ({len(self._entries)}/{self._limit})")
        return entry

    def get(self, lead_id: str) -> Optional[WorkingSetEntry]:
        return self._entries.get(lead_id)

    def agent_ids(self) -> Set[str]:
        return {entry.agent_id for entry in self._entries.values()}

    def snapshot(self) -> List[WorkingSetEntry]:
        return sorted(self._entries.values(), key=lambda e: e.started_at)

    def clear(self) -> None:
        self._entries.clear()
