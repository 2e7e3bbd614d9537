"""
Lead Store
Persisted leads with eligibility queries and atomic state transitions.

Every transition that depends on the current state is a single conditional
UPDATE ... RETURNING, so two interleaved operations can never both win.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, List

from sqlalchemy import select, update, case, or_, and_, literal, null, true, false, DateTime
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from leaddialer.core.exceptions import DuplicateLeadError, LeadNotFoundError, LeadNotAvailableError
from leaddialer.domain.models.lead import (
    Lead, LeadCreate, LeadStatus, LeadPriority, PRIORITY_RANK, REQUEUE_DELAY_SECONDS
)
from leaddialer.infrastructure.storage.database import Database
from leaddialer.infrastructure.storage.models import LeadRecord, LeadAttemptRecord
from leaddialer.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def _priority_rank(entity=LeadRecord):
    return case(PRIORITY_RANK, value=entity.priority, else_=len(PRIORITY_RANK))


def _eligible(now: datetime, entity=LeadRecord):
    return and_(
        entity.active.is_(True),
        entity.status == LeadStatus.PENDING.value,
        or_(entity.next_eligible_at.is_(None), entity.next_eligible_at <= now),
    )


class LeadStore:
    """Lead persistence backed by SQLAlchemy."""

    def __init__(self, database: Database):
        self._db = database

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    def create(self, data: LeadCreate, now: Optional[datetime] = None) -> Lead:
        """Insert a new pending lead. Duplicate phone numbers are rejected."""
        now = now or utcnow()
        try:
            with self._db.session() as session:
                record = LeadRecord(
                    phone=data.phone.strip(),
                    name=data.name,
                    email=data.email.strip().lower() if data.email else None,
                    notes=data.notes,
                    tags=list(data.tags),
                    source=data.source,
                    priority=data.priority.value,
                    status=LeadStatus.PENDING.value,
                    attempt_count=0,
                    active=True,
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)
                session.flush()
                lead = Lead.model_validate(record)
        except IntegrityError:
            raise DuplicateLeadError(data.phone)

        logger.info(f"Created lead {lead.id} ({lead.phone}, priority={lead.priority.value})")
        return lead

    def get(self, lead_id: str) -> Lead:
        with self._db.session() as session:
            record = session.get(LeadRecord, lead_id)
            if record is None:
                raise LeadNotFoundError(f"Lead {lead_id} not found")
            return Lead.model_validate(record)

    def list_by_status(self, status: LeadStatus) -> List[Lead]:
        with self._db.session() as session:
            records = session.scalars(
                select(LeadRecord)
                .where(LeadRecord.status == status.value)
                .order_by(LeadRecord.created_at)
            ).all()
            return [Lead.model_validate(r) for r in records]

    # ------------------------------------------------------------------
    # Dispatcher transitions
    # ------------------------------------------------------------------

    def select_next_eligible(self, now: Optional[datetime] = None) -> Optional[Lead]:
        """
        Peek at the lead the next claim would take.

        Ordered by priority rank (urgent first) then creation time.
        Does not modify anything.
        """
        now = now or utcnow()
        with self._db.session() as session:
            record = session.scalars(
                select(LeadRecord)
                .where(_eligible(now))
                .order_by(_priority_rank(), LeadRecord.created_at, LeadRecord.id)
                .limit(1)
            ).first()
            return Lead.model_validate(record) if record else None

    def claim_next_eligible(self, agent_id: str, now: Optional[datetime] = None) -> Optional[Lead]:
        """
        Atomically select the best eligible lead and move it to ``calling``.

        Returns None when nothing is eligible or another claimer won.
        """
        now = now or utcnow()
        # Aliased so the subquery is not correlated to the UPDATE target
        pick = aliased(LeadRecord)
        candidate = (
            select(pick.id)
            .where(_eligible(now, pick))
            .order_by(_priority_rank(pick), pick.created_at, pick.id)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(LeadRecord)
            .where(LeadRecord.id == candidate, _eligible(now))
            .values(
                status=LeadStatus.CALLING.value,
                assigned_agent_id=agent_id,
                updated_at=now,
            )
            .returning(LeadRecord.id)
            .execution_options(synchronize_session=False)
        )
        return self._execute_transition(stmt)

    def start_calling(self, lead_id: str, agent_id: str, now: Optional[datetime] = None) -> Lead:
        """
        Manual call start: the lead must be unassigned and pending, or
        claimed by this same agent.
        """
        now = now or utcnow()
        stmt = (
            update(LeadRecord)
            .where(
                LeadRecord.id == lead_id,
                LeadRecord.active.is_(True),
                or_(
                    and_(
                        LeadRecord.status == LeadStatus.PENDING.value,
                        LeadRecord.assigned_agent_id.is_(None),
                    ),
                    and_(
                        LeadRecord.status == LeadStatus.CLAIMED.value,
                        LeadRecord.assigned_agent_id == agent_id,
                    ),
                ),
            )
            .values(status=LeadStatus.CALLING.value, assigned_agent_id=agent_id, updated_at=now)
            .returning(LeadRecord.id)
            .execution_options(synchronize_session=False)
        )
        return self._require(self._execute_transition(stmt), lead_id, "start calling")

    def revert_to_pending(self, lead_id: str, now: Optional[datetime] = None) -> Optional[Lead]:
        """Undo a claim after a placement failure. Attempt count is untouched."""
        now = now or utcnow()
        stmt = (
            update(LeadRecord)
            .where(LeadRecord.id == lead_id, LeadRecord.status == LeadStatus.CALLING.value)
            .values(status=LeadStatus.PENDING.value, assigned_agent_id=None, updated_at=now)
            .returning(LeadRecord.id)
            .execution_options(synchronize_session=False)
        )
        return self._execute_transition(stmt)

    # ------------------------------------------------------------------
    # Operator claims
    # ------------------------------------------------------------------

    def claim_for_agent(self, lead_id: str, agent_id: str, now: Optional[datetime] = None) -> Lead:
        now = now or utcnow()
        stmt = (
            update(LeadRecord)
            .where(
                LeadRecord.id == lead_id,
                LeadRecord.active.is_(True),
                LeadRecord.status == LeadStatus.PENDING.value,
                LeadRecord.assigned_agent_id.is_(None),
            )
            .values(status=LeadStatus.CLAIMED.value, assigned_agent_id=agent_id, updated_at=now)
            .returning(LeadRecord.id)
            .execution_options(synchronize_session=False)
        )
        return self._require(self._execute_transition(stmt), lead_id, "claim")

    def release_claim(self, lead_id: str, agent_id: str, now: Optional[datetime] = None) -> Lead:
        now = now or utcnow()
        stmt = (
            update(LeadRecord)
            .where(
                LeadRecord.id == lead_id,
                LeadRecord.status == LeadStatus.CLAIMED.value,
                LeadRecord.assigned_agent_id == agent_id,
            )
            .values(status=LeadStatus.PENDING.value, assigned_agent_id=None, updated_at=now)
            .returning(LeadRecord.id)
            .execution_options(synchronize_session=False)
        )
        return self._require(self._execute_transition(stmt), lead_id, "release")

    def requeue(
        self,
        lead_id: str,
        priority: Optional[LeadPriority] = None,
        now: Optional[datetime] = None,
    ) -> Lead:
        """
        Reschedule a pending lead by urgency: urgent/high now, medium in
        two minutes, low in ten. Without an explicit priority the lead's
        own priority decides.
        """
        now = now or utcnow()
        if priority is not None:
            next_at = literal(now + timedelta(seconds=REQUEUE_DELAY_SECONDS[priority.value]), DateTime)
        else:
            next_at = case(
                {
                    label: literal(now + timedelta(seconds=delay), DateTime)
                    for label, delay in REQUEUE_DELAY_SECONDS.items()
                },
                value=LeadRecord.priority,
                else_=literal(now, DateTime),
            )
        stmt = (
            update(LeadRecord)
            .where(
                LeadRecord.id == lead_id,
                LeadRecord.active.is_(True),
                LeadRecord.status == LeadStatus.PENDING.value,
            )
            .values(next_eligible_at=next_at, updated_at=now)
            .returning(LeadRecord.id)
            .execution_options(synchronize_session=False)
        )
        return self._require(self._execute_transition(stmt), lead_id, "requeue")

    # ------------------------------------------------------------------
    # Reconciler transitions
    # ------------------------------------------------------------------

    def mark_answered(self, lead_id: str, now: Optional[datetime] = None) -> Optional[Lead]:
        now = now or utcnow()
        stmt = (
            update(LeadRecord)
            .where(LeadRecord.id == lead_id, LeadRecord.status == LeadStatus.CALLING.value)
            .values(status=LeadStatus.ANSWERED.value, updated_at=now)
            .returning(LeadRecord.id)
            .execution_options(synchronize_session=False)
        )
        return self._execute_transition(stmt)

    def mark_transferred(self, lead_id: str, now: Optional[datetime] = None) -> Optional[Lead]:
        """Call connected to the agent and ended normally."""
        now = now or utcnow()
        stmt = (
            update(LeadRecord)
            .where(
                LeadRecord.id == lead_id,
                LeadRecord.status.in_([LeadStatus.CALLING.value, LeadStatus.ANSWERED.value]),
            )
            .values(status=LeadStatus.TRANSFERRED.value, last_attempt_at=now, updated_at=now)
            .returning(LeadRecord.id)
            .execution_options(synchronize_session=False)
        )
        return self._execute_transition(stmt)

    def release_without_attempt(self, lead_id: str, now: Optional[datetime] = None) -> Optional[Lead]:
        """Return an in-flight lead to pending without counting an attempt."""
        now = now or utcnow()
        stmt = (
            update(LeadRecord)
            .where(
                LeadRecord.id == lead_id,
                LeadRecord.status.in_([LeadStatus.CALLING.value, LeadStatus.ANSWERED.value]),
            )
            .values(status=LeadStatus.PENDING.value, assigned_agent_id=None, updated_at=now)
            .returning(LeadRecord.id)
            .execution_options(synchronize_session=False)
        )
        return self._execute_transition(stmt)

    def record_outcome(
        self,
        lead_id: str,
        outcome: str,
        retry_delay: timedelta,
        max_attempts: int,
        duration: int = 0,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Lead]:
        """
        Count a busy/no_answer/failed outcome.

        Increments attempt_count by exactly one and either reschedules the
        lead (pending, next_eligible_at = now + retry_delay) or retires it
        (failed, inactive) when the cap is reached. Returns None when the
        lead was not in flight, so a replayed outcome is never counted twice.
        """
        now = now or utcnow()
        new_count = LeadRecord.attempt_count + 1
        reached = new_count >= max_attempts
        stmt = (
            update(LeadRecord)
            .where(
                LeadRecord.id == lead_id,
                LeadRecord.active.is_(True),
                LeadRecord.status.in_([LeadStatus.CALLING.value, LeadStatus.ANSWERED.value]),
                LeadRecord.attempt_count < max_attempts,
            )
            .values(
                attempt_count=new_count,
                status=case((reached, LeadStatus.FAILED.value), else_=LeadStatus.PENDING.value),
                active=case((reached, false()), else_=true()),
                next_eligible_at=case(
                    (reached, null()),
                    else_=literal(now + retry_delay, DateTime),
                ),
                assigned_agent_id=None,
                last_attempt_at=now,
                updated_at=now,
            )
            .returning(LeadRecord.id, LeadRecord.attempt_count)
            .execution_options(synchronize_session=False)
        )
        with self._db.session() as session:
            row = session.execute(stmt).first()
            if row is None:
                return None
            session.add(LeadAttemptRecord(
                lead_id=lead_id,
                attempt_number=row.attempt_count,
                timestamp=now,
                outcome=outcome,
                duration=duration or 0,
                notes=notes,
            ))
            session.flush()
            lead = Lead.model_validate(session.get(LeadRecord, lead_id))

        if lead.status == LeadStatus.FAILED:
            logger.warning(
                f"Lead {lead_id} retired after {lead.attempt_count} attempts (last outcome: {outcome})"
            )
        else:
            logger.info(
                f"Lead {lead_id} outcome {outcome} (attempt {lead.attempt_count}), "
                f"next eligible at {lead.next_eligible_at}"
            )
        return lead

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def reset_stuck(
        self,
        threshold: timedelta,
        now: Optional[datetime] = None,
        answered_threshold: Optional[timedelta] = None,
    ) -> List[str]:
        """
        Reset leads stuck in ``calling`` longer than ``threshold``, and
        leads left in ``answered`` longer than ``answered_threshold``
        (a completion callback that never arrived).

        Attempt count is not touched; the orphaned attempt is discarded.
        Returns the ids of the reset leads.
        """
        now = now or utcnow()
        stuck = and_(
            LeadRecord.status == LeadStatus.CALLING.value,
            LeadRecord.updated_at < now - threshold,
        )
        if answered_threshold is not None:
            stuck = or_(stuck, and_(
                LeadRecord.status == LeadStatus.ANSWERED.value,
                LeadRecord.updated_at < now - answered_threshold,
            ))
        stmt = (
            update(LeadRecord)
            .where(stuck)
            .values(status=LeadStatus.PENDING.value, assigned_agent_id=None, updated_at=now)
            .returning(LeadRecord.id)
            .execution_options(synchronize_session=False)
        )
        with self._db.session() as session:
            return list(session.execute(stmt).scalars().all())

    # ------------------------------------------------------------------

    def _execute_transition(self, stmt) -> Optional[Lead]:
        with self._db.session() as session:
            lead_id = session.execute(stmt).scalars().first()
            if lead_id is None:
                return None
            return self._load(session, lead_id)

    @staticmethod
    def _load(session: Session, lead_id: str) -> Lead:
        return Lead.model_validate(session.get(LeadRecord, lead_id))

    def _require(self, lead: Optional[Lead], lead_id: str, action: str) -> Lead:
        if lead is not None:
            return lead
        # Distinguish "missing" from "wrong state" for the caller
        self.get(lead_id)
        raise LeadNotAvailableError(f"Lead {lead_id} is not available to {action}")
