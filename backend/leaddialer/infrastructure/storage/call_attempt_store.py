"""
Call Attempt Store
Persisted call attempts with guarded status transitions and statistics
"""
import logging
from datetime import datetime
from typing import Optional, List

from sqlalchemy import select, update, func, case
from sqlalchemy.exc import IntegrityError

from leaddialer.core.exceptions import CallAttemptNotFoundError, InvalidTransitionError
from leaddialer.domain.models.call_attempt import (
    CallAttempt, CallAttemptStatus, CallStats, ALLOWED_PREDECESSORS, TERMINAL_STATUSES
)
from leaddialer.infrastructure.storage.database import Database
from leaddialer.infrastructure.storage.models import CallAttemptRecord
from leaddialer.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

FAILURE_STATUSES = {
    CallAttemptStatus.BUSY.value,
    CallAttemptStatus.NO_ANSWER.value,
    CallAttemptStatus.FAILED.value,
    CallAttemptStatus.CANCELED.value,
}


class CallAttemptStore:
    """Call attempt persistence backed by SQLAlchemy."""

    def __init__(self, database: Database):
        self._db = database

    def create(
        self,
        lead_id: str,
        agent_id: Optional[str],
        from_number: str,
        to_number: str,
        now: Optional[datetime] = None,
    ) -> CallAttempt:
        """Create an attempt in ``initiated`` status."""
        now = now or utcnow()
        with self._db.session() as session:
            record = CallAttemptRecord(
                lead_id=lead_id,
                agent_id=agent_id,
                status=CallAttemptStatus.INITIATED.value,
                from_number=from_number,
                to_number=to_number,
                started_at=now,
                duration=0,
                cost=0.0,
                created_at=now,
                updated_at=now,
            )
            session.add(record)
            session.flush()
            attempt = CallAttempt.model_validate(record)
        logger.debug(f"Created call attempt {attempt.id} for lead {lead_id}")
        return attempt

    def get(self, attempt_id: str) -> CallAttempt:
        with self._db.session() as session:
            record = session.get(CallAttemptRecord, attempt_id)
            if record is None:
                raise CallAttemptNotFoundError(f"Call attempt {attempt_id} not found")
            return CallAttempt.model_validate(record)

    def find_by_provider_call_id(self, provider_call_id: str) -> Optional[CallAttempt]:
        if not provider_call_id:
            return None
        with self._db.session() as session:
            record = session.scalars(
                select(CallAttemptRecord).where(CallAttemptRecord.provider_call_id == provider_call_id)
            ).first()
            return CallAttempt.model_validate(record) if record else None

    def set_provider_call_id(self, attempt_id: str, provider_call_id: str) -> CallAttempt:
        try:
            with self._db.session() as session:
                record = session.get(CallAttemptRecord, attempt_id)
                if record is None:
                    raise CallAttemptNotFoundError(f"Call attempt {attempt_id} not found")
                record.provider_call_id = provider_call_id
                record.updated_at = utcnow()
                session.flush()
                return CallAttempt.model_validate(record)
        except IntegrityError:
            raise InvalidTransitionError(
                f"Provider call id {provider_call_id} is already attached to another attempt"
            )

    def list_for_lead(self, lead_id: str) -> List[CallAttempt]:
        with self._db.session() as session:
            records = session.scalars(
                select(CallAttemptRecord)
                .where(CallAttemptRecord.lead_id == lead_id)
                .order_by(CallAttemptRecord.started_at)
            ).all()
            return [CallAttempt.model_validate(r) for r in records]

    def transition(
        self,
        attempt_id: str,
        status: CallAttemptStatus,
        now: Optional[datetime] = None,
        duration: Optional[int] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[CallAttempt]:
        """
        Move an attempt forward to ``status``.

        The UPDATE only matches when the current status is an allowed
        predecessor, so duplicates, regressions and anything after a
        terminal status return None and change nothing.
        """
        now = now or utcnow()
        target = status.value
        predecessors = ALLOWED_PREDECESSORS[target]
        if not predecessors:
            return None

        values = {"status": target, "updated_at": now}
        if target == CallAttemptStatus.ANSWERED.value:
            values["answered_at"] = now
        if target in TERMINAL_STATUSES:
            values["ended_at"] = now
        if target in FAILURE_STATUSES:
            values["error_code"] = error_code
            values["error_message"] = error_message
        if notes is not None:
            values["notes"] = notes

        stmt = (
            update(CallAttemptRecord)
            .where(CallAttemptRecord.id == attempt_id, CallAttemptRecord.status.in_(predecessors))
            .values(**values)
            .returning(CallAttemptRecord.id)
            .execution_options(synchronize_session=False)
        )
        with self._db.session() as session:
            matched = session.execute(stmt).scalars().first()
            if matched is None:
                return None
            record = session.get(CallAttemptRecord, attempt_id)
            if target in TERMINAL_STATUSES:
                # This session just made the row terminal, so nobody else can
                # write its duration concurrently.
                if duration is not None:
                    record.duration = int(duration)
                elif record.answered_at is not None:
                    record.duration = max(0, int((record.ended_at - record.answered_at).total_seconds()))
                session.flush()
            return CallAttempt.model_validate(record)

    def apply_correction(
        self,
        attempt_id: str,
        duration: Optional[int] = None,
        cost: Optional[float] = None,
    ) -> CallAttempt:
        """Late duration/cost correction; allowed on terminal attempts."""
        values = {"updated_at": utcnow()}
        if duration is not None:
            values["duration"] = int(duration)
        if cost is not None:
            values["cost"] = float(cost)
        with self._db.session() as session:
            session.execute(
                update(CallAttemptRecord)
                .where(CallAttemptRecord.id == attempt_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            record = session.get(CallAttemptRecord, attempt_id)
            if record is None:
                raise CallAttemptNotFoundError(f"Call attempt {attempt_id} not found")
            return CallAttempt.model_validate(record)

    def cancel_open_for_lead(
        self,
        lead_id: str,
        error_code: str,
        error_message: str,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """Close every non-terminal attempt of a lead as canceled."""
        now = now or utcnow()
        stmt = (
            update(CallAttemptRecord)
            .where(
                CallAttemptRecord.lead_id == lead_id,
                CallAttemptRecord.status.not_in(TERMINAL_STATUSES),
            )
            .values(
                status=CallAttemptStatus.CANCELED.value,
                ended_at=now,
                error_code=error_code,
                error_message=error_message,
                updated_at=now,
            )
            .returning(CallAttemptRecord.id)
            .execution_options(synchronize_session=False)
        )
        with self._db.session() as session:
            return list(session.execute(stmt).scalars().all())

    def get_call_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        agent_id: Optional[str] = None,
        status: Optional[CallAttemptStatus] = None,
    ) -> CallStats:
        """Aggregate totals over the filtered attempts."""
        stmt = select(
            func.count(CallAttemptRecord.id),
            func.sum(case((CallAttemptRecord.answered_at.is_not(None), 1), else_=0)),
            func.sum(case((CallAttemptRecord.status == CallAttemptStatus.COMPLETED.value, 1), else_=0)),
            func.coalesce(func.sum(CallAttemptRecord.duration), 0),
            func.coalesce(func.avg(CallAttemptRecord.duration), 0),
            func.coalesce(func.sum(CallAttemptRecord.cost), 0),
        )
        if start is not None:
            stmt = stmt.where(CallAttemptRecord.started_at >= start)
        if end is not None:
            stmt = stmt.where(CallAttemptRecord.started_at <= end)
        if agent_id is not None:
            stmt = stmt.where(CallAttemptRecord.agent_id == agent_id)
        if status is not None:
            stmt = stmt.where(CallAttemptRecord.status == status.value)

        with self._db.session() as session:
            total, answered, completed, total_duration, avg_duration, total_cost = session.execute(stmt).one()

        return CallStats(
            total_calls=total or 0,
            answered_calls=answered or 0,
            completed_calls=completed or 0,
            total_duration=int(total_duration or 0),
            average_duration=round(float(avg_duration or 0), 2),
            total_cost=float(total_cost or 0),
        )

    def get_recent(self, limit: int = 50) -> List[CallAttempt]:
        with self._db.session() as session:
            records = session.scalars(
                select(CallAttemptRecord)
                .order_by(CallAttemptRecord.started_at.desc())
                .limit(limit)
            ).all()
            return [CallAttempt.model_validate(r) for r in records]
