"""
Agent Directory
Lookup of available agents, availability toggling and aggregate counters
"""
import logging
from datetime import datetime
from typing import Optional, Iterable, List

from sqlalchemy import select, update

from leaddialer.core.exceptions import AgentNotFoundError
from leaddialer.domain.models.agent import Agent, AgentCreate
from leaddialer.infrastructure.storage.database import Database
from leaddialer.infrastructure.storage.models import AgentRecord
from leaddialer.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class AgentDirectory:
    """Agents backed by SQLAlchemy."""

    def __init__(self, database: Database):
        self._db = database

    def create(self, data: AgentCreate) -> Agent:
        with self._db.session() as session:
            record = AgentRecord(
                name=data.name,
                phone=data.phone,
                available=data.available,
                active=True,
                total_calls=0,
                successful_calls=0,
                total_talk_time=0,
            )
            session.add(record)
            session.flush()
            return Agent.model_validate(record)

    def get(self, agent_id: str) -> Agent:
        with self._db.session() as session:
            record = session.get(AgentRecord, agent_id)
            if record is None:
                raise AgentNotFoundError(f"Agent {agent_id} not found")
            return Agent.model_validate(record)

    def list_available(self) -> List[Agent]:
        with self._db.session() as session:
            records = session.scalars(
                select(AgentRecord)
                .where(AgentRecord.active.is_(True), AgentRecord.available.is_(True))
                .order_by(AgentRecord.total_calls, AgentRecord.last_login_at.desc())
            ).all()
            return [Agent.model_validate(r) for r in records]

    def find_available_agent(self, exclude: Iterable[str] = ()) -> Optional[Agent]:
        """
        Pick the active, available agent with the fewest handled calls,
        most recent login first on ties. Agents in ``exclude`` (already on
        an in-flight call) are skipped.
        """
        excluded = list(exclude)
        stmt = (
            select(AgentRecord)
            .where(AgentRecord.active.is_(True), AgentRecord.available.is_(True))
            .order_by(
                AgentRecord.total_calls,
                AgentRecord.last_login_at.desc().nulls_last(),
                AgentRecord.id,
            )
            .limit(1)
        )
        if excluded:
            stmt = stmt.where(AgentRecord.id.not_in(excluded))
        with self._db.session() as session:
            record = session.scalars(stmt).first()
            return Agent.model_validate(record) if record else None

    def update_availability(self, agent_id: str, available: bool) -> Agent:
        with self._db.session() as session:
            record = session.get(AgentRecord, agent_id)
            if record is None:
                raise AgentNotFoundError(f"Agent {agent_id} not found")
            record.available = available
            session.flush()
            agent = Agent.model_validate(record)
        logger.info(f"Agent {agent_id} availability set to {available}")
        return agent

    def record_login(self, agent_id: str, when: Optional[datetime] = None) -> None:
        with self._db.session() as session:
            session.execute(
                update(AgentRecord)
                .where(AgentRecord.id == agent_id)
                .values(last_login_at=when or utcnow())
                .execution_options(synchronize_session=False)
            )

    def record_call_result(self, agent_id: str, successful: bool, talk_time: int = 0) -> None:
        """Increment counters in one UPDATE so concurrent results both count."""
        with self._db.session() as session:
            session.execute(
                update(AgentRecord)
                .where(AgentRecord.id == agent_id)
                .values(
                    total_calls=AgentRecord.total_calls + 1,
                    successful_calls=AgentRecord.successful_calls + (1 if successful else 0),
                    total_talk_time=AgentRecord.total_talk_time + max(0, int(talk_time or 0)),
                )
                .execution_options(synchronize_session=False)
            )

    def adjust_talk_time(self, agent_id: str, delta: int) -> None:
        """Shift talk time after a late duration correction."""
        with self._db.session() as session:
            session.execute(
                update(AgentRecord)
                .where(AgentRecord.id == agent_id)
                .values(total_talk_time=AgentRecord.total_talk_time + int(delta))
                .execution_options(synchronize_session=False)
            )
