"""
SQLAlchemy Database Models
Maps to the leads, lead_attempts, call_attempts and agents tables
"""
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Text, Float, JSON, ForeignKey, Index
)
from sqlalchemy.orm import declarative_base, relationship
import uuid

from leaddialer.utils.time_utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class AgentRecord(Base):
    """Agent model - maps to agents table"""
    __tablename__ = "agents"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False)
    phone = Column(String(32), nullable=False)
    available = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
    last_login_at = Column(DateTime)
    total_calls = Column(Integer, nullable=False, default=0)
    successful_calls = Column(Integer, nullable=False, default=0)
    total_talk_time = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_agents_selection", "active", "available", "total_calls"),
    )


class LeadRecord(Base):
    """Lead model - maps to leads table"""
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=_uuid)
    phone = Column(String(32), nullable=False, unique=True)
    name = Column(String(100))
    email = Column(String(255))
    notes = Column(String(500))
    tags = Column(JSON, default=list)
    source = Column(String(50), default="manual")
    priority = Column(String(16), nullable=False, default="medium")
    status = Column(String(20), nullable=False, default="pending")
    attempt_count = Column(Integer, nullable=False, default=0)
    next_eligible_at = Column(DateTime)
    assigned_agent_id = Column(String(36), ForeignKey("agents.id"))
    active = Column(Boolean, nullable=False, default=True)
    last_attempt_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    attempt_history = relationship(
        "LeadAttemptRecord",
        order_by="LeadAttemptRecord.attempt_number",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_leads_eligibility", "active", "status", "next_eligible_at"),
        Index("ix_leads_assigned", "assigned_agent_id", "status"),
    )


class LeadAttemptRecord(Base):
    """Append-only attempt history - maps to lead_attempts table"""
    __tablename__ = "lead_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(String(36), ForeignKey("leads.id"), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    outcome = Column(String(20), nullable=False)
    duration = Column(Integer, nullable=False, default=0)
    notes = Column(Text)


class CallAttemptRecord(Base):
    """Call attempt model - maps to call_attempts table"""
    __tablename__ = "call_attempts"

    id = Column(String(36), primary_key=True, default=_uuid)
    lead_id = Column(String(36), ForeignKey("leads.id"), nullable=False)
    agent_id = Column(String(36), ForeignKey("agents.id"))
    # Unique when present; NULLs do not collide
    provider_call_id = Column(String(128), unique=True)
    status = Column(String(20), nullable=False, default="initiated")
    from_number = Column(String(32), nullable=False)
    to_number = Column(String(32), nullable=False)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    answered_at = Column(DateTime)
    ended_at = Column(DateTime)
    duration = Column(Integer, nullable=False, default=0)
    cost = Column(Float, nullable=False, default=0.0)
    notes = Column(Text)
    error_code = Column(String(64))
    error_message = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_call_attempts_lead", "lead_id", "created_at"),
        Index("ix_call_attempts_agent", "agent_id", "created_at"),
        Index("ix_call_attempts_status", "status", "created_at"),
    )
