"""
Agent Domain Models
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


class Agent(BaseModel):
    """Human representative who receives transferred calls"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    phone: str
    available: bool = False
    active: bool = True
    last_login_at: Optional[datetime] = None
    total_calls: int = 0
    successful_calls: int = 0
    total_talk_time: int = 0


class AgentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., max_length=100)
    phone: str
    available: bool = False
