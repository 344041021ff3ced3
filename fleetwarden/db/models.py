"""
Database Models for Fleetwarden
===============================

SQLAlchemy models for the supervisor's durable state: escalations awaiting
humans and the audit trail of autonomous actions.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from sqlalchemy import String, Integer, DateTime, JSON, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_escalation_id() -> str:
    return f"esc-{uuid.uuid4()}"


def new_action_id() -> str:
    return f"act-{uuid.uuid4()}"


class Base(DeclarativeBase):
    pass


class EscalationModel(Base):
    """An event handed to a human, with its lifecycle state."""
    __tablename__ = "escalations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    escalation_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, default=new_escalation_id)
    project_id: Mapped[str] = mapped_column(String(100), index=True)

    priority: Mapped[str] = mapped_column(String(20), index=True)  # critical, high, normal
    type: Mapped[str] = mapped_column(String(50))  # detection event type
    title: Mapped[str] = mapped_column(Text)
    agent_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    task_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    detection_event: Mapped[Dict[str, Any]] = mapped_column(JSON)
    console_output: Mapped[str] = mapped_column(Text, default="")
    attempted_actions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    suggested_action: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending, acknowledged, resolved, dismissed
    resolved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class ObserverActionModel(Base):
    """Audit record of one autonomous action and its outcome."""
    __tablename__ = "observer_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, default=new_action_id)
    project_id: Mapped[str] = mapped_column(String(100), index=True)
    observer_id: Mapped[str] = mapped_column(String(100))

    action: Mapped[Dict[str, Any]] = mapped_column(JSON)
    trigger_event: Mapped[Dict[str, Any]] = mapped_column(JSON)

    outcome: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending, success, failure, overridden
    outcome_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    human_override: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
