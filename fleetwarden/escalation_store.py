"""
Escalation Store
================

Persistence for escalations in the ``escalations`` table. The store is a
thin data layer with no lifecycle rules; EscalationQueue enforces those.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetwarden.action_logger import ActionLog, as_utc
from fleetwarden.actions import PRIORITY_ORDER, Priority
from fleetwarden.db.connection import get_session_maker
from fleetwarden.db.models import EscalationModel
from fleetwarden.events import DetectionEvent, event_from_dict


class EscalationStatus(Enum):
    """Lifecycle status of an escalation."""
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


def _value(value):
    return value.value if isinstance(value, Enum) else value


@dataclass
class Escalation:
    """An event handed to a human."""
    id: str
    project_id: str
    priority: str
    type: str
    title: str
    detection_event: DetectionEvent
    created_at: datetime
    agent_id: Optional[str] = None
    task_id: Optional[str] = None
    console_output: str = ""
    attempted_actions: list[ActionLog] = field(default_factory=list)
    suggested_action: Optional[str] = None
    status: str = EscalationStatus.PENDING.value
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None
    expires_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Convert to a JSON-safe dictionary."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "priority": self.priority,
            "type": self.type,
            "title": self.title,
            "agent_id": self.agent_id,
            "task_id": self.task_id,
            "detection_event": self.detection_event.to_dict(),
            "console_output": self.console_output,
            "attempted_actions": [a.to_dict() for a in self.attempted_actions],
            "suggested_action": self.suggested_action,
            "status": self.status,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution": self.resolution,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_model(cls, row: EscalationModel) -> "Escalation":
        return cls(
            id=row.escalation_id,
            project_id=row.project_id,
            priority=row.priority,
            type=row.type,
            title=row.title,
            agent_id=row.agent_id,
            task_id=row.task_id,
            detection_event=event_from_dict(row.detection_event),
            console_output=row.console_output,
            attempted_actions=[ActionLog.from_dict(a) for a in row.attempted_actions or []],
            suggested_action=row.suggested_action,
            status=row.status,
            resolved_by=row.resolved_by,
            resolved_at=as_utc(row.resolved_at),
            resolution=row.resolution,
            created_at=as_utc(row.created_at),
            expires_at=as_utc(row.expires_at),
        )


class EscalationStore:
    """Persists escalations with an async SQLAlchemy session maker."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker or get_session_maker()

    async def create_escalation(
        self,
        project_id: str,
        priority: Priority | str,
        type: str,
        title: str,
        detection_event: DetectionEvent,
        console_output: str = "",
        attempted_actions: Sequence[ActionLog] = (),
        agent_id: Optional[str] = None,
        task_id: Optional[str] = None,
        suggested_action: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Escalation:
        """Insert a pending escalation and return it."""
        async with self._session_maker() as session:
            row = EscalationModel(
                project_id=project_id,
                priority=Priority(_value(priority)).value,
                type=type,
                title=title,
                agent_id=agent_id,
                task_id=task_id,
                detection_event=detection_event.to_dict(),
                console_output=console_output,
                attempted_actions=[a.to_dict() for a in attempted_actions],
                suggested_action=suggested_action,
                status=EscalationStatus.PENDING.value,
                expires_at=as_utc(expires_at),
            )
            session.add(row)
            await session.commit()
            return Escalation.from_model(row)

    async def get_escalation(self, escalation_id: str) -> Optional[Escalation]:
        async with self._session_maker() as session:
            row = await self._get_row(session, escalation_id)
            return Escalation.from_model(row) if row else None

    async def list_escalations(
        self,
        project_id: str,
        status: Optional[EscalationStatus | str] = None,
        priority: Optional[Priority | str] = None,
    ) -> list[Escalation]:
        """
        List escalations for a project.

        Ordered by priority (critical, high, normal), then oldest first.
        """
        stmt = select(EscalationModel).where(EscalationModel.project_id == project_id)
        if status is not None:
            stmt = stmt.where(EscalationModel.status == _value(status))
        if priority is not None:
            stmt = stmt.where(EscalationModel.priority == _value(priority))
        stmt = stmt.order_by(
            case(PRIORITY_ORDER, value=EscalationModel.priority, else_=len(PRIORITY_ORDER) + 1),
            EscalationModel.created_at.asc(),
            EscalationModel.id.asc(),
        )

        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return [Escalation.from_model(row) for row in result.scalars().all()]

    async def update_escalation(
        self,
        escalation_id: str,
        status: Optional[EscalationStatus | str] = None,
        resolved_by: Optional[str] = None,
        resolved_at: Optional[datetime] = None,
        resolution: Optional[str] = None,
    ) -> Optional[Escalation]:
        """
        Update the provided fields of an escalation.

        Returns:
            The updated escalation, or None if the id is unknown
        """
        async with self._session_maker() as session:
            row = await self._get_row(session, escalation_id)
            if row is None:
                return None
            if status is not None:
                row.status = EscalationStatus(_value(status)).value
            if resolved_by is not None:
                row.resolved_by = resolved_by
            if resolved_at is not None:
                row.resolved_at = as_utc(resolved_at)
            if resolution is not None:
                row.resolution = resolution
            await session.commit()
            return Escalation.from_model(row)

    async def delete_escalation(self, escalation_id: str) -> bool:
        """Delete an escalation. Returns True if a row was removed."""
        async with self._session_maker() as session:
            result = await session.execute(
                delete(EscalationModel).where(EscalationModel.escalation_id == escalation_id)
            )
            await session.commit()
            return result.rowcount > 0

    async def count_by_status(self, project_id: str) -> dict[str, int]:
        """Count escalations per status. Every status is present in the result."""
        counts = {s.value: 0 for s in EscalationStatus}
        async with self._session_maker() as session:
            result = await session.execute(
                select(EscalationModel.status, func.count(EscalationModel.id))
                .where(EscalationModel.project_id == project_id)
                .group_by(EscalationModel.status)
            )
            for status, count in result.all():
                counts[status] = count
        return counts

    async def _get_row(self, session: AsyncSession, escalation_id: str) -> Optional[EscalationModel]:
        result = await session.execute(
            select(EscalationModel).where(EscalationModel.escalation_id == escalation_id)
        )
        return result.scalar_one_or_none()
