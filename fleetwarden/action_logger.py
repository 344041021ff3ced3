"""
Action Audit Log
================

Durable record of every autonomous action the supervisor takes, the event
that triggered it, and how it turned out. Rows are written before the
action runs so a crash mid-action still leaves a pending entry behind.

Usage:
    from fleetwarden.action_logger import ActionLogger

    logger = ActionLogger(session_maker)
    entry = await logger.log_action("proj-1", "observer-1", action, event)
    await logger.update_outcome(entry.id, "success")
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleetwarden.actions import AutonomousAction, action_from_dict
from fleetwarden.db.connection import get_session_maker
from fleetwarden.db.models import ObserverActionModel
from fleetwarden.events import DetectionEvent, event_from_dict
from fleetwarden.metrics import HumanOverride, Outcome, outcome_value


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    SQLite keeps only the wall-clock time, so values are converted before
    they are bound and naive values read back are taken as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class ActionLog:
    """One audited autonomous action."""
    id: str
    project_id: str
    observer_id: str
    action: AutonomousAction
    trigger_event: DetectionEvent
    outcome: str
    created_at: datetime
    outcome_details: Optional[str] = None
    human_override: Optional[HumanOverride] = None

    def to_dict(self) -> dict:
        """Convert to a JSON-safe dictionary."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "observer_id": self.observer_id,
            "action": self.action.to_dict(),
            "trigger_event": self.trigger_event.to_dict(),
            "outcome": self.outcome,
            "outcome_details": self.outcome_details,
            "human_override": self.human_override.to_dict() if self.human_override else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ActionLog":
        override = data.get("human_override")
        return cls(
            id=data["id"],
            project_id=data["project_id"],
            observer_id=data["observer_id"],
            action=action_from_dict(data["action"]),
            trigger_event=event_from_dict(data["trigger_event"]),
            outcome=data.get("outcome", Outcome.PENDING.value),
            outcome_details=data.get("outcome_details"),
            human_override=HumanOverride.from_dict(override) if override else None,
            created_at=as_utc(datetime.fromisoformat(data["created_at"])),
        )

    @classmethod
    def from_model(cls, row: ObserverActionModel) -> "ActionLog":
        return cls(
            id=row.action_id,
            project_id=row.project_id,
            observer_id=row.observer_id,
            action=action_from_dict(row.action),
            trigger_event=event_from_dict(row.trigger_event),
            outcome=row.outcome,
            outcome_details=row.outcome_details,
            human_override=HumanOverride.from_dict(row.human_override) if row.human_override else None,
            created_at=as_utc(row.created_at),
        )


class ActionLogger:
    """Persists ActionLog rows in the observer_actions table."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker or get_session_maker()

    async def log_action(
        self,
        project_id: str,
        observer_id: str,
        action: AutonomousAction,
        trigger_event: DetectionEvent,
    ) -> ActionLog:
        """Record an action with a pending outcome."""
        async with self._session_maker() as session:
            row = ObserverActionModel(
                project_id=project_id,
                observer_id=observer_id,
                action=action.to_dict(),
                trigger_event=trigger_event.to_dict(),
                outcome=Outcome.PENDING.value,
            )
            session.add(row)
            await session.commit()
            return ActionLog.from_model(row)

    async def get_action(self, action_id: str) -> Optional[ActionLog]:
        async with self._session_maker() as session:
            row = await self._get_row(session, action_id)
            return ActionLog.from_model(row) if row else None

    async def update_outcome(
        self,
        action_id: str,
        outcome: Outcome | str,
        details: Optional[str] = None,
    ) -> None:
        """Set the outcome (success or failure). Unknown ids are ignored."""
        value = outcome_value(outcome)
        async with self._session_maker() as session:
            row = await self._get_row(session, action_id)
            if row is None:
                return
            row.outcome = value
            row.outcome_details = details
            await session.commit()

    async def record_override(
        self,
        action_id: str,
        overridden_by: str,
        override_action: str,
        reason: Optional[str] = None,
    ) -> None:
        """Record a human override. The outcome becomes "overridden"."""
        override = HumanOverride(
            overridden_by=overridden_by,
            override_action=override_action,
            reason=reason,
        )
        async with self._session_maker() as session:
            row = await self._get_row(session, action_id)
            if row is None:
                return
            row.outcome = Outcome.OVERRIDDEN.value
            row.human_override = override.to_dict()
            await session.commit()

    async def list_actions(
        self,
        project_id: str,
        outcome: Optional[Outcome | str] = None,
    ) -> list[ActionLog]:
        """List actions for a project, newest first."""
        stmt = select(ObserverActionModel).where(ObserverActionModel.project_id == project_id)
        if outcome is not None:
            value = outcome.value if isinstance(outcome, Outcome) else outcome
            stmt = stmt.where(ObserverActionModel.outcome == value)
        stmt = stmt.order_by(ObserverActionModel.created_at.desc(), ObserverActionModel.id.desc())

        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return [ActionLog.from_model(row) for row in result.scalars().all()]

    async def get_actions_by_agent(self, project_id: str, agent_id: str) -> list[ActionLog]:
        """List actions whose trigger event came from ``agent_id``, newest first."""
        stmt = (
            select(ObserverActionModel)
            .where(ObserverActionModel.project_id == project_id)
            .where(ObserverActionModel.trigger_event["agent_id"].as_string() == agent_id)
            .order_by(ObserverActionModel.created_at.desc(), ObserverActionModel.id.desc())
        )
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            return [ActionLog.from_model(row) for row in result.scalars().all()]

    async def _get_row(self, session: AsyncSession, action_id: str) -> Optional[ObserverActionModel]:
        result = await session.execute(
            select(ObserverActionModel).where(ObserverActionModel.action_id == action_id)
        )
        return result.scalar_one_or_none()
