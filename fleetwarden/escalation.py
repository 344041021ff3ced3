"""
Escalation Queue
================

Hands detection events that need a human to the escalation store and
drives their lifecycle:

    pending -> acknowledged
    pending | acknowledged -> resolved
    pending | acknowledged -> dismissed

Resolved and dismissed escalations are final. Every new escalation is
broadcast to "escalation" listeners (dashboards, notifiers).

Usage:
    from fleetwarden.escalation import EscalationQueue

    queue = EscalationQueue("proj-1", store)
    queue.on("escalation", lambda esc: print(esc.title))

    escalation = await queue.create_escalation(event, decision, console_output)
    await queue.acknowledge(escalation.id)
    await queue.resolve(escalation.id, "alice", "Re-ran OAuth")
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from fleetwarden.action_logger import ActionLog
from fleetwarden.actions import Decision, EscalateDecision
from fleetwarden.emitter import Emitter, Listener
from fleetwarden.errors import EscalationNotFoundError, InvalidTransitionError, UnhandledVariantError
from fleetwarden.escalation_store import Escalation, EscalationStatus, EscalationStore
from fleetwarden.events import DetectionEvent, EventType

logger = logging.getLogger(__name__)


# =============================================================================
# Titles and suggestions
# =============================================================================

_TITLES: dict[str, Callable[[DetectionEvent], str]] = {
    EventType.AUTH_REQUIRED.value: lambda e: f"Authentication required for {e.provider}",
    EventType.STUCK.value: lambda e: f"Agent {e.agent_id} appears stuck",
    EventType.CRASH.value: lambda e: f"Agent {e.agent_id} crashed",
    EventType.ERROR.value: lambda e: f"Error in agent {e.agent_id}: {e.message}",
    EventType.TEST_FAILURE.value: lambda e: f"Test failures in agent {e.agent_id}",
    EventType.BUILD_FAILURE.value: lambda e: f"Build failed for agent {e.agent_id}",
    EventType.RATE_LIMITED.value: lambda e: f"Agent {e.agent_id} rate limited by {e.provider}",
    EventType.GIT_CONFLICT.value: lambda e: f"Git conflict in agent {e.agent_id}",
    EventType.HEARTBEAT_TIMEOUT.value: lambda e: f"Heartbeat timeout for agent {e.agent_id}",
    EventType.CONTEXT_EXHAUSTION.value: lambda e: (
        f"Context exhaustion for agent {e.agent_id}: {e.usage_percent:.1f}% tokens used "
        f"({e.token_count}/{e.token_limit})"
    ),
}

_SUGGESTED_ACTIONS: dict[str, str] = {
    EventType.AUTH_REQUIRED.value: "Complete OAuth flow in browser",
    EventType.STUCK.value: "Check agent logs and restart if needed",
    EventType.CRASH.value: "Review crash logs and restart agent",
    EventType.GIT_CONFLICT.value: "Manually resolve git conflicts",
    EventType.CONTEXT_EXHAUSTION.value: "Save checkpoint and start new session with fresh context",
}


def escalation_title(event: DetectionEvent) -> str:
    """
    Human-readable title for an escalated event.

    Raises:
        UnhandledVariantError: If the event type has no title
    """
    title = _TITLES.get(event.type)
    if title is None:
        raise UnhandledVariantError("event", event.type)
    return title(event)


def suggested_action(event: DetectionEvent) -> Optional[str]:
    """What a human should probably do, if there is a standard answer."""
    return _SUGGESTED_ACTIONS.get(event.type)


# Statuses each lifecycle call may start from
_ALLOWED_FROM: dict[EscalationStatus, frozenset[str]] = {
    EscalationStatus.ACKNOWLEDGED: frozenset({EscalationStatus.PENDING.value}),
    EscalationStatus.RESOLVED: frozenset({
        EscalationStatus.PENDING.value, EscalationStatus.ACKNOWLEDGED.value,
    }),
    EscalationStatus.DISMISSED: frozenset({
        EscalationStatus.PENDING.value, EscalationStatus.ACKNOWLEDGED.value,
    }),
}


class EscalationQueue:
    """Project-scoped escalation lifecycle on top of an EscalationStore."""

    def __init__(self, project_id: str, store: Optional[EscalationStore] = None):
        self.project_id = project_id
        self.store = store or EscalationStore()
        self._emitter = Emitter()

    def on(self, topic: str, listener: Listener) -> Listener:
        """Subscribe to ``"escalation"`` notifications."""
        return self._emitter.on(topic, listener)

    def off(self, topic: str, listener: Listener) -> None:
        self._emitter.off(topic, listener)

    async def create_escalation(
        self,
        event: DetectionEvent,
        decision: Decision,
        console_output: str = "",
        attempted_actions: Sequence[ActionLog] = (),
        expires_at: Optional[datetime] = None,
    ) -> Escalation:
        """
        Persist an escalation for an event and notify listeners.

        Args:
            event: The detection event being escalated
            decision: Must be an EscalateDecision; its priority is used
            console_output: Recent console output for context
            attempted_actions: Actions already tried for this agent
            expires_at: Optional time after which the escalation is stale

        Raises:
            ValueError: If the decision is not an escalation
        """
        if not isinstance(decision, EscalateDecision):
            raise ValueError("Cannot create escalation from non-escalate decision")

        escalation = await self.store.create_escalation(
            project_id=self.project_id,
            priority=decision.priority,
            type=event.type,
            title=escalation_title(event),
            agent_id=event.agent_id,
            task_id=getattr(event, "task_id", None),
            detection_event=event,
            console_output=console_output,
            attempted_actions=attempted_actions,
            suggested_action=suggested_action(event),
            expires_at=expires_at,
        )
        logger.info("Escalation %s (%s): %s", escalation.id, escalation.priority, escalation.title)

        self._emitter.emit("escalation", escalation)
        return escalation

    async def get_escalation(self, escalation_id: str) -> Optional[Escalation]:
        return await self.store.get_escalation(escalation_id)

    async def get_pending(self) -> list[Escalation]:
        """Pending escalations, most urgent first."""
        return await self.store.list_escalations(self.project_id, status=EscalationStatus.PENDING)

    async def get_all(self) -> list[Escalation]:
        return await self.store.list_escalations(self.project_id)

    async def acknowledge(self, escalation_id: str) -> Escalation:
        """Mark a pending escalation as seen by a human."""
        await self._check_transition(escalation_id, EscalationStatus.ACKNOWLEDGED)
        return await self.store.update_escalation(
            escalation_id, status=EscalationStatus.ACKNOWLEDGED,
        )

    async def resolve(self, escalation_id: str, resolved_by: str, resolution: str) -> Escalation:
        """Close an escalation with who resolved it and how."""
        await self._check_transition(escalation_id, EscalationStatus.RESOLVED)
        return await self.store.update_escalation(
            escalation_id,
            status=EscalationStatus.RESOLVED,
            resolved_by=resolved_by,
            resolved_at=datetime.now(timezone.utc),
            resolution=resolution,
        )

    async def dismiss(self, escalation_id: str) -> Escalation:
        """Close an escalation without action."""
        await self._check_transition(escalation_id, EscalationStatus.DISMISSED)
        return await self.store.update_escalation(
            escalation_id, status=EscalationStatus.DISMISSED,
        )

    async def get_counts(self) -> dict[str, int]:
        return await self.store.count_by_status(self.project_id)

    def dispose(self) -> None:
        """Stop notifying listeners. Safe to call more than once."""
        self._emitter.remove_all_listeners()

    async def _check_transition(self, escalation_id: str, target: EscalationStatus) -> Escalation:
        escalation = await self.store.get_escalation(escalation_id)
        if escalation is None:
            raise EscalationNotFoundError(escalation_id)
        if escalation.status not in _ALLOWED_FROM[target]:
            raise InvalidTransitionError(escalation_id, escalation.status, target.value)
        return escalation
