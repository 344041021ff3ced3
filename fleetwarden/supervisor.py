"""
Supervisor Pipeline
===================

Wires the decision engine, action executor, and escalation queue into one
entry point per detection event:

    event -> decision -> concrete action -> execute -> outcome recorded
                      \\-> escalation (with the agent's previous actions)

Task-scoped actions (retry, reassign, status update) need to know which
task an agent is working on. That comes from ``task_resolver``; when it
cannot name a task the supervisor escalates instead of guessing.

Usage:
    from fleetwarden.supervisor import Supervisor

    supervisor = Supervisor(engine, executor, queue, task_resolver=tasks.get)
    result = await supervisor.handle_event(event, console_output=tail)
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from fleetwarden.actions import (
    ActionResult,
    ActionType,
    AutonomousAction,
    AutonomousDecision,
    Decision,
    EscalateDecision,
    PauseAgentAction,
    Priority,
    PromptAgentAction,
    ReassignTaskAction,
    ReleaseLockAction,
    RestartAgentAction,
    RetryTaskAction,
    SaveCheckpointAndPauseAction,
    UpdateTaskStatusAction,
)
from fleetwarden.action_executor import ActionExecutor
from fleetwarden.control_plane import TaskStatus
from fleetwarden.decision_engine import DecisionEngine
from fleetwarden.escalation import EscalationQueue
from fleetwarden.escalation_store import Escalation
from fleetwarden.events import DetectionEvent
from fleetwarden.metrics import Outcome

logger = logging.getLogger(__name__)

TaskResolver = Callable[[str], Union[Optional[str], Awaitable[Optional[str]]]]

# Actions that cannot be built without a task id
TASK_SCOPED_ACTIONS = frozenset({
    ActionType.REASSIGN_TASK.value,
    ActionType.RETRY_TASK.value,
    ActionType.UPDATE_TASK_STATUS.value,
})

DEFAULT_CHECKPOINT_STAGE = "implementation"


@dataclass
class SupervisorResult:
    """What the supervisor did with one event."""
    decision: Decision
    metric_id: str
    action: Optional[AutonomousAction] = None
    action_result: Optional[ActionResult] = None
    escalation: Optional[Escalation] = None

    @property
    def escalated(self) -> bool:
        return self.escalation is not None


class Supervisor:
    """End-to-end handling of detection events."""

    def __init__(
        self,
        engine: DecisionEngine,
        executor: ActionExecutor,
        queue: EscalationQueue,
        task_resolver: Optional[TaskResolver] = None,
        checkpoint_stage: str = DEFAULT_CHECKPOINT_STAGE,
    ):
        self.engine = engine
        self.executor = executor
        self.queue = queue
        self.task_resolver = task_resolver
        self.checkpoint_stage = checkpoint_stage

    async def handle_event(self, event: DetectionEvent, console_output: str = "") -> SupervisorResult:
        """
        Decide on an event and carry the decision out.

        Autonomous decisions are executed and their outcome recorded against
        the engine's metric. Escalations are persisted with the actions
        already attempted for the agent.
        """
        processed = self.engine.process_event(event)
        decision = processed.decision

        if not decision.is_autonomous:
            escalation = await self._escalate(event, decision, console_output)
            return SupervisorResult(decision, processed.metric_id, escalation=escalation)

        task_id = await self._resolve_task(event)
        action = self.build_action(event, decision, task_id)
        if action is None:
            if decision.action_type in TASK_SCOPED_ACTIONS:
                reason = f"No task bound to agent {event.agent_id} for {decision.action_type}"
            else:
                reason = f"Not enough context to {decision.action_type} for agent {event.agent_id}"
            fallback = EscalateDecision(priority=Priority.HIGH, reason=reason)
            logger.info("Escalating instead of %s: %s", decision.action_type, reason)
            self.engine.record_override(processed.metric_id, "supervisor", "escalate", fallback.reason)
            escalation = await self._escalate(event, fallback, console_output)
            return SupervisorResult(fallback, processed.metric_id, escalation=escalation)

        result = await self.executor.execute(action, event)
        self.engine.record_outcome(
            processed.metric_id,
            Outcome.SUCCESS if result.success else Outcome.FAILURE,
            result.error,
        )
        return SupervisorResult(decision, processed.metric_id, action=action, action_result=result)

    def build_action(
        self,
        event: DetectionEvent,
        decision: AutonomousDecision,
        task_id: Optional[str] = None,
    ) -> Optional[AutonomousAction]:
        """
        Turn an autonomous decision into a concrete action.

        Returns None when the action needs information the event and task
        binding cannot supply (a task id, or a file to unlock).
        """
        action_type = decision.action_type
        agent_id = event.agent_id

        if action_type in TASK_SCOPED_ACTIONS and not task_id:
            return None

        if action_type == ActionType.PROMPT_AGENT.value:
            return PromptAgentAction(agent_id=agent_id, message=decision.reason)
        if action_type == ActionType.RESTART_AGENT.value:
            return RestartAgentAction(agent_id=agent_id)
        if action_type == ActionType.REASSIGN_TASK.value:
            return ReassignTaskAction(task_id=task_id, from_agent=agent_id)
        if action_type == ActionType.RETRY_TASK.value:
            return RetryTaskAction(task_id=task_id)
        if action_type == ActionType.PAUSE_AGENT.value:
            return PauseAgentAction(agent_id=agent_id, reason=decision.reason)
        if action_type == ActionType.RELEASE_LOCK.value:
            files = getattr(event, "files", None)
            if not files:
                return None
            return ReleaseLockAction(file_path=files[0], agent_id=agent_id)
        if action_type == ActionType.UPDATE_TASK_STATUS.value:
            return UpdateTaskStatusAction(
                task_id=task_id, status=TaskStatus.BLOCKED.value, notes=decision.reason,
            )
        if action_type == ActionType.SAVE_CHECKPOINT_AND_PAUSE.value:
            return SaveCheckpointAndPauseAction(
                agent_id=agent_id,
                token_count=getattr(event, "token_count", 0),
                token_limit=getattr(event, "token_limit", 0),
                stage=self.checkpoint_stage,
                task_id=task_id,
            )
        return None

    def dispose(self) -> None:
        self.engine.dispose()
        self.executor.dispose()
        self.queue.dispose()

    async def _resolve_task(self, event: DetectionEvent) -> Optional[str]:
        # Context exhaustion events may already name their task
        task_id = getattr(event, "task_id", None)
        if task_id or self.task_resolver is None:
            return task_id
        resolved = self.task_resolver(event.agent_id)
        if inspect.isawaitable(resolved):
            resolved = await resolved
        return resolved

    async def _escalate(
        self,
        event: DetectionEvent,
        decision: EscalateDecision,
        console_output: str,
    ) -> Escalation:
        attempted = await self.executor.action_logger.get_actions_by_agent(
            self.executor.project_id, event.agent_id,
        )
        return await self.queue.create_escalation(event, decision, console_output, attempted)
