"""
Action Executor
===============

Runs autonomous actions through their handlers with an audit trail.

For each action:
1. Log it (pending) before anything runs
2. Dispatch to the handler for its type; exceptions become failed results
3. Record the outcome in the audit log
4. Notify "action" listeners with (action, result)
5. Return the ActionResult

Usage:
    from fleetwarden.action_executor import ActionExecutor

    executor = ActionExecutor("proj-1", "observer-1", control_plane, action_logger)
    result = await executor.execute(PromptAgentAction(agent_id="a1", message="ping"), event)
"""

import logging
from typing import Optional, Sequence

from fleetwarden.action_logger import ActionLogger
from fleetwarden.actions import ActionResult, AutonomousAction
from fleetwarden.control_plane import ControlPlaneClient, SandboxRestarter
from fleetwarden.emitter import Emitter, Listener
from fleetwarden.errors import UnhandledVariantError
from fleetwarden.events import DetectionEvent
from fleetwarden.handlers import HANDLERS, Handler
from fleetwarden.metrics import Outcome

logger = logging.getLogger(__name__)


class ActionExecutor:
    """Executes autonomous actions against the control plane."""

    def __init__(
        self,
        project_id: str,
        observer_id: str,
        client: ControlPlaneClient,
        action_logger: ActionLogger,
        sandbox_restarter: Optional[SandboxRestarter] = None,
        handlers: Optional[dict[str, Handler]] = None,
    ):
        self.project_id = project_id
        self.observer_id = observer_id
        self.client = client
        self.action_logger = action_logger
        self.sandbox_restarter = sandbox_restarter
        self.handlers = dict(HANDLERS if handlers is None else handlers)
        self._emitter = Emitter()

    def on(self, topic: str, listener: Listener) -> Listener:
        """Subscribe to ``"action"`` notifications."""
        return self._emitter.on(topic, listener)

    def off(self, topic: str, listener: Listener) -> None:
        self._emitter.off(topic, listener)

    async def execute(self, action: AutonomousAction, trigger_event: DetectionEvent) -> ActionResult:
        """
        Execute one action with audit logging.

        Handler failures are returned as ``ActionResult(success=False)``.
        Persistence failures propagate.

        Raises:
            UnhandledVariantError: If no handler exists for the action type
        """
        handler = self._handler_for(action)
        entry = await self.action_logger.log_action(
            self.project_id, self.observer_id, action, trigger_event,
        )

        try:
            result = await handler(action, self.client, self.sandbox_restarter)
        except Exception as e:
            result = ActionResult(success=False, error=str(e))

        if result.success:
            await self.action_logger.update_outcome(entry.id, Outcome.SUCCESS)
        else:
            logger.warning("Action %s for %s failed: %s", action.type, trigger_event.agent_id, result.error)
            await self.action_logger.update_outcome(entry.id, Outcome.FAILURE, result.error)

        self._emitter.emit("action", action, result)
        return result

    async def execute_all(
        self,
        actions: Sequence[AutonomousAction],
        trigger_event: DetectionEvent,
    ) -> list[ActionResult]:
        """Execute actions one after another, continuing past failures."""
        results = []
        for action in actions:
            results.append(await self.execute(action, trigger_event))
        return results

    def dispose(self) -> None:
        """Stop notifying listeners. Safe to call more than once."""
        self._emitter.remove_all_listeners()

    def _handler_for(self, action: AutonomousAction) -> Handler:
        handler = self.handlers.get(getattr(action, "type", None))
        if handler is None:
            raise UnhandledVariantError("action", getattr(action, "type", type(action).__name__))
        return handler
