"""
Action Handlers
===============

One coroutine per autonomous action kind. Each translates the action into
control-plane calls and reports an ActionResult. Handlers never raise:
any failure becomes ``ActionResult(success=False, error=str(exc))``.
"""

import functools
import logging
from typing import Awaitable, Callable, Optional

from fleetwarden.actions import (
    ActionResult,
    ActionType,
    AutonomousAction,
    PauseAgentAction,
    PromptAgentAction,
    ReassignTaskAction,
    ReleaseLockAction,
    RestartAgentAction,
    RetryTaskAction,
    SaveCheckpointAndPauseAction,
    UpdateTaskStatusAction,
)
from fleetwarden.control_plane import AgentStatus, ControlPlaneClient, SandboxRestarter, TaskStatus

logger = logging.getLogger(__name__)

Handler = Callable[
    [AutonomousAction, ControlPlaneClient, Optional[SandboxRestarter]],
    Awaitable[ActionResult],
]


def _recover(func):
    """Convert exceptions raised by a handler into a failed ActionResult."""
    @functools.wraps(func)
    async def wrapper(action, client, restarter=None):
        try:
            return await func(action, client, restarter)
        except Exception as e:
            logger.warning("%s failed: %s", action.type, e)
            return ActionResult(success=False, error=str(e))
    return wrapper


@_recover
async def handle_prompt_agent(
    action: PromptAgentAction,
    client: ControlPlaneClient,
    restarter: Optional[SandboxRestarter] = None,
) -> ActionResult:
    """Nudge the agent by marking it working."""
    await client.send_heartbeat(action.agent_id, AgentStatus.WORKING.value)
    return ActionResult(success=True)


@_recover
async def handle_restart_agent(
    action: RestartAgentAction,
    client: ControlPlaneClient,
    restarter: Optional[SandboxRestarter] = None,
) -> ActionResult:
    if restarter is None:
        return ActionResult(success=False, error="No sandbox manager available for restart")
    await restarter.restart_sandbox(action.agent_id)
    return ActionResult(success=True)


@_recover
async def handle_reassign_task(
    action: ReassignTaskAction,
    client: ControlPlaneClient,
    restarter: Optional[SandboxRestarter] = None,
) -> ActionResult:
    """Record the reassignment in the task notes."""
    if action.to_agent:
        notes = f"Reassigned from {action.from_agent} to {action.to_agent}"
    else:
        notes = f"Reassigned from {action.from_agent}"
    # The control plane has no "pending" status, so only the notes change
    await client.update_task(action.task_id, notes=notes)
    return ActionResult(success=True)


@_recover
async def handle_retry_task(
    action: RetryTaskAction,
    client: ControlPlaneClient,
    restarter: Optional[SandboxRestarter] = None,
) -> ActionResult:
    await client.update_task(
        action.task_id,
        status=TaskStatus.IN_PROGRESS.value,
        notes="Retrying task after previous failure",
    )
    return ActionResult(success=True)


@_recover
async def handle_pause_agent(
    action: PauseAgentAction,
    client: ControlPlaneClient,
    restarter: Optional[SandboxRestarter] = None,
) -> ActionResult:
    await client.send_heartbeat(action.agent_id, AgentStatus.BLOCKED.value)
    return ActionResult(success=True)


@_recover
async def handle_release_lock(
    action: ReleaseLockAction,
    client: ControlPlaneClient,
    restarter: Optional[SandboxRestarter] = None,
) -> ActionResult:
    await client.unlock_file(action.file_path, action.agent_id)
    return ActionResult(success=True)


@_recover
async def handle_update_task_status(
    action: UpdateTaskStatusAction,
    client: ControlPlaneClient,
    restarter: Optional[SandboxRestarter] = None,
) -> ActionResult:
    await client.update_task(action.task_id, status=action.status, notes=action.notes)
    return ActionResult(success=True)


@_recover
async def handle_save_checkpoint_and_pause(
    action: SaveCheckpointAndPauseAction,
    client: ControlPlaneClient,
    restarter: Optional[SandboxRestarter] = None,
) -> ActionResult:
    """
    Preserve work before the context window runs out.

    Steps, in order:
    1. Save a checkpoint for the agent (and task, if known)
    2. Mark the agent blocked
    3. Mark the task blocked with a note asking for a new session
    """
    await client.save_checkpoint(action.agent_id, action.task_id, action.stage, action.token_count)
    await client.send_heartbeat(action.agent_id, AgentStatus.BLOCKED.value)

    if action.task_id:
        await client.update_task(
            action.task_id,
            status=TaskStatus.BLOCKED.value,
            notes=(
                f"Context exhausted at {action.token_count}/{action.token_limit} tokens. "
                "Checkpoint saved. Needs new session to continue."
            ),
        )

    return ActionResult(success=True)


HANDLERS: dict[str, Handler] = {
    ActionType.PROMPT_AGENT.value: handle_prompt_agent,
    ActionType.RESTART_AGENT.value: handle_restart_agent,
    ActionType.REASSIGN_TASK.value: handle_reassign_task,
    ActionType.RETRY_TASK.value: handle_retry_task,
    ActionType.PAUSE_AGENT.value: handle_pause_agent,
    ActionType.RELEASE_LOCK.value: handle_release_lock,
    ActionType.UPDATE_TASK_STATUS.value: handle_update_task_status,
    ActionType.SAVE_CHECKPOINT_AND_PAUSE.value: handle_save_checkpoint_and_pause,
}
