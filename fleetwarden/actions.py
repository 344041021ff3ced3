"""
Decisions and Autonomous Actions
================================

A Decision is the engine's verdict for a detection event: either act
autonomously with a specific kind of remediation, or escalate to a human
with a priority. An AutonomousAction is the concrete payload a handler
executes against the control plane; ActionResult is what it reports back.
"""

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import ClassVar, Optional, Union

from fleetwarden.errors import UnhandledVariantError


class ActionType(Enum):
    """Kinds of autonomous remediation."""
    PROMPT_AGENT = "prompt_agent"
    RESTART_AGENT = "restart_agent"
    REASSIGN_TASK = "reassign_task"
    RETRY_TASK = "retry_task"
    PAUSE_AGENT = "pause_agent"
    RELEASE_LOCK = "release_lock"
    UPDATE_TASK_STATUS = "update_task_status"
    SAVE_CHECKPOINT_AND_PAUSE = "save_checkpoint_and_pause"


class Priority(Enum):
    """Escalation priority, most urgent first."""
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"


# Sort rank used when listing escalations
PRIORITY_ORDER: dict[str, int] = {
    Priority.CRITICAL.value: 1,
    Priority.HIGH.value: 2,
    Priority.NORMAL.value: 3,
}


# =============================================================================
# Decisions
# =============================================================================

@dataclass(frozen=True)
class AutonomousDecision:
    """Remediate without a human."""
    action_type: str
    reason: str

    action: ClassVar[str] = "autonomous"

    def __post_init__(self) -> None:
        value = self.action_type.value if isinstance(self.action_type, ActionType) else self.action_type
        object.__setattr__(self, "action_type", ActionType(value).value)

    @property
    def is_autonomous(self) -> bool:
        return True

    def to_dict(self) -> dict:
        return {"action": self.action, "action_type": self.action_type, "reason": self.reason}


@dataclass(frozen=True)
class EscalateDecision:
    """Hand the event to a human."""
    priority: str
    reason: str

    action: ClassVar[str] = "escalate"

    def __post_init__(self) -> None:
        value = self.priority.value if isinstance(self.priority, Priority) else self.priority
        object.__setattr__(self, "priority", Priority(value).value)

    @property
    def is_autonomous(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {"action": self.action, "priority": self.priority, "reason": self.reason}


Decision = Union[AutonomousDecision, EscalateDecision]


# =============================================================================
# Autonomous actions
# =============================================================================

@dataclass
class AutonomousAction:
    """Base for concrete remediation payloads."""
    type: ClassVar[str]

    def to_dict(self) -> dict:
        """Convert to a JSON-safe dictionary including the ``type`` tag."""
        result = {"type": self.type}
        result.update(asdict(self))
        return result


@dataclass
class PromptAgentAction(AutonomousAction):
    type: ClassVar[str] = ActionType.PROMPT_AGENT.value

    agent_id: str
    message: str


@dataclass
class RestartAgentAction(AutonomousAction):
    type: ClassVar[str] = ActionType.RESTART_AGENT.value

    agent_id: str


@dataclass
class ReassignTaskAction(AutonomousAction):
    type: ClassVar[str] = ActionType.REASSIGN_TASK.value

    task_id: str
    from_agent: str
    to_agent: Optional[str] = None


@dataclass
class RetryTaskAction(AutonomousAction):
    type: ClassVar[str] = ActionType.RETRY_TASK.value

    task_id: str


@dataclass
class PauseAgentAction(AutonomousAction):
    type: ClassVar[str] = ActionType.PAUSE_AGENT.value

    agent_id: str
    reason: str


@dataclass
class ReleaseLockAction(AutonomousAction):
    type: ClassVar[str] = ActionType.RELEASE_LOCK.value

    file_path: str
    agent_id: str


@dataclass
class UpdateTaskStatusAction(AutonomousAction):
    type: ClassVar[str] = ActionType.UPDATE_TASK_STATUS.value

    task_id: str
    status: str
    notes: str


@dataclass
class SaveCheckpointAndPauseAction(AutonomousAction):
    type: ClassVar[str] = ActionType.SAVE_CHECKPOINT_AND_PAUSE.value

    agent_id: str
    token_count: int
    token_limit: int
    stage: str
    task_id: Optional[str] = None


ACTION_CLASSES: dict[str, type[AutonomousAction]] = {
    cls.type: cls
    for cls in (
        PromptAgentAction,
        RestartAgentAction,
        ReassignTaskAction,
        RetryTaskAction,
        PauseAgentAction,
        ReleaseLockAction,
        UpdateTaskStatusAction,
        SaveCheckpointAndPauseAction,
    )
}


def action_from_dict(data: dict) -> AutonomousAction:
    """Rebuild an action from ``AutonomousAction.to_dict`` output."""
    action_type = data.get("type")
    cls = ACTION_CLASSES.get(action_type)
    if cls is None:
        raise UnhandledVariantError("action", action_type)
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class ActionResult:
    """Outcome of executing one autonomous action."""
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        result = {"success": self.success}
        if self.error is not None:
            result["error"] = self.error
        return result
