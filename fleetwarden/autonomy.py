"""
Autonomy Policy
===============

Graduated autonomy levels for the supervisor and the static permission
matrix deciding which remediations it may perform without a human.

Levels from most to least permissive:
- FULL_AUTO: every remediation kind
- SUPERVISED: prompting, retrying, task status updates, checkpointing
- ASSISTED: prompting and task status updates only
- MANUAL: nothing; every decision becomes an escalation

Usage:
    from fleetwarden.autonomy import AutonomyLevel, can_act_autonomously

    if can_act_autonomously(AutonomyLevel.SUPERVISED, "retry_task"):
        ...
"""

from enum import Enum

from fleetwarden.actions import ActionType


class AutonomyLevel(Enum):
    """How much the supervisor may do on its own."""
    FULL_AUTO = "full_auto"
    SUPERVISED = "supervised"
    ASSISTED = "assisted"
    MANUAL = "manual"


# Action kinds each level may execute without escalation
LEVEL_PERMISSIONS: dict[AutonomyLevel, frozenset[str]] = {
    AutonomyLevel.FULL_AUTO: frozenset(a.value for a in ActionType),
    AutonomyLevel.SUPERVISED: frozenset({
        ActionType.PROMPT_AGENT.value,
        ActionType.RETRY_TASK.value,
        ActionType.UPDATE_TASK_STATUS.value,
        ActionType.SAVE_CHECKPOINT_AND_PAUSE.value,
    }),
    AutonomyLevel.ASSISTED: frozenset({
        ActionType.PROMPT_AGENT.value,
        ActionType.UPDATE_TASK_STATUS.value,
    }),
    AutonomyLevel.MANUAL: frozenset(),
}


def _level(level: AutonomyLevel | str) -> AutonomyLevel:
    if isinstance(level, AutonomyLevel):
        return level
    return AutonomyLevel(level)


def permitted_actions(level: AutonomyLevel | str) -> frozenset[str]:
    """Action kinds permitted at ``level``."""
    return LEVEL_PERMISSIONS[_level(level)]


def can_act_autonomously(level: AutonomyLevel | str, action_type: ActionType | str) -> bool:
    """
    Check whether an action kind may run without human approval.

    Args:
        level: Autonomy level (enum member or its string value)
        action_type: Action kind (enum member or its string value)

    Returns:
        True if the level permits the action kind
    """
    value = action_type.value if isinstance(action_type, ActionType) else action_type
    return value in permitted_actions(level)
