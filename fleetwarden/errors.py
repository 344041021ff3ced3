"""
Exceptions raised by Fleetwarden.

Handler failures never surface here: they are converted into
ActionResult(success=False) by the executor. These exceptions cover
programming errors and misuse of the persistent lifecycle APIs.
"""


class FleetwardenError(Exception):
    """Base class for all Fleetwarden errors."""


class UnhandledVariantError(FleetwardenError):
    """An event or action tag reached a dispatch table that does not know it."""

    def __init__(self, kind: str, tag: object):
        super().__init__(f"Unknown {kind} type: {tag}")
        self.kind = kind
        self.tag = tag


class EscalationNotFoundError(FleetwardenError):
    """No escalation exists with the requested id."""

    def __init__(self, escalation_id: str):
        super().__init__(f"Escalation not found: {escalation_id}")
        self.escalation_id = escalation_id


class InvalidTransitionError(FleetwardenError):
    """An escalation lifecycle call is not allowed from its current status."""

    def __init__(self, escalation_id: str, current: str, target: str):
        super().__init__(
            f"Cannot move escalation {escalation_id} from {current} to {target}"
        )
        self.escalation_id = escalation_id
        self.current = current
        self.target = target


class NotConnectedError(FleetwardenError):
    """A control-plane call was made before connect()."""


class ControlPlaneError(FleetwardenError):
    """The control plane reported a failed tool call."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"{tool_name} failed: {message}")
        self.tool_name = tool_name
