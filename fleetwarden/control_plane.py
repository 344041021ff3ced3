"""
Control Plane Client
====================

The agent/task control plane is reached through MCP tools exposed by the
conductor server. Handlers depend only on the ControlPlaneClient protocol;
McpControlPlaneClient implements it on top of an initialized
``mcp.ClientSession``.

Usage:
    from fleetwarden.control_plane import McpControlPlaneClient, connect_stdio

    async with connect_stdio("conductor-mcp", [], observer_id="observer-1") as client:
        await client.send_heartbeat("agent-1", "working")
"""

import json
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Optional, Protocol, Sequence, runtime_checkable

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from fleetwarden.errors import ControlPlaneError, NotConnectedError

logger = logging.getLogger(__name__)


class AgentStatus(Enum):
    """Agent status reported through heartbeats."""
    IDLE = "idle"
    WORKING = "working"
    BLOCKED = "blocked"


class TaskStatus(Enum):
    """Task statuses the control plane accepts on update."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


@runtime_checkable
class ControlPlaneClient(Protocol):
    """Operations the action handlers need from the control plane."""

    async def send_heartbeat(self, agent_id: str, status: str) -> None: ...

    async def update_task(
        self,
        task_id: str,
        status: Optional[str] = None,
        notes: Optional[str] = None,
        blocked_by: Optional[Sequence[str]] = None,
        tokens_used: Optional[int] = None,
    ) -> None: ...

    async def unlock_file(self, file_path: str, agent_id: str) -> None: ...

    async def list_agents(self) -> list[dict]: ...

    async def save_checkpoint(
        self,
        agent_id: str,
        task_id: Optional[str],
        stage: str,
        token_count: int,
    ) -> None: ...


@runtime_checkable
class SandboxRestarter(Protocol):
    """Optional capability to restart an agent's sandbox."""

    async def restart_sandbox(self, agent_id: str) -> None: ...


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class McpControlPlaneClient:
    """ControlPlaneClient backed by conductor MCP tools."""

    AGENT_NAME = "Observer Agent"
    AGENT_TYPE = "claude"
    REQUESTED_ROLE = "lead"
    CAPABILITIES = ["oversight", "task-management", "agent-control"]

    def __init__(self, session: ClientSession, observer_id: str):
        """
        Args:
            session: An initialized MCP client session
            observer_id: Agent id the observer registers under
        """
        self.session = session
        self.observer_id = observer_id
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Register the observer with lead role and oversight capabilities."""
        await self._call("conductor_request_access", {
            "agentId": self.observer_id,
            "agentName": self.AGENT_NAME,
            "agentType": self.AGENT_TYPE,
            "requestedRole": self.REQUESTED_ROLE,
            "capabilities": list(self.CAPABILITIES),
        })
        self._connected = True
        logger.info("Observer %s registered with control plane", self.observer_id)

    async def disconnect(self) -> None:
        self._connected = False

    async def send_heartbeat(self, agent_id: str, status: AgentStatus | str) -> None:
        self._ensure_connected()
        await self._call("conductor_heartbeat", {
            "agentId": agent_id,
            "status": AgentStatus(_enum_value(status)).value,
        })

    async def update_task(
        self,
        task_id: str,
        status: Optional[TaskStatus | str] = None,
        notes: Optional[str] = None,
        blocked_by: Optional[Sequence[str]] = None,
        tokens_used: Optional[int] = None,
    ) -> None:
        """Update a task. Only the fields that are provided are sent."""
        self._ensure_connected()
        params: dict[str, Any] = {"taskId": task_id}
        if status is not None:
            params["status"] = TaskStatus(_enum_value(status)).value
        if notes is not None:
            params["notes"] = notes
        if blocked_by is not None:
            params["blockedBy"] = list(blocked_by)
        if tokens_used is not None:
            params["tokensUsed"] = tokens_used
        await self._call("conductor_update_task", params)

    async def unlock_file(self, file_path: str, agent_id: str) -> None:
        self._ensure_connected()
        await self._call("conductor_unlock_file", {"filePath": file_path, "agentId": agent_id})

    async def list_agents(self) -> list[dict]:
        """List registered agents. Returns [] when the tool returns no text."""
        self._ensure_connected()
        result = await self._call("conductor_list_agents", {})
        content = result.content[0] if result.content else None
        if content is not None and getattr(content, "type", None) == "text":
            return json.loads(content.text)
        return []

    async def save_checkpoint(
        self,
        agent_id: str,
        task_id: Optional[str],
        stage: str,
        token_count: int,
    ) -> None:
        self._ensure_connected()
        params: dict[str, Any] = {
            "agentId": agent_id,
            "stage": stage,
            "checkpointType": "context_exhaustion",
            "tokenCount": token_count,
        }
        if task_id:
            params["taskId"] = task_id
        await self._call("conductor_checkpoint", params)

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise NotConnectedError("Not connected to MCP server")

    async def _call(self, tool_name: str, params: dict[str, Any]) -> Any:
        result = await self.session.call_tool(tool_name, arguments=params)
        if getattr(result, "isError", False):
            texts = [getattr(c, "text", "") for c in result.content or []]
            message = " ".join(t for t in texts if t) or "tool returned an error"
            logger.warning("Control plane tool %s failed: %s", tool_name, message)
            raise ControlPlaneError(tool_name, message)
        return result


@asynccontextmanager
async def connect_stdio(
    command: str,
    args: Sequence[str],
    observer_id: str,
    env: Optional[dict[str, str]] = None,
) -> AsyncIterator[McpControlPlaneClient]:
    """
    Launch a conductor MCP server over stdio and yield a connected client.

    The observer is registered on entry and marked disconnected on exit.
    """
    params = StdioServerParameters(command=command, args=list(args), env=env)
    async with stdio_client(params) as (read, write):
        async with ClientSession(read, write) as session:
            await session.initialize()
            client = McpControlPlaneClient(session, observer_id)
            await client.connect()
            try:
                yield client
            finally:
                await client.disconnect()
