"""
Shared fixtures for Fleetwarden tests.
"""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from fleetwarden.db.connection import close_db, init_db


class FakeControlPlane:
    """Control-plane client that records calls in order."""

    def __init__(self):
        self.calls = []
        self.fail_on = set()
        self.agents = []

    def _record(self, name, **kwargs):
        self.calls.append((name, kwargs))
        if name in self.fail_on:
            raise RuntimeError(f"{name} unavailable")

    async def send_heartbeat(self, agent_id, status):
        self._record("send_heartbeat", agent_id=agent_id, status=status)

    async def update_task(self, task_id, status=None, notes=None, blocked_by=None, tokens_used=None):
        provided = {
            "status": status,
            "notes": notes,
            "blocked_by": blocked_by,
            "tokens_used": tokens_used,
        }
        self._record("update_task", task_id=task_id, **{k: v for k, v in provided.items() if v is not None})

    async def unlock_file(self, file_path, agent_id):
        self._record("unlock_file", file_path=file_path, agent_id=agent_id)

    async def list_agents(self):
        self._record("list_agents")
        return list(self.agents)

    async def save_checkpoint(self, agent_id, task_id, stage, token_count):
        self._record(
            "save_checkpoint",
            agent_id=agent_id, task_id=task_id, stage=stage, token_count=token_count,
        )


class FakeRestarter:
    """Sandbox restarter that records restarted agents."""

    def __init__(self, error=None):
        self.restarted = []
        self.error = error

    async def restart_sandbox(self, agent_id):
        self.restarted.append(agent_id)
        if self.error:
            raise self.error


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest_asyncio.fixture
async def session_maker(temp_project):
    """Initialize a fresh SQLite database in the temp project."""
    maker = await init_db(temp_project)
    yield maker
    await close_db()


@pytest.fixture
def control_plane():
    return FakeControlPlane()


@pytest.fixture
def restarter():
    return FakeRestarter()
