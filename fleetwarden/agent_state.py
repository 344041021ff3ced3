"""
Agent State Tracking
====================

Per-agent counters the decision rules use as soft rate limiters:

- Stuck prompt attempts (escalate after too many)
- Task retry counts, tracked independently per task
- Crash restart count and last crash time (restart throttling)

State is in-memory only and lives for the lifetime of the tracker.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AgentState:
    """Mutable counters for a single agent."""
    stuck_prompt_attempts: int = 0
    task_retry_counts: dict[str, int] = field(default_factory=dict)
    crash_restart_count: int = 0
    last_crash_at: Optional[datetime] = None


class AgentStateTracker:
    """
    Tracks state for many agents, keyed by agent id.

    State for an unknown agent is created on first access. The clock is
    injectable so cooldown behavior can be tested without sleeping.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._agents: dict[str, AgentState] = {}
        self._lock = threading.RLock()

    def get_state(self, agent_id: str) -> AgentState:
        """Get or create state for an agent."""
        with self._lock:
            state = self._agents.get(agent_id)
            if state is None:
                state = AgentState()
                self._agents[agent_id] = state
            return state

    def increment_stuck_attempts(self, agent_id: str) -> int:
        """Increment stuck prompt attempts and return the new count."""
        with self._lock:
            state = self.get_state(agent_id)
            state.stuck_prompt_attempts += 1
            return state.stuck_prompt_attempts

    def reset_stuck_attempts(self, agent_id: str) -> None:
        with self._lock:
            self.get_state(agent_id).stuck_prompt_attempts = 0

    def increment_task_retry(self, agent_id: str, task_id: str) -> int:
        """Increment the retry count for one task and return the new count."""
        with self._lock:
            counts = self.get_state(agent_id).task_retry_counts
            counts[task_id] = counts.get(task_id, 0) + 1
            return counts[task_id]

    def reset_task_retry(self, agent_id: str, task_id: str) -> None:
        with self._lock:
            self.get_state(agent_id).task_retry_counts[task_id] = 0

    def record_crash(self, agent_id: str) -> None:
        """Increment the crash count and stamp the crash time."""
        with self._lock:
            state = self.get_state(agent_id)
            state.crash_restart_count += 1
            state.last_crash_at = self._clock()

    def can_restart_after_cooldown(self, agent_id: str, cooldown_ms: int) -> bool:
        """
        Check whether the crash cooldown has elapsed.

        Returns True if no crash has been recorded for the agent, or if at
        least ``cooldown_ms`` milliseconds have passed since the last one.
        """
        with self._lock:
            state = self.get_state(agent_id)
            if state.last_crash_at is None:
                return True
            elapsed_ms = (self._clock() - state.last_crash_at).total_seconds() * 1000
            return elapsed_ms >= cooldown_ms

    def reset_crash_count(self, agent_id: str) -> None:
        with self._lock:
            state = self.get_state(agent_id)
            state.crash_restart_count = 0
            state.last_crash_at = None

    def clear_agent(self, agent_id: str) -> None:
        """Remove all state for an agent."""
        with self._lock:
            self._agents.pop(agent_id, None)

    def tracked_agents(self) -> list[str]:
        """Ids of agents that currently have state."""
        with self._lock:
            return list(self._agents)
