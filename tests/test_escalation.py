"""
Tests for Escalations
=====================

Tests for escalation_store.py and escalation.py - persistence, ordering,
counts, and the lifecycle state machine.
"""

from datetime import datetime, timedelta, timezone

import pytest

from fleetwarden.action_logger import ActionLogger
from fleetwarden.actions import AutonomousDecision, EscalateDecision, PromptAgentAction
from fleetwarden.errors import EscalationNotFoundError, InvalidTransitionError, UnhandledVariantError
from fleetwarden.escalation import EscalationQueue, escalation_title, suggested_action
from fleetwarden.escalation_store import EscalationStore
from fleetwarden.events import (
    AuthRequiredEvent,
    BuildFailureEvent,
    ContextExhaustionEvent,
    CrashEvent,
    DetectionEvent,
    GitConflictEvent,
    StuckEvent,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def store(session_maker):
    return EscalationStore(session_maker)


@pytest.fixture
def queue(store):
    return EscalationQueue("proj", store)


def auth_event():
    return AuthRequiredEvent(agent_id="a1", sandbox_id="s1", provider="github")


def escalate(priority="normal"):
    return EscalateDecision(priority=priority, reason="needs a human")


# =============================================================================
# Titles
# =============================================================================

class TestTitles:
    """Tests for escalation titles and suggested actions."""

    def test_titles(self):
        assert escalation_title(auth_event()) == "Authentication required for github"
        assert escalation_title(CrashEvent(agent_id="a1", sandbox_id="s1", exit_code=1)) == "Agent a1 crashed"
        assert escalation_title(
            ContextExhaustionEvent(
                agent_id="a1", sandbox_id="s1",
                token_count=190_000, token_limit=200_000, usage_percent=95.0,
            )
        ) == "Context exhaustion for agent a1: 95.0% tokens used (190000/200000)"

    def test_unknown_event_title_raises(self):
        class MysteryEvent(DetectionEvent):
            type = "mystery"

        with pytest.raises(UnhandledVariantError, match="mystery"):
            escalation_title(MysteryEvent(agent_id="a1", sandbox_id="s1"))

    def test_suggested_actions(self):
        assert suggested_action(auth_event()) == "Complete OAuth flow in browser"
        assert suggested_action(GitConflictEvent(agent_id="a1", sandbox_id="s1")) == "Manually resolve git conflicts"
        assert suggested_action(BuildFailureEvent(agent_id="a1", sandbox_id="s1")) is None


# =============================================================================
# Store
# =============================================================================

class TestEscalationStore:
    """Tests for EscalationStore."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        created = await store.create_escalation(
            project_id="proj", priority="high", type="stuck", title="Agent a1 appears stuck",
            detection_event=StuckEvent(agent_id="a1", sandbox_id="s1", silent_duration_ms=5),
            agent_id="a1",
        )
        fetched = await store.get_escalation(created.id)

        assert created.id.startswith("esc-")
        assert fetched.status == "pending"
        assert fetched.priority == "high"
        assert isinstance(fetched.detection_event, StuckEvent)
        assert fetched.created_at.tzinfo is not None
        assert await store.get_escalation("esc-missing") is None

    @pytest.mark.asyncio
    async def test_offset_datetimes_stored_as_utc(self, store):
        plus_two = timezone(timedelta(hours=2))
        created = await store.create_escalation(
            project_id="proj", priority="normal", type="auth_required", title="t",
            detection_event=auth_event(),
            expires_at=datetime(2030, 1, 1, 12, 0, tzinfo=plus_two),
        )
        await store.update_escalation(
            created.id, resolved_at=datetime(2030, 1, 2, 9, 30, tzinfo=plus_two),
        )
        fetched = await store.get_escalation(created.id)

        assert created.expires_at == datetime(2030, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert fetched.expires_at == datetime(2030, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert fetched.expires_at.utcoffset() == timedelta(0)
        assert fetched.resolved_at == datetime(2030, 1, 2, 7, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_invalid_priority_rejected(self, store):
        with pytest.raises(ValueError):
            await store.create_escalation(
                project_id="proj", priority="urgent", type="stuck", title="t",
                detection_event=auth_event(),
            )

    @pytest.mark.asyncio
    async def test_update_unknown_returns_none(self, store):
        assert await store.update_escalation("esc-missing", status="resolved") is None

    @pytest.mark.asyncio
    async def test_delete(self, store):
        created = await store.create_escalation(
            project_id="proj", priority="normal", type="auth_required", title="t",
            detection_event=auth_event(),
        )

        assert await store.delete_escalation(created.id) is True
        assert await store.delete_escalation(created.id) is False
        assert await store.get_escalation(created.id) is None

    @pytest.mark.asyncio
    async def test_count_by_status_has_every_status(self, store):
        assert await store.count_by_status("proj") == {
            "pending": 0, "acknowledged": 0, "resolved": 0, "dismissed": 0,
        }


# =============================================================================
# Queue
# =============================================================================

class TestEscalationQueue:
    """Tests for EscalationQueue."""

    @pytest.mark.asyncio
    async def test_create_escalation(self, queue):
        escalation = await queue.create_escalation(auth_event(), escalate("critical"), "login prompt")

        assert escalation.priority == "critical"
        assert escalation.type == "auth_required"
        assert escalation.title == "Authentication required for github"
        assert escalation.agent_id == "a1"
        assert escalation.console_output == "login prompt"
        assert escalation.suggested_action == "Complete OAuth flow in browser"
        assert escalation.status == "pending"

    @pytest.mark.asyncio
    async def test_task_id_taken_from_event(self, queue):
        event = ContextExhaustionEvent(
            agent_id="a1", sandbox_id="s1",
            token_count=1, token_limit=2, usage_percent=50.0, task_id="t9",
        )
        escalation = await queue.create_escalation(event, escalate())
        assert escalation.task_id == "t9"

    @pytest.mark.asyncio
    async def test_rejects_autonomous_decision(self, queue):
        with pytest.raises(ValueError, match="non-escalate decision"):
            await queue.create_escalation(
                auth_event(), AutonomousDecision(action_type="prompt_agent", reason="r"),
            )

    @pytest.mark.asyncio
    async def test_attempted_actions_persisted(self, queue, session_maker):
        action_logger = ActionLogger(session_maker)
        entry = await action_logger.log_action(
            "proj", "obs", PromptAgentAction(agent_id="a1", message="hi"), auth_event(),
        )

        escalation = await queue.create_escalation(auth_event(), escalate(), attempted_actions=[entry])
        fetched = await queue.get_escalation(escalation.id)

        assert [a.id for a in fetched.attempted_actions] == [entry.id]
        assert fetched.attempted_actions[0].action.message == "hi"

    @pytest.mark.asyncio
    async def test_listener_notified(self, queue):
        seen = []
        queue.on("escalation", lambda esc: seen.append(esc.id))

        escalation = await queue.create_escalation(auth_event(), escalate())
        assert seen == [escalation.id]

        queue.dispose()
        await queue.create_escalation(auth_event(), escalate())
        assert seen == [escalation.id]

    @pytest.mark.asyncio
    async def test_pending_ordered_by_priority_then_age(self, queue):
        normal = await queue.create_escalation(auth_event(), escalate("normal"))
        high_old = await queue.create_escalation(auth_event(), escalate("high"))
        critical = await queue.create_escalation(auth_event(), escalate("critical"))
        high_new = await queue.create_escalation(auth_event(), escalate("high"))

        pending = await queue.get_pending()

        assert [e.id for e in pending] == [critical.id, high_old.id, high_new.id, normal.id]

    @pytest.mark.asyncio
    async def test_pending_scoped_to_project(self, queue, store):
        await EscalationQueue("elsewhere", store).create_escalation(auth_event(), escalate())
        assert await queue.get_pending() == []

    @pytest.mark.asyncio
    async def test_acknowledge_then_resolve(self, queue):
        escalation = await queue.create_escalation(auth_event(), escalate())

        acked = await queue.acknowledge(escalation.id)
        assert acked.status == "acknowledged"
        assert await queue.get_pending() == []

        resolved = await queue.resolve(escalation.id, "alice", "Completed OAuth")
        assert resolved.status == "resolved"
        assert resolved.resolved_by == "alice"
        assert resolved.resolution == "Completed OAuth"
        assert resolved.resolved_at is not None

    @pytest.mark.asyncio
    async def test_dismiss_pending(self, queue):
        escalation = await queue.create_escalation(auth_event(), escalate())
        dismissed = await queue.dismiss(escalation.id)

        assert dismissed.status == "dismissed"
        assert dismissed.resolved_by is None

    @pytest.mark.asyncio
    async def test_final_states_reject_transitions(self, queue):
        escalation = await queue.create_escalation(auth_event(), escalate())
        await queue.resolve(escalation.id, "alice", "done")

        with pytest.raises(InvalidTransitionError):
            await queue.acknowledge(escalation.id)
        with pytest.raises(InvalidTransitionError):
            await queue.dismiss(escalation.id)
        with pytest.raises(InvalidTransitionError):
            await queue.resolve(escalation.id, "bob", "again")

    @pytest.mark.asyncio
    async def test_cannot_acknowledge_twice(self, queue):
        escalation = await queue.create_escalation(auth_event(), escalate())
        await queue.acknowledge(escalation.id)

        with pytest.raises(InvalidTransitionError, match="from acknowledged to acknowledged"):
            await queue.acknowledge(escalation.id)

    @pytest.mark.asyncio
    async def test_unknown_escalation(self, queue):
        with pytest.raises(EscalationNotFoundError):
            await queue.acknowledge("esc-missing")

    @pytest.mark.asyncio
    async def test_counts(self, queue):
        first = await queue.create_escalation(auth_event(), escalate())
        second = await queue.create_escalation(auth_event(), escalate())
        await queue.create_escalation(auth_event(), escalate())
        await queue.acknowledge(first.id)
        await queue.dismiss(second.id)

        assert await queue.get_counts() == {
            "pending": 1, "acknowledged": 1, "resolved": 0, "dismissed": 1,
        }

    @pytest.mark.asyncio
    async def test_get_all_includes_closed(self, queue):
        escalation = await queue.create_escalation(auth_event(), escalate())
        await queue.dismiss(escalation.id)

        assert [e.id for e in await queue.get_all()] == [escalation.id]

    @pytest.mark.asyncio
    async def test_to_dict(self, queue):
        escalation = await queue.create_escalation(auth_event(), escalate("high"))
        data = escalation.to_dict()

        assert data["priority"] == "high"
        assert data["detection_event"]["type"] == "auth_required"
        assert data["attempted_actions"] == []
        assert data["resolved_at"] is None
