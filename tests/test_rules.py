"""
Tests for Decision Rules
========================

Tests for rules.py - per-event-type decisions, thresholds, and the
autonomy filter.
"""

from datetime import datetime, timedelta, timezone

import pytest

from fleetwarden.actions import AutonomousDecision, EscalateDecision
from fleetwarden.agent_state import AgentStateTracker
from fleetwarden.autonomy import AutonomyLevel
from fleetwarden.errors import UnhandledVariantError
from fleetwarden.events import (
    AuthRequiredEvent,
    BuildFailureEvent,
    ContextExhaustionEvent,
    CrashEvent,
    DetectionEvent,
    ErrorEvent,
    GitConflictEvent,
    HeartbeatTimeoutEvent,
    RateLimitedEvent,
    StuckEvent,
    TestFailureEvent,
)
from fleetwarden.rules import DecisionRules
from fleetwarden.thresholds import DEFAULT_THRESHOLDS, merge_thresholds


# =============================================================================
# Fixtures
# =============================================================================

class SteppingClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def tracker(clock):
    return AgentStateTracker(clock=clock)


@pytest.fixture
def rules(tracker):
    return DecisionRules(DEFAULT_THRESHOLDS, tracker)


def stuck(agent_id="a1"):
    return StuckEvent(agent_id=agent_id, sandbox_id="s1", silent_duration_ms=300_000)


def crash(agent_id="a1", exit_code=1):
    return CrashEvent(agent_id=agent_id, sandbox_id="s1", exit_code=exit_code)


# =============================================================================
# Stuck
# =============================================================================

class TestStuckRule:
    """Tests for stuck events."""

    def test_prompts_until_limit_then_escalates(self, rules):
        first = rules.decide(stuck())
        second = rules.decide(stuck())
        third = rules.decide(stuck())

        assert first == AutonomousDecision(
            action_type="prompt_agent",
            reason="Agent stuck for 300000ms (attempt 1/2)",
        )
        assert second.reason == "Agent stuck for 300000ms (attempt 2/2)"
        assert third == EscalateDecision(
            priority="high",
            reason="Agent stuck after 3 prompt attempts",
        )

    def test_reset_restores_budget(self, rules, tracker):
        rules.decide(stuck())
        rules.decide(stuck())
        tracker.reset_stuck_attempts("a1")

        assert rules.decide(stuck()).is_autonomous

    def test_custom_limit(self, tracker):
        rules = DecisionRules(merge_thresholds({"stuck": {"escalate_after_attempts": 0}}), tracker)
        assert not rules.decide(stuck()).is_autonomous


# =============================================================================
# Crash
# =============================================================================

class TestCrashRule:
    """Tests for crash events."""

    def test_first_crash_restarts(self, rules, tracker):
        decision = rules.decide(crash(exit_code=137))

        assert decision == AutonomousDecision(
            action_type="restart_agent",
            reason="Agent crashed with exit code 137 (restart 1/2)",
        )
        assert tracker.get_state("a1").crash_restart_count == 1

    def test_crash_during_cooldown_escalates(self, rules):
        rules.decide(crash())
        decision = rules.decide(crash())

        assert decision == EscalateDecision(
            priority="high",
            reason="Agent crash limit exceeded (2 restarts) or cooldown active",
        )

    def test_crash_limit_escalates_after_cooldown(self, rules, clock):
        """Past the cooldown, the restart count still caps restarts."""
        assert rules.decide(crash()).is_autonomous
        clock.now += timedelta(minutes=2)
        assert rules.decide(crash()).reason == "Agent crashed with exit code 1 (restart 2/2)"
        clock.now += timedelta(minutes=2)

        decision = rules.decide(crash())
        assert not decision.is_autonomous
        assert "3 restarts" in decision.reason

    def test_crash_count_reset(self, rules, tracker):
        rules.decide(crash())
        rules.decide(crash())
        tracker.reset_crash_count("a1")

        assert rules.decide(crash()).is_autonomous


# =============================================================================
# Other event types
# =============================================================================

class TestOtherRules:
    """Tests for the remaining event types."""

    def test_auth_required_is_critical(self, rules):
        decision = rules.decide(AuthRequiredEvent(agent_id="a1", sandbox_id="s1", provider="github"))
        assert decision == EscalateDecision(
            priority="critical",
            reason="Authentication required for github. Humans must handle OAuth.",
        )

    def test_test_failure_retries_then_escalates(self, rules):
        event = TestFailureEvent(agent_id="a1", sandbox_id="s1", failed_tests=4)

        for attempt in range(1, 4):
            decision = rules.decide(event)
            assert decision.action_type == "retry_task"
            assert decision.reason == f"Test failure with 4 failed tests (retry {attempt}/3)"

        decision = rules.decide(event)
        assert decision == EscalateDecision(
            priority="normal",
            reason="Test failures exceed retry limit (4 retries)",
        )

    def test_test_failure_counter_keyed_per_agent(self, rules, tracker):
        rules.decide(TestFailureEvent(agent_id="a1", sandbox_id="s1", failed_tests=1))
        assert tracker.get_state("a1").task_retry_counts == {"test-task-a1": 1}

    def test_build_failure_prompts(self, rules):
        decision = rules.decide(BuildFailureEvent(agent_id="a1", sandbox_id="s1"))
        assert decision == AutonomousDecision(
            action_type="prompt_agent",
            reason="Build failure detected. Prompting agent to investigate.",
        )

    def test_rate_limited_pauses(self, rules):
        decision = rules.decide(RateLimitedEvent(agent_id="a1", sandbox_id="s1", provider="anthropic"))
        assert decision.action_type == "pause_agent"
        assert decision.reason == "Rate limit hit on anthropic. Pausing agent for backoff."

    def test_rate_limited_without_backoff_escalates(self, tracker):
        rules = DecisionRules(merge_thresholds({"rate_limit": {"auto_backoff": False}}), tracker)
        decision = rules.decide(RateLimitedEvent(agent_id="a1", sandbox_id="s1", provider="anthropic"))
        assert decision == EscalateDecision(priority="normal", reason="Rate limit hit on anthropic")

    @pytest.mark.parametrize("severity,expected", [
        ("warning", "Warning: disk low"),
        ("error", "Error: disk low"),
    ])
    def test_non_fatal_error_prompts(self, rules, severity, expected):
        decision = rules.decide(ErrorEvent(agent_id="a1", sandbox_id="s1", message="disk low", severity=severity))
        assert decision == AutonomousDecision(action_type="prompt_agent", reason=expected)

    def test_fatal_error_escalates(self, rules):
        decision = rules.decide(ErrorEvent(agent_id="a1", sandbox_id="s1", message="oom", severity="fatal"))
        assert decision == EscalateDecision(priority="critical", reason="Fatal error: oom")

    def test_git_conflict_escalates(self, rules):
        decision = rules.decide(GitConflictEvent(agent_id="a1", sandbox_id="s1", files=["a.py", "b.py"]))
        assert decision == EscalateDecision(priority="normal", reason="Git conflict in files: a.py, b.py")

    def test_heartbeat_timeout_pings_first(self, rules):
        event = HeartbeatTimeoutEvent(agent_id="a1", sandbox_id="s1", last_heartbeat=datetime.now(timezone.utc))
        decision = rules.decide(event)
        assert decision.action_type == "prompt_agent"
        assert decision.reason == "Heartbeat timeout. Pinging agent before restart."

    def test_heartbeat_timeout_restarts_without_ping(self, tracker):
        rules = DecisionRules(merge_thresholds({"heartbeat": {"ping_before_restart": False}}), tracker)
        event = HeartbeatTimeoutEvent(agent_id="a1", sandbox_id="s1", last_heartbeat=datetime.now(timezone.utc))
        decision = rules.decide(event)
        assert decision == AutonomousDecision(
            action_type="restart_agent",
            reason="Heartbeat timeout. Restarting agent.",
        )

    def test_context_exhaustion_checkpoints(self, rules):
        event = ContextExhaustionEvent(
            agent_id="a1", sandbox_id="s1",
            token_count=190_000, token_limit=200_000, usage_percent=95.0,
        )
        decision = rules.decide(event)
        assert decision == AutonomousDecision(
            action_type="save_checkpoint_and_pause",
            reason="Context exhaustion at 95.0% (190000/200000 tokens). Saving checkpoint and pausing.",
        )

    def test_unknown_event_raises(self, rules):
        class MysteryEvent(DetectionEvent):
            type = "mystery"

        with pytest.raises(UnhandledVariantError, match="mystery"):
            rules.decide(MysteryEvent(agent_id="a1", sandbox_id="s1"))


# =============================================================================
# Autonomy filter
# =============================================================================

class TestAutonomyFilter:
    """Tests for autonomy-level filtering of decisions."""

    def test_disallowed_action_escalates_high(self, tracker):
        rules = DecisionRules(DEFAULT_THRESHOLDS, tracker, AutonomyLevel.SUPERVISED)
        decision = rules.decide(crash())

        assert decision == EscalateDecision(
            priority="high",
            reason="Action restart_agent not permitted at supervised autonomy level",
        )

    def test_permitted_action_passes(self, tracker):
        rules = DecisionRules(DEFAULT_THRESHOLDS, tracker, "assisted")
        assert rules.decide(BuildFailureEvent(agent_id="a1", sandbox_id="s1")).is_autonomous

    def test_manual_escalates_everything(self, tracker):
        rules = DecisionRules(DEFAULT_THRESHOLDS, tracker, AutonomyLevel.MANUAL)
        decision = rules.decide(stuck())

        assert decision.reason == "Action prompt_agent not permitted at manual autonomy level"

    def test_state_still_updated_when_filtered(self, tracker):
        """Filtered decisions still count against the agent's budgets."""
        rules = DecisionRules(DEFAULT_THRESHOLDS, tracker, AutonomyLevel.MANUAL)
        rules.decide(stuck())

        assert tracker.get_state("a1").stuck_prompt_attempts == 1

    def test_escalations_pass_through_unchanged(self, tracker):
        rules = DecisionRules(DEFAULT_THRESHOLDS, tracker, AutonomyLevel.MANUAL)
        decision = rules.decide(AuthRequiredEvent(agent_id="a1", sandbox_id="s1", provider="github"))
        assert decision.priority == "critical"

    @pytest.mark.parametrize("level", list(AutonomyLevel))
    def test_auth_required_escalates_at_every_level(self, tracker, level):
        rules = DecisionRules(DEFAULT_THRESHOLDS, tracker, level)
        decision = rules.decide(AuthRequiredEvent(agent_id="a1", sandbox_id="s1", provider="github"))

        assert decision == EscalateDecision(
            priority="critical",
            reason="Authentication required for github. Humans must handle OAuth.",
        )

    @pytest.mark.parametrize("level", list(AutonomyLevel))
    def test_git_conflict_escalates_at_every_level(self, tracker, level):
        rules = DecisionRules(DEFAULT_THRESHOLDS, tracker, level)
        decision = rules.decide(GitConflictEvent(agent_id="a1", sandbox_id="s1", files=["a.py"]))

        assert decision == EscalateDecision(priority="normal", reason="Git conflict in files: a.py")
