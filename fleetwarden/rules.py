"""
Decision Rules
==============

Maps a detection event to a Decision using per-agent state, thresholds,
and the configured autonomy level.

Per event type:
- stuck: prompt the agent until the attempt budget is spent, then escalate
- crash: restart while under the restart limit and outside the cooldown
- auth_required: always escalate (humans handle OAuth)
- test_failure: retry up to the retry limit, then escalate
- build_failure: prompt the agent to investigate
- rate_limited: pause for backoff if enabled, otherwise escalate
- error: escalate fatal errors, prompt on anything else
- git_conflict: always escalate
- heartbeat_timeout: ping first or restart, depending on thresholds
- context_exhaustion: save a checkpoint and pause

Autonomous decisions the autonomy level does not permit are rewritten to
high-priority escalations before they are returned.
"""

from typing import Callable

from fleetwarden.actions import (
    ActionType,
    AutonomousDecision,
    Decision,
    EscalateDecision,
    Priority,
)
from fleetwarden.agent_state import AgentStateTracker
from fleetwarden.autonomy import AutonomyLevel, can_act_autonomously
from fleetwarden.errors import UnhandledVariantError
from fleetwarden.events import (
    AuthRequiredEvent,
    BuildFailureEvent,
    ContextExhaustionEvent,
    CrashEvent,
    DetectionEvent,
    ErrorEvent,
    ErrorSeverity,
    EventType,
    GitConflictEvent,
    HeartbeatTimeoutEvent,
    RateLimitedEvent,
    StuckEvent,
    TestFailureEvent,
)
from fleetwarden.thresholds import ThresholdConfig


class DecisionRules:
    """Threshold-based decision logic for every detection event type."""

    def __init__(
        self,
        thresholds: ThresholdConfig,
        state_tracker: AgentStateTracker,
        autonomy_level: AutonomyLevel | str = AutonomyLevel.FULL_AUTO,
    ):
        self.thresholds = thresholds
        self.state_tracker = state_tracker
        self.autonomy_level = (
            autonomy_level if isinstance(autonomy_level, AutonomyLevel)
            else AutonomyLevel(autonomy_level)
        )

        self._rules: dict[str, Callable[[DetectionEvent], Decision]] = {
            EventType.STUCK.value: self._decide_stuck,
            EventType.CRASH.value: self._decide_crash,
            EventType.AUTH_REQUIRED.value: self._decide_auth_required,
            EventType.TEST_FAILURE.value: self._decide_test_failure,
            EventType.BUILD_FAILURE.value: self._decide_build_failure,
            EventType.RATE_LIMITED.value: self._decide_rate_limited,
            EventType.ERROR.value: self._decide_error,
            EventType.GIT_CONFLICT.value: self._decide_git_conflict,
            EventType.HEARTBEAT_TIMEOUT.value: self._decide_heartbeat_timeout,
            EventType.CONTEXT_EXHAUSTION.value: self._decide_context_exhaustion,
        }

    def decide(self, event: DetectionEvent) -> Decision:
        """
        Decide how to handle a detection event.

        Args:
            event: The detection event

        Returns:
            An AutonomousDecision permitted at the current autonomy level,
            or an EscalateDecision

        Raises:
            UnhandledVariantError: If the event type has no rule
        """
        rule = self._rules.get(getattr(event, "type", None))
        if rule is None:
            raise UnhandledVariantError("event", getattr(event, "type", type(event).__name__))

        decision = rule(event)

        if decision.is_autonomous and not can_act_autonomously(
            self.autonomy_level, decision.action_type
        ):
            return EscalateDecision(
                priority=Priority.HIGH,
                reason=(
                    f"Action {decision.action_type} not permitted at "
                    f"{self.autonomy_level.value} autonomy level"
                ),
            )

        return decision

    # =========================================================================
    # Per-type rules
    # =========================================================================

    def _decide_stuck(self, event: StuckEvent) -> Decision:
        attempts = self.state_tracker.increment_stuck_attempts(event.agent_id)
        limit = self.thresholds.stuck.escalate_after_attempts

        if attempts <= limit:
            return AutonomousDecision(
                action_type=ActionType.PROMPT_AGENT,
                reason=f"Agent stuck for {event.silent_duration_ms}ms (attempt {attempts}/{limit})",
            )

        return EscalateDecision(
            priority=Priority.HIGH,
            reason=f"Agent stuck after {attempts} prompt attempts",
        )

    def _decide_crash(self, event: CrashEvent) -> Decision:
        crash = self.thresholds.agent_crash

        # Both checks run before the crash is recorded so a first crash restarts
        cooldown_passed = self.state_tracker.can_restart_after_cooldown(
            event.agent_id, crash.cooldown_ms
        )
        count_allows = (
            self.state_tracker.get_state(event.agent_id).crash_restart_count
            < crash.auto_restart_max
        )

        self.state_tracker.record_crash(event.agent_id)
        count = self.state_tracker.get_state(event.agent_id).crash_restart_count

        if cooldown_passed and count_allows:
            return AutonomousDecision(
                action_type=ActionType.RESTART_AGENT,
                reason=(
                    f"Agent crashed with exit code {event.exit_code} "
                    f"(restart {count}/{crash.auto_restart_max})"
                ),
            )

        return EscalateDecision(
            priority=Priority.HIGH,
            reason=f"Agent crash limit exceeded ({count} restarts) or cooldown active",
        )

    def _decide_auth_required(self, event: AuthRequiredEvent) -> Decision:
        return EscalateDecision(
            priority=Priority.CRITICAL,
            reason=f"Authentication required for {event.provider}. Humans must handle OAuth.",
        )

    def _decide_test_failure(self, event: TestFailureEvent) -> Decision:
        # One retry counter per agent for test failures
        task_id = f"test-task-{event.agent_id}"
        retries = self.state_tracker.increment_task_retry(event.agent_id, task_id)
        limit = self.thresholds.task_failure.auto_retry_max

        if retries <= limit:
            return AutonomousDecision(
                action_type=ActionType.RETRY_TASK,
                reason=f"Test failure with {event.failed_tests} failed tests (retry {retries}/{limit})",
            )

        return EscalateDecision(
            priority=Priority.NORMAL,
            reason=f"Test failures exceed retry limit ({retries} retries)",
        )

    def _decide_build_failure(self, event: BuildFailureEvent) -> Decision:
        return AutonomousDecision(
            action_type=ActionType.PROMPT_AGENT,
            reason="Build failure detected. Prompting agent to investigate.",
        )

    def _decide_rate_limited(self, event: RateLimitedEvent) -> Decision:
        if self.thresholds.rate_limit.auto_backoff:
            return AutonomousDecision(
                action_type=ActionType.PAUSE_AGENT,
                reason=f"Rate limit hit on {event.provider}. Pausing agent for backoff.",
            )

        return EscalateDecision(
            priority=Priority.NORMAL,
            reason=f"Rate limit hit on {event.provider}",
        )

    def _decide_error(self, event: ErrorEvent) -> Decision:
        if event.severity == ErrorSeverity.FATAL.value:
            return EscalateDecision(
                priority=Priority.CRITICAL,
                reason=f"Fatal error: {event.message}",
            )

        label = "Warning" if event.severity == ErrorSeverity.WARNING.value else "Error"
        return AutonomousDecision(
            action_type=ActionType.PROMPT_AGENT,
            reason=f"{label}: {event.message}",
        )

    def _decide_git_conflict(self, event: GitConflictEvent) -> Decision:
        return EscalateDecision(
            priority=Priority.NORMAL,
            reason=f"Git conflict in files: {', '.join(event.files)}",
        )

    def _decide_heartbeat_timeout(self, event: HeartbeatTimeoutEvent) -> Decision:
        if self.thresholds.heartbeat.ping_before_restart:
            return AutonomousDecision(
                action_type=ActionType.PROMPT_AGENT,
                reason="Heartbeat timeout. Pinging agent before restart.",
            )

        return AutonomousDecision(
            action_type=ActionType.RESTART_AGENT,
            reason="Heartbeat timeout. Restarting agent.",
        )

    def _decide_context_exhaustion(self, event: ContextExhaustionEvent) -> Decision:
        return AutonomousDecision(
            action_type=ActionType.SAVE_CHECKPOINT_AND_PAUSE,
            reason=(
                f"Context exhaustion at {event.usage_percent:.1f}% "
                f"({event.token_count}/{event.token_limit} tokens). "
                "Saving checkpoint and pausing."
            ),
        )
