"""
Decision Engine
===============

Orchestrates thresholds, per-agent state, decision rules, and metrics.

For each detection event the engine:
1. Decides (autonomous action or escalation) via DecisionRules
2. Records the decision in the MetricsTracker
3. Notifies "decision" listeners with (event, decision)
4. Returns the decision and its metric id

Usage:
    from fleetwarden.decision_engine import DecisionEngine

    engine = DecisionEngine(autonomy_level="supervised")
    engine.on("decision", lambda event, decision: print(decision.reason))

    result = engine.process_event(event)
    engine.record_outcome(result.metric_id, "success")
    engine.dispose()
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from fleetwarden.actions import Decision
from fleetwarden.agent_state import AgentStateTracker
from fleetwarden.autonomy import AutonomyLevel
from fleetwarden.emitter import Emitter, Listener
from fleetwarden.events import DetectionEvent, EventType
from fleetwarden.metrics import EventStats, MetricsTracker, Outcome, ThresholdSuggestion
from fleetwarden.rules import DecisionRules
from fleetwarden.thresholds import ThresholdConfig, merge_thresholds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessResult:
    """Decision for one event plus the id to report its outcome against."""
    decision: Decision
    metric_id: str


class DecisionEngine:
    """Decides what to do about detection events and tracks the results."""

    def __init__(
        self,
        thresholds: Optional[Mapping[str, Any] | ThresholdConfig] = None,
        autonomy_level: AutonomyLevel | str = AutonomyLevel.FULL_AUTO,
        state_tracker: Optional[AgentStateTracker] = None,
        metrics_tracker: Optional[MetricsTracker] = None,
    ):
        """
        Args:
            thresholds: Partial threshold overrides merged with the defaults
            autonomy_level: Limits which actions may run without a human
            state_tracker: Per-agent state (a fresh tracker if omitted)
            metrics_tracker: Decision ledger (a fresh tracker if omitted)
        """
        self.thresholds = merge_thresholds(thresholds)
        self.autonomy_level = (
            autonomy_level if isinstance(autonomy_level, AutonomyLevel)
            else AutonomyLevel(autonomy_level)
        )
        self.state_tracker = state_tracker or AgentStateTracker()
        self.metrics_tracker = metrics_tracker or MetricsTracker()
        self.rules = DecisionRules(self.thresholds, self.state_tracker, self.autonomy_level)

        self._emitter = Emitter()
        self._lock = threading.Lock()
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def on(self, topic: str, listener: Listener) -> Listener:
        """Subscribe to ``"decision"`` notifications."""
        return self._emitter.on(topic, listener)

    def off(self, topic: str, listener: Listener) -> None:
        self._emitter.off(topic, listener)

    def process_event(self, event: DetectionEvent) -> ProcessResult:
        """
        Decide on a detection event, record it, and notify listeners.

        Processing is serialized per engine so state read-then-update
        sequences (crash cooldown and count checks) are atomic.

        Raises:
            UnhandledVariantError: If the event type is unknown
        """
        with self._lock:
            decision = self.rules.decide(event)
            metric_id = self.metrics_tracker.record_decision(event, decision)

        if decision.is_autonomous:
            logger.debug(
                "Decision for %s on agent %s: %s (%s)",
                event.type, event.agent_id, decision.action_type, decision.reason,
            )
        else:
            logger.info(
                "Escalating %s on agent %s at %s priority: %s",
                event.type, event.agent_id, decision.priority, decision.reason,
            )

        if not self._disposed:
            self._emitter.emit("decision", event, decision)

        return ProcessResult(decision=decision, metric_id=metric_id)

    def record_outcome(
        self,
        metric_id: str,
        outcome: Outcome | str,
        details: Optional[str] = None,
    ) -> None:
        self.metrics_tracker.record_outcome(metric_id, outcome, details)

    def record_override(
        self,
        metric_id: str,
        overridden_by: str,
        override_action: str,
        reason: Optional[str] = None,
    ) -> None:
        self.metrics_tracker.record_override(metric_id, overridden_by, override_action, reason)

    def get_stats(self, event_type: EventType | str) -> EventStats:
        return self.metrics_tracker.get_stats(event_type)

    def get_threshold_suggestions(self) -> list[ThresholdSuggestion]:
        return self.metrics_tracker.get_threshold_suggestions()

    def reset_agent_state(self, agent_id: str) -> None:
        """Forget stuck attempts, retry counts, and crash history for an agent."""
        with self._lock:
            self.state_tracker.clear_agent(agent_id)

    def dispose(self) -> None:
        """Stop notifying listeners. Safe to call more than once."""
        self._disposed = True
        self._emitter.remove_all_listeners()
