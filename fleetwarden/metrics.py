"""
Decision Metrics
================

In-memory ledger of every decision the engine makes and how it turned out.
Aggregates per event type and mines failure patterns into threshold tuning
suggestions.

Lifecycle of a record:
1. record_decision() when the engine decides (outcome "pending")
2. record_outcome() once the action has run (success / failure)
3. record_override() if a human replaced the decision (outcome "overridden")

Usage:
    from fleetwarden.metrics import MetricsTracker

    tracker = MetricsTracker()
    metric_id = tracker.record_decision(event, decision)
    tracker.record_outcome(metric_id, "success")

    stats = tracker.get_stats("stuck")
    for suggestion in tracker.get_threshold_suggestions():
        print(suggestion.reason)
"""

import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from fleetwarden.actions import Decision
from fleetwarden.events import DetectionEvent, EventType, event_type_value


class Outcome(Enum):
    """Outcome of a decision or logged action."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    OVERRIDDEN = "overridden"


# Outcomes a caller may report after running an action
REPORTABLE_OUTCOMES = (Outcome.SUCCESS.value, Outcome.FAILURE.value)

# Minimum autonomous decisions before a suggestion is made
MIN_SAMPLE_SIZE = 10

# Failure rate (percent) at which autonomous handling is considered too lenient
HIGH_FAILURE_RATE = 70.0


def outcome_value(outcome: Outcome | str) -> str:
    """Normalize a reportable outcome to its string value."""
    value = outcome.value if isinstance(outcome, Outcome) else outcome
    if value not in REPORTABLE_OUTCOMES:
        raise ValueError(f"Outcome must be one of {REPORTABLE_OUTCOMES}, got {value!r}")
    return value


@dataclass
class HumanOverride:
    """A human replacing an autonomous decision."""
    overridden_by: str
    override_action: str
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "HumanOverride":
        return cls(
            overridden_by=data["overridden_by"],
            override_action=data["override_action"],
            reason=data.get("reason"),
        )


@dataclass
class MetricRecord:
    """One decision and its lifecycle."""
    id: str
    event_type: str
    decision: str  # "autonomous" or "escalated"
    action_type: Optional[str] = None
    outcome: str = Outcome.PENDING.value
    outcome_details: Optional[str] = None
    human_override: Optional[HumanOverride] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class EventStats:
    """Aggregated statistics for one event type. Rates are percentages."""
    total: int = 0
    autonomous: int = 0
    escalated: int = 0
    success_rate: float = 0.0
    failure_rate: float = 0.0
    override_rate: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ThresholdSuggestion:
    """Suggested threshold adjustment derived from observed failure rates."""
    category: str
    field: str
    current_implied: str
    suggestion: str  # "increase" or "decrease"
    reason: str
    confidence: float

    def to_dict(self) -> dict:
        return asdict(self)


# (event type, threshold category, field, implied current value, label in reason)
_SUGGESTION_RULES = (
    (EventType.TEST_FAILURE.value, "taskFailure", "autoRetryMax",
     "current retry threshold", "Test failures"),
    (EventType.STUCK.value, "stuck", "escalateAfterAttempts",
     "current escalation threshold", "Stuck prompts"),
    (EventType.CRASH.value, "crash", "autoRestartMax",
     "current restart limit", "Crash restarts"),
)


class MetricsTracker:
    """Records decisions and outcomes for adaptive threshold tuning."""

    def __init__(self):
        self._records: dict[str, MetricRecord] = {}
        self._lock = threading.Lock()

    def record_decision(self, event: DetectionEvent, decision: Decision) -> str:
        """Record a decision with a pending outcome. Returns the metric id."""
        record = MetricRecord(
            id=str(uuid.uuid4()),
            event_type=event.type,
            decision="autonomous" if decision.is_autonomous else "escalated",
            action_type=decision.action_type if decision.is_autonomous else None,
        )
        with self._lock:
            self._records[record.id] = record
        return record.id

    def get_record(self, metric_id: str) -> Optional[MetricRecord]:
        with self._lock:
            return self._records.get(metric_id)

    def record_outcome(
        self,
        metric_id: str,
        outcome: Outcome | str,
        details: Optional[str] = None,
    ) -> None:
        """Set the outcome of a decision. Unknown ids are ignored."""
        value = outcome_value(outcome)
        with self._lock:
            record = self._records.get(metric_id)
            if record is None:
                return
            record.outcome = value
            if details:
                record.outcome_details = details

    def record_override(
        self,
        metric_id: str,
        overridden_by: str,
        override_action: str,
        reason: Optional[str] = None,
    ) -> None:
        """Mark a decision as overridden by a human. Unknown ids are ignored."""
        with self._lock:
            record = self._records.get(metric_id)
            if record is None:
                return
            record.outcome = Outcome.OVERRIDDEN.value
            record.human_override = HumanOverride(
                overridden_by=overridden_by,
                override_action=override_action,
                reason=reason,
            )

    def get_stats(self, event_type: EventType | str) -> EventStats:
        """
        Aggregate statistics for one event type.

        Success and failure rates are computed over autonomous decisions
        whose outcome has been reported as success or failure. The override
        rate is computed over every record of the type.
        """
        type_value = event_type_value(event_type)
        with self._lock:
            matching = [r for r in self._records.values() if r.event_type == type_value]

        total = len(matching)
        autonomous = sum(1 for r in matching if r.decision == "autonomous")
        escalated = total - autonomous

        resolved = [
            r for r in matching
            if r.decision == "autonomous" and r.outcome in REPORTABLE_OUTCOMES
        ]
        successes = sum(1 for r in resolved if r.outcome == Outcome.SUCCESS.value)
        failures = sum(1 for r in resolved if r.outcome == Outcome.FAILURE.value)
        overrides = sum(1 for r in matching if r.outcome == Outcome.OVERRIDDEN.value)

        return EventStats(
            total=total,
            autonomous=autonomous,
            escalated=escalated,
            success_rate=(successes / len(resolved)) * 100 if resolved else 0.0,
            failure_rate=(failures / len(resolved)) * 100 if resolved else 0.0,
            override_rate=(overrides / total) * 100 if total else 0.0,
        )

    def get_threshold_suggestions(self) -> list[ThresholdSuggestion]:
        """
        Suggest threshold changes from observed failure patterns.

        A suggestion to decrease is made for test failures, stuck prompts,
        and crash restarts once at least MIN_SAMPLE_SIZE autonomous decisions
        exist and the failure rate reaches HIGH_FAILURE_RATE. Confidence
        grows with the sample size and saturates at 20 decisions.
        """
        suggestions = []
        for event_type, category, field_name, implied, label in _SUGGESTION_RULES:
            stats = self.get_stats(event_type)
            if stats.autonomous < MIN_SAMPLE_SIZE or stats.failure_rate < HIGH_FAILURE_RATE:
                continue
            suggestions.append(ThresholdSuggestion(
                category=category,
                field=field_name,
                current_implied=implied,
                suggestion="decrease",
                reason=(
                    f"{label} have {stats.failure_rate:.1f}% failure rate across "
                    f"{stats.autonomous} autonomous actions. Consider lowering "
                    f"{field_name} to escalate earlier."
                ),
                confidence=min(stats.autonomous / 20, 1.0),
            ))
        return suggestions

    def clear(self) -> None:
        """Drop all records."""
        with self._lock:
            self._records.clear()
