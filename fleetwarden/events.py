"""
Detection Events
================

Anomalies observed in an agent's execution, classified into ten kinds.
Events are produced outside Fleetwarden (console watchers, heartbeat
timers) and fed into the decision engine one at a time.

Every event carries the agent and sandbox it was observed on plus the time
of observation. Events serialize to JSON-safe dictionaries tagged with their
``type`` so they can be stored alongside escalations and audit rows.

Usage:
    from fleetwarden.events import StuckEvent, event_from_dict

    event = StuckEvent(agent_id="agent-1", sandbox_id="sbx-1", silent_duration_ms=300_000)
    data = event.to_dict()
    same = event_from_dict(data)
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional, Union

from fleetwarden.errors import UnhandledVariantError


class EventType(Enum):
    """Kinds of detection events."""
    STUCK = "stuck"
    ERROR = "error"
    AUTH_REQUIRED = "auth_required"
    TEST_FAILURE = "test_failure"
    BUILD_FAILURE = "build_failure"
    RATE_LIMITED = "rate_limited"
    GIT_CONFLICT = "git_conflict"
    CRASH = "crash"
    HEARTBEAT_TIMEOUT = "heartbeat_timeout"
    CONTEXT_EXHAUSTION = "context_exhaustion"


class ErrorSeverity(Enum):
    """Severity of an ``error`` event."""
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def event_type_value(event_type: EventType | str) -> str:
    """Normalize an EventType or its string value to the string value."""
    if isinstance(event_type, EventType):
        return event_type.value
    return EventType(event_type).value


@dataclass(kw_only=True)
class DetectionEvent:
    """Fields shared by every detection event."""
    type: ClassVar[str]

    agent_id: str
    sandbox_id: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        """Convert to a JSON-safe dictionary including the ``type`` tag."""
        result: dict[str, Any] = {"type": self.type}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, tuple):
                value = list(value)
            result[f.name] = value
        return result


@dataclass(kw_only=True)
class StuckEvent(DetectionEvent):
    """Agent produced no output for a while."""
    type: ClassVar[str] = EventType.STUCK.value

    silent_duration_ms: int


@dataclass(kw_only=True)
class ErrorEvent(DetectionEvent):
    """Runtime error reported by the agent."""
    type: ClassVar[str] = EventType.ERROR.value

    message: str
    severity: str = ErrorSeverity.ERROR.value
    stack_trace: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.severity, ErrorSeverity):
            self.severity = self.severity.value
        else:
            self.severity = ErrorSeverity(self.severity).value


@dataclass(kw_only=True)
class AuthRequiredEvent(DetectionEvent):
    """Agent is blocked on an OAuth or login flow."""
    type: ClassVar[str] = EventType.AUTH_REQUIRED.value

    provider: str
    auth_url: Optional[str] = None


@dataclass(kw_only=True)
class TestFailureEvent(DetectionEvent):
    """Test run reported failures."""
    __test__ = False  # not a pytest test class

    type: ClassVar[str] = EventType.TEST_FAILURE.value

    failed_tests: int
    total_tests: Optional[int] = None
    output: str = ""


@dataclass(kw_only=True)
class BuildFailureEvent(DetectionEvent):
    """Build step failed."""
    type: ClassVar[str] = EventType.BUILD_FAILURE.value

    output: str = ""


@dataclass(kw_only=True)
class RateLimitedEvent(DetectionEvent):
    """A provider API rate limit was hit."""
    type: ClassVar[str] = EventType.RATE_LIMITED.value

    provider: str
    retry_after_ms: Optional[int] = None


@dataclass(kw_only=True)
class GitConflictEvent(DetectionEvent):
    """Merge conflict in the agent's working tree."""
    type: ClassVar[str] = EventType.GIT_CONFLICT.value

    files: list[str] = field(default_factory=list)


@dataclass(kw_only=True)
class CrashEvent(DetectionEvent):
    """Agent process exited unexpectedly."""
    type: ClassVar[str] = EventType.CRASH.value

    exit_code: int
    signal: Optional[str] = None


@dataclass(kw_only=True)
class HeartbeatTimeoutEvent(DetectionEvent):
    """Agent missed its heartbeat window."""
    type: ClassVar[str] = EventType.HEARTBEAT_TIMEOUT.value

    last_heartbeat: datetime


@dataclass(kw_only=True)
class ContextExhaustionEvent(DetectionEvent):
    """Agent is at or near its context-window token limit."""
    type: ClassVar[str] = EventType.CONTEXT_EXHAUSTION.value

    token_count: int
    token_limit: int
    usage_percent: float
    task_id: Optional[str] = None


AnyDetectionEvent = Union[
    StuckEvent,
    ErrorEvent,
    AuthRequiredEvent,
    TestFailureEvent,
    BuildFailureEvent,
    RateLimitedEvent,
    GitConflictEvent,
    CrashEvent,
    HeartbeatTimeoutEvent,
    ContextExhaustionEvent,
]

EVENT_CLASSES: dict[str, type[DetectionEvent]] = {
    cls.type: cls
    for cls in (
        StuckEvent,
        ErrorEvent,
        AuthRequiredEvent,
        TestFailureEvent,
        BuildFailureEvent,
        RateLimitedEvent,
        GitConflictEvent,
        CrashEvent,
        HeartbeatTimeoutEvent,
        ContextExhaustionEvent,
    )
}

# Fields stored as ISO strings that must come back as datetimes
_DATETIME_FIELDS = ("timestamp", "last_heartbeat")


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def event_from_dict(data: dict) -> DetectionEvent:
    """Rebuild a detection event from ``DetectionEvent.to_dict`` output."""
    event_type = data.get("type")
    cls = EVENT_CLASSES.get(event_type)
    if cls is None:
        raise UnhandledVariantError("event", event_type)

    known = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in known}
    for name in _DATETIME_FIELDS:
        if kwargs.get(name) is not None:
            kwargs[name] = _parse_datetime(kwargs[name])
    return cls(**kwargs)
