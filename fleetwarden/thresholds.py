"""
Threshold Configuration
=======================

Immutable policy knobs consumed by the decision rules, with defaults and a
partial-override merge. Overrides are plain dictionaries keyed by category
and field; any field left out keeps its default.

Both snake_case and the camelCase spelling used by existing project
configuration files are accepted:

    merge_thresholds({"stuck": {"escalate_after_attempts": 5}})
    merge_thresholds({"agentCrash": {"cooldownMs": 30_000}})
"""

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class StuckThresholds:
    prompt_after_ms: int = 5 * 60 * 1000  # 5 minutes
    escalate_after_attempts: int = 2


@dataclass(frozen=True)
class TaskFailureThresholds:
    auto_retry_max: int = 3


@dataclass(frozen=True)
class AgentCrashThresholds:
    auto_restart_max: int = 2
    cooldown_ms: int = 60 * 1000  # 1 minute


@dataclass(frozen=True)
class HeartbeatThresholds:
    timeout_ms: int = 2 * 60 * 1000  # 2 minutes
    ping_before_restart: bool = True


@dataclass(frozen=True)
class RateLimitThresholds:
    auto_backoff: bool = True
    max_backoff_ms: int = 5 * 60 * 1000  # 5 minutes


@dataclass(frozen=True)
class ThresholdConfig:
    """All thresholds, grouped by category."""
    stuck: StuckThresholds = StuckThresholds()
    task_failure: TaskFailureThresholds = TaskFailureThresholds()
    agent_crash: AgentCrashThresholds = AgentCrashThresholds()
    heartbeat: HeartbeatThresholds = HeartbeatThresholds()
    rate_limit: RateLimitThresholds = RateLimitThresholds()

    def to_dict(self) -> dict:
        """Convert to a nested dictionary (snake_case keys)."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ThresholdConfig":
        """Create from a (possibly partial) nested dictionary."""
        return merge_thresholds(data)


DEFAULT_THRESHOLDS = ThresholdConfig()


def _snake_case(key: str) -> str:
    out = []
    for ch in key:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


def _merge_category(default: Any, overrides: Mapping[str, Any]) -> Any:
    """Apply field overrides to one category, ignoring unknown or None values."""
    known = {f.name for f in fields(default)}
    changes = {}
    for key, value in overrides.items():
        name = _snake_case(key)
        if name in known and value is not None:
            changes[name] = value
    return replace(default, **changes)


def merge_thresholds(
    overrides: Optional[Mapping[str, Any] | ThresholdConfig] = None,
) -> ThresholdConfig:
    """
    Merge partial threshold overrides with the defaults.

    Args:
        overrides: Nested mapping of category -> field -> value, or a
            complete ThresholdConfig (returned unchanged).

    Returns:
        A complete ThresholdConfig. Unspecified categories and fields keep
        their default values.
    """
    if overrides is None:
        return DEFAULT_THRESHOLDS
    if isinstance(overrides, ThresholdConfig):
        return overrides

    categories = {f.name for f in fields(ThresholdConfig)}
    merged = {}
    for key, value in overrides.items():
        name = _snake_case(key)
        if name in categories and value:
            merged[name] = _merge_category(getattr(DEFAULT_THRESHOLDS, name), value)
    return replace(DEFAULT_THRESHOLDS, **merged)
