"""
Core data model for HookGuard.

Events flow in, policies produce ExecutionResults, the scheduler folds
them into a single AggregateDecision.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Optional


class OperationKind(str, Enum):
    """What the external actor is doing to the codebase."""

    CREATE = "create"
    MODIFY = "modify"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "OperationKind":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.OTHER


class Tier(str, Enum):
    """Priority bucket. Declaration order is execution order."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    BACKGROUND = "background"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)


TIER_ORDER = (Tier.CRITICAL, Tier.HIGH, Tier.MEDIUM, Tier.LOW, Tier.BACKGROUND)


class BlockingBehavior(str, Enum):
    HARD_BLOCK = "hard-block"
    SOFT_BLOCK = "soft-block"
    WARNING = "warning"
    NONE = "none"

    @property
    def can_block(self) -> bool:
        return self in (BlockingBehavior.HARD_BLOCK, BlockingBehavior.SOFT_BLOCK)


class Verdict(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"


class PolicyError(Exception):
    """Raised by a policy to report an internal failure (fails open)."""


@dataclass(frozen=True)
class Event:
    """One intercepted operation. Immutable once dispatched."""

    operation_kind: OperationKind = OperationKind.OTHER
    target_path: Optional[str] = None
    payload: Optional[str] = None
    caller_metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PolicyDescriptor:
    """Static registration record, resolved once at startup."""

    id: str
    tier: Tier = Tier.MEDIUM
    family: str = "unknown"
    timeout_ms: int = 3000
    blocking_behavior: BlockingBehavior = BlockingBehavior.WARNING


@dataclass(frozen=True)
class ExecutionResult:
    """
    Outcome of one policy run.

    Policies build these with `ExecutionResult.allow()` /
    `ExecutionResult.block(...)`; the runner stamps policy id, duration
    and cache flag.
    """

    policy_id: str = ""
    verdict: Verdict = Verdict.ALLOW
    message: Optional[str] = None
    duration_ms: float = 0.0
    from_cache: bool = False
    error: Optional[str] = None

    # Replacement content for the target file (auto-fix)
    fix: Optional[str] = None

    @classmethod
    def allow(cls, message: Optional[str] = None, fix: Optional[str] = None) -> "ExecutionResult":
        return cls(verdict=Verdict.ALLOW, message=message, fix=fix)

    @classmethod
    def block(cls, message: str) -> "ExecutionResult":
        return cls(verdict=Verdict.BLOCK, message=message)

    @property
    def blocked(self) -> bool:
        return self.verdict is Verdict.BLOCK

    def stamped(self, policy_id: str, duration_ms: float, from_cache: bool = False) -> "ExecutionResult":
        return replace(
            self,
            policy_id=policy_id,
            duration_ms=duration_ms,
            from_cache=from_cache,
        )

    def to_dict(self) -> dict:
        return {
            "policy_id": self.policy_id,
            "verdict": self.verdict.value,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "from_cache": self.from_cache,
            "error": self.error,
        }


# A policy is any callable taking an Event. Returning None means allow.
PolicyFunc = Callable[[Event], Optional[ExecutionResult]]


@dataclass
class AggregateDecision:
    """The scheduler's final answer for one event."""

    allowed: bool = True
    messages: list[str] = field(default_factory=list)
    stopped_early: bool = False
    results: list[ExecutionResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    fallback_used: bool = False
    duration_ms: float = 0.0

    def performance(self) -> dict:
        """
        Summarize policy timings for this decision.

        parallel_efficiency is summed policy time over wall time; above 1.0
        means policies ran concurrently.
        """
        durations = [r.duration_ms for r in self.results]
        total = sum(durations)
        succeeded = sum(1 for r in self.results if r.error is None)
        return {
            "policy_count": len(durations),
            "total_policy_ms": round(total, 2),
            "max_policy_ms": round(max(durations, default=0.0), 2),
            "average_policy_ms": round(total / len(durations), 2) if durations else 0.0,
            "parallel_efficiency": round(total / self.duration_ms, 2) if self.duration_ms > 0 else 0.0,
            "success_rate": round(succeeded / len(durations), 2) if durations else 1.0,
        }

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "messages": list(self.messages),
            "stopped_early": self.stopped_early,
            "warnings": list(self.warnings),
            "fallback_used": self.fallback_used,
            "duration_ms": self.duration_ms,
            "performance": self.performance(),
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class FileChange:
    path: str
    timestamp: float


@dataclass
class SessionState:
    """Process-lifetime session facts shared by policies via the StateStore."""

    session_start: float
    last_activity: float
    message_count: int = 0
    recent_file_changes: list[FileChange] = field(default_factory=list)
    last_context_refresh: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "session_start": self.session_start,
            "last_activity": self.last_activity,
            "message_count": self.message_count,
            "recent_file_changes": [
                {"path": c.path, "timestamp": c.timestamp}
                for c in self.recent_file_changes
            ],
            "last_context_refresh": self.last_context_refresh,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionState":
        changes = [
            FileChange(path=str(c["path"]), timestamp=float(c["timestamp"]))
            for c in data.get("recent_file_changes", [])
        ]
        refresh = data.get("last_context_refresh")
        return cls(
            session_start=float(data["session_start"]),
            last_activity=float(data.get("last_activity", data["session_start"])),
            message_count=int(data.get("message_count", 0)),
            recent_file_changes=changes,
            last_context_refresh=float(refresh) if refresh is not None else None,
        )


@dataclass
class BackupRecord:
    original_path: str
    backup_path: str
    created_at: float


@dataclass
class LearningRecord:
    """One analytics row. Holds a fingerprint, never raw content."""

    policy_id: str
    fingerprint: str
    verdict: str
    timestamp: float
    context_features: dict = field(default_factory=dict)
    duration_ms: float = 0.0
    from_cache: bool = False
    error: Optional[str] = None
