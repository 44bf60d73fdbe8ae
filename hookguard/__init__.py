"""
HookGuard

Policy enforcement orchestration for automated code edits.
"""

__version__ = "0.1.0"

from hookguard.models import AggregateDecision, Event, ExecutionResult, OperationKind
from hookguard.engine import Engine, build_engine

__all__ = [
    "AggregateDecision",
    "Engine",
    "Event",
    "ExecutionResult",
    "OperationKind",
    "build_engine",
    "__version__",
]
