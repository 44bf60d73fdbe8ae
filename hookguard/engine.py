"""
HookGuard Engine.

Wires configuration, classification, storage and the scheduler into one
object with a single entry point: evaluate(event) -> AggregateDecision.
"""

import time
from pathlib import Path
from typing import Callable, Iterable, Optional

from rich.console import Console

from hookguard.cache.store import ResultCache
from hookguard.config import EngineConfig, load_config
from hookguard.graph import Scheduler
from hookguard.metrics.recorder import AnalyticsRecorder
from hookguard.models import AggregateDecision, Event, OperationKind, PolicyFunc
from hookguard.patching.apply import apply_fix_safe
from hookguard.patching.backup import BackupManager
from hookguard.policy.builtin import register_builtin_policies
from hookguard.policy.priority import PriorityClassifier
from hookguard.policy.registry import PolicyRegistry, RegisteredPolicy
from hookguard.policy.rules import PolicyRule
from hookguard.policy.runner import PolicyRunner
from hookguard.protocol import build_response, exit_code, parse_request
from hookguard.session.store import StateStore

console = Console(stderr=True)


class Engine:
    """
    One process-lifetime policy engine.

    Every failure outside a legitimate policy verdict ends in an allowed
    decision with a logged warning.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        register_builtins: bool = True,
        root: str = ".",
        clock: Callable[[], float] = time.time,
    ):
        self.config = config if config is not None else load_config()
        self.verbose = self.config.verbose

        self.classifier = PriorityClassifier(self.config)
        self.registry = PolicyRegistry(self.classifier)

        self.store = StateStore(
            path=self.config.state.path,
            max_file_changes=self.config.state.max_file_changes,
            retention_minutes=self.config.state.retention_minutes,
            clock=clock,
        )
        self.cache = ResultCache(
            directory=self.config.cache.directory,
            max_age_seconds=self.config.cache.max_age_seconds,
            enabled=self.config.cache.enabled,
            clock=clock,
        )
        self.backups = BackupManager(
            directory=self.config.backup.directory,
            retention_days=self.config.backup.retention_days,
            enabled=self.config.backup.enabled,
            clock=clock,
        )
        self.recorder = AnalyticsRecorder(
            path=self.config.analytics.path,
            queue_size=self.config.analytics.queue_size,
            enabled=self.config.analytics.enabled,
            retention_days=self.config.analytics.retention_days,
            max_records=self.config.analytics.max_records,
            clock=clock,
        )
        self.runner = PolicyRunner(verbose=self.verbose)
        self.scheduler = Scheduler(
            registry=self.registry,
            runner=self.runner,
            cache=self.cache,
            recorder=self.recorder,
            config_hash=self.config.config_hash(),
            fallback_to_sequential=self.config.execution.fallback_to_sequential,
            global_budget_ms=self.config.execution.global_budget_ms,
            root=root,
            verbose=self.verbose,
        )

        if register_builtins:
            register_builtin_policies(self.registry, self.store)

    def register(
        self,
        policy_id: str,
        func: PolicyFunc,
        *,
        rule: Optional[PolicyRule] = None,
        kinds: Optional[Iterable[OperationKind]] = None,
        cacheable: bool = True,
    ) -> RegisteredPolicy:
        """Register an additional policy. See PolicyRegistry.register."""
        return self.registry.register(
            policy_id, func, rule=rule, kinds=kinds, cacheable=cacheable
        )

    def evaluate(self, event: Event) -> AggregateDecision:
        """
        Decide on one event.

        Args:
            event: The intercepted operation

        Returns:
            Aggregate decision (allowed on any infrastructure failure)
        """
        if self.config.bypass_reason:
            if self.verbose:
                console.print(f"[dim]Engine bypassed ({self.config.bypass_reason})[/dim]")
            return AggregateDecision(
                allowed=True,
                warnings=[f"Policy checks bypassed: {self.config.bypass_reason}"],
            )

        try:
            decision = self.scheduler.schedule(event)
        except Exception as e:
            console.print(
                f"[red]✗ Scheduler failed ({type(e).__name__}: {e}), allowing operation[/red]"
            )
            return AggregateDecision(allowed=True, warnings=[f"Policy engine error: {e}"])

        if self.config.auto_fix and decision.allowed:
            self.apply_fixes(event, decision)

        return decision

    def apply_fixes(self, event: Event, decision: AggregateDecision) -> list[str]:
        """
        Apply policy-proposed fixes to the event's target file.

        A fix is computed from the event payload, so it is only applied
        while the file on disk still holds exactly that payload.

        Returns:
            Ids of policies whose fix was written
        """
        applied = []
        if not event.target_path or event.payload is None:
            return applied

        target = Path(event.target_path)

        for result in decision.results:
            if result.fix is None or result.blocked:
                continue

            try:
                current = target.read_text(encoding="utf-8")
            except (OSError, ValueError) as e:
                console.print(f"[yellow]⚠ Cannot read {target} for fix {result.policy_id}: {e}[/yellow]")
                break

            if current != event.payload:
                if self.verbose:
                    console.print(f"[dim]Skipping fix {result.policy_id}: file differs from payload[/dim]")
                continue

            success, error = apply_fix_safe(str(target), result.fix, self.backups, self.verbose)
            if success:
                applied.append(result.policy_id)
            else:
                console.print(f"[yellow]⚠ Fix {result.policy_id} not applied: {error}[/yellow]")

        return applied

    def handle_request(self, raw: str) -> tuple[dict, int]:
        """
        Run one host request end to end.

        Returns:
            Tuple of (response document, exit code)
        """
        event = parse_request(raw)
        decision = self.evaluate(event)
        if self.verbose:
            console.print_json(data=decision.to_dict())
        return build_response(decision), exit_code(decision)

    def shutdown(self, timeout: float = 1.0) -> None:
        """Let background policies finish briefly and flush analytics."""
        self.scheduler.wait_background(timeout)
        self.recorder.flush()

    def cleanup(self) -> dict:
        """Run retention across backups, analytics and cache."""
        return {
            "backups_removed": self.backups.cleanup_old_backups(),
            "analytics_removed": self.recorder.prune(),
            "cache_removed": self.cache.prune(),
        }


def build_engine(
    config_path: Optional[str] = None,
    verbose: bool = False,
) -> Engine:
    """
    Create an engine from the config file and environment.

    Args:
        config_path: Explicit config file (HOOKGUARD_CONFIG or default otherwise)
        verbose: Force verbose output

    Returns:
        Engine with the built-in policies registered
    """
    config = load_config(config_path)
    if verbose:
        config.verbose = True
    return Engine(config)
