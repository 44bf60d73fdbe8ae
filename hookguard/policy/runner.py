"""
Policy Runner for HookGuard.

Wraps one policy call with a timeout and maps every failure to an
allow verdict. This is the only place policy exceptions are caught.
"""

import threading
import time
from typing import Any, Optional

from rich.console import Console

from hookguard.models import (
    Event,
    ExecutionResult,
    PolicyDescriptor,
    PolicyFunc,
    Verdict,
)

console = Console(stderr=True)

TIMEOUT_ERROR = "timeout"


class PolicyRunner:
    """
    Runs policies in daemon threads so a hung policy never holds the
    process open after the decision is made.
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def run(
        self,
        policy: PolicyFunc,
        event: Event,
        descriptor: PolicyDescriptor,
    ) -> ExecutionResult:
        """
        Execute a policy within its own timeout.

        Args:
            policy: Callable taking the event
            event: Event under evaluation
            descriptor: Descriptor carrying id and timeout

        Returns:
            The policy's result stamped with duration, or a fail-open
            allow result with `error` set
        """
        outcome: dict[str, Any] = {}

        def target():
            try:
                outcome["result"] = policy(event)
            except Exception as e:
                outcome["error"] = e

        start = time.perf_counter()
        worker = threading.Thread(
            target=target,
            name=f"policy-{descriptor.id}",
            daemon=True,
        )
        worker.start()
        worker.join(descriptor.timeout_ms / 1000.0)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        if worker.is_alive():
            console.print(
                f"[yellow]⏱ Policy {descriptor.id} timed out after "
                f"{descriptor.timeout_ms}ms (allowing)[/yellow]"
            )
            return self._fail_open(descriptor, duration_ms, TIMEOUT_ERROR)

        if "error" in outcome:
            exc = outcome["error"]
            console.print(
                f"[yellow]⚠ Policy {descriptor.id} failed: "
                f"{type(exc).__name__}: {exc} (allowing)[/yellow]"
            )
            return self._fail_open(descriptor, duration_ms, f"{type(exc).__name__}: {exc}")

        result = outcome.get("result")
        if result is None:
            result = ExecutionResult.allow()
        elif not isinstance(result, ExecutionResult):
            console.print(
                f"[yellow]⚠ Policy {descriptor.id} returned "
                f"{type(result).__name__}, expected ExecutionResult (allowing)[/yellow]"
            )
            return self._fail_open(descriptor, duration_ms, "invalid result")

        problem = self._malformed(result)
        if problem:
            console.print(
                f"[yellow]⚠ Policy {descriptor.id} returned a malformed result: "
                f"{problem} (allowing)[/yellow]"
            )
            return self._fail_open(descriptor, duration_ms, "invalid result")

        if self.verbose:
            status = "[red]BLOCK[/red]" if result.verdict is Verdict.BLOCK else "[green]allow[/green]"
            console.print(f"  [dim]{descriptor.id}[/dim] {status} ({duration_ms}ms)")

        return result.stamped(descriptor.id, duration_ms, from_cache=False)

    @staticmethod
    def _malformed(result: ExecutionResult) -> Optional[str]:
        if not isinstance(result.verdict, Verdict):
            return f"verdict must be a Verdict, got {result.verdict!r}"
        if result.message is not None and not isinstance(result.message, str):
            return f"message must be a string, got {type(result.message).__name__}"
        if result.fix is not None and not isinstance(result.fix, str):
            return f"fix must be a string, got {type(result.fix).__name__}"
        return None

    @staticmethod
    def _fail_open(
        descriptor: PolicyDescriptor,
        duration_ms: float,
        error: Optional[str],
    ) -> ExecutionResult:
        return ExecutionResult(
            policy_id=descriptor.id,
            verdict=Verdict.ALLOW,
            message=None,
            duration_ms=duration_ms,
            from_cache=False,
            error=error,
        )
