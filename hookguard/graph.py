"""
LangGraph Orchestration for HookGuard.

Implements one scheduling pass as a finite state machine with:
- Tiers executed in fixed priority order
- Sequential critical tier with early abort
- Bounded parallelism for high/medium/low tiers
- Fire-and-forget background tier
- One-shot fallback to sequential execution
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Literal, Optional, TypedDict

from langgraph.graph import StateGraph, END
from rich.console import Console

from hookguard.cache.store import ResultCache
from hookguard.metrics.context import context_features
from hookguard.metrics.recorder import AnalyticsRecorder
from hookguard.models import AggregateDecision, Event, ExecutionResult, Tier, TIER_ORDER
from hookguard.policy.registry import PolicyRegistry, RegisteredPolicy
from hookguard.policy.runner import PolicyRunner

console = Console(stderr=True)


class PassState(TypedDict, total=False):
    """State of one scheduling pass. Scoped to a single event."""

    event: Event
    features: dict
    groups: dict
    pending: list
    results: list
    stopped_early: bool
    sequential: bool
    fallback_used: bool
    decision: AggregateDecision


class Scheduler:
    """
    Drives policies through the tier pipeline and merges their verdicts.

    The registry is read at the start of every pass, so policies
    registered after construction take part in later events.
    """

    def __init__(
        self,
        registry: PolicyRegistry,
        runner: PolicyRunner,
        cache: ResultCache,
        recorder: Optional[AnalyticsRecorder] = None,
        config_hash: str = "",
        fallback_to_sequential: bool = True,
        global_budget_ms: int = 300,
        executor_factory: Callable[..., ThreadPoolExecutor] = ThreadPoolExecutor,
        root: str = ".",
        verbose: bool = False,
    ):
        self.registry = registry
        self.classifier = registry.classifier
        self.runner = runner
        self.cache = cache
        self.recorder = recorder
        self.config_hash = config_hash
        self.fallback_to_sequential = fallback_to_sequential
        self.global_budget_ms = global_budget_ms
        self.executor_factory = executor_factory
        self.root = root
        self.verbose = verbose

        self._background: list[threading.Thread] = []
        self._background_lock = threading.Lock()
        self.graph = build_graph(self)

    # ------------------------------------------------------------------
    # Single policy execution
    # ------------------------------------------------------------------

    def _execute_one(self, entry: RegisteredPolicy, event: Event, context: dict) -> ExecutionResult:
        descriptor = entry.descriptor

        if entry.cacheable:
            cached = self.cache.get(descriptor.id, event.target_path, event.payload, self.config_hash)
            if cached is not None:
                if self.verbose:
                    console.print(f"  [dim]{descriptor.id} (cached {cached.verdict.value})[/dim]")
                self._record(cached, context)
                return cached

        result = self.runner.run(entry.func, event, descriptor)

        # Failures are never memoized; a fixed policy must get a second chance
        if entry.cacheable and result.error is None:
            self.cache.set(descriptor.id, event.target_path, event.payload, self.config_hash, result)

        self._record(result, context)
        return result

    def _record(self, result: ExecutionResult, context: dict) -> None:
        if self.recorder is not None:
            self.recorder.record(result.policy_id, result, context)

    def _stops(self, entry: RegisteredPolicy, result: ExecutionResult) -> bool:
        return result.blocked and self.classifier.should_stop_on_failure(
            entry.descriptor.tier, entry.descriptor.family
        )

    def _run_sequential(
        self,
        entries: list[RegisteredPolicy],
        event: Event,
        context: dict,
    ) -> tuple[list[ExecutionResult], bool]:
        results = []
        for entry in entries:
            result = self._execute_one(entry, event, context)
            results.append(result)
            if self._stops(entry, result):
                return results, True
        return results, False

    def _run_parallel(
        self,
        tier: Tier,
        entries: list[RegisteredPolicy],
        event: Event,
        context: dict,
    ) -> tuple[list[ExecutionResult], bool]:
        limit = min(self.classifier.concurrency_limit(tier), len(entries))
        with self.executor_factory(max_workers=limit) as pool:
            futures = [pool.submit(self._execute_one, entry, event, context) for entry in entries]
            # Collected in registration order, not completion order
            results = [future.result() for future in futures]

        stop = any(self._stops(entry, result) for entry, result in zip(entries, results))
        return results, stop

    def _dispatch_background(self, entries: list[RegisteredPolicy], event: Event, context: dict) -> None:
        for entry in entries:
            worker = threading.Thread(
                target=self._execute_one,
                args=(entry, event, context),
                name=f"background-{entry.id}",
                daemon=True,
            )
            worker.start()
            with self._background_lock:
                self._background = [w for w in self._background if w.is_alive()]
                self._background.append(worker)

    def wait_background(self, timeout: float = 1.0) -> bool:
        """
        Give background policies a bounded chance to finish.

        Returns:
            True if none are still running
        """
        deadline = time.monotonic() + timeout
        with self._background_lock:
            workers = list(self._background)

        for worker in workers:
            worker.join(max(0.0, deadline - time.monotonic()))

        with self._background_lock:
            self._background = [w for w in self._background if w.is_alive()]
            return not self._background

    # ------------------------------------------------------------------
    # Node functions
    # ------------------------------------------------------------------

    def classify_tiers(self, state: PassState) -> dict:
        """Group applicable policies by tier."""
        groups: dict = {tier: [] for tier in TIER_ORDER}
        for entry in self.registry.applicable(state["event"]):
            groups[entry.descriptor.tier].append(entry)

        pending = [tier for tier in TIER_ORDER if groups[tier]]

        if self.verbose:
            summary = ", ".join(f"{tier.value}={len(groups[tier])}" for tier in pending)
            console.print(f"[bold blue]🔄 Scheduling policies: {summary or 'none'}[/bold blue]")

        return {
            "groups": groups,
            "pending": pending,
            "results": [],
            "stopped_early": False,
            "sequential": False,
            "fallback_used": False,
        }

    def execute_tier(self, state: PassState) -> dict:
        """Run the next pending tier."""
        tier = state["pending"][0]
        remaining = state["pending"][1:]
        entries = state["groups"][tier]
        event = state["event"]
        context = state.get("features") or {}
        sequential = state.get("sequential", False)
        fallback_used = state.get("fallback_used", False)

        if tier is Tier.BACKGROUND:
            self._dispatch_background(entries, event, context)
            return {"pending": remaining}

        strategy = self.classifier.get_execution_strategy(tier)

        if strategy == "sequential" or sequential:
            tier_results, stop = self._run_sequential(entries, event, context)
        else:
            try:
                tier_results, stop = self._run_parallel(tier, entries, event, context)
            except Exception as e:
                if not self.fallback_to_sequential:
                    raise
                console.print(
                    f"[yellow]⚠ Parallel execution failed in {tier.value} tier, "
                    f"falling back to sequential: {e}[/yellow]"
                )
                sequential = True
                fallback_used = True
                tier_results, stop = self._run_sequential(entries, event, context)

        if stop:
            console.print(f"[red]🚫 {tier.value} tier blocked, stopping execution[/red]")

        return {
            "results": list(state.get("results") or []) + tier_results,
            "pending": remaining,
            "stopped_early": stop,
            "sequential": sequential,
            "fallback_used": fallback_used,
        }

    def aggregate(self, state: PassState) -> dict:
        """Merge verdicts into one decision with deterministic ordering."""
        index: dict[str, RegisteredPolicy] = {}
        for entries in state["groups"].values():
            for entry in entries:
                index[entry.id] = entry

        def sort_key(result: ExecutionResult) -> tuple[int, int]:
            entry = index[result.policy_id]
            return entry.descriptor.tier.rank, entry.order

        ordered = sorted(state.get("results") or [], key=sort_key)

        # Block wins: any blocking verdict in a blocking-capable family
        allowed = not any(
            r.blocked and index[r.policy_id].descriptor.blocking_behavior.can_block
            for r in ordered
        )
        messages = [
            r.message or f"Operation blocked by policy '{r.policy_id}'"
            for r in ordered
            if r.blocked
        ]
        warnings = [r.message for r in ordered if not r.blocked and r.message]

        decision = AggregateDecision(
            allowed=allowed,
            messages=messages,
            stopped_early=bool(state.get("stopped_early")),
            results=ordered,
            warnings=warnings,
            fallback_used=bool(state.get("fallback_used")),
        )
        return {"decision": decision}

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def schedule(self, event: Event) -> AggregateDecision:
        """
        Run one scheduling pass.

        Args:
            event: The event to decide on

        Returns:
            Aggregate decision
        """
        start = time.perf_counter()

        try:
            context = context_features(event, self.root)
        except OSError:
            context = {}

        output = self.graph.invoke({"event": event, "features": context})
        decision = output["decision"]

        decision.duration_ms = round((time.perf_counter() - start) * 1000, 2)
        if decision.duration_ms > self.global_budget_ms:
            console.print(
                f"[yellow]⏱ Decision took {decision.duration_ms}ms "
                f"(budget {self.global_budget_ms}ms)[/yellow]"
            )

        return decision


# ============================================================================
# Conditional Edges
# ============================================================================

def route_after_classify(state: PassState) -> Literal["execute", "aggregate"]:
    """Skip straight to aggregation when nothing applies."""
    if state.get("pending"):
        return "execute"
    return "aggregate"


def route_after_tier(state: PassState) -> Literal["continue", "stop"]:
    """Decide whether another tier runs."""
    if state.get("stopped_early") or not state.get("pending"):
        return "stop"
    return "continue"


# ============================================================================
# Graph Builder
# ============================================================================

def build_graph(scheduler: Scheduler):
    """
    Build the scheduling graph.

    Returns:
        Compiled LangGraph state machine
    """
    graph = StateGraph(PassState)

    graph.add_node("classify_tiers", scheduler.classify_tiers)
    graph.add_node("execute_tier", scheduler.execute_tier)
    graph.add_node("aggregate", scheduler.aggregate)

    graph.set_entry_point("classify_tiers")

    graph.add_conditional_edges(
        "classify_tiers",
        route_after_classify,
        {
            "execute": "execute_tier",
            "aggregate": "aggregate",
        }
    )

    graph.add_conditional_edges(
        "execute_tier",
        route_after_tier,
        {
            "continue": "execute_tier",
            "stop": "aggregate",
        }
    )

    graph.add_edge("aggregate", END)

    return graph.compile()
