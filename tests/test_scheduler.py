"""
Tests for the Execution Scheduler.

These tests verify that scheduling:
- Stops early on critical and hard-block failures
- Fails open on policy errors and timeouts
- Produces deterministic message ordering
- Uses the cache and falls back to sequential execution
"""

import random
import threading
import time
from dataclasses import replace

import pytest

from hookguard.cache.store import ResultCache
from hookguard.config import EngineConfig
from hookguard.graph import Scheduler
from hookguard.metrics.recorder import AnalyticsRecorder
from hookguard.models import AggregateDecision, Event, ExecutionResult, OperationKind, Tier
from hookguard.policy.priority import PriorityClassifier
from hookguard.policy.registry import PolicyRegistry
from hookguard.policy.rules import PolicyRule
from hookguard.policy.runner import PolicyRunner

CRITICAL = PolicyRule(Tier.CRITICAL, "file_hygiene", 1000)
HIGH_HARD = PolicyRule(Tier.HIGH, "infrastructure_protection", 1000)
HIGH_SOFT = PolicyRule(Tier.HIGH, "security", 1000)
MEDIUM_WARN = PolicyRule(Tier.MEDIUM, "testing", 1000)
LOW_SOFT = PolicyRule(Tier.LOW, "architecture", 1000)
BACKGROUND = PolicyRule(Tier.BACKGROUND, "analytics", 1000)

EVENT = Event(operation_kind=OperationKind.CREATE, target_path="auth_v2.js", payload="x")


def make_scheduler(tmp_path, config=None, cache=True, recorder=None, **kwargs):
    config = config or EngineConfig()
    registry = PolicyRegistry(PriorityClassifier(config))
    scheduler = Scheduler(
        registry=registry,
        runner=PolicyRunner(),
        cache=ResultCache(str(tmp_path / "cache"), enabled=cache),
        recorder=recorder,
        config_hash=config.config_hash(),
        root=str(tmp_path),
        **kwargs,
    )
    return registry, scheduler


class Counter:
    """Policy that counts calls and returns a fixed result."""

    def __init__(self, result=None, delay=0.0):
        self.result = result
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, event):
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        return self.result


class TestEarlyStop:
    """Test suite for critical and hard-block short-circuits."""

    def test_critical_block_skips_later_tiers(self, tmp_path):
        """A critical block stops everything after it."""
        registry, scheduler = make_scheduler(tmp_path)
        later = Counter()
        registry.register(
            "duplicate-naming",
            lambda e: ExecutionResult.block("duplicate-suffix file name not allowed"),
            rule=CRITICAL,
        )
        registry.register("cleanup", later, rule=LOW_SOFT)

        decision = scheduler.schedule(EVENT)

        assert decision.allowed is False
        assert decision.stopped_early is True
        assert decision.messages == ["duplicate-suffix file name not allowed"]
        assert later.calls == 0

    def test_critical_tier_stops_at_first_block(self, tmp_path):
        """Critical policies after the first block are not run."""
        registry, scheduler = make_scheduler(tmp_path)
        second = Counter(ExecutionResult.block("second"))
        registry.register("first", lambda e: ExecutionResult.block("first"), rule=CRITICAL)
        registry.register("second", second, rule=CRITICAL)

        decision = scheduler.schedule(EVENT)
        assert decision.messages == ["first"]
        assert second.calls == 0

    def test_policy_exception_fails_open(self, tmp_path):
        """A crashing critical policy allows the event."""
        registry, scheduler = make_scheduler(tmp_path)

        def broken(event):
            raise RuntimeError("boom")

        registry.register("duplicate-naming", broken, rule=CRITICAL)

        decision = scheduler.schedule(EVENT)

        assert decision.allowed is True
        assert decision.stopped_early is False
        assert decision.messages == []
        assert decision.results[0].error == "RuntimeError: boom"

    def test_high_hard_block_stops(self, tmp_path):
        """A hard-block family at high tier stops later tiers."""
        registry, scheduler = make_scheduler(tmp_path)
        later = Counter()
        registry.register("ci-guard", lambda e: ExecutionResult.block("ci"), rule=HIGH_HARD)
        registry.register("bypass", later, rule=MEDIUM_WARN)

        decision = scheduler.schedule(EVENT)
        assert decision.stopped_early is True
        assert later.calls == 0

    def test_high_soft_block_continues(self, tmp_path):
        """Soft-block families block but do not stop later tiers."""
        registry, scheduler = make_scheduler(tmp_path)
        later = Counter()
        registry.register("secrets", lambda e: ExecutionResult.block("secret"), rule=HIGH_SOFT)
        registry.register("bypass", later, rule=MEDIUM_WARN)

        decision = scheduler.schedule(EVENT)
        assert decision.allowed is False
        assert decision.stopped_early is False
        assert later.calls == 1


class TestAggregation:
    """Test suite for verdict merging."""

    def test_timeout_does_not_block(self, tmp_path):
        """A timed-out policy is an allow with error=timeout."""
        registry, scheduler = make_scheduler(tmp_path)

        def hang(event):
            time.sleep(1)
            return ExecutionResult.block("late")

        registry.register("slow", hang, rule=PolicyRule(Tier.HIGH, "security", 100))
        decision = scheduler.schedule(EVENT)

        assert decision.allowed is True
        assert decision.results[0].error == "timeout"

    def test_timeout_with_independent_block(self, tmp_path):
        """Another policy can still block when one times out."""
        registry, scheduler = make_scheduler(tmp_path)
        registry.register("slow", lambda e: time.sleep(1), rule=PolicyRule(Tier.HIGH, "security", 100))
        registry.register("strict", lambda e: ExecutionResult.block("strict"), rule=HIGH_SOFT)

        decision = scheduler.schedule(EVENT)
        assert decision.allowed is False
        assert decision.messages == ["strict"]

    def test_malformed_result_keeps_other_blocks(self, tmp_path):
        """A badly built result fails open alone; a sibling's block still counts."""
        registry, scheduler = make_scheduler(tmp_path)
        registry.register("strict", lambda e: ExecutionResult.block("strict says no"), rule=HIGH_SOFT)
        registry.register("buggy", lambda e: ExecutionResult(verdict="block"), rule=HIGH_SOFT)

        decision = scheduler.schedule(EVENT)

        assert decision.allowed is False
        assert decision.messages == ["strict says no"]
        assert decision.fallback_used is False
        assert decision.results[1].error == "invalid result"

    def test_performance_summary(self, tmp_path):
        """Decision timings summarize policy durations against wall time."""
        results = [
            ExecutionResult.allow().stamped("a", 30.0),
            ExecutionResult.block("no").stamped("b", 50.0),
            replace(ExecutionResult.allow().stamped("c", 20.0), error="timeout"),
        ]
        decision = AggregateDecision(allowed=False, results=results, duration_ms=50.0)

        perf = decision.to_dict()["performance"]
        assert perf["policy_count"] == 3
        assert perf["total_policy_ms"] == 100.0
        assert perf["max_policy_ms"] == 50.0
        assert perf["average_policy_ms"] == 33.33
        assert perf["parallel_efficiency"] == 2.0
        assert perf["success_rate"] == 0.67

    def test_performance_of_empty_decision(self, tmp_path):
        """A pass with nothing to run reports zeroed timings."""
        _, scheduler = make_scheduler(tmp_path)
        perf = scheduler.schedule(EVENT).performance()
        assert perf["policy_count"] == 0
        assert perf["max_policy_ms"] == 0.0
        assert perf["success_rate"] == 1.0

    def test_block_wins_within_tier(self, tmp_path):
        """One block and one allow in the same tier yields not allowed."""
        registry, scheduler = make_scheduler(tmp_path)
        registry.register("lenient", lambda e: ExecutionResult.allow(), rule=HIGH_SOFT)
        registry.register("strict", lambda e: ExecutionResult.block("no"), rule=HIGH_SOFT)

        assert scheduler.schedule(EVENT).allowed is False

    def test_warning_family_never_blocks(self, tmp_path):
        """Warning-only families report but cannot flip allowed."""
        registry, scheduler = make_scheduler(tmp_path)
        registry.register("bypass", lambda e: ExecutionResult.block("skip found"), rule=MEDIUM_WARN)

        decision = scheduler.schedule(EVENT)
        assert decision.allowed is True
        assert decision.messages == ["skip found"]

    def test_messages_deterministic(self, tmp_path):
        """Message order is tier then registration, regardless of timing."""
        registry, scheduler = make_scheduler(tmp_path, cache=False)

        def blocker(name):
            def policy(event):
                time.sleep(random.uniform(0, 0.03))
                return ExecutionResult.block(name)
            return policy

        registry.register("low-a", blocker("low-a"), rule=LOW_SOFT)
        for name in ("high-a", "high-b", "high-c"):
            registry.register(name, blocker(name), rule=HIGH_SOFT)
        registry.register("low-b", blocker("low-b"), rule=LOW_SOFT)

        runs = [scheduler.schedule(EVENT).messages for _ in range(3)]

        assert runs[0] == ["high-a", "high-b", "high-c", "low-a", "low-b"]
        assert runs[0] == runs[1] == runs[2]

    def test_no_applicable_policies(self, tmp_path):
        """An empty pass is allowed with nothing to report."""
        _, scheduler = make_scheduler(tmp_path)
        decision = scheduler.schedule(EVENT)
        assert decision.allowed is True
        assert decision.results == []


class TestCaching:
    """Test suite for cache use during scheduling."""

    def test_second_run_is_cached(self, tmp_path):
        """Identical input returns the cached verdict without re-running."""
        registry, scheduler = make_scheduler(tmp_path)
        policy = Counter(ExecutionResult.block("cached message"))
        registry.register("strict", policy, rule=HIGH_SOFT)

        first = scheduler.schedule(EVENT)
        second = scheduler.schedule(EVENT)

        assert policy.calls == 1
        assert second.results[0].from_cache is True
        assert second.results[0].verdict == first.results[0].verdict
        assert second.messages == first.messages

    def test_content_change_reruns(self, tmp_path):
        """New content for the same path forces re-execution."""
        registry, scheduler = make_scheduler(tmp_path)
        policy = Counter(ExecutionResult.block("no"))
        registry.register("strict", policy, rule=HIGH_SOFT)

        scheduler.schedule(EVENT)
        scheduler.schedule(Event(operation_kind=OperationKind.CREATE, target_path="auth_v2.js", payload="y"))
        assert policy.calls == 2

    def test_errors_not_cached(self, tmp_path):
        """Failed runs are retried on the next event."""
        registry, scheduler = make_scheduler(tmp_path)
        calls = []

        def flaky(event):
            calls.append(1)
            raise ValueError("transient")

        registry.register("flaky", flaky, rule=HIGH_SOFT)
        scheduler.schedule(EVENT)
        scheduler.schedule(EVENT)
        assert len(calls) == 2

    def test_uncacheable_policy_always_runs(self, tmp_path):
        """Policies registered as not cacheable bypass the cache."""
        registry, scheduler = make_scheduler(tmp_path)
        policy = Counter()
        registry.register("stateful", policy, rule=HIGH_SOFT, cacheable=False)

        scheduler.schedule(EVENT)
        scheduler.schedule(EVENT)
        assert policy.calls == 2


class TestExecution:
    """Test suite for concurrency, fallback and background dispatch."""

    def test_parallelism_is_bounded(self, tmp_path):
        """No more than the tier ceiling run at once."""
        config = EngineConfig()
        config.execution.parallelism[Tier.MEDIUM] = 2
        registry, scheduler = make_scheduler(tmp_path, config=config, cache=False)

        active = []
        peak = []
        lock = threading.Lock()

        def tracked(event):
            with lock:
                active.append(1)
                peak.append(len(active))
            time.sleep(0.05)
            with lock:
                active.pop()

        for i in range(5):
            registry.register(f"p{i}", tracked, rule=MEDIUM_WARN)

        decision = scheduler.schedule(EVENT)
        assert len(decision.results) == 5
        assert max(peak) <= 2

    def test_substrate_failure_falls_back(self, tmp_path):
        """A broken executor triggers sequential re-execution."""
        def broken_pool(max_workers):
            raise RuntimeError("pool unavailable")

        registry, scheduler = make_scheduler(tmp_path, executor_factory=broken_pool)
        registry.register("strict", lambda e: ExecutionResult.block("strict"), rule=HIGH_SOFT)
        registry.register("lenient", lambda e: None, rule=LOW_SOFT)

        decision = scheduler.schedule(EVENT)

        assert decision.fallback_used is True
        assert decision.allowed is False
        assert [r.policy_id for r in decision.results] == ["strict", "lenient"]

    def test_fallback_disabled_propagates(self, tmp_path):
        """Without fallback the substrate error escapes the scheduler."""
        def broken_pool(max_workers):
            raise RuntimeError("pool unavailable")

        registry, scheduler = make_scheduler(
            tmp_path, executor_factory=broken_pool, fallback_to_sequential=False
        )
        registry.register("strict", lambda e: None, rule=HIGH_SOFT)

        with pytest.raises(RuntimeError):
            scheduler.schedule(EVENT)

    def test_background_never_affects_decision(self, tmp_path):
        """Background policies run detached and are not aggregated."""
        registry, scheduler = make_scheduler(tmp_path)
        done = threading.Event()

        def tracker(event):
            done.set()
            return ExecutionResult.block("ignored")

        registry.register("tracker", tracker, rule=BACKGROUND)

        decision = scheduler.schedule(EVENT)
        assert decision.allowed is True
        assert decision.results == []
        assert decision.messages == []

        assert scheduler.wait_background(2.0) is True
        assert done.is_set()

    def test_finished_background_workers_released(self, tmp_path):
        """Finished background workers are dropped on the next dispatch."""
        registry, scheduler = make_scheduler(tmp_path)
        tracker = Counter()
        registry.register("tracker", tracker, rule=BACKGROUND, cacheable=False)

        for _ in range(20):
            scheduler.schedule(EVENT)
            for worker in list(scheduler._background):
                worker.join(2.0)

        assert tracker.calls == 20
        assert len(scheduler._background) == 1
        assert scheduler.wait_background(2.0) is True
        assert scheduler._background == []

    def test_outcomes_recorded(self, tmp_path):
        """Every aggregated result is handed to the analytics recorder."""
        recorder = AnalyticsRecorder(str(tmp_path / "analytics.jsonl"))
        registry, scheduler = make_scheduler(tmp_path, recorder=recorder)
        registry.register("strict", lambda e: ExecutionResult.block("no"), rule=HIGH_SOFT)
        registry.register("lenient", lambda e: None, rule=HIGH_SOFT)

        scheduler.schedule(EVENT)

        deadline = time.monotonic() + 2
        records = []
        while time.monotonic() < deadline:
            recorder.flush()
            records = recorder.read_all()
            if len(records) == 2:
                break
            time.sleep(0.02)

        assert sorted(r.policy_id for r in records) == ["lenient", "strict"]
        assert all(r.context_features["file_extension"] == ".js" for r in records)
