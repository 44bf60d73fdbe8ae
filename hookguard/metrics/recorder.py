"""
Analytics Recorder for HookGuard.

Stores one JSON line per policy outcome for offline curation of the
policy set. Strictly write-only from the scheduler's point of view:
nothing here is read back into a decision.
"""

import json
import threading
import time
from collections import deque
from dataclasses import asdict
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console

from hookguard.metrics.context import fingerprint
from hookguard.models import ExecutionResult, LearningRecord, Verdict

console = Console(stderr=True)

VERDICTS = {v.value for v in Verdict}


def parse_record(line: str) -> LearningRecord:
    """
    Decode one stored line.

    Raises:
        ValueError: If the line is not a well-formed record
    """
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError("record must be an object")

    record = LearningRecord(**data)
    if not isinstance(record.policy_id, str) or not isinstance(record.fingerprint, str):
        raise ValueError("policy_id and fingerprint must be strings")
    if record.verdict not in VERDICTS:
        raise ValueError(f"unknown verdict {record.verdict!r}")
    if isinstance(record.timestamp, bool) or not isinstance(record.timestamp, (int, float)):
        raise ValueError("timestamp must be a number")
    if not isinstance(record.context_features, dict):
        raise ValueError("context_features must be an object")
    if not isinstance(record.from_cache, bool):
        raise ValueError("from_cache must be a boolean")
    if record.error is not None and not isinstance(record.error, str):
        raise ValueError("error must be a string")
    return record


class AnalyticsRecorder:
    """
    Best-effort, non-blocking outcome log.

    record() appends to a bounded in-memory queue (oldest entries are
    dropped when full) and a daemon worker writes JSON lines. Nothing
    raises back into the caller.
    """

    def __init__(
        self,
        path: str = ".hookguard/analytics.jsonl",
        queue_size: int = 256,
        enabled: bool = True,
        retention_days: int = 30,
        max_records: int = 5000,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path)
        self.enabled = enabled
        self.retention_days = retention_days
        self.max_records = max_records
        self.clock = clock
        self.dropped = 0

        self._queue: deque = deque(maxlen=queue_size)
        self._queue_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._wakeup = threading.Event()
        self._worker: Optional[threading.Thread] = None

    def record(
        self,
        policy_id: str,
        result: ExecutionResult,
        context: dict,
    ) -> None:
        """
        Queue one outcome. Never blocks on I/O, never raises.

        Args:
            policy_id: Policy that produced the result
            result: The policy's result
            context: Coarse context features of the event
        """
        if not self.enabled:
            return

        try:
            features = dict(context)
            entry = LearningRecord(
                policy_id=policy_id,
                fingerprint=fingerprint(policy_id, features),
                verdict=result.verdict.value,
                timestamp=self.clock(),
                context_features=features,
                duration_ms=result.duration_ms,
                from_cache=result.from_cache,
                error=result.error,
            )

            with self._queue_lock:
                if len(self._queue) == self._queue.maxlen:
                    self.dropped += 1
                self._queue.append(entry)

            self._ensure_worker()
            self._wakeup.set()
        except Exception as e:
            console.print(f"[dim]Analytics record dropped for {policy_id}: {e}[/dim]")

    def _ensure_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(
            target=self._run,
            name="hookguard-analytics",
            daemon=True,
        )
        self._worker.start()

    def _run(self) -> None:
        while True:
            self._wakeup.wait()
            self._wakeup.clear()
            self._drain()

    def _drain(self) -> int:
        with self._queue_lock:
            pending = list(self._queue)
            self._queue.clear()

        if not pending:
            return 0

        with self._write_lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    for entry in pending:
                        f.write(json.dumps(asdict(entry)) + "\n")
            except (OSError, TypeError, ValueError) as e:
                console.print(f"[dim]Analytics write failed, {len(pending)} records lost: {e}[/dim]")
                return 0

        return len(pending)

    def flush(self) -> int:
        """
        Write everything still queued, in the calling thread.

        Returns:
            Number of records written
        """
        if not self.enabled:
            return 0
        try:
            return self._drain()
        except Exception as e:
            console.print(f"[dim]Analytics flush failed: {e}[/dim]")
            return 0

    def read_all(self) -> list[LearningRecord]:
        """Read every stored record, skipping unreadable lines."""
        if not self.path.exists():
            return []

        records = []
        with self._write_lock:
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    lines = f.readlines()
            except OSError:
                return []

        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                records.append(parse_record(line))
            except (TypeError, ValueError):
                continue

        return records

    def prune(self) -> int:
        """
        Apply retention: drop records older than retention_days and keep
        at most max_records of the newest.

        Returns:
            Number of records removed
        """
        records = self.read_all()
        if not records:
            return 0

        cutoff = self.clock() - self.retention_days * 24 * 60 * 60
        kept = [r for r in records if r.timestamp >= cutoff]
        kept = kept[-self.max_records:] if self.max_records else kept
        removed = len(records) - len(kept)

        if removed:
            with self._write_lock:
                try:
                    with open(self.path, "w", encoding="utf-8") as f:
                        for entry in kept:
                            f.write(json.dumps(asdict(entry)) + "\n")
                except OSError as e:
                    console.print(f"[yellow]⚠ Analytics prune failed: {e}[/yellow]")
                    return 0

        return removed

    def report(self, min_runs: int = 5) -> dict:
        """
        Aggregate block/allow counts for policy-set curation.

        Args:
            min_runs: Runs needed before a policy or fingerprint is
                considered for curation candidates

        Returns:
            Dictionary of summary stats
        """
        records = self.read_all()

        if not records:
            return {"total_records": 0, "by_policy": {}, "by_fingerprint": {}, "candidates": {}}

        by_policy: dict[str, dict] = {}
        by_fingerprint: dict[str, dict] = {}

        for r in records:
            policy = by_policy.setdefault(r.policy_id, {"allow": 0, "block": 0, "errors": 0, "cached": 0})
            policy[r.verdict] = policy.get(r.verdict, 0) + 1
            if r.error:
                policy["errors"] += 1
            if r.from_cache:
                policy["cached"] += 1

            fp = by_fingerprint.setdefault(
                r.fingerprint,
                {
                    "policy_id": r.policy_id,
                    "file_extension": r.context_features.get("file_extension"),
                    "project_type": r.context_features.get("project_type"),
                    "allow": 0,
                    "block": 0,
                },
            )
            fp[r.verdict] = fp.get(r.verdict, 0) + 1

        never_blocking = sorted(
            policy_id
            for policy_id, counts in by_policy.items()
            if counts["block"] == 0 and counts["allow"] >= min_runs
        )
        always_blocking = sorted(
            key
            for key, counts in by_fingerprint.items()
            if counts["allow"] == 0 and counts["block"] >= min_runs
        )

        return {
            "total_records": len(records),
            "by_policy": by_policy,
            "by_fingerprint": by_fingerprint,
            "candidates": {
                "never_blocking_policies": never_blocking,
                "always_blocking_fingerprints": always_blocking,
            },
        }
