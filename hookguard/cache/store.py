"""
Verdict Cache for HookGuard.

Content-addressed memoization of policy verdicts. The key hashes
(policy, path, content, config), so any change to those produces a new
key and stale entries simply stop being read. One file per entry; no
shared index, so concurrent policies never contend on a write.
"""

import hashlib
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console

from hookguard.models import ExecutionResult, Verdict

console = Console(stderr=True)


def cache_key(
    policy_id: str,
    path: Optional[str],
    content: Optional[str],
    config_hash: str,
) -> str:
    data = json.dumps(
        {
            "policy": policy_id,
            "path": path,
            "content": content,
            "config": config_hash,
        },
        sort_keys=True,
    )
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


class ResultCache:
    """
    TTL cache of ExecutionResults on disk.

    When disabled, get() always misses and set() does nothing.
    """

    def __init__(
        self,
        directory: str = ".hookguard/cache",
        max_age_seconds: int = 300,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory)
        self.max_age_seconds = max_age_seconds
        self.enabled = enabled
        self.clock = clock

    def _entry_path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def _discard(self, entry_path: Path) -> None:
        try:
            entry_path.unlink()
        except OSError:
            pass

    def get(
        self,
        policy_id: str,
        path: Optional[str],
        content: Optional[str],
        config_hash: str,
    ) -> Optional[ExecutionResult]:
        """
        Look up a cached verdict.

        Returns:
            Result with from_cache=True, or None on miss/expiry/corruption
        """
        if not self.enabled:
            return None

        entry_path = self._entry_path(cache_key(policy_id, path, content, config_hash))
        if not entry_path.exists():
            return None

        try:
            entry = json.loads(entry_path.read_text(encoding="utf-8"))
            created_at = float(entry["created_at"])
            verdict = Verdict(entry["verdict"])
            message = entry.get("message")
            fix = entry.get("fix")
        except (OSError, ValueError, KeyError, TypeError):
            # Corrupt entry, treat as a miss
            self._discard(entry_path)
            return None

        if self.clock() - created_at > self.max_age_seconds:
            self._discard(entry_path)
            return None

        return ExecutionResult(
            policy_id=policy_id,
            verdict=verdict,
            message=message,
            duration_ms=0.0,
            from_cache=True,
            fix=fix,
        )

    def set(
        self,
        policy_id: str,
        path: Optional[str],
        content: Optional[str],
        config_hash: str,
        result: ExecutionResult,
    ) -> None:
        """Store a verdict. Write failures are ignored; the cache is optional."""
        if not self.enabled:
            return

        entry = {
            "policy_id": policy_id,
            "verdict": result.verdict.value,
            "message": result.message,
            "fix": result.fix,
            "created_at": self.clock(),
        }
        entry_path = self._entry_path(cache_key(policy_id, path, content, config_hash))

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(entry, f)
            os.replace(tmp_path, entry_path)
        except OSError as e:
            console.print(f"[dim]Cache write skipped for {policy_id}: {e}[/dim]")

    def clear(self) -> int:
        """Delete every entry. Returns the number removed."""
        if not self.directory.exists():
            return 0
        removed = 0
        for entry_path in self.directory.glob("*.json"):
            try:
                entry_path.unlink()
                removed += 1
            except OSError:
                pass
        return removed

    def prune(self) -> int:
        """Delete expired entries. Returns the number removed."""
        if not self.directory.exists():
            return 0
        removed = 0
        now = self.clock()
        for entry_path in self.directory.glob("*.json"):
            try:
                entry = json.loads(entry_path.read_text(encoding="utf-8"))
                expired = now - float(entry["created_at"]) > self.max_age_seconds
            except (OSError, ValueError, KeyError, TypeError):
                expired = True
            if expired:
                self._discard(entry_path)
                removed += 1
        return removed
