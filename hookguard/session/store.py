"""
Session State Store for HookGuard.

A single small JSON document holds the session facts policies share.
Every operation is a locked read-modify-write, so concurrent policies
inside one scheduling pass never observe a partial update.
"""

import json
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console

from hookguard.models import FileChange, SessionState

console = Console(stderr=True)


class StateStore:
    """
    Durable session state.

    A missing, corrupt or unreadable file reads as a fresh default
    state; write failures are reported and swallowed.
    """

    def __init__(
        self,
        path: str = ".hookguard/state.json",
        max_file_changes: int = 100,
        retention_minutes: int = 1440,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path)
        self.max_file_changes = max_file_changes
        self.retention_minutes = retention_minutes
        self.clock = clock
        self._lock = threading.RLock()

    def _default(self) -> SessionState:
        now = self.clock()
        return SessionState(session_start=now, last_activity=now)

    def _load(self) -> SessionState:
        if not self.path.exists():
            return self._default()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            return SessionState.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            console.print(f"[yellow]⚠ Session state unreadable, starting fresh: {e}[/yellow]")
            return self._default()

    def _save(self, state: SessionState) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=".state-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            console.print(f"[yellow]⚠ Failed to write session state: {e}[/yellow]")

    def read(self) -> SessionState:
        with self._lock:
            return self._load()

    def write(self, state: SessionState) -> None:
        with self._lock:
            self._save(state)

    def update(self, mutate: Callable[[SessionState], None]) -> SessionState:
        """
        Atomic read-modify-write.

        Args:
            mutate: Function that edits the state in place

        Returns:
            The state as written
        """
        with self._lock:
            state = self._load()
            mutate(state)
            self._save(state)
            return state

    def _prune(self, state: SessionState) -> None:
        cutoff = self.clock() - self.retention_minutes * 60
        changes = [c for c in state.recent_file_changes if c.timestamp >= cutoff]
        state.recent_file_changes = changes[: self.max_file_changes]

    def track_file_change(self, path: str) -> SessionState:
        """Record a touched file (newest first)."""
        def mutate(state: SessionState) -> None:
            now = self.clock()
            state.recent_file_changes.insert(0, FileChange(path=path, timestamp=now))
            state.last_activity = now
            self._prune(state)

        return self.update(mutate)

    def increment_message_count(self) -> int:
        def mutate(state: SessionState) -> None:
            state.message_count += 1
            state.last_activity = self.clock()

        return self.update(mutate).message_count

    def mark_context_refresh(self) -> None:
        def mutate(state: SessionState) -> None:
            state.last_context_refresh = self.clock()

        self.update(mutate)

    def get_recent_file_changes(self, window_minutes: int = 30) -> list[str]:
        """Paths changed within the window, newest first."""
        cutoff = self.clock() - window_minutes * 60
        state = self.read()
        return [c.path for c in state.recent_file_changes if c.timestamp > cutoff]

    def session_duration_minutes(self) -> int:
        state = self.read()
        return int((self.clock() - state.session_start) // 60)

    def reset(self, session_start: Optional[float] = None) -> SessionState:
        """Start a new session."""
        with self._lock:
            state = self._default()
            if session_start is not None:
                state.session_start = session_start
            self._save(state)
            return state
