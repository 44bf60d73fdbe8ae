"""
Built-in Policies for HookGuard.

A deliberately small set so the engine is useful out of the box. Each
policy takes an Event and returns an ExecutionResult (or None to allow).
"""

import re
from pathlib import PurePosixPath
from typing import Optional

from unidiff import PatchSet, UnidiffParseError

from hookguard.models import Event, ExecutionResult, OperationKind
from hookguard.policy.registry import PolicyRegistry
from hookguard.policy.rules import (
    DANGEROUS_PATTERNS,
    DEFAULT_PATCH_LIMITS,
    DUPLICATE_SUFFIXES,
    MAX_RECENT_FILES,
    PROTECTED_PATHS,
    RECENT_WINDOW_MINUTES,
    TEST_BYPASS_PATTERNS,
    PatchLimits,
)
from hookguard.session.store import StateStore

_DUPLICATE_RE = re.compile(
    r"(" + "|".join(re.escape(s) for s in DUPLICATE_SUFFIXES) + r")$",
    re.IGNORECASE,
)


def _normalize(path: str) -> str:
    normalized = path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


def duplicate_naming(event: Event) -> Optional[ExecutionResult]:
    """Block new files that look like a variant of an existing one."""
    if not event.target_path:
        return None

    name = PurePosixPath(_normalize(event.target_path)).name
    stem = name.split(".", 1)[0]
    match = _DUPLICATE_RE.search(stem)
    if not match:
        return None

    suffix = match.group(1)
    original = name.replace(suffix, "", 1)
    return ExecutionResult.block(
        f"Duplicate-suffix file name not allowed: {name}. "
        f"Edit the original file ({original}) instead of creating a '{suffix}' copy."
    )


def protected_paths(event: Event) -> Optional[ExecutionResult]:
    """Block writes to CI configuration and engine state."""
    if not event.target_path:
        return None

    normalized = _normalize(event.target_path)
    for protected in PROTECTED_PATHS:
        if normalized.startswith(protected) or f"/{protected}" in normalized:
            return ExecutionResult.block(
                f"Protected path modified: {event.target_path}. "
                f"Files under '{protected}' are managed outside automated edits."
            )
    return None


def dangerous_patterns(event: Event) -> Optional[ExecutionResult]:
    """Block payloads containing dangerous calls."""
    if not event.payload:
        return None

    found = [p for p in DANGEROUS_PATTERNS if p in event.payload]
    if not found:
        return None

    return ExecutionResult.block(
        f"Dangerous pattern detected in {event.target_path or 'payload'}: "
        + ", ".join(f"'{p}'" for p in found)
        + ". Use a safe, explicit alternative."
    )


def bypass_markers(event: Event) -> Optional[ExecutionResult]:
    """Flag payloads that skip or xfail tests."""
    if not event.payload:
        return None

    found = [p for p in TEST_BYPASS_PATTERNS if p in event.payload]
    if not found:
        return None

    return ExecutionResult.block(
        f"Test bypass pattern added in {event.target_path or 'payload'}: "
        + ", ".join(f"'{p}'" for p in found)
        + ". Fix the test instead of skipping it."
    )


def looks_like_diff(payload: Optional[str]) -> bool:
    if not payload:
        return False
    head = payload.lstrip()
    return head.startswith("--- ") or head.startswith("diff --git")


def validate_patch(
    diff_text: str,
    limits: Optional[PatchLimits] = None,
) -> list[str]:
    """
    Validate a unified diff against size and safety limits.

    Args:
        diff_text: Unified diff string
        limits: Limits (uses default if not provided)

    Returns:
        List of violations (empty if valid)
    """
    if limits is None:
        limits = DEFAULT_PATCH_LIMITS

    violations = []

    if not diff_text or not diff_text.strip():
        violations.append("Empty or invalid patch")
        return violations

    try:
        patch = PatchSet(diff_text)
    except UnidiffParseError as e:
        violations.append(f"Invalid diff format: {e}")
        return violations

    if len(patch) == 0:
        violations.append("Patch contains no file changes")
        return violations

    if len(patch) > limits.max_files_changed:
        violations.append(
            f"Too many files changed: {len(patch)} > {limits.max_files_changed}"
        )

    total_lines_changed = 0

    for patched_file in patch:
        file_path = patched_file.path

        if patched_file.is_removed_file and not limits.allow_file_deletion:
            violations.append(f"File deletion not allowed: {file_path}")

        for hunk in patched_file:
            for line in hunk:
                if line.is_added or line.is_removed:
                    total_lines_changed += 1
                if line.is_removed and "assert" in line.value.lower():
                    violations.append(f"Assertion removal detected in {file_path}")

        if len(patched_file) > limits.max_hunks_per_file:
            violations.append(
                f"Too many changes in {file_path}: {len(patched_file)} hunks"
            )

    if total_lines_changed > limits.max_lines_changed:
        violations.append(
            f"Patch too large: {total_lines_changed} lines > {limits.max_lines_changed}"
        )

    return violations


def patch_guard(event: Event) -> Optional[ExecutionResult]:
    """Validate unified-diff payloads; other payloads pass."""
    if not looks_like_diff(event.payload):
        return None

    violations = validate_patch(event.payload)
    if not violations:
        return None

    return ExecutionResult.block(
        "Patch rejected: " + "; ".join(violations) + ". Split it into smaller, focused changes."
    )


def trailing_whitespace(event: Event) -> Optional[ExecutionResult]:
    """Offer a fix that strips trailing whitespace from the written content."""
    if not event.payload or not event.target_path:
        return None

    lines = event.payload.split("\n")
    cleaned = [line.rstrip() for line in lines]
    if cleaned == lines:
        return None

    count = sum(1 for a, b in zip(lines, cleaned) if a != b)
    return ExecutionResult.allow(
        message=f"Trailing whitespace on {count} line(s) in {event.target_path}",
        fix="\n".join(cleaned),
    )


class ChangeVelocityPolicy:
    """Warn when a session touches many files in a short window."""

    def __init__(
        self,
        store: StateStore,
        max_files: int = MAX_RECENT_FILES,
        window_minutes: int = RECENT_WINDOW_MINUTES,
    ):
        self.store = store
        self.max_files = max_files
        self.window_minutes = window_minutes

    def __call__(self, event: Event) -> Optional[ExecutionResult]:
        recent = set(self.store.get_recent_file_changes(self.window_minutes))
        if event.target_path:
            recent.add(event.target_path)

        if len(recent) <= self.max_files:
            return None

        return ExecutionResult.block(
            f"{len(recent)} files changed in the last {self.window_minutes} minutes "
            f"(limit {self.max_files}). Consider committing and splitting the work."
        )


class SessionTracker:
    """Background bookkeeping: message count and file touches."""

    def __init__(self, store: StateStore):
        self.store = store

    def __call__(self, event: Event) -> None:
        self.store.increment_message_count()
        if event.target_path and event.operation_kind is not OperationKind.OTHER:
            self.store.track_file_change(event.target_path)
        return None


WRITES = (OperationKind.CREATE, OperationKind.MODIFY)


def register_builtin_policies(registry: PolicyRegistry, store: StateStore) -> PolicyRegistry:
    """Register the built-in policy set in its canonical order."""
    registry.register("duplicate-naming", duplicate_naming, kinds=(OperationKind.CREATE,))
    registry.register("protected-paths", protected_paths, kinds=WRITES)
    registry.register("dangerous-patterns", dangerous_patterns, kinds=WRITES)
    registry.register("patch-guard", patch_guard)
    registry.register("test-bypass", bypass_markers, kinds=WRITES)
    registry.register(
        "change-velocity",
        ChangeVelocityPolicy(store),
        kinds=WRITES,
        cacheable=False,
    )
    registry.register("trailing-whitespace", trailing_whitespace, kinds=(OperationKind.CREATE,))
    registry.register("session-tracker", SessionTracker(store), cacheable=False)
    return registry
