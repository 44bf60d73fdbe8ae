"""
Auto-Fix Application for HookGuard.

Applies replacement content proposed by a policy, safely and reversibly:
snapshot first, write, restore the snapshot if the write fails.
"""

from pathlib import Path
from typing import Optional

from rich.console import Console

from hookguard.patching.backup import BackupManager

console = Console(stderr=True)


def apply_fix(
    path: str,
    content: str,
    backups: BackupManager,
    verbose: bool = False,
) -> bool:
    """
    Overwrite a file with fixed content.

    Args:
        path: File to rewrite
        content: New file content
        backups: Backup manager used for the pre-write snapshot
        verbose: Whether to print progress

    Returns:
        True if the fix was written
    """
    target = Path(path)
    if not target.is_file():
        if verbose:
            console.print(f"[dim]Skipping fix, file not found: {path}[/dim]")
        return False

    # No backup is not fatal; proceed without a safety net
    backup_path = backups.create_backup(path)

    try:
        target.write_text(content, encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Failed to write fix to {path}: {e}[/red]")
        if backup_path:
            backups.restore_backup(backup_path, path)
        return False

    if verbose:
        suffix = f" (backup: {backup_path})" if backup_path else ""
        console.print(f"[green]Applied fix to {path}{suffix}[/green]")

    return True


def apply_fix_safe(
    path: str,
    content: str,
    backups: BackupManager,
    verbose: bool = False,
) -> tuple[bool, Optional[str]]:
    """
    Safe wrapper that returns an error message on failure.

    Returns:
        Tuple of (success, error_message)
    """
    try:
        if apply_fix(path, content, backups, verbose):
            return True, None
        return False, "Fix could not be applied"
    except Exception as e:
        return False, str(e)
