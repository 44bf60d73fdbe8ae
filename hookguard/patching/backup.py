"""
Backup Manager for HookGuard.

Snapshots a file before an auto-fix rewrites it:
- Timestamped copies, never overwritten
- Restore on demand
- Retention-based pruning
"""

import os
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console

from hookguard.models import BackupRecord

console = Console(stderr=True)

BACKUP_SUFFIX = ".backup"


class BackupManager:
    """
    Pre-mutation snapshots with retention.

    Creation failures are reported and return None; the caller proceeds
    without a safety net.
    """

    def __init__(
        self,
        directory: str = ".hookguard/backups",
        retention_days: int = 7,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory)
        self.retention_days = retention_days
        self.enabled = enabled
        self.clock = clock
        self.records: list[BackupRecord] = []

        if self.enabled:
            self.cleanup_old_backups()

    def _backup_name(self, original: Path) -> str:
        stamp = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        timestamp = stamp.strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        return f"{original.name}_{timestamp}{BACKUP_SUFFIX}"

    def create_backup(self, path: str) -> Optional[str]:
        """
        Copy a file into the backup directory.

        Args:
            path: File to snapshot

        Returns:
            Backup path, or None if disabled, missing, or the copy failed
        """
        original = Path(path)
        if not self.enabled or not original.is_file():
            return None

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            backup_path = self.directory / self._backup_name(original)
            counter = 1
            while backup_path.exists():
                backup_path = self.directory / f"{self._backup_name(original)}.{counter}"
                counter += 1
            shutil.copyfile(original, backup_path)
            # Retention reads mtime, so it must be the creation time
            now = self.clock()
            os.utime(backup_path, (now, now))
        except OSError as e:
            console.print(f"[yellow]⚠ Failed to create backup for {path}: {e}[/yellow]")
            return None

        self.records.append(
            BackupRecord(
                original_path=str(original),
                backup_path=str(backup_path),
                created_at=now,
            )
        )
        return str(backup_path)

    def restore_backup(self, backup_path: str, original_path: str) -> bool:
        """
        Copy a backup over the original.

        Returns:
            True if restored
        """
        if not self.enabled or not Path(backup_path).is_file():
            return False

        try:
            shutil.copyfile(backup_path, original_path)
            return True
        except OSError as e:
            console.print(f"[red]Error restoring backup {backup_path}: {e}[/red]")
            return False

    def list_backups(self) -> list[BackupRecord]:
        """Backups currently on disk, oldest first."""
        if not self.directory.exists():
            return []

        records = []
        for backup in self.directory.iterdir():
            if not backup.is_file():
                continue
            original_name = backup.name.rsplit("_", 1)[0]
            for record in self.records:
                if record.backup_path == str(backup):
                    original_name = record.original_path
                    break
            try:
                created_at = backup.stat().st_mtime
            except OSError:
                continue
            records.append(
                BackupRecord(
                    original_path=original_name,
                    backup_path=str(backup),
                    created_at=created_at,
                )
            )
        return sorted(records, key=lambda r: r.created_at)

    def cleanup_old_backups(self) -> int:
        """
        Delete backups older than the retention window.

        Age comes from file modification time, whether or not the
        backup was ever restored.

        Returns:
            Number of backups removed
        """
        if not self.enabled or not self.directory.exists():
            return 0

        cutoff = self.clock() - self.retention_days * 24 * 60 * 60
        removed = 0

        for backup in self.directory.iterdir():
            try:
                if backup.is_file() and backup.stat().st_mtime < cutoff:
                    backup.unlink()
                    removed += 1
            except OSError as e:
                console.print(f"[yellow]⚠ Could not remove old backup {backup}: {e}[/yellow]")

        if removed:
            pruned = {r.backup_path for r in self.records if not Path(r.backup_path).exists()}
            self.records = [r for r in self.records if r.backup_path not in pruned]

        return removed
