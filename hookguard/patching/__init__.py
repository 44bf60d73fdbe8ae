"""
File mutation safety for HookGuard.

Handles:
- Pre-mutation backups with retention
- Applying policy-proposed fixes
- Restoring on failed writes
"""

from hookguard.patching.apply import apply_fix, apply_fix_safe
from hookguard.patching.backup import BackupManager

__all__ = [
    "apply_fix",
    "apply_fix_safe",
    "BackupManager",
]
