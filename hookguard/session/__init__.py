"""
Session state for HookGuard.

One JSON document of shared session facts (message counts, recent
file changes) behind a single serialized access point.
"""

from hookguard.session.store import StateStore

__all__ = ["StateStore"]
