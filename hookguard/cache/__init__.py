"""
Verdict caching for HookGuard.

Memoizes policy verdicts keyed by a hash of policy, path, content and
active configuration, with lazy TTL eviction.
"""

from hookguard.cache.store import ResultCache, cache_key

__all__ = ["ResultCache", "cache_key"]
