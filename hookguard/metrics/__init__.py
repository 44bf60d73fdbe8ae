"""
Outcome analytics for HookGuard.

Tracks how policies behave over time for offline curation:
- Block vs allow counts per policy
- Recurring situations grouped by fingerprint
- Errors and cache hits
"""

from hookguard.metrics.context import context_features, fingerprint
from hookguard.metrics.recorder import AnalyticsRecorder

__all__ = ["AnalyticsRecorder", "context_features", "fingerprint"]
