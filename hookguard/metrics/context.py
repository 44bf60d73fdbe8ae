"""
Execution context capture for analytics.

Reduces an event to coarse features so recurring situations group
together without keeping raw content.
"""

import hashlib
from functools import lru_cache
from pathlib import Path
from typing import Optional

from hookguard.models import Event

# Marker file -> project type, checked in order
PROJECT_MARKERS = (
    ("pyproject.toml", "python"),
    ("setup.py", "python"),
    ("requirements.txt", "python"),
    ("next.config.js", "nextjs"),
    ("package.json", "node"),
    ("go.mod", "go"),
    ("Cargo.toml", "rust"),
    ("pom.xml", "java"),
)


@lru_cache(maxsize=32)
def detect_project_type(root: str) -> str:
    base = Path(root)
    for marker, project_type in PROJECT_MARKERS:
        try:
            if (base / marker).exists():
                return project_type
        except OSError:
            continue
    return "unknown"


def file_extension(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    suffix = Path(path).suffix.lower()
    return suffix or None


def context_features(event: Event, root: str = ".") -> dict:
    """Coarse, content-free description of an event."""
    payload = event.payload or ""
    return {
        "operation_kind": event.operation_kind.value,
        "file_extension": file_extension(event.target_path),
        "project_type": detect_project_type(str(Path(root).resolve())),
        "payload_size": len(payload),
        "line_count": payload.count("\n") + 1 if payload else 0,
    }


def fingerprint(policy_id: str, features: dict) -> str:
    """Stable hash over policy id, file type and project signature."""
    key = "|".join(
        [
            policy_id,
            features.get("file_extension") or "",
            features.get("project_type") or "",
        ]
    )
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
