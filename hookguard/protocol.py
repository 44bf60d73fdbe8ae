"""
Hook protocol for HookGuard.

The host sends one JSON request per event on stdin and reads one JSON
response on stdout plus the process exit code:

    0  allowed
    2  blocked
    1  internal error (the host decides; the response still says "ok")
"""

import json
from typing import Any

from hookguard.models import AggregateDecision, Event, OperationKind

EXIT_ALLOWED = 0
EXIT_ERROR = 1
EXIT_BLOCKED = 2

# Host tool name -> operation kind
TOOL_KINDS = {
    "Write": OperationKind.CREATE,
    "Edit": OperationKind.MODIFY,
    "MultiEdit": OperationKind.MODIFY,
    "NotebookEdit": OperationKind.MODIFY,
}


def _text(value: Any):
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True)


def _metadata(value: Any) -> dict:
    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    return {"value": value}


def _from_tool_hook(data: dict) -> Event:
    tool_input = data.get("tool_input")
    if not isinstance(tool_input, dict):
        tool_input = {}

    tool_name = data.get("tool_name")
    path = tool_input.get("file_path") or tool_input.get("notebook_path") or tool_input.get("path")

    payload = tool_input.get("content")
    if payload is None:
        payload = tool_input.get("new_string")
    if payload is None and isinstance(tool_input.get("edits"), list):
        parts = [
            e.get("new_string", "")
            for e in tool_input["edits"]
            if isinstance(e, dict)
        ]
        payload = "\n".join(parts)

    metadata = {k: v for k, v in data.items() if k != "tool_input"}
    return Event(
        operation_kind=TOOL_KINDS.get(tool_name, OperationKind.OTHER),
        target_path=_text(path),
        payload=_text(payload),
        caller_metadata=metadata,
    )


def parse_request(raw: str) -> Event:
    """
    Normalize a host request into an Event.

    Accepts snake_case fields, camelCase fields, or the host's tool-hook
    shape (tool_name / tool_input). Never raises: anything unparsable
    becomes an `other` event carrying the raw input.

    Args:
        raw: Request body as read from stdin

    Returns:
        Event
    """
    if raw is None or not raw.strip():
        return Event()

    try:
        data = json.loads(raw)
    except ValueError:
        return Event(caller_metadata={"raw": raw})

    if not isinstance(data, dict):
        return Event(caller_metadata={"raw": data})

    if "tool_input" in data or "tool_name" in data:
        return _from_tool_hook(data)

    kind = data.get("operation_kind", data.get("operationKind"))
    path = data.get("target_path", data.get("targetPath"))
    metadata = data.get("caller_metadata", data.get("callerMetadata"))

    return Event(
        operation_kind=OperationKind.parse(kind) if kind is not None else OperationKind.OTHER,
        target_path=_text(path),
        payload=_text(data.get("payload")),
        caller_metadata=_metadata(metadata),
    )


def build_response(decision: AggregateDecision) -> dict:
    """Serialize a decision into the host response document."""
    if not decision.allowed:
        return {
            "status": "blocked",
            "message": "\n\n".join(decision.messages),
        }

    response: dict = {"status": "ok"}
    notes = list(decision.messages) + list(decision.warnings)
    if notes:
        response["warnings"] = notes
    return response


def exit_code(decision: AggregateDecision) -> int:
    return EXIT_ALLOWED if decision.allowed else EXIT_BLOCKED
