from __future__ import annotations

import json
from typing import Any


def serialize_event(event_type: str, payload: dict[str, Any]) -> str:
    return json.dumps({"event": event_type, "data": payload}, separators=(",", ":"))


def deserialize_event(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    envelope = json.loads(raw)
    if not isinstance(envelope, dict) or not isinstance(envelope.get("data"), dict):
        raise ValueError("malformed event envelope")
    return str(envelope.get("event", "unknown")), envelope["data"]
