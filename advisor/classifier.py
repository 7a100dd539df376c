"""Structural classification of decoded frames.

Used to drop frames that carry no game information (empty objects, bare
counters, heartbeats) and to compute a structural fingerprint for
deduplication. A fingerprint names a message *type*, not its content: two
diffs with different payloads but the same shape share a fingerprint.
"""
import logging
from typing import Any

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _type_name(value: Any) -> str:
    """JS-style type names so fingerprints stay stable across capture tools."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if _is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (bytes, bytearray)):
        return "bytes"
    if isinstance(value, (list, tuple)):
        return "array"
    return "object"


def _sorted_keys(mapping: dict) -> str:
    return ",".join(sorted(str(k) for k in mapping.keys()))


def is_heartbeat(frame: Any) -> bool:
    """True for {id, data: {timestamp}} keep-alives and bare {timestamp} frames."""
    if not isinstance(frame, dict):
        return False
    if set(frame.keys()) == {"timestamp"}:
        return True
    if "id" not in frame:
        return False
    data = frame.get("data")
    return isinstance(data, dict) and set(data.keys()) == {"timestamp"}


def is_negligible(frame: Any) -> bool:
    """True for frames that must never reach the reducer or any message log."""
    if frame is None or not isinstance(frame, dict):
        return True
    if not frame:
        return True
    if len(frame) == 1 and _is_number(next(iter(frame.values()))):
        return True
    return is_heartbeat(frame)


def fingerprint(frame: Any) -> str:
    """Return a structural key identifying the message type of a frame.

    Priority: string "type" field, then id + nested data.type + payload
    shape, then id alone, then nested data.type alone, then a sorted
    key/type signature of the whole object.
    """
    if not isinstance(frame, dict):
        return f"primitive_{_type_name(frame)}_{frame}"

    msg_type = frame.get("type")
    if isinstance(msg_type, str) and msg_type:
        return f"type_string_{msg_type}"

    data = frame.get("data")
    nested_type = data.get("type") if isinstance(data, dict) else None

    if "id" in frame and nested_type is not None:
        payload = data.get("payload")
        if isinstance(payload, dict):
            shape = _sorted_keys(payload)
        elif isinstance(payload, (list, tuple)):
            shape = "array"
        else:
            shape = "no_payload"
        return f"id_{frame['id']}_type_{nested_type}_payload_{shape}"

    if "id" in frame:
        return f"id_only_{frame['id']}"

    if nested_type is not None:
        return f"nested_type_{nested_type}"

    parts = []
    for key in sorted(frame.keys(), key=str):
        val = frame[key]
        if isinstance(val, dict):
            parts.append(f"{key}:{_sorted_keys(val)}")
        else:
            parts.append(f"{key}:{_type_name(val)}")
    return "structure_" + "|".join(parts)
