"""JSON (de)serialization of orchestration state snapshots.

Handles LangChain messages by converting them with ``message_to_dict``; step
events are stored through their ``to_dict`` form.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from langchain_core.messages import BaseMessage, message_to_dict, messages_from_dict

from manowarAgent.graph.events import StepEvent


def _encode(obj: Any) -> Any:
    if isinstance(obj, BaseMessage):
        return {"__type__": "message", "data": message_to_dict(obj)}
    if isinstance(obj, StepEvent):
        return {"__type__": "step_event", "data": _encode(obj.to_dict())}
    if isinstance(obj, dict):
        return {str(k): _encode(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_encode(item) for item in obj]
    if hasattr(obj, "to_dict"):
        return _encode(obj.to_dict())
    return obj


def _decode(obj: Any) -> Any:
    if isinstance(obj, dict):
        tag = obj.get("__type__")
        if tag == "message":
            return messages_from_dict([obj["data"]])[0]
        if tag == "step_event":
            return StepEvent.from_dict(_decode(obj["data"]))
        return {k: _decode(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_decode(item) for item in obj]
    return obj


def serialize_state(state: Dict[str, Any]) -> str:
    return json.dumps(_encode(state), ensure_ascii=False)


def deserialize_state(payload: str) -> Dict[str, Any]:
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("state snapshot is not an object")
    return _decode(data)


def encode_state(state: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-safe form of ``state`` (for embedding in a larger record)."""
    return _encode(state)


def decode_state(data: Dict[str, Any]) -> Dict[str, Any]:
    return _decode(data)
