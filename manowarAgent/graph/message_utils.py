"""Utilities for cleaning and inspecting message histories."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Set

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage


def _call_id(tool_call: Any) -> Optional[str]:
    return tool_call.get("id") if isinstance(tool_call, dict) else getattr(tool_call, "id", None)


def clean_message_history(messages: Sequence[BaseMessage]) -> List[BaseMessage]:
    """Remove AI messages with unanswered tool_calls, and tool results without a call.

    OpenAI requires that every AI message with tool_calls is followed by the
    matching ToolMessages. A run forced out of the tool loop by the round-trip
    cap leaves exactly such a message behind.

    Args:
        messages: List of conversation messages

    Returns:
        Cleaned list safe to send to the coordinator model
    """
    answered_call_ids: Set[str] = set()
    for msg in messages:
        if isinstance(msg, ToolMessage):
            call_id = getattr(msg, "tool_call_id", None)
            if call_id:
                answered_call_ids.add(call_id)

    cleaned: List[BaseMessage] = []
    issued_call_ids: Set[str] = set()
    for msg in messages:
        if isinstance(msg, AIMessage):
            tool_calls = getattr(msg, "tool_calls", None) or []
            if tool_calls:
                unanswered = [
                    _call_id(tc) for tc in tool_calls
                    if _call_id(tc) and _call_id(tc) not in answered_call_ids
                ]
                if unanswered:
                    # Skip this AI message - it has unanswered tool_calls
                    continue
                issued_call_ids.update(_call_id(tc) for tc in tool_calls if _call_id(tc))
        elif isinstance(msg, ToolMessage) and msg.tool_call_id not in issued_call_ids:
            continue

        cleaned.append(msg)

    return cleaned


def last_ai_message(messages: Sequence[BaseMessage]) -> Optional[AIMessage]:
    for msg in reversed(messages):
        if isinstance(msg, AIMessage):
            return msg
    return None


def pending_tool_calls(messages: Sequence[BaseMessage]) -> List[Dict[str, Any]]:
    """Tool calls requested by the newest message, if it is an AI message."""
    if not messages:
        return []
    last = messages[-1]
    if isinstance(last, AIMessage):
        return list(last.tool_calls or [])
    return []


def message_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, list):
        return "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
    return str(content or "")
