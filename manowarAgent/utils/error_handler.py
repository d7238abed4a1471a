"""Unified error handling for Manowar graph nodes and collaborators."""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from langchain_core.messages import SystemMessage

from manowarAgent.graph.events import step_event

LOGGER = logging.getLogger("manowar.errors")


class ManowarError(Exception):
    """Base exception for orchestrator errors."""

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or message


class ExternalCallError(ManowarError):
    """A collaborator call failed (transient, recovered into the conversation)."""


class ToolExecutionError(ExternalCallError):
    """Error during tool execution."""


class AgentDelegationError(ExternalCallError):
    """Error while delegating to a sub-agent."""


class ModelInvocationError(ExternalCallError):
    """Error during model invocation."""


class CallTimeoutError(ExternalCallError):
    """An external call exceeded its timeout."""


class ToolValidationError(ManowarError):
    """Tool arguments do not match the declared parameter schema."""


class SummarizationError(ManowarError):
    """The summarizer output was absent or unparseable; the wipe is aborted."""


class CheckpointIOError(ManowarError):
    """Checkpoint persistence failed. Fatal to the current step."""


class ConfigurationError(ManowarError):
    """Invalid or missing configuration. Fails the run before any step executes."""


class RunStateError(ManowarError):
    """Illegal run lifecycle transition."""


# Faults that must abort the run instead of being folded into the conversation
FATAL_ERRORS = (CheckpointIOError, ConfigurationError)


NodeFunc = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


def with_step_boundary(phase: str):
    """Decorator to add an error boundary to graph nodes.

    Every update leaving the node is stamped with ``phase`` and carries an
    ``events`` list. Transient failures become a system observation that the
    coordinator sees on its next turn; fatal faults propagate.

    Example:
        @with_step_boundary("tool-boxing")
        async def tool_boxing_node(state):
            ...
    """
    def decorator(func: NodeFunc) -> NodeFunc:
        @functools.wraps(func)
        async def wrapper(state: Dict[str, Any]) -> Dict[str, Any]:
            run_id = state.get("run_id", "")
            try:
                updates = await func(state) or {}
            except FATAL_ERRORS:
                raise
            except ExternalCallError as e:
                LOGGER.error(f"{phase} external call failed: {e}")
                updates = _observation(phase, run_id, f"{phase} 外部调用失败：{e.user_message}", str(e))
            except Exception as e:
                LOGGER.exception(f"{phase} unexpected error", exc_info=e)
                # Don't expose internal error details to the coordinator
                updates = _observation(phase, run_id, f"{phase} 执行出错，已跳过该步骤。", repr(e))

            updates.setdefault("events", [])
            updates["phase"] = phase
            return updates

        return wrapper

    return decorator


def _observation(phase: str, run_id: str, content: str, detail: str) -> Dict[str, Any]:
    message = SystemMessage(content=f"[ERROR] {content}")
    return {
        "messages": [message],
        "last_error": detail,
        "events": [
            step_event("message_added", run_id, phase, role="system", content=message.content),
            step_event("step_failed", run_id, phase, error=detail),
        ],
    }


def handle_model_error(error: Exception) -> str:
    """Convert model invocation errors to user-friendly messages."""
    error_str = str(error).lower()

    if "rate_limit" in error_str or "429" in error_str:
        return "请求过于频繁，请稍后再试"

    if "timeout" in error_str:
        return "AI 响应超时，请重试"

    if "context_length" in error_str:
        return "上下文过长，等待记忆清理后重试"

    if "invalid_api_key" in error_str or "authentication" in error_str:
        return "API 密钥无效，请联系管理员"

    return f"AI 服务暂时不可用：{str(error)}"
