"""Utilities for Manowar."""

from .error_handler import (
    AgentDelegationError,
    CallTimeoutError,
    CheckpointIOError,
    ConfigurationError,
    ExternalCallError,
    ManowarError,
    ModelInvocationError,
    RunStateError,
    SummarizationError,
    ToolExecutionError,
    ToolValidationError,
    handle_model_error,
    with_step_boundary,
)
from .logging_utils import (
    log_error,
    log_node_entry,
    log_node_exit,
    log_routing_decision,
    log_tool_call,
    log_tool_result,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "log_tool_call",
    "log_tool_result",
    "log_routing_decision",
    "log_node_entry",
    "log_node_exit",
    "log_error",
    "with_step_boundary",
    "handle_model_error",
    "ManowarError",
    "ExternalCallError",
    "ToolExecutionError",
    "AgentDelegationError",
    "ModelInvocationError",
    "CallTimeoutError",
    "ToolValidationError",
    "SummarizationError",
    "CheckpointIOError",
    "ConfigurationError",
    "RunStateError",
]
