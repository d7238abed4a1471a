"""Graph node builders."""

from .coordinator import build_coordinator_node
from .evaluation import build_evaluating_node, build_reviewing_node
from .shadow import (
    build_graph_optimizing_node,
    build_memory_wipe_node,
    build_note_taking_node,
    build_tool_boxing_node,
    build_window_tracking_node,
)
from .tool_executor import WorkflowToolExecutor

__all__ = [
    "WorkflowToolExecutor",
    "build_coordinator_node",
    "build_evaluating_node",
    "build_graph_optimizing_node",
    "build_memory_wipe_node",
    "build_note_taking_node",
    "build_reviewing_node",
    "build_tool_boxing_node",
    "build_window_tracking_node",
]
