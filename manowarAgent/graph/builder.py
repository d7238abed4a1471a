"""Factory for assembling the orchestration state machine."""

from __future__ import annotations

import logging

from langgraph.graph import END, START, StateGraph

from manowarAgent.graph.deps import RunDependencies
from manowarAgent.graph.nodes import (
    WorkflowToolExecutor,
    build_coordinator_node,
    build_evaluating_node,
    build_graph_optimizing_node,
    build_memory_wipe_node,
    build_note_taking_node,
    build_reviewing_node,
    build_tool_boxing_node,
    build_window_tracking_node,
)
from manowarAgent.graph.routing import (
    COORDINATING,
    END_PHASE,
    EVALUATING,
    EXECUTING_TOOLS,
    GRAPH_OPTIMIZING,
    MEMORY_WIPE,
    NOTE_TAKING,
    PHASES,
    REVIEWING,
    TOOL_BOXING,
    WINDOW_TRACKING,
    coordinator_route,
    optimizer_route,
    start_route,
    window_route,
)
from manowarAgent.graph.state import OrchestrationState
from manowarAgent.utils.error_handler import with_step_boundary

LOGGER = logging.getLogger("manowar.graph")


def build_state_graph(deps: RunDependencies, *, checkpointer=None):
    """Compose the orchestration graph for one run.

    Architecture:

        START → coordinating ⇄ executing-tools
                     ↓
                note-taking → window-tracking → [memory-wipe] → tool-boxing → graph-optimizing → END
                                                                                  ↓ (continuous mode)
                                                            coordinating ← reviewing ← evaluating

    ``executing-tools`` is bound to the workflow bindings only. START routes to
    ``resume_from`` when a run is resumed from a checkpoint.
    """
    graph = StateGraph(OrchestrationState)

    graph.add_node(COORDINATING, build_coordinator_node(deps))
    graph.add_node(EXECUTING_TOOLS, with_step_boundary(EXECUTING_TOOLS)(WorkflowToolExecutor(deps)))
    graph.add_node(NOTE_TAKING, build_note_taking_node(deps))
    graph.add_node(WINDOW_TRACKING, build_window_tracking_node(deps))
    graph.add_node(MEMORY_WIPE, build_memory_wipe_node(deps))
    graph.add_node(TOOL_BOXING, build_tool_boxing_node(deps))
    graph.add_node(GRAPH_OPTIMIZING, build_graph_optimizing_node(deps))
    graph.add_node(EVALUATING, build_evaluating_node(deps))
    graph.add_node(REVIEWING, build_reviewing_node(deps))

    graph.add_conditional_edges(START, start_route, {phase: phase for phase in PHASES})
    graph.add_conditional_edges(
        COORDINATING,
        coordinator_route,
        {
            COORDINATING: COORDINATING,
            EXECUTING_TOOLS: EXECUTING_TOOLS,
            NOTE_TAKING: NOTE_TAKING,
        },
    )
    graph.add_edge(EXECUTING_TOOLS, COORDINATING)
    graph.add_edge(NOTE_TAKING, WINDOW_TRACKING)
    graph.add_conditional_edges(
        WINDOW_TRACKING,
        window_route,
        {
            MEMORY_WIPE: MEMORY_WIPE,
            TOOL_BOXING: TOOL_BOXING,
        },
    )
    graph.add_edge(MEMORY_WIPE, TOOL_BOXING)
    graph.add_edge(TOOL_BOXING, GRAPH_OPTIMIZING)
    graph.add_conditional_edges(
        GRAPH_OPTIMIZING,
        optimizer_route,
        {
            EVALUATING: EVALUATING,
            END_PHASE: END,
        },
    )
    graph.add_edge(EVALUATING, REVIEWING)
    graph.add_edge(REVIEWING, COORDINATING)

    LOGGER.debug(f"Compiled orchestration graph for workflow {deps.workflow.id}")
    return graph.compile(checkpointer=checkpointer)
