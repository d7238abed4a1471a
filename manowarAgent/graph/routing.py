"""Conditional routing for the orchestration graph."""

from __future__ import annotations

import logging
from typing import Literal, Optional

from manowarAgent.graph.message_utils import pending_tool_calls
from manowarAgent.graph.state import OrchestrationState
from manowarAgent.utils.logging_utils import log_routing_decision

LOGGER = logging.getLogger("manowar.routing")

COORDINATING = "coordinating"
EXECUTING_TOOLS = "executing-tools"
NOTE_TAKING = "note-taking"
WINDOW_TRACKING = "window-tracking"
MEMORY_WIPE = "memory-wipe"
TOOL_BOXING = "tool-boxing"
GRAPH_OPTIMIZING = "graph-optimizing"
EVALUATING = "evaluating"
REVIEWING = "reviewing"
END_PHASE = "end"

PHASES = (
    COORDINATING,
    EXECUTING_TOOLS,
    NOTE_TAKING,
    WINDOW_TRACKING,
    MEMORY_WIPE,
    TOOL_BOXING,
    GRAPH_OPTIMIZING,
    EVALUATING,
    REVIEWING,
)


def coordinator_route(state: OrchestrationState) -> Literal["coordinating", "executing-tools", "note-taking"]:
    """Route after the coordinating step.

    Returns:
        "coordinating": the coordinator call failed and retries remain
        "executing-tools": tool calls pending and round trips below the cap
        "note-taking": everything else, including a capped run with pending calls
    """
    if state.get("coordinator_failed"):
        failures = state.get("coordinator_failures", 0)
        retries = state.get("max_coordinator_retries", 0)
        if failures <= retries:
            decision = COORDINATING
            reason = f"Coordinator call failed, retry {failures}/{retries}"
        else:
            decision = NOTE_TAKING
            reason = f"Coordinator failed {failures} times, entering pipeline"
        log_routing_decision(LOGGER, COORDINATING, decision, reason)
        return decision

    calls = pending_tool_calls(state.get("messages", []))
    round_trips = state.get("round_trips", 0)
    cap = state.get("max_round_trips", 10)

    if calls and round_trips < cap:
        decision = EXECUTING_TOOLS
        reason = f"LLM requested {len(calls)} tool call(s), round trip {round_trips + 1}/{cap}"
    elif calls:
        decision = NOTE_TAKING
        reason = f"Round-trip cap reached ({round_trips}/{cap}), {len(calls)} call(s) left pending"
    else:
        decision = NOTE_TAKING
        reason = "No tool calls, coordinator finished this pass"

    log_routing_decision(LOGGER, COORDINATING, decision, reason)
    return decision


def window_route(state: OrchestrationState) -> Literal["memory-wipe", "tool-boxing"]:
    if state.get("needs_cleanup"):
        decision = MEMORY_WIPE
        reason = "Context window over cleanup threshold"
    else:
        decision = TOOL_BOXING
        reason = "Context window healthy"
    log_routing_decision(LOGGER, WINDOW_TRACKING, decision, reason)
    return decision


def optimizer_route(state: OrchestrationState) -> Literal["evaluating", "end"]:
    loop_count = state.get("loop_count", 1)
    max_loops = state.get("max_loops", 1)
    if loop_count < max_loops:
        decision = EVALUATING
        reason = f"Continuous mode, loop {loop_count}/{max_loops} finished"
    else:
        decision = END_PHASE
        reason = f"Loop budget exhausted ({loop_count}/{max_loops})"
    log_routing_decision(LOGGER, GRAPH_OPTIMIZING, decision, reason)
    return decision


def start_route(state: OrchestrationState) -> str:
    """Entry router; a resumed run re-enters at ``resume_from``."""
    target = state.get("resume_from") or COORDINATING
    if target not in PHASES:
        LOGGER.warning(f"Unknown resume phase {target!r}, starting at {COORDINATING}")
        target = COORDINATING
    if target != COORDINATING:
        log_routing_decision(LOGGER, "start", target, "Resuming from checkpoint")
    return target


def resume_point(state: OrchestrationState) -> Optional[str]:
    """Node that follows the step recorded in ``state['phase']``; None when the run had ended."""
    phase = state.get("phase")
    if not phase or phase == "start":
        return COORDINATING
    if phase == COORDINATING:
        return coordinator_route(state)
    if phase in (EXECUTING_TOOLS, REVIEWING):
        return COORDINATING
    if phase == NOTE_TAKING:
        return WINDOW_TRACKING
    if phase == WINDOW_TRACKING:
        return window_route(state)
    if phase == MEMORY_WIPE:
        return TOOL_BOXING
    if phase == TOOL_BOXING:
        return GRAPH_OPTIMIZING
    if phase == GRAPH_OPTIMIZING:
        nxt = optimizer_route(state)
        return None if nxt == END_PHASE else nxt
    if phase == EVALUATING:
        return REVIEWING
    return None
