"""Shadow pipeline nodes that run after each coordinator pass.

note-taking → window-tracking → [memory-wipe] → tool-boxing → graph-optimizing
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Sequence

from manowarAgent.graph.deps import RunDependencies
from manowarAgent.graph.events import step_event
from manowarAgent.graph.message_utils import last_ai_message, message_text
from manowarAgent.graph.routing import GRAPH_OPTIMIZING, MEMORY_WIPE, NOTE_TAKING, TOOL_BOXING, WINDOW_TRACKING
from manowarAgent.graph.state import OrchestrationState
from manowarAgent.tools.bindings import ToolRecommendation
from manowarAgent.tools.workflow import sanitize_tool_name
from manowarAgent.utils.error_handler import ExternalCallError, SummarizationError, with_step_boundary
from manowarAgent.utils.logging_utils import log_node_entry, log_node_exit

LOGGER = logging.getLogger("manowar.shadow")

MAX_SUGGESTIONS = 5
REGISTRY_SEARCH_LIMIT = 20
_WORD_RE = re.compile(r"[a-z0-9]+")


def build_note_taking_node(deps: RunDependencies):
    @with_step_boundary(NOTE_TAKING)
    async def note_taking_node(state: OrchestrationState) -> dict:
        log_node_entry(LOGGER, NOTE_TAKING, state)
        totals = deps.ledger.agent_totals()
        updates = {
            "token_metrics": {agent_id: t.to_dict() for agent_id, t in totals.items()},
            "events": [],
        }
        LOGGER.info(f"Ledger total for run {state.get('run_id')}: {deps.ledger.cumulative_total()} tokens")
        log_node_exit(LOGGER, NOTE_TAKING, updates)
        return updates

    return note_taking_node


def build_window_tracking_node(deps: RunDependencies):
    @with_step_boundary(WINDOW_TRACKING)
    async def window_tracking_node(state: OrchestrationState) -> dict:
        log_node_entry(LOGGER, WINDOW_TRACKING, state)
        needs_cleanup, health = await deps.monitor.evaluate(
            deps.ledger,
            deps.coordinator_model_id,
            baseline=state.get("context_baseline_tokens", 0),
            messages=state.get("messages", []),
            threshold=state.get("cleanup_threshold"),
        )
        updates = {"needs_cleanup": needs_cleanup, "window_health": health, "events": []}
        log_node_exit(LOGGER, WINDOW_TRACKING, updates)
        return updates

    return window_tracking_node


def build_memory_wipe_node(deps: RunDependencies):
    """Summarize-then-wipe. A failed summary aborts the wipe and keeps ``needs_cleanup``."""

    @with_step_boundary(MEMORY_WIPE)
    async def memory_wipe_node(state: OrchestrationState) -> dict:
        log_node_entry(LOGGER, MEMORY_WIPE, state)
        run_id = state.get("run_id", "")
        wiped = len(state.get("messages", []))
        try:
            updates = await deps.curator.wipe(state, deps.ledger)
        except SummarizationError as e:
            LOGGER.error(f"Memory wipe aborted for run {run_id}: {e}")
            return {
                "last_error": str(e),
                "events": [step_event("wipe_aborted", run_id, MEMORY_WIPE, error=str(e))],
            }

        updates["total_cost_wei"] = deps.settings.pricing.inference
        updates["events"] = [
            step_event(
                "memory_wiped", run_id, MEMORY_WIPE,
                wiped_message_count=wiped,
                key_facts=len(updates["preserved_facts"]),
            ),
            step_event("message_added", run_id, MEMORY_WIPE, role="system", content=updates["messages"][-1].content),
        ]
        log_node_exit(LOGGER, MEMORY_WIPE, updates)
        return updates

    return memory_wipe_node


def _words(text: str) -> List[str]:
    return [w for w in _WORD_RE.findall(text.lower()) if len(w) > 3]


def keyword_confidence(goal: str, server: Dict[str, Any]) -> float:
    """Share of goal keywords found in the tool's name, description and tags."""
    keywords = set(_words(goal))
    if not keywords:
        return 0.0
    haystack = " ".join([
        str(server.get("name", "")),
        str(server.get("description", "")),
        " ".join(str(t) for t in server.get("tags") or []),
    ])
    found = set(_words(haystack))
    return round(len(keywords & found) / len(keywords), 3)


def rank_recommendations(
    goal: str,
    servers: Sequence[Dict[str, Any]],
    bound_names: Sequence[str],
    limit: int = MAX_SUGGESTIONS,
) -> List[ToolRecommendation]:
    bound = set(bound_names)
    ranked: List[ToolRecommendation] = []
    for server in servers:
        registry_id = str(server.get("registryId") or server.get("registry_id") or server.get("id") or "")
        name = str(server.get("name") or registry_id)
        if not name or sanitize_tool_name(name) in bound or registry_id in bound:
            continue
        ranked.append(ToolRecommendation(
            registry_id=registry_id or name,
            name=name,
            description=str(server.get("description", "")),
            spawn_params=server.get("spawn") or server.get("spawnParams"),
            confidence=keyword_confidence(goal, server),
        ))
    ranked.sort(key=lambda rec: rec.confidence, reverse=True)
    return ranked[:limit]


def build_tool_boxing_node(deps: RunDependencies):
    @with_step_boundary(TOOL_BOXING)
    async def tool_boxing_node(state: OrchestrationState) -> dict:
        log_node_entry(LOGGER, TOOL_BOXING, state)
        goal = state.get("active_goal", "")
        registry = deps.collaborators.registry

        if registry is None:
            return {"suggested_tools": [], "tool_boxer_reasoning": "Tool registry not configured", "events": []}

        try:
            servers = await registry.search(goal, limit=REGISTRY_SEARCH_LIMIT)
        except ExternalCallError as e:
            LOGGER.warning(f"Registry search failed, keeping previous suggestions: {e}")
            return {"tool_boxer_reasoning": f"Registry search failed: {e.user_message}", "events": []}

        bound = [b.name for b in deps.bindings.workflow_bindings()]
        bound += [b.target_id for b in deps.bindings.workflow_bindings()]
        recommendations = rank_recommendations(goal, servers, bound)

        if recommendations:
            reasoning = (
                f"Found {len(servers)} registry tools, suggesting top {len(recommendations)}: "
                + ", ".join(f"{r.name} ({r.confidence:.2f})" for r in recommendations)
            )
        else:
            reasoning = f"No additional tools beyond the workflow set among {len(servers)} registry results"

        updates = {
            "suggested_tools": [r.to_dict() for r in recommendations],
            "tool_boxer_reasoning": reasoning,
            "events": [],
        }
        log_node_exit(LOGGER, TOOL_BOXING, updates)
        return updates

    return tool_boxing_node


def build_graph_optimizing_node(deps: RunDependencies):
    @with_step_boundary(GRAPH_OPTIMIZING)
    async def graph_optimizing_node(state: OrchestrationState) -> dict:
        log_node_entry(LOGGER, GRAPH_OPTIMIZING, state)
        last = last_ai_message(state.get("messages", []))
        if last is None or not message_text(last):
            return {"events": []}

        try:
            await deps.collaborators.memory.add(
                [
                    {"role": "user", "content": state.get("active_goal", "")},
                    {"role": "assistant", "content": message_text(last)},
                ],
                agent_id=deps.memory_agent_id,
                run_id=state.get("run_id"),
                metadata={
                    "type": "graph_optimization",
                    "workflow_id": deps.workflow.id,
                    "loop": state.get("loop_count", 1),
                    "completed_actions": len(state.get("completed_actions") or []),
                },
            )
        except ExternalCallError as e:
            LOGGER.warning(f"Failed to record loop outcome in memory: {e}")
        return {"events": []}

    return graph_optimizing_node
