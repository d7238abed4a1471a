"""Shared state definition for the orchestration graph."""

from __future__ import annotations

import operator
from typing import Annotated, Any, Dict, List, Optional, TypedDict

from langchain_core.messages import BaseMessage
from langgraph.graph import add_messages

from manowarAgent.graph.events import StepEvent


def merge_dicts(left: Optional[Dict[str, Any]], right: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Union-merge reducer; keys in ``right`` win."""
    merged = dict(left or {})
    merged.update(right or {})
    return merged


class OrchestrationState(TypedDict, total=False):
    """State carried through one run of the orchestration graph.

    Reducers:
    - messages: add_messages (a wipe sends RemoveMessage(REMOVE_ALL_MESSAGES) + one system message)
    - completed_actions / context_enhancements: append
    - token_metrics / window_health: union-merge
    - total_cost_wei: sum
    - everything else: replace
    """

    # ========== Identity ==========
    run_id: str
    thread_id: str
    workflow_id: str
    active_goal: str

    # ========== Conversation ==========
    messages: Annotated[List[BaseMessage], add_messages]
    completed_actions: Annotated[List[str], operator.add]
    context_enhancements: Annotated[List[str], operator.add]
    multimodal_output: Optional[Dict[str, Any]]

    # ========== Token accounting ==========
    token_metrics: Annotated[Dict[str, Dict[str, Any]], merge_dicts]   # agent_id → TokenTotals dict
    window_health: Annotated[Dict[str, Dict[str, Any]], merge_dicts]   # agent_id → WindowHealth dict
    context_baseline_tokens: int   # ledger total at the last wipe
    cleanup_threshold: float
    needs_cleanup: bool
    total_cost_wei: Annotated[int, operator.add]

    # ========== Memory curation ==========
    last_summary: Optional[str]
    preserved_facts: List[str]

    # ========== Tool suggestions (control plane) ==========
    suggested_tools: List[Dict[str, Any]]   # ToolRecommendation dicts
    tool_boxer_reasoning: Optional[str]

    # ========== Execution control ==========
    phase: str
    round_trips: int
    max_round_trips: int
    coordinator_failures: int
    max_coordinator_retries: int
    coordinator_failed: bool
    loop_count: int
    max_loops: int
    resume_from: Optional[str]

    # ========== Continuous mode ==========
    last_evaluation: Optional[Dict[str, Any]]
    suggested_improvements: List[str]

    # ========== Observability ==========
    events: List[StepEvent]   # events produced by the latest step only
    last_error: Optional[str]
