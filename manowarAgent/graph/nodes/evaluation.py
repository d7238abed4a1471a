"""Continuous-mode nodes: score the finished loop, then fold learnings into the next one."""

from __future__ import annotations

import asyncio
import json
import logging
import time

from langchain_core.messages import HumanMessage

from manowarAgent.clients.inference import chat_payload
from manowarAgent.context.curator import extract_first_json_object
from manowarAgent.graph.deps import RunDependencies
from manowarAgent.graph.events import step_event
from manowarAgent.graph.routing import EVALUATING, REVIEWING
from manowarAgent.graph.state import OrchestrationState
from manowarAgent.utils.error_handler import ExternalCallError, with_step_boundary
from manowarAgent.utils.logging_utils import log_node_entry, log_node_exit
from manowarAgent.utils.prompt_builder import PromptBuilder

LOGGER = logging.getLogger("manowar.evaluation")

EVALUATOR_AGENT_ID = "evaluator"


def _score(value, default: int = 5) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return max(0, min(10, int(value)))


def build_evaluating_node(deps: RunDependencies):
    model_id = deps.settings.models.evaluator

    @with_step_boundary(EVALUATING)
    async def evaluating_node(state: OrchestrationState) -> dict:
        log_node_entry(LOGGER, EVALUATING, state)
        loop_number = state.get("loop_count", 1)
        prompt = PromptBuilder.evaluator_prompt(
            goal=state.get("active_goal", ""),
            loop_number=loop_number,
            completed_actions=state.get("completed_actions") or [],
            token_metrics=state.get("token_metrics") or {},
            window_health=state.get("window_health") or {},
            suggested_tools=state.get("suggested_tools") or [],
        )
        try:
            response = await asyncio.wait_for(
                deps.collaborators.inference.complete(
                    model_id, chat_payload(PromptBuilder.EVALUATOR_SYSTEM, prompt), temperature=0.3
                ),
                timeout=deps.step_timeout,
            )
        except (ExternalCallError, asyncio.TimeoutError) as e:
            LOGGER.error(f"Evaluator failed for loop {loop_number}: {e}")
            return {"last_evaluation": None, "suggested_improvements": [], "events": []}

        deps.ledger.record_response(EVALUATOR_AGENT_ID, model_id, "evaluate", response, prompt_text=prompt)

        span = extract_first_json_object(response.content or "")
        try:
            data = json.loads(span) if span else None
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            LOGGER.error(f"Evaluator returned no usable JSON for loop {loop_number}")
            return {"last_evaluation": None, "suggested_improvements": [], "events": []}

        improvements = [str(i) for i in data.get("improvements") or [] if isinstance(i, (str, int, float))]
        evaluation = {
            "loop_number": loop_number,
            "goal_score": _score(data.get("goalScore")),
            "efficiency_score": _score(data.get("efficiencyScore")),
            "improvements": improvements,
            "timestamp": time.time(),
        }
        LOGGER.info(
            f"Loop {loop_number}: goal={evaluation['goal_score']}/10, "
            f"efficiency={evaluation['efficiency_score']}/10, {len(improvements)} improvements suggested"
        )
        updates = {
            "last_evaluation": evaluation,
            "suggested_improvements": improvements,
            "total_cost_wei": deps.settings.pricing.inference,
            "events": [],
        }
        log_node_exit(LOGGER, EVALUATING, updates)
        return updates

    return evaluating_node


def build_reviewing_node(deps: RunDependencies):
    @with_step_boundary(REVIEWING)
    async def reviewing_node(state: OrchestrationState) -> dict:
        log_node_entry(LOGGER, REVIEWING, state)
        run_id = state.get("run_id", "")
        finished_loop = state.get("loop_count", 1)
        next_loop = finished_loop + 1
        improvements = state.get("suggested_improvements") or []

        enhancements = [
            f"[Loop {finished_loop} Learning #{i}]: {imp}" for i, imp in enumerate(improvements, start=1)
        ]
        kickoff = HumanMessage(
            content=f"Loop {next_loop}/{state.get('max_loops', 1)}: continue working toward the goal: "
            f"{state.get('active_goal', '')}"
        )
        updates = {
            "messages": [kickoff],
            "context_enhancements": enhancements,
            "suggested_improvements": [],
            "loop_count": next_loop,
            "round_trips": 0,
            "events": [step_event("message_added", run_id, REVIEWING, role="human", content=kickoff.content)],
        }
        log_node_exit(LOGGER, REVIEWING, updates)
        return updates

    return reviewing_node
