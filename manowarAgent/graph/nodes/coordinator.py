"""Coordinator node: reasons over the goal and requests tool calls."""

from __future__ import annotations

import asyncio
import logging

from langchain_core.messages import AIMessage, SystemMessage

from manowarAgent.graph.deps import RunDependencies
from manowarAgent.graph.events import step_event
from manowarAgent.graph.message_utils import clean_message_history, message_text
from manowarAgent.graph.routing import COORDINATING
from manowarAgent.graph.state import OrchestrationState
from manowarAgent.utils.error_handler import FATAL_ERRORS, handle_model_error, with_step_boundary
from manowarAgent.utils.logging_utils import log_error, log_node_entry, log_node_exit
from manowarAgent.utils.prompt_builder import PromptBuilder

LOGGER = logging.getLogger("manowar.coordinator")

COORDINATOR_AGENT_ID = "coordinator"


def build_coordinator_node(deps: RunDependencies):
    """Build the coordinating node.

    The model sees the workflow bindings plus the current suggestions; only
    the workflow bindings are ever executed downstream.
    """

    @with_step_boundary(COORDINATING)
    async def coordinating_node(state: OrchestrationState) -> dict:
        log_node_entry(LOGGER, COORDINATING, state)
        run_id = state.get("run_id", "")

        deps.bindings.set_suggestions(state.get("suggested_tools") or [])
        tools = deps.bindings.coordinator_tools()
        model = deps.coordinator_model.bind_tools(tools) if tools else deps.coordinator_model

        system_prompt = PromptBuilder.coordinator_prompt(
            workflow_name=deps.workflow.name,
            workflow_description=deps.workflow.description,
            goal=state.get("active_goal", ""),
            workflow_bindings=deps.bindings.workflow_bindings(),
            suggested_bindings=deps.bindings.suggested_bindings(),
            last_summary=state.get("last_summary"),
            preserved_facts=state.get("preserved_facts") or [],
            context_enhancements=state.get("context_enhancements") or [],
        )
        history = clean_message_history(state.get("messages", []))
        prompt_messages = [SystemMessage(content=system_prompt), *history]

        try:
            response = await asyncio.wait_for(model.ainvoke(prompt_messages), timeout=deps.step_timeout)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            failures = state.get("coordinator_failures", 0) + 1
            log_error(LOGGER, e, f"coordinator call {failures} failed")
            reason = "AI 响应超时，请重试" if isinstance(e, asyncio.TimeoutError) else handle_model_error(e)
            observation = SystemMessage(content=f"[ERROR] Coordinator call failed: {reason}")
            return {
                "messages": [observation],
                "coordinator_failed": True,
                "coordinator_failures": failures,
                "last_error": f"{type(e).__name__}: {e}",
                "events": [
                    step_event("message_added", run_id, COORDINATING, role="system", content=observation.content),
                    step_event("step_failed", run_id, COORDINATING, error=str(e), attempt=failures),
                ],
            }

        if not isinstance(response, AIMessage):
            response = AIMessage(content=str(getattr(response, "content", response)))

        deps.ledger.record_response(
            COORDINATOR_AGENT_ID,
            deps.coordinator_model_id,
            "coordinate",
            response,
            prompt_text="\n".join(message_text(m) for m in prompt_messages),
        )

        calls = response.tool_calls or []
        action = (
            f"Coordinator requested {', '.join(c['name'] for c in calls)}"
            if calls else "Coordinator response"
        )
        updates = {
            "messages": [response],
            "completed_actions": [action],
            "coordinator_failed": False,
            "coordinator_failures": 0,
            "last_error": None,
            "total_cost_wei": deps.settings.pricing.inference,
            "events": [
                step_event(
                    "message_added",
                    run_id,
                    COORDINATING,
                    role="ai",
                    content=message_text(response)[:500],
                    tool_calls=[c["name"] for c in calls],
                ),
            ],
        }
        log_node_exit(LOGGER, COORDINATING, updates)
        return updates

    return coordinating_node
