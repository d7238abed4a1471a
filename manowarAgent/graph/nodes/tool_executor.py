"""Workflow-only tool execution node."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from langchain_core.messages import ToolMessage

from manowarAgent.graph.deps import RunDependencies
from manowarAgent.graph.events import StepEvent, step_event
from manowarAgent.graph.message_utils import pending_tool_calls
from manowarAgent.graph.routing import EXECUTING_TOOLS
from manowarAgent.tools.bindings import SAVE_SOLUTION_TOOL, SEARCH_SOLUTIONS_TOOL, ToolBinding
from manowarAgent.utils.error_handler import CallTimeoutError, ExternalCallError, ToolValidationError
from manowarAgent.utils.logging_utils import log_node_entry, log_node_exit, log_tool_call, log_tool_result

LOGGER = logging.getLogger("manowar.tools.executor")


@dataclass(slots=True)
class CallOutcome:
    message: ToolMessage
    event: StepEvent
    action: str
    cost_wei: int = 0
    multimodal_output: Optional[Dict[str, Any]] = None


@dataclass(slots=True)
class _Dispatch:
    content: str
    cost_wei: int = 0
    multimodal_output: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def _stringify(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


class WorkflowToolExecutor:
    """执行协调者请求的工具调用（仅限 workflow 绑定）

    Suggested bindings are visible to the coordinator model but never reach
    this node: a call naming one is answered with an error observation.
    Independent calls run concurrently; a call whose binding ``depends_on``
    another tool waits for the earlier calls to that tool in the same batch.
    """

    def __init__(self, deps: RunDependencies):
        self.deps = deps

    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        log_node_entry(LOGGER, EXECUTING_TOOLS, state)
        run_id = state.get("run_id", "")
        calls = pending_tool_calls(state.get("messages", []))

        tasks: List[asyncio.Task] = []
        for index, call in enumerate(calls):
            binding = self.deps.bindings.executable(call.get("name", ""))
            prerequisites = []
            if binding is not None and binding.depends_on:
                prerequisites = [
                    tasks[j] for j in range(index)
                    if calls[j].get("name") in binding.depends_on
                ]
            tasks.append(asyncio.create_task(self._run_after(prerequisites, call, state)))

        try:
            outcomes: List[CallOutcome] = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        updates: Dict[str, Any] = {
            "messages": [o.message for o in outcomes],
            "round_trips": state.get("round_trips", 0) + 1,
            "completed_actions": [o.action for o in outcomes],
            "total_cost_wei": sum(o.cost_wei for o in outcomes),
            "events": [o.event for o in outcomes] + [
                step_event("message_added", run_id, EXECUTING_TOOLS, role="tool", name=o.message.name,
                           status=o.message.status)
                for o in outcomes
            ],
        }
        multimodal = [o.multimodal_output for o in outcomes if o.multimodal_output]
        if multimodal:
            updates["multimodal_output"] = multimodal[-1]

        log_node_exit(LOGGER, EXECUTING_TOOLS, updates)
        return updates

    async def _run_after(self, prerequisites: List[asyncio.Task], call: Dict[str, Any], state) -> CallOutcome:
        if prerequisites:
            await asyncio.gather(*prerequisites)
        return await self.run_call(call, state)

    async def run_call(self, call: Dict[str, Any], state: Dict[str, Any]) -> CallOutcome:
        run_id = state.get("run_id", "")
        name = call.get("name", "")
        call_id = call.get("id") or name
        args = call.get("args") or {}
        log_tool_call(LOGGER, name, args)

        binding = self.deps.bindings.executable(name)
        if binding is None:
            known = self.deps.bindings.lookup(name)
            if known is not None and known.origin == "suggested":
                reason = f"{name} is a supervisory suggestion and cannot be executed in this workflow"
                LOGGER.warning(f"Blocked execution of suggested tool {name}")
            else:
                reason = f"Unknown tool: {name}"
            return self._failure(run_id, call_id, name, reason, status="rejected")

        try:
            args = self.deps.bindings.validate_arguments(binding, args)
            dispatch = await asyncio.wait_for(self._dispatch(binding, args, state), timeout=self.deps.step_timeout)
        except asyncio.TimeoutError:
            error = CallTimeoutError(f"{name} timed out after {self.deps.step_timeout}s")
            return self._failure(run_id, call_id, name, str(error), status="timeout")
        except ToolValidationError as e:
            return self._failure(run_id, call_id, name, str(e), status="invalid_args")
        except ExternalCallError as e:
            return self._failure(run_id, call_id, name, str(e), status="error")

        log_tool_result(LOGGER, name, dispatch.content, success=True)
        return CallOutcome(
            message=ToolMessage(content=dispatch.content, tool_call_id=call_id, name=name),
            event=step_event(
                "tool_invoked", run_id, EXECUTING_TOOLS,
                tool=name, target=binding.target, target_id=binding.target_id, status="success", **dispatch.extra,
            ),
            action=f"{name}: success",
            cost_wei=dispatch.cost_wei,
            multimodal_output=dispatch.multimodal_output,
        )

    def _failure(self, run_id: str, call_id: str, name: str, reason: str, *, status: str) -> CallOutcome:
        log_tool_result(LOGGER, name, reason, success=False)
        return CallOutcome(
            message=ToolMessage(content=f"Error: {reason}", tool_call_id=call_id, name=name, status="error"),
            event=step_event("tool_invoked", run_id, EXECUTING_TOOLS, tool=name, status=status, error=reason),
            action=f"{name}: {status}",
        )

    async def _dispatch(self, binding: ToolBinding, args: Dict[str, Any], state: Dict[str, Any]) -> _Dispatch:
        pricing = self.deps.settings.pricing
        collaborators = self.deps.collaborators

        if binding.target == "tool":
            result = await collaborators.tools.execute(binding.target_id, args)
            return _Dispatch(content=_stringify(result), cost_wei=pricing.tool_call)

        if binding.target == "agent":
            task = args.get("task") if isinstance(args.get("task"), str) else _stringify(args)
            thread_id = f"{state.get('thread_id', state.get('run_id', ''))}:{binding.name}"
            reply = await collaborators.agents.chat(binding.target_id, task, thread_id)
            usage_source = {**reply.raw, "content": reply.content}
            self.deps.ledger.record_response(
                binding.name, binding.target_id, "delegate", usage_source, prompt_text=task
            )
            return _Dispatch(
                content=reply.content or "(agent returned no text)",
                cost_wei=pricing.agent_step,
                multimodal_output=reply.multimodal_output,
                extra={"has_multimodal": reply.multimodal_output is not None},
            )

        return await self._builtin(binding, args, state)

    async def _builtin(self, binding: ToolBinding, args: Dict[str, Any], state: Dict[str, Any]) -> _Dispatch:
        memory = self.deps.collaborators.memory
        if binding.name == SEARCH_SOLUTIONS_TOOL:
            memories = await memory.search(
                args["query"],
                agent_id=self.deps.memory_agent_id,
                filters={"type": "solution_pattern"},
                limit=5,
            )
            if not memories:
                return _Dispatch(content="No previous solutions found.")
            lines = [f"- {m.get('memory') or m.get('content') or ''}" for m in memories]
            return _Dispatch(content="Previous solutions:\n" + "\n".join(lines))

        if binding.name == SAVE_SOLUTION_TOOL:
            outcome = args.get("outcome", "")
            await memory.add(
                [
                    {"role": "user", "content": state.get("active_goal", "")},
                    {"role": "assistant", "content": f"Solution pattern: {args['pattern']}\nOutcome: {outcome}"},
                ],
                agent_id=self.deps.memory_agent_id,
                run_id=state.get("run_id"),
                metadata={"type": "solution_pattern", "workflow_id": self.deps.workflow.id},
            )
            return _Dispatch(content="Solution pattern saved.")

        raise ExternalCallError(f"No builtin handler for {binding.name}")
