"""Shared fakes for the test suite: scripted collaborators and coordinator."""

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
from langchain_core.messages import AIMessage

LAMBDA_URL = "http://lambda.test"
MCP_URL = "http://mcp.test"
COORDINATOR_MODEL = "test/coordinator"
SUMMARIZER_MODEL = "test/summarizer"
EVALUATOR_MODEL = "test/evaluator"

VALID_SUMMARY = json.dumps({
    "summary": "Researched the topic and drafted an outline.",
    "keyFacts": ["source A is authoritative", "outline has 3 sections"],
    "preservedContext": {"stage": "drafting"},
})


class FakeServices:
    """In-memory stand-in for the lambda and MCP services."""

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.summaries: List[str] = []
        self.evaluations: List[str] = []
        self.inference_usage: Optional[Dict[str, int]] = {"prompt_tokens": 100, "completion_tokens": 50}
        self.tool_results: Dict[str, Any] = {}
        self.agent_replies: Dict[str, Dict[str, Any]] = {}
        self.model_specs: Dict[str, Dict[str, Any]] = {}
        self.registry_servers: List[Dict[str, Any]] = []
        self.memories: List[Dict[str, Any]] = []
        self.fail_paths: Dict[str, int] = {}

    def calls_to(self, prefix: str) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r["path"].startswith(prefix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path
        self.requests.append({"method": request.method, "path": path, "json": body, "params": dict(request.url.params)})

        for prefix, status in self.fail_paths.items():
            if path.startswith(prefix):
                return httpx.Response(status, json={"error": "unavailable"})

        if path == "/api/inference":
            queue = self.evaluations if body["model"] == EVALUATOR_MODEL else self.summaries
            if not queue:
                return httpx.Response(500, json={"error": "no scripted completion"})
            payload: Dict[str, Any] = {"content": queue.pop(0)}
            if self.inference_usage:
                payload["usage"] = dict(self.inference_usage)
            return httpx.Response(200, json=payload)

        if path.startswith("/tool/"):
            tool_id = path[len("/tool/"):]
            result = self.tool_results.get(tool_id, {"result": f"{tool_id} ok"})
            return httpx.Response(200, json=result)

        if path.startswith("/agent/"):
            agent_id = path[len("/agent/"):].rsplit("/chat", 1)[0]
            reply = self.agent_replies.get(
                agent_id, {"messages": [{"role": "assistant", "content": f"{agent_id} finished"}]}
            )
            return httpx.Response(200, json=reply)

        if path == "/memory/add":
            self.memories.append(body)
            return httpx.Response(200, json={"ok": True})

        if path == "/memory/search":
            wanted = (body.get("filters") or {}).get("type")
            matches = [
                {"memory": m["messages"][-1]["content"], "metadata": m.get("metadata", {})}
                for m in reversed(self.memories)
                if m.get("agentId") == body.get("agentId")
                and (wanted is None or (m.get("metadata") or {}).get("type") == wanted)
            ]
            return httpx.Response(200, json={"memories": matches[: body.get("limit", 5)]})

        if path.startswith("/models/"):
            model_id = path[len("/models/"):]
            spec = self.model_specs.get(model_id)
            if spec is None:
                return httpx.Response(404, json={"error": "unknown model"})
            return httpx.Response(200, json=spec)

        if path == "/registry/search":
            return httpx.Response(200, json={"servers": list(self.registry_servers)})

        return httpx.Response(404, json={"error": f"no route for {path}"})


class ScriptedChatModel:
    """Coordinator stand-in replaying a script of responses.

    Script items: an AIMessage, an Exception (raised), the string ``"block"``
    (waits until ``release`` is set) or a callable ``messages -> AIMessage``.
    Once the script runs out it answers with a plain final message.
    """

    def __init__(self, script=None, *, default_usage=(200, 40)):
        self.script = list(script or [])
        self.default_usage = default_usage
        self.calls: List[List[Any]] = []
        self.bound_tools: List[List[Dict[str, Any]]] = []
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    def bind_tools(self, tools):
        self.bound_tools.append(list(tools))
        return self

    async def ainvoke(self, messages):
        self.calls.append(list(messages))
        self.entered.set()
        if not self.script:
            return final_message("All tasks complete.", *self.default_usage)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        if item == "block":
            await self.release.wait()
            return final_message("Released.", *self.default_usage)
        if callable(item):
            return item(messages)
        return item


def final_message(content: str, input_tokens: int = 200, output_tokens: int = 40) -> AIMessage:
    return AIMessage(
        content=content,
        usage_metadata={
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
        },
    )


def tool_call_message(*calls, input_tokens: int = 200, output_tokens: int = 40) -> AIMessage:
    """``calls``: (name, args) pairs."""
    return AIMessage(
        content="",
        tool_calls=[
            {"name": name, "args": args, "id": f"call_{index}_{name}"}
            for index, (name, args) in enumerate(calls)
        ],
        usage_metadata={
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
        },
    )

