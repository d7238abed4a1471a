"""Memory curation: summarize the working context, then wipe it.

The curator never drops context it could not summarize. Any failure along the
summarize path raises ``SummarizationError`` and leaves the state alone so the
next pipeline pass retries.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, RemoveMessage, SystemMessage, ToolMessage
from langgraph.graph.message import REMOVE_ALL_MESSAGES

from manowarAgent.clients.inference import InferenceClient, chat_payload
from manowarAgent.clients.memory import MemoryClient
from manowarAgent.context.token_ledger import TokenLedger
from manowarAgent.utils.error_handler import ExternalCallError, SummarizationError
from manowarAgent.utils.prompt_builder import PromptBuilder

LOGGER = logging.getLogger("manowar.context.curator")

SUMMARIZER_AGENT_ID = "summarizer"
REFRESH_PREFIX = "[CONTEXT REFRESHED]"
AGENT_SUMMARY_CHARS = 200


@dataclass(slots=True)
class CurationInput:
    goal: str
    completed_actions: List[str]
    last_outcome: str
    agent_summaries: Dict[str, str]
    token_metrics: Dict[str, Dict[str, Any]]
    message_count: int


@dataclass(slots=True)
class CurationResult:
    summary: str
    key_facts: List[str]
    preserved_context: Dict[str, Any] = field(default_factory=dict)


def extract_first_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span in ``text``.

    Braces inside JSON strings (including escaped quotes) do not count.
    Returns None when there is no ``{`` or the first object never closes.
    """
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def parse_summary(text: Optional[str]) -> CurationResult:
    """Parse summarizer output. Only the first balanced object is considered."""
    if not text or not text.strip():
        raise SummarizationError("summarizer returned no content")

    span = extract_first_json_object(text)
    if span is None:
        raise SummarizationError("no balanced JSON object in summarizer output")

    try:
        data = json.loads(span)
    except json.JSONDecodeError as e:
        raise SummarizationError(f"summarizer JSON is invalid: {e}") from e

    if not isinstance(data, dict):
        raise SummarizationError("summarizer JSON is not an object")

    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise SummarizationError("summarizer JSON has no string 'summary'")

    key_facts = data.get("keyFacts")
    if not isinstance(key_facts, list) or not all(isinstance(fact, str) for fact in key_facts):
        raise SummarizationError("summarizer JSON 'keyFacts' must be a list of strings")

    preserved = data.get("preservedContext", {})
    if preserved is None:
        preserved = {}
    if not isinstance(preserved, dict):
        raise SummarizationError("summarizer JSON 'preservedContext' must be an object")

    return CurationResult(summary=summary.strip(), key_facts=list(key_facts), preserved_context=preserved)


def last_assistant_text(messages: Sequence[BaseMessage]) -> str:
    for message in reversed(messages):
        if isinstance(message, AIMessage):
            content = message.content
            if isinstance(content, list):
                content = "".join(p.get("text", "") if isinstance(p, dict) else str(p) for p in content)
            if content:
                return str(content)
    return "No outcome recorded"


def agent_summaries(messages: Sequence[BaseMessage]) -> Dict[str, str]:
    """Latest observation per tool or agent, clipped."""
    summaries: Dict[str, str] = {}
    for message in messages:
        if isinstance(message, ToolMessage) and message.name:
            text = str(message.content)
            if len(text) > AGENT_SUMMARY_CHARS:
                text = text[:AGENT_SUMMARY_CHARS] + "..."
            summaries[message.name] = text
    return summaries


def refresh_message(result: CurationResult) -> SystemMessage:
    lines = [f"{REFRESH_PREFIX} {result.summary}"]
    if result.key_facts:
        lines.append("")
        lines.append("Key facts:")
        lines.extend(f"- {fact}" for fact in result.key_facts)
    if result.preserved_context:
        lines.append("")
        lines.append(f"Preserved context: {json.dumps(result.preserved_context, ensure_ascii=False, default=str)}")
    return SystemMessage(content="\n".join(lines))


class MemoryCurator:
    """Summarize-then-wipe for a run's working context."""

    def __init__(
        self,
        inference: InferenceClient,
        memory: Optional[MemoryClient] = None,
        *,
        model: str,
        temperature: float = 0.3,
        timeout_seconds: float = 120.0,
    ):
        self.inference = inference
        self.memory = memory
        self.model = model
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds

    @staticmethod
    def build_input(state: Mapping[str, Any]) -> CurationInput:
        messages = list(state.get("messages") or [])
        return CurationInput(
            goal=str(state.get("active_goal", "")),
            completed_actions=list(state.get("completed_actions") or []),
            last_outcome=last_assistant_text(messages),
            agent_summaries=agent_summaries(messages),
            token_metrics=dict(state.get("token_metrics") or {}),
            message_count=len(messages),
        )

    async def summarize(self, curation: CurationInput, ledger: Optional[TokenLedger] = None) -> CurationResult:
        prompt = PromptBuilder.summarizer_prompt(
            goal=curation.goal,
            completed_actions=curation.completed_actions,
            last_outcome=curation.last_outcome,
            agent_summaries=curation.agent_summaries,
            token_metrics=curation.token_metrics,
        )
        try:
            response = await asyncio.wait_for(
                self.inference.complete(
                    self.model,
                    chat_payload(PromptBuilder.SUMMARIZER_SYSTEM, prompt),
                    temperature=self.temperature,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise SummarizationError(f"summarizer timed out after {self.timeout_seconds}s") from e
        except ExternalCallError as e:
            raise SummarizationError(f"summarizer call failed: {e}") from e

        if ledger is not None:
            ledger.record_response(SUMMARIZER_AGENT_ID, self.model, "memory_wipe", response, prompt_text=prompt)
        return parse_summary(response.content)

    async def persist(
        self,
        result: CurationResult,
        *,
        workflow_id: str,
        run_id: str,
        wiped_message_count: int,
    ) -> None:
        """Audit trail in long-term memory. Failures are logged, not raised."""
        if self.memory is None:
            return
        facts = "\n".join(f"- {fact}" for fact in result.key_facts)
        try:
            await self.memory.add(
                [
                    {"role": "system", "content": f"Memory wipe performed for workflow {workflow_id}"},
                    {
                        "role": "assistant",
                        "content": (
                            f"WIPE SUMMARY:\n{result.summary}\n\nPRESERVED FACTS:\n{facts}"
                            f"\n\nWIPED {wiped_message_count} messages"
                        ),
                    },
                ],
                agent_id=f"manowar-{workflow_id}",
                run_id=run_id,
                metadata={
                    "type": "memory_wipe",
                    "workflow_id": workflow_id,
                    "summary": result.summary,
                    "keyFacts": result.key_facts,
                    "wipedMessageCount": wiped_message_count,
                },
            )
        except ExternalCallError as e:
            LOGGER.warning(f"Failed to persist wipe summary for run {run_id}: {e}")

    async def wipe(self, state: Mapping[str, Any], ledger: TokenLedger) -> Dict[str, Any]:
        """Summarize and build the state update that replaces ``messages``.

        Raises:
            SummarizationError: the wipe must not happen
        """
        curation = self.build_input(state)
        result = await self.summarize(curation, ledger)
        await self.persist(
            result,
            workflow_id=str(state.get("workflow_id", "")),
            run_id=str(state.get("run_id", "")),
            wiped_message_count=curation.message_count,
        )
        LOGGER.info(
            f"Memory wipe: {curation.message_count} messages → 1, "
            f"{len(result.key_facts)} facts preserved"
        )
        return {
            "messages": [RemoveMessage(id=REMOVE_ALL_MESSAGES), refresh_message(result)],
            "last_summary": result.summary,
            "preserved_facts": result.key_facts,
            "needs_cleanup": False,
            "context_baseline_tokens": ledger.cumulative_total(),
        }

    async def retrieve_latest_summary(self, workflow_id: str, run_id: Optional[str] = None) -> Optional[CurationResult]:
        """Most recent wipe summary from long-term memory, if any."""
        if self.memory is None:
            return None
        memories = await self.memory.search(
            "context summary memory wipe",
            agent_id=f"manowar-{workflow_id}",
            run_id=run_id,
            filters={"type": "memory_wipe"},
            limit=1,
        )
        if not memories:
            return None

        entry = memories[0]
        metadata = entry.get("metadata") or {}
        if isinstance(metadata.get("summary"), str):
            facts = metadata.get("keyFacts") or []
            return CurationResult(summary=metadata["summary"], key_facts=[str(f) for f in facts])

        content = str(entry.get("memory") or entry.get("content") or "")
        summary = content
        facts: List[str] = []
        if "WIPE SUMMARY:\n" in content:
            body = content.split("WIPE SUMMARY:\n", 1)[1]
            summary, _, rest = body.partition("\n\nPRESERVED FACTS:\n")
            facts = [line[2:] for line in rest.splitlines() if line.startswith("- ")]
        return CurationResult(summary=summary.strip(), key_facts=facts)
