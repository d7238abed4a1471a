"""
测试记忆擦除（summarize-then-wipe）

测试场景：
1. 摘要 JSON 的宽松解析（只取第一个平衡的对象）
2. 擦除成功：消息被替换为一条系统消息，基线移动到账本当前总量
3. 擦除失败：摘要不可用时不修改消息
4. 长期记忆写入失败不阻止擦除
"""

import json

import pytest
from langchain_core.messages import AIMessage, HumanMessage, RemoveMessage, SystemMessage, ToolMessage
from langgraph.graph.message import REMOVE_ALL_MESSAGES

from manowarAgent.context.curator import (
    MemoryCurator,
    extract_first_json_object,
    parse_summary,
)
from manowarAgent.context.token_ledger import TokenLedger
from manowarAgent.utils.error_handler import SummarizationError

from tests.support import SUMMARIZER_MODEL, VALID_SUMMARY


@pytest.fixture
def curator(collaborators):
    return MemoryCurator(collaborators.inference, collaborators.memory, model=SUMMARIZER_MODEL, timeout_seconds=5)


@pytest.fixture
def state():
    return {
        "run_id": "run-1",
        "workflow_id": "wf-research",
        "active_goal": "Write a brief about tidal energy",
        "completed_actions": ["Coordinator requested web_search", "web_search: success"],
        "token_metrics": {"coordinator": {"total_tokens": 6800}},
        "messages": [
            HumanMessage(content="Write a brief about tidal energy"),
            AIMessage(content="", tool_calls=[{"name": "web_search", "args": {"query": "tidal"}, "id": "c1"}]),
            ToolMessage(content="3 results", tool_call_id="c1", name="web_search"),
            AIMessage(content="Outline drafted."),
        ],
    }


class TestExtractFirstJsonObject:
    def test_plain_object(self):
        assert extract_first_json_object('{"a": 1}') == '{"a": 1}'

    def test_surrounding_prose_and_fences(self):
        text = 'Here you go:\n```json\n{"summary": "x", "keyFacts": []}\n```\nThanks'
        assert extract_first_json_object(text) == '{"summary": "x", "keyFacts": []}'

    def test_braces_inside_strings_are_ignored(self):
        text = '{"summary": "use {braces} and \\"quotes\\" }", "keyFacts": []} trailing {'
        span = extract_first_json_object(text)
        assert json.loads(span)["summary"] == 'use {braces} and "quotes" }'

    def test_only_first_object_is_returned(self):
        assert extract_first_json_object('{"a": 1} {"b": 2}') == '{"a": 1}'

    def test_unbalanced_returns_none(self):
        assert extract_first_json_object('{"a": {"b": 1}') is None

    def test_no_object_returns_none(self):
        assert extract_first_json_object("no json here") is None


class TestParseSummary:
    def test_valid(self):
        result = parse_summary(VALID_SUMMARY)
        assert result.summary == "Researched the topic and drafted an outline."
        assert result.key_facts == ["source A is authoritative", "outline has 3 sections"]
        assert result.preserved_context == {"stage": "drafting"}

    def test_preserved_context_optional(self):
        result = parse_summary('{"summary": "s", "keyFacts": []}')
        assert result.preserved_context == {}

    @pytest.mark.parametrize("text", [
        "",
        "   ",
        "plain prose",
        '{"summary": "s", "keyFacts": [}',
        '{"summary": 3, "keyFacts": []}',
        '{"summary": "s", "keyFacts": "one fact"}',
        '{"summary": "s", "keyFacts": [1, 2]}',
        '{"summary": "s", "keyFacts": [], "preservedContext": []}',
    ])
    def test_invalid_raises(self, text):
        with pytest.raises(SummarizationError):
            parse_summary(text)

    def test_later_object_is_never_tried(self):
        with pytest.raises(SummarizationError):
            parse_summary('{"note": "draft"} {"summary": "s", "keyFacts": []}')


class TestWipe:
    @pytest.mark.asyncio
    async def test_wipe_replaces_messages_and_moves_baseline(self, curator, services, state):
        services.summaries.append(VALID_SUMMARY)
        ledger = TokenLedger("run-1")
        ledger.record("coordinator", "test/coordinator", "coordinate", 6000, 800)

        updates = await curator.wipe(state, ledger)

        remove, refresh = updates["messages"]
        assert isinstance(remove, RemoveMessage) and remove.id == REMOVE_ALL_MESSAGES
        assert isinstance(refresh, SystemMessage)
        assert refresh.content.startswith("[CONTEXT REFRESHED] Researched the topic")
        assert "- outline has 3 sections" in refresh.content
        assert updates["needs_cleanup"] is False
        assert updates["last_summary"] == "Researched the topic and drafted an outline."
        assert updates["preserved_facts"] == ["source A is authoritative", "outline has 3 sections"]
        # summarizer usage is recorded before the baseline is taken
        assert ledger.agent_totals()["summarizer"].total_tokens == 150
        assert updates["context_baseline_tokens"] == 6950

    @pytest.mark.asyncio
    async def test_wipe_persists_summary_to_memory(self, curator, services, state):
        services.summaries.append(VALID_SUMMARY)

        await curator.wipe(state, TokenLedger("run-1"))

        stored = services.memories[-1]
        assert stored["agentId"] == "manowar-wf-research"
        assert stored["runId"] == "run-1"
        assert stored["metadata"]["type"] == "memory_wipe"
        assert stored["metadata"]["wipedMessageCount"] == 4
        assert stored["metadata"]["keyFacts"] == ["source A is authoritative", "outline has 3 sections"]

    @pytest.mark.asyncio
    async def test_summarizer_prompt_carries_goal_and_actions(self, curator, services, state):
        services.summaries.append(VALID_SUMMARY)

        await curator.wipe(state, TokenLedger("run-1"))

        request = services.calls_to("/api/inference")[0]["json"]
        assert request["model"] == SUMMARIZER_MODEL
        assert request["temperature"] == 0.3
        prompt = request["messages"][-1]["content"]
        assert "tidal energy" in prompt
        assert "web_search: success" in prompt

    @pytest.mark.asyncio
    async def test_unparseable_summary_aborts(self, curator, services, state):
        services.summaries.append("I could not summarize this.")

        with pytest.raises(SummarizationError):
            await curator.wipe(state, TokenLedger("run-1"))

        assert len(state["messages"]) == 4
        assert services.memories == []

    @pytest.mark.asyncio
    async def test_summarizer_http_failure_aborts(self, curator, services, state):
        services.fail_paths["/api/inference"] = 502

        with pytest.raises(SummarizationError):
            await curator.wipe(state, TokenLedger("run-1"))

    @pytest.mark.asyncio
    async def test_memory_failure_does_not_block_wipe(self, curator, services, state):
        services.summaries.append(VALID_SUMMARY)
        services.fail_paths["/memory/add"] = 500

        updates = await curator.wipe(state, TokenLedger("run-1"))

        assert updates["needs_cleanup"] is False
        assert len(updates["messages"]) == 2


class TestRetrieveLatestSummary:
    @pytest.mark.asyncio
    async def test_returns_most_recent_wipe(self, curator, services, state):
        services.summaries.append(VALID_SUMMARY)
        await curator.wipe(state, TokenLedger("run-1"))

        result = await curator.retrieve_latest_summary("wf-research", run_id="run-1")

        assert result is not None
        assert result.summary == "Researched the topic and drafted an outline."
        assert result.key_facts == ["source A is authoritative", "outline has 3 sections"]

    @pytest.mark.asyncio
    async def test_none_when_nothing_stored(self, curator):
        assert await curator.retrieve_latest_summary("wf-unknown") is None
