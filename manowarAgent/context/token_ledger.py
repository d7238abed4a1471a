"""
Token 账本

负责：
1. 按 agent / 模型 / 动作记录每次调用的 token 使用量
2. 从各类 API 响应提取精确 usage（提取失败时按 chars/4 估算）
3. 汇总累计与分 agent 统计，支持导出 / 导入以便写入检查点

账本只追加、不删除；每个 run 拥有独立账本（见 LedgerBook）。
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

LOGGER = logging.getLogger("manowar.context.ledger")

CHARS_PER_TOKEN = 4


@dataclass(frozen=True, slots=True)
class TokenCheckpoint:
    """单次调用的 token 记录"""
    agent_id: str
    model_id: str
    action: str
    input_tokens: int
    output_tokens: int
    timestamp: float
    estimated: bool = False
    source: str = "usage_metadata"

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TokenCheckpoint":
        return cls(
            agent_id=str(data["agent_id"]),
            model_id=str(data.get("model_id", "unknown")),
            action=str(data.get("action", "unknown")),
            input_tokens=int(data.get("input_tokens", 0)),
            output_tokens=int(data.get("output_tokens", 0)),
            timestamp=float(data.get("timestamp", 0.0)),
            estimated=bool(data.get("estimated", False)),
            source=str(data.get("source", "import")),
        )


@dataclass(slots=True)
class TokenTotals:
    """某个 agent 的累计使用量"""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    last_updated: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def estimate_tokens(text: str) -> int:
    """粗略估算：约 4 个字符一个 token"""
    if not text:
        return 0
    return max(1, len(text) // CHARS_PER_TOKEN)


def extract_usage(response: Any) -> Optional[Tuple[int, int, str]]:
    """从模型响应中提取 (input, output, source)。

    依次尝试：
    - LangChain ``usage_metadata`` (input_tokens / output_tokens)
    - ``response_metadata`` 中的 OpenAI ``token_usage`` / ``usage``
    - Anthropic ``usage`` (input_tokens / output_tokens)
    - Google ``usageMetadata`` (promptTokenCount / candidatesTokenCount)

    全部失败时返回 None。
    """
    usage_metadata = getattr(response, "usage_metadata", None)
    if isinstance(usage_metadata, Mapping) and usage_metadata:
        return (
            int(usage_metadata.get("input_tokens", 0) or 0),
            int(usage_metadata.get("output_tokens", 0) or 0),
            "usage_metadata",
        )

    candidates: List[Mapping[str, Any]] = []
    response_metadata = getattr(response, "response_metadata", None)
    if isinstance(response_metadata, Mapping):
        candidates.append(response_metadata)
    if isinstance(response, Mapping):
        candidates.append(response)

    for container in candidates:
        usage = container.get("token_usage") or container.get("usage")
        if isinstance(usage, Mapping):
            if "prompt_tokens" in usage or "completion_tokens" in usage:
                return (
                    int(usage.get("prompt_tokens", 0) or 0),
                    int(usage.get("completion_tokens", 0) or 0),
                    "openai",
                )
            if "input_tokens" in usage or "output_tokens" in usage:
                return (
                    int(usage.get("input_tokens", 0) or 0),
                    int(usage.get("output_tokens", 0) or 0),
                    "anthropic",
                )
        google = container.get("usageMetadata") or container.get("usage_metadata")
        if isinstance(google, Mapping) and ("promptTokenCount" in google or "candidatesTokenCount" in google):
            return (
                int(google.get("promptTokenCount", 0) or 0),
                int(google.get("candidatesTokenCount", 0) or 0),
                "google",
            )
    return None


def _response_text(response: Any) -> str:
    content = getattr(response, "content", None)
    if content is None and isinstance(response, Mapping):
        content = response.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, Mapping) and item.get("type") == "text":
                parts.append(str(item.get("text", "")))
        return "".join(parts)
    return "" if content is None else str(content)


class TokenLedger:
    """单个 run 的 token 账本（线程安全，只追加）"""

    def __init__(self, run_id: str):
        self.run_id = run_id
        self._lock = threading.Lock()
        self._checkpoints: List[TokenCheckpoint] = []

    def record(
        self,
        agent_id: str,
        model_id: str,
        action: str,
        input_tokens: int,
        output_tokens: int,
        *,
        estimated: bool = False,
        source: str = "manual",
    ) -> TokenCheckpoint:
        if input_tokens < 0 or output_tokens < 0:
            raise ValueError("token counts must be non-negative")
        checkpoint = TokenCheckpoint(
            agent_id=agent_id,
            model_id=model_id,
            action=action,
            input_tokens=int(input_tokens),
            output_tokens=int(output_tokens),
            timestamp=time.time(),
            estimated=estimated,
            source=source,
        )
        with self._lock:
            self._checkpoints.append(checkpoint)
        LOGGER.debug(
            f"[{self.run_id}] {agent_id}/{action} +{checkpoint.total_tokens} tokens"
            f"{' (estimated)' if estimated else ''}"
        )
        return checkpoint

    def record_response(
        self,
        agent_id: str,
        model_id: str,
        action: str,
        response: Any,
        *,
        prompt_text: str = "",
    ) -> TokenCheckpoint:
        """记录一次模型响应；拿不到 usage 时按 chars/4 估算并标记 estimated"""
        usage = extract_usage(response)
        if usage is not None:
            input_tokens, output_tokens, source = usage
            return self.record(agent_id, model_id, action, input_tokens, output_tokens, source=source)

        LOGGER.warning(f"No token usage for {agent_id}/{action}, falling back to estimate")
        return self.record(
            agent_id,
            model_id,
            action,
            estimate_tokens(prompt_text),
            estimate_tokens(_response_text(response)),
            estimated=True,
            source="estimate",
        )

    def cumulative_total(self) -> int:
        with self._lock:
            return sum(cp.total_tokens for cp in self._checkpoints)

    def agent_totals(self) -> Dict[str, TokenTotals]:
        totals: Dict[str, TokenTotals] = {}
        with self._lock:
            for cp in self._checkpoints:
                entry = totals.setdefault(cp.agent_id, TokenTotals(last_updated=cp.timestamp))
                entry.input_tokens += cp.input_tokens
                entry.output_tokens += cp.output_tokens
                entry.total_tokens += cp.total_tokens
                entry.last_updated = max(entry.last_updated, cp.timestamp)
        return totals

    def agent_checkpoints(self, agent_id: str) -> List[TokenCheckpoint]:
        with self._lock:
            return [cp for cp in self._checkpoints if cp.agent_id == agent_id]

    def export(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [cp.to_dict() for cp in self._checkpoints]

    def import_checkpoints(self, entries: Iterable[Mapping[str, Any]]) -> int:
        """从检查点快照恢复记录，返回导入条数"""
        restored = [TokenCheckpoint.from_dict(entry) for entry in entries]
        with self._lock:
            self._checkpoints.extend(restored)
        return len(restored)

    def __len__(self) -> int:
        with self._lock:
            return len(self._checkpoints)


class LedgerBook:
    """进程内共享的账本注册表，按 run_id 隔离"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ledgers: Dict[str, TokenLedger] = {}

    def ledger_for(self, run_id: str) -> TokenLedger:
        with self._lock:
            ledger = self._ledgers.get(run_id)
            if ledger is None:
                ledger = TokenLedger(run_id)
                self._ledgers[run_id] = ledger
            return ledger

    def release(self, run_id: str) -> None:
        with self._lock:
            self._ledgers.pop(run_id, None)

    def run_ids(self) -> List[str]:
        with self._lock:
            return list(self._ledgers)
