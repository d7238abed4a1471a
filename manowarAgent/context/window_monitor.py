"""
上下文窗口监控

根据 TokenLedger 的累计使用量与模型的有效窗口计算使用率，
判断是否需要清理（记忆擦除）。阈值比较使用精确的整数/分数运算：
恰好等于阈值也视为需要清理。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from fractions import Fraction
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from langchain_core.messages import BaseMessage

from manowarAgent.context.model_specs import ModelSpecCache
from manowarAgent.context.token_ledger import TokenLedger, estimate_tokens

LOGGER = logging.getLogger("manowar.context.window")

COORDINATOR_AGENT_ID = "coordinator"

Number = Union[int, float]


@dataclass(frozen=True, slots=True)
class WindowHealth:
    """单个 agent 的窗口状态"""
    usage: int
    limit: int
    usage_percent: float
    healthy: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _exact(value: Number) -> Fraction:
    # str() keeps 72.5 and 72.3 as the decimals they were written as
    return Fraction(str(value)) if isinstance(value, float) else Fraction(value)


def is_over_threshold(used: int, window: int, threshold: Number) -> bool:
    """``used / window * 100 >= threshold`` without float rounding."""
    if window <= 0:
        return True
    return Fraction(used) * 100 >= _exact(threshold) * window


def usage_percent(used: int, window: int) -> float:
    if window <= 0:
        return 100.0
    return round(used * 100 / window, 2)


def estimate_message_tokens(messages: Iterable[BaseMessage]) -> int:
    total = 0
    for message in messages:
        content = message.content
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )
        total += estimate_tokens(str(content or ""))
    return total


class ContextWindowMonitor:
    """Token 使用率监控器"""

    def __init__(self, specs: ModelSpecCache, *, cleanup_threshold: Number = 80):
        if not 0 < cleanup_threshold <= 100:
            raise ValueError(f"cleanup_threshold must be in (0, 100], got {cleanup_threshold}")
        self.specs = specs
        self.cleanup_threshold = cleanup_threshold

    def used_tokens(self, ledger: TokenLedger, baseline: int = 0, messages: Iterable[BaseMessage] = ()) -> int:
        """擦除后从 baseline 重新计量；消息估算更大时以估算为准"""
        from_ledger = max(0, ledger.cumulative_total() - baseline)
        return max(from_ledger, estimate_message_tokens(messages))

    async def assess(self, model_id: str, used: int, threshold: Optional[Number] = None) -> WindowHealth:
        window = await self.specs.effective_window(model_id)
        limit = self.cleanup_threshold if threshold is None else threshold
        over = is_over_threshold(used, window, limit)
        return WindowHealth(
            usage=used,
            limit=window,
            usage_percent=usage_percent(used, window),
            healthy=not over,
        )

    async def evaluate(
        self,
        ledger: TokenLedger,
        coordinator_model: str,
        *,
        baseline: int = 0,
        messages: Iterable[BaseMessage] = (),
        threshold: Optional[Number] = None,
    ) -> Tuple[bool, Dict[str, Dict[str, Any]]]:
        """返回 (needs_cleanup, window_health)。

        needs_cleanup 只由协调者窗口决定；其余 agent 的状态仅用于观测。
        """
        used = self.used_tokens(ledger, baseline, messages)
        coordinator = await self.assess(coordinator_model, used, threshold)
        health: Dict[str, Dict[str, Any]] = {COORDINATOR_AGENT_ID: coordinator.to_dict()}

        for agent_id, totals in ledger.agent_totals().items():
            if agent_id == COORDINATOR_AGENT_ID:
                continue
            checkpoints = ledger.agent_checkpoints(agent_id)
            model_id = checkpoints[-1].model_id if checkpoints else coordinator_model
            health[agent_id] = (await self.assess(model_id, totals.total_tokens, threshold)).to_dict()

        needs_cleanup = not coordinator.healthy
        LOGGER.info(
            f"Window usage {coordinator.usage}/{coordinator.limit} "
            f"({coordinator.usage_percent}%), needs_cleanup={needs_cleanup}"
        )
        return needs_cleanup, health
