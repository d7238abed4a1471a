"""Token accounting, context-window monitoring and memory curation."""

from manowarAgent.context.curator import CurationResult, MemoryCurator, parse_summary
from manowarAgent.context.model_specs import ModelSpec, ModelSpecCache
from manowarAgent.context.token_ledger import LedgerBook, TokenCheckpoint, TokenLedger, TokenTotals
from manowarAgent.context.window_monitor import ContextWindowMonitor, WindowHealth

__all__ = [
    "ContextWindowMonitor",
    "CurationResult",
    "LedgerBook",
    "MemoryCurator",
    "ModelSpec",
    "ModelSpecCache",
    "TokenCheckpoint",
    "TokenLedger",
    "TokenTotals",
    "WindowHealth",
    "parse_summary",
]
