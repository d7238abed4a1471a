"""Logging utilities for the Manowar orchestrator."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "manowar"


def setup_logging(level: int = logging.INFO, logs_dir: Optional[str] = "logs") -> logging.Logger:
    """Setup logging configuration for the orchestrator.

    Args:
        level: Console logging level floor (console never goes below WARNING)
        logs_dir: Directory for the detailed log file, None disables the file handler

    Returns:
        Configured root ``manowar`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture all child logs
    logger.propagate = False

    logger.handlers = []

    log_file = None
    if logs_dir:
        directory = Path(logs_dir)
        directory.mkdir(parents=True, exist_ok=True)
        log_file = directory / f"manowar_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)

    # Console handler (user-friendly)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(max(level, logging.WARNING))
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    logger.info("=" * 80)
    logger.info("Manowar session started")
    if log_file:
        logger.info(f"Log file: {log_file}")
    logger.info("=" * 80)

    return logger


def log_tool_call(logger: logging.Logger, tool_name: str, args: Dict[str, Any]) -> None:
    """Log tool invocation.

    Args:
        logger: Logger instance
        tool_name: Name of the tool being called
        args: Tool arguments
    """
    logger.info(f"Tool call: {tool_name}")
    logger.debug(f"  Arguments: {json.dumps(args, ensure_ascii=False, default=str)}")


def log_tool_result(logger: logging.Logger, tool_name: str, result: Any, success: bool = True) -> None:
    """Log tool execution result.

    Args:
        logger: Logger instance
        tool_name: Name of the tool
        result: Tool execution result
        success: Whether the tool executed successfully
    """
    status = "✓ Success" if success else "✗ Failed"
    logger.info(f"Tool result: {tool_name} - {status}")

    result_str = str(result)
    if len(result_str) > 500:
        result_str = result_str[:500] + "... (truncated)"
    logger.debug(f"  Result: {result_str}")


def log_routing_decision(logger: logging.Logger, from_node: str, decision: str, reason: str = "") -> None:
    """Log routing decision.

    Args:
        logger: Logger instance
        from_node: Source node making the decision
        decision: Routing destination
        reason: Reason for the routing decision
    """
    logger.info(f"Routing decision from {from_node}: → {decision}")
    if reason:
        logger.info(f"  → Reason: {reason}")


def log_node_entry(logger: logging.Logger, node_name: str, state: Dict[str, Any]) -> None:
    """Log node entry with a compact state snapshot."""
    logger.info(f"\n{'#'*80}")
    logger.info(f"# ENTERING NODE: {node_name}")
    logger.info(f"{'#'*80}")
    logger.info("State snapshot:")
    logger.info(f"  - run_id: {state.get('run_id')}")
    logger.info(f"  - round_trips: {state.get('round_trips', 0)}/{state.get('max_round_trips')}")
    logger.info(f"  - loop: {state.get('loop_count', 1)}/{state.get('max_loops', 1)}")
    logger.info(f"  - messages: {len(state.get('messages', []))}")
    logger.info(f"  - completed_actions: {len(state.get('completed_actions', []))}")
    logger.info(f"  - needs_cleanup: {state.get('needs_cleanup', False)}")


def log_node_exit(logger: logging.Logger, node_name: str, updates: Dict[str, Any]) -> None:
    """Log node exit with state updates.

    Args:
        logger: Logger instance
        node_name: Name of the node being exited
        updates: State updates returned by the node
    """
    logger.info(f"# EXITING NODE: {node_name}")
    for key, value in updates.items():
        if key in ("messages", "events", "completed_actions", "context_enhancements"):
            logger.info(f"  - {key}: +{len(value)} entries")
        else:
            preview = str(value)
            if len(preview) > 200:
                preview = preview[:200] + "..."
            logger.info(f"  - {key}: {preview}")


def log_error(logger: logging.Logger, error: Exception, context: str = "") -> None:
    """Log error with context."""
    logger.error(f"Error occurred: {type(error).__name__}: {str(error)}")
    if context:
        logger.error(f"  Context: {context}")
    logger.debug("Full traceback:", exc_info=error)
