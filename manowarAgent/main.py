"""Manowar - command line entrypoint.

Usage:
    python -m manowarAgent.main run workflows/example.yaml --goal "..." [--thread ID] [--trigger ID]
    python -m manowarAgent.main resume THREAD_ID
    python -m manowarAgent.main checkpoints THREAD_ID [--limit N]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional

from manowarAgent.config.settings import get_settings
from manowarAgent.runtime.orchestrator import Orchestrator, RunHandle, RunResult
from manowarAgent.runtime.tracing import configure_tracing
from manowarAgent.tools.workflow import load_workflow
from manowarAgent.utils.error_handler import ManowarError
from manowarAgent.utils.logging_utils import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="manowar", description="Manowar workflow orchestrator")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a workflow against a goal")
    run.add_argument("workflow", help="Path to a workflow YAML file")
    run.add_argument("--goal", required=True, help="Goal for the coordinator")
    run.add_argument("--thread", default=None, help="Thread id (defaults to the run id)")
    run.add_argument("--trigger", default=None, help="Cron trigger id that started this run")

    resume = sub.add_parser("resume", help="Resume a thread from its latest checkpoint")
    resume.add_argument("thread_id")

    checkpoints = sub.add_parser("checkpoints", help="List a thread's checkpoints, newest first")
    checkpoints.add_argument("thread_id")
    checkpoints.add_argument("--limit", type=int, default=20)

    return parser


def _print_result(result: RunResult) -> None:
    print(f"\nRun {result.run_id} (thread {result.thread_id}): {result.status}")
    if result.error:
        print(f"Error: {result.error}")
    output = result.final_output
    if output:
        print(f"\n{output}")
    print(f"\nSteps: {result.steps}  Cost: {result.state.get('total_cost_wei', 0)} wei")


async def _wait(handle: RunHandle) -> RunResult:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, handle.cancel)
    except NotImplementedError:
        # Windows event loops lack signal handlers
        pass
    try:
        return await handle
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


async def async_main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logger = setup_logging(getattr(logging, settings.observability.log_level.upper(), logging.INFO),
                           settings.observability.log_dir)
    configure_tracing(settings.observability)

    orchestrator = Orchestrator(settings, record_runs_in_memory=True)
    try:
        if args.command == "run":
            workflow = load_workflow(args.workflow)
            handle = orchestrator.start(workflow, args.goal, thread_id=args.thread, trigger_id=args.trigger)
            print(f"Started run {handle.run_id} on thread {handle.thread_id} (Ctrl+C to cancel)")
            result = await _wait(handle)
            _print_result(result)
            return 0 if result.status == "success" else 1

        if args.command == "resume":
            handle = await orchestrator.resume(args.thread_id)
            print(f"Resumed thread {handle.thread_id} as run {handle.run_id}")
            result = await _wait(handle)
            _print_result(result)
            return 0 if result.status == "success" else 1

        if args.command == "checkpoints":
            for checkpoint in await orchestrator.list_checkpoints(args.thread_id, limit=args.limit):
                meta = checkpoint.metadata
                print(json.dumps({
                    "checkpoint_id": checkpoint.checkpoint_id,
                    "parent": checkpoint.parent_checkpoint_id,
                    "run_id": meta.get("run_id"),
                    "node": meta.get("node"),
                    "step": meta.get("step"),
                    "phase": checkpoint.state.get("phase"),
                    "messages": len(checkpoint.state.get("messages", [])),
                }, ensure_ascii=False))
            return 0
    except ManowarError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"❌ {e.user_message}", file=sys.stderr)
        return 1
    finally:
        await orchestrator.aclose()
    return 2


def main() -> None:
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
