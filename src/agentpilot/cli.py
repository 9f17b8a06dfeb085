"""Command-line interface."""

from __future__ import annotations

import argparse
import json
from typing import Any

from agentpilot.config import OPERATION_MODES, RunConfig, Settings
from agentpilot.controller import AgentResponse
from agentpilot.factory import build_controller
from agentpilot.util.logging import configure_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="AgentPilot CLI")
    parser.add_argument("query", type=str, help="Task to run")
    parser.add_argument("--max-iterations", type=int, dest="max_iterations")
    parser.add_argument("--mode", choices=list(OPERATION_MODES), dest="mode")
    parser.add_argument("--strategy", dest="strategy")
    parser.add_argument("--json", action="store_true", dest="json_output")
    parser.add_argument("--log-level", dest="log_level")
    parser.add_argument("--api-key", dest="api_key")
    parser.add_argument("--base-url", dest="base_url")
    parser.add_argument("--model", dest="model")
    parser.add_argument("--workspace", dest="workspace")
    parser.add_argument("--trace", action="store_true", dest="trace")
    return parser.parse_args(argv)


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    data: dict[str, Any] = settings.model_dump()
    if args.api_key:
        data["openai_api_key"] = args.api_key
    if args.base_url:
        data["openai_base_url"] = args.base_url
    if args.model:
        data["openai_model"] = args.model
    if args.log_level:
        data["log_level"] = args.log_level
    if args.workspace:
        data["workspace_dir"] = args.workspace
    if args.trace:
        data["trace_enabled"] = True
    return Settings(**data)


def format_response(response: AgentResponse) -> str:
    lines = [
        f"Session: {response.session_id}",
        f"Status: {response.status.value}",
        f"Iterations: {response.iterations}",
        f"Confidence: {response.final_confidence:.2f}",
        f"Tools used: {', '.join(response.tools_used) or 'none'}",
    ]
    if response.pending_checkpoint is not None:
        checkpoint = response.pending_checkpoint
        lines.append(
            f"Checkpoint: {checkpoint.checkpoint_id} ({checkpoint.reason}, {checkpoint.priority})"
        )
    if response.trace_path:
        lines.append(f"Trace: {response.trace_path}")
    lines.append("Answer:")
    lines.append(response.final_answer)
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = apply_overrides(Settings(), args)
    configure_logging(settings.log_level)
    controller = build_controller(settings)
    run = RunConfig(
        max_iterations=args.max_iterations,
        strategy=args.strategy,
        operation_mode=args.mode,
    )
    try:
        response = controller.process_query(args.query, run)
    finally:
        controller.shutdown()
    if args.json_output:
        print(json.dumps(response.model_dump(mode="json"), indent=2))
    else:
        print(format_response(response))
    return 0 if response.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
