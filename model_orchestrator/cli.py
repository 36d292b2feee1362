"""
Model Orchestrator CLI

Run generation, large-input processing and chunk planning against the
configured backends from the command line, or start the HTTP service.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from model_orchestrator.chunk_planner import ChunkPlanner
from model_orchestrator.config import OrchestratorConfig
from model_orchestrator.errors import ConfigValidationError, RegistryError
from model_orchestrator.routing_engine import infer_intent_tags

logger = logging.getLogger("model-orchestrator.cli")


def _read_input(value: Optional[str], file: Optional[str]) -> str:
    if file:
        return Path(file).read_text(encoding="utf-8")
    if value == "-" or value is None:
        return sys.stdin.read()
    return value


def _tags(parsed_args, text: str) -> List[str]:
    tags = [t for t in (parsed_args.tags or "").split(",") if t.strip()]
    if not tags and parsed_args.infer_tags:
        tags = sorted(infer_intent_tags(text))
    return tags


def _print_outcome(outcome) -> int:
    if outcome.ok:
        print(outcome.text)
        logger.info("answered by %s in %.0fms%s", outcome.backend, outcome.latency_ms,
                    " (fallback)" if outcome.fallback_used else "")
        return 0
    print(f"ERROR: {outcome.error_kind.value} via {outcome.backend}: {outcome.error}",
          file=sys.stderr)
    return 1


async def _generate(cfg: OrchestratorConfig, parsed_args) -> int:
    dispatcher = cfg.build_dispatcher()
    try:
        prompt = _read_input(parsed_args.prompt, parsed_args.file)
        outcome = await dispatcher.respond(
            prompt,
            intent_tags=_tags(parsed_args, prompt),
            integration_score=parsed_args.score,
            use_divide_and_conquer=parsed_args.divide,
            timeout_s=parsed_args.timeout,
        )
        return _print_outcome(outcome)
    finally:
        await dispatcher.orchestrator.aclose()


async def _process(cfg: OrchestratorConfig, parsed_args) -> int:
    dispatcher = cfg.build_dispatcher()
    try:
        text = _read_input(parsed_args.text, parsed_args.file)
        outcome = await dispatcher.process_large_input(
            parsed_args.task, text,
            intent_tags=_tags(parsed_args, parsed_args.task),
            timeout_s=parsed_args.timeout,
        )
        return _print_outcome(outcome)
    finally:
        await dispatcher.orchestrator.aclose()


def _plan(cfg: OrchestratorConfig, parsed_args) -> int:
    dispatch = cfg.dispatch_config()
    text = _read_input(parsed_args.text, parsed_args.file)
    planner = ChunkPlanner(parsed_args.chunk_size or dispatch.chunk_size, dispatch.lookback_chars)
    chunks = planner.plan(text)
    print(f"{len(text):,} chars -> {len(chunks)} chunks (size={planner.chunk_size})")
    for c in chunks:
        print(f"  [{c.index}] {c.start:>7}-{c.end:<7} {len(c.text):>6} chars")
    return 0


def _backends(cfg: OrchestratorConfig, parsed_args) -> int:
    registry = cfg.build_registry()
    print(json.dumps(registry.to_dict(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="model-orchestrator",
        description="Tag-routed generation and divide-and-conquer dispatch",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  model-orchestrator generate "Explain this stack trace" --tags reasoning
  model-orchestrator generate --file notes.txt --divide --score 0.7
  model-orchestrator process "Summarize and extract key points:" --file report.txt
  model-orchestrator plan --file report.txt --chunk-size 800
  model-orchestrator serve --port 7020
        """,
    )
    parser.add_argument("--config", type=str, default=None, help="Path to JSON config")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate a response for one prompt")
    gen.add_argument("prompt", nargs="?", default=None, help="Prompt text ('-' or omitted reads stdin)")
    gen.add_argument("--file", type=str, help="Read the prompt from a file")
    gen.add_argument("--tags", type=str, default="", help="Comma-separated intent tags")
    gen.add_argument("--infer-tags", action="store_true", help="Infer intent tags from the prompt")
    gen.add_argument("--score", type=float, default=None, help="Integration score in [0, 1]")
    gen.add_argument("--divide", action="store_true", help="Allow divide-and-conquer for large prompts")
    gen.add_argument("--timeout", type=float, default=None, help="Deadline in seconds")

    proc = sub.add_parser("process", help="Apply a task to a large input")
    proc.add_argument("task", help="Task instruction, e.g. 'Summarize:'")
    proc.add_argument("text", nargs="?", default=None, help="Input text ('-' or omitted reads stdin)")
    proc.add_argument("--file", type=str, help="Read the input from a file")
    proc.add_argument("--tags", type=str, default="", help="Comma-separated intent tags")
    proc.add_argument("--infer-tags", action="store_true", help="Infer intent tags from the task")
    proc.add_argument("--timeout", type=float, default=None, help="Deadline in seconds")

    plan = sub.add_parser("plan", help="Show how an input would be chunked")
    plan.add_argument("text", nargs="?", default=None, help="Input text ('-' or omitted reads stdin)")
    plan.add_argument("--file", type=str, help="Read the input from a file")
    plan.add_argument("--chunk-size", type=int, default=None, help="Override the configured chunk size")

    sub.add_parser("backends", help="List configured backends")

    srv = sub.add_parser("serve", help="Run the HTTP service")
    srv.add_argument("--host", type=str, default="127.0.0.1")
    srv.add_argument("--port", type=int, default=7020)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parsed_args = build_parser().parse_args(argv)

    if parsed_args.command == "serve":
        from model_orchestrator.main import serve
        serve(parsed_args.host, parsed_args.port, parsed_args.config)
        return 0

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.WARNING,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        stream=sys.stderr,
    )

    try:
        cfg = OrchestratorConfig(parsed_args.config)
        if parsed_args.command == "generate":
            return asyncio.run(_generate(cfg, parsed_args))
        if parsed_args.command == "process":
            return asyncio.run(_process(cfg, parsed_args))
        if parsed_args.command == "plan":
            return _plan(cfg, parsed_args)
        if parsed_args.command == "backends":
            return _backends(cfg, parsed_args)
    except (ConfigValidationError, RegistryError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    return 1


if __name__ == "__main__":
    sys.exit(main())
