#!/usr/bin/env python3
"""Run one experiment protocol against Gemini and print the results.

Loads GOOGLE_API_KEY (and optional GEMINI_* settings) from .env, executes
the configured protocol into an in-memory version graph, then prints a
per-run summary and, for consistency protocols, the report as JSON.

Usage:
    uv run python scripts/run_protocol.py --config experiment.json
    uv run python scripts/run_protocol.py --config experiment.json \
        --resources resources.json --report-out report.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from coherence_lab.config import OracleSettings
from coherence_lab.models import ExperimentConfig, Resource
from coherence_lab.runner import ProtocolRunner
from coherence_lab.tools.gemini_oracle import GeminiOracle
from coherence_lab.tools.scores import mean_ai_score
from coherence_lab.tools.token_usage import summarize_token_usage
from coherence_lab.version_graph import VersionGraph, plan_runs

# Load .env from repo root so GOOGLE_API_KEY is available
repo_root = Path(__file__).resolve().parent.parent
load_dotenv(repo_root / ".env")

logger = logging.getLogger("run_protocol")


def _load_resources(path: Path | None) -> list[Resource]:
    if path is None:
        return []
    data = json.loads(path.read_text(encoding="utf-8"))
    return [Resource.model_validate(item) for item in data]


def _print_summary(graph: VersionGraph) -> None:
    print("=" * 60)
    for run in graph.runs:
        nodes = graph.lineage(run.id)
        usage = summarize_token_usage(nodes)
        print(
            f"[{run.status.value:>9}] {run.label} #{run.run_number}: "
            f"{len(nodes)} node(s), {usage.total_tokens} tokens"
        )
        for node in nodes:
            print(
                f"    {node.method.value:<32} {len(node.content):>6} chars  "
                f"{len(node.annotations):>3} annotations  "
                f"AI mean {mean_ai_score(node):.1f}"
            )
    print("=" * 60)


async def _run(args: argparse.Namespace) -> int:
    config = ExperimentConfig.model_validate_json(
        args.config.read_text(encoding="utf-8")
    )
    resources = _load_resources(args.resources)

    settings = OracleSettings.from_env()
    if not settings.configured:
        print("GOOGLE_API_KEY is not set in .env", file=sys.stderr)
        return 1

    graph = VersionGraph()
    graph.add_runs(plan_runs(config))
    runner = ProtocolRunner(GeminiOracle(settings), graph.callbacks(on_log=print))

    report = await runner.run(config, resources)
    _print_summary(graph)

    if report is not None:
        payload = report.model_dump_json(indent=2)
        if args.report_out:
            args.report_out.write_text(payload, encoding="utf-8")
            print(f"Report written to {args.report_out}")
        else:
            print(payload)

    failed = [r for r in graph.runs if r.status.value == "failed"]
    return 1 if failed else 0


def main() -> None:
    """Parse arguments and run the protocol."""
    parser = argparse.ArgumentParser(
        description="Run an LLM generation/evaluation protocol"
    )
    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to an ExperimentConfig JSON file",
    )
    parser.add_argument(
        "--resources",
        type=Path,
        default=None,
        help="Path to a JSON list of resources",
    )
    parser.add_argument(
        "--report-out",
        type=Path,
        default=None,
        help="Write the consistency report here instead of stdout",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
