#!/usr/bin/env python3
"""
Evaluation runner: drive a full chunked analysis of one bot against a running botgrader API
and print live progress plus the final scorecard.

Usage:
  python scripts/eval/run.py --bot Assistant [--api http://localhost:8000] [--api-key KEY]
  (API key falls back to BOT_API_KEY from the environment / .env)
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from botgrader.orchestrator import ChunkedAnalysisClient, RunState
from botgrader.schemas import EventType, ProgressEvent

repo_root = Path(__file__).resolve().parents[2]
load_dotenv(repo_root / ".env")


def _print_event(event: ProgressEvent) -> None:
    if event.type == EventType.PROGRESS:
        print(f"[{event.progress or 0:3d}%] {event.message}")
    elif event.type == EventType.TEST_COMPLETE and event.result is not None:
        r = event.result
        score = "-" if r.score is None else r.score
        print(f"       {r.status.value:<6} {score:>3}  {event.category.value if event.category else ''}: {r.name}")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a chunked bot analysis against the botgrader API")
    parser.add_argument("--bot", required=True, help="Bot id on the chat platform")
    parser.add_argument("--api", default=os.environ.get("BOTGRADER_API", "http://localhost:8000"), help="botgrader API base URL")
    parser.add_argument("--api-key", default=None, help="Chat platform API key (default: $BOT_API_KEY)")
    parser.add_argument("--max-retries", type=int, default=3, help="Retries per chunk on connection failure (default: 3)")
    parser.add_argument("--json", action="store_true", help="Print the final scorecard as JSON")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    api_key = args.api_key or os.environ.get("BOT_API_KEY", "").strip()
    if not api_key:
        print("API key required: pass --api-key or set BOT_API_KEY.")
        return 2

    client = ChunkedAnalysisClient(
        args.api,
        max_retries=args.max_retries,
        on_status=lambda msg: print(f"       {msg}"),
        on_event=_print_event,
    )
    outcome = asyncio.run(client.run(args.bot, api_key))

    if outcome.state != RunState.COMPLETE or outcome.scorecard is None:
        print(f"FAILED: {outcome.error}")
        done = sum(len(v) for v in outcome.live.results.values())
        print(f"{done} check(s) completed before the failure.")
        return 1

    card = outcome.scorecard
    if args.json:
        print(json.dumps(card.model_dump(mode="json"), indent=2))
        return 0
    print(f"\n{card.bot_id}: overall score {card.overall_score}/100")
    if card.response_time_ms is not None:
        print(f"Response time: {card.response_time_ms}ms")
    for category, results in card.categories.items():
        if not results:
            continue
        print(f"\n{category.value}")
        for r in results:
            print(f"  {r.status.value:<6} {r.score if r.score is not None else '-':>3}  {r.name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
