"""Narrative Engine — launcher. Serves the HTTP API or plays a story in the terminal."""

import argparse
import asyncio
import logging
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", "13013")


def serve(args: argparse.Namespace) -> int:
    print(f"Starting API on http://localhost:{args.port} ...")
    cmd = [sys.executable, "-m", "uvicorn", "narrative_engine.app:app",
           "--host", args.host, "--port", str(args.port),
           "--log-level", args.log_level.lower()]
    if args.reload:
        cmd.append("--reload")
    env = os.environ.copy()
    env["LOG_LEVEL"] = args.log_level.upper()
    if args.canned:
        env["LLM_CANNED"] = "1"
    try:
        return subprocess.call(cmd, cwd=ROOT, env=env)
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0


def _read_choice(choices: tuple[str, ...]) -> str | None:
    """Prompt until the reader picks a numbered choice or types their own. None quits."""
    while True:
        raw = input("\n> ").strip()
        if raw.lower() in ("q", "quit", "exit"):
            return None
        if raw.isdigit() and 1 <= int(raw) <= len(choices):
            return choices[int(raw) - 1]
        if raw:
            return raw


async def _play(canned: bool) -> int:
    from narrative_engine.config import Settings, make_llm
    from narrative_engine.errors import NarrativeError
    from narrative_engine.pipeline import Orchestrator

    settings = Settings.from_env()
    if canned:
        settings.canned = True
    orchestrator = Orchestrator(
        make_llm(settings),
        language=settings.language,
        minutes_per_turn=settings.minutes_per_turn,
    )

    choice: str | None = None
    while True:
        try:
            segment = await orchestrator.advance(choice)
        except NarrativeError as e:
            print(f"\n[error] {e}")
            if input("Retry? [Y/n] ").strip().lower().startswith("n"):
                return 1
            continue

        state = orchestrator.get_state()
        print(f"\n── Act {state.current_act} · turn {state.progress} · {segment.mood} ──\n")
        print(segment.narrative_text)
        for i, option in enumerate(segment.choices, 1):
            print(f"  {i}. {option}")

        choice = _read_choice(segment.choices)
        if choice is None:
            return 0


def play(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_play(args.canned))
    except (KeyboardInterrupt, EOFError):
        print()
        return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Narrative Engine launcher")
    parser.add_argument("--log-level", default="WARNING",
                        help="Logging level (default: WARNING)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    p_serve.add_argument("--host", default=HOST)
    p_serve.add_argument("--port", type=int, default=int(PORT))
    p_serve.add_argument("--reload", action="store_true", help="Reload on code changes")
    p_serve.add_argument("--canned", action="store_true",
                         help="Answer every turn with the fixed demo segment")
    p_serve.set_defaults(func=serve)

    p_play = sub.add_parser("play", help="Play a story in the terminal")
    p_play.add_argument("--canned", action="store_true",
                        help="Answer every turn with the fixed demo segment")
    p_play.set_defaults(func=play)

    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
