"""Main entry point for TuringTable.

Two commands:
- serve: run a live table over WebSockets (Gemini seats if GEMINI_API_KEY is
  set, scripted seats otherwise)
- simulate: play a whole game offline on a virtual clock and print it
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from .agents.completion import ScriptedCompletionProvider
from .core.config import GameConfig
from .core.events import ParticipantConnected
from .core.phase_machine import PhaseStateMachine
from .core.scheduler import AsyncioScheduler
from .simulation import run_simulation
from .utils.logger import setup_logger
from .voice.table_server import TableServer, run_server

logger = logging.getLogger("turingtable.main")


async def serve(config: GameConfig):
    """Run one table until interrupted."""
    scheduler = AsyncioScheduler()
    server = TableServer(config)
    machine = PhaseStateMachine(config, scheduler=scheduler, audio=server)

    if config.gemini_api_key:
        # Imported here so the offline commands never load the SDK
        from .agents.gemini_provider import GeminiCompletionProvider

        machine.set_completion(GeminiCompletionProvider(machine.registry, config))
        logger.info(f"AI seats powered by {config.gemini_model}")
    else:
        logger.warning("GEMINI_API_KEY not set. AI seats will use scripted lines.")
        machine.set_completion(ScriptedCompletionProvider(scheduler, latency=config.scripted_latency))

    server.attach(machine)
    for participant in machine.registry.players:
        if participant.is_ai:
            machine.dispatch(ParticipantConnected(participant.id))

    await run_server(server)


def simulate(config: GameConfig, seed, quiet: bool) -> int:
    report = run_simulation(config, seed=seed)

    if not quiet:
        print("\n".join(f"[{e.created_at:6.1f}] {e.speaker_name}: {e.text}" for e in report.transcript))
        print()
    print(f"Phases: {' -> '.join(report.phases)}")
    print(f"Eliminated: {', '.join(report.eliminated) or 'nobody'}")
    print(f"Outcome: {report.outcome} after {report.elapsed:.0f}s of table time")
    return 0 if report.finished else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="turingtable", description="Reverse Turing test table")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--save-logs", action="store_true", help="Also write logs to data/games/")
    commands = parser.add_subparsers(dest="command", required=True)

    serve_parser = commands.add_parser("serve", help="Run a live table over WebSockets")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--no-facilitator", action="store_true", help="Disable the secret facilitator")

    simulate_parser = commands.add_parser("simulate", help="Play a full game offline")
    simulate_parser.add_argument("--seed", type=int, default=None)
    simulate_parser.add_argument("--human-name", default=None)
    simulate_parser.add_argument("--quiet", "-q", action="store_true", help="Skip the transcript")
    return parser


def main(argv=None):
    """Main entry point for TuringTable."""
    args = build_parser().parse_args(argv)

    load_dotenv()
    setup_logger(verbose=args.verbose, save_to_file=args.save_logs)

    overrides = {}
    if args.command == "serve":
        if args.host:
            overrides["server_host"] = args.host
        if args.port:
            overrides["server_port"] = args.port
        if args.no_facilitator:
            overrides["enable_facilitator"] = False
    elif args.command == "simulate":
        if args.human_name:
            overrides["human_name"] = args.human_name
        if args.seed is not None:
            overrides["random_seed"] = args.seed

    try:
        config = GameConfig.from_env(**overrides)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    logger.info("=" * 60)
    logger.info(f"TURINGTABLE - {args.command.upper()}")
    logger.info("=" * 60)

    try:
        if args.command == "serve":
            asyncio.run(serve(config))
        else:
            sys.exit(simulate(config, config.random_seed, args.quiet))
    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted by user")
    except Exception as e:
        logger.error(f"❌ Table error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
