from __future__ import annotations

import argparse
import asyncio

from relay.capture import install
from relay.config import WorkerConfig, add_worker_arguments
from relay.dispatcher import Dispatcher
from relay.handlers import load_handler
from workers.oneshot.service import invoke


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="relay-oneshot", description="Run a single JSON command and exit.")
    add_worker_arguments(parser)
    parser.add_argument("command", nargs="?", default="", help="command JSON object")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config = WorkerConfig.from_env().merge_args(args)
    streams = install()
    dispatcher = Dispatcher(load_handler(config.handler), change_directory=True)
    asyncio.run(invoke(dispatcher, args.command, streams.stdout, debug=config.debug))


if __name__ == "__main__":
    main()
