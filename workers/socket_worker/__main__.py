from __future__ import annotations

import argparse
import asyncio
import sys

from relay.capture import install
from relay.config import WorkerConfig, add_worker_arguments
from relay.dispatcher import Dispatcher
from relay.handlers import load_handler
from workers.socket_worker.service import SocketWorker


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="relay-socket-worker", description="Serve JSON commands on a loopback TCP port.")
    add_worker_arguments(parser)
    parser.add_argument("--host", help="bind address (env RELAY_HOST, default 127.0.0.1)")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config = WorkerConfig.from_env().merge_args(args)
    streams = install()
    worker = SocketWorker(
        Dispatcher(load_handler(config.handler), change_directory=False),
        host=config.host,
        debug=config.debug,
        stderr=streams.stderr,
    )
    sys.exit(asyncio.run(worker.run(streams.stdout)))


if __name__ == "__main__":
    main()
