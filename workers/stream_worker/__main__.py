from __future__ import annotations

import argparse
import asyncio

from relay.capture import install
from relay.config import WorkerConfig, add_worker_arguments
from relay.dispatcher import Dispatcher
from relay.handlers import load_handler
from workers.stream_worker.service import StreamWorker


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="relay-stream-worker", description="Serve JSON commands over stdin/stdout.")
    return add_worker_arguments(parser)


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config = WorkerConfig.from_env().merge_args(args)
    streams = install()
    worker = StreamWorker(Dispatcher(load_handler(config.handler), change_directory=True), debug=config.debug)
    asyncio.run(worker.run_stdio(streams.stdout.buffer))


if __name__ == "__main__":
    main()
