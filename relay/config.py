from __future__ import annotations

import argparse
import os
from collections.abc import Mapping
from dataclasses import dataclass

from relay.handlers import DEFAULT_SPEC

_TRUTHY = {"1", "true", "yes"}


@dataclass(slots=True)
class WorkerConfig:
    handler: str = DEFAULT_SPEC
    host: str = "127.0.0.1"
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> WorkerConfig:
        env = os.environ if environ is None else environ
        return cls(
            handler=env.get("RELAY_HANDLER") or DEFAULT_SPEC,
            host=env.get("RELAY_HOST") or "127.0.0.1",
            debug=env.get("RELAY_DEBUG", "0").strip().lower() in _TRUTHY,
        )

    def merge_args(self, args: argparse.Namespace) -> WorkerConfig:
        return WorkerConfig(
            handler=getattr(args, "handler", None) or self.handler,
            host=getattr(args, "host", None) or self.host,
            debug=self.debug or bool(getattr(args, "debug", False)),
        )


def add_worker_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    parser.add_argument("--handler", help="handler spec: module[:attr] or path/to/file.py[:attr] (env RELAY_HANDLER)")
    parser.add_argument("--debug", action="store_true", help="record transport diagnostics in responses (env RELAY_DEBUG)")
    return parser
