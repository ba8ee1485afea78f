from __future__ import annotations

import logging
import sys

logger = logging.getLogger("relay.handlers.echo")


def handle(command, done):
    """Echo ``message`` back as the result.

    ``fail`` raises before completing, ``warn`` goes to stderr and
    ``note`` is logged through :mod:`logging`.
    """
    if command.get("fail"):
        raise ValueError(str(command["fail"]))
    print(f"echo in {command.cwd}")
    if command.get("warn"):
        print(command["warn"], file=sys.stderr)
    if command.get("note"):
        logger.info(command["note"])
    message = command.get("message")
    done({"echo": message} if message else None)
