from __future__ import annotations

from typing import TextIO

from relay.capture import STDERR, OutputCapture, OutputEntry
from relay.dispatcher import Dispatcher
from relay.ndjson import dumps_frame
from relay.protocol import ERR_PREFIX, OUT_PREFIX, bare_envelope


def prefixed_lines(entry: OutputEntry) -> list[str]:
    prefix = ERR_PREFIX if entry.channel == STDERR else OUT_PREFIX
    return [prefix + line for line in entry.lines()]


async def invoke(dispatcher: Dispatcher, raw: str, out: TextIO, *, debug: bool = False) -> dict:
    """Run one command, streaming diagnostics ahead of the final JSON line."""

    def emit(entry: OutputEntry) -> None:
        for line in prefixed_lines(entry):
            out.write(line + "\n")
        out.flush()

    capture = OutputCapture(listener=emit)
    if debug:
        capture.log(f"REQUESTED: {raw}")
    response = await dispatcher.dispatch(raw, capture)
    frame = bare_envelope(response)
    out.write(dumps_frame(frame))
    out.flush()
    return frame
