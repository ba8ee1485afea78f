from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class OversizedLine:
    """Stands in for a line that was longer than the reader limit and got dropped."""

    size: int

    def __str__(self) -> str:
        return f"<{self.size} byte line>"


async def read_lines(reader: asyncio.StreamReader) -> AsyncIterator[bytes | OversizedLine]:
    """Yield complete, non-blank lines from an asyncio stream reader.

    ``readuntil`` buffers partial reads until the newline arrives, so a
    command split over several chunks comes out whole and several commands
    delivered in one chunk come out one at a time. A trailing fragment
    without a newline is yielded when the stream ends. Lines are yielded as
    bytes and decoded by whoever parses them.

    A line over the reader limit is consumed up to its newline and yielded
    as a single :class:`OversizedLine`, after which reading goes on.
    """
    dropped = None
    while True:
        try:
            line = await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as exc:
            line = exc.partial
        except asyncio.LimitOverrunError as exc:
            # nothing before exc.consumed holds a newline
            await reader.readexactly(exc.consumed)
            dropped = (dropped or 0) + exc.consumed
            continue
        if dropped is not None:
            yield OversizedLine(dropped + len(line))
            dropped = None
            if line.endswith(b"\n"):
                continue
            break
        if not line:
            break
        line = line.strip()
        if not line:
            continue
        yield line


def as_text(line: str | bytes | OversizedLine) -> str:
    if isinstance(line, (bytes, bytearray)):
        return line.decode("utf-8", errors="replace")
    return str(line)


def dumps_frame(frame: dict) -> str:
    return json.dumps(frame, separators=(",", ":"), ensure_ascii=False, default=str) + "\n"


def encode_frame(frame: dict) -> bytes:
    return dumps_frame(frame).encode("utf-8")


def encode_line(text: str) -> bytes:
    return (text + "\n").encode("utf-8")
