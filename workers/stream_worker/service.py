from __future__ import annotations

import asyncio
import sys

from relay.capture import OutputCapture, real_streams
from relay.dispatcher import Dispatcher
from relay.ndjson import OversizedLine, as_text, encode_frame, encode_line, read_lines
from relay.protocol import READY_LINE, STREAM_LIMIT, parallel_envelope


class StreamWorker:
    """Newline-delimited commands on stdin, one response line each on stdout."""

    def __init__(self, dispatcher: Dispatcher, *, debug: bool = False):
        self.dispatcher = dispatcher
        self.debug = debug

    async def handle_line(self, line: str | bytes | OversizedLine) -> dict:
        capture = OutputCapture()
        if self.debug:
            capture.log(f"REQUESTED: {as_text(line)}")
        response = await self.dispatcher.dispatch(line, capture)
        return parallel_envelope(response)

    async def serve(self, reader, stdout) -> None:
        stdout.write(encode_line(READY_LINE))
        stdout.flush()
        async for line in read_lines(reader):
            stdout.write(encode_frame(await self.handle_line(line)))
            stdout.flush()

    async def run_stdio(self, stdout=None) -> None:
        reader = asyncio.StreamReader(limit=STREAM_LIMIT)
        protocol = asyncio.StreamReaderProtocol(reader)
        await asyncio.get_running_loop().connect_read_pipe(lambda: protocol, sys.stdin)
        await self.serve(reader, stdout or real_streams().stdout.buffer)
