from __future__ import annotations

import asyncio
from typing import TextIO

from relay.capture import OutputCapture, real_streams
from relay.dispatcher import Dispatcher
from relay.ndjson import as_text, dumps_frame, encode_frame, read_lines
from relay.protocol import (
    EXIT_DISPATCH_FAILURE,
    EXIT_FORCE_BREAK,
    FORCE_BREAK,
    STREAM_LIMIT,
    Response,
    tagged_envelope,
)

FORCE_BREAK_LINE = FORCE_BREAK.encode("ascii")


class SocketWorker:
    """Loopback TCP server speaking newline-delimited JSON.

    Every request gets its own capture and its own resolved working
    directory, so connections served at the same time stay apart. A failed
    dispatch or a ``FORCE-BREAK`` line ends the whole worker.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        debug: bool = False,
        stderr: TextIO | None = None,
    ):
        self.dispatcher = dispatcher
        self.host = host
        self.port = port
        self.debug = debug
        self.stderr = stderr
        self.server: asyncio.AbstractServer | None = None
        self._exit: asyncio.Future[int] | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    async def start(self) -> int:
        self._exit = asyncio.get_running_loop().create_future()
        self.server = await asyncio.start_server(self._serve_connection, self.host, self.port, limit=STREAM_LIMIT)
        self.port = self.server.sockets[0].getsockname()[1]
        return self.port

    def terminate(self, code: int) -> None:
        if self._exit is not None and not self._exit.done():
            self._exit.set_result(code)

    async def wait_closed(self) -> int:
        assert self._exit is not None and self.server is not None
        code = await self._exit
        self.server.close()
        for writer in list(self._writers):
            writer.close()
        return code

    async def run(self, announce: TextIO) -> int:
        port = await self.start()
        announce.write(f"{port}\n")
        announce.flush()
        return await self.wait_closed()

    async def _send(self, writer: asyncio.StreamWriter, frame: dict) -> None:
        writer.write(encode_frame(frame))
        await writer.drain()

    async def _serve_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.add(writer)
        capture = OutputCapture()
        try:
            async for line in read_lines(reader):
                if line == FORCE_BREAK_LINE:
                    try:
                        await self._send(writer, tagged_envelope(Response(capture)))
                    finally:
                        self.terminate(EXIT_FORCE_BREAK)
                    return
                capture = OutputCapture()
                if self.debug:
                    capture.log(f"REQUESTED: {as_text(line)}")
                response = await self.dispatcher.dispatch(line, capture)
                frame = tagged_envelope(response)
                if response.ok:
                    await self._send(writer, frame)
                    continue
                stderr = self.stderr or real_streams().stderr
                stderr.write(dumps_frame(frame))
                stderr.flush()
                try:
                    await self._send(writer, frame)
                finally:
                    self.terminate(EXIT_DISPATCH_FAILURE)
                return
        except ConnectionError:
            return
        finally:
            self._writers.discard(writer)
            writer.close()
