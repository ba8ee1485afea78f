from __future__ import annotations

import asyncio
import json
import sys
from collections import deque
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from relay.errors import CommandFailedError, ProtocolError, WorkerCrashedError
from relay.ndjson import encode_frame, encode_line
from relay.protocol import ERR_PREFIX, FORCE_BREAK, OUT_PREFIX, READY_LINE, STREAM_LIMIT


@dataclass(slots=True)
class RelayResponse:
    result: Any = None
    error: str | None = None
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)

    @classmethod
    def from_envelope(cls, frame: dict) -> RelayResponse:
        stdout = [str(line) for line in frame.get("stdout", [])]
        stderr = [str(line) for line in frame.get("stderr", [])]
        for record in frame.get("output", []):
            target = stderr if record.get("level") == "ERROR" else stdout
            target.append(str(record.get("message", "")))
        return cls(result=frame.get("result"), error=frame.get("error"), stdout=stdout, stderr=stderr)

    def raise_for_error(self) -> RelayResponse:
        if self.error is not None:
            raise CommandFailedError(self.error, self)
        return self


def decode_frame(line: bytes | str) -> dict:
    text = line.decode("utf-8", errors="replace") if isinstance(line, (bytes, bytearray)) else line
    try:
        frame = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"worker sent a non-JSON line: {text[:200]!r}") from exc
    if not isinstance(frame, dict):
        raise ProtocolError(f"worker sent {type(frame).__name__}, expected an object")
    return frame


class WorkerProcess:
    """A worker child process plus a rolling tail of its stderr."""

    module = ""

    def __init__(self, handler: str, *, python: str | None = None, cwd=None, env=None, debug: bool = False):
        self.handler = handler
        self.python = python or sys.executable
        self.cwd = cwd
        self.env = env
        self.debug = debug
        self.proc: asyncio.subprocess.Process | None = None
        self._stderr_tail: deque[str] = deque(maxlen=80)
        self._stderr_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self.proc is not None and self.proc.returncode is None

    def argv(self, *extra: str) -> list[str]:
        argv = [self.python, "-m", self.module, "--handler", self.handler]
        if self.debug:
            argv.append("--debug")
        return [*argv, *extra]

    async def spawn(self, *extra: str) -> None:
        self._stderr_tail.clear()
        self.proc = await asyncio.create_subprocess_exec(
            *self.argv(*extra),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            env=self.env,
            limit=STREAM_LIMIT,
        )
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    async def _drain_stderr(self) -> None:
        assert self.proc and self.proc.stderr
        while True:
            line = await self.proc.stderr.readline()
            if not line:
                return
            self._stderr_tail.append(line.decode("utf-8", errors="replace").rstrip())

    async def crashed(self, reason: str) -> WorkerCrashedError:
        if self.proc is not None:
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self.proc.wait(), timeout=2)
        if self._stderr_task is not None:
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(asyncio.shield(self._stderr_task), timeout=1)
        code = self.proc.returncode if self.proc else None
        return WorkerCrashedError(f"{reason} (exit code {code}); stderr tail:\n" + "\n".join(self._stderr_tail))

    async def read_line(self) -> bytes:
        assert self.proc and self.proc.stdout
        line = await self.proc.stdout.readline()
        if not line:
            raise await self.crashed("worker exited")
        return line

    async def close(self, *, timeout: float = 5.0) -> int | None:
        if self.proc is None:
            return None
        if self.proc.returncode is None:
            if self.proc.stdin is not None:
                self.proc.stdin.close()
            try:
                await asyncio.wait_for(self.proc.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                self.proc.kill()
                await self.proc.wait()
        if self._stderr_task is not None:
            await self._stderr_task
        return self.proc.returncode

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def start(self) -> None:
        raise NotImplementedError


class StreamWorkerClient(WorkerProcess):
    module = "workers.stream_worker"

    async def start(self) -> None:
        if self.running:
            return
        await self.spawn()
        line = await self.read_line()
        if line.decode("utf-8", errors="replace").strip() != READY_LINE:
            raise await self.crashed(f"worker did not announce readiness, got {line[:200]!r}")

    async def request(self, command: dict) -> RelayResponse:
        await self.start()
        async with self._lock:
            assert self.proc and self.proc.stdin
            try:
                self.proc.stdin.write(encode_frame(command))
                await self.proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                raise await self.crashed("worker stopped reading commands") from None
            frame = decode_frame(await self.read_line())
        return RelayResponse.from_envelope(frame).raise_for_error()


class SocketWorkerClient(WorkerProcess):
    module = "workers.socket_worker"
    host = "127.0.0.1"

    def __init__(self, handler: str, **kwargs):
        super().__init__(handler, **kwargs)
        self.port: int | None = None

    async def start(self) -> None:
        if self.running:
            return
        await self.spawn()
        line = await self.read_line()
        try:
            self.port = int(line.decode("utf-8", errors="replace").strip())
        except ValueError:
            raise await self.crashed(f"worker did not announce a port, got {line[:200]!r}") from None

    async def _exchange(self, data: bytes) -> dict:
        reader, writer = await asyncio.open_connection(self.host, self.port, limit=STREAM_LIMIT)
        try:
            writer.write(data)
            await writer.drain()
            line = await reader.readline()
        finally:
            writer.close()
            with suppress(ConnectionError):
                await writer.wait_closed()
        if not line:
            raise await self.crashed("worker closed the connection without answering")
        return decode_frame(line)

    async def request(self, command: dict) -> RelayResponse:
        await self.start()
        frame = await self._exchange(encode_frame(command))
        return RelayResponse.from_envelope(frame).raise_for_error()

    async def force_break(self) -> tuple[RelayResponse, int]:
        await self.start()
        assert self.proc is not None
        frame = await self._exchange(encode_line(FORCE_BREAK))
        code = await self.proc.wait()
        return RelayResponse.from_envelope(frame), code

    async def close(self, *, timeout: float = 5.0) -> int | None:
        # the socket worker ignores stdin EOF; it has to be stopped
        if self.running:
            assert self.proc is not None
            self.proc.terminate()
        return await super().close(timeout=timeout)


async def run_oneshot(
    handler: str,
    command: dict,
    *,
    python: str | None = None,
    cwd=None,
    env=None,
) -> RelayResponse:
    proc = await asyncio.create_subprocess_exec(
        python or sys.executable,
        "-m",
        "workers.oneshot",
        "--handler",
        handler,
        json.dumps(command),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        env=env,
    )
    out, err = await proc.communicate()
    stdout: list[str] = []
    stderr: list[str] = []
    final = None
    for line in out.decode("utf-8", errors="replace").splitlines():
        if line.startswith(OUT_PREFIX):
            stdout.append(line[len(OUT_PREFIX):])
        elif line.startswith(ERR_PREFIX):
            stderr.append(line[len(ERR_PREFIX):])
        elif line.strip():
            final = line
    if final is None:
        tail = err.decode("utf-8", errors="replace")[-4000:]
        raise WorkerCrashedError(f"one-shot worker gave no response (exit code {proc.returncode}); stderr tail:\n{tail}")
    response = RelayResponse.from_envelope(decode_frame(final))
    response.stdout = stdout
    response.stderr = stderr
    return response.raise_for_error()
