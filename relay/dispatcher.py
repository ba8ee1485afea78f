from __future__ import annotations

import asyncio
import inspect
import os
import threading
import traceback
from collections.abc import Callable
from pathlib import Path
from typing import Any

from relay.capture import OutputCapture, capturing, real_streams
from relay.errors import DirectoryError
from relay.ndjson import OversizedLine
from relay.protocol import CommandEnvelope, Response

Handler = Callable[[CommandEnvelope, Callable[..., None]], Any]


def _report(message: str) -> None:
    stderr = real_streams().stderr
    print(message, file=stderr)
    stderr.flush()


class Completion:
    """Once-only completion callback handed to the handler.

    Safe to call from the event loop, synchronously from inside the handler
    or from a worker thread.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop
        self.future: asyncio.Future = loop.create_future()
        self.fired = False
        self._lock = threading.Lock()

    def __call__(self, output: Any = None) -> None:
        with self._lock:
            if self.fired:
                _report("handler called its completion callback more than once; extra call ignored")
                return
            self.fired = True
        self.loop.call_soon_threadsafe(self._resolve, output)

    def _resolve(self, output: Any) -> None:
        if not self.future.done():
            self.future.set_result(output)


class Dispatcher:
    """Turns one raw command into exactly one :class:`Response`.

    With ``change_directory`` the process really enters the command's
    ``cwd`` and stays there for later invocations. Without it the directory
    is only resolved, checked and handed over as ``command.cwd``, which keeps
    concurrent invocations independent.
    """

    def __init__(self, handler: Handler, *, change_directory: bool = True):
        self.handler = handler
        self.change_directory = change_directory

    def _enter_directory(self, cwd: Any) -> Path:
        if not isinstance(cwd, str) or not cwd:
            raise DirectoryError("command has no 'cwd' string")
        path = Path(os.path.abspath(cwd))
        if not path.is_dir():
            raise DirectoryError(f"no such directory: {cwd}")
        if self.change_directory:
            try:
                os.chdir(path)
            except OSError as exc:
                raise DirectoryError(f"cannot enter {cwd}: {exc.strerror or exc}") from exc
        return path

    async def dispatch(self, raw: str | bytes | OversizedLine, capture: OutputCapture) -> Response:
        completion = Completion(asyncio.get_running_loop())
        with capturing(capture):
            try:
                command = CommandEnvelope.parse(raw, output=capture)
                command.cwd = self._enter_directory(command.get("cwd"))
                returned = self.handler(command, completion)
                if inspect.isawaitable(returned):
                    returned = await returned
                    if returned is not None and not completion.fired:
                        completion(returned)
            except (Exception, SystemExit) as exc:  # noqa: BLE001
                if not completion.fired:
                    capture.flush()
                    return Response.failure(exc, capture)
                # the response is already decided; a late failure cannot change it
                _report("handler failed after completing:\n" + "".join(traceback.format_exception(exc)))
            output = await completion.future
            capture.flush()
            try:
                return Response.success(output, capture)
            except Exception as exc:  # noqa: BLE001
                # result has no usable truth value
                return Response.failure(exc, capture)
