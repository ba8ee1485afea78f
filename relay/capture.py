from __future__ import annotations

import io
import logging
import pprint
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, NamedTuple, TextIO

STDOUT = "stdout"
STDERR = "stderr"
LEVELS = {STDOUT: "INFO", STDERR: "ERROR"}


def render(value: Any) -> str:
    """Human-readable text for one logged value. Never raises."""
    if isinstance(value, str):
        return value
    try:
        return pprint.pformat(value, width=100, sort_dicts=False)
    except Exception:  # noqa: BLE001
        return f"<{type(value).__name__} object at {id(value):#x}>"


@dataclass(frozen=True, slots=True)
class OutputEntry:
    channel: str
    text: str

    @property
    def level(self) -> str:
        return LEVELS[self.channel]

    def lines(self) -> list[str]:
        return self.text.split("\n")


class OutputCapture:
    """Diagnostic output collected during one invocation.

    Handlers get the capture as ``command.output`` and may log to it
    directly. While a capture is active (see :func:`capturing`) it also
    receives ``print`` output, writes to ``sys.stderr`` and logging records,
    provided :func:`install` has been called.
    """

    def __init__(self, listener: Callable[[OutputEntry], None] | None = None):
        self.entries: list[OutputEntry] = []
        self.listener = listener
        self._pending = {STDOUT: "", STDERR: ""}

    def log(self, *args: Any) -> None:
        for arg in args:
            self.append(STDOUT, render(arg))

    def error(self, *args: Any) -> None:
        for arg in args:
            self.append(STDERR, render(arg))

    def append(self, channel: str, text: str) -> None:
        entry = OutputEntry(channel, text)
        self.entries.append(entry)
        if self.listener is not None:
            self.listener(entry)

    def write(self, channel: str, text: str) -> int:
        # stream writes arrive in fragments; only completed lines become entries
        *lines, rest = (self._pending[channel] + text).split("\n")
        self._pending[channel] = rest
        for line in lines:
            self.append(channel, line)
        return len(text)

    def flush(self) -> None:
        for channel, rest in self._pending.items():
            if rest:
                self._pending[channel] = ""
                self.append(channel, rest)

    def reset(self) -> None:
        self.entries.clear()
        self._pending = {STDOUT: "", STDERR: ""}

    @property
    def stdout(self) -> list[str]:
        return [e.text for e in self.entries if e.channel == STDOUT]

    @property
    def stderr(self) -> list[str]:
        return [e.text for e in self.entries if e.channel == STDERR]

    def records(self) -> list[dict[str, str]]:
        return [{"level": e.level, "message": line} for e in self.entries for line in e.lines()]


_active: ContextVar[OutputCapture | None] = ContextVar("relay_output_capture", default=None)


def active_capture() -> OutputCapture | None:
    return _active.get()


@contextmanager
def capturing(capture: OutputCapture) -> Iterator[OutputCapture]:
    token = _active.set(capture)
    try:
        yield capture
    finally:
        _active.reset(token)


class CaptureStream(io.TextIOBase):
    """Stand-in for ``sys.stdout``/``sys.stderr`` routing to the active capture."""

    def __init__(self, channel: str, fallback: TextIO):
        self.channel = channel
        self.fallback = fallback

    @property
    def encoding(self) -> str:
        return getattr(self.fallback, "encoding", None) or "utf-8"

    def writable(self) -> bool:
        return True

    def isatty(self) -> bool:
        return False

    def fileno(self) -> int:
        return self.fallback.fileno()

    def write(self, text: str) -> int:
        capture = _active.get()
        if capture is None:
            return self.fallback.write(text)
        return capture.write(self.channel, text)

    def flush(self) -> None:
        if _active.get() is None:
            self.fallback.flush()


class CaptureHandler(logging.Handler):
    """Logging handler that files records into the active capture."""

    def __init__(self, fallback: TextIO, level: int = logging.NOTSET):
        super().__init__(level)
        self.fallback = fallback
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            capture = _active.get()
            if capture is None:
                self.fallback.write(message + "\n")
                self.fallback.flush()
                return
            capture.append(STDERR if record.levelno >= logging.ERROR else STDOUT, message)
        except Exception:  # noqa: BLE001
            self.handleError(record)


class RealStreams(NamedTuple):
    stdout: TextIO
    stderr: TextIO


_installed: RealStreams | None = None


def install(level: int = logging.INFO) -> RealStreams:
    """Reroute the process-wide output entry points through captures.

    Called once at worker startup. Returns the original streams, which the
    transports keep using for protocol traffic.
    """
    global _installed
    if _installed is not None:
        return _installed
    real = RealStreams(sys.stdout, sys.stderr)
    sys.stdout = CaptureStream(STDOUT, real.stdout)
    sys.stderr = CaptureStream(STDERR, real.stderr)
    root = logging.getLogger()
    root.addHandler(CaptureHandler(real.stderr))
    root.setLevel(level)
    _installed = real
    return real


def real_streams() -> RealStreams:
    if _installed is not None:
        return _installed
    return RealStreams(sys.stdout, sys.stderr)
