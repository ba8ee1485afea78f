from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from relay.capture import OutputCapture
from relay.errors import ParseError
from relay.ndjson import OversizedLine

READY_LINE = "ipc-ready"
FORCE_BREAK = "FORCE-BREAK"
OUT_PREFIX = "//OUT: "
ERR_PREFIX = "//ERR: "

EXIT_DISPATCH_FAILURE = 1
EXIT_FORCE_BREAK = 3

# asyncio's default 64 KiB line limit is too small for real commands
STREAM_LIMIT = 16 * 1024 * 1024


@dataclass(slots=True)
class CommandEnvelope:
    """One parsed command as handed to the handler.

    ``payload`` is the JSON object exactly as received. ``cwd`` is the
    resolved working directory once the dispatcher has entered it, and
    ``output`` is the invocation's capture.
    """

    payload: dict[str, Any]
    cwd: Path | None = None
    output: OutputCapture = field(default_factory=OutputCapture)

    @classmethod
    def parse(cls, raw: str | bytes | OversizedLine, *, output: OutputCapture | None = None) -> CommandEnvelope:
        if isinstance(raw, OversizedLine):
            raise ParseError(f"command of {raw.size} bytes exceeds the line limit")
        try:
            text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
            payload = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ParseError(f"invalid command JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ParseError(f"command must be a JSON object, got {type(payload).__name__}")
        return cls(payload=payload, output=output if output is not None else OutputCapture())

    def __getitem__(self, key: str) -> Any:
        return self.payload[key]

    def __contains__(self, key: str) -> bool:
        return key in self.payload

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)


def render_error(exc: BaseException) -> str:
    try:
        message = str(exc)
    except Exception:  # noqa: BLE001
        message = ""
    name = type(exc).__name__
    return f"{name}: {message}" if message else name


@dataclass(slots=True)
class Response:
    capture: OutputCapture
    result: Any = None
    error: str | None = None

    @classmethod
    def success(cls, output: Any, capture: OutputCapture) -> Response:
        return cls(capture, result=output if output else None)

    @classmethod
    def failure(cls, exc: BaseException, capture: OutputCapture) -> Response:
        return cls(capture, error=render_error(exc))

    @property
    def ok(self) -> bool:
        return self.error is None


def _outcome(response: Response) -> dict[str, Any]:
    if response.error is not None:
        return {"error": response.error}
    if response.result is not None:
        return {"result": response.result}
    return {}


def parallel_envelope(response: Response) -> dict[str, Any]:
    """Stream worker shape: separate stdout and stderr sequences."""
    return {"stdout": response.capture.stdout, "stderr": response.capture.stderr, **_outcome(response)}


def tagged_envelope(response: Response) -> dict[str, Any]:
    """Socket worker shape: one sequence of level-tagged records."""
    return {"output": response.capture.records(), **_outcome(response)}


def bare_envelope(response: Response) -> dict[str, Any]:
    """One-shot shape: output already went out as prefixed lines."""
    return _outcome(response)
