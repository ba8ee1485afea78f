from __future__ import annotations

import asyncio
import io
import json

import pytest

from relay.dispatcher import Dispatcher
from workers.stream_worker.__main__ import build_parser
from workers.stream_worker.service import StreamWorker


def _echo(command, done):
    if command.get("log"):
        command.output.log(command["log"])
    done(command.get("n"))


async def _serve(worker: StreamWorker, *chunks: bytes, limit: int = 2**16) -> list[str]:
    reader = asyncio.StreamReader(limit=limit)
    for chunk in chunks:
        reader.feed_data(chunk)
    reader.feed_eof()
    out = io.BytesIO()
    await worker.serve(reader, out)
    return out.getvalue().decode("utf-8").splitlines()


@pytest.mark.asyncio
async def test_ready_line_comes_first(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    lines = await _serve(StreamWorker(Dispatcher(_echo)))
    assert lines == ["ipc-ready"]


@pytest.mark.asyncio
async def test_split_and_merged_chunks_are_reassembled(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    cwd = json.dumps(str(tmp_path))
    lines = await _serve(
        StreamWorker(Dispatcher(_echo)),
        f'{{"cwd": {cwd}, "n": 1}}\n{{"cwd": {cwd}, "n"'.encode(),
        b": 2}\n\n",
        f'{{"cwd": {cwd}, "n": 3}}'.encode(),
    )

    assert lines[0] == "ipc-ready"
    assert [json.loads(line)["result"] for line in lines[1:]] == [1, 2, 3]


@pytest.mark.asyncio
async def test_failures_are_contained(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    lines = await _serve(
        StreamWorker(Dispatcher(_echo)),
        b"not json\n",
        json.dumps({"cwd": str(tmp_path), "n": 7}).encode() + b"\n",
    )
    failed, ok = (json.loads(line) for line in lines[1:])

    assert "error" in failed and "result" not in failed
    assert failed["stdout"] == [] and failed["stderr"] == []
    assert ok == {"stdout": [], "stderr": [], "result": 7}


@pytest.mark.asyncio
async def test_oversized_command_is_rejected_and_serving_continues(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    big = json.dumps({"cwd": ".", "pad": "x" * 200}).encode()
    lines = await _serve(StreamWorker(Dispatcher(_echo)), big + b"\n", b'{"cwd": ".", "n": 7}\n', limit=64)
    rejected, ok = (json.loads(line) for line in lines[1:])

    assert rejected["error"] == f"ParseError: command of {len(big) + 1} bytes exceeds the line limit"
    assert "result" not in rejected
    assert ok["result"] == 7


@pytest.mark.asyncio
async def test_invalid_utf8_is_rejected(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    lines = await _serve(StreamWorker(Dispatcher(_echo)), b'{"cwd": ".", "n": "\xff"}\n')
    frame = json.loads(lines[1])

    assert frame["error"].startswith("ParseError: invalid command JSON")
    assert "utf-8" in frame["error"]


@pytest.mark.asyncio
async def test_output_does_not_leak_into_next_response(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    lines = await _serve(
        StreamWorker(Dispatcher(_echo)),
        json.dumps({"cwd": str(tmp_path), "log": "first only"}).encode() + b"\n",
        json.dumps({"cwd": str(tmp_path)}).encode() + b"\n",
    )
    first, second = (json.loads(line) for line in lines[1:])

    assert first["stdout"] == ["first only"]
    assert second["stdout"] == []


@pytest.mark.asyncio
async def test_debug_records_request(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    raw = json.dumps({"cwd": str(tmp_path)})
    frame = await StreamWorker(Dispatcher(_echo), debug=True).handle_line(raw)
    assert frame["stdout"] == [f"REQUESTED: {raw}"]


def test_parser_accepts_handler_and_debug():
    args = build_parser().parse_args(["--handler", "handlers/echo/index.py", "--debug"])
    assert args.handler == "handlers/echo/index.py"
    assert args.debug is True
