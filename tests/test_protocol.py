import pytest

from relay.capture import OutputCapture
from relay.errors import ParseError
from relay.ndjson import OversizedLine
from relay.protocol import (
    CommandEnvelope,
    Response,
    bare_envelope,
    parallel_envelope,
    render_error,
    tagged_envelope,
)


def test_parse_keeps_payload_verbatim():
    command = CommandEnvelope.parse('{"cwd": "/tmp", "x": 1, "nested": {"a": [1]}}')

    assert command.payload == {"cwd": "/tmp", "x": 1, "nested": {"a": [1]}}
    assert command["x"] == 1
    assert command.get("missing") is None
    assert "nested" in command
    assert command.cwd is None


def test_parse_accepts_bytes_and_shares_capture():
    capture = OutputCapture()
    command = CommandEnvelope.parse(b'{"cwd": "."}', output=capture)
    assert command.get("cwd") == "."
    assert command.output is capture


@pytest.mark.parametrize("raw", ["not json", "", "[1, 2]", "42", b"\xff\xfe"])
def test_parse_rejects_anything_but_objects(raw):
    with pytest.raises(ParseError):
        CommandEnvelope.parse(raw)


def test_parse_rejects_oversized_line():
    with pytest.raises(ParseError, match="command of 70000 bytes exceeds the line limit"):
        CommandEnvelope.parse(OversizedLine(70000))


def test_result_present_only_when_truthy():
    capture = OutputCapture()
    assert parallel_envelope(Response.success({"y": 2}, capture)) == {"stdout": [], "stderr": [], "result": {"y": 2}}
    for falsy in (None, 0, "", [], {}, False):
        assert "result" not in parallel_envelope(Response.success(falsy, capture))


def test_failure_keeps_output_in_every_shape():
    capture = OutputCapture()
    capture.log("before")
    response = Response.failure(ValueError("boom"), capture)

    assert not response.ok
    assert parallel_envelope(response) == {"stdout": ["before"], "stderr": [], "error": "ValueError: boom"}
    assert tagged_envelope(response) == {"output": [{"level": "INFO", "message": "before"}], "error": "ValueError: boom"}
    assert bare_envelope(response) == {"error": "ValueError: boom"}


def test_bare_envelope_success():
    capture = OutputCapture()
    assert bare_envelope(Response.success(None, capture)) == {}
    assert bare_envelope(Response.success(5, capture)) == {"result": 5}


def test_render_error_never_raises():
    class Weird(Exception):
        def __str__(self):
            raise RuntimeError("nope")

    assert render_error(Weird()) == "Weird"
    assert render_error(KeyError("k")) == "KeyError: 'k'"
    assert render_error(RuntimeError()) == "RuntimeError"
