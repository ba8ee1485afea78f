from __future__ import annotations

import asyncio

import pytest

from relay.ndjson import OversizedLine, as_text, read_lines


async def _collect(reader: asyncio.StreamReader) -> list:
    return [line async for line in read_lines(reader)]


@pytest.mark.asyncio
async def test_lines_come_out_as_stripped_bytes():
    reader = asyncio.StreamReader()
    reader.feed_data(b' {"a": 1} \r\n\n{"b": 2}')
    reader.feed_eof()

    assert await _collect(reader) == [b'{"a": 1}', b'{"b": 2}']


@pytest.mark.asyncio
async def test_oversized_line_is_replaced_and_reading_goes_on():
    reader = asyncio.StreamReader(limit=16)
    reader.feed_data(b"x" * 40 + b"\nok\n")
    reader.feed_eof()

    assert await _collect(reader) == [OversizedLine(41), b"ok"]


@pytest.mark.asyncio
async def test_oversized_line_arriving_in_pieces():
    reader = asyncio.StreamReader(limit=16)
    reader.feed_data(b"x" * 40)
    lines = read_lines(reader)
    first = asyncio.ensure_future(anext(lines))
    await asyncio.sleep(0.01)
    reader.feed_data(b"y" * 40 + b"\nok\n")
    reader.feed_eof()

    assert await first == OversizedLine(81)
    assert [line async for line in lines] == [b"ok"]


@pytest.mark.asyncio
async def test_oversized_line_cut_by_end_of_stream():
    reader = asyncio.StreamReader(limit=16)
    reader.feed_data(b"x" * 40)
    reader.feed_eof()

    assert await _collect(reader) == [OversizedLine(40)]


def test_as_text():
    assert as_text(b"caf\xc3\xa9") == "café"
    assert as_text(b"\xff") == "\ufffd"
    assert as_text(OversizedLine(9)) == "<9 byte line>"
