# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for the output pumps feeding the controller queue."""
from __future__ import annotations

import asyncio
from typing import List

import pytest

from qcow2img.controller.events import LogSource
from qcow2img.controller.process import pump_lines


async def _pump(chunks: List[bytes], source: LogSource = LogSource.STDOUT):
    reader = asyncio.StreamReader()
    for chunk in chunks:
        reader.feed_data(chunk)
    reader.feed_eof()
    queue: asyncio.Queue = asyncio.Queue()
    await pump_lines(reader, source, queue)
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


@pytest.mark.unit
class TestPumpLines:
    def test_lines_in_order_then_sentinel(self):
        items = asyncio.run(_pump([b"one\ntwo\n", b"three\n"]))
        assert items == [
            (LogSource.STDOUT, "one"),
            (LogSource.STDOUT, "two"),
            (LogSource.STDOUT, "three"),
            (LogSource.STDOUT, None),
        ]

    def test_carriage_return_progress(self):
        items = asyncio.run(_pump([b"    (0.00/100%)\r    (50.00/100%)\r", b"    (100.00/100%)\r\n"], LogSource.STDERR))
        lines = [line for _src, line in items if line]
        assert lines == ["    (0.00/100%)", "    (50.00/100%)", "    (100.00/100%)"]
        assert items[-1] == (LogSource.STDERR, None)

    def test_line_split_across_chunks_and_trailing_text(self):
        items = asyncio.run(_pump([b"hel", b"lo\nwor", b"ld"]))
        assert [line for _src, line in items] == ["hello", "world", None]

    def test_utf8_split_across_chunks(self):
        data = "Fehler: Datei nicht gefunden – ü\n".encode("utf-8")
        cut = data.index("ü".encode("utf-8")) + 1
        items = asyncio.run(_pump([data[:cut], data[cut:]]))
        assert items[0][1] == "Fehler: Datei nicht gefunden – ü"

    def test_missing_stream_still_sends_sentinel(self):
        async def run():
            queue: asyncio.Queue = asyncio.Queue()
            await pump_lines(None, LogSource.STDERR, queue)
            return queue.get_nowait()

        assert asyncio.run(run()) == (LogSource.STDERR, None)
