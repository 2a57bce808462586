"""Tests for tailing a plain text stream."""

import asyncio
import io
import re
import threading

import pytest

from kutail.color import ColorPalette
from kutail.file_tail import FileTail
from kutail.options import TailOptions
from kutail.template import build_renderer


class BlockingSource:
    """A line source that stalls after its first line until released."""

    def __init__(self) -> None:
        self.release = threading.Event()

    def __iter__(self):
        yield "first\n"
        self.release.wait(timeout=5)
        yield "late\n"


def make_file_tail(source, out, err_out, options: TailOptions | None = None) -> FileTail:
    return FileTail(
        build_renderer("raw", None, ColorPalette(enabled=False)),
        options or TailOptions(),
        source,
        out,
        err_out,
    )


class TestFileTail:
    """Tests for FileTail."""

    def test_start_filters_lines(self, out, err_out) -> None:
        options = TailOptions(exclude=[re.compile("DEBUG")])
        file_tail = make_file_tail(io.StringIO("a\nDEBUG b\nc\n"), out, err_out, options)

        file_tail.start()

        assert out.getvalue() == "a\nc\n"

    @pytest.mark.asyncio
    async def test_run_ends_at_eof(self, out, err_out) -> None:
        file_tail = make_file_tail(io.StringIO("one\ntwo\n"), out, err_out)

        await asyncio.wait_for(file_tail.run(), timeout=2)

        assert out.getvalue() == "one\ntwo\n"

    @pytest.mark.asyncio
    async def test_cancel_returns_while_read_blocks(self, out, err_out) -> None:
        """Test that cancelling does not wait for the source to reach EOF."""
        source = BlockingSource()
        file_tail = make_file_tail(source, out, err_out)

        task = asyncio.create_task(file_tail.run())
        loop = asyncio.get_running_loop()
        deadline = loop.time() + 2
        while out.getvalue() != "first\n":
            assert loop.time() < deadline, "first line not printed"
            await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, timeout=1)

        source.release.set()
        await asyncio.sleep(0.05)
        assert out.getvalue() == "first\n"
