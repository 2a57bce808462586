"""Tail of a plain text stream such as stdin.

Applies the same line filters, highlighting and renderer as a container
tail, with empty target fields and no colors.
"""

import asyncio
import threading
from contextlib import suppress
from typing import TextIO

from rich.style import Style

from kutail.color import ColorPalette
from kutail.exceptions import TemplateError
from kutail.options import TailOptions
from kutail.template import LogRecord, LogRenderer


class FileTail:
    """Filters and prints lines read from a text stream.

    Example:
        FileTail(renderer, TailOptions(), sys.stdin, sys.stdout, sys.stderr).start()
    """

    def __init__(
        self,
        renderer: LogRenderer,
        options: TailOptions,
        source: TextIO,
        out: TextIO,
        err_out: TextIO,
    ) -> None:
        self.renderer = renderer
        self.options = options
        self.source = source
        self.out = out
        self.err_out = err_out
        self._closed = threading.Event()

    def start(self) -> None:
        """Consume the source until EOF or close()."""
        for line in self.source:
            if self._closed.is_set():
                return
            self.consume_line(line.rstrip("\n"))

    async def run(self) -> None:
        """Consume the source on a reader thread until EOF.

        The thread is a daemon, so cancelling the run returns at once even
        while a read is blocked; the thread stops printing once closed.
        """
        loop = asyncio.get_running_loop()
        done: asyncio.Future[None] = loop.create_future()

        def finish(error: BaseException | None) -> None:
            if done.done():
                return
            if error is None:
                done.set_result(None)
            else:
                done.set_exception(error)

        def read() -> None:
            error: BaseException | None = None
            try:
                self.start()
            except Exception as e:
                error = e
            # the loop is gone if the run was cancelled and shut down
            with suppress(RuntimeError):
                loop.call_soon_threadsafe(finish, error)

        threading.Thread(target=read, name="kutail-stdin", daemon=True).start()
        try:
            await done
        finally:
            self.close()

    def close(self) -> None:
        self._closed.set()

    def consume_line(self, line: str) -> None:
        if self.options.is_exclude(line) or not self.options.is_include(line):
            return
        self.print(self.options.highlight_matched_string(line))

    def print(self, message: str) -> None:
        record = LogRecord(
            message=message,
            node_name="",
            namespace="",
            pod_name="",
            container_name="",
            pod_color=Style.null(),
            container_color=Style.null(),
        )
        try:
            text = self.renderer.render(record)
        except TemplateError as e:
            print(f"expanding template failed: {e}", file=self.err_out)
            return

        self.out.write(text)
        self.out.flush()
