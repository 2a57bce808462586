"""Log tail for a single container.

A Tail owns one log stream. It prints a start marker, reads the stream
line by line, filters and formats each line, and renders it through the
configured renderer. Every line arrives with its RFC3339Nano timestamp;
the tail remembers the last second seen and how many lines it held, so a
disconnected follow-mode tail can be resumed without duplicating lines.
"""

import asyncio
import dataclasses
import logging
import re
from contextlib import aclosing
from datetime import datetime
from enum import Enum
from typing import TextIO

from rich.style import Style

from kutail.client import ClusterClient, LogOptions
from kutail.color import ColorPalette
from kutail.exceptions import TemplateError
from kutail.models import Target
from kutail.options import TailOptions, WireTimestamp
from kutail.template import LogRecord, LogRenderer


logger = logging.getLogger(__name__)

START_MARKER_STYLE = Style(color="bright_green", bold=True)
STOP_MARKER_STYLE = Style(color="bright_red", bold=True)

SUBSECOND_PATTERN = re.compile(r"\.\d+")


class TailState(str, Enum):
    """Lifecycle states of a Tail."""

    CREATED = "created"
    STARTING = "starting"
    STREAMING = "streaming"
    CLOSED = "closed"


@dataclasses.dataclass(slots=True)
class ResumeRequest:
    """Where to pick up a stream after a disconnect.

    Attributes:
        timestamp: The last second seen, as an RFC3339 timestamp without subseconds.
        lines_to_skip: How many lines of that second were already emitted.
    """

    timestamp: str
    lines_to_skip: int

    def since_time(self) -> datetime:
        """Return the timestamp as a datetime.

        Raises:
            ValueError: If the timestamp cannot be parsed.
        """
        return WireTimestamp.parse(self.timestamp).moment

    def should_skip(self, timestamp: str) -> bool:
        """Return True, consuming one skip, if a line at ``timestamp`` was already emitted."""
        if not self.timestamp or self.timestamp != timestamp:
            return False
        if self.lines_to_skip <= 0:
            return False
        self.lines_to_skip -= 1
        return True


def split_log_line(line: str) -> tuple[str, str]:
    """Split a log line into its wire timestamp and content.

    Raises:
        ValueError: If the line has no timestamp prefix.
    """
    timestamp, sep, content = line.partition(" ")
    if not sep:
        raise ValueError("missing timestamp")
    return timestamp, content


def remove_subsecond(timestamp: str) -> str:
    """Drop the fractional seconds of an RFC3339 timestamp.

    Examples:
        >>> remove_subsecond("2023-02-14T05:36:39.902767599Z")
        '2023-02-14T05:36:39Z'
        >>> remove_subsecond("2023-02-14T05:36:39Z")
        '2023-02-14T05:36:39Z'
    """
    return SUBSECOND_PATTERN.sub("", timestamp, count=1)


class Tail:
    """Streams, filters and prints the logs of one container.

    ``start`` blocks until the stream ends, fails, or ``close`` is called.
    ``close`` may be called from another task while ``start`` is running;
    it only unblocks the read.

    Example:
        tail = Tail(client, target, renderer, ColorPalette(), TailOptions())
        await tail.start()
    """

    def __init__(
        self,
        client: ClusterClient,
        target: Target,
        renderer: LogRenderer,
        palette: ColorPalette,
        options: TailOptions,
        out: TextIO,
        err_out: TextIO,
        diff_container: bool = False,
    ) -> None:
        self.client = client
        self.target = target
        self.renderer = renderer
        self.palette = palette
        self.options = options
        self.out = out
        self.err_out = err_out
        self.pod_color, self.container_color = palette.pick(
            target.pod, target.container, diff_container
        )
        self.state = TailState.CREATED
        self._closed = asyncio.Event()
        self._last_timestamp = ""
        self._last_lines = 0
        self._resume_request: ResumeRequest | None = None

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    async def start(self) -> None:
        """Open the log stream and consume it until it ends or the tail is closed.

        Raises:
            KubeClientError: If the stream cannot be opened or breaks.
        """
        self.state = TailState.STARTING
        self._print_marker("+", START_MARKER_STYLE)

        log_options = LogOptions(
            container=self.target.container,
            follow=self.options.follow,
            timestamps=True,
            since_seconds=self.options.since_seconds,
            since_time=self.options.since_time,
            tail_lines=self.options.tail_lines,
        )

        consume = asyncio.create_task(self._consume(log_options))
        closed = asyncio.create_task(self._closed.wait())
        try:
            await asyncio.wait({consume, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
            if not consume.done():
                consume.cancel()
            await asyncio.gather(consume, closed, return_exceptions=True)

        if consume.cancelled():
            return
        consume.result()

    async def resume(self, request: ResumeRequest) -> None:
        """Start from the second recorded in ``request``, skipping lines already seen.

        Falls back to a plain ``start`` when the timestamp cannot be parsed.
        """
        try:
            since_time = request.since_time()
        except ValueError as e:
            print(f"failed to resume: {e}, fallback to start", file=self.err_out)
            await self.start()
            return

        self._resume_request = dataclasses.replace(request)
        self.options.since_time = since_time
        self.options.since_seconds = None
        self.options.tail_lines = None
        await self.start()

    def close(self) -> None:
        """Stop tailing and print the stop marker. Later calls do nothing."""
        if self._closed.is_set():
            return
        self._print_marker("-", STOP_MARKER_STYLE)
        self.state = TailState.CLOSED
        self._closed.set()

    def get_resume_request(self) -> ResumeRequest | None:
        """Return where to resume this stream, or None if no line was seen."""
        if not self._last_timestamp:
            return None
        return ResumeRequest(timestamp=self._last_timestamp, lines_to_skip=self._last_lines)

    async def _consume(self, log_options: LogOptions) -> None:
        stream = self.client.stream_logs(self.target.namespace, self.target.pod, log_options)
        async with aclosing(stream):
            async for line in stream:
                if self.state is TailState.STARTING:
                    self.state = TailState.STREAMING
                self.consume_line(line)
        logger.debug(f"Log stream ended: {self.target.id}")

    def consume_line(self, line: str) -> None:
        """Filter, format and print one raw line from the stream."""
        try:
            rfc3339_nano, content = split_log_line(line)
            wire = WireTimestamp.parse(rfc3339_nano)
        except ValueError as e:
            self.print(f"[{e}] {line}")
            return

        # the API only takes a seconds window, so drop what precedes the cursor
        since_time = self.options.since_time
        if since_time is not None and wire.moment < since_time:
            return

        # resume cursors have second resolution
        rfc3339 = remove_subsecond(rfc3339_nano)
        self._remember_last_timestamp(rfc3339)
        if self._resume_request is not None and self._resume_request.should_skip(rfc3339):
            return

        if self.options.is_exclude(content) or not self.options.is_include(content):
            return

        message = self.options.highlight_matched_string(content)

        if self.options.timestamps:
            try:
                timestamp = self.options.update_timezone_and_format(rfc3339_nano)
            except ValueError as e:
                self.print(f"[{e}] {line}")
                return
            message = f"{timestamp} {message}"

        self.print(message)

    def print(self, message: str) -> None:
        """Render a message through the renderer and write it to the output."""
        record = LogRecord(
            message=message,
            node_name=self.target.node,
            namespace=self.target.namespace,
            pod_name=self.target.pod,
            container_name=self.target.container,
            pod_color=self.pod_color,
            container_color=self.container_color,
        )
        try:
            text = self.renderer.render(record)
        except TemplateError as e:
            print(f"expanding template failed: {e}", file=self.err_out)
            return

        self.out.write(text)
        self.out.flush()

    def _remember_last_timestamp(self, timestamp: str) -> None:
        if self._last_timestamp == timestamp:
            self._last_lines += 1
            return
        self._last_timestamp = timestamp
        self._last_lines = 1

    def _print_marker(self, sign: str, style: Style) -> None:
        if self.options.only_log_lines:
            return
        paint = self.palette.paint
        print(
            f"{paint(sign, style)} "
            f"{paint(self.target.namespace, self.pod_color)} "
            f"{paint(self.target.pod, self.pod_color)} › "
            f"{paint(self.target.container, self.container_color)}",
            file=self.err_out,
            flush=True,
        )
