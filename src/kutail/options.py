"""Per-tail options: line filters, highlighting and timestamp formatting."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo

from rich.color import ColorSystem
from rich.style import Style


# RFC3339 with nanoseconds and trailing zeros
TIMESTAMP_FORMAT_DEFAULT = "default"

# date and time without year
TIMESTAMP_FORMAT_SHORT = "short"

SHORT_STRFTIME = "%m-%d %H:%M:%S"

HIGHLIGHT_STYLE = Style(color="red", bold=True)

RFC3339_PATTERN = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d{1,9}))?"
    r"(?P<tz>Z|[+-]\d{2}:\d{2})$"
)


@dataclass(frozen=True, slots=True)
class WireTimestamp:
    """A parsed RFC3339Nano timestamp, keeping full nanosecond precision."""

    moment: datetime
    nanos: int

    @classmethod
    def parse(cls, value: str) -> "WireTimestamp":
        """Parse an RFC3339 timestamp with up to nine fractional digits.

        Raises:
            ValueError: If the value is not a valid timestamp.
        """
        match = RFC3339_PATTERN.match(value)
        if not match:
            raise ValueError(f"invalid timestamp: {value!r}")

        moment = datetime.strptime(match.group("base"), "%Y-%m-%dT%H:%M:%S")
        tz = match.group("tz")
        if tz == "Z":
            offset = timezone.utc
        else:
            sign = 1 if tz[0] == "+" else -1
            hours, minutes = int(tz[1:3]), int(tz[4:6])
            offset = timezone(sign * timedelta(hours=hours, minutes=minutes))

        frac = (match.group("frac") or "").ljust(9, "0")
        return cls(moment=moment.replace(tzinfo=offset), nanos=int(frac))


def format_rfc3339_nano(moment: datetime, nanos: int) -> str:
    """Format like RFC3339Nano but always with nine fractional digits."""
    offset = moment.utcoffset()
    if not offset:
        zone = "Z"
    else:
        total = int(offset.total_seconds())
        sign = "+" if total >= 0 else "-"
        hours, minutes = divmod(abs(total) // 60, 60)
        zone = f"{sign}{hours:02d}:{minutes:02d}"
    return f"{moment.strftime('%Y-%m-%dT%H:%M:%S')}.{nanos:09d}{zone}"


@dataclass
class TailOptions:
    """Options controlling how one tail requests and prints logs.

    Attributes:
        timestamps: Whether to prefix each line with its timestamp.
        timestamp_format: 'default', 'short' or a strftime format string.
        location: Timezone used to print timestamps.
        since_seconds: Only return logs newer than this many seconds.
        since_time: Only return logs at or after this time.
        exclude: Lines matching any of these are dropped.
        include: If set, only lines matching one of these are kept.
        highlight: Extra patterns to highlight without filtering.
        tail_lines: Number of lines from the end of the log, None for all.
        follow: Whether to keep streaming new lines.
        only_log_lines: Suppress start and stop markers.
    """

    timestamps: bool = False
    timestamp_format: str = TIMESTAMP_FORMAT_DEFAULT
    location: tzinfo = timezone.utc
    since_seconds: int | None = None
    since_time: datetime | None = None
    exclude: list[re.Pattern[str]] = field(default_factory=list)
    include: list[re.Pattern[str]] = field(default_factory=list)
    highlight: list[re.Pattern[str]] = field(default_factory=list)
    tail_lines: int | None = None
    follow: bool = True
    only_log_lines: bool = False
    highlight_color: bool = True

    def is_exclude(self, message: str) -> bool:
        """Return True if any exclude pattern matches."""
        return any(rex.search(message) for rex in self.exclude)

    def is_include(self, message: str) -> bool:
        """Return True if there are no include patterns or one matches."""
        if not self.include:
            return True
        return any(rex.search(message) for rex in self.include)

    def highlight_matched_string(self, message: str) -> str:
        """Emphasize substrings matched by include or highlight patterns.

        Each pattern is searched on its own, so inline flags and group
        names never clash. Where matches overlap, the one starting first
        wins, and the longest among those starting at the same position.
        """
        patterns = self.include + self.highlight
        if not patterns or not self.highlight_color:
            return message

        spans = sorted(
            (
                (match.start(), match.end())
                for rex in patterns
                for match in rex.finditer(message)
                if match.end() > match.start()
            ),
            key=lambda span: (span[0], -span[1]),
        )

        parts: list[str] = []
        pos = 0
        for start, end in spans:
            if start < pos:
                continue
            parts.append(message[pos:start])
            parts.append(
                HIGHLIGHT_STYLE.render(message[start:end], color_system=ColorSystem.TRUECOLOR)
            )
            pos = end
        parts.append(message[pos:])
        return "".join(parts)

    def update_timezone_and_format(self, timestamp: str) -> str:
        """Render a wire timestamp in the configured zone and format.

        Raises:
            ValueError: If the timestamp cannot be parsed.
        """
        try:
            wire = WireTimestamp.parse(timestamp)
        except ValueError:
            raise ValueError("missing timestamp") from None

        local = wire.moment.astimezone(self.location)
        if self.timestamp_format == TIMESTAMP_FORMAT_DEFAULT:
            return format_rfc3339_nano(local, wire.nanos)
        if self.timestamp_format == TIMESTAMP_FORMAT_SHORT:
            return local.strftime(SHORT_STRFTIME)
        return local.replace(microsecond=wire.nanos // 1000).strftime(self.timestamp_format)
