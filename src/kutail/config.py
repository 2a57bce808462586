"""Runtime configuration for a kutail run.

A Config is built once (usually by the CLI) and passed explicitly to the
runner; every tail gets its own TailOptions projected from it.
"""

import re
import sys
from dataclasses import dataclass, field
from datetime import timedelta, timezone, tzinfo
from typing import TextIO

from kutail.color import ColorPalette
from kutail.condition import Condition
from kutail.container_state import ContainerState
from kutail.options import TIMESTAMP_FORMAT_DEFAULT, TailOptions
from kutail.target import TargetFilterConfig
from kutail.template import LogRenderer, build_renderer


DEFAULT_SINCE = timedelta(hours=48)

DEFAULT_MAX_LOG_REQUESTS_FOLLOW = 50
DEFAULT_MAX_LOG_REQUESTS_NO_FOLLOW = 5

# minimum interval between tail retries, after an initial burst
RETRY_INTERVAL = 20.0
RETRY_BURST = 2


def _match_all() -> re.Pattern[str]:
    return re.compile("")


@dataclass
class Config:
    """All options of one run.

    Attributes:
        namespaces: Namespaces to tail; empty means the current namespace.
        all_namespaces: Tail across all namespaces, ignoring ``namespaces``.
        pod_query: Pod names must match this pattern.
        exclude_pod_query: Pod names matching any of these are skipped.
        container_query: Container names must match this pattern.
        exclude_container_query: Container names matching any of these are skipped.
        container_states: Accepted states for containers seen for the first time.
        condition: Optional pod condition that must hold.
        exclude: Log lines matching any of these are dropped.
        include: If set, only log lines matching one of these are kept.
        highlight: Patterns highlighted without filtering.
        init_containers: Include init containers.
        ephemeral_containers: Include ephemeral containers.
        since: Return logs newer than this duration.
        label_selector: Label selector passed to the API.
        field_selector: Field selector passed to the API.
        tail_lines: Lines from the end of each log, None for all.
        renderer: Renders each emitted log record.
        palette: Colors for pods and containers.
        follow: Keep watching for pods and streaming new lines.
        resource: A ``<kind>/<name>`` query used instead of ``pod_query``.
        only_log_lines: Suppress start and stop markers.
        max_log_requests: Maximum number of concurrent log requests.
        stdin: Read log lines from stdin instead of the cluster.
        diff_container: Color containers independently of their pods.
        timestamps: Prefix lines with their timestamp.
        timestamp_format: 'default', 'short' or a strftime format.
        location: Timezone of printed timestamps.
        retry_interval: Seconds between tail retries once the burst is used.
        in_stream: Stream read in stdin mode.
        out: Stream receiving rendered log lines.
        err_out: Stream receiving markers and retry messages.
    """

    namespaces: list[str] = field(default_factory=list)
    all_namespaces: bool = False
    pod_query: re.Pattern[str] = field(default_factory=_match_all)
    exclude_pod_query: list[re.Pattern[str]] = field(default_factory=list)
    container_query: re.Pattern[str] = field(default_factory=_match_all)
    exclude_container_query: list[re.Pattern[str]] = field(default_factory=list)
    container_states: list[ContainerState] = field(
        default_factory=lambda: [ContainerState.RUNNING]
    )
    condition: Condition | None = None
    exclude: list[re.Pattern[str]] = field(default_factory=list)
    include: list[re.Pattern[str]] = field(default_factory=list)
    highlight: list[re.Pattern[str]] = field(default_factory=list)
    init_containers: bool = True
    ephemeral_containers: bool = True
    since: timedelta = DEFAULT_SINCE
    label_selector: str | None = None
    field_selector: str | None = None
    tail_lines: int | None = None
    renderer: LogRenderer | None = None
    palette: ColorPalette = field(default_factory=ColorPalette)
    follow: bool = True
    resource: str | None = None
    only_log_lines: bool = False
    max_log_requests: int = DEFAULT_MAX_LOG_REQUESTS_FOLLOW
    stdin: bool = False
    diff_container: bool = False
    timestamps: bool = False
    timestamp_format: str = TIMESTAMP_FORMAT_DEFAULT
    location: tzinfo = timezone.utc
    retry_interval: float = RETRY_INTERVAL
    in_stream: TextIO = field(default_factory=lambda: sys.stdin)
    out: TextIO = field(default_factory=lambda: sys.stdout)
    err_out: TextIO = field(default_factory=lambda: sys.stderr)

    def __post_init__(self) -> None:
        if self.renderer is None:
            show_namespace = self.all_namespaces or len(self.namespaces) > 1
            self.renderer = build_renderer("default", None, self.palette, show_namespace)

    def tail_options(self) -> TailOptions:
        """Return fresh TailOptions for one tail."""
        since_seconds = int(self.since.total_seconds())
        return TailOptions(
            timestamps=self.timestamps,
            timestamp_format=self.timestamp_format,
            location=self.location,
            since_seconds=since_seconds if since_seconds > 0 else None,
            exclude=self.exclude,
            include=self.include,
            highlight=self.highlight,
            tail_lines=self.tail_lines,
            follow=self.follow,
            only_log_lines=self.only_log_lines,
            highlight_color=self.palette.enabled,
        )

    def target_filter_config(self, pod_query: re.Pattern[str] | None = None) -> TargetFilterConfig:
        """Return the target filter rules, optionally overriding the pod query."""
        return TargetFilterConfig(
            pod_filter=pod_query if pod_query is not None else self.pod_query,
            exclude_pod_filter=self.exclude_pod_query,
            container_filter=self.container_query,
            exclude_container_filter=self.exclude_container_query,
            condition=self.condition,
            init_containers=self.init_containers,
            ephemeral_containers=self.ephemeral_containers,
            container_states=self.container_states,
        )
