"""kutail - multi pod and container log tailing for Kubernetes.

Entry point and CLI argument parsing. Flags are translated into a Config
once, before any cluster call, and handed to the runner.
"""

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import suppress
from datetime import datetime, timezone
from typing import NoReturn, TextIO
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from kutail import __version__
from kutail.client import KubeClient
from kutail.color import ColorPalette, parse_colors
from kutail.condition import Condition
from kutail.config import (
    DEFAULT_MAX_LOG_REQUESTS_FOLLOW,
    DEFAULT_MAX_LOG_REQUESTS_NO_FOLLOW,
    Config,
)
from kutail.container_state import ContainerState
from kutail.exceptions import ConfigError, KutailError
from kutail.options import TIMESTAMP_FORMAT_DEFAULT, TIMESTAMP_FORMAT_SHORT
from kutail.resource import is_resource_query
from kutail.runner import run
from kutail.template import OUTPUTS, build_renderer
from kutail.utils import compile_pattern, compile_patterns, parse_duration, parse_namespaces

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)


LOGO = r"""
[bold cyan]  _          _        _ _ [/]
[bold cyan] | | ___   _| |_ __ _(_) |[/]
[bold cyan] | |/ / | | | __/ _` | | |[/]
[bold cyan] |   <| |_| | || (_| | | |[/]
[bold cyan] |_|\_\\__,_|\__\__,_|_|_|[/]
"""

COLOR_MODES = ("auto", "always", "never")


def _option_table(rows: list[tuple[str, str]]) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2), collapse_padding=True)
    table.add_column("Option", style="cyan", no_wrap=True)
    table.add_column("Description")
    for option, description in rows:
        table.add_row(option, description)
    return table


def print_help() -> None:
    """Print the help message using Rich."""
    console = Console()

    console.print(LOGO)
    console.print(
        f"  [bold]kutail[/] [dim]v{__version__}[/] · Multi pod and container log tailing\n",
        highlight=False,
    )

    console.print("[bold yellow]Usage:[/]")
    console.print("  kutail [OPTIONS] [POD-QUERY | KIND/NAME]\n")

    console.print("[bold yellow]Selection:[/]")
    console.print(_option_table([
        ("-n, --namespace NS", "Namespaces to tail, repeatable or comma-separated"),
        ("-A, --all-namespaces", "Tail pods in all namespaces"),
        ("-l, --selector SEL", "Label selector [dim](e.g., app=web)[/]"),
        ("--field-selector SEL", "Field selector [dim](e.g., spec.nodeName=node-1)[/]"),
        ("-c, --container REGEX", "Container name regex [dim](default: .*)[/]"),
        ("-E, --exclude-container REGEX", "Container names to exclude, repeatable"),
        ("--exclude-pod REGEX", "Pod names to exclude, repeatable"),
        ("--container-state STATE", "running, waiting, terminated or all [dim](default: running)[/]"),
        ("--condition COND[=VALUE]", "Only pods with this condition [dim](e.g., ready=false)[/]"),
        ("--init-containers BOOL", "Include init containers [dim](default: true)[/]"),
        ("--ephemeral-containers BOOL", "Include ephemeral containers [dim](default: true)[/]"),
    ]))
    console.print()

    console.print("[bold yellow]Lines:[/]")
    console.print(_option_table([
        ("-s, --since DURATION", "Logs newer than a duration [dim](default: 48h)[/]"),
        ("--tail N", "Lines from the end of each log [dim](default: -1, all)[/]"),
        ("-e, --exclude REGEX", "Drop log lines matching, repeatable"),
        ("-i, --include REGEX", "Keep only log lines matching, repeatable"),
        ("-H, --highlight REGEX", "Highlight matches without filtering, repeatable"),
        ("--no-follow", "Exit when existing logs have been shown"),
        ("--max-log-requests N", "Concurrent log requests [dim](default: 50, or 5 with --no-follow)[/]"),
        ("--stdin", "Filter lines read from stdin instead of a cluster"),
    ]))
    console.print()

    console.print("[bold yellow]Output:[/]")
    console.print(_option_table([
        ("-o, --output NAME", "default, raw or json [dim](default: default)[/]"),
        ("--template TEMPLATE", "Line template [dim](e.g., '{podName} {message}')[/]"),
        ("--template-file FILE", "Read the line template from a file"),
        ("-t, --timestamps", "Print the timestamp of each line"),
        ("--timestamp-format FORMAT", "default or short [dim](default: default)[/]"),
        ("--timezone TZ", "Timezone of printed timestamps [dim](default: local)[/]"),
        ("--color MODE", "auto, always or never [dim](default: auto)[/]"),
        ("--pod-colors COLORS", "Comma-separated SGR sequences or style names"),
        ("--container-colors COLORS", "Comma-separated SGR sequences or style names"),
        ("-d, --diff-container", "Color containers independently of their pod"),
        ("--only-log-lines", "Print only log lines, no start/stop markers"),
    ]))
    console.print()

    console.print("[bold yellow]Options:[/]")
    console.print(_option_table([
        ("--kubeconfig PATH", "Kubeconfig file [dim](default: KUBECONFIG or ~/.kube/config)[/]"),
        ("--context NAME", "Kubeconfig context to use"),
        ("-v, --verbose", "Increase verbosity [dim](-v info, -vv debug)[/]"),
        ("--version", "Show the version and exit"),
    ]))
    console.print()

    examples = Text()
    examples.append("kutail ", style="white")
    examples.append("'web-.*'")
    examples.append("                      # Pods matching a regex\n")
    examples.append("kutail ", style="white")
    examples.append("deployment/api")
    examples.append("                # Pods of a deployment\n")
    examples.append("kutail ", style="white")
    examples.append("-A", style="cyan")
    examples.append(" ")
    examples.append("-l", style="cyan")
    examples.append(" app=web")
    examples.append("                # Label selector, all namespaces\n")
    examples.append("kutail ", style="white")
    examples.append("api ")
    examples.append("-e", style="cyan")
    examples.append(" DEBUG ")
    examples.append("--no-follow", style="cyan")
    examples.append("       # Existing logs without DEBUG lines")

    console.print(Panel(examples, title="[bold]Examples[/]", border_style="dim", padding=(0, 1)))


class RichHelpAction(argparse.Action):
    """Custom help action that prints Rich-formatted help."""

    def __init__(
        self,
        option_strings,
        dest=argparse.SUPPRESS,
        default=argparse.SUPPRESS,
        help="Show this help message and exit",  # noqa: A002
    ):
        super().__init__(
            option_strings=option_strings,
            dest=dest,
            default=default,
            nargs=0,
            help=help,
        )

    def __call__(self, parser, _namespace, _values, _option_string=None):
        print_help()
        parser.exit()


def parse_bool(value: str) -> bool:
    """Parse a boolean flag value such as 'true', 'false', '1' or '0'."""
    lowered = value.strip().lower()
    if lowered in ("true", "t", "1", "yes"):
        return True
    if lowered in ("false", "f", "0", "no"):
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value: '{value}'")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for kutail.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="kutail",
        add_help=False,
    )

    parser.add_argument(
        "-h", "--help",
        action=RichHelpAction,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # Pod query or <kind>/<name>
    parser.add_argument(
        "query",
        nargs="?",
        default="",
        help="Pod name regex, or a resource as <kind>/<name>",
    )

    # Selection
    parser.add_argument(
        "-n", "--namespace",
        action="append",
        default=None,
        metavar="NS",
        help="Namespaces to tail (repeatable or comma-separated; default: current context)",
    )

    parser.add_argument(
        "-A", "--all-namespaces",
        action="store_true",
        help="Tail pods in all namespaces",
    )

    parser.add_argument(
        "-l", "--selector",
        type=str,
        default=None,
        metavar="SELECTOR",
        help="Label selector passed to the API (e.g., 'app=web')",
    )

    parser.add_argument(
        "--field-selector",
        type=str,
        default=None,
        metavar="SELECTOR",
        help="Field selector passed to the API",
    )

    parser.add_argument(
        "-c", "--container",
        type=str,
        default=".*",
        metavar="REGEX",
        help="Container name regex",
    )

    parser.add_argument(
        "-E", "--exclude-container",
        action="append",
        default=None,
        metavar="REGEX",
        help="Container name regex to exclude (repeatable)",
    )

    parser.add_argument(
        "--exclude-pod",
        action="append",
        default=None,
        metavar="REGEX",
        help="Pod name regex to exclude (repeatable)",
    )

    parser.add_argument(
        "--container-state",
        action="append",
        default=None,
        metavar="STATE",
        help="Container states to tail: running, waiting, terminated or all",
    )

    parser.add_argument(
        "--condition",
        type=str,
        default=None,
        metavar="CONDITION[=VALUE]",
        help="Only tail pods with this condition (value defaults to true)",
    )

    parser.add_argument(
        "--init-containers",
        type=parse_bool,
        default=True,
        metavar="BOOL",
        help="Include init containers",
    )

    parser.add_argument(
        "--ephemeral-containers",
        type=parse_bool,
        default=True,
        metavar="BOOL",
        help="Include ephemeral containers",
    )

    # Lines
    parser.add_argument(
        "-s", "--since",
        type=str,
        default="48h",
        metavar="DURATION",
        help="Return logs newer than a duration (e.g., 10s, 5m, 1h). Default: 48h",
    )

    parser.add_argument(
        "--tail",
        type=int,
        default=-1,
        metavar="N",
        help="Lines from the end of each log; -1 shows all. Default: -1",
    )

    parser.add_argument(
        "-e", "--exclude",
        action="append",
        default=None,
        metavar="REGEX",
        help="Log lines to exclude (repeatable)",
    )

    parser.add_argument(
        "-i", "--include",
        action="append",
        default=None,
        metavar="REGEX",
        help="Log lines to include (repeatable)",
    )

    parser.add_argument(
        "-H", "--highlight",
        action="append",
        default=None,
        metavar="REGEX",
        help="Log lines to highlight (repeatable)",
    )

    parser.add_argument(
        "--no-follow",
        action="store_true",
        help="Exit when existing logs have been shown",
    )

    parser.add_argument(
        "--max-log-requests",
        type=int,
        default=None,
        metavar="N",
        help=(
            f"Maximum number of concurrent log requests. Default: "
            f"{DEFAULT_MAX_LOG_REQUESTS_FOLLOW}, or {DEFAULT_MAX_LOG_REQUESTS_NO_FOLLOW} with --no-follow"
        ),
    )

    parser.add_argument(
        "--stdin",
        action="store_true",
        help="Parse logs from stdin",
    )

    # Output
    parser.add_argument(
        "-o", "--output",
        choices=OUTPUTS,
        default="default",
        help="Predefined output format",
    )

    parser.add_argument(
        "--template",
        type=str,
        default=None,
        help="Line template, e.g. '{podName} {message}'",
    )

    parser.add_argument(
        "--template-file",
        type=str,
        default=None,
        metavar="FILE",
        help="Path to a file holding the line template",
    )

    parser.add_argument(
        "-t", "--timestamps",
        action="store_true",
        help="Print the timestamp of each line",
    )

    parser.add_argument(
        "--timestamp-format",
        choices=(TIMESTAMP_FORMAT_DEFAULT, TIMESTAMP_FORMAT_SHORT),
        default=TIMESTAMP_FORMAT_DEFAULT,
        help="Format of printed timestamps",
    )

    parser.add_argument(
        "--timezone",
        type=str,
        default=None,
        metavar="TZ",
        help="Timezone of printed timestamps (e.g., UTC). Default: local",
    )

    parser.add_argument(
        "--color",
        choices=COLOR_MODES,
        default="auto",
        help="Force or disable colored output",
    )

    parser.add_argument(
        "--pod-colors",
        type=str,
        default=None,
        metavar="COLORS",
        help="Comma-separated SGR sequences or style names for pods",
    )

    parser.add_argument(
        "--container-colors",
        type=str,
        default=None,
        metavar="COLORS",
        help="Comma-separated SGR sequences or style names for containers",
    )

    parser.add_argument(
        "-d", "--diff-container",
        action="store_true",
        help="Color containers independently of their pod",
    )

    parser.add_argument(
        "--only-log-lines",
        action="store_true",
        help="Print only log lines",
    )

    # Cluster
    parser.add_argument(
        "--kubeconfig",
        type=str,
        default=None,
        metavar="PATH",
        help="Path to the kubeconfig file",
    )

    parser.add_argument(
        "--context",
        type=str,
        default=None,
        metavar="NAME",
        help="Kubeconfig context to use",
    )

    # Verbosity
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for info, -vv for debug)",
    )

    return parser


def configure_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbosity: Number of -v flags (0=warning, 1=info, 2=debug).
    """
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity >= 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.getLogger().setLevel(level)
    logging.getLogger("kutail").setLevel(level)

    # Suppress noisy libraries unless very verbose
    if verbosity < 2:
        logging.getLogger("kubernetes_asyncio").setLevel(logging.WARNING)
        logging.getLogger("aiohttp").setLevel(logging.WARNING)


def _split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _load_template(args: argparse.Namespace) -> str | None:
    template = args.template
    if args.template_file:
        try:
            with open(args.template_file, encoding="utf-8") as f:
                template = f.read()
        except OSError as e:
            raise ConfigError(f"unable to read template file: {e}") from e

    if template and not template.endswith("\n"):
        template += "\n"
    return template


def _resolve_timezone(name: str | None):
    if not name or name.lower() == "local":
        return datetime.now().astimezone().tzinfo
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"unknown timezone '{name}'") from e


def _colors_enabled(mode: str, out: TextIO) -> bool:
    if mode == "always":
        return True
    if mode == "never":
        return False
    return out.isatty()


def build_config(
    args: argparse.Namespace,
    out: TextIO | None = None,
    err_out: TextIO | None = None,
) -> Config:
    """Translate parsed arguments into a Config.

    Every flag is validated here, before any cluster call.

    Args:
        args: Parsed command-line arguments.
        out: Output stream, defaults to stdout.
        err_out: Error stream, defaults to stderr.

    Returns:
        The run configuration.

    Raises:
        ConfigError: If any flag value is invalid.
    """
    out = out if out is not None else sys.stdout
    err_out = err_out if err_out is not None else sys.stderr

    resource = None
    pod_query = compile_pattern("", "pod query")
    if args.query and is_resource_query(args.query):
        resource = args.query
    elif args.query:
        pod_query = compile_pattern(args.query, "pod query")

    states = [
        ContainerState.parse(state)
        for value in (args.container_state or [ContainerState.RUNNING.value])
        for state in _split_list(value)
    ]

    condition = Condition.parse(args.condition) if args.condition else None

    if args.tail < -1:
        raise ConfigError(f"invalid --tail value: {args.tail}")

    follow = not args.no_follow
    max_log_requests = args.max_log_requests
    if max_log_requests is None:
        max_log_requests = (
            DEFAULT_MAX_LOG_REQUESTS_FOLLOW if follow else DEFAULT_MAX_LOG_REQUESTS_NO_FOLLOW
        )
    if max_log_requests < 1:
        raise ConfigError("--max-log-requests must be at least 1")

    pod_colors = _split_list(args.pod_colors)
    container_colors = _split_list(args.container_colors)
    pairs = None
    if pod_colors or container_colors:
        pairs = parse_colors(pod_colors, container_colors)
    palette = ColorPalette(pairs, enabled=_colors_enabled(args.color, out))

    namespaces = parse_namespaces(args.namespace)
    show_namespace = args.all_namespaces or len(namespaces) > 1
    # stdin lines have no pod or container to prefix
    output = "raw" if args.stdin and args.output == "default" else args.output
    renderer = build_renderer(output, _load_template(args), palette, show_namespace)

    return Config(
        namespaces=namespaces,
        all_namespaces=args.all_namespaces,
        pod_query=pod_query,
        exclude_pod_query=compile_patterns(args.exclude_pod, "exclude-pod"),
        container_query=compile_pattern(args.container, "container"),
        exclude_container_query=compile_patterns(args.exclude_container, "exclude-container"),
        container_states=states,
        condition=condition,
        exclude=compile_patterns(args.exclude, "exclude"),
        include=compile_patterns(args.include, "include"),
        highlight=compile_patterns(args.highlight, "highlight"),
        init_containers=args.init_containers,
        ephemeral_containers=args.ephemeral_containers,
        since=parse_duration(args.since),
        label_selector=args.selector,
        field_selector=args.field_selector,
        tail_lines=None if args.tail < 0 else args.tail,
        renderer=renderer,
        palette=palette,
        follow=follow,
        resource=resource,
        only_log_lines=args.only_log_lines,
        max_log_requests=max_log_requests,
        stdin=args.stdin,
        diff_container=args.diff_container,
        timestamps=args.timestamps,
        timestamp_format=args.timestamp_format,
        location=_resolve_timezone(args.timezone),
        out=out,
        err_out=err_out,
    )


async def run_kutail(args: argparse.Namespace, config: Config) -> int:
    """Main async entry point for kutail.

    Args:
        args: Parsed command-line arguments.
        config: The run configuration built from ``args``.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    # SIGINT is handled by asyncio.run; SIGTERM cancels the run the same way
    task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    if task is not None:
        with suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGTERM, task.cancel)

    if config.stdin:
        await run(config, None)
        return 0

    async with KubeClient.create(args.kubeconfig, args.context) as client:
        await run(config, client)
    return 0


def main() -> NoReturn:
    """CLI entry point."""
    parser = create_parser()
    args = parser.parse_args()

    configure_logging(args.verbose)
    console = Console(stderr=True)

    try:
        config = build_config(args)
        exit_code = asyncio.run(run_kutail(args, config))
    except KutailError as e:
        console.print(f"[bold red]Error:[/] {e}", highlight=False)
        exit_code = 1
    except (KeyboardInterrupt, asyncio.CancelledError):
        exit_code = 130

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
