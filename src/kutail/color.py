"""Deterministic color assignment for pods and containers.

Each pod (and optionally each container) is mapped to a (pod, container)
style pair by hashing its name, so the same name always gets the same
colors across runs. Styles are rich Style objects rendered to ANSI SGR
sequences.
"""

import re

from rich.color import ColorSystem
from rich.errors import StyleSyntaxError
from rich.style import Style
from rich.text import Text

from kutail.exceptions import ConfigError


ColorPair = tuple[Style, Style]

# (pod, container) pairs
DEFAULT_COLOR_PAIRS: list[tuple[str, str]] = [
    ("bright_cyan", "cyan"),
    ("bright_green", "green"),
    ("bright_magenta", "magenta"),
    ("bright_yellow", "yellow"),
    ("bright_blue", "blue"),
    ("bright_red", "red"),
]

SGR_PATTERN = re.compile(r"^\d+(\s*;\s*\d+)*$")

FNV32_OFFSET = 0x811C9DC5
FNV32_PRIME = 0x01000193


def fnv32(data: bytes) -> int:
    """Return the 32-bit FNV-1 hash of ``data``."""
    value = FNV32_OFFSET
    for byte in data:
        value = (value * FNV32_PRIME) & 0xFFFFFFFF
        value ^= byte
    return value


def color_index(name: str, size: int) -> int:
    """Return the palette index for a name.

    Examples:
        >>> color_index("my-pod", 6) == color_index("my-pod", 6)
        True
    """
    return fnv32(name.encode("utf-8")) % size


def parse_style(value: str) -> Style:
    """Parse an SGR sequence such as '31;4' or a rich style such as 'bold red'.

    Raises:
        ConfigError: If the value is neither.
    """
    value = value.strip()
    if SGR_PATTERN.match(value):
        sequence = ";".join(part.strip() for part in value.split(";"))
        text = Text.from_ansi(f"\x1b[{sequence}mx\x1b[0m")
        styles = [
            span.style if isinstance(span.style, Style) else Style.parse(span.style)
            for span in text.spans
        ]
        return Style.combine(styles) if styles else Style()

    try:
        return Style.parse(value)
    except StyleSyntaxError as e:
        raise ConfigError(f"invalid color '{value}': {e}") from e


def parse_colors(pod_colors: list[str], container_colors: list[str]) -> list[ColorPair]:
    """Build a palette from user supplied pod and container colors.

    Container colors default to the pod colors when empty.

    Raises:
        ConfigError: If pod colors are empty, lengths differ, or a color is invalid.
    """
    if not pod_colors:
        raise ConfigError("pod-colors must not be empty")
    if not container_colors:
        container_colors = pod_colors
    elif len(container_colors) != len(pod_colors):
        raise ConfigError("pod-colors and container-colors must have the same length")

    return [
        (parse_style(pod), parse_style(container))
        for pod, container in zip(pod_colors, container_colors)
    ]


class ColorPalette:
    """A configurable list of (pod, container) color pairs.

    Attributes:
        pairs: The color pairs to choose from.
        enabled: Whether painting produces ANSI escapes at all.

    Example:
        palette = ColorPalette()
        pod_style, container_style = palette.pick("web-1", "nginx")
        print(palette.paint("web-1", pod_style))
    """

    def __init__(self, pairs: list[ColorPair] | None = None, enabled: bool = True) -> None:
        if pairs is None:
            pairs = [(Style.parse(pod), Style.parse(container)) for pod, container in DEFAULT_COLOR_PAIRS]
        if not pairs:
            raise ConfigError("color palette must not be empty")
        self.pairs = pairs
        self.enabled = enabled

    def pick(self, pod_name: str, container_name: str, diff_container: bool = False) -> ColorPair:
        """Return the (pod, container) styles for a target.

        With ``diff_container`` the container color is chosen by hashing the
        container name instead of the pod name.
        """
        pod_style, container_style = self.pairs[color_index(pod_name, len(self.pairs))]
        if diff_container:
            container_style = self.pairs[color_index(container_name, len(self.pairs))][1]
        return pod_style, container_style

    def paint(self, text: str, style: Style) -> str:
        """Wrap text in the ANSI sequence for ``style`` when colors are enabled."""
        if not self.enabled or not text:
            return text
        return style.render(text, color_system=ColorSystem.TRUECOLOR)
