"""Tests for deterministic color assignment."""

import pytest
from rich.style import Style

from kutail.color import (
    DEFAULT_COLOR_PAIRS,
    ColorPalette,
    color_index,
    fnv32,
    parse_colors,
    parse_style,
)
from kutail.exceptions import ConfigError


class TestHash:
    """Tests for the FNV-1 hash."""

    def test_known_values(self) -> None:
        assert fnv32(b"") == 0x811C9DC5
        assert fnv32(b"a") == 0x050C5D7E

    def test_index_is_deterministic(self) -> None:
        assert color_index("web-abc123", 6) == color_index("web-abc123", 6)
        assert 0 <= color_index("web-abc123", 6) < 6


class TestParseStyle:
    """Tests for parse_style."""

    def test_sgr_sequence(self) -> None:
        style = parse_style("31;4")
        assert style.color == Style.parse("red").color
        assert style.underline

    def test_rich_style_name(self) -> None:
        assert parse_style("bold magenta") == Style.parse("bold magenta")

    def test_invalid(self) -> None:
        with pytest.raises(ConfigError, match="invalid color"):
            parse_style("no-such-color")


class TestParseColors:
    """Tests for parse_colors."""

    def test_container_colors_default_to_pod_colors(self) -> None:
        pairs = parse_colors(["red", "green"], [])
        assert pairs == [
            (Style.parse("red"), Style.parse("red")),
            (Style.parse("green"), Style.parse("green")),
        ]

    def test_separate_container_colors(self) -> None:
        pairs = parse_colors(["red"], ["blue"])
        assert pairs == [(Style.parse("red"), Style.parse("blue"))]

    def test_empty_pod_colors(self) -> None:
        with pytest.raises(ConfigError):
            parse_colors([], ["blue"])

    def test_length_mismatch(self) -> None:
        with pytest.raises(ConfigError, match="same length"):
            parse_colors(["red", "green"], ["blue"])


class TestColorPalette:
    """Tests for ColorPalette."""

    def test_default_pairs(self) -> None:
        assert len(ColorPalette().pairs) == len(DEFAULT_COLOR_PAIRS)

    def test_pick_by_pod_name(self) -> None:
        """Test that containers share their pod's pair by default."""
        palette = ColorPalette()
        index = color_index("web-1", len(palette.pairs))
        assert palette.pick("web-1", "nginx") == palette.pairs[index]
        assert palette.pick("web-1", "sidecar") == palette.pairs[index]

    def test_pick_diff_container(self) -> None:
        palette = ColorPalette()
        pod_index = color_index("web-1", len(palette.pairs))
        container_index = color_index("sidecar", len(palette.pairs))
        assert palette.pick("web-1", "sidecar", diff_container=True) == (
            palette.pairs[pod_index][0],
            palette.pairs[container_index][1],
        )

    def test_custom_palette(self) -> None:
        pair = (Style.parse("red"), Style.parse("blue"))
        palette = ColorPalette([pair])
        assert palette.pick("anything", "else") == pair

    def test_empty_palette(self) -> None:
        with pytest.raises(ConfigError):
            ColorPalette([])

    def test_paint(self) -> None:
        painted = ColorPalette().paint("web-1", Style.parse("red"))
        assert painted.startswith("\x1b[")
        assert "web-1" in painted

    def test_paint_disabled(self) -> None:
        assert ColorPalette(enabled=False).paint("web-1", Style.parse("red")) == "web-1"
