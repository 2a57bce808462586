"""Log record rendering.

A LogRecord is handed to a renderer for every emitted line. Renderers
turn it into the text written to the output stream; they must raise
TemplateError when a record cannot be rendered.
"""

import json
import string
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from rich.style import Style

from kutail.color import ColorPalette
from kutail.exceptions import ConfigError, TemplateError


OUTPUTS = ("default", "raw", "json")


@dataclass(slots=True)
class LogRecord:
    """Everything a template may reference for one log line."""

    message: str
    node_name: str
    namespace: str
    pod_name: str
    container_name: str
    pod_color: Style
    container_color: Style

    def as_fields(self) -> dict[str, Any]:
        """Return the template fields, keyed by their template names."""
        return {
            "message": self.message,
            "nodeName": self.node_name,
            "namespace": self.namespace,
            "podName": self.pod_name,
            "containerName": self.container_name,
        }


@runtime_checkable
class LogRenderer(Protocol):
    """Protocol for objects that can render log records."""

    def render(self, record: LogRecord) -> str:
        """Render a record to text.

        Raises:
            TemplateError: If the record cannot be rendered.
        """
        ...


class _RecordFormatter(string.Formatter):
    """Formatter treating 'podColor'/'containerColor' format specs as colors."""

    def __init__(self, palette: ColorPalette, record: LogRecord) -> None:
        self._palette = palette
        self._styles = {
            "podColor": record.pod_color,
            "containerColor": record.container_color,
        }

    def format_field(self, value: Any, format_spec: str) -> str:
        style = self._styles.get(format_spec)
        if style is not None:
            return self._palette.paint(str(value), style)
        return super().format_field(value, format_spec)


class FormatRenderer:
    """Renders records with a str.format template.

    Example:
        renderer = FormatRenderer("{podName:podColor} {message}\\n", ColorPalette())
    """

    def __init__(self, template: str, palette: ColorPalette) -> None:
        self.template = template
        self.palette = palette

    def render(self, record: LogRecord) -> str:
        formatter = _RecordFormatter(self.palette, record)
        try:
            return formatter.vformat(self.template, (), record.as_fields())
        except (KeyError, IndexError, AttributeError, ValueError, TypeError) as e:
            raise TemplateError(str(e)) from e


class JSONRenderer:
    """Renders each record as a single-line JSON object."""

    def render(self, record: LogRecord) -> str:
        try:
            return json.dumps(record.as_fields()) + "\n"
        except (TypeError, ValueError) as e:
            raise TemplateError(str(e)) from e


def default_template(show_namespace: bool) -> str:
    """Return the default line template; colors are dropped when painting is off."""
    template = "{podName:podColor} {containerName:containerColor} {message}"
    if show_namespace:
        template = "{namespace:podColor} " + template
    return template + "\n"


def build_renderer(
    output: str,
    template: str | None,
    palette: ColorPalette,
    show_namespace: bool = False,
) -> LogRenderer:
    """Build the renderer for a predefined output or a custom template.

    A custom template takes precedence over ``output``.

    Raises:
        ConfigError: If the output name is unknown or the template is invalid.
    """
    if template:
        try:
            list(string.Formatter().parse(template))
        except ValueError as e:
            raise ConfigError(f"unable to parse template: {e}") from e
        return FormatRenderer(template, palette)

    if output == "default":
        return FormatRenderer(default_template(show_namespace), palette)
    if output == "raw":
        return FormatRenderer("{message}\n", palette)
    if output == "json":
        return JSONRenderer()

    raise ConfigError(f"output should be one of {', '.join(repr(o) for o in OUTPUTS)}")
