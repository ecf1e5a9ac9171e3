"""Output rendering for the contract-forge CLI.

Respects the ``NO_COLOR`` environment variable and the ``--no-color`` flag. Markup is never
interpreted, so build logs containing ``[brackets]`` print verbatim.
"""

from __future__ import annotations

import os
import sys
from typing import IO, TYPE_CHECKING

from rich.console import Console
from rich.style import Style
from rich.text import Text

if TYPE_CHECKING:
    from collections.abc import Sequence

_OK_STYLE = Style(color="green", bold=True)
_FAIL_STYLE = Style(color="red", bold=True)
_WARN_STYLE = Style(color="yellow")
_HEADING_STYLE = Style(bold=True)
_DIM_STYLE = Style(dim=True)


def _color_allowed(no_color_flag: bool, stream: IO[str]) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Thin CLI output renderer over a ``rich`` console."""

    def __init__(
        self,
        *,
        no_color: bool = False,
        file: IO[str] | None = None,
    ) -> None:
        stream = file if file is not None else sys.stdout
        self._color = _color_allowed(no_color, stream)
        self._console = Console(
            file=stream,
            no_color=not self._color,
            color_system="auto" if self._color else None,
            highlight=False,
            markup=False,
            emoji=False,
            soft_wrap=True,
        )

    @property
    def color(self) -> bool:
        return self._color

    def heading(self, text: str) -> None:
        self._print(Text(text, style=_HEADING_STYLE))

    def text(self, line: str) -> None:
        self._print(Text(line))

    def blank(self) -> None:
        self._print(Text(""))

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self.blank()
        self.heading(title)

    def warning(self, text: str) -> None:
        self._print(Text.assemble(("  Warning: ", _WARN_STYLE), text))

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._print(Text(f"  {prefix}{entry}"))

    def detail(self, text: str, *, indent: str = "        ") -> None:
        """Print a multi-line block indented under the previous line."""

        for line in text.rstrip("\n").splitlines():
            self._print(Text(f"{indent}{line}", style=_DIM_STYLE))

    def ok(self, label: str) -> None:
        self._print(Text.assemble(("  OK    ", _OK_STYLE), label))

    def fail(self, label: str) -> None:
        self._print(Text.assemble(("  FAIL  ", _FAIL_STYLE), label))

    def _print(self, text: Text) -> None:
        self._console.print(text)


def create_renderer(*, no_color: bool = False, file: IO[str] | None = None) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, file=file)


__all__ = ["CLIRenderer", "create_renderer"]
