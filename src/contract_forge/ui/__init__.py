"""Command-line surface: argument routing and summary rendering."""

from contract_forge.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIRenderer", "create_renderer"]
