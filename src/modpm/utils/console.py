"""Console utility functions for formatting and output."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree


# Status symbols for consistent iconography
STATUS_SYMBOLS = {
    'success': '✨',
    'info': '💡',
    'warning': '⚠️',
    'error': '❌',
    'check': '✅',
    'download': '📦',
    'lock': '🔒',
    'tree': '🌳',
    'list': '📋',
}

_console: Optional[Console] = None
_err_console: Optional[Console] = None


def _get_console(stderr: bool = False) -> Console:
    """Get the shared Rich console, created on first use."""
    global _console, _err_console
    if stderr:
        if _err_console is None:
            _err_console = Console(stderr=True)
        return _err_console
    if _console is None:
        _console = Console()
    return _console


def _rich_echo(message: str, color: str = "white", bold: bool = False, symbol: str = None, stderr: bool = False):
    """Echo message with Rich formatting."""
    if symbol and symbol in STATUS_SYMBOLS:
        message = f"{STATUS_SYMBOLS[symbol]} {message}"

    style = f"bold {color}" if bold else color
    _get_console(stderr).print(message, style=style, highlight=False)


def _rich_success(message: str, symbol: str = None):
    """Display success message with green color and bold styling."""
    _rich_echo(message, color="green", symbol=symbol, bold=True)


def _rich_error(message: str, symbol: str = None):
    """Display error message with red color."""
    _rich_echo(message, color="red", symbol=symbol, stderr=True)


def _rich_warning(message: str, symbol: str = None):
    """Display warning message with yellow color."""
    _rich_echo(message, color="yellow", symbol=symbol, stderr=True)


def _rich_info(message: str, symbol: str = None):
    """Display info message with blue color."""
    _rich_echo(message, color="blue", symbol=symbol)


def _rich_panel(content: str, title: str = None, style: str = "cyan"):
    """Display content in a Rich panel."""
    _get_console().print(Panel(content, title=title, border_style=style))


def _create_deps_table(rows: list, title: str = "Dependencies") -> Table:
    """Create a Rich table of (name, version, source, path) rows."""
    table = Table(title=f"{STATUS_SYMBOLS['list']} {title}", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold white")
    table.add_column("Version", style="white")
    table.add_column("Source", style="cyan")
    table.add_column("Path", style="dim white")

    for row in rows:
        table.add_row(*[str(cell) if cell is not None else "" for cell in row])

    return table


def _create_tree(label: str) -> Tree:
    """Create a Rich tree rooted at ``label``."""
    return Tree(f"{STATUS_SYMBOLS['tree']} {label}", guide_style="dim")
