"""
Rich Output Utilities
=====================

Unified terminal output for llm-router using the Rich library.
Provides the themed console, message helpers, tables and the logging
integration used by every module.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.rule import Rule
from rich.status import Status
from rich.table import Table
from rich.text import Text
from rich.theme import Theme


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class RouterColors:
    """llm-router color palette using hex for truecolor terminal support."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    boulder: str = "#F59E0B"   # warm accent
    route: str = "#22D3EE"     # cool accent
    steel: str = "#94A3B8"     # secondary accent
    ok: str = "#22C55E"        # success green
    warn: str = "#FBBF24"      # warning yellow
    err: str = "#EF4444"       # error red


def router_theme(colors: RouterColors = RouterColors()) -> Theme:
    """
    Rich Theme for the llm-router CLI.

    Style names are semantic so you can use them everywhere:
      console.print("...", style="lr.ok")
    """
    return Theme(
        {
            "lr.banner": f"bold {colors.route}",
            "lr.border": f"{colors.route}",
            "lr.accent": f"bold {colors.boulder}",
            "lr.muted": f"{colors.dim}",
            "lr.text": f"{colors.ink}",

            # Status
            "lr.ok": f"bold {colors.ok}",
            "lr.warn": f"bold {colors.warn}",
            "lr.err": f"bold {colors.err}",
            "lr.info": f"{colors.route}",

            # Data display
            "lr.key": f"{colors.steel}",
            "lr.value": f"{colors.ink}",
            "lr.number": f"bold {colors.boulder}",
            "lr.timestamp": f"{colors.dim}",

            # Table styling
            "lr.table.header": f"bold {colors.route}",

            # Boulder / task status indicators
            "lr.status.active": f"bold {colors.route}",
            "lr.status.completed": f"bold {colors.ok}",
            "lr.status.failed": f"bold {colors.err}",
            "lr.status.crashed": f"bold {colors.warn}",
            "lr.status.pending": f"{colors.warn}",
            "lr.status.cancelled": f"{colors.dim}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can handle Unicode characters."""
    if os.name == 'nt':
        try:
            encoding = sys.stdout.encoding or 'utf-8'
            "✓✗•".encode(encoding)
            return True
        except (UnicodeEncodeError, LookupError, AttributeError):
            return False
    return True


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "blocked": "⛔",
    "warning": "⚠️",
    "info": "ℹ",
    "bullet": "•",
    "arrow_right": "→",
    "clock": "\U0001F551",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "blocked": "[BLOCKED]",
    "warning": "[!]",
    "info": "[i]",
    "bullet": "-",
    "arrow_right": "->",
    "clock": "[T]",
}

_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# =============================================================================
# Global Console Instance
# =============================================================================

# Log output goes to stderr so stdout stays clean for command output
console = Console(theme=router_theme())
err_console = Console(theme=router_theme(), stderr=True)


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"[lr.ok]{icon('check')} {message}[/]")


def print_error(message: str) -> None:
    """Print an error message with X."""
    console.print(f"[lr.err]{icon('cross')} {message}[/]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[lr.warn]{icon('warning')} {message}[/]")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[lr.info]{icon('info')} {message}[/]")


def print_muted(message: str) -> None:
    """Print muted/secondary text."""
    console.print(f"[lr.muted]{message}[/]")


# =============================================================================
# Headers & Sections
# =============================================================================

def print_header(title: str, style: str = "lr.accent") -> None:
    """Print a prominent section header with rule lines."""
    console.print()
    console.print(Rule(f"[{style}]{title}[/]", style=style))
    console.print()


def print_subheader(title: str, style: str = "lr.info") -> None:
    """Print a smaller subsection header."""
    console.print(f"\n[{style}]{icon('arrow_right')} {title}[/]")


# =============================================================================
# Data Display Functions
# =============================================================================

def print_key_value_table(
    data: Dict[str, Any],
    *,
    title: Optional[str] = None,
    border_style: str = "lr.border",
) -> None:
    """Print multiple key-value pairs in a clean table format."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="lr.key")
    table.add_column("Value", style="lr.value")

    for key, value in data.items():
        table.add_row(key, str(value))

    if title:
        console.print(Panel(table, title=f"[bold]{title}[/]", border_style=border_style))
    else:
        console.print(table)


def print_list(
    items: Sequence[str],
    *,
    numbered: bool = False,
    style: str = "lr.text",
    bullet_style: str = "lr.accent",
) -> None:
    """Print a bulleted or numbered list."""
    for i, item in enumerate(items, 1):
        if numbered:
            console.print(f"  [{bullet_style}]{i}.[/] [{style}]{item}[/]")
        else:
            console.print(f"  [{bullet_style}]{icon('bullet')}[/] [{style}]{item}[/]")


def status_markup(status: str) -> str:
    """Wrap a boulder/task status in its theme style."""
    return f"[lr.status.{status}]{status}[/]"


# =============================================================================
# Table Functions
# =============================================================================

def create_table(
    *,
    title: Optional[str] = None,
    columns: Optional[List[str]] = None,
    show_header: bool = True,
    border_style: str = "lr.border",
    header_style: str = "lr.table.header",
) -> Table:
    """Create a styled Rich Table with the router theme."""
    table = Table(
        title=title,
        show_header=show_header,
        header_style=header_style,
        border_style=border_style,
        title_style="lr.accent",
    )

    if columns:
        for col in columns:
            table.add_column(col)

    return table


def print_table(table: Table) -> None:
    """Print a Rich Table to the console."""
    console.print(table)


# =============================================================================
# Panels
# =============================================================================

def print_panel(
    content: Union[str, Text],
    *,
    title: Optional[str] = None,
    subtitle: Optional[str] = None,
    border_style: str = "lr.border",
    padding: tuple = (1, 2),
) -> None:
    """Print content in a styled panel."""
    console.print(Panel(
        content,
        title=f"[bold]{title}[/]" if title else None,
        subtitle=f"[lr.muted]{subtitle}[/]" if subtitle else None,
        border_style=border_style,
        padding=padding,
    ))


# =============================================================================
# Progress & Spinners
# =============================================================================

@contextmanager
def spinner(message: str, *, style: str = "lr.accent") -> Iterator[Status]:
    """
    Context manager for showing a spinner during long operations.

    Usage:
        with spinner("Loading tasks..."):
            load_tasks()
    """
    with console.status(f"[{style}]{message}[/]", spinner="dots") as status:
        yield status


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: Union[int, str, None] = None) -> None:
    """
    Configure Python logging to use Rich for log output.

    The level defaults to the LLM_ROUTER_LOG_LEVEL environment variable
    (falling back to INFO).

    Usage:
        setup_rich_logging()
        logging.getLogger(__name__).info("Routed to %s", expert_id)
    """
    if level is None:
        level = os.environ.get("LLM_ROUTER_LOG_LEVEL", "INFO").upper()

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=err_console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
        force=True,
    )
