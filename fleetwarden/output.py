"""
Rich Output Utilities
=====================

Terminal output for the Fleetwarden CLI: one themed console, the priority
and status styles used in escalation and action listings, and logging
through the same console.

Usage:
    from fleetwarden.output import console, styled

    console.print(styled("critical", "priority"))
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.theme import Theme


# =============================================================================
# Theme
# =============================================================================

OK = "#22C55E"
WARN = "#FBBF24"
ERR = "#EF4444"
CYAN = "#22D3EE"
AMBER = "#F59E0B"
SLATE = "#94A3B8"
DIM = "#9AA4B2"

# Priorities and statuses share their names with the stored values, so a
# row can be styled straight from the database.
FLEETWARDEN_THEME = Theme({
    "fw.accent": f"bold {AMBER}",
    "fw.border": CYAN,
    "fw.muted": DIM,
    "fw.key": SLATE,
    "fw.number": f"bold {AMBER}",
    "fw.ok": f"bold {OK}",
    "fw.err": f"bold {ERR}",

    "fw.priority.critical": f"bold {ERR}",
    "fw.priority.high": f"bold {WARN}",
    "fw.priority.normal": CYAN,

    "fw.status.pending": WARN,
    "fw.status.acknowledged": CYAN,
    "fw.status.resolved": f"bold {OK}",
    "fw.status.dismissed": DIM,
    "fw.status.success": f"bold {OK}",
    "fw.status.failure": f"bold {ERR}",
    "fw.status.overridden": SLATE,
})

console = Console(theme=FLEETWARDEN_THEME)


def styled(value: str, family: str) -> str:
    """Markup for a priority or status value, e.g. styled("high", "priority")."""
    return f"[fw.{family}.{value}]{escape(value)}[/]"


# =============================================================================
# Messages
# =============================================================================

def print_success(message: str) -> None:
    console.print(f"[fw.ok]ok:[/] {escape(message)}")


def print_error(message: str) -> None:
    console.print(f"[fw.err]error:[/] {escape(message)}")


def print_muted(message: str) -> None:
    console.print(escape(message), style="fw.muted")


def print_header(title: str) -> None:
    console.print()
    console.print(Rule(escape(title), style="fw.accent"))


# =============================================================================
# Tables
# =============================================================================

def create_table(columns: Sequence[str], title: Optional[str] = None) -> Table:
    """Empty listing table with the Fleetwarden header and border styles."""
    table = Table(
        title=title,
        title_style="fw.accent",
        header_style=f"bold {CYAN}",
        border_style="fw.border",
    )
    for column in columns:
        table.add_column(column)
    return table


def print_key_value_table(data: Mapping[str, object], title: Optional[str] = None) -> None:
    """Print settings as a borderless two-column table, boxed when titled."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="fw.key")
    table.add_column()
    for key, value in data.items():
        table.add_row(key, escape(str(value)))

    console.print(Panel(table, title=f"[bold]{escape(title)}[/]", border_style="fw.border") if title else table)


# =============================================================================
# Logging
# =============================================================================

def setup_rich_logging(level: int = logging.INFO) -> None:
    """Route the standard logging module through the themed console."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False, rich_tracebacks=True)],
    )
