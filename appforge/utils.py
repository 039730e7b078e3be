"""Shared utility functions for AppForge.

Provides JSON persistence, file-system helpers for materialising generated
projects, and Rich-based console reporting.  The module-level ``console``
is the single place the orchestrator, executor and CLI print through.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path, PurePosixPath
from typing import Any

from rich.console import Console
from rich.rule import Rule
from rich.table import Table

console = Console()

# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


async def save_json(data: dict[str, Any] | list[Any], path: str | Path) -> None:
    """Save data as pretty-printed JSON.

    Parent directories are created automatically.  The write itself is
    performed in a thread-pool executor to avoid blocking the event loop on
    large files.
    """
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(data, indent=2, ensure_ascii=False, default=str)

    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, file_path.write_text, content, "utf-8")


# ---------------------------------------------------------------------------
# File-system helpers
# ---------------------------------------------------------------------------


def ensure_dir(path: str | Path) -> Path:
    """Create a directory (and parents) if it does not exist."""
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path.resolve()


def safe_relative_path(path: str) -> PurePosixPath:
    """Normalise a generated file path into a safe relative path.

    Leading slashes are stripped.  Paths that escape the project root via
    ``..`` are rejected.

    Raises:
        ValueError: If the path is empty or escapes the root.
    """
    cleaned = PurePosixPath(path.strip().lstrip("/"))
    if not cleaned.parts or cleaned.parts == (".",):
        raise ValueError(f"Empty file path: {path!r}")
    if ".." in cleaned.parts:
        raise ValueError(f"File path escapes project root: {path!r}")
    return cleaned


def write_files(files: dict[str, str], root: str | Path) -> list[Path]:
    """Write a ``path -> content`` mapping below *root*.

    Paths that are empty or escape *root* are skipped with a warning.

    Returns:
        The absolute paths written, in mapping order.
    """
    root_dir = ensure_dir(root)
    written: list[Path] = []
    for rel, content in files.items():
        try:
            safe = safe_relative_path(rel)
        except ValueError as exc:
            print_warning(f"Skipping file: {exc}")
            continue
        target = root_dir.joinpath(*safe.parts)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        written.append(target)
    return written


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
        format_duration(3661.0) -> "1h 1m 1s"
    """
    if seconds < 0:
        return "0.0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60

    parts: list[str] = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")

    if hours > 0 or minutes > 0:
        parts.append(f"{int(secs)}s")
    else:
        parts.append(f"{secs:.1f}s")

    return " ".join(parts)


def format_cost(cost_usd: float) -> str:
    """Format a USD amount with enough precision for per-call costs."""
    if cost_usd <= 0:
        return "$0.00"
    if cost_usd < 0.01:
        return f"${cost_usd:.6f}"
    return f"${cost_usd:.2f}"


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


STAGE_COLORS: dict[str, str] = {
    "decision": "bright_cyan",
    "requirements": "bright_cyan",
    "planning": "bright_green",
    "design": "bright_green",
    "build": "bright_yellow",
    "schema": "bright_blue",
    "qa": "bright_magenta",
    "repair": "bright_red",
}


def print_phase_header(stage: str, name: str) -> None:
    """Print a prominent stage header using Rich.

    Args:
        stage: Stage key (see ``STAGE_COLORS``), used for colouring.
        name: Display name.
    """
    color = STAGE_COLORS.get(stage, "white")
    console.print()
    console.print(
        Rule(
            f"[bold {color}] {name.upper()} [/bold {color}]",
            style=color,
        )
    )
    console.print()


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)
    console.print()


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")
