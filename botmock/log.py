"""Logging setup and console output for captured requests."""

import logging
from collections.abc import Iterable

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from botmock.recorder import CapturedFile, CapturedRequest

console = Console()


def setup_logging(level: str | int = "WARNING") -> None:
    """Route botmock and library logs through rich."""
    logging.basicConfig(
        level=level,
        format="%(name)s - %(message)s",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )
    logging.getLogger("botmock").setLevel(level)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("aiogram").setLevel(logging.WARNING)


def _format_value(value: object) -> str:
    if isinstance(value, CapturedFile):
        return f"<file {value.filename or value.field_name}, {value.media_type}, {value.size} B>"
    text = str(value)
    return text if len(text) <= 60 else text[:57] + "..."


def print_requests(requests: Iterable[CapturedRequest], title: str = "Captured requests") -> None:
    """Print captured calls as a table."""
    table = Table(title=title)
    table.add_column("#", justify="right", style="dim")
    table.add_column("method", style="bold cyan")
    table.add_column("params")
    table.add_column("files", style="green")

    for request in requests:
        params = escape(", ".join(
            f"{name}={_format_value(value)}" for name, value in request.params.items()
        ))
        if request.error:
            params = f"[bold red]ERROR[/] {escape(request.error)}"
        files = ", ".join(f"{f.field_name} ({f.size} B)" for f in request.files)
        table.add_row(str(request.seq), request.method, params, files)

    console.print(table)
