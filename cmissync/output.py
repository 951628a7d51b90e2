"""Console output for the CLI, aware of --quiet and --json."""

import json
from typing import Any, Optional

import click
from rich.console import Console
from rich.table import Table


class OutputFormatter:
    """Formats CLI messages, tables and JSON documents."""

    def __init__(self, json_output: bool = False, quiet: bool = False):
        """Initialize output formatter.

        Args:
            json_output: Emit machine readable JSON instead of text
            quiet: Suppress non-essential output
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console(soft_wrap=True, highlight=False)
        self.err_console = Console(stderr=True, soft_wrap=True, highlight=False)

    @property
    def interactive(self) -> bool:
        """Whether progress displays may be shown."""
        return not (self.quiet or self.json_output)

    def info(self, message: str) -> None:
        """Print an informational message."""
        if self.interactive:
            self.console.print(message, markup=False)

    def success(self, message: str) -> None:
        """Print a success message."""
        if self.interactive:
            self.console.print(message, style="green", markup=False)

    def warning(self, message: str) -> None:
        """Print a warning to stderr."""
        if not self.quiet:
            self.err_console.print(f"Warning: {message}", style="yellow", markup=False)

    def error(self, message: str) -> None:
        """Print an error to stderr (never suppressed)."""
        self.err_console.print(f"Error: {message}", style="bold red", markup=False)

    def print(self, message: str = "") -> None:
        """Print a plain line."""
        if self.interactive:
            self.console.print(message, markup=False)

    def output_json(self, data: Any) -> None:
        """Print data as a JSON document."""
        click.echo(json.dumps(data, indent=2, default=str))

    def output_table(
        self,
        rows: list[dict[str, Any]],
        columns: list[str],
        headers: Optional[dict[str, str]] = None,
        title: Optional[str] = None,
    ) -> None:
        """Print rows as a table, or as a JSON list in JSON mode.

        Args:
            rows: One dictionary per row
            columns: Keys to show, in order
            headers: Column titles (default: the keys)
            title: Table title
        """
        if self.json_output:
            self.output_json([{c: row.get(c) for c in columns} for row in rows])
            return
        if self.quiet:
            return

        headers = headers or {}
        table = Table(title=title, show_header=True, header_style="bold")
        for column in columns:
            table.add_column(headers.get(column, column))
        for row in rows:
            table.add_row(
                *("" if row.get(c) is None else str(row.get(c)) for c in columns)
            )
        self.console.print(table)

    def print_summary(self, title: str, items: list[tuple[str, Any]]) -> None:
        """Print a titled list of key/value pairs.

        Args:
            title: Summary title
            items: (label, value) pairs
        """
        if self.json_output:
            self.output_json({label: value for label, value in items})
            return
        if self.quiet:
            return

        self.console.print()
        self.console.print(title, style="bold", markup=False)
        width = max((len(label) for label, _ in items), default=0)
        for label, value in items:
            self.console.print(f"  {label:<{width}}  {value}", markup=False)
        self.console.print()
