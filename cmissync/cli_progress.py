"""CLI activity display for sync operations.

Provides a Rich spinner that implements the engine's ActivityListener
interface: it counts the units of work (folder copies, downloads,
uploads) that are currently running and that have completed.
"""

import threading
from typing import Optional

from rich.console import Console
from rich.progress import (
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)


class RichActivityListener:
    """Rich-based activity indicator.

    Use as a context manager around an engine run; outside of the
    context the notifications are only counted. One listener may be
    shared by engines running in several threads.

    Examples:
        >>> with RichActivityListener() as listener:
        ...     engine = SyncEngine(folder, activity_listener=listener)
        ...     engine.sync()
    """

    def __init__(self, description: str = "Syncing", console: Optional[Console] = None):
        """Initialize the activity display.

        Args:
            description: Text shown next to the spinner
            console: Console to draw on (default: stdout)
        """
        self.description = description
        self.console = console
        self.active = 0
        self.completed = 0
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None
        self._lock = threading.Lock()

    def _refresh(self) -> None:
        if self._progress is None or self._task is None:
            return
        self._progress.update(
            self._task,
            status=f"{self.active} active, {self.completed} done",
        )

    def started(self) -> None:
        """A unit of work started."""
        with self._lock:
            self.active += 1
            self._refresh()

    def stopped(self) -> None:
        """A unit of work finished (successfully or not)."""
        with self._lock:
            self.active = max(0, self.active - 1)
            self.completed += 1
            self._refresh()

    def __enter__(self) -> "RichActivityListener":
        """Enter context manager - start spinner."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            TextColumn("[cyan]{task.fields[status]}"),
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
            refresh_per_second=4,
        )
        self._progress.__enter__()
        self._task = self._progress.add_task(
            self.description, total=None, status="0 active, 0 done"
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop spinner."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None
