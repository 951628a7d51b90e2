"""Activity reporting for visible units of work (downloads, uploads, folder copies)."""

from contextlib import contextmanager
from typing import Iterator, Protocol


class ActivityListener(Protocol):
    """Receives start/stop notifications, e.g. to animate a spinner."""

    def started(self) -> None: ...

    def stopped(self) -> None: ...


class NullActivityListener:
    """Activity listener that ignores all notifications."""

    def started(self) -> None:
        pass

    def stopped(self) -> None:
        pass


@contextmanager
def activity(listener: ActivityListener) -> Iterator[None]:
    """Bracket a unit of work with started()/stopped(), even if it fails."""
    listener.started()
    try:
        yield
    finally:
        listener.stopped()
