"""Machine log — the shared event trail behind ``dmesg``-style inspection.

The RAM ledger, the CPU workers, the dispatcher and the transport
gateway all report to one ``Logger`` owned by the machine.  Each record
says which subsystem spoke (``source``: ``"machine"``, ``"ram"``,
``"cpu"``, ``"os"`` or ``"gateway"``) and which owner it concerns, so a
single process's history can be pulled out with ``filter(owner=...)``:
when it started, whether a memory request was rejected, which callback
failed, how it exited.

Records are appended from worker threads, gateway threads and the
caller's thread at the same time, so the buffer sits behind a lock and
every read hands back a copy.
"""

import threading
from dataclasses import dataclass
from enum import IntEnum


class LogLevel(IntEnum):
    """How serious an event is; higher values are more severe.

    Rejected memory requests and forced exits are WARNING, failing task
    callbacks are ERROR, discarded tasks of exited owners are DEBUG.
    """

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


@dataclass(frozen=True)
class LogEntry:
    """One event reported by a subsystem.

    Attributes:
        level: Severity of the event.
        message: What happened, in words.
        source: Subsystem that reported it.
        owner: Owner id the event concerns; 0 for the shell and for
            machine-wide events.

    """

    level: LogLevel
    message: str
    source: str
    owner: int | str = 0

    def __str__(self) -> str:
        """Format as ``[LEVEL] source: message``."""
        return f"[{self.level.name}] {self.source}: {self.message}"


class Logger:
    """The machine's append-only event buffer."""

    def __init__(self) -> None:
        """Create an empty buffer."""
        self._entries: list[LogEntry] = []
        self._lock = threading.Lock()

    @property
    def entries(self) -> list[LogEntry]:
        """Return a copy of every entry, oldest first."""
        with self._lock:
            return list(self._entries)

    def log(
        self,
        level: LogLevel,
        message: str,
        *,
        source: str,
        owner: int | str = 0,
    ) -> None:
        """Record an event.

        Args:
            level: Severity of the event.
            message: What happened.
            source: Reporting subsystem.
            owner: Owner id the event concerns.

        """
        entry = LogEntry(level=level, message=message, source=source, owner=owner)
        with self._lock:
            self._entries.append(entry)

    def filter(
        self,
        *,
        min_level: LogLevel | None = None,
        source: str | None = None,
        owner: int | str | None = None,
    ) -> list[LogEntry]:
        """Return the entries matching every given criterion.

        Args:
            min_level: Keep entries at or above this severity.
            source: Keep entries from this subsystem.
            owner: Keep entries about this owner.

        """
        result = self.entries
        if min_level is not None:
            result = [e for e in result if e.level >= min_level]
        if source is not None:
            result = [e for e in result if e.source == source]
        if owner is not None:
            result = [e for e in result if e.owner == owner]
        return result

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()
