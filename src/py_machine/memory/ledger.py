"""Memory ledger — capacity-bounded RAM accounting per owner.

The simulated RAM does not hand out frames or addresses.  It only keeps
a ledger: how many units each owner (a process, or the system itself)
currently holds, checked against one fixed capacity.

Invariant:
    ``total_usage() <= capacity`` at every observable instant.

When a request does not fit, nothing is recorded.  Instead the ledger
calls its **exhaustion hook** with the requesting owner, which the
machine wires to a forced exit of that owner's process.  From the
caller's point of view the request simply failed and the process is
already gone.

The check-then-act in ``allocate`` runs under a lock so two processes
allocating at the same moment cannot both squeeze into the last free
units.  The hook is invoked *after* the lock is released, because a
forced exit calls straight back into ``clear``.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, TypeAlias

from py_machine.logging import Logger, LogLevel

if TYPE_CHECKING:
    from collections.abc import Callable

Owner: TypeAlias = int | str

SYSTEM_OWNER: Owner = "system"
OOM_MESSAGE = "Error: RAM is full, program exit."
DEFAULT_RAM_SIZE = 1_000_000


class OutOfMemoryError(Exception):
    """Raise when a reservation that cannot be force-exited does not fit."""


class MemoryLedger:
    """Track per-owner memory usage against a fixed capacity."""

    def __init__(
        self,
        *,
        capacity: int = DEFAULT_RAM_SIZE,
        on_exhausted: Callable[[Owner], None] | None = None,
        logger: Logger | None = None,
    ) -> None:
        """Create an empty ledger.

        Args:
            capacity: Total units of memory available.
            on_exhausted: Called with the owner whose request was rejected.
            logger: Optional log buffer for rejections.

        Raises:
            ValueError: If the capacity is not positive.

        """
        if capacity <= 0:
            msg = f"Capacity must be positive, got {capacity}"
            raise ValueError(msg)
        self._capacity = capacity
        self._usage: dict[Owner, int] = {}
        self._lock = threading.Lock()
        self._on_exhausted = on_exhausted
        self._logger = logger

    @property
    def capacity(self) -> int:
        """Return the total capacity."""
        return self._capacity

    @property
    def on_exhausted(self) -> Callable[[Owner], None] | None:
        """Return the exhaustion hook."""
        return self._on_exhausted

    @on_exhausted.setter
    def on_exhausted(self, hook: Callable[[Owner], None] | None) -> None:
        """Install the exhaustion hook."""
        self._on_exhausted = hook

    def total_usage(self) -> int:
        """Return the sum of every owner's allocation."""
        with self._lock:
            return sum(self._usage.values())

    def free(self) -> int:
        """Return the unallocated capacity."""
        return self._capacity - self.total_usage()

    def usage_of(self, owner: Owner) -> int:
        """Return how much *owner* currently holds (0 if nothing)."""
        with self._lock:
            return self._usage.get(owner, 0)

    def snapshot(self) -> dict[Owner, int]:
        """Return a copy of the owner → amount mapping."""
        with self._lock:
            return dict(self._usage)

    def __contains__(self, owner: object) -> bool:
        """Return True if *owner* has an entry in the ledger."""
        with self._lock:
            return owner in self._usage

    def allocate(self, owner: Owner, amount: int) -> bool:
        """Record *amount* more units for *owner* if they fit.

        On failure the ledger is left untouched and the exhaustion hook
        runs for *owner*.

        Args:
            owner: The owner requesting memory.
            amount: Units requested (must not be negative).

        Returns:
            True if the allocation was recorded, False otherwise.

        Raises:
            ValueError: If *amount* is negative.

        """
        if amount < 0:
            msg = f"Cannot allocate a negative amount ({amount})"
            raise ValueError(msg)
        with self._lock:
            used = sum(self._usage.values())
            fits = used + amount <= self._capacity
            if fits:
                self._usage[owner] = self._usage.get(owner, 0) + amount

        if fits:
            return True

        if self._logger is not None:
            self._logger.log(
                LogLevel.WARNING,
                f"Rejected {amount} units ({used}/{self._capacity} in use)",
                source="ram",
                owner=owner,
            )
        if self._on_exhausted is not None:
            self._on_exhausted(owner)
        return False

    def reserve(self, owner: Owner, amount: int) -> None:
        """Allocate for an owner that has no process to force-exit.

        Raises:
            OutOfMemoryError: If the amount does not fit.

        """
        with self._lock:
            used = sum(self._usage.values())
            if used + amount > self._capacity:
                msg = f"Cannot reserve {amount} units for {owner!r}: only {self._capacity - used} free"
                raise OutOfMemoryError(msg)
            self._usage[owner] = self._usage.get(owner, 0) + amount

    def release(self, owner: Owner, amount: int) -> None:
        """Give back *amount* units, clamped so the entry never goes negative.

        An entry that drops to zero is removed.  Releasing for an unknown
        owner is a no-op.
        """
        with self._lock:
            held = self._usage.get(owner)
            if held is None:
                return
            remaining = max(held - amount, 0)
            if remaining:
                self._usage[owner] = remaining
            else:
                del self._usage[owner]

    def clear(self, owner: Owner) -> None:
        """Remove *owner*'s entry entirely, whatever its balance."""
        with self._lock:
            self._usage.pop(owner, None)
