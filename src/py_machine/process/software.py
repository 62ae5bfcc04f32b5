"""Process — a running piece of software on the simulated machine.

Every program the OS can run subclasses ``Process`` and overrides some
of its lifecycle hooks.  The dispatcher drives them in order::

    CREATED --init()--> --base()--> RUNNING --main()--> ... --exit()--> EXITED

- ``init()`` does one-time setup, typically a memory request.
- ``base()`` intercepts the reserved flags (``--version``, ``--help``).
- ``main()`` is the program itself.  Anything that should happen later
  is handed to the CPU with ``add_task``.

Any of these may call ``exit()``; the dispatcher skips the remaining
steps once a process has exited.  ``exit()`` is the only way out and
runs at most once: it releases the owner's memory, cancels its queued
CPU work, removes it from the process table and emits the ``exit``
frame.  After that the process is inert — echoes, tasks and memory
calls are ignored, and callbacks of work that was already in flight
are never invoked.

Processes talk to the client through an **output sink**, a callable
that accepts outbound frames.
"""

from __future__ import annotations

import threading
import time
import uuid
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypeAlias

from py_machine.frames import echo_frame, exit_frame
from py_machine.logging import LogLevel

if TYPE_CHECKING:
    from collections.abc import Callable

    from py_machine.machine import Machine
    from py_machine.process.scheduler import Task

OutputSink: TypeAlias = "Callable[[list[Any]], None]"
TaskCallback: TypeAlias = "Callable[[Task], None]"

FLAG_PREFIX = "-"
RESERVED_FLAGS = ("--version", "--help")


class ProcessState(StrEnum):
    """Lifecycle states of a process."""

    CREATED = "created"
    RUNNING = "running"
    EXITED = "exited"


class Process:
    """Base class for all software the machine can run.

    Subclasses set ``VERSION``, ``DESCRIPTION`` and extend ``OPTIONS`` to
    document extra flags in the ``--help`` listing.
    """

    VERSION = "0.1.0"
    DESCRIPTION = "A program with nothing to do."
    OPTIONS: tuple[tuple[str, str], ...] = (
        ("--version", "print the version and exit"),
        ("--help", "show this help and exit"),
    )

    def __init__(self, machine: Machine, args: list[str], output: OutputSink) -> None:
        """Create a process in the CREATED state.

        Args:
            machine: The running machine providing RAM, CPU and the process table.
            args: The full argument vector, command name first.
            output: Sink receiving this process's outbound frames.

        """
        self._machine = machine
        self._args = list(args)
        self._output = output
        self._owner_id = str(uuid.uuid4())
        self._state = ProcessState.CREATED
        self._started_at = time.time()
        self._exit_error: str | int | None = None
        self._lock = threading.RLock()

    @property
    def machine(self) -> Machine:
        """Return the machine this process runs on."""
        return self._machine

    @property
    def owner_id(self) -> str:
        """Return the unique owner id of this process."""
        return self._owner_id

    @property
    def name(self) -> str:
        """Return the command name the process was started with."""
        return self._args[0] if self._args else type(self).__name__.lower()

    @property
    def args(self) -> list[str]:
        """Return a copy of the argument vector."""
        return list(self._args)

    @property
    def state(self) -> ProcessState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def alive(self) -> bool:
        """Return True until the process has exited."""
        return self._state is not ProcessState.EXITED

    @property
    def version(self) -> str:
        """Return the program's version string."""
        return self.VERSION

    @property
    def started_at(self) -> float:
        """Return the creation timestamp (seconds since the epoch)."""
        return self._started_at

    @property
    def uptime(self) -> float:
        """Return seconds since the process was created."""
        return time.time() - self._started_at

    @property
    def exit_error(self) -> str | int | None:
        """Return the error the process exited with, or None."""
        return self._exit_error

    # -- Lifecycle hooks (override in subclasses) ----------------------------

    def init(self) -> None:
        """Do one-time setup before anything else runs."""

    def base(self) -> None:
        """Handle the reserved flags, exiting if one of them is present."""
        if self.find_arg("--version"):
            self.echo(f"{self.name} version {self.VERSION}")
            self.exit()
            return
        if self.find_arg("--help"):
            self.echo(self.help_text())
            self.exit()

    def has_reserved_flag(self) -> bool:
        """Return True if ``base`` will answer a reserved flag and exit.

        Programs that validate their arguments in ``init`` skip the
        validation when this is True, so ``--help`` always works.
        """
        return any(self.find_arg(flag) for flag in RESERVED_FLAGS)

    def main(self) -> None:
        """Run the program.  The default does nothing and exits."""
        self.exit()

    def on_input(self, text: str) -> None:  # noqa: ARG002
        """Receive a line of input addressed to this process."""
        self.echo(f"{self.name}: input ignored")

    def help_text(self) -> str:
        """Return the usage listing shown by ``--help``."""
        width = max(len(flag) for flag, _ in self.OPTIONS)
        lines = [f"usage: {self.name} [options]", self.DESCRIPTION, ""]
        lines.extend(f"  {flag.ljust(width)}  {text}" for flag, text in self.OPTIONS)
        return "\n".join(lines)

    def mark_running(self) -> None:
        """Transition CREATED → RUNNING once setup has succeeded.

        Raises:
            RuntimeError: If the process is not in the CREATED state.

        """
        with self._lock:
            if self._state is not ProcessState.CREATED:
                msg = f"Cannot run: process {self._owner_id} is {self._state}, expected created"
                raise RuntimeError(msg)
            self._state = ProcessState.RUNNING

    # -- Capabilities ---------------------------------------------------------

    def echo(self, message: str) -> None:
        """Send a line of text to the client (ignored once exited)."""
        with self._lock:
            if self.alive:
                self._output(echo_frame(message))

    def exit(self, error: str | int | None = None) -> bool:
        """Terminate the process and release everything it holds.

        Args:
            error: None, 0 or "" for success; anything else is shown to
                the user as the failure.

        Returns:
            True if this call exited the process, False if it had already
            exited.

        """
        with self._lock:
            if self._state is ProcessState.EXITED:
                return False
            self._state = ProcessState.EXITED
            self._exit_error = error or None
            self._machine.ledger.clear(self._owner_id)
            self._machine.scheduler.cancel(self._owner_id)
            self._machine.dispatcher.forget(self._owner_id)
            self._output(exit_frame(error))

        level = LogLevel.WARNING if error else LogLevel.INFO
        outcome = f"exited with {error!r}" if error else "exited"
        self._machine.logger.log(level, f"{self.name} {outcome}", source="os", owner=self._owner_id)
        return True

    def add_task(
        self,
        cycles: int,
        on_complete: TaskCallback,
        on_step: TaskCallback | None = None,
    ) -> Task | None:
        """Schedule *cycles* of CPU work for this process.

        Callbacks are skipped if the process has exited by the time they
        would run.

        Returns:
            The queued task, or None if the process has already exited.

        Raises:
            ValueError: If *cycles* is not positive.

        """
        step = self._guarded(on_step) if on_step is not None else None
        with self._lock:
            if not self.alive:
                return None
            return self._machine.scheduler.submit(
                self._owner_id, cycles, self._guarded(on_complete), step
            )

    def ram_add(self, size: int) -> bool:
        """Request *size* more units of memory.

        If the request does not fit the process is force-exited before
        this returns.  The check and the allocation hold the process
        lock, so an ``exit`` on another thread cannot interleave.

        Returns:
            True if the memory was granted.

        """
        with self._lock:
            if not self.alive:
                return False
            return self._machine.ledger.allocate(self._owner_id, size)

    def ram_remove(self, size: int) -> None:
        """Give back *size* units of memory."""
        with self._lock:
            if self.alive:
                self._machine.ledger.release(self._owner_id, size)

    def ram_used(self) -> int:
        """Return the units of memory this process currently holds."""
        return self._machine.ledger.usage_of(self._owner_id)

    def find_arg(self, flag: str, callback: Callable[[str | None], None] | None = None) -> bool:
        """Look for *flag* in the arguments (the command name excluded).

        On the first occurrence, *callback* receives the token that follows
        it, or None if there is no following token or it is another flag.

        Returns:
            True if the flag was present.

        """
        tokens = self._args[1:]
        for i, token in enumerate(tokens):
            if token != flag:
                continue
            if callback is not None:
                following = tokens[i + 1] if i + 1 < len(tokens) else None
                if following is not None and following.startswith(FLAG_PREFIX):
                    following = None
                callback(following)
            return True
        return False

    def positional(self) -> list[str]:
        """Return the arguments that are neither flags nor flag values."""
        result: list[str] = []
        tokens = self._args[1:]
        skip = False
        for token in tokens:
            if skip:
                skip = False
                continue
            if token.startswith(FLAG_PREFIX):
                skip = self._takes_value(token)
                continue
            result.append(token)
        return result

    def _takes_value(self, flag: str) -> bool:
        """Return True if *flag* is documented as taking a value."""
        return any(f.split()[0] == flag and " " in f for f, _ in self.OPTIONS)

    def _guarded(self, callback: TaskCallback) -> TaskCallback:
        """Wrap *callback* so it only runs while the process is alive."""

        def run(task: Task) -> None:
            if self.alive:
                callback(task)

        return run

    def __repr__(self) -> str:
        """Return a debug-friendly representation."""
        return f"{type(self).__name__}(owner_id={self._owner_id!r}, name={self.name!r}, state={self._state})"
