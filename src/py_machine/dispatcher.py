"""The dispatcher — the OS layer that turns command lines into processes.

A command line is split on whitespace; the first token names the
software to run.  Each invocation moves through::

    Received → NotFound                                   (echo + exit 0)
    Received → Resolved → Initialised → BaseChecked → Running → Exited

For a resolved command the dispatcher builds the process, records it
in the running-process table, tells the client to address further input
to the new owner id (``set_app``), then calls ``init``, ``base`` and
``main`` in turn, stopping as soon as the process has exited.

Inbound ``cmd`` frames are routed by owner id: the shell sentinel (0)
means "run this command line", any other id is input for that running
process.

The software registry and the process table are shared by every client
session and every CPU worker, so both are guarded by a lock.  Process
methods are always called *outside* that lock because ``exit`` calls
back into ``forget``.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, TypeAlias

from py_machine.frames import SHELL_OWNER, FrameError, FrameTag, echo_frame, exit_frame, set_app_frame
from py_machine.logging import Logger, LogLevel

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from py_machine.machine import Machine
    from py_machine.memory.ledger import Owner
    from py_machine.process.software import OutputSink, Process

SoftwareFactory: TypeAlias = "Callable[[Machine, list[str], OutputSink], Process]"


class Dispatcher:
    """Resolve commands, start processes and route their input."""

    def __init__(
        self,
        *,
        machine: Machine,
        software: Mapping[str, SoftwareFactory] | None = None,
        logger: Logger | None = None,
    ) -> None:
        """Create a dispatcher with an optional initial software registry.

        Args:
            machine: The machine processes are started on.
            software: Command name → factory mapping.
            logger: Optional log buffer.

        """
        self._machine = machine
        self._software: dict[str, SoftwareFactory] = dict(software or {})
        self._running: dict[Owner, Process] = {}
        self._lock = threading.Lock()
        self._logger = logger or Logger()

    # -- Registry -------------------------------------------------------------

    @property
    def software(self) -> dict[str, SoftwareFactory]:
        """Return a copy of the command registry."""
        with self._lock:
            return dict(self._software)

    def register(self, name: str, factory: SoftwareFactory) -> None:
        """Make *factory* runnable under the command *name*.

        Raises:
            ValueError: If *name* is empty or contains whitespace.

        """
        if not name or name.split() != [name]:
            msg = f"Invalid command name: {name!r}"
            raise ValueError(msg)
        with self._lock:
            self._software[name] = factory

    def unregister_software(self, name: str) -> None:
        """Remove the command *name* from the registry.

        Raises:
            KeyError: If no such command is registered.

        """
        with self._lock:
            del self._software[name]

    # -- Process table --------------------------------------------------------

    @property
    def running(self) -> dict[Owner, Process]:
        """Return a copy of the running-process table."""
        with self._lock:
            return dict(self._running)

    def get(self, owner: Owner) -> Process | None:
        """Return the running process for *owner*, or None."""
        with self._lock:
            return self._running.get(owner)

    def forget(self, owner: Owner) -> None:
        """Remove *owner* from the process table (no-op if absent)."""
        with self._lock:
            self._running.pop(owner, None)

    def kill(self, owner: Owner, error: str) -> bool:
        """Force *owner*'s process to exit with *error*.

        Returns:
            True if a running process was found and exited.

        """
        process = self.get(owner)
        if process is None:
            self._logger.log(LogLevel.WARNING, "Kill for an unknown owner", source="os", owner=owner)
            return False
        self._logger.log(LogLevel.WARNING, f"Killing {process.name}: {error}", source="os", owner=owner)
        return process.exit(error)

    def kill_all(self, error: str) -> int:
        """Force every running process to exit.

        Returns:
            The number of processes that were exited.

        """
        return sum(1 for process in self.running.values() if process.exit(error))

    # -- Commands -------------------------------------------------------------

    def dispatch(self, command_line: str, output: OutputSink) -> Process | None:
        """Run a command line on behalf of a client.

        Args:
            command_line: The raw text typed by the user.
            output: Sink for every frame this command produces.

        Returns:
            The process that was started, or None if nothing was run.

        """
        tokens = command_line.split()
        if not tokens:
            output(exit_frame())
            return None

        with self._lock:
            factory = self._software.get(tokens[0])
        if factory is None:
            self._logger.log(LogLevel.INFO, f"Command {tokens[0]} not found", source="os")
            output(echo_frame(f"Command {tokens[0]} not found"))
            output(exit_frame())
            return None

        process = factory(self._machine, tokens, output)
        with self._lock:
            self._running[process.owner_id] = process
        output(set_app_frame(process.owner_id))
        self._logger.log(LogLevel.INFO, f"Started {command_line.strip()!r}", source="os", owner=process.owner_id)

        try:
            process.init()
            if process.alive:
                process.base()
            if process.alive:
                process.mark_running()
                process.main()
        except Exception as e:  # noqa: BLE001
            self._logger.log(LogLevel.ERROR, f"{process.name} crashed: {e}", source="os", owner=process.owner_id)
            process.exit(f"Error: {e}")
        return process

    def route(self, frame: list[object], output: OutputSink) -> None:
        """Deliver an inbound ``cmd`` frame to the shell or to a process.

        Args:
            frame: A decoded frame.
            output: The sending session's sink.

        Raises:
            FrameError: If the frame is not a ``cmd`` frame.

        """
        if not frame or frame[0] != FrameTag.CMD:
            msg = f"Only {FrameTag.CMD} frames can be sent to the machine"
            raise FrameError(msg)
        owner, text = frame[1], frame[2]
        assert isinstance(text, str)  # noqa: S101

        if owner == SHELL_OWNER:
            self.dispatch(text, output)
            return

        process = self.get(owner)  # type: ignore[arg-type]
        if process is None:
            self._logger.log(LogLevel.WARNING, "Input for an owner that is not running", source="os", owner=str(owner))
            return
        try:
            process.on_input(text)
        except Exception as e:  # noqa: BLE001
            self._logger.log(LogLevel.ERROR, f"{process.name} crashed: {e}", source="os", owner=process.owner_id)
            process.exit(f"Error: {e}")
