"""The machine — the top-level context that owns every subsystem.

There is no global machine.  A ``Machine`` is constructed explicitly,
booted, handed to whatever needs it (the transport gateway, each
process) and shut down again::

    SHUTDOWN  →  BOOTING  →  RUNNING  →  SHUTTING_DOWN  →  SHUTDOWN

Boot sequence (order matters):
    0. Logger — capture events from the start.
    1. RAM ledger — reserve the system's baseline.
    2. CPU — start the worker pool.
    3. OS — the dispatcher and its software registry.

The subsystems are wired together here rather than by inheritance:
the ledger's exhaustion hook and the CPU's callback-failure hook both
force-exit the offending owner through the dispatcher.

Shutdown force-exits every process first, so their queued work is
cancelled, then stops the CPU and drops the subsystems.
"""

from __future__ import annotations

from enum import StrEnum
from time import monotonic
from typing import TYPE_CHECKING

from py_machine.dispatcher import Dispatcher
from py_machine.logging import Logger, LogLevel
from py_machine.memory.ledger import OOM_MESSAGE, SYSTEM_OWNER, MemoryLedger, OutOfMemoryError
from py_machine.process.scheduler import DEFAULT_CLOCK_SPEED, DEFAULT_CORES, CycleScheduler
from py_machine.programs import DEFAULT_SOFTWARE

if TYPE_CHECKING:
    from collections.abc import Mapping

    from py_machine.dispatcher import SoftwareFactory
    from py_machine.memory.ledger import Owner
    from py_machine.process.scheduler import Task

VERSION = "0.1.0"
DEFAULT_RAM_SIZE = 2_000_000
DEFAULT_SYSTEM_RESERVED = 297_321
SHUTDOWN_MESSAGE = "Error: system shutting down."

_STOP_TIMEOUT = 5.0


class MachineState(StrEnum):
    """Lifecycle phases of the machine."""

    SHUTDOWN = "shutdown"
    BOOTING = "booting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class Machine:
    """Own the RAM ledger, the CPU, the dispatcher and the log.

    Subsystem properties raise ``RuntimeError`` while the machine is
    shut down.
    """

    def __init__(
        self,
        *,
        cores: int = DEFAULT_CORES,
        hyperthreading: bool = False,
        clock_speed: float = DEFAULT_CLOCK_SPEED,
        ram_size: int = DEFAULT_RAM_SIZE,
        system_reserved: int = DEFAULT_SYSTEM_RESERVED,
        version: str = VERSION,
        software: Mapping[str, SoftwareFactory] | None = None,
    ) -> None:
        """Create a machine in the SHUTDOWN state.

        Args:
            cores: Physical CPU cores.
            hyperthreading: Double the CPU worker count if True.
            clock_speed: CPU cycles per thousand milliseconds.
            ram_size: RAM capacity in units.
            system_reserved: RAM held by the system for its whole uptime.
            version: Version string reported by the machine.
            software: Command registry; defaults to the built-in programs.

        """
        self._state = MachineState.SHUTDOWN
        self._cores = cores
        self._hyperthreading = hyperthreading
        self._clock_speed = clock_speed
        self._ram_size = ram_size
        self._system_reserved = system_reserved
        self._version = version
        self._software = dict(DEFAULT_SOFTWARE if software is None else software)
        self._boot_time: float | None = None
        self._boot_log: list[str] = []
        self._logger: Logger | None = None
        self._ledger: MemoryLedger | None = None
        self._scheduler: CycleScheduler | None = None
        self._dispatcher: Dispatcher | None = None

    @property
    def state(self) -> MachineState:
        """Return the current machine state."""
        return self._state

    @property
    def version(self) -> str:
        """Return the machine's version string."""
        return self._version

    @property
    def uptime(self) -> float:
        """Return seconds elapsed since boot, or 0.0 if not running."""
        if self._boot_time is None:
            return 0.0
        return monotonic() - self._boot_time

    @property
    def logger(self) -> Logger:
        """Return the system log."""
        if self._logger is None:
            raise self._unavailable("logger")
        return self._logger

    @property
    def ledger(self) -> MemoryLedger:
        """Return the RAM ledger."""
        if self._ledger is None:
            raise self._unavailable("ledger")
        return self._ledger

    @property
    def scheduler(self) -> CycleScheduler:
        """Return the CPU scheduler."""
        if self._scheduler is None:
            raise self._unavailable("scheduler")
        return self._scheduler

    @property
    def dispatcher(self) -> Dispatcher:
        """Return the OS dispatcher."""
        if self._dispatcher is None:
            raise self._unavailable("dispatcher")
        return self._dispatcher

    def dmesg(self) -> list[str]:
        """Return the boot log."""
        return list(self._boot_log)

    def boot(self) -> None:
        """Transition SHUTDOWN → RUNNING, creating subsystems in order.

        Raises:
            RuntimeError: If the machine is not shut down.
            OutOfMemoryError: If the system reservation exceeds the RAM.

        """
        if self._state is not MachineState.SHUTDOWN:
            msg = f"Cannot boot: machine is {self._state}, expected shutdown"
            raise RuntimeError(msg)

        self._state = MachineState.BOOTING
        self._boot_time = monotonic()

        # 0. Logger
        self._logger = Logger()
        self._boot_log.append("[OK] Logger")

        # 1. RAM
        try:
            self._ledger = MemoryLedger(
                capacity=self._ram_size,
                on_exhausted=self._on_exhausted,
                logger=self._logger,
            )
            self._ledger.reserve(SYSTEM_OWNER, self._system_reserved)
        except (ValueError, OutOfMemoryError):
            self._reset()
            raise
        self._boot_log.append(
            f"[OK] RAM ({self._ram_size} units, {self._system_reserved} reserved by the system)"
        )

        # 2. CPU
        try:
            self._scheduler = CycleScheduler(
                cores=self._cores,
                hyperthreading=self._hyperthreading,
                clock_speed=self._clock_speed,
                logger=self._logger,
                on_error=self._on_task_error,
            )
        except ValueError:
            self._reset()
            raise
        self._scheduler.start()
        ht_label = ", hyperthreading" if self._hyperthreading else ""
        self._boot_log.append(
            f"[OK] CPU ({self._cores} core(s){ht_label}, {self._scheduler.workers} worker(s), "
            f"{self._scheduler.delay * 1000:.0f} ms/cycle)"
        )

        # 3. OS
        self._dispatcher = Dispatcher(machine=self, software=self._software, logger=self._logger)
        self._boot_log.append(f"[OK] OS ({len(self._software)} programs)")

        self._state = MachineState.RUNNING
        self._logger.log(LogLevel.INFO, "Machine boot complete", source="machine")

    def shutdown(self) -> None:
        """Transition RUNNING → SHUTDOWN.

        Raises:
            RuntimeError: If the machine is not running.

        """
        if self._state is not MachineState.RUNNING:
            msg = f"Cannot shutdown: machine is {self._state}, expected running"
            raise RuntimeError(msg)

        self._state = MachineState.SHUTTING_DOWN
        assert self._dispatcher is not None  # noqa: S101
        assert self._scheduler is not None  # noqa: S101
        killed = self._dispatcher.kill_all(SHUTDOWN_MESSAGE)
        self.logger.log(LogLevel.INFO, f"Shutting down ({killed} process(es) killed)", source="machine")
        self._scheduler.stop(_STOP_TIMEOUT)
        self._reset()

    def _reset(self) -> None:
        """Drop every subsystem and return to SHUTDOWN."""
        self._dispatcher = None
        self._scheduler = None
        self._ledger = None
        self._logger = None
        self._boot_log.clear()
        self._boot_time = None
        self._state = MachineState.SHUTDOWN

    def _unavailable(self, name: str) -> RuntimeError:
        msg = f"Cannot access the {name}: machine is {self._state}"
        return RuntimeError(msg)

    def _on_exhausted(self, owner: Owner) -> None:
        """Force-exit an owner whose memory request was rejected."""
        self.dispatcher.kill(owner, OOM_MESSAGE)

    def _on_task_error(self, task: Task, error: Exception) -> None:
        """Force-exit an owner whose task callback raised."""
        self.dispatcher.kill(task.owner, f"Error: {error}")
