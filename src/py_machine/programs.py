"""Built-in software — the programs a fresh machine can run.

Each program is a ``Process`` subclass registered under a command name
in ``DEFAULT_SOFTWARE``.  They are deliberately small: together they
exercise every capability a program has (memory, CPU tasks with and
without step callbacks, interactive input, and reading machine state).

- ``hi``     — greet, wait on the CPU twice, say goodbye.
- ``count``  — count cycles out loud using a step callback.
- ``alloc``  — hold a block of memory for a few cycles.
- ``cat``    — echo input lines back until an empty line.
- ``free``   — report memory usage.
- ``ps``     — list running processes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from py_machine.memory.ledger import SYSTEM_OWNER
from py_machine.process.software import Process

if TYPE_CHECKING:
    from py_machine.dispatcher import SoftwareFactory
    from py_machine.process.scheduler import Task


def _positive_int(text: str | None) -> int | None:
    """Parse *text* as a positive integer, or return None."""
    if text is None or not text.isdigit():
        return None
    value = int(text)
    return value if value > 0 else None


class HiProgram(Process):
    """Say hello, wait a few cycles, and say goodbye."""

    VERSION = "1.0.0"
    DESCRIPTION = "Say hello, wait a few cycles, and say goodbye."
    OPTIONS = (*Process.OPTIONS, ("--name NAME", "who to greet (default: world)"))

    MEMORY = 1000
    FIRST_WAIT = 5
    SECOND_WAIT = 3

    def init(self) -> None:
        """Pick up ``--name`` and reserve working memory."""
        self._greeted = "world"
        self.find_arg("--name", self._set_name)
        self.ram_add(self.MEMORY)

    def _set_name(self, value: str | None) -> None:
        if value:
            self._greeted = value

    def main(self) -> None:
        """Greet, then hand the rest of the work to the CPU."""
        self.echo(f"Hello, {self._greeted}!")
        self.add_task(self.FIRST_WAIT, self._after_wait)

    def _after_wait(self, task: Task) -> None:
        self.echo(f"hello {self._greeted} after {task.total_cycles} cycles")
        self.add_task(self.SECOND_WAIT, self._goodbye)

    def _goodbye(self, _task: Task) -> None:
        self.echo(f"goodbye {self._greeted}")
        self.exit()


class CountProgram(Process):
    """Count a number of CPU cycles, reporting each one."""

    DESCRIPTION = "Count N cycles out loud: count N"
    MEMORY = 200
    USAGE_ERROR = "Error: count expects a positive integer"

    def init(self) -> None:
        """Parse the cycle count."""
        if self.has_reserved_flag():
            return
        values = self.positional()
        self._cycles = _positive_int(values[0] if values else None)
        if self._cycles is None:
            self.exit(self.USAGE_ERROR)
            return
        self.ram_add(self.MEMORY)

    def main(self) -> None:
        """Schedule the count."""
        assert self._cycles is not None  # noqa: S101
        self.add_task(self._cycles, self._done, on_step=self._tick)

    def _tick(self, task: Task) -> None:
        self.echo(f"tick {task.elapsed}/{task.total_cycles}")

    def _done(self, _task: Task) -> None:
        self.echo("done")
        self.exit()


class AllocProgram(Process):
    """Hold a block of memory for a while, then give it back."""

    DESCRIPTION = "Hold SIZE units of memory for a few cycles: alloc SIZE"
    OPTIONS = (*Process.OPTIONS, ("--cycles C", "how many cycles to hold the memory (default: 3)"))
    DEFAULT_CYCLES = 3

    def init(self) -> None:
        """Parse the size and duration, then request the memory."""
        if self.has_reserved_flag():
            return
        values = self.positional()
        size = values[0] if values else None
        if size is None or not size.isdigit():
            self.exit("Error: alloc expects a size")
            return
        self._size = int(size)

        self._cycles: int | None = self.DEFAULT_CYCLES
        self.find_arg("--cycles", self._set_cycles)
        if self._cycles is None:
            self.exit("Error: --cycles expects a positive integer")
            return

        self.ram_add(self._size)

    def _set_cycles(self, value: str | None) -> None:
        self._cycles = _positive_int(value)

    def main(self) -> None:
        """Report the allocation and schedule its release."""
        assert self._cycles is not None  # noqa: S101
        self.echo(f"holding {self._size} units for {self._cycles} cycles")
        self.add_task(self._cycles, self._release)

    def _release(self, _task: Task) -> None:
        self.ram_remove(self._size)
        self.echo(f"released {self._size} units")
        self.exit()


class CatProgram(Process):
    """Echo every input line back; an empty line ends the program."""

    DESCRIPTION = "Echo each line of input back. Send an empty line to quit."
    MEMORY = 100

    def init(self) -> None:
        """Reserve a small input buffer."""
        self.ram_add(self.MEMORY)

    def main(self) -> None:
        """Wait for input without exiting."""
        self.echo("Type lines to echo them back; an empty line exits.")

    def on_input(self, text: str) -> None:
        """Echo *text*, or exit on an empty line."""
        if not text.strip():
            self.exit()
            return
        self.echo(text)


class FreeProgram(Process):
    """Report how much memory is in use and by whom."""

    DESCRIPTION = "Show memory usage."

    def main(self) -> None:
        """Print totals, then one line per owner."""
        ledger = self.machine.ledger
        running = self.machine.dispatcher.running
        snapshot = ledger.snapshot()
        used = sum(snapshot.values())
        self.echo(f"{used}/{ledger.capacity} units in use ({ledger.capacity - used} free)")
        for owner, amount in sorted(snapshot.items(), key=lambda item: -item[1]):
            if owner == SYSTEM_OWNER:
                label = "system"
            else:
                process = running.get(owner)
                label = process.name if process is not None else "?"
            self.echo(f"  {label:<8} {amount:>9}  {owner}")
        self.exit()


class PsProgram(Process):
    """List the running processes."""

    DESCRIPTION = "List running processes."

    def main(self) -> None:
        """Print one line per running process, oldest first."""
        processes = sorted(self.machine.dispatcher.running.values(), key=lambda p: p.started_at)
        self.echo(f"{'OWNER':<36}  {'NAME':<8} {'STATE':<8} {'UPTIME':>7}")
        for process in processes:
            self.echo(
                f"{process.owner_id:<36}  {process.name:<8} {process.state:<8} {process.uptime:>6.1f}s"
            )
        self.exit()


DEFAULT_SOFTWARE: dict[str, SoftwareFactory] = {
    "hi": HiProgram,
    "count": CountProgram,
    "alloc": AllocProgram,
    "cat": CatProgram,
    "free": FreeProgram,
    "ps": PsProgram,
}
