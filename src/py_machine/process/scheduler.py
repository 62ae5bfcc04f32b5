"""CPU scheduler — bounded worker pool that advances tasks one cycle at a time.

The simulated CPU has ``cores`` cores, doubled under hyperthreading.
Each hardware thread is modelled by one long-lived **worker** thread.
Work arrives as **tasks**: "run this many cycles for this owner, then
call me back".

Every worker loops over one shared FIFO queue::

    dequeue → sleep(cycle delay) → remaining -= 1 → step or complete
                                             ↓
                          re-enqueue at the tail if cycles remain

A task holds a worker for exactly one cycle and then yields, so with
more runnable tasks than workers everyone takes turns (round robin).
No task is pinned to a worker, and there is no priority: ties break on
arrival order alone.

Cancellation:
    ``cancel(owner)`` marks an owner as gone.  Its queued tasks are
    discarded when a worker picks them up, and a task already sleeping
    in a worker is discarded after the sleep instead of being advanced.
    Per-owner outstanding counts let the cancelled set shrink again once
    the last task of that owner has drained.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from py_machine.logging import Logger, LogLevel

if TYPE_CHECKING:
    from collections.abc import Callable

    from py_machine.memory.ledger import Owner

DEFAULT_CORES = 2
DEFAULT_CLOCK_SPEED = 3.4

_STOP = object()


def worker_count(cores: int, *, hyperthreading: bool = False) -> int:
    """Return the number of execution slots for a CPU."""
    return cores * 2 if hyperthreading else cores


def cycle_delay(clock_speed: float) -> float:
    """Return the seconds one cycle takes at *clock_speed*.

    The clock speed is expressed in cycles per thousand milliseconds,
    so a 3.4 clock gives roughly 294 ms per cycle.
    """
    if clock_speed <= 0:
        msg = f"Clock speed must be positive, got {clock_speed}"
        raise ValueError(msg)
    return 1.0 / clock_speed


@dataclass(eq=False)
class Task:
    """A unit of cycle-based work owned by a process.

    ``remaining`` is the only field that changes after creation, and only
    the scheduler changes it.

    Attributes:
        owner: The owner id the work belongs to.
        total_cycles: Cycles requested at submission.
        on_complete: Called once, with the task, when no cycles remain.
        on_step: Called with the task after every non-final cycle.
        remaining: Cycles still to run.

    """

    owner: Owner
    total_cycles: int
    on_complete: Callable[[Task], None]
    on_step: Callable[[Task], None] | None = None
    remaining: int = field(init=False)

    def __post_init__(self) -> None:
        """Start with every cycle still to run."""
        self.remaining = self.total_cycles

    @property
    def elapsed(self) -> int:
        """Return the number of cycles already run."""
        return self.total_cycles - self.remaining

    def __repr__(self) -> str:
        """Return a debug-friendly representation."""
        return f"Task(owner={self.owner!r}, {self.elapsed}/{self.total_cycles})"


class CycleScheduler:
    """Run queued tasks on a fixed pool of worker threads.

    Usage::

        cpu = CycleScheduler(cores=2, clock_speed=3.4)
        cpu.start()
        cpu.submit("owner", 5, on_complete=lambda task: ...)
        cpu.wait_idle()
        cpu.stop()

    """

    def __init__(
        self,
        *,
        cores: int = DEFAULT_CORES,
        hyperthreading: bool = False,
        clock_speed: float = DEFAULT_CLOCK_SPEED,
        logger: Logger | None = None,
        on_error: Callable[[Task, Exception], None] | None = None,
    ) -> None:
        """Create a stopped scheduler.

        Args:
            cores: Physical cores.
            hyperthreading: Double the worker count if True.
            clock_speed: Cycles per thousand milliseconds.
            logger: Optional log buffer.
            on_error: Called when a task callback raises.

        Raises:
            ValueError: If there would be no workers or the clock is not positive.

        """
        workers = worker_count(cores, hyperthreading=hyperthreading)
        if workers <= 0:
            msg = f"A CPU needs at least one core, got {cores}"
            raise ValueError(msg)
        self._workers = workers
        self._delay = cycle_delay(clock_speed)
        self._logger = logger
        self._on_error = on_error
        self._queue: queue.Queue[object] = queue.Queue()
        self._threads: list[threading.Thread] = []
        self._cond = threading.Condition()
        self._outstanding: dict[Owner, int] = {}
        self._cancelled: set[Owner] = set()
        self._cycles_run = 0

    @property
    def workers(self) -> int:
        """Return the number of execution slots."""
        return self._workers

    @property
    def delay(self) -> float:
        """Return the seconds each cycle takes."""
        return self._delay

    @property
    def running(self) -> bool:
        """Return True while the worker threads are alive."""
        return any(t.is_alive() for t in self._threads)

    @property
    def cycles_run(self) -> int:
        """Return the total number of cycles executed since creation."""
        with self._cond:
            return self._cycles_run

    @property
    def pending(self) -> int:
        """Return the number of tasks submitted but not yet finished."""
        with self._cond:
            return sum(self._outstanding.values())

    @property
    def on_error(self) -> Callable[[Task, Exception], None] | None:
        """Return the callback-failure hook."""
        return self._on_error

    @on_error.setter
    def on_error(self, hook: Callable[[Task, Exception], None] | None) -> None:
        """Install the callback-failure hook."""
        self._on_error = hook

    def outstanding(self, owner: Owner) -> int:
        """Return how many unfinished tasks *owner* has."""
        with self._cond:
            return self._outstanding.get(owner, 0)

    def start(self) -> None:
        """Spawn the worker threads.

        Raises:
            RuntimeError: If the workers are already running.

        """
        if self.running:
            msg = "Cannot start: scheduler is already running"
            raise RuntimeError(msg)
        self._threads = [
            threading.Thread(target=self._work, name=f"cpu-worker-{i}", daemon=True)
            for i in range(self._workers)
        ]
        for thread in self._threads:
            thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Ask every worker to exit and wait for them.

        Tasks still queued behind the stop markers are abandoned.
        """
        threads, self._threads = self._threads, []
        for _ in threads:
            self._queue.put(_STOP)
        for thread in threads:
            thread.join(timeout)

    def submit(
        self,
        owner: Owner,
        total_cycles: int,
        on_complete: Callable[[Task], None],
        on_step: Callable[[Task], None] | None = None,
    ) -> Task:
        """Queue a new task at the tail of the shared queue.

        Returns:
            The queued task.

        Raises:
            ValueError: If *total_cycles* is not positive.

        """
        if total_cycles <= 0:
            msg = f"A task needs at least one cycle, got {total_cycles}"
            raise ValueError(msg)
        task = Task(owner=owner, total_cycles=total_cycles, on_complete=on_complete, on_step=on_step)
        with self._cond:
            self._outstanding[owner] = self._outstanding.get(owner, 0) + 1
        self._queue.put(task)
        return task

    def cancel(self, owner: Owner) -> int:
        """Discard every unfinished task of *owner*.

        Returns:
            The number of tasks that will be discarded.

        """
        with self._cond:
            count = self._outstanding.get(owner, 0)
            if count:
                self._cancelled.add(owner)
            return count

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no task is outstanding.

        Returns:
            True if the scheduler went idle, False on timeout.

        """
        with self._cond:
            return self._cond.wait_for(lambda: not self._outstanding, timeout)

    # -- Worker loop ----------------------------------------------------------

    def _work(self) -> None:
        """Process tasks until a stop marker is dequeued."""
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                assert isinstance(item, Task)  # noqa: S101
                self._run_cycle(item)
            finally:
                self._queue.task_done()

    def _run_cycle(self, task: Task) -> None:
        """Give *task* one cycle, then complete it or send it to the back."""
        if self._is_cancelled(task.owner):
            self._discard(task)
            return
        time.sleep(self._delay)
        with self._cond:
            if task.owner in self._cancelled:
                cancelled = True
            else:
                cancelled = False
                task.remaining -= 1
                self._cycles_run += 1
        if cancelled:
            self._discard(task)
            return

        if task.remaining > 0:
            if task.on_step is not None and not self._invoke(task, task.on_step):
                self._finish(task)
                return
            self._queue.put(task)
            return

        # The owner stays outstanding until its completion callback returns.
        try:
            self._invoke(task, task.on_complete)
        finally:
            self._finish(task)

    def _invoke(self, task: Task, callback: Callable[[Task], None]) -> bool:
        """Run a task callback, reporting failures instead of killing the worker."""
        try:
            callback(task)
        except Exception as e:  # noqa: BLE001
            if self._logger is not None:
                self._logger.log(
                    LogLevel.ERROR,
                    f"Task callback failed: {e}",
                    source="cpu",
                    owner=task.owner,
                )
            if self._on_error is not None:
                self._on_error(task, e)
            return False
        return True

    def _is_cancelled(self, owner: Owner) -> bool:
        with self._cond:
            return owner in self._cancelled

    def _discard(self, task: Task) -> None:
        if self._logger is not None:
            self._logger.log(
                LogLevel.DEBUG,
                f"Discarded {task!r} of a cancelled owner",
                source="cpu",
                owner=task.owner,
            )
        self._finish(task)

    def _finish(self, task: Task) -> None:
        """Drop *task* from the outstanding counts."""
        with self._cond:
            count = self._outstanding.get(task.owner, 0) - 1
            if count > 0:
                self._outstanding[task.owner] = count
            else:
                self._outstanding.pop(task.owner, None)
                self._cancelled.discard(task.owner)
            self._cond.notify_all()
