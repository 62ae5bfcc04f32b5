"""Shared fixtures: a fast machine and a thread-safe frame sink."""

import threading
from collections.abc import Callable, Iterator
from typing import Any

import pytest

from py_machine.machine import Machine, MachineState

FAST_CLOCK = 1000.0
RAM_SIZE = 10_000
RESERVED = 1_000
WAIT = 5.0


class FrameSink:
    """Collect outbound frames from any thread and wait on them."""

    def __init__(self) -> None:
        """Create an empty sink."""
        self.frames: list[list[Any]] = []
        self._cond = threading.Condition()

    def __call__(self, frame: list[Any]) -> None:
        """Record a frame (the output sink protocol)."""
        with self._cond:
            self.frames.append(frame)
            self._cond.notify_all()

    @property
    def echoes(self) -> list[str]:
        """Return the text of every echo frame so far."""
        with self._cond:
            return [f[1] for f in self.frames if f[0] == "echo"]

    @property
    def exits(self) -> list[Any]:
        """Return the payload of every exit frame so far."""
        with self._cond:
            return [f[1] for f in self.frames if f[0] == "exit"]

    def wait_for_exit(self, timeout: float = WAIT) -> bool:
        """Block until an exit frame arrives."""
        with self._cond:
            return self._cond.wait_for(lambda: any(f[0] == "exit" for f in self.frames), timeout)


@pytest.fixture
def make_machine() -> Iterator[Callable[..., Machine]]:
    """Return a factory for booted fast machines, shut down after the test."""
    machines: list[Machine] = []

    def make(**kwargs: Any) -> Machine:
        options: dict[str, Any] = {
            "clock_speed": FAST_CLOCK,
            "ram_size": RAM_SIZE,
            "system_reserved": RESERVED,
        }
        options.update(kwargs)
        machine = Machine(**options)
        machine.boot()
        machines.append(machine)
        return machine

    yield make
    for machine in machines:
        if machine.state is MachineState.RUNNING:
            machine.shutdown()


@pytest.fixture
def machine(make_machine: Callable[..., Machine]) -> Machine:
    """Return a booted fast machine with the built-in programs."""
    return make_machine()


@pytest.fixture
def sink() -> FrameSink:
    """Return an empty frame sink."""
    return FrameSink()
