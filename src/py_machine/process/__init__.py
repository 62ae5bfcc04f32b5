"""Process subsystem — the software base class and the cycle scheduler.

Re-exports public symbols so callers can write::

    from py_machine.process import CycleScheduler, Process
"""

from py_machine.process.scheduler import (
    DEFAULT_CLOCK_SPEED,
    DEFAULT_CORES,
    CycleScheduler,
    Task,
    cycle_delay,
    worker_count,
)
from py_machine.process.software import FLAG_PREFIX, RESERVED_FLAGS, OutputSink, Process, ProcessState

__all__ = [
    "DEFAULT_CLOCK_SPEED",
    "DEFAULT_CORES",
    "FLAG_PREFIX",
    "RESERVED_FLAGS",
    "CycleScheduler",
    "OutputSink",
    "Process",
    "ProcessState",
    "Task",
    "cycle_delay",
    "worker_count",
]
