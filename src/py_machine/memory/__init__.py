"""Memory subsystem — the capacity-bounded RAM ledger.

Re-exports public symbols so callers can write::

    from py_machine.memory import MemoryLedger, OutOfMemoryError
"""

from py_machine.memory.ledger import (
    DEFAULT_RAM_SIZE,
    OOM_MESSAGE,
    SYSTEM_OWNER,
    MemoryLedger,
    OutOfMemoryError,
    Owner,
)

__all__ = [
    "DEFAULT_RAM_SIZE",
    "OOM_MESSAGE",
    "SYSTEM_OWNER",
    "MemoryLedger",
    "OutOfMemoryError",
    "Owner",
]
