"""Tests for the memory ledger.

The ledger tracks how many units of RAM each owner holds against one
fixed capacity.  A request that does not fit is never recorded;
instead the exhaustion hook runs for the requesting owner.
"""

import threading

import pytest

from py_machine.logging import Logger, LogLevel
from py_machine.memory import SYSTEM_OWNER, MemoryLedger, OutOfMemoryError

CAPACITY = 1000
SMALL = 300
LARGE = 600
OWNER_A = "a"
OWNER_B = "b"


class TestLedgerCreation:
    """Verify initial state of the ledger."""

    def test_empty_ledger_has_no_usage(self) -> None:
        """A new ledger should report zero usage."""
        ledger = MemoryLedger(capacity=CAPACITY)
        assert ledger.total_usage() == 0
        assert ledger.free() == CAPACITY

    def test_capacity_is_stored(self) -> None:
        """The capacity should be accessible."""
        ledger = MemoryLedger(capacity=CAPACITY)
        assert ledger.capacity == CAPACITY

    def test_non_positive_capacity_raises(self) -> None:
        """A ledger needs some memory to account for."""
        with pytest.raises(ValueError, match="Capacity must be positive"):
            MemoryLedger(capacity=0)


class TestAllocate:
    """Verify recording allocations."""

    def test_allocate_creates_entry(self) -> None:
        """The first allocation creates the owner's entry."""
        ledger = MemoryLedger(capacity=CAPACITY)
        assert ledger.allocate(OWNER_A, SMALL) is True
        assert ledger.usage_of(OWNER_A) == SMALL
        assert OWNER_A in ledger

    def test_allocations_accumulate(self) -> None:
        """Further allocations add to the existing entry."""
        ledger = MemoryLedger(capacity=CAPACITY)
        ledger.allocate(OWNER_A, SMALL)
        ledger.allocate(OWNER_A, SMALL)
        assert ledger.usage_of(OWNER_A) == SMALL * 2

    def test_total_is_sum_of_entries(self) -> None:
        """Total usage is the sum over every owner."""
        ledger = MemoryLedger(capacity=CAPACITY)
        ledger.allocate(OWNER_A, SMALL)
        ledger.allocate(OWNER_B, LARGE)
        assert ledger.total_usage() == SMALL + LARGE
        assert ledger.total_usage() == sum(ledger.snapshot().values())

    def test_allocation_up_to_capacity_fits(self) -> None:
        """Filling the ledger exactly is allowed."""
        ledger = MemoryLedger(capacity=CAPACITY)
        assert ledger.allocate(OWNER_A, CAPACITY) is True
        assert ledger.free() == 0

    def test_negative_amount_raises(self) -> None:
        """A negative allocation is a programming error."""
        ledger = MemoryLedger(capacity=CAPACITY)
        with pytest.raises(ValueError, match="negative"):
            ledger.allocate(OWNER_A, -1)


class TestAllocationRejection:
    """Verify behaviour when a request does not fit."""

    def test_rejected_request_leaves_ledger_unchanged(self) -> None:
        """An over-capacity request should not be recorded."""
        ledger = MemoryLedger(capacity=CAPACITY)
        ledger.allocate(OWNER_A, LARGE)
        before = ledger.snapshot()
        assert ledger.allocate(OWNER_B, LARGE) is False
        assert ledger.snapshot() == before
        assert OWNER_B not in ledger

    def test_rejection_calls_hook_once_with_owner(self) -> None:
        """The exhaustion hook runs exactly once for the requesting owner."""
        exhausted: list[object] = []
        ledger = MemoryLedger(capacity=CAPACITY, on_exhausted=exhausted.append)
        ledger.allocate(OWNER_A, LARGE)
        ledger.allocate(OWNER_B, LARGE)
        assert exhausted == [OWNER_B]

    def test_hook_may_clear_the_owner(self) -> None:
        """The hook runs outside the lock, so it can call back into the ledger."""
        ledger = MemoryLedger(capacity=CAPACITY)
        ledger.on_exhausted = ledger.clear
        ledger.allocate(OWNER_A, SMALL)
        ledger.allocate(OWNER_A, CAPACITY)
        assert OWNER_A not in ledger

    def test_rejection_is_logged(self) -> None:
        """A rejected request leaves a warning in the log."""
        logger = Logger()
        ledger = MemoryLedger(capacity=CAPACITY, logger=logger)
        ledger.allocate(OWNER_A, CAPACITY + 1)
        warnings = logger.filter(min_level=LogLevel.WARNING, source="ram")
        assert len(warnings) == 1
        assert warnings[0].owner == OWNER_A


class TestReleaseAndClear:
    """Verify giving memory back."""

    def test_release_decrements(self) -> None:
        """Releasing part of an allocation reduces the entry."""
        ledger = MemoryLedger(capacity=CAPACITY)
        ledger.allocate(OWNER_A, LARGE)
        ledger.release(OWNER_A, SMALL)
        assert ledger.usage_of(OWNER_A) == LARGE - SMALL

    def test_release_is_clamped_at_zero(self) -> None:
        """Releasing more than held drops the entry instead of going negative."""
        ledger = MemoryLedger(capacity=CAPACITY)
        ledger.allocate(OWNER_A, SMALL)
        ledger.release(OWNER_A, LARGE)
        assert ledger.usage_of(OWNER_A) == 0
        assert OWNER_A not in ledger

    def test_release_unknown_owner_is_noop(self) -> None:
        """Releasing for an owner without an entry never errors."""
        ledger = MemoryLedger(capacity=CAPACITY)
        ledger.release(OWNER_A, SMALL)
        assert ledger.total_usage() == 0

    def test_clear_removes_entry(self) -> None:
        """Clearing drops the entry whatever its balance."""
        ledger = MemoryLedger(capacity=CAPACITY)
        ledger.allocate(OWNER_A, LARGE)
        ledger.clear(OWNER_A)
        assert OWNER_A not in ledger
        assert ledger.free() == CAPACITY

    def test_clear_unknown_owner_is_noop(self) -> None:
        """Clearing an owner without an entry never errors."""
        ledger = MemoryLedger(capacity=CAPACITY)
        ledger.clear(OWNER_A)
        assert ledger.snapshot() == {}


class TestReserve:
    """Verify reservations for owners with no process behind them."""

    def test_reserve_records_system_baseline(self) -> None:
        """The system's baseline is an ordinary entry."""
        ledger = MemoryLedger(capacity=CAPACITY)
        ledger.reserve(SYSTEM_OWNER, SMALL)
        assert ledger.usage_of(SYSTEM_OWNER) == SMALL

    def test_reserve_over_capacity_raises(self) -> None:
        """A reservation that cannot fit raises instead of calling the hook."""
        exhausted: list[object] = []
        ledger = MemoryLedger(capacity=CAPACITY, on_exhausted=exhausted.append)
        with pytest.raises(OutOfMemoryError, match="Cannot reserve"):
            ledger.reserve(SYSTEM_OWNER, CAPACITY + 1)
        assert exhausted == []


class TestLedgerInvariant:
    """Verify the capacity invariant under mixed and concurrent use."""

    def test_invariant_holds_over_a_sequence(self) -> None:
        """Usage equals the entry sum and never exceeds capacity."""
        ledger = MemoryLedger(capacity=CAPACITY, on_exhausted=lambda _owner: None)
        operations = [
            ("allocate", OWNER_A, LARGE),
            ("allocate", OWNER_B, LARGE),
            ("release", OWNER_A, SMALL),
            ("allocate", OWNER_B, SMALL),
            ("clear", OWNER_A, 0),
            ("allocate", OWNER_A, CAPACITY),
            ("release", OWNER_B, CAPACITY),
            ("allocate", OWNER_A, CAPACITY),
        ]
        for op, owner, amount in operations:
            if op == "allocate":
                ledger.allocate(owner, amount)
            elif op == "release":
                ledger.release(owner, amount)
            else:
                ledger.clear(owner)
            assert ledger.total_usage() == sum(ledger.snapshot().values())
            assert ledger.total_usage() <= CAPACITY

    def test_concurrent_allocations_never_overcommit(self) -> None:
        """Racing owners cannot jointly exceed the capacity."""
        rejected: list[object] = []
        lock = threading.Lock()

        def on_exhausted(owner: object) -> None:
            with lock:
                rejected.append(owner)

        ledger = MemoryLedger(capacity=CAPACITY, on_exhausted=on_exhausted)
        unit = 10
        attempts = 50
        num_threads = 4

        def hammer(owner: str) -> None:
            for _ in range(attempts):
                ledger.allocate(owner, unit)

        threads = [threading.Thread(target=hammer, args=(f"owner-{i}",)) for i in range(num_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert ledger.total_usage() == CAPACITY
        assert len(rejected) == num_threads * attempts - CAPACITY // unit
