"""Bootloader — machine configuration, power-on self-test and boot chain.

A machine is described by a **machine image**: how many cores it has,
whether they are hyperthreaded, how fast the clock runs, how much RAM
is installed and how much of it the system keeps for itself.  The
image is either built from defaults or read from a JSON file::

    {
        "version": "0.1.0",
        "cores": 2,
        "hyperthreading": false,
        "clock_speed": 3.4,
        "ram_size": 2000000,
        "system_reserved": 297321
    }

Booting follows the usual chain::

    Load image → Firmware POST → Machine boot

The POST rejects images the machine could never run on (no cores, a
stopped clock, no RAM, or a system reservation bigger than the RAM).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from py_machine.machine import (
    DEFAULT_RAM_SIZE,
    DEFAULT_SYSTEM_RESERVED,
    VERSION,
    Machine,
)
from py_machine.process.scheduler import DEFAULT_CLOCK_SPEED, DEFAULT_CORES, worker_count

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from py_machine.dispatcher import SoftwareFactory


class BootStage(StrEnum):
    """Represent the current phase of the boot chain."""

    IMAGE = "image"
    POST = "post"
    MACHINE = "machine"
    READY = "ready"


@dataclass(frozen=True)
class MachineImage:
    """The hardware description a machine boots from."""

    version: str = VERSION
    cores: int = DEFAULT_CORES
    hyperthreading: bool = False
    clock_speed: float = DEFAULT_CLOCK_SPEED
    ram_size: int = DEFAULT_RAM_SIZE
    system_reserved: int = DEFAULT_SYSTEM_RESERVED

    @property
    def workers(self) -> int:
        """Return the number of CPU execution slots this image describes."""
        return worker_count(self.cores, hyperthreading=self.hyperthreading)


@dataclass(frozen=True)
class PostResult:
    """Capture the outcome of the firmware Power-On Self-Test (POST)."""

    cpu_ok: bool
    clock_ok: bool
    memory_ok: bool
    messages: tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        """Return True only if every hardware check passed."""
        return self.cpu_ok and self.clock_ok and self.memory_ok


class BootError(RuntimeError):
    """Raise when the boot chain cannot continue.

    Examples: POST failure, unreadable or malformed image file.
    """


class Bootloader:
    """Load a machine image, check it, and boot a machine from it.

    Usage::

        bootloader = Bootloader()
        machine = bootloader.boot()  # full chain, returns a running machine

    """

    def __init__(
        self,
        *,
        image_path: Path | None = None,
        image: MachineImage | None = None,
        software: Mapping[str, SoftwareFactory] | None = None,
    ) -> None:
        """Create a bootloader.

        Args:
            image_path: Path to a JSON machine image.  Fields missing from
                the file fall back to *image* (or the defaults).
            image: In-memory image used when no file is given.
            software: Command registry for the booted machine.

        """
        self._image_path = image_path
        self._image = image or MachineImage()
        self._software = software
        self._stage = BootStage.IMAGE
        self._boot_log: list[str] = []
        self._machine: Machine | None = None

    @property
    def stage(self) -> BootStage:
        """Return the current boot stage."""
        return self._stage

    @property
    def boot_log(self) -> list[str]:
        """Return the accumulated boot log messages."""
        return list(self._boot_log)

    @property
    def machine(self) -> Machine | None:
        """Return the booted machine, or None if boot has not completed."""
        return self._machine

    def load_image(self) -> MachineImage:
        """Return the machine image from the JSON file, or the in-memory one.

        Raises:
            BootError: If the file cannot be read or holds invalid values.

        """
        if self._image_path is None:
            return self._image

        try:
            data = json.loads(self._image_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            msg = f"Cannot load machine image: {e}"
            raise BootError(msg) from e
        if not isinstance(data, dict):
            msg = "Cannot load machine image: expected a JSON object"
            raise BootError(msg)

        fallback = self._image
        try:
            return MachineImage(
                version=str(data.get("version", fallback.version)),
                cores=int(data.get("cores", fallback.cores)),
                hyperthreading=bool(data.get("hyperthreading", fallback.hyperthreading)),
                clock_speed=float(data.get("clock_speed", fallback.clock_speed)),
                ram_size=int(data.get("ram_size", fallback.ram_size)),
                system_reserved=int(data.get("system_reserved", fallback.system_reserved)),
            )
        except (TypeError, ValueError) as e:
            msg = f"Cannot load machine image: {e}"
            raise BootError(msg) from e

    def boot(self) -> Machine:
        """Run the full boot chain and return a running machine.

        Raises:
            BootError: If the image cannot be loaded or POST fails.

        """
        # Stage 1: load the image
        self._stage = BootStage.IMAGE
        image = self.load_image()
        self._boot_log.append(f"[BOOT] Loading machine image v{image.version} ... OK")

        # Stage 2: POST
        self._stage = BootStage.POST
        post = run_post(image)
        self._boot_log.extend(f"[POST] {m}" for m in post.messages)
        if not post.passed:
            msg = "POST failed: " + ", ".join(post.messages)
            raise BootError(msg)

        # Stage 3: boot the machine
        self._stage = BootStage.MACHINE
        machine = Machine(
            cores=image.cores,
            hyperthreading=image.hyperthreading,
            clock_speed=image.clock_speed,
            ram_size=image.ram_size,
            system_reserved=image.system_reserved,
            version=image.version,
            software=self._software,
        )
        machine.boot()
        self._machine = machine

        self._stage = BootStage.READY
        return machine


def run_post(image: MachineImage) -> PostResult:
    """Simulate the Power-On Self-Test for *image*."""
    cpu_ok = image.cores > 0
    clock_ok = image.clock_speed > 0
    memory_ok = 0 <= image.system_reserved <= image.ram_size and image.ram_size > 0

    def status(ok: bool) -> str:  # noqa: FBT001
        return "OK" if ok else "FAIL"

    messages = (
        f"CPU: {image.cores} core(s), {image.workers} worker(s) ... {status(cpu_ok)}",
        f"Clock: {image.clock_speed} ... {status(clock_ok)}",
        f"Memory: {image.ram_size} units, {image.system_reserved} reserved ... {status(memory_ok)}",
    )
    return PostResult(cpu_ok=cpu_ok, clock_ok=clock_ok, memory_ok=memory_ok, messages=messages)
