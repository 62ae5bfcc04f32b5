"""Tests for the bootloader — machine image, POST and boot chain.

The bootloader follows the chain every machine boots through:
Load image → Firmware POST → Machine boot.
"""

import json
from pathlib import Path

import pytest

from py_machine.bootloader import BootError, Bootloader, BootStage, MachineImage, PostResult, run_post
from py_machine.machine import DEFAULT_RAM_SIZE, MachineState

FAST_CLOCK = 1000.0
_RAM_SMALL = 5_000
_RESERVED_SMALL = 500


class TestBootStage:
    """Verify BootStage enum members."""

    def test_boot_stage_values(self) -> None:
        """BootStage should have four members matching the boot chain."""
        assert BootStage.IMAGE == "image"
        assert BootStage.POST == "post"
        assert BootStage.MACHINE == "machine"
        assert BootStage.READY == "ready"


class TestMachineImage:
    """Verify the MachineImage frozen dataclass."""

    def test_defaults(self) -> None:
        """The default image describes the stock machine."""
        image = MachineImage()
        assert image.cores == 2
        assert image.hyperthreading is False
        assert image.ram_size == DEFAULT_RAM_SIZE

    def test_workers(self) -> None:
        """Hyperthreading doubles the worker count."""
        expected = 8
        assert MachineImage(cores=4, hyperthreading=True).workers == expected

    def test_frozen(self) -> None:
        """MachineImage should be immutable."""
        image = MachineImage()
        with pytest.raises(AttributeError):
            image.cores = 8  # type: ignore[misc]


class TestPost:
    """Verify the Power-On Self-Test."""

    def test_default_image_passes(self) -> None:
        """The stock machine passes every check."""
        result = run_post(MachineImage())
        assert result.passed is True
        assert all(m.endswith("OK") for m in result.messages)

    @pytest.mark.parametrize(
        ("image", "failed"),
        [
            (MachineImage(cores=0), "cpu_ok"),
            (MachineImage(clock_speed=0), "clock_ok"),
            (MachineImage(ram_size=0, system_reserved=0), "memory_ok"),
            (MachineImage(ram_size=100, system_reserved=200), "memory_ok"),
            (MachineImage(system_reserved=-1), "memory_ok"),
        ],
    )
    def test_bad_images_fail(self, image: MachineImage, failed: str) -> None:
        """Each impossible configuration fails its own check."""
        result = run_post(image)
        assert result.passed is False
        assert getattr(result, failed) is False

    def test_post_result_passed(self) -> None:
        """passed is True only when all checks are."""
        assert PostResult(cpu_ok=True, clock_ok=True, memory_ok=True).passed is True
        assert PostResult(cpu_ok=True, clock_ok=False, memory_ok=True).passed is False


class TestLoadImage:
    """Verify reading images from JSON."""

    def test_no_path_returns_in_memory_image(self) -> None:
        """Without a file the given image is used."""
        image = MachineImage(cores=1)
        assert Bootloader(image=image).load_image() is image

    def test_load_from_file(self, tmp_path: Path) -> None:
        """Values in the file override the defaults."""
        path = tmp_path / "machine.json"
        path.write_text(json.dumps({"cores": 4, "hyperthreading": True, "ram_size": _RAM_SMALL}))
        image = Bootloader(image_path=path).load_image()
        expected_cores = 4
        assert image.cores == expected_cores
        assert image.hyperthreading is True
        assert image.ram_size == _RAM_SMALL

    def test_missing_fields_fall_back(self, tmp_path: Path) -> None:
        """Fields absent from the file come from the in-memory image."""
        path = tmp_path / "machine.json"
        path.write_text(json.dumps({"version": "9.9.9"}))
        image = Bootloader(image_path=path, image=MachineImage(cores=3)).load_image()
        expected_cores = 3
        assert image.version == "9.9.9"
        assert image.cores == expected_cores

    def test_missing_file(self, tmp_path: Path) -> None:
        """An unreadable file is a boot error."""
        with pytest.raises(BootError, match="Cannot load machine image"):
            Bootloader(image_path=tmp_path / "missing.json").load_image()

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"cores": "many"}'])
    def test_malformed_file(self, tmp_path: Path, content: str) -> None:
        """Invalid JSON or values are boot errors."""
        path = tmp_path / "machine.json"
        path.write_text(content)
        with pytest.raises(BootError, match="Cannot load machine image"):
            Bootloader(image_path=path).load_image()


class TestBootChain:
    """Verify the full boot chain."""

    def test_boot_returns_running_machine(self) -> None:
        """A successful boot ends READY with a running machine."""
        bootloader = Bootloader(image=MachineImage(clock_speed=FAST_CLOCK))
        machine = bootloader.boot()
        try:
            assert bootloader.stage is BootStage.READY
            assert bootloader.machine is machine
            assert machine.state is MachineState.RUNNING
        finally:
            machine.shutdown()

    def test_boot_log(self) -> None:
        """The boot log starts with the image and lists POST results."""
        bootloader = Bootloader(image=MachineImage(clock_speed=FAST_CLOCK))
        machine = bootloader.boot()
        machine.shutdown()
        log = bootloader.boot_log
        assert log[0].startswith("[BOOT] Loading machine image")
        assert sum(1 for line in log if line.startswith("[POST]")) == 3  # noqa: PLR2004

    def test_boot_from_file(self, tmp_path: Path) -> None:
        """The booted machine uses the file's RAM size."""
        path = tmp_path / "machine.json"
        path.write_text(
            json.dumps({"ram_size": _RAM_SMALL, "system_reserved": _RESERVED_SMALL, "clock_speed": FAST_CLOCK})
        )
        machine = Bootloader(image_path=path).boot()
        try:
            assert machine.ledger.capacity == _RAM_SMALL
            assert machine.ledger.total_usage() == _RESERVED_SMALL
        finally:
            machine.shutdown()

    def test_post_failure_stops_boot(self) -> None:
        """A failing POST raises and no machine is created."""
        bootloader = Bootloader(image=MachineImage(cores=0))
        with pytest.raises(BootError, match="POST failed"):
            bootloader.boot()
        assert bootloader.stage is BootStage.POST
        assert bootloader.machine is None
