"""
Pytest configuration and shared fixtures for deck-repair tests.

The repair stages only talk to the outside world through capability
objects. FakeDisk implements all of them against an in-memory model of the
target disk and the installer root, recording every call in order so tests
can assert on sequencing (verify before write, freeze before dd, thaw once).
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple
from unittest.mock import Mock

import pytest
from loguru import logger

from deck_repair.domain import (
    VERIFICATION_EXPECTATIONS,
    DiskTarget,
    SourceRoot,
)
from deck_repair.services.repair import RepairTools
from deck_repair.storage.exceptions import CommandFailedError, SourceRootMissingError


SOURCE_DEVICE = "/dev/sda3"
SOURCE_UUID = "0d6b7c3e-source"

WRITE_OPS = {
    "sfdisk",
    "mkfs.ext4",
    "mkfs.vfat",
    "tune2fs",
    "freeze",
    "dd",
    "btrfstune",
    "chroot",
}


# ==============================================================================
# Fake capabilities
# ==============================================================================


class FakeDisk:
    """In-memory target disk plus installer root implementing every capability."""

    def __init__(self, target: DiskTarget, source_device: str = SOURCE_DEVICE):
        self.target = target
        self.source_device: Optional[str] = source_device
        self.events: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, Optional[str]], BaseException] = {}
        self.fstypes: Dict[str, str] = {}
        self.labels: Dict[str, str] = {}
        self.uuids: Dict[str, str] = {source_device: SOURCE_UUID}
        self.ext4_options: Dict[str, tuple] = {}
        self.scripts: List[str] = []
        self.frozen = False
        self.freeze_count = 0
        self.thaw_count = 0
        self.regenerate_uuids = True
        self._uuid_counter = 0

    # -- helpers ---------------------------------------------------------------

    def fail_on(self, op: str, arg: Optional[str] = None, error: BaseException = None):
        self.failures[(op, arg)] = error or CommandFailedError([op], 1, "injected")

    def _do(self, op: str, arg: str) -> None:
        self.events.append((op, arg))
        error = self.failures.get((op, arg)) or self.failures.get((op, None))
        if error is not None:
            raise error

    def ops(self) -> List[str]:
        return [op for op, _ in self.events]

    def writes(self) -> List[Tuple[str, str]]:
        return [event for event in self.events if event[0] in WRITE_OPS]

    def make_conformant(self) -> None:
        for expectation in VERIFICATION_EXPECTATIONS:
            device = self.target.role_path(expectation.role)
            self.fstypes[device] = expectation.fstype
            self.labels[device] = expectation.partlabel

    # -- PartitionTagReader / UuidReader ---------------------------------------

    def fstype(self, device: str) -> str:
        self.events.append(("read-type", device))
        return self.fstypes.get(device, "")

    def partlabel(self, device: str) -> str:
        self.events.append(("read-label", device))
        return self.labels.get(device, "")

    def fs_uuid(self, device: str) -> str:
        return self.uuids.get(device, "")

    # -- PartitionApplier ------------------------------------------------------

    def apply(self, target: DiskTarget, script: str) -> None:
        self._do("sfdisk", target.device_path)
        self.scripts.append(script)
        self.fstypes.clear()
        self.labels.clear()

    # -- FilesystemFormatter ---------------------------------------------------

    def ext4(self, label: str, device: str, *options: str) -> None:
        self._do("mkfs.ext4", device)
        self.fstypes[device] = "ext4"
        self.ext4_options[device] = options

    def fat(self, label: str, device: str) -> None:
        self._do("mkfs.vfat", device)
        self.fstypes[device] = "vfat"

    def tune_reserved_blocks(self, device: str, percent: int) -> None:
        self._do("tune2fs", device)

    # -- FilesystemFreezer -----------------------------------------------------

    def freeze(self, mountpoint: str) -> None:
        self._do("freeze", mountpoint)
        self.frozen = True
        self.freeze_count += 1

    def thaw(self, mountpoint: str) -> None:
        self.events.append(("thaw", mountpoint))
        self.frozen = False
        self.thaw_count += 1

    # -- BlockDuplicator / FilesystemTuner / FilesystemChecker -----------------

    def duplicate(self, source: str, target: str) -> None:
        assert self.frozen, "block copy started on an unfrozen source"
        self._do("dd", target)
        self.uuids[target] = self.uuids.get(source, "")

    def regenerate_uuid(self, device: str) -> None:
        self._do("btrfstune", device)
        if self.regenerate_uuids:
            self._uuid_counter += 1
            self.uuids[device] = f"slot-uuid-{self._uuid_counter}"

    def check(self, device: str) -> None:
        self._do("btrfs-check", device)

    # -- ChrootRunner ----------------------------------------------------------

    def run(self, partset: str, *command: str) -> None:
        self._do("chroot", f"{partset}:{' '.join(command)}")

    # -- source resolution -----------------------------------------------------

    def resolve_source(self) -> SourceRoot:
        if not self.source_device:
            raise SourceRootMissingError()
        return SourceRoot(device_path=self.source_device)

    def tools(self) -> RepairTools:
        return RepairTools(
            blkid=self,
            applier=self,
            formatter=self,
            freezer=self,
            duplicator=self,
            tuner=self,
            checker=self,
            chroot=self,
            resolve_source=self.resolve_source,
        )


class FakeHalt:
    """Records halt messages instead of blocking."""

    def __init__(self):
        self.messages: List[str] = []

    def wait(self, message: str) -> None:
        self.messages.append(message)


class RecordingRunner:
    """CommandRunner stand-in: records commands, returns canned output."""

    def __init__(self):
        self.commands: List[list] = []
        self.inputs: List[Optional[str]] = []
        self.outputs: Dict[str, str] = {}
        self.failures: Dict[str, int] = {}

    def _key(self, command) -> str:
        return " ".join(command)

    def run(self, command, input_text=None) -> str:
        command = list(command)
        self.commands.append(command)
        self.inputs.append(input_text)
        key = self._key(command)
        for prefix, returncode in self.failures.items():
            if key.startswith(prefix):
                raise CommandFailedError(command, returncode, "injected")
        for prefix, output in self.outputs.items():
            if key.startswith(prefix):
                return output
        return ""

    def stream(self, command) -> None:
        self.run(command)

    def succeeds(self, command) -> bool:
        try:
            self.run(command)
        except CommandFailedError:
            return False
        return True


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def nvme_target() -> DiskTarget:
    """Fixture providing an NVMe-style target (partitions use a "p" infix)."""
    return DiskTarget("/dev/nvme0n1", "p")


@pytest.fixture
def fake_disk(nvme_target) -> FakeDisk:
    """Fixture providing a blank fake disk with a resolvable installer root."""
    return FakeDisk(nvme_target)


@pytest.fixture
def make_fake_disk(nvme_target):
    """Fixture returning a factory for independent blank fake disks."""
    return lambda: FakeDisk(nvme_target)


@pytest.fixture
def conformant_disk(fake_disk) -> FakeDisk:
    """Fixture providing a fake disk whose layout passes verification."""
    fake_disk.make_conformant()
    return fake_disk


@pytest.fixture
def fake_halt() -> FakeHalt:
    return FakeHalt()


@pytest.fixture
def recording_runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def mock_subprocess_run(mocker) -> Mock:
    """Fixture patching subprocess.run inside the command runner module."""
    return mocker.patch("deck_repair.storage.command_runners.subprocess.run")


@pytest.fixture
def log_records():
    """Capture loguru records emitted during a test."""
    records: list = []
    handler_id = logger.add(lambda message: records.append(message.record), level="TRACE")
    yield records
    logger.remove(handler_id)
