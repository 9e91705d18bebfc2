"""Duplication of the live installer root into both OS slots.

Sequence (each step fatal on error, each finished before the next):
    1. Format the ESP and both EFI partitions as FAT.
    2. Register the thaw with the cleanup stack, then freeze the source root.
    3. For slot A, then slot B:
         dd the frozen source onto the slot's rootfs partition,
         give the copy a fresh btrfs UUID (btrfstune -u),
         run btrfs check against it.
    4. Leave the source frozen. The thaw runs exactly once, when the cleanup
       stack runs at the end of the session.

Both slots are copied under a single freeze so they hold the same point in
time. A dd copy duplicates the filesystem UUID too; two btrfs filesystems
with one UUID confuse btrfs tooling, so each copy's UUID is regenerated and
then compared against the source and the sibling slot.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from deck_repair.domain import DiskTarget, OsSlot, PartitionRole, SourceRoot
from deck_repair.logging import LoggerFactory, pause_file_sinks, resume_file_sinks

from .cleanup import CleanupStack
from .command_runners import CommandRunner
from .exceptions import DuplicateFilesystemIdError
from .format import FilesystemFormatter


log = LoggerFactory.for_imaging()

DEFAULT_DD_BLOCK_SIZE = "128M"


# ==============================================================================
# Capabilities
# ==============================================================================


class FilesystemFreezer(Protocol):
    def freeze(self, mountpoint: str) -> None: ...

    def thaw(self, mountpoint: str) -> None: ...


class BlockDuplicator(Protocol):
    def duplicate(self, source: str, target: str) -> None: ...


class FilesystemTuner(Protocol):
    def regenerate_uuid(self, device: str) -> None: ...


class FilesystemChecker(Protocol):
    def check(self, device: str) -> None: ...


class UuidReader(Protocol):
    def fs_uuid(self, device: str) -> str: ...


class FsfreezeFreezer:
    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def freeze(self, mountpoint: str) -> None:
        self.runner.run(["fsfreeze", "-f", mountpoint])

    def thaw(self, mountpoint: str) -> None:
        self.runner.run(["fsfreeze", "-u", mountpoint])


class DdDuplicator:
    """Raw block copy with dd, synced writes, progress streamed to the log."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        block_size: str = DEFAULT_DD_BLOCK_SIZE,
    ):
        self.runner = runner or CommandRunner()
        self.block_size = block_size

    def command(self, source: str, target: str) -> list[str]:
        return [
            "dd",
            f"if={source}",
            f"of={target}",
            f"bs={self.block_size}",
            "status=progress",
            "oflag=sync",
        ]

    def duplicate(self, source: str, target: str) -> None:
        self.runner.stream(self.command(source, target))


class BtrfstuneTuner:
    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def regenerate_uuid(self, device: str) -> None:
        self.runner.run(["btrfstune", "-f", "-u", device])


class BtrfsChecker:
    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def check(self, device: str) -> None:
        self.runner.run(["btrfs", "check", device])


# ==============================================================================
# Freeze guard
# ==============================================================================


class FreezeGuard:
    """A held freeze on one mountpoint.

    The guard registers release() with the cleanup stack before freezing, so
    a process that dies between the freeze and the first copy still thaws on
    the way out. release() is a no-op once the thaw has succeeded; a thaw
    that raised leaves the guard frozen so the next call retries it.

    Log file sinks on the frozen filesystem are detached for the length of
    the freeze. A write to a frozen filesystem blocks until the thaw, and a
    blocked sink would stall the log call that precedes the thaw.
    """

    def __init__(self, freezer: FilesystemFreezer, mountpoint: str):
        self.freezer = freezer
        self.mountpoint = mountpoint
        self.frozen = False

    def acquire(self, cleanup: CleanupStack) -> FreezeGuard:
        cleanup.register(self.release, f"thaw {self.mountpoint}")
        log.info(f"Freezing {self.mountpoint}")
        paused = pause_file_sinks(self.mountpoint)
        if paused:
            log.warning(
                f"Log files on {self.mountpoint} paused until thaw: "
                + ", ".join(str(path) for path in paused)
            )
        try:
            self.freezer.freeze(self.mountpoint)
        except BaseException:
            resume_file_sinks()
            raise
        self.frozen = True
        return self

    def release(self) -> None:
        if not self.frozen:
            log.debug(f"{self.mountpoint} is not frozen, nothing to thaw")
            return
        log.info(f"Unfreezing {self.mountpoint}")
        self.freezer.thaw(self.mountpoint)
        self.frozen = False
        resumed = resume_file_sinks()
        if resumed:
            log.debug(f"Log files resumed after thaw of {self.mountpoint}")

    def __enter__(self) -> FreezeGuard:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False


def freeze_source(
    freezer: FilesystemFreezer, source: SourceRoot, cleanup: CleanupStack
) -> FreezeGuard:
    """Freeze ``source`` with its thaw already registered in ``cleanup``."""
    return FreezeGuard(freezer, source.mountpoint).acquire(cleanup)


# ==============================================================================
# Engine
# ==============================================================================


class SlotImagingEngine:
    """Formats the boot partitions and images the OS slots from the source."""

    def __init__(
        self,
        target: DiskTarget,
        *,
        formatter: FilesystemFormatter,
        freezer: FilesystemFreezer,
        duplicator: BlockDuplicator,
        tuner: FilesystemTuner,
        checker: FilesystemChecker,
        uuid_reader: Optional[UuidReader] = None,
        slots: Sequence[OsSlot] = (OsSlot.A, OsSlot.B),
    ):
        self.target = target
        self.formatter = formatter
        self.freezer = freezer
        self.duplicator = duplicator
        self.tuner = tuner
        self.checker = checker
        self.uuid_reader = uuid_reader
        self.slots = tuple(slots)

    def format_boot_partitions(self) -> None:
        log.info("Creating boot partitions")
        self.formatter.fat("esp", self.target.role_path(PartitionRole.ESP))
        for slot in OsSlot:
            self.formatter.fat("efi", self.target.role_path(slot.efi_role))

    def _read_uuid(self, device: str) -> str:
        if self.uuid_reader is None:
            return ""
        return self.uuid_reader.fs_uuid(device)

    def image_slot(self, source: SourceRoot, slot: OsSlot) -> str:
        """Copy, re-UUID and check one slot.

        Returns:
            The slot's new filesystem UUID ("" when UUIDs are not read)
        """
        device = self.target.role_path(slot.root_role)
        log.info(f"Imaging OS partition {slot.value}")
        self.duplicator.duplicate(source.device_path, device)
        self.tuner.regenerate_uuid(device)
        self.checker.check(device)
        return self._read_uuid(device)

    def _ensure_unique(self, device: str, fs_uuid: str, seen: dict[str, str]) -> None:
        if not fs_uuid:
            return
        for other, other_uuid in seen.items():
            if other_uuid == fs_uuid:
                raise DuplicateFilesystemIdError(device, fs_uuid, other)
        seen[device] = fs_uuid

    def run(self, source: SourceRoot, cleanup: CleanupStack) -> dict[OsSlot, str]:
        """Image every slot from ``source``.

        The freeze taken here is released by ``cleanup``, not by this
        method.

        Returns:
            Mapping of slot to its regenerated filesystem UUID
        """
        self.format_boot_partitions()

        seen: dict[str, str] = {}
        self._ensure_unique(source.device_path, self._read_uuid(source.device_path), seen)

        freeze_source(self.freezer, source, cleanup)

        uuids: dict[OsSlot, str] = {}
        for slot in self.slots:
            device = self.target.role_path(slot.root_role)
            fs_uuid = self.image_slot(source, slot)
            self._ensure_unique(device, fs_uuid, seen)
            uuids[slot] = fs_uuid
            log.success(f"OS partition {slot.value} imaged")
        return uuids
