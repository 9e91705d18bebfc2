"""Domain model for dual-slot device repair.

The partition layout is fixed: one ESP, an EFI partition, rootfs and var
partition per OS slot, and one shared home partition. Everything that names
a partition goes through PartitionRole so the physical numbering lives in
exactly one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


# ==============================================================================
# Disk Target
# ==============================================================================


@dataclass(frozen=True)
class DiskTarget:
    """The physical device a run acts upon.

    Set once after disk selection and passed to every stage explicitly.
    """

    device_path: str  # e.g., "/dev/nvme0n1"
    partition_suffix: str = ""  # "p" for nvme/mmcblk style numbering

    @property
    def name(self) -> str:
        """Kernel name (e.g., nvme0n1)."""
        return Path(self.device_path).name

    def partition_path(self, index: int) -> str:
        """Device node of partition number ``index`` on this disk."""
        return f"{self.device_path}{self.partition_suffix}{index}"

    def role_path(self, role: PartitionRole) -> str:
        return self.partition_path(role.index)

    @classmethod
    def from_name(cls, name: str) -> DiskTarget:
        """Build a target from a kernel name or /dev path.

        Disks whose name ends in a digit (nvme0n1, mmcblk0, loop0) number
        their partitions with a "p" infix.
        """
        name = name.strip()
        device_path = name if name.startswith("/dev/") else f"/dev/{name}"
        suffix = "p" if device_path[-1:].isdigit() else ""
        return cls(device_path=device_path, partition_suffix=suffix)


# ==============================================================================
# Partition Table
# ==============================================================================


class PartitionRole(Enum):
    """Partitions of the fixed layout, valued by physical partition number."""

    ESP = 1
    EFI_A = 2
    EFI_B = 3
    ROOT_A = 4
    ROOT_B = 5
    VAR_A = 6
    VAR_B = 7
    HOME = 8

    @property
    def index(self) -> int:
        return self.value


@dataclass(frozen=True)
class PartitionSpec:
    """One entry of the partition table."""

    index: int
    name: str
    size_mib: Optional[int]  # None means the rest of the disk
    type_guid: str

    @property
    def fills_disk(self) -> bool:
        return self.size_mib is None


GUID_ESP = "C12A7328-F81F-11D2-BA4B-00A0C93EC93B"
GUID_BASIC_DATA = "EBD0A0A2-B9E5-4433-87C0-68B6B72699C7"
GUID_LINUX_ROOT_X86_64 = "4F68BCE3-E8CD-4DB1-96E7-FBCAF984B709"
GUID_LINUX_VAR = "4D21B016-B534-45C2-A9FB-5C16E091FD2D"
GUID_LINUX_HOME = "933AC7E1-2EB4-4F13-B844-0E14E2AEF915"

PARTITION_TABLE_VERSION = 1

PARTITION_TABLE: tuple[PartitionSpec, ...] = (
    PartitionSpec(PartitionRole.ESP.index, "esp", 64, GUID_ESP),
    PartitionSpec(PartitionRole.EFI_A.index, "efi-A", 32, GUID_BASIC_DATA),
    PartitionSpec(PartitionRole.EFI_B.index, "efi-B", 32, GUID_BASIC_DATA),
    PartitionSpec(PartitionRole.ROOT_A.index, "rootfs-A", 5120, GUID_LINUX_ROOT_X86_64),
    PartitionSpec(PartitionRole.ROOT_B.index, "rootfs-B", 5120, GUID_LINUX_ROOT_X86_64),
    PartitionSpec(PartitionRole.VAR_A.index, "var-A", 256, GUID_LINUX_VAR),
    PartitionSpec(PartitionRole.VAR_B.index, "var-B", 256, GUID_LINUX_VAR),
    PartitionSpec(PartitionRole.HOME.index, "home", None, GUID_LINUX_HOME),
)


@dataclass(frozen=True)
class PartitionExpectation:
    """What the Verification Gate expects to find on a partition."""

    role: PartitionRole
    fstype: str
    partlabel: str


VERIFICATION_EXPECTATIONS: tuple[PartitionExpectation, ...] = (
    PartitionExpectation(PartitionRole.ESP, "vfat", "esp"),
    PartitionExpectation(PartitionRole.EFI_A, "vfat", "efi-A"),
    PartitionExpectation(PartitionRole.EFI_B, "vfat", "efi-B"),
    PartitionExpectation(PartitionRole.VAR_A, "ext4", "var-A"),
    PartitionExpectation(PartitionRole.VAR_B, "ext4", "var-B"),
    PartitionExpectation(PartitionRole.HOME, "ext4", "home"),
)


# ==============================================================================
# OS Slots
# ==============================================================================


class OsSlot(Enum):
    """One of the two redundant OS copies."""

    A = "A"
    B = "B"

    @property
    def partset(self) -> str:
        """Partition-set identifier understood by steamos-chroot."""
        return self.value

    @property
    def root_role(self) -> PartitionRole:
        return PartitionRole.ROOT_A if self is OsSlot.A else PartitionRole.ROOT_B

    @property
    def efi_role(self) -> PartitionRole:
        return PartitionRole.EFI_A if self is OsSlot.A else PartitionRole.EFI_B

    @property
    def var_role(self) -> PartitionRole:
        return PartitionRole.VAR_A if self is OsSlot.A else PartitionRole.VAR_B


# ==============================================================================
# Execution Plan
# ==============================================================================


@dataclass(frozen=True)
class ExecutionPlan:
    """Which stages a run performs.

    When the partition table is rewritten the Verification Gate is skipped:
    the new table is the ground truth and the partitions are unlabelled.
    """

    write_partition_table: bool = True
    write_os: bool = True
    write_home: bool = True
    verify: bool = True

    @property
    def verification_required(self) -> bool:
        return (
            self.verify
            and not self.write_partition_table
            and (self.write_os or self.write_home)
        )

    @property
    def formats_var(self) -> bool:
        # A fresh OS slot has problems with overlay on a stale var
        return self.write_os or self.write_home

    @property
    def is_noop(self) -> bool:
        return not (self.write_partition_table or self.write_os or self.write_home)

    @classmethod
    def full_reimage(cls) -> ExecutionPlan:
        return cls(write_partition_table=True, write_os=True, write_home=True)

    @classmethod
    def reinstall_os(cls, verify: bool = True) -> ExecutionPlan:
        return cls(
            write_partition_table=False, write_os=True, write_home=False, verify=verify
        )

    @classmethod
    def wipe_home(cls, verify: bool = True) -> ExecutionPlan:
        return cls(
            write_partition_table=False, write_os=False, write_home=True, verify=verify
        )

    def describe(self) -> str:
        parts = []
        if self.write_partition_table:
            parts.append("partition table")
        if self.write_os:
            parts.append("OS slots")
        if self.write_home:
            parts.append("home/var")
        return ", ".join(parts) if parts else "nothing"


# ==============================================================================
# Source Root
# ==============================================================================


@dataclass(frozen=True)
class SourceRoot:
    """The live root filesystem backing the installer.

    Sole source for both OS slot images.
    """

    device_path: str
    mountpoint: str = "/"


# ==============================================================================
# Run State
# ==============================================================================


class RunState(Enum):
    """State of a repair session."""

    PENDING = "pending"
    VERIFYING = "verifying"
    PARTITIONING = "partitioning"
    FORMATTING = "formatting"
    IMAGING = "imaging"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    AWAITING_OPERATOR = "awaiting_operator"
