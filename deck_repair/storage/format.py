"""Filesystem creation for the auxiliary partitions.

Formatting Rules:
    var-A, var-B: ext4 labelled "var", whenever OS slots or home are
                  rewritten (a fresh OS slot has problems with overlay on a
                  stale var)
    home:         ext4 with casefold and the "huge" inode profile, then the
                  reserved-block percentage dropped to 0
    esp, efi-*:   FAT, formatted by the imaging stage (see imaging.py)

Every command is fatal on error.
"""

from __future__ import annotations

from typing import Optional, Protocol

from deck_repair.domain import DiskTarget, ExecutionPlan, OsSlot, PartitionRole
from deck_repair.logging import LoggerFactory

from .command_runners import CommandRunner


log = LoggerFactory.for_format()

HOME_EXT4_OPTIONS = ("-O", "casefold", "-T", "huge")


class FilesystemFormatter(Protocol):
    def ext4(self, label: str, device: str, *options: str) -> None: ...

    def fat(self, label: str, device: str) -> None: ...

    def tune_reserved_blocks(self, device: str, percent: int) -> None: ...


class MkfsFormatter:
    """Formats partitions with mkfs.ext4 / mkfs.vfat and tunes with tune2fs."""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def ext4(self, label: str, device: str, *options: str) -> None:
        if not label or not device:
            raise ValueError("ext4 format needs a label and a device")
        self.runner.run(["mkfs.ext4", "-F", *options, "-L", label, device])

    def fat(self, label: str, device: str) -> None:
        if not label or not device:
            raise ValueError("FAT format needs a label and a device")
        self.runner.run(["mkfs.vfat", f"-n{label}", device])

    def tune_reserved_blocks(self, device: str, percent: int) -> None:
        self.runner.run(["tune2fs", "-m", str(percent), device])


def format_var_partitions(
    target: DiskTarget, formatter: FilesystemFormatter
) -> list[PartitionRole]:
    log.info("Creating var partitions")
    roles = [slot.var_role for slot in OsSlot]
    for role in roles:
        formatter.ext4("var", target.role_path(role))
    return roles


def format_home_partition(target: DiskTarget, formatter: FilesystemFormatter) -> None:
    home = target.role_path(PartitionRole.HOME)
    log.info("Creating home partition...")
    formatter.ext4("home", home, *HOME_EXT4_OPTIONS)
    log.info("Remove the reserved blocks on the home partition...")
    formatter.tune_reserved_blocks(home, 0)


def run_format_stage(
    target: DiskTarget, plan: ExecutionPlan, formatter: FilesystemFormatter
) -> list[PartitionRole]:
    """Format var and home as ``plan`` requires.

    Returns:
        The roles that were formatted, in order
    """
    formatted: list[PartitionRole] = []
    if plan.formats_var:
        formatted.extend(format_var_partitions(target, formatter))
    if plan.write_home:
        format_home_partition(target, formatter)
        formatted.append(PartitionRole.HOME)
    return formatted
