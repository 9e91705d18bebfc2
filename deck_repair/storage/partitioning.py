"""Partition table application for a full reimage.

The layout is rendered as an sfdisk script and fed to a single sfdisk
invocation, which replaces the whole table. There is no partial
application and no recovery from a failed write: the device then needs a
full reimage.
"""

from __future__ import annotations

from typing import Optional, Protocol

from deck_repair.domain import PARTITION_TABLE, DiskTarget, PartitionSpec
from deck_repair.logging import LoggerFactory

from .command_runners import CommandRunner


log = LoggerFactory.for_partition()


class PartitionApplier(Protocol):
    def apply(self, target: DiskTarget, script: str) -> None: ...


def _render_entry(target: DiskTarget, spec: PartitionSpec) -> str:
    name = f'name="{spec.name}",'
    if spec.fills_disk:
        size = " " * 16
    else:
        size = f" size={spec.size_mib:>6}MiB,"
    return (
        f"  {target.partition_path(spec.index)}: {name:<16}{size}"
        f" type={spec.type_guid}"
    )


def render_partition_table(
    target: DiskTarget, table: tuple[PartitionSpec, ...] = PARTITION_TABLE
) -> str:
    """Render ``table`` against ``target`` in sfdisk script format."""
    lines = ["  label: gpt"]
    lines.extend(_render_entry(target, spec) for spec in table)
    return "\n".join(lines) + "\n"


class SfdiskPartitionApplier:
    """Writes a partition table with sfdisk, then lets the kernel catch up."""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def apply(self, target: DiskTarget, script: str) -> None:
        self.runner.run(["sfdisk", target.device_path], input_text=script)
        # New partition nodes must exist before mkfs runs against them
        for command in (
            ["partprobe", target.device_path],
            ["udevadm", "settle", "--timeout=10"],
        ):
            self.runner.succeeds(command)


def write_partition_table(target: DiskTarget, applier: PartitionApplier) -> str:
    """Replace the partition table of ``target`` with the fixed layout.

    Returns:
        The script that was applied
    """
    script = render_partition_table(target)
    log.info(f"Write known partition table to {target.device_path}")
    log.debug(f"sfdisk script:\n{script}")
    applier.apply(target, script)
    return script
