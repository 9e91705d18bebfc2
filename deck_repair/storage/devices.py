"""Block device discovery and probing.

Thin wrappers over lsblk, blkid, findmnt and the mount table. Nothing in
this module writes to a device except unmount_disk_partitions(), which
releases partitions the live installer may have auto-mounted.

Operations:
    - list_disks(): whole disks as reported by lsblk
    - list_partitions(): partitions of one disk with fstype and partlabel
    - disk_exists(): whether the device node is present
    - resolve_source_root(): the block device backing "/"
    - unmount_disk_partitions(): umount every mount served by the disk
    - BlkidTagReader: reads TYPE/PARTLABEL/UUID tags for the Verification Gate
"""

from __future__ import annotations

import json
import os
from typing import Optional

import psutil

from deck_repair.domain import DiskTarget, SourceRoot
from deck_repair.logging import LoggerFactory

from .command_runners import CommandRunner
from .exceptions import CommandFailedError, SourceRootMissingError


log = LoggerFactory.for_system()

LSBLK_COLUMNS = "KNAME,TYPE,SIZE,MODEL,FSTYPE,PARTLABEL"


def _lsblk(runner: CommandRunner, *extra: str) -> list[dict]:
    output = runner.run(["lsblk", "-J", "-o", LSBLK_COLUMNS, *extra])
    try:
        data = json.loads(output)
    except json.JSONDecodeError as error:
        log.warning(f"lsblk returned invalid JSON: {error}")
        return []
    return data.get("blockdevices", []) or []


def _flatten(devices: list[dict]) -> list[dict]:
    flat: list[dict] = []
    for device in devices:
        flat.append(device)
        flat.extend(_flatten(device.get("children", []) or []))
    return flat


def list_disks(runner: Optional[CommandRunner] = None) -> list[dict]:
    """Return lsblk entries of TYPE disk."""
    runner = runner or CommandRunner()
    return [
        device
        for device in _flatten(_lsblk(runner))
        if device.get("type") == "disk"
    ]


def list_partitions(target: DiskTarget, runner: Optional[CommandRunner] = None) -> list[dict]:
    """Return lsblk entries of TYPE part that belong to ``target``."""
    runner = runner or CommandRunner()
    return [
        device
        for device in _flatten(_lsblk(runner, target.device_path))
        if device.get("type") == "part"
    ]


def format_disk_line(device: dict) -> str:
    """One line per disk for the selection prompt."""
    fields = [
        device.get("kname") or "",
        device.get("size") or "",
        (device.get("model") or "").strip(),
    ]
    return "  ".join(field for field in fields if field)


def format_partition_line(part: dict) -> str:
    fields = [
        part.get("kname") or "",
        part.get("size") or "",
        part.get("fstype") or "-",
        part.get("partlabel") or "-",
    ]
    return "  ".join(fields)


def disk_exists(target: DiskTarget) -> bool:
    return os.path.exists(target.device_path)


def resolve_source_root(
    runner: Optional[CommandRunner] = None, mountpoint: str = "/"
) -> SourceRoot:
    """Find the block device mounted at ``mountpoint``.

    Raises:
        SourceRootMissingError: findmnt has no source, or the node is gone
            (e.g., the installer stick dropped off a USB hub)
    """
    runner = runner or CommandRunner()
    try:
        device = runner.run(["findmnt", "-n", "-o", "source", mountpoint]).strip()
    except CommandFailedError:
        device = ""
    if not device or not os.path.exists(device):
        raise SourceRootMissingError(device or None)
    log.debug(f"Installer root is {device}")
    return SourceRoot(device_path=device, mountpoint=mountpoint)


def disk_mountpoints(target: DiskTarget) -> list[str]:
    """Mountpoints served by any partition of ``target``.

    Deepest mountpoints come first so nested mounts unmount cleanly.
    """
    prefix = target.device_path + target.partition_suffix

    def on_disk(device: str) -> bool:
        if device == target.device_path:
            return True
        return device.startswith(prefix) and device[len(prefix):].isdigit()

    mountpoints = [
        part.mountpoint
        for part in psutil.disk_partitions(all=True)
        if on_disk(part.device)
    ]
    return sorted(mountpoints, key=lambda path: path.count("/"), reverse=True)


def unmount_disk_partitions(
    target: DiskTarget, runner: Optional[CommandRunner] = None
) -> list[str]:
    """Unmount everything the installer auto-mounted from ``target``.

    Returns:
        The mountpoints that were unmounted

    Raises:
        CommandFailedError: a mount could not be released
    """
    runner = runner or CommandRunner()
    unmounted = []
    for mountpoint in disk_mountpoints(target):
        log.info(f"Unmounting {mountpoint}")
        runner.run(["umount", mountpoint])
        unmounted.append(mountpoint)
    return unmounted


class BlkidTagReader:
    """Reads partition metadata with blkid.

    A tag blkid cannot find (unformatted partition, no partlabel) reads as
    an empty string rather than an error: blkid exits 2 in that case.
    """

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def read(self, device: str, tag: str) -> str:
        try:
            return self.runner.run(["blkid", "-o", "value", "-s", tag, device]).strip()
        except CommandFailedError as error:
            if error.returncode == 2:
                return ""
            raise

    def fstype(self, device: str) -> str:
        return self.read(device, "TYPE")

    def partlabel(self, device: str) -> str:
        return self.read(device, "PARTLABEL")

    def fs_uuid(self, device: str) -> str:
        return self.read(device, "UUID")
