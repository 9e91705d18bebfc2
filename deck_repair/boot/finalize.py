"""Boot configuration of freshly imaged OS slots.

All work happens inside the slot through steamos-chroot, which mounts the
partition set of one slot from the target disk (without the live overlay)
and runs a command in it.

Per slot:
    mkdir /efi/SteamOS
    mkdir -p /esp/SteamOS/conf
    steamos-partsets /efi/SteamOS/partsets
    steamos-bootconf create --image <slot> ... --set title <slot>
    grub-mkimage
    update-grub

After both slots, steamcl-install puts the primary bootloader on the ESP
from slot A, forcing the removable-media path so firmware can boot the
device even when other removable disks are present.

There is no partial-finalization recovery; rerun the whole repair.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from deck_repair.domain import DiskTarget, OsSlot
from deck_repair.logging import LoggerFactory
from deck_repair.storage.command_runners import CommandRunner


log = LoggerFactory.for_boot()

EFI_DIR = "/efi"
ESP_CONF_DIR = "/esp/SteamOS/conf"
PARTSETS_PATH = "/efi/SteamOS/partsets"


class ChrootRunner(Protocol):
    def run(self, partset: str, *command: str) -> None: ...


class SteamosChrootRunner:
    """Runs commands inside a slot of ``target`` with steamos-chroot."""

    def __init__(self, target: DiskTarget, runner: Optional[CommandRunner] = None):
        self.target = target
        self.runner = runner or CommandRunner()

    def command(self, partset: str, *command: str) -> list[str]:
        return [
            "steamos-chroot",
            "--no-overlay",
            "--disk",
            self.target.device_path,
            "--partset",
            partset,
            "--",
            *command,
        ]

    def run(self, partset: str, *command: str) -> None:
        self.runner.run(self.command(partset, *command))


def slot_commands(slot: OsSlot) -> list[Sequence[str]]:
    """Commands that finalize ``slot``, in the order they must run."""
    name = slot.partset
    return [
        ("mkdir", f"{EFI_DIR}/SteamOS"),
        ("mkdir", "-p", ESP_CONF_DIR),
        ("steamos-partsets", PARTSETS_PATH),
        (
            "steamos-bootconf",
            "create",
            "--image",
            name,
            "--conf-dir",
            ESP_CONF_DIR,
            "--efi-dir",
            EFI_DIR,
            "--set",
            "title",
            name,
        ),
        ("grub-mkimage",),
        ("update-grub",),
    ]


def finalize_slot(runner: ChrootRunner, slot: OsSlot) -> None:
    log.info(f"Finalizing install part {slot.partset}")
    for command in slot_commands(slot):
        runner.run(slot.partset, *command)


def install_bootloader(runner: ChrootRunner, slot: OsSlot = OsSlot.A) -> None:
    log.info("Finalizing EFI system partition")
    runner.run(
        slot.partset,
        "steamcl-install",
        "--flags",
        "restricted",
        "--force-extra-removable",
    )


def finalize_boot(
    runner: ChrootRunner, slots: Sequence[OsSlot] = (OsSlot.A, OsSlot.B)
) -> None:
    """Finalize every slot, then install the bootloader from the first."""
    log.info("Finalizing boot configurations")
    for slot in slots:
        finalize_slot(runner, slot)
    install_bootloader(runner, slots[0])
