"""Operator-facing prompts: disk selection, confirmation, reboot.

Confirmation dialogs use zenity when it is installed (the repair image
runs a desktop session) and fall back to the console. With NOPROMPT set
the message is only logged and every step proceeds.
"""

from __future__ import annotations

import shutil
from typing import Callable, Optional

from deck_repair.domain import DiskTarget
from deck_repair.logging import LoggerFactory
from deck_repair.storage.command_runners import CommandRunner
from deck_repair.storage.devices import (
    disk_exists,
    format_disk_line,
    format_partition_line,
    list_disks,
    list_partitions,
)
from deck_repair.storage.exceptions import (
    EXIT_CANCELLED,
    EXIT_DECLINED,
    DiskNotFoundError,
    OperationCancelled,
)


log = LoggerFactory.for_system()

REIMAGE_TITLE = "Reimage Steam Deck"
REIMAGE_MESSAGE = (
    "This action will reimage the Steam Deck.\n"
    "This will permanently destroy all data on your Steam Deck and reinstall SteamOS.\n\n"
    "This cannot be undone.\n\n"
    "Choose Proceed only if you wish to clear and reimage this device."
)
REBOOT_HINT = (
    "Choose Proceed to reboot the Steam Deck now, or Cancel to stay in the repair image."
)


def _is_yes(reply: str) -> bool:
    return reply.strip()[:1].lower() == "y"


class Prompter:
    """Asks the operator questions and relays the answers.

    Args:
        noprompt: Log prompt text and proceed without asking
        runner: Runs lsblk, zenity and systemctl
        input_func: Reads one console line (``input`` by default)
        output: Writes one console line (``print`` by default)
    """

    def __init__(
        self,
        *,
        noprompt: bool = False,
        runner: Optional[CommandRunner] = None,
        input_func: Callable[[str], str] = input,
        output: Callable[[str], None] = print,
    ):
        self.noprompt = noprompt
        self.runner = runner or CommandRunner()
        self.input = input_func
        self.output = output

    def select_disk(self, preset: Optional[str] = None) -> DiskTarget:
        """Ask which disk to repair (or take ``preset``) and confirm it.

        Raises:
            DiskNotFoundError: the named disk has no device node
            OperationCancelled: the operator declined (exit code 0)
        """
        if preset:
            name = preset
        else:
            self.output("Available disks for installation:")
            for disk in list_disks(self.runner):
                self.output(f"  {format_disk_line(disk)}")
            self.output("")
            name = self.input("Enter disk to install SteamOS: ").strip()
        if not name:
            raise DiskNotFoundError("(empty name)")

        target = DiskTarget.from_name(name)
        if not disk_exists(target):
            raise DiskNotFoundError(target.device_path)

        if preset and self.noprompt:
            return target

        self.output(f"{target.name} contains following data:")
        for part in list_partitions(target, self.runner):
            self.output(f"  {format_partition_line(part)}")
        reply = self.input("Are you sure you want to continue? [y/n] ")
        if not _is_yes(reply):
            raise OperationCancelled("Disk selection declined", EXIT_CANCELLED)
        log.info(f"Starting SteamOS install on {target.device_path}")
        return target

    def confirm(self, title: str, message: str) -> bool:
        if self.noprompt:
            log.info(message)
            return True
        if shutil.which("zenity"):
            return self.runner.succeeds(
                [
                    "zenity",
                    "--title",
                    title,
                    "--question",
                    "--ok-label",
                    "Proceed",
                    "--cancel-label",
                    "Cancel",
                    "--no-wrap",
                    "--text",
                    message,
                ]
            )
        self.output(f"== {title} ==")
        self.output(message)
        return _is_yes(self.input("Proceed? [y/n] "))

    def prompt_step(self, title: str, message: str) -> None:
        """Proceed or stop the whole run.

        Raises:
            OperationCancelled: operator chose Cancel (exit code 1)
        """
        if not self.confirm(title, message):
            raise OperationCancelled(f"{title} cancelled", EXIT_DECLINED)

    def prompt_reboot(self, message: str, *, poweroff: bool = False) -> None:
        self.prompt_step("Action Complete", f"{message}\n\n{REBOOT_HINT}")
        self.runner.run(["systemctl", "poweroff" if poweroff else "reboot"])
