import argparse
import sys
from pathlib import Path

from deck_repair.__version__ import __version__
from deck_repair.config import settings
from deck_repair.domain import ExecutionPlan
from deck_repair.logging import LoggerFactory, setup_logging
from deck_repair.services.halt import OperatorHalt
from deck_repair.services.repair import RepairSession, RepairTools
from deck_repair.storage.cleanup import CleanupStack
from deck_repair.storage.command_runners import CommandRunner
from deck_repair.storage.devices import unmount_disk_partitions
from deck_repair.storage.exceptions import (
    OperationCancelled,
    RepairError,
    TerminationRequested,
)
from deck_repair.ui.prompts import REIMAGE_MESSAGE, REIMAGE_TITLE, Prompter


MODES = {
    "reimage": (
        REIMAGE_TITLE,
        REIMAGE_MESSAGE,
        "Reimaging complete.",
    ),
    "system": (
        "Reinstall SteamOS",
        "This action will reinstall SteamOS on both OS slots.\n"
        "User data on the home partition is kept, var partitions are cleared.\n\n"
        "Choose Proceed only if you wish to reinstall SteamOS.",
        "SteamOS reinstall complete.",
    ),
    "home": (
        "Clear User Data",
        "This action will clear the home and var partitions.\n"
        "All games, saves and settings on this device will be destroyed.\n\n"
        "This cannot be undone.",
        "User data cleared.",
    ),
}


def build_plan(mode: str, verify: bool) -> ExecutionPlan:
    if mode == "system":
        return ExecutionPlan.reinstall_os(verify=verify)
    if mode == "home":
        return ExecutionPlan.wipe_home(verify=verify)
    return ExecutionPlan.full_reimage()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deck-repair",
        description="Reimage or repair a dual-slot SteamOS device from a live installer",
    )
    parser.add_argument(
        "mode",
        nargs="?",
        choices=sorted(MODES),
        default="reimage",
        help="reimage: new partition table, OS and user data (default); "
        "system: reinstall both OS slots; home: clear home and var",
    )
    parser.add_argument("--disk", help="Disk to repair (e.g. nvme0n1); skips the disk prompt")
    parser.add_argument(
        "--no-verify",
        action="store_true",
        help="Skip partition type/label verification for partial repairs",
    )
    parser.add_argument("--noprompt", action="store_true", help="Do not ask for confirmation")
    parser.add_argument(
        "--poweroff", action="store_true", help="Power off instead of rebooting when done"
    )
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    parser.add_argument("-d", "--debug", action="store_true", help="Log every command")
    parser.add_argument("--trace", action="store_true", help="Also log dd progress lines")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    log_dir = args.log_dir or settings.get_setting("log_dir")
    setup_logging(
        debug=args.debug,
        trace=args.trace,
        log_dir=Path(log_dir) if log_dir else None,
    )
    log = LoggerFactory.for_system()

    noprompt = args.noprompt or settings.get_bool("noprompt")
    poweroff = args.poweroff or settings.get_bool("poweroff")
    verify = not args.no_verify and settings.get_bool("verify_partitions", True)
    title, message, done_message = MODES[args.mode]

    runner = CommandRunner()
    prompter = Prompter(noprompt=noprompt, runner=runner)
    halt = OperatorHalt()
    cleanup = CleanupStack()
    cleanup.install_process_hooks()

    try:
        target = prompter.select_disk(args.disk)
        unmount_disk_partitions(target, runner)
        prompter.prompt_step(title, message)
    except OperationCancelled as cancelled:
        log.info(str(cancelled))
        return cancelled.exit_code
    except TerminationRequested as error:
        return error.exit_code
    except RepairError as error:
        try:
            halt.wait(str(error))
        except TerminationRequested as terminated:
            return terminated.exit_code
        return error.exit_code

    session = RepairSession(
        target=target,
        plan=build_plan(args.mode, verify),
        tools=RepairTools.for_system(
            target, runner, dd_block_size=settings.get_setting("dd_block_size")
        ),
        cleanup=cleanup,
        halt=halt,
    )
    code = session.run()
    if code != 0:
        return code

    try:
        prompter.prompt_reboot(done_message, poweroff=poweroff)
    except OperationCancelled:
        log.info("Staying in the repair image")
    except TerminationRequested as error:
        return error.exit_code
    except RepairError as error:
        log.error(f"Could not {'power off' if poweroff else 'reboot'}: {error}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
