"""Command execution utilities.

Every external tool the repair drives goes through a CommandRunner. The
runner echoes the command (shell-quoted) to the log before running it,
raises CommandFailedError on a non-zero exit, and can stream stderr line by
line for long-running tools such as dd.
"""

from __future__ import annotations

import subprocess
from typing import Callable, Optional, Sequence

from deck_repair.logging import LoggerFactory, ThrottledLogger, format_command

from .exceptions import CommandFailedError


log = LoggerFactory.for_command()


def run_checked_command(command: Sequence[str], input_text: Optional[str] = None) -> str:
    """Run a command and raise CommandFailedError if it fails."""
    log.debug(f"+ {format_command(command)}")
    result = subprocess.run(
        list(command),
        input=input_text,
        text=True,
        capture_output=True,
    )
    if result.returncode != 0:
        stderr = result.stderr.strip()
        stdout = result.stdout.strip()
        message = stderr or stdout or "Command failed"
        log.error(f"Command exited with code {result.returncode}: {message}")
        raise CommandFailedError(command, result.returncode, message)
    return result.stdout


def run_checked_with_streaming_progress(
    command: Sequence[str],
    progress_callback: Optional[Callable[[str], None]] = None,
) -> None:
    """Run a command, handing each stderr line to ``progress_callback``.

    stderr is read in text mode, so the carriage returns dd uses between
    progress updates arrive as separate lines.

    If anything interrupts the read (a signal, a failing callback), the child
    is killed and reaped before the exception propagates.
    """
    log.debug(f"+ {format_command(command)}")
    process = subprocess.Popen(
        list(command),
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    last_line = ""
    try:
        for line in process.stderr:
            line = line.strip()
            if not line:
                continue
            last_line = line
            if progress_callback:
                progress_callback(line)
    except BaseException:
        process.kill()
        process.wait()
        raise
    returncode = process.wait()
    if returncode != 0:
        message = last_line or "Command failed"
        log.error(f"Command exited with code {returncode}: {message}")
        raise CommandFailedError(command, returncode, message)


class CommandRunner:
    """Runs external tools for the capability classes.

    Tests substitute a recording fake with the same two methods.
    """

    def __init__(self, progress_interval: float = 5.0):
        self._progress = ThrottledLogger(
            log.bind(tags=["command", "progress"]), interval_seconds=progress_interval
        )

    def run(self, command: Sequence[str], input_text: Optional[str] = None) -> str:
        return run_checked_command(command, input_text=input_text)

    def stream(self, command: Sequence[str]) -> None:
        key = command[0] if command else "command"

        def report(line: str) -> None:
            log.bind(tags=["command", "progress"]).trace(line)
            self._progress.info(key, line)

        run_checked_with_streaming_progress(command, progress_callback=report)

    def succeeds(self, command: Sequence[str]) -> bool:
        """Run a best-effort command, reporting only whether it worked."""
        try:
            self.run(command)
        except (CommandFailedError, OSError) as error:
            log.debug(f"Ignoring failure of {format_command(command)}: {error}")
            return False
        return True


__all__ = [
    "CommandRunner",
    "run_checked_command",
    "run_checked_with_streaming_progress",
]
