"""The awaiting-operator terminal state.

After a fatal error the device may be half written. The process must not
exit into a reboot that nobody sees, so it parks here until someone at the
console acknowledges the failure or the process is killed.
"""

from __future__ import annotations

import signal
import sys
from typing import Callable, Optional, TextIO

from deck_repair.logging import LoggerFactory


log = LoggerFactory.for_system()

ACKNOWLEDGE_PROMPT = "Press Enter to acknowledge and exit (the device will NOT reboot)."


class OperatorHalt:
    """Blocks until the operator acknowledges a failure.

    Args:
        stream: Console input; acknowledgment is one line read from it
        wait_for_signal: Called when the console is closed or not a
            terminal; blocks until a signal arrives (``signal.pause``)
    """

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        wait_for_signal: Callable[[], None] = signal.pause,
        output: Callable[[str], None] = print,
    ):
        self.stream = stream if stream is not None else sys.stdin
        self.wait_for_signal = wait_for_signal
        self.output = output

    def _interactive(self) -> bool:
        isatty = getattr(self.stream, "isatty", None)
        return bool(isatty and isatty())

    def wait(self, message: str) -> None:
        log.critical(message)
        if self._interactive():
            self.output(ACKNOWLEDGE_PROMPT)
            if self.stream.readline():
                log.info("Failure acknowledged by operator")
                return
        log.warning("No console to acknowledge on; waiting to be killed")
        while True:
            self.wait_for_signal()
