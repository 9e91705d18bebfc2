"""Exit/rollback handling for a repair run.

A CleanupStack holds the actions that must run however the process leaves
the repair: normal return, a RepairError, or a termination signal. Nothing
here undoes partition writes or block copies. The one reversible hazard it
exists for is the frozen installer root.

Usage:
    cleanup = CleanupStack()
    with cleanup:
        freeze_source(freezer, source, cleanup)
        ...  # copy both slots; the thaw runs when the block exits
"""

from __future__ import annotations

import atexit
import signal
from dataclasses import dataclass
from typing import Callable, Iterable

from deck_repair.logging import LoggerFactory

from .exceptions import TerminationRequested


log = LoggerFactory.for_system()

CleanupAction = Callable[[], None]

DEFAULT_TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGHUP, signal.SIGINT)


@dataclass
class _Registration:
    action: CleanupAction
    description: str
    done: bool = False


class CleanupStack:
    """Ordered list of cleanup actions, each run exactly once.

    Actions run in registration order, with the termination signals blocked.
    A failing action is logged and the remaining actions still run. Running
    the stack a second time does nothing, so it is safe to run it from both a
    ``with`` block and an atexit hook.
    """

    def __init__(self) -> None:
        self._entries: list[_Registration] = []
        self._signals: tuple[int, ...] = DEFAULT_TERMINATION_SIGNALS

    def register(self, action: CleanupAction, description: str = "") -> CleanupAction:
        description = description or getattr(action, "__name__", repr(action))
        self._entries.append(_Registration(action, description))
        log.debug(f"Registered cleanup action: {description}")
        return action

    @property
    def pending(self) -> list[str]:
        return [entry.description for entry in self._entries if not entry.done]

    def run(self) -> None:
        """Run every pending action with the termination signals blocked.

        A signal that arrives meanwhile is delivered once the mask is
        restored, after the last action. An action interrupted by a signal
        that was already pending stays pending for the next run(), and the
        TerminationRequested is re-raised once the other actions are done.
        """
        previous_mask = self._block_signals()
        interrupted = None
        try:
            for entry in self._entries:
                if entry.done:
                    continue
                # Marked before running so a re-entrant run() cannot repeat it
                entry.done = True
                log.debug(f"Running cleanup action: {entry.description}")
                try:
                    entry.action()
                except TerminationRequested as error:
                    entry.done = False
                    interrupted = interrupted or error
                    log.warning(f"Cleanup action interrupted: {entry.description}")
                except Exception:
                    log.exception(f"Cleanup action failed: {entry.description}")
        finally:
            self._restore_signals(previous_mask)
        if interrupted is not None:
            raise interrupted

    def _block_signals(self):
        if not self._signals:
            return None
        return signal.pthread_sigmask(signal.SIG_BLOCK, self._signals)

    def _restore_signals(self, previous_mask) -> None:
        if previous_mask is not None:
            signal.pthread_sigmask(signal.SIG_SETMASK, previous_mask)

    def _run_at_exit(self) -> None:
        try:
            self.run()
        except TerminationRequested:
            log.error(f"Cleanup left pending at exit: {', '.join(self.pending)}")

    def __enter__(self) -> CleanupStack:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.run()
        return False

    def install_process_hooks(
        self, signals: Iterable[int] = DEFAULT_TERMINATION_SIGNALS
    ) -> None:
        """Run the stack at interpreter exit and turn signals into errors.

        A signal raises TerminationRequested in the main thread, which
        unwinds through every ``with``/``finally`` between here and the
        session driver.
        """
        self._signals = tuple(signals)
        atexit.register(self._run_at_exit)

        def _raise_termination(signum, _frame):
            raise TerminationRequested(signum)

        for signum in self._signals:
            signal.signal(signum, _raise_termination)
