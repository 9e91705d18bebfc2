"""Repair session: the state machine that drives one run.

States:
    PENDING -> VERIFYING -> PARTITIONING -> FORMATTING -> IMAGING
            -> FINALIZING -> COMPLETED
    any fatal error -> AWAITING_OPERATOR

Which states are visited depends on the ExecutionPlan. A full reimage
writes the partition table and skips verification; a partial repair must
pass the Verification Gate before anything is written.

The CleanupStack wraps the whole run, so the installer root is thawed
before the session parks in AWAITING_OPERATOR and the live environment
stays usable for diagnosis.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from deck_repair.boot import ChrootRunner, SteamosChrootRunner, finalize_boot
from deck_repair.domain import DiskTarget, ExecutionPlan, RunState, SourceRoot
from deck_repair.logging import LoggerFactory, operation_context
from deck_repair.services.halt import OperatorHalt
from deck_repair.storage.cleanup import CleanupStack
from deck_repair.storage.command_runners import CommandRunner
from deck_repair.storage.devices import BlkidTagReader, resolve_source_root
from deck_repair.storage.exceptions import (
    RepairError,
    TerminationRequested,
    ToolError,
)
from deck_repair.storage.format import FilesystemFormatter, MkfsFormatter, run_format_stage
from deck_repair.storage.imaging import (
    DEFAULT_DD_BLOCK_SIZE,
    BlockDuplicator,
    BtrfsChecker,
    BtrfstuneTuner,
    DdDuplicator,
    FilesystemChecker,
    FilesystemFreezer,
    FilesystemTuner,
    FsfreezeFreezer,
    SlotImagingEngine,
)
from deck_repair.storage.partitioning import (
    PartitionApplier,
    SfdiskPartitionApplier,
    write_partition_table,
)
from deck_repair.storage.verification import verify_layout


log = LoggerFactory.for_system()

TOOL_FAILURE_MESSAGE = "Imaging error occurred, see above and restart process."


@dataclass
class RepairTools:
    """The external capabilities a session needs, bundled for injection."""

    blkid: BlkidTagReader
    applier: PartitionApplier
    formatter: FilesystemFormatter
    freezer: FilesystemFreezer
    duplicator: BlockDuplicator
    tuner: FilesystemTuner
    checker: FilesystemChecker
    chroot: ChrootRunner
    resolve_source: Callable[[], SourceRoot]

    @classmethod
    def for_system(
        cls,
        target: DiskTarget,
        runner: Optional[CommandRunner] = None,
        dd_block_size: str = DEFAULT_DD_BLOCK_SIZE,
    ) -> RepairTools:
        """Capabilities backed by the real tools (sfdisk, mkfs, dd, ...)."""
        runner = runner or CommandRunner()
        return cls(
            blkid=BlkidTagReader(runner),
            applier=SfdiskPartitionApplier(runner),
            formatter=MkfsFormatter(runner),
            freezer=FsfreezeFreezer(runner),
            duplicator=DdDuplicator(runner, block_size=dd_block_size),
            tuner=BtrfstuneTuner(runner),
            checker=BtrfsChecker(runner),
            chroot=SteamosChrootRunner(target, runner),
            resolve_source=lambda: resolve_source_root(runner),
        )


@dataclass
class RepairSession:
    target: DiskTarget
    plan: ExecutionPlan
    tools: RepairTools
    cleanup: CleanupStack = field(default_factory=CleanupStack)
    halt: OperatorHalt = field(default_factory=OperatorHalt)
    state: RunState = RunState.PENDING
    history: list[RunState] = field(default_factory=list)
    failure: Optional[RepairError] = None

    def _enter(self, state: RunState) -> None:
        self.state = state
        self.history.append(state)
        log.debug(f"Session state: {state.value}")

    def execute(self) -> None:
        """Run every stage the plan asks for. Raises on the first failure."""
        plan = self.plan
        log.info(f"Repairing {self.target.device_path}: {plan.describe()}")
        if plan.is_noop:
            self._enter(RunState.COMPLETED)
            return

        # Resolved before any write so a missing installer stops the run cold
        source = self.tools.resolve_source() if plan.write_os else None

        if plan.write_partition_table:
            self._enter(RunState.PARTITIONING)
            with operation_context("partitioning", device=self.target.device_path):
                write_partition_table(self.target, self.tools.applier)
        elif plan.verification_required:
            self._enter(RunState.VERIFYING)
            verify_layout(self.target, plan, self.tools.blkid)

        self._enter(RunState.FORMATTING)
        with operation_context("formatting", device=self.target.device_path):
            run_format_stage(self.target, plan, self.tools.formatter)

        if plan.write_os:
            self._enter(RunState.IMAGING)
            engine = SlotImagingEngine(
                self.target,
                formatter=self.tools.formatter,
                freezer=self.tools.freezer,
                duplicator=self.tools.duplicator,
                tuner=self.tools.tuner,
                checker=self.tools.checker,
                uuid_reader=self.tools.blkid,
            )
            with operation_context("imaging", source=source.device_path):
                engine.run(source, self.cleanup)

            self._enter(RunState.FINALIZING)
            with operation_context("finalizing", device=self.target.device_path):
                finalize_boot(self.tools.chroot)

        self._enter(RunState.COMPLETED)

    def run(self) -> int:
        """Execute with cleanup guaranteed; park on failure.

        Returns:
            Process exit code (0 on success)
        """
        try:
            with self.cleanup:
                self.execute()
        except TerminationRequested as error:
            self.failure = error
            log.error(str(error))
            return error.exit_code
        except RepairError as error:
            self.failure = error
            self._enter(RunState.AWAITING_OPERATOR)
            message = str(error)
            if isinstance(error, ToolError):
                message = f"{message}\n{TOOL_FAILURE_MESSAGE}"
            try:
                self.halt.wait(message)
            except TerminationRequested as terminated:
                log.error(str(terminated))
                return terminated.exit_code
            return error.exit_code
        return 0
