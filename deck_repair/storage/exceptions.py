"""Custom exceptions for repair operations.

Every fatal condition of a repair run is one of these. The session driver
catches RepairError at the top level, reports it, and parks the process in
the awaiting-operator state with the exception's exit code.

Exception Hierarchy:
    RepairError (base)
        ├── PreconditionError
        │   ├── DiskNotFoundError
        │   └── SourceRootMissingError
        ├── VerificationError
        │   ├── PartitionTypeMismatchError   (exit code 1)
        │   └── PartitionLabelMismatchError  (exit code 2)
        ├── ToolError
        │   ├── CommandFailedError
        │   └── DuplicateFilesystemIdError
        └── TerminationRequested

    OperationCancelled (outside the hierarchy: a declined prompt is not an
    error and never halts)

Usage:
    from deck_repair.storage.exceptions import PartitionLabelMismatchError

    if actual_label != expected_label:
        raise PartitionLabelMismatchError(device, actual_label, expected_label)
"""

from __future__ import annotations

from typing import Sequence

EXIT_CANCELLED = 0
EXIT_DECLINED = 1
EXIT_TYPE_MISMATCH = 1
EXIT_LABEL_MISMATCH = 2
EXIT_PRECONDITION = 3
EXIT_TOOL_FAILURE = 4
EXIT_TERMINATED = 143


class RepairError(Exception):
    """Base exception for all repair operations."""

    exit_code = EXIT_TOOL_FAILURE


class PreconditionError(RepairError):
    """Something the run depends on is missing before any write happens."""

    exit_code = EXIT_PRECONDITION


class DiskNotFoundError(PreconditionError):
    """Selected disk does not exist."""

    def __init__(self, device_path: str):
        self.device_path = device_path
        super().__init__(f"{device_path} does not exist")


class SourceRootMissingError(PreconditionError):
    """The installer root device could not be resolved."""

    def __init__(self, device_path: str | None = None):
        self.device_path = device_path
        detail = f" ({device_path})" if device_path else ""
        super().__init__(
            f"Could not find USB installer root{detail} -- usb hub issue?"
        )


class VerificationError(RepairError):
    """On-disk layout does not match the expected partition table."""

    def __init__(self, device: str, kind: str, actual: str, expected: str):
        self.device = device
        self.actual = actual
        self.expected = expected
        super().__init__(
            f"Device {device} {kind} {actual or '(none)'} but expected {expected}"
            " - cannot proceed. You may try full recovery."
        )


class PartitionTypeMismatchError(VerificationError):
    """Filesystem type on a partition is not the expected one."""

    exit_code = EXIT_TYPE_MISMATCH

    def __init__(self, device: str, actual: str, expected: str):
        super().__init__(device, "is type", actual, expected)


class PartitionLabelMismatchError(VerificationError):
    """Partition label is not the expected one."""

    exit_code = EXIT_LABEL_MISMATCH

    def __init__(self, device: str, actual: str, expected: str):
        super().__init__(device, "has label", actual, expected)


class ToolError(RepairError):
    """An external utility failed or produced an unusable result."""

    exit_code = EXIT_TOOL_FAILURE


class CommandFailedError(ToolError):
    """External command exited non-zero."""

    def __init__(self, command: Sequence[str], returncode: int, output: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        message = f"Command failed ({' '.join(self.command)}) with code {returncode}"
        if output:
            message += f": {output}"
        super().__init__(message)


class DuplicateFilesystemIdError(ToolError):
    """A freshly imaged slot shares its filesystem UUID with another copy."""

    def __init__(self, device: str, fs_uuid: str, other: str):
        self.device = device
        self.fs_uuid = fs_uuid
        self.other = other
        super().__init__(
            f"Filesystem UUID {fs_uuid} of {device} collides with {other}"
        )


class OperationCancelled(Exception):
    """The operator declined a prompt. Not a failure: nothing was written."""

    def __init__(self, message: str, exit_code: int = EXIT_CANCELLED):
        self.exit_code = exit_code
        super().__init__(message)


class TerminationRequested(RepairError):
    """The process received a termination signal mid-run."""

    exit_code = EXIT_TERMINATED

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Terminated by signal {signum}")
