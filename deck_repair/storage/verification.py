"""Pre-flight verification of the on-disk layout.

Partial repairs (OS only, home only) trust the existing partition table. Before
any of them writes a byte, every partition of the fixed layout must carry the
expected filesystem type and partition label. A mismatch means the device has
diverged from the layout this tool knows, so the run stops: the exception is
not meant to be caught below the session driver.
"""

from __future__ import annotations

from typing import Protocol

from deck_repair.domain import VERIFICATION_EXPECTATIONS, DiskTarget, ExecutionPlan
from deck_repair.logging import LoggerFactory

from .exceptions import PartitionLabelMismatchError, PartitionTypeMismatchError


log = LoggerFactory.for_partition()


class PartitionTagReader(Protocol):
    def fstype(self, device: str) -> str: ...

    def partlabel(self, device: str) -> str: ...


def verify_partition(
    device: str,
    expected_type: str,
    expected_label: str,
    *,
    reader: PartitionTagReader,
    enabled: bool = True,
) -> None:
    """Check one partition's filesystem type and partition label.

    Raises:
        PartitionTypeMismatchError: type differs (exit code 1)
        PartitionLabelMismatchError: label differs (exit code 2)
    """
    if not enabled:
        return
    actual_type = reader.fstype(device)
    if actual_type != expected_type:
        raise PartitionTypeMismatchError(device, actual_type, expected_type)
    actual_label = reader.partlabel(device)
    if actual_label != expected_label:
        raise PartitionLabelMismatchError(device, actual_label, expected_label)
    log.debug(f"{device} verified as {expected_type} '{expected_label}'")


def verify_layout(target: DiskTarget, plan: ExecutionPlan, reader: PartitionTagReader) -> bool:
    """Run the gate over the whole layout when ``plan`` calls for it.

    Returns:
        True if the partitions were checked, False if the plan skips
        verification
    """
    if not plan.verification_required:
        log.debug("Partition verification not required for this plan")
        return False
    log.info(f"Verifying partition layout of {target.device_path}")
    for expectation in VERIFICATION_EXPECTATIONS:
        verify_partition(
            target.role_path(expectation.role),
            expectation.fstype,
            expectation.partlabel,
            reader=reader,
            enabled=plan.verify,
        )
    return True
