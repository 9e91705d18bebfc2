"""Domain models for dual-slot device repair."""

from __future__ import annotations

from .models import (
    PARTITION_TABLE,
    PARTITION_TABLE_VERSION,
    VERIFICATION_EXPECTATIONS,
    DiskTarget,
    ExecutionPlan,
    OsSlot,
    PartitionExpectation,
    PartitionRole,
    PartitionSpec,
    RunState,
    SourceRoot,
)


__all__ = [
    "PARTITION_TABLE",
    "PARTITION_TABLE_VERSION",
    "VERIFICATION_EXPECTATIONS",
    "DiskTarget",
    "ExecutionPlan",
    "OsSlot",
    "PartitionExpectation",
    "PartitionRole",
    "PartitionSpec",
    "RunState",
    "SourceRoot",
]
