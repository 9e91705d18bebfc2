"""Storage stages of a repair run.

Stages, in run order:
    - verification.verify_layout(): Verification Gate for partial repairs
    - partitioning.write_partition_table(): full-reimage table write
    - format.run_format_stage(): var and home filesystems
    - imaging.SlotImagingEngine: freeze, duplicate, re-UUID, check

Supporting modules:
    - cleanup.CleanupStack: exit/rollback actions (the thaw)
    - command_runners.CommandRunner: external tool execution
    - devices: lsblk/blkid/findmnt helpers
    - exceptions: RepairError hierarchy
"""
