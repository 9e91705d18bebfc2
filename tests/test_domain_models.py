"""Tests for domain models."""
import pytest

from deck_repair.domain import (
    PARTITION_TABLE,
    VERIFICATION_EXPECTATIONS,
    DiskTarget,
    ExecutionPlan,
    OsSlot,
    PartitionRole,
)


class TestDiskTarget:
    """Tests for DiskTarget partition naming."""

    @pytest.mark.parametrize(
        "name, device_path, partition",
        [
            ("nvme0n1", "/dev/nvme0n1", "/dev/nvme0n1p4"),
            ("/dev/nvme0n1", "/dev/nvme0n1", "/dev/nvme0n1p4"),
            ("mmcblk0", "/dev/mmcblk0", "/dev/mmcblk0p4"),
            ("sda", "/dev/sda", "/dev/sda4"),
            (" sdb\n", "/dev/sdb", "/dev/sdb4"),
        ],
    )
    def test_from_name(self, name, device_path, partition):
        target = DiskTarget.from_name(name)

        assert target.device_path == device_path
        assert target.partition_path(4) == partition

    def test_name_is_kernel_name(self, nvme_target):
        assert nvme_target.name == "nvme0n1"

    def test_role_path(self, nvme_target):
        assert nvme_target.role_path(PartitionRole.HOME) == "/dev/nvme0n1p8"
        assert nvme_target.role_path(PartitionRole.ESP) == "/dev/nvme0n1p1"


class TestPartitionTable:
    def test_eight_partitions_numbered_in_order(self):
        assert [spec.index for spec in PARTITION_TABLE] == list(range(1, 9))

    def test_names_and_sizes(self):
        assert [(spec.name, spec.size_mib) for spec in PARTITION_TABLE] == [
            ("esp", 64),
            ("efi-A", 32),
            ("efi-B", 32),
            ("rootfs-A", 5120),
            ("rootfs-B", 5120),
            ("var-A", 256),
            ("var-B", 256),
            ("home", None),
        ]

    def test_only_home_fills_disk(self):
        assert [spec.name for spec in PARTITION_TABLE if spec.fills_disk] == ["home"]

    def test_roles_match_table_numbering(self):
        by_name = {spec.name: spec.index for spec in PARTITION_TABLE}
        assert by_name["rootfs-A"] == PartitionRole.ROOT_A.index
        assert by_name["var-B"] == PartitionRole.VAR_B.index

    def test_verification_skips_rootfs(self):
        roles = [expectation.role for expectation in VERIFICATION_EXPECTATIONS]

        assert PartitionRole.ROOT_A not in roles
        assert PartitionRole.ROOT_B not in roles
        assert len(roles) == 6


class TestOsSlot:
    def test_slot_roles(self):
        assert OsSlot.A.root_role is PartitionRole.ROOT_A
        assert OsSlot.B.root_role is PartitionRole.ROOT_B
        assert OsSlot.A.efi_role is PartitionRole.EFI_A
        assert OsSlot.B.var_role is PartitionRole.VAR_B

    def test_partset(self):
        assert OsSlot.B.partset == "B"


class TestExecutionPlan:
    """Tests for ExecutionPlan derived properties."""

    def test_full_reimage_needs_no_verification(self):
        plan = ExecutionPlan.full_reimage()

        assert plan.verification_required is False
        assert plan.formats_var is True

    def test_partial_plans_verify(self):
        assert ExecutionPlan.reinstall_os().verification_required is True
        assert ExecutionPlan.wipe_home().verification_required is True

    def test_verification_can_be_disabled(self):
        assert ExecutionPlan.wipe_home(verify=False).verification_required is False

    def test_os_only_still_formats_var(self):
        plan = ExecutionPlan.reinstall_os()

        assert plan.formats_var is True
        assert plan.write_home is False

    def test_noop(self):
        plan = ExecutionPlan(False, False, False)

        assert plan.is_noop
        assert plan.verification_required is False
        assert plan.describe() == "nothing"

    def test_describe(self):
        assert ExecutionPlan.full_reimage().describe() == "partition table, OS slots, home/var"
