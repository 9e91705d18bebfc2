"""Tests for operator prompts."""
import pytest

from deck_repair.storage.exceptions import DiskNotFoundError, OperationCancelled
from deck_repair.ui.prompts import Prompter


def make_prompter(runner, replies=(), noprompt=False):
    replies = list(replies)
    output = []
    prompter = Prompter(
        noprompt=noprompt,
        runner=runner,
        input_func=lambda _prompt: replies.pop(0),
        output=output.append,
    )
    return prompter, output


@pytest.fixture
def disk_present(mocker):
    return mocker.patch("deck_repair.ui.prompts.disk_exists", return_value=True)


@pytest.fixture
def no_zenity(mocker):
    return mocker.patch("deck_repair.ui.prompts.shutil.which", return_value=None)


class TestSelectDisk:
    """Tests for Prompter.select_disk."""

    def test_prompts_for_disk_and_confirms(self, recording_runner, disk_present):
        prompter, output = make_prompter(recording_runner, ["nvme0n1", "y"])

        target = prompter.select_disk()

        assert target.device_path == "/dev/nvme0n1"
        assert target.partition_suffix == "p"
        assert output[0] == "Available disks for installation:"
        assert "nvme0n1 contains following data:" in output

    def test_declined_confirmation_cancels_with_zero(self, recording_runner, disk_present):
        prompter, _ = make_prompter(recording_runner, ["sda", "n"])

        with pytest.raises(OperationCancelled) as exc_info:
            prompter.select_disk()

        assert exc_info.value.exit_code == 0

    def test_empty_name(self, recording_runner, disk_present):
        prompter, _ = make_prompter(recording_runner, [""])

        with pytest.raises(DiskNotFoundError):
            prompter.select_disk()

    def test_missing_disk(self, recording_runner, mocker):
        mocker.patch("deck_repair.ui.prompts.disk_exists", return_value=False)
        prompter, _ = make_prompter(recording_runner)

        with pytest.raises(DiskNotFoundError, match="/dev/sdz"):
            prompter.select_disk("sdz")

    def test_preset_with_noprompt_skips_questions(self, recording_runner, disk_present):
        prompter, output = make_prompter(recording_runner, noprompt=True)

        target = prompter.select_disk("/dev/nvme0n1")

        assert target.device_path == "/dev/nvme0n1"
        assert output == []
        assert recording_runner.commands == []

    def test_preset_still_confirms_when_prompting(self, recording_runner, disk_present):
        prompter, _ = make_prompter(recording_runner, ["yes"])

        assert prompter.select_disk("sda").device_path == "/dev/sda"


class TestConfirm:
    """Tests for Prompter.confirm and prompt_step."""

    def test_noprompt_proceeds(self, recording_runner):
        prompter, _ = make_prompter(recording_runner, noprompt=True)

        assert prompter.confirm("Title", "message") is True
        assert recording_runner.commands == []

    def test_zenity_proceed(self, recording_runner, mocker):
        mocker.patch("deck_repair.ui.prompts.shutil.which", return_value="/usr/bin/zenity")
        prompter, _ = make_prompter(recording_runner)

        assert prompter.confirm("Reimage", "Sure?") is True

        command = recording_runner.commands[0]
        assert command[:3] == ["zenity", "--title", "Reimage"]
        assert command[-2:] == ["--text", "Sure?"]

    def test_zenity_cancel(self, recording_runner, mocker):
        mocker.patch("deck_repair.ui.prompts.shutil.which", return_value="/usr/bin/zenity")
        recording_runner.failures["zenity"] = 1
        prompter, _ = make_prompter(recording_runner)

        assert prompter.confirm("Reimage", "Sure?") is False

    def test_console_fallback(self, recording_runner, no_zenity):
        prompter, output = make_prompter(recording_runner, ["y"])

        assert prompter.confirm("Reimage", "Sure?") is True
        assert output == ["== Reimage ==", "Sure?"]

    def test_prompt_step_cancel_exits_one(self, recording_runner, no_zenity):
        prompter, _ = make_prompter(recording_runner, ["n"])

        with pytest.raises(OperationCancelled) as exc_info:
            prompter.prompt_step("Reimage", "Sure?")

        assert exc_info.value.exit_code == 1


class TestPromptReboot:
    def test_reboot(self, recording_runner):
        prompter, _ = make_prompter(recording_runner, noprompt=True)

        prompter.prompt_reboot("Reimaging complete.")

        assert recording_runner.commands == [["systemctl", "reboot"]]

    def test_poweroff(self, recording_runner):
        prompter, _ = make_prompter(recording_runner, noprompt=True)

        prompter.prompt_reboot("Reimaging complete.", poweroff=True)

        assert recording_runner.commands == [["systemctl", "poweroff"]]

    def test_cancel_does_not_reboot(self, recording_runner, no_zenity):
        prompter, _ = make_prompter(recording_runner, ["n"])

        with pytest.raises(OperationCancelled):
            prompter.prompt_reboot("Reimaging complete.")

        assert recording_runner.commands == []
