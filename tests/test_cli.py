"""
Tests for zemuctl
=================

Exercised through click's CliRunner; docker calls are patched.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from zemu import __version__
from zemu.cli.errors import ExitCode
from zemu.cli.zemuctl import main
from zemu.emulator.runtime import ProcessHandle
from zemu.errors import LaunchError

from conftest import png_bytes


@pytest.fixture
def runner():
    return CliRunner()


def write_set(directory, colors):
    directory.mkdir(parents=True)
    for i, color in enumerate(colors):
        (directory / f"{i:05d}.png").write_bytes(png_bytes(color))
    return directory


class TestGroup:
    """Tests for the command group."""

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(main, ["--help"])
        for command in ("stop-all", "pull", "compare", "status-message"):
            assert command in result.output


class TestStatusMessage:
    """Tests for status-message."""

    def test_critical(self, runner):
        result = runner.invoke(main, ["status-message", "6b00"])
        assert result.exit_code == 0
        assert "0x6B00: Invalid parameters (P1/P2) (critical)" in result.output

    def test_recoverable_with_prefix(self, runner):
        result = runner.invoke(main, ["status-message", "0x6985"])
        assert "(recoverable)" in result.output

    def test_not_hex(self, runner):
        result = runner.invoke(main, ["status-message", "zz"])
        assert result.exit_code == ExitCode.INVALID_ARGS

    def test_too_large(self, runner):
        result = runner.invoke(main, ["status-message", "1ffff"])
        assert result.exit_code == ExitCode.INVALID_ARGS


class TestCompare:
    """Tests for compare."""

    def test_match(self, runner, tmp_path):
        golden = write_set(tmp_path / "golden", [(0, 0, 0), (255, 255, 255)])
        candidate = write_set(tmp_path / "candidate", [(0, 0, 0), (255, 255, 255)])
        result = runner.invoke(main, ["compare", str(golden), str(candidate), "1"])
        assert result.exit_code == 0
        assert "2 image(s) match" in result.output

    def test_mismatch(self, runner, tmp_path):
        golden = write_set(tmp_path / "golden", [(0, 0, 0), (255, 255, 255)])
        candidate = write_set(tmp_path / "candidate", [(0, 0, 0), (255, 0, 0)])
        result = runner.invoke(main, ["compare", str(golden), str(candidate), "1"])
        assert result.exit_code == ExitCode.HARNESS_ERROR
        assert "Comparison error" in result.output
        assert "00001.png" in result.output


class TestDockerCommands:
    """Tests for stop-all and pull."""

    def test_stop_all(self, runner):
        handles = [ProcessHandle("a", "zemu-1"), ProcessHandle("b", "zemu-2")]
        with patch("zemu.cli.zemuctl.DockerRuntime") as runtime_cls:
            runtime_cls.return_value.list_by_name_prefix.return_value = handles
            result = runner.invoke(main, ["stop-all"])
        assert result.exit_code == 0
        assert "Removed 2 emulator process(es)" in result.output
        runtime_cls.return_value.list_by_name_prefix.assert_called_once_with("zemu-")
        assert runtime_cls.return_value.remove_process.call_count == 2

    def test_stop_all_docker_failure(self, runner):
        with patch("zemu.cli.zemuctl.DockerRuntime") as runtime_cls:
            runtime_cls.return_value.list_by_name_prefix.side_effect = LaunchError("docker missing")
            result = runner.invoke(main, ["-v", "stop-all"])
        assert result.exit_code == ExitCode.HARNESS_ERROR
        assert "docker missing" in result.output

    def test_pull_configured_image(self, runner, fast_harness):
        with patch("zemu.cli.zemuctl.DockerRuntime") as runtime_cls:
            result = runner.invoke(main, ["pull"])
        assert result.exit_code == 0
        runtime_cls.return_value.pull_image.assert_called_once_with(fast_harness.image)

    def test_pull_unexpected_error(self, runner):
        with patch("zemu.cli.zemuctl.DockerRuntime") as runtime_cls:
            runtime_cls.return_value.pull_image.side_effect = RuntimeError("boom")
            result = runner.invoke(main, ["pull", "--image", "emu:1"])
        assert result.exit_code == ExitCode.INTERNAL_ERROR
