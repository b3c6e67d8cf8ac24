"""
Tests for the Docker CLI Runtime
================================

subprocess is patched throughout; no docker daemon is needed.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import subprocess
from unittest.mock import patch

import pytest

from zemu.emulator.runtime import DockerRuntime, LaunchSpec, ProcessHandle
from zemu.errors import LaunchError


def completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def spec():
    return LaunchSpec(
        name="zemu-abc",
        image="emu:1",
        command="/speculos.py -m nanos /app/app.elf",
        binds=(("/host/bin", "/app"),),
        ports={9998: 10000, 5000: 15000},
        env={"BOLOS_ENV": "/opt/bolos"},
    )


class TestBuildRunArgs:
    """Tests for the docker run invocation."""

    def test_arguments(self, spec):
        args = DockerRuntime().build_run_args(spec)
        assert args[:6] == ["run", "--detach", "--tty", "--name", "zemu-abc", "--user"]
        assert "--env" in args and "BOLOS_ENV=/opt/bolos" in args
        assert "/host/bin:/app:ro" in args
        assert "10000:9998/tcp" in args
        assert "15000:5000/tcp" in args
        image_at = args.index("emu:1")
        assert args[image_at + 1:] == ["/speculos.py", "-m", "nanos", "/app/app.elf"]


class TestDockerRuntime:
    """Tests for docker command execution."""

    def test_start_returns_handle(self, spec):
        with patch("zemu.emulator.runtime.subprocess.run", return_value=completed("abc123\n")) as run:
            handle = DockerRuntime().start_process(spec)
        assert handle == ProcessHandle(id="abc123", name="zemu-abc")
        assert run.call_args[0][0][:2] == ["docker", "run"]

    def test_nonzero_exit_raises(self, spec):
        with patch("zemu.emulator.runtime.subprocess.run",
                   return_value=completed(returncode=125, stderr="port is already allocated")):
            with pytest.raises(LaunchError, match="already allocated") as exc_info:
                DockerRuntime().start_process(spec)
        assert exc_info.value.instance == "zemu-abc"

    def test_missing_executable_raises(self, spec):
        with patch("zemu.emulator.runtime.subprocess.run", side_effect=FileNotFoundError("docker")):
            with pytest.raises(LaunchError):
                DockerRuntime().start_process(spec)

    def test_timeout_raises(self):
        error = subprocess.TimeoutExpired(cmd="docker", timeout=1)
        with patch("zemu.emulator.runtime.subprocess.run", side_effect=error):
            with pytest.raises(LaunchError):
                DockerRuntime().stop_process(ProcessHandle("abc", "zemu-abc"))

    def test_stop_zero_grace(self):
        with patch("zemu.emulator.runtime.subprocess.run", return_value=completed()) as run:
            DockerRuntime().stop_process(ProcessHandle("abc", "zemu-abc"), grace_seconds=0)
        assert run.call_args[0][0] == ["docker", "stop", "--time", "0", "abc"]

    def test_force_remove(self):
        with patch("zemu.emulator.runtime.subprocess.run", return_value=completed()) as run:
            DockerRuntime().remove_process(ProcessHandle("abc", "zemu-abc"), force=True)
        assert run.call_args[0][0] == ["docker", "rm", "--force", "abc"]

    def test_list_filters_by_prefix(self):
        output = "a1 zemu-1111\nb2 other-zemu-2222\nc3 zemu-pool-nanos-0\n\n"
        with patch("zemu.emulator.runtime.subprocess.run", return_value=completed(output)):
            handles = DockerRuntime().list_by_name_prefix("zemu-")
        assert [h.name for h in handles] == ["zemu-1111", "zemu-pool-nanos-0"]

    def test_is_available_without_executable(self):
        with patch("zemu.emulator.runtime.shutil.which", return_value=None):
            assert not DockerRuntime().is_available()

    def test_is_available_daemon_down(self):
        with patch("zemu.emulator.runtime.shutil.which", return_value="/usr/bin/docker"), \
                patch("zemu.emulator.runtime.subprocess.run", return_value=completed(returncode=1)):
            assert not DockerRuntime().is_available()

    def test_pull(self):
        with patch("zemu.emulator.runtime.subprocess.run", return_value=completed()) as run:
            DockerRuntime().pull_image("emu:2")
        assert run.call_args[0][0] == ["docker", "pull", "emu:2"]
