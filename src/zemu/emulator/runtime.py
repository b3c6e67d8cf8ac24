"""
Container Runtime
=================

Process control for emulator instances. Every emulator runs inside a
container started from the emulator image; this module hides how that
happens behind the ContainerRuntime capability:

- start_process(spec) -> ProcessHandle
- stop_process(handle, grace_seconds)
- remove_process(handle, force=False)
- list_by_name_prefix(prefix) -> [ProcessHandle]
- attach_logs(handle, sink) -> background thread forwarding output lines
- pull_image(image)

DockerRuntime implements it on top of the ``docker`` command line client,
so the harness works wherever ``docker`` is on PATH without talking to the
daemon socket directly.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import logging
import shlex
import shutil
import subprocess
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from zemu.errors import LaunchError

# Configure module logger
logger = logging.getLogger(__name__)


# Container side ports published by the emulator image
CONTAINER_TRANSPORT_PORT = 9998
CONTAINER_API_PORT = 5000
CONTAINER_DEBUG_PORT = 1234

DEFAULT_COMMAND_TIMEOUT = 60.0
PULL_TIMEOUT = 1800.0


# =============================================================================
# Launch Description
# =============================================================================

@dataclass(frozen=True)
class LaunchSpec:
    """
    Everything the runtime needs to start one emulator process.

    Attributes:
        name: Process (container) name, unique on the host
        image: Emulator image reference
        command: Emulator command line (split with shell rules)
        binds: (host_path, container_path) read-only bind mounts
        ports: container_port -> host_port publications
        env: Environment variables
        user: User the emulator runs as
    """
    name: str
    image: str
    command: str
    binds: Tuple[Tuple[str, str], ...] = ()
    ports: Dict[int, int] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    user: str = "1000"


@dataclass(frozen=True)
class ProcessHandle:
    """Reference to a started emulator process."""
    id: str
    name: str


LogSink = Callable[[str], None]


# =============================================================================
# Runtime Capability
# =============================================================================

class ContainerRuntime(ABC):
    """Process control capability consumed by EmulatorInstance and InstancePool."""

    @abstractmethod
    def start_process(self, spec: LaunchSpec) -> ProcessHandle:
        """Create and start a process. Raises LaunchError on failure."""

    @abstractmethod
    def stop_process(self, handle: ProcessHandle, grace_seconds: int = 0) -> None:
        """Stop a running process, killing it after ``grace_seconds``."""

    @abstractmethod
    def remove_process(self, handle: ProcessHandle, force: bool = False) -> None:
        """Remove a stopped process (``force`` also kills a running one)."""

    @abstractmethod
    def list_by_name_prefix(self, prefix: str) -> List[ProcessHandle]:
        """All processes, running or not, whose name starts with ``prefix``."""

    @abstractmethod
    def attach_logs(self, handle: ProcessHandle, sink: LogSink) -> threading.Thread:
        """Forward process output to ``sink`` line by line from a daemon thread."""

    @abstractmethod
    def pull_image(self, image: str) -> None:
        """Fetch ``image`` so later launches do not block on a download."""

    def is_available(self) -> bool:
        """True when the runtime can start processes on this host."""
        return True


# =============================================================================
# Docker CLI Runtime
# =============================================================================

class DockerRuntime(ContainerRuntime):
    """
    ContainerRuntime driven through the ``docker`` executable.

    Args:
        executable: Docker client to invoke (default: "docker" from PATH)
        timeout: Timeout for each docker command, in seconds
    """

    def __init__(self, executable: str = "docker", timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self.executable = executable
        self.timeout = timeout

    def _run(
        self,
        args: Sequence[str],
        *,
        name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        cmd = [self.executable, *args]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                text=True,
                capture_output=True,
                timeout=timeout or self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise LaunchError(f"docker {args[0]} failed: {e}", instance=name, cause=e) from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise LaunchError(
                f"docker {args[0]} exited with {result.returncode}: {stderr}",
                instance=name,
            )
        return result

    def build_run_args(self, spec: LaunchSpec) -> List[str]:
        """Arguments of the ``docker run`` invocation for ``spec``."""
        args = ["run", "--detach", "--tty", "--name", spec.name, "--user", spec.user]
        for key, value in spec.env.items():
            args += ["--env", f"{key}={value}"]
        for host_path, container_path in spec.binds:
            args += ["--volume", f"{host_path}:{container_path}:ro"]
        for container_port, host_port in spec.ports.items():
            args += ["--publish", f"{host_port}:{container_port}/tcp"]
        args.append(spec.image)
        args += shlex.split(spec.command)
        return args

    def start_process(self, spec: LaunchSpec) -> ProcessHandle:
        result = self._run(self.build_run_args(spec), name=spec.name)
        container_id = result.stdout.strip()
        logger.debug(f"Started {spec.name} ({container_id[:12]})")
        return ProcessHandle(id=container_id, name=spec.name)

    def stop_process(self, handle: ProcessHandle, grace_seconds: int = 0) -> None:
        self._run(["stop", "--time", str(grace_seconds), handle.id], name=handle.name)

    def remove_process(self, handle: ProcessHandle, force: bool = False) -> None:
        args = ["rm"]
        if force:
            args.append("--force")
        self._run([*args, handle.id], name=handle.name)

    def list_by_name_prefix(self, prefix: str) -> List[ProcessHandle]:
        result = self._run(
            ["ps", "--all", "--filter", f"name={prefix}", "--format", "{{.ID}} {{.Names}}"]
        )
        handles = []
        for line in result.stdout.splitlines():
            parts = line.split(None, 1)
            if len(parts) != 2:
                continue
            # the docker name filter matches substrings anywhere in the name
            if parts[1].startswith(prefix):
                handles.append(ProcessHandle(id=parts[0], name=parts[1]))
        return handles

    def attach_logs(self, handle: ProcessHandle, sink: LogSink) -> threading.Thread:
        try:
            proc = subprocess.Popen(
                [self.executable, "logs", "--follow", handle.id],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except OSError as e:
            raise LaunchError(f"cannot attach to logs: {e}", instance=handle.name, cause=e) from e

        def pump() -> None:
            # `docker logs --follow` exits once the container is removed
            for line in proc.stdout:
                sink(line.rstrip("\n"))
            proc.wait()

        thread = threading.Thread(target=pump, name=f"logs-{handle.name}", daemon=True)
        thread.start()
        return thread

    def pull_image(self, image: str) -> None:
        logger.info(f"Pulling {image}")
        self._run(["pull", image], timeout=PULL_TIMEOUT)

    def is_available(self) -> bool:
        if shutil.which(self.executable) is None:
            return False
        try:
            self._run(["info", "--format", "{{.ServerVersion}}"], timeout=10)
        except LaunchError:
            return False
        return True
