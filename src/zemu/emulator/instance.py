"""
Emulator Instance
=================

One emulator process and its lifecycle:

    CREATED ──start()──► RUNNING ──stop()──► STOPPED
                            ▲                   │
                            └─────start()───────┘

An instance owns a name, a device model, two host ports (command
exchange and screen/event API) and, while running, a process handle
obtained from the ContainerRuntime. It is owned by exactly one holder at
a time: a pool slot or a Session.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import logging
import secrets
import struct
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from zemu.emulator.runtime import (
    CONTAINER_API_PORT,
    CONTAINER_DEBUG_PORT,
    CONTAINER_TRANSPORT_PORT,
    ContainerRuntime,
    LaunchSpec,
    ProcessHandle,
)
from zemu.errors import ConfigurationError, LaunchError
from zemu.models import DEFAULT_MODEL, DeviceModel, get_model

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_EMU_IMAGE = "zondax/builder-zemu:speculos-e262a0ca9d2b37810d0339b37c50ce0d7171c9a2"

# Every process the harness starts is named with this prefix, which is how
# stale processes from a crashed run are found again.
BASE_NAME = "zemu-"

EMULATOR_EXECUTABLE = "/home/zondax/speculos/speculos.py"
APP_DIR = "/project/app/bin"
LIB_DIR = "/project/app/lib"

DEV_CERT_PRIVATE_KEY = "ff701d781f43ce106f72dc26a46b6a83e053b5d07bb3d4ceab79c91ca822a66b"
BOLOS_SDK = "/project/deps/nanos-secure-sdk"

ELF_MAGIC = b"\x7fELF"


def generate_name(prefix: str = BASE_NAME) -> str:
    """Unique process name, e.g. ``zemu-3f9a01bc``."""
    return f"{prefix}{secrets.token_hex(4)}"


def read_elf_entry(path: Union[str, Path]) -> int:
    """
    Read the entry point address from an ELF header.

    Args:
        path: ELF file

    Returns:
        The ``e_entry`` field

    Raises:
        ConfigurationError: If the file is not an ELF image
    """
    with open(path, "rb") as f:
        header = f.read(32)

    if len(header) < 28 or header[:4] != ELF_MAGIC:
        raise ConfigurationError(f"{path} is not an ELF file", {"path": str(path)})

    elf_class, data_encoding = header[4], header[5]
    endian = "<" if data_encoding == 1 else ">"
    if elf_class == 2:
        (entry,) = struct.unpack_from(f"{endian}Q", header, 24)
    else:
        (entry,) = struct.unpack_from(f"{endian}I", header, 24)
    return entry


def check_elf(model: DeviceModel, path: Union[str, Path]) -> None:
    """
    Verify that an application ELF was built for ``model``.

    Raises:
        ConfigurationError: If the entry point belongs to another model family
    """
    entry = read_elf_entry(path)
    if entry != model.elf_entry:
        raise ConfigurationError(
            f"{path} does not look like a {model.name} application "
            f"(entry 0x{entry:08X}, expected 0x{model.elf_entry:08X})",
            {"path": str(path), "model": model.name, "entry": entry},
        )


# =============================================================================
# Launch Configuration
# =============================================================================

@dataclass(frozen=True)
class LaunchConfig:
    """
    What to run inside an emulator instance.

    Attributes:
        elf_path: Application binary
        lib_elfs: Auxiliary library binaries keyed by logical name
        model: Device model tag
        custom: Free-form extra emulator flags
        sdk: SDK version passed to the emulator (empty: emulator default)
        logging: Forward the emulator output to the log
    """
    elf_path: Path
    lib_elfs: Dict[str, Path] = field(default_factory=dict)
    model: str = DEFAULT_MODEL
    custom: str = ""
    sdk: str = ""
    logging: bool = False

    def validate(self, check_entry: bool = True) -> DeviceModel:
        """
        Check that every binary exists and the model is known.

        Args:
            check_entry: Also verify the application ELF entry point

        Returns:
            The resolved DeviceModel

        Raises:
            ConfigurationError: On a missing file, unknown model or wrong ELF
        """
        model = get_model(self.model)
        if not Path(self.elf_path).is_file():
            raise ConfigurationError(
                f"application ELF not found: {self.elf_path} (did you compile?)",
                {"path": str(self.elf_path)},
            )
        for lib_name, lib_path in self.lib_elfs.items():
            if not Path(lib_path).is_file():
                raise ConfigurationError(
                    f"library ELF {lib_name!r} not found: {lib_path} (did you compile?)",
                    {"library": lib_name, "path": str(lib_path)},
                )
        if check_entry:
            check_elf(model, self.elf_path)
        return model


class InstanceState(Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


# =============================================================================
# Emulator Instance
# =============================================================================

class EmulatorInstance:
    """
    A single emulator process bound to two host ports.

    Args:
        name: Unique process name (see generate_name)
        model: Device model this instance emulates
        transport_port: Host port of the command-exchange endpoint
        api_port: Host port of the screen/event API
        runtime: Process control capability
        image: Emulator image reference
    """

    def __init__(
        self,
        name: str,
        model: DeviceModel,
        transport_port: int,
        api_port: int,
        runtime: ContainerRuntime,
        image: str = DEFAULT_EMU_IMAGE,
    ):
        self.name = name
        self.model = model
        self.transport_port = transport_port
        self.api_port = api_port
        self.runtime = runtime
        self.image = image

        self.state = InstanceState.CREATED
        self.handle: Optional[ProcessHandle] = None
        self.launch_config: Optional[LaunchConfig] = None

    def __repr__(self) -> str:
        return (
            f"EmulatorInstance({self.name!r}, model={self.model.name!r}, "
            f"ports={self.transport_port}/{self.api_port}, state={self.state.value})"
        )

    @property
    def is_running(self) -> bool:
        return self.state is InstanceState.RUNNING

    def build_command(self, config: LaunchConfig) -> str:
        """Emulator command line for ``config``."""
        parts: List[str] = [
            EMULATOR_EXECUTABLE,
            "--log-level speculos:DEBUG",
            "--color JADE_GREEN",
            "--display headless",
        ]
        if config.custom:
            parts.append(config.custom)
        parts.append(f"-m {self.model.name}")
        if config.sdk:
            parts.append(f"-k {config.sdk}")
        parts.append(f"{APP_DIR}/{Path(config.elf_path).name}")
        for lib_name, lib_path in config.lib_elfs.items():
            parts.append(f"-l {lib_name}:{LIB_DIR}/{lib_name}/{Path(lib_path).name}")
        return " ".join(parts)

    def build_launch_spec(self, config: LaunchConfig) -> LaunchSpec:
        """Runtime launch description for ``config``."""
        binds = [(str(Path(config.elf_path).resolve().parent), APP_DIR)]
        for lib_name, lib_path in config.lib_elfs.items():
            binds.append((str(Path(lib_path).resolve().parent), f"{LIB_DIR}/{lib_name}"))

        ports = {
            CONTAINER_TRANSPORT_PORT: self.transport_port,
            CONTAINER_API_PORT: self.api_port,
        }
        if "--debug" in config.custom:
            ports[CONTAINER_DEBUG_PORT] = CONTAINER_DEBUG_PORT

        return LaunchSpec(
            name=self.name,
            image=self.image,
            command=self.build_command(config),
            binds=tuple(binds),
            ports=ports,
            env={
                "SCP_PRIVKEY": DEV_CERT_PRIVATE_KEY,
                "BOLOS_SDK": BOLOS_SDK,
                "BOLOS_ENV": "/opt/bolos",
            },
        )

    def start(self, config: LaunchConfig) -> None:
        """
        Launch the emulator with ``config``.

        Raises:
            ConfigurationError: If ``config`` targets another model
            LaunchError: If the instance is already running or the runtime fails
        """
        if self.is_running:
            raise LaunchError(
                f"{self.name} is already running", instance=self.name, model=self.model.name
            )
        if get_model(config.model) != self.model:
            raise ConfigurationError(
                f"{self.name} emulates {self.model.name}, cannot run a {config.model} app",
                {"instance": self.name, "model": config.model},
            )

        spec = self.build_launch_spec(config)
        logger.debug(f"[{self.name}] Command: {spec.command}")
        self.handle = self.runtime.start_process(spec)
        self.launch_config = config
        self.state = InstanceState.RUNNING
        logger.debug(f"[{self.name}] Started on ports {self.transport_port}/{self.api_port}")

        if config.logging:
            self.runtime.attach_logs(self.handle, self._forward_log)

    def _forward_log(self, line: str) -> None:
        logger.info(f"[{self.name}] {line}")

    def stop(self) -> None:
        """
        Stop with a zero grace period, then remove the process.

        Calling stop on an instance that is not running does nothing.

        Raises:
            LaunchError: If the runtime cannot stop or remove the process
        """
        handle = self.handle
        if handle is None:
            return

        self.handle = None
        self.state = InstanceState.STOPPED
        logger.debug(f"[{self.name}] Stopping")
        self.runtime.stop_process(handle, grace_seconds=0)
        self.runtime.remove_process(handle)
        logger.debug(f"[{self.name}] Removed")

    def restart(self, config: LaunchConfig) -> None:
        """Stop the current process and start a new one with ``config`` on the same ports."""
        self.stop()
        self.start(config)
