"""
Zemu Emulator Module
====================

Emulator processes and the endpoints they expose.

Module Structure
----------------
- **runtime**: ContainerRuntime capability, driven through the docker CLI
- **instance**: EmulatorInstance lifecycle and LaunchConfig
- **pool**: InstancePool of pre-started instances per device model
- **api**: screen/event HTTP client, Snapshot and Event values
- **buttons**: navigation actions and per-model touch tables

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

from zemu.emulator.api import Event, Snapshot, SpeculosApi, events_equal
from zemu.emulator.buttons import (
    BothClick,
    Button,
    ButtonKind,
    ClickNavigation,
    LeftClick,
    NavAction,
    RightClick,
    SwipeDirection,
    Touch,
    TouchNavigation,
    get_touch_button,
    schedule_to_nav,
)
from zemu.emulator.instance import (
    BASE_NAME,
    DEFAULT_EMU_IMAGE,
    EmulatorInstance,
    InstanceState,
    LaunchConfig,
    check_elf,
)
from zemu.emulator.pool import InstancePool, PoolSlot
from zemu.emulator.runtime import ContainerRuntime, DockerRuntime, LaunchSpec, ProcessHandle

__all__ = [
    "Event",
    "Snapshot",
    "SpeculosApi",
    "events_equal",
    "BothClick",
    "Button",
    "ButtonKind",
    "ClickNavigation",
    "LeftClick",
    "NavAction",
    "RightClick",
    "SwipeDirection",
    "Touch",
    "TouchNavigation",
    "get_touch_button",
    "schedule_to_nav",
    "BASE_NAME",
    "DEFAULT_EMU_IMAGE",
    "EmulatorInstance",
    "InstanceState",
    "LaunchConfig",
    "check_elf",
    "InstancePool",
    "PoolSlot",
    "ContainerRuntime",
    "DockerRuntime",
    "LaunchSpec",
    "ProcessHandle",
]
