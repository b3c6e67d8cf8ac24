"""
Device Model Definitions
========================

Defines the hardware wallet models the emulator can simulate and the
per-model facts the harness needs:

- nanos:  128x32 monochrome screen, two buttons
- nanox:  128x64 monochrome screen, two buttons
- nanosp: 128x64 monochrome screen, two buttons
- stax:   400x672 touch screen
- flex:   480x600 touch screen
- apex_p: 300x400 touch screen

Each model also owns a statically partitioned host port range used by
the instance pool, so pooled instances of different models can never
collide on a port.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

from dataclasses import dataclass
from typing import Dict, List

from zemu.errors import ConfigurationError


# =============================================================================
# Default UI Text
# =============================================================================

DEFAULT_NANO_START_TEXT = "Ready"
DEFAULT_TOUCH_START_TEXT = "This application enables"

DEFAULT_NANO_APPROVE_KEYWORD = "APPROVE"
DEFAULT_NANO_REJECT_KEYWORD = "REJECT"

DEFAULT_TOUCH_APPROVE_KEYWORD = "Hold to sign"
DEFAULT_TOUCH_REJECT_KEYWORD = "Cancel"

# ELF entry points; an app built for one family does not boot on the other
ENTRY_NANOS = 0xC0D00001
ENTRY_DEFAULT = 0xC0DE0001


@dataclass(frozen=True)
class DeviceWindow:
    """Screen rectangle of a device, in pixels."""
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class DeviceModel:
    """
    Static description of one emulated device model.

    Attributes:
        name: Model tag passed to the emulator (e.g. "nanos", "stax")
        window: Screen rectangle captured by the screenshot endpoint
        is_touch: True for touch screen devices, False for two-button devices
        elf_entry: Expected ELF entry point for applications of this model
        transport_port_base: First host port of the pool command-exchange range
        api_port_base: First host port of the pool screen/event API range
    """
    name: str
    window: DeviceWindow
    is_touch: bool
    elf_entry: int
    transport_port_base: int
    api_port_base: int

    @property
    def default_start_text(self) -> str:
        return DEFAULT_TOUCH_START_TEXT if self.is_touch else DEFAULT_NANO_START_TEXT

    @property
    def default_approve_keyword(self) -> str:
        return DEFAULT_TOUCH_APPROVE_KEYWORD if self.is_touch else DEFAULT_NANO_APPROVE_KEYWORD

    @property
    def default_reject_keyword(self) -> str:
        return DEFAULT_TOUCH_REJECT_KEYWORD if self.is_touch else DEFAULT_NANO_REJECT_KEYWORD

    def pool_ports(self, index: int) -> tuple:
        """
        Host ports reserved for the pool slot at ``index``.

        Returns:
            Tuple of (transport_port, api_port)
        """
        return (self.transport_port_base + index, self.api_port_base + index)


# =============================================================================
# Predefined Models
# =============================================================================

WINDOW_S = DeviceWindow(x=0, y=0, width=128, height=32)
WINDOW_X = DeviceWindow(x=0, y=0, width=128, height=64)
WINDOW_STAX = DeviceWindow(x=0, y=0, width=400, height=672)
WINDOW_FLEX = DeviceWindow(x=0, y=0, width=480, height=600)
WINDOW_APEX_P = DeviceWindow(x=0, y=0, width=300, height=400)

MODEL_NANOS = DeviceModel("nanos", WINDOW_S, False, ENTRY_NANOS, 10000, 15000)
MODEL_NANOX = DeviceModel("nanox", WINDOW_X, False, ENTRY_DEFAULT, 10100, 15100)
MODEL_NANOSP = DeviceModel("nanosp", WINDOW_X, False, ENTRY_DEFAULT, 10200, 15200)
MODEL_STAX = DeviceModel("stax", WINDOW_STAX, True, ENTRY_DEFAULT, 10300, 15300)
MODEL_FLEX = DeviceModel("flex", WINDOW_FLEX, True, ENTRY_DEFAULT, 10400, 15400)
MODEL_APEX_P = DeviceModel("apex_p", WINDOW_APEX_P, True, ENTRY_DEFAULT, 10500, 15500)

MODELS: Dict[str, DeviceModel] = {
    m.name: m
    for m in (MODEL_NANOS, MODEL_NANOX, MODEL_NANOSP, MODEL_STAX, MODEL_FLEX, MODEL_APEX_P)
}

DEFAULT_MODEL = "nanos"


def get_model(name: str) -> DeviceModel:
    """
    Look up a device model by tag (case-insensitive).

    Raises:
        ConfigurationError: If the model is not recognized
    """
    model = MODELS.get(name.lower()) if name else None
    if model is None:
        raise ConfigurationError(
            f"model {name!r} not recognized (expected one of: {', '.join(MODELS)})",
            {"model": name},
        )
    return model


def get_supported_models() -> List[str]:
    """Names of all supported models."""
    return list(MODELS)
