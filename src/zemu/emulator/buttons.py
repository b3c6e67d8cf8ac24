"""
Navigation Actions and Touch Tables
===================================

A navigation action is one of four variants:

    LeftClick | RightClick | BothClick | Touch(button)

Button devices (nanos, nanox, nanosp) use the three click variants.
Touch devices (stax, flex, apex_p) use Touch, whose button is looked up
from a static per-model table of screen coordinates by ButtonKind.

Schedules may also be written as integers, which is handy for button
devices:

    n > 0   n right clicks
    n < 0   |n| left clicks
    n == 0  one both-click

    schedule_to_nav([3, 0, -1])
    # [RightClick, RightClick, RightClick, BothClick, LeftClick]

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Union

from zemu.errors import ConfigurationError
from zemu.models import DeviceModel


class SwipeDirection(Enum):
    NO_SWIPE = ""
    SWIPE_LEFT = "left"
    SWIPE_RIGHT = "right"
    SWIPE_UP = "up"
    SWIPE_DOWN = "down"


class ButtonKind(Enum):
    """Logical touch targets, resolved to coordinates per model."""
    INFO = "info"
    QUIT_APP = "quit_app"
    SWIPE_CONTINUE = "swipe_continue"
    PREV_PAGE = "prev_page"
    SETTINGS_NAV_RIGHT = "settings_nav_right"
    SETTINGS_NAV_LEFT = "settings_nav_left"
    SETTINGS_QUIT = "settings_quit"
    TOGGLE_SETTING_1 = "toggle_setting_1"
    TOGGLE_SETTING_2 = "toggle_setting_2"
    TOGGLE_SETTING_3 = "toggle_setting_3"
    NAV_RIGHT = "nav_right"
    NAV_LEFT = "nav_left"
    APPROVE_HOLD = "approve_hold"
    APPROVE_TAP = "approve_tap"
    REJECT = "reject"
    CONFIRM_YES = "confirm_yes"
    CONFIRM_NO = "confirm_no"
    SHOW_QR = "show_qr"
    CLOSE_QR = "close_qr"
    # Tap at the center of the matched text instead of a fixed position
    DYNAMIC_TAP = "dynamic_tap"


@dataclass(frozen=True)
class Button:
    """A touch target: position, press duration in seconds and optional swipe."""
    x: int
    y: int
    delay: float = 0.25
    direction: SwipeDirection = SwipeDirection.NO_SWIPE

    @property
    def is_swipe(self) -> bool:
        return self.direction is not SwipeDirection.NO_SWIPE


# =============================================================================
# Action Variants
# =============================================================================

@dataclass(frozen=True)
class LeftClick:
    def __str__(self) -> str:
        return "LeftClick"


@dataclass(frozen=True)
class RightClick:
    def __str__(self) -> str:
        return "RightClick"


@dataclass(frozen=True)
class BothClick:
    def __str__(self) -> str:
        return "BothClick"


@dataclass(frozen=True)
class Touch:
    button: Button

    def __str__(self) -> str:
        return f"Touch({self.button.x},{self.button.y})"


NavAction = Union[LeftClick, RightClick, BothClick, Touch]
ScheduleItem = Union[NavAction, int]

CLICK_ENDPOINTS = {LeftClick: "left", RightClick: "right", BothClick: "both"}


def is_click(action: NavAction) -> bool:
    return type(action) in CLICK_ENDPOINTS


def schedule_to_nav(schedule: Iterable[ScheduleItem]) -> List[NavAction]:
    """
    Expand integers in a schedule into click actions.

    Raises:
        TypeError: If an item is neither an int nor a NavAction
    """
    nav: List[NavAction] = []
    for item in schedule:
        if isinstance(item, bool) or not isinstance(item, (int, LeftClick, RightClick, BothClick, Touch)):
            raise TypeError(f"invalid schedule item: {item!r}")
        if not isinstance(item, int):
            nav.append(item)
        elif item == 0:
            nav.append(BothClick())
        elif item > 0:
            nav.extend(RightClick() for _ in range(item))
        else:
            nav.extend(LeftClick() for _ in range(-item))
    return nav


# =============================================================================
# Touch Tables
# =============================================================================

_STAX_NAV_RIGHT = Button(360, 625)
_STAX_APPROVE_TAP = Button(205, 520)

STAX_BUTTONS: Dict[ButtonKind, Button] = {
    ButtonKind.INFO: Button(335, 65),
    ButtonKind.QUIT_APP: Button(200, 625),
    ButtonKind.SWIPE_CONTINUE: Button(200, 350, 0.1, SwipeDirection.SWIPE_LEFT),
    ButtonKind.PREV_PAGE: Button(45, 45),
    ButtonKind.SETTINGS_NAV_RIGHT: _STAX_NAV_RIGHT,
    ButtonKind.SETTINGS_NAV_LEFT: Button(275, 625),
    ButtonKind.SETTINGS_QUIT: Button(40, 45),
    ButtonKind.TOGGLE_SETTING_1: Button(350, 88),
    ButtonKind.TOGGLE_SETTING_2: Button(350, 228),
    ButtonKind.TOGGLE_SETTING_3: Button(350, 368),
    ButtonKind.NAV_RIGHT: _STAX_NAV_RIGHT,
    ButtonKind.NAV_LEFT: Button(195, 625),
    ButtonKind.APPROVE_HOLD: Button(335, 520, 5),
    ButtonKind.APPROVE_TAP: _STAX_APPROVE_TAP,
    ButtonKind.REJECT: Button(75, 625),
    ButtonKind.CONFIRM_YES: Button(200, 550),
    ButtonKind.CONFIRM_NO: Button(200, 630),
    ButtonKind.SHOW_QR: Button(200, 300),
    ButtonKind.CLOSE_QR: Button(200, 650),
    ButtonKind.DYNAMIC_TAP: _STAX_APPROVE_TAP,
}

_FLEX_NAV_RIGHT = Button(435, 555)
_FLEX_APPROVE_TAP = Button(240, 435)

FLEX_BUTTONS: Dict[ButtonKind, Button] = {
    ButtonKind.INFO: Button(405, 75),
    ButtonKind.QUIT_APP: Button(240, 550),
    ButtonKind.SWIPE_CONTINUE: Button(250, 325, 0.1, SwipeDirection.SWIPE_LEFT),
    ButtonKind.PREV_PAGE: Button(45, 45),
    ButtonKind.SETTINGS_NAV_RIGHT: _FLEX_NAV_RIGHT,
    ButtonKind.SETTINGS_NAV_LEFT: Button(315, 555),
    ButtonKind.SETTINGS_QUIT: Button(40, 45),
    ButtonKind.TOGGLE_SETTING_1: Button(415, 96),
    ButtonKind.TOGGLE_SETTING_2: Button(350, 236),
    ButtonKind.NAV_RIGHT: _FLEX_NAV_RIGHT,
    ButtonKind.NAV_LEFT: Button(235, 555),
    ButtonKind.APPROVE_HOLD: Button(400, 435, 5),
    ButtonKind.APPROVE_TAP: _FLEX_APPROVE_TAP,
    ButtonKind.REJECT: Button(95, 555),
    ButtonKind.CONFIRM_YES: Button(235, 460),
    ButtonKind.CONFIRM_NO: Button(235, 555),
    ButtonKind.SHOW_QR: Button(250, 245),
    ButtonKind.CLOSE_QR: Button(200, 650),
    ButtonKind.DYNAMIC_TAP: _FLEX_APPROVE_TAP,
}

_APEX_NAV_RIGHT = Button(270, 360)
_APEX_APPROVE_TAP = Button(180, 290)

APEX_P_BUTTONS: Dict[ButtonKind, Button] = {
    ButtonKind.INFO: Button(256, 43),
    ButtonKind.QUIT_APP: Button(200, 625),
    ButtonKind.SWIPE_CONTINUE: Button(270, 200, 0.1, SwipeDirection.SWIPE_LEFT),
    ButtonKind.PREV_PAGE: Button(45, 45),
    ButtonKind.SETTINGS_NAV_RIGHT: _APEX_NAV_RIGHT,
    ButtonKind.SETTINGS_NAV_LEFT: Button(275, 625),
    ButtonKind.SETTINGS_QUIT: Button(40, 45),
    ButtonKind.TOGGLE_SETTING_1: Button(240, 105),
    ButtonKind.TOGGLE_SETTING_2: Button(240, 190),
    ButtonKind.TOGGLE_SETTING_3: Button(350, 368),
    ButtonKind.NAV_RIGHT: _APEX_NAV_RIGHT,
    ButtonKind.NAV_LEFT: Button(195, 625),
    ButtonKind.APPROVE_HOLD: Button(240, 290, 5),
    ButtonKind.APPROVE_TAP: _APEX_APPROVE_TAP,
    ButtonKind.REJECT: Button(95, 380),
    ButtonKind.CONFIRM_YES: Button(150, 330),
    ButtonKind.CONFIRM_NO: Button(200, 630),
    ButtonKind.SHOW_QR: Button(200, 300),
    ButtonKind.CLOSE_QR: Button(200, 650),
    ButtonKind.DYNAMIC_TAP: _APEX_APPROVE_TAP,
}

TOUCH_TABLES: Dict[str, Dict[ButtonKind, Button]] = {
    "stax": STAX_BUTTONS,
    "flex": FLEX_BUTTONS,
    "apex_p": APEX_P_BUTTONS,
}


def get_touch_button(model: DeviceModel, kind: ButtonKind) -> Button:
    """
    Coordinates of ``kind`` on ``model``.

    Raises:
        ConfigurationError: If the model has no touch screen or lacks the button
    """
    table = TOUCH_TABLES.get(model.name)
    if table is None:
        raise ConfigurationError(
            f"{model.name} has no touch screen", {"model": model.name, "button": kind.value}
        )
    button = table.get(kind)
    if button is None:
        raise ConfigurationError(
            f"{kind.value} is not defined for {model.name}",
            {"model": model.name, "button": kind.value},
        )
    return button


def touch(model: DeviceModel, kind: ButtonKind) -> Touch:
    return Touch(get_touch_button(model, kind))


# =============================================================================
# Schedules
# =============================================================================

class ClickNavigation:
    """Schedule built from integer click counts (button devices)."""

    def __init__(self, clicks: Iterable[int]):
        self.schedule: List[NavAction] = schedule_to_nav(clicks)


class TouchNavigation:
    """Schedule built from ButtonKinds resolved against a touch model."""

    def __init__(self, model: DeviceModel, kinds: Iterable[ButtonKind]):
        self.schedule: List[NavAction] = [touch(model, kind) for kind in kinds]
