"""
Zemu Testing Framework - Canned Sequences
=========================================

Walks every app built on the standard settings layout shares: the main
menu tour, toggling expert mode, and enabling an app-specific "special"
mode (usually blind signing) from the settings screen.

Each function takes a NavigationEngine and returns the last image index,
so the result can go straight into ``compare_snapshots``.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

from typing import List, Optional

from zemu.emulator.buttons import ButtonKind, ScheduleItem, TouchNavigation, schedule_to_nav
from zemu.models import DeviceModel
from zemu.testkit.navigation import NavigationEngine


# Button devices: right, toggle, toggle back, four screens on, back to start
MAIN_MENU_CLICKS = [1, 0, 0, 4, -5]
EXPERT_MODE_CLICKS = [1, 0, -1]

MAIN_MENU_TOUCHES = [
    ButtonKind.INFO,
    ButtonKind.SETTINGS_NAV_RIGHT,
    ButtonKind.TOGGLE_SETTING_1,
    ButtonKind.TOGGLE_SETTING_1,
    ButtonKind.SETTINGS_QUIT,
]
EXPERT_MODE_TOUCHES = [
    ButtonKind.INFO,
    ButtonKind.SETTINGS_NAV_RIGHT,
    ButtonKind.TOGGLE_SETTING_1,
    ButtonKind.SETTINGS_QUIT,
]

SECRET_CLICK_COUNT = 10


def main_menu_schedule(model: DeviceModel) -> List[ScheduleItem]:
    if model.is_touch:
        return TouchNavigation(model, MAIN_MENU_TOUCHES).schedule
    return schedule_to_nav(MAIN_MENU_CLICKS)


def expert_mode_schedule(model: DeviceModel) -> List[ScheduleItem]:
    if model.is_touch:
        return TouchNavigation(model, EXPERT_MODE_TOUCHES).schedule
    return schedule_to_nav(EXPERT_MODE_CLICKS)


def special_mode_schedule(model: DeviceModel, toggle: ButtonKind = ButtonKind.TOGGLE_SETTING_2) -> List[ScheduleItem]:
    """
    Touch walk enabling a special mode: into settings, enable expert mode,
    page back and forth, flip ``toggle`` and accept the warning.

    Raises:
        ConfigurationError: If the model has no touch screen
    """
    return TouchNavigation(
        model,
        [
            ButtonKind.INFO,
            ButtonKind.SETTINGS_NAV_RIGHT,
            ButtonKind.TOGGLE_SETTING_1,
            ButtonKind.SETTINGS_NAV_LEFT,
            ButtonKind.SETTINGS_NAV_RIGHT,
            toggle,
            ButtonKind.SWIPE_CONTINUE,
            ButtonKind.CONFIRM_YES,
        ],
    ).schedule


def main_menu_navigation(
    nav: NavigationEngine,
    testcase: str,
    wait_for_screen_update: bool = True,
    start_index: int = 0,
) -> int:
    """Tour the main menu and settings, returning to the start screen."""
    return nav.navigate(
        testcase, main_menu_schedule(nav.model), wait_for_screen_update, True, start_index
    )


def toggle_expert_mode(
    nav: NavigationEngine,
    testcase: str = "",
    take_snapshots: bool = False,
    start_index: int = 0,
) -> int:
    """Flip the expert mode setting and return to the start screen."""
    return nav.navigate(
        testcase, expert_mode_schedule(nav.model), True, take_snapshots, start_index
    )


def enable_special_mode(
    nav: NavigationEngine,
    mode_text: str,
    *,
    testcase: str = "",
    take_snapshots: bool = False,
    start_index: int = 0,
    toggle: ButtonKind = ButtonKind.TOGGLE_SETTING_2,
    secret: bool = False,
    timeout: Optional[float] = None,
) -> int:
    """
    Enable an app-specific mode from the settings screen.

    On button devices the walk turns expert mode on, finds ``mode_text``
    and enables it. A ``secret`` mode is unlocked by clicking both buttons
    repeatedly on its screen instead. The walk then advances to the approve
    keyword to accept the mode's warning.

    On touch devices the walk is a fixed sequence flipping ``toggle``;
    ``mode_text`` and ``secret`` do not apply there.

    Args:
        nav: Navigation engine of the session
        mode_text: Text of the mode's settings screen (button devices)
        testcase: Directory pair for the captured screens
        take_snapshots: Save the captured screens
        start_index: Index of the screen before the first action
        toggle: Settings toggle of the mode (touch devices)
        secret: The mode is unlocked by repeated both-clicks (button devices)
        timeout: Per-step timeout of the text searches

    Returns:
        Index of the last captured screen

    Raises:
        WaitTimeoutError: If a text was never reached
    """
    if nav.model.is_touch:
        return nav.navigate(
            testcase, special_mode_schedule(nav.model, toggle), True, take_snapshots, start_index
        )

    index = toggle_expert_mode(nav, testcase, take_snapshots, start_index)
    index = nav.navigate_until_text(
        testcase,
        mode_text,
        True,
        take_snapshots,
        index,
        timeout,
        run_last_action=not secret,
        wait_for_initial_events_change=False,
    )
    if secret:
        index = nav.navigate(testcase, [0] * SECRET_CLICK_COUNT, False, take_snapshots, index)
    return nav.navigate_until_text(
        testcase,
        nav.config.approve_keyword,
        True,
        take_snapshots,
        index,
        timeout,
        wait_for_initial_events_change=False,
    )
