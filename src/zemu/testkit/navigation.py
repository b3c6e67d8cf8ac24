"""
Zemu Testing Framework - Navigation Engine
==========================================

Drives UI walks on the emulator and records a screenshot per step.

A walk keeps a cursor (the current image index). The screen before the
first action is saved as ``start_index``; after action ``i`` of the walk
the screen is saved as ``start_index + i`` in the candidate directory
(see zemu.testkit.snapshots). Every walk returns its last index so the
result can be chained into a comparison, or into another walk.

Two ways to walk:

- navigate(): an explicit schedule of actions (or integer click counts)
- navigate_until_text(): keep advancing (right click, or swipe on touch
  devices) until a text matching a pattern is on screen, then optionally
  confirm with a final action

The approve/reject flows build on navigate_until_text and, on touch
devices, wait for the device to settle back on the main menu before
re-capturing the last image, so confirmation animations never end up in
a golden set.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import logging
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from zemu.emulator.api import Event, Snapshot, SpeculosApi
from zemu.emulator.buttons import (
    CLICK_ENDPOINTS,
    BothClick,
    Button,
    ButtonKind,
    LeftClick,
    NavAction,
    RightClick,
    ScheduleItem,
    Touch,
    TouchNavigation,
    is_click,
    schedule_to_nav,
    touch,
)
from zemu.errors import ConfigurationError
from zemu.models import DeviceModel
from zemu.testkit.config import SessionConfig
from zemu.testkit.diagnostics import TestDiagnostics
from zemu.testkit.exceptions import WaitTimeoutError
from zemu.testkit.snapshots import (
    compare_snapshots,
    ensure_dirs,
    replace_snapshot,
    save_snapshot,
    snapshot_dirs,
    snapshot_path,
)
from zemu.testkit.sync import SynchronizationEngine, TextPattern, compile_pattern, find_text

# Configure module logger
logger = logging.getLogger(__name__)


class NavigationEngine:
    """
    Action sequencing and golden-set walks for one emulator instance.

    Args:
        api: Screen/event API of the instance
        sync: Synchronization engine bound to the same instance
        model: Device model of the instance
        config: Resolved session configuration (keywords, approve action)
        snapshots_root: Directory holding snapshots/ and snapshots-tmp/
        key_delay: Minimum delay after an action when not waiting for the screen
        method_timeout: Default per-step timeout of text-driven walks
        diagnostics: Action log to record every action in
        log: Progress logger callable (default: module logger at DEBUG)

    Attributes:
        initial_events: Event log right after start; text walks wait for it to change
        main_menu_snapshot: Screen right after start; approve/reject flows settle on it
    """

    def __init__(
        self,
        api: SpeculosApi,
        sync: SynchronizationEngine,
        model: DeviceModel,
        config: SessionConfig,
        *,
        snapshots_root: Path = Path("."),
        key_delay: float = 0.25,
        method_timeout: float = 15.0,
        diagnostics: Optional[TestDiagnostics] = None,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.api = api
        self.sync = sync
        self.model = model
        self.config = config
        self.snapshots_root = Path(snapshots_root)
        self.key_delay = key_delay
        self.method_timeout = method_timeout
        self.diagnostics = diagnostics
        self._log = log or logger.debug

        self.initial_events: List[Event] = []
        self.main_menu_snapshot: Optional[Snapshot] = None

    # ═══════════════════════════════════════════════════════════════════════════
    # SINGLE ACTIONS
    # ═══════════════════════════════════════════════════════════════════════════

    def snapshot(self, filename: Optional[Path] = None) -> Snapshot:
        """Capture the screen, saving it to ``filename`` when given."""
        snapshot = self.api.snapshot()
        if filename is not None:
            save_snapshot(snapshot, filename)
        return snapshot

    def _perform(self, action: NavAction) -> None:
        if is_click(action):
            if self.model.is_touch:
                raise ConfigurationError(
                    f"{action} can only be used with button devices, not {self.model.name}",
                    {"model": self.model.name, "action": str(action)},
                )
            self.api.press_button(CLICK_ENDPOINTS[type(action)])
        elif isinstance(action, Touch):
            if not self.model.is_touch:
                raise ConfigurationError(
                    f"touch actions can only be used with touch devices, not {self.model.name}",
                    {"model": self.model.name, "action": str(action)},
                )
            button = action.button
            self.api.finger(button.x, button.y, button.delay, button.direction.value or None)
        else:
            raise TypeError(f"unsupported navigation action: {action!r}")

    def run_action(
        self,
        action: NavAction,
        filename: Optional[Path] = None,
        wait_for_screen_update: bool = True,
        wait_for_events_change: bool = False,
    ) -> Snapshot:
        """
        Perform one action and capture the resulting screen.

        Args:
            action: What to press or touch
            filename: Where to save the resulting screen (None: not saved)
            wait_for_screen_update: Wait for the screen to differ from before
                the action; otherwise sleep the minimum key delay
            wait_for_events_change: Also wait for the event log to change

        Returns:
            The screen after the action
        """
        label = filename.name if filename is not None else ""
        if self.diagnostics is None:
            return self._run_action(action, filename, wait_for_screen_update, wait_for_events_change)
        with self.diagnostics.record(str(action), label):
            return self._run_action(action, filename, wait_for_screen_update, wait_for_events_change)

    def _run_action(
        self,
        action: NavAction,
        filename: Optional[Path],
        wait_for_screen_update: bool,
        wait_for_events_change: bool,
    ) -> Snapshot:
        prev_events = (self.sync.events_or_none() or []) if wait_for_events_change else []
        prev_screen = self.api.snapshot()

        self._perform(action)
        self._log(f"{action} -> {filename or ''}")

        if wait_for_screen_update:
            self.sync.wait_until_screen_is_not(prev_screen)
            if wait_for_events_change:
                self.sync.wait_for_screen_changes(prev_events)
        else:
            # some transitions need a floor delay even without screen diffing
            time.sleep(self.key_delay)

        return self.snapshot(filename)

    def run_action_batch(
        self,
        actions: Iterable[NavAction],
        filename: Optional[Path] = None,
        wait_for_screen_update: bool = True,
        wait_for_events_change: bool = False,
    ) -> None:
        """Perform several actions; only the screen after the last one is kept at ``filename``."""
        for action in actions:
            self.run_action(action, filename, wait_for_screen_update, wait_for_events_change)

    def click_left(self, filename: Optional[Path] = None, wait_for_screen_update: bool = True,
                   wait_for_events_change: bool = False) -> Snapshot:
        return self.run_action(LeftClick(), filename, wait_for_screen_update, wait_for_events_change)

    def click_right(self, filename: Optional[Path] = None, wait_for_screen_update: bool = True,
                    wait_for_events_change: bool = False) -> Snapshot:
        return self.run_action(RightClick(), filename, wait_for_screen_update, wait_for_events_change)

    def click_both(self, filename: Optional[Path] = None, wait_for_screen_update: bool = True,
                   wait_for_events_change: bool = False) -> Snapshot:
        return self.run_action(BothClick(), filename, wait_for_screen_update, wait_for_events_change)

    def finger_touch(self, button: Button, filename: Optional[Path] = None,
                     wait_for_screen_update: bool = True, wait_for_events_change: bool = False) -> Snapshot:
        return self.run_action(Touch(button), filename, wait_for_screen_update, wait_for_events_change)

    # ═══════════════════════════════════════════════════════════════════════════
    # WALKS
    # ═══════════════════════════════════════════════════════════════════════════

    def _dirs(self, testcase: str, take_snapshots: bool) -> Tuple[Path, Path]:
        if take_snapshots:
            return ensure_dirs(self.snapshots_root, testcase)
        return snapshot_dirs(self.snapshots_root, testcase)

    @staticmethod
    def _path(candidate_dir: Path, index: int, take_snapshots: bool) -> Optional[Path]:
        return snapshot_path(candidate_dir, index) if take_snapshots else None

    def navigate(
        self,
        testcase: str,
        schedule: Iterable[ScheduleItem],
        wait_for_screen_update: bool = True,
        take_snapshots: bool = True,
        start_index: int = 0,
        wait_for_events_change: bool = False,
    ) -> int:
        """
        Run ``schedule``, capturing the screen before it and after every action.

        Args:
            testcase: Name of the golden/candidate directory pair
            schedule: NavActions and/or integer click counts
            wait_for_screen_update: Wait for each action to change the screen
            take_snapshots: Save the captured screens
            start_index: Index of the screen before the first action
            wait_for_events_change: Also wait for the event log to change

        Returns:
            Index of the last captured screen

        Raises:
            OSError: If the snapshot directories cannot be created
        """
        actions = schedule_to_nav(schedule)
        _, candidate = self._dirs(testcase, take_snapshots)

        index = start_index
        filename = self._path(candidate, index, take_snapshots)
        self._log("---------------------------")
        self._log(f"Start        {filename or ''}")
        self.snapshot(filename)
        self._log(f"Instructions {[str(a) for a in actions]}")

        for action in actions:
            index += 1
            filename = self._path(candidate, index, take_snapshots)
            self.run_action(action, filename, wait_for_screen_update, wait_for_events_change)

        return index

    def _advance_action(self, first: bool, blind_signing: bool) -> NavAction:
        if not self.model.is_touch:
            return RightClick()
        if first and blind_signing:
            # The blind-signing warning keeps its "continue anyway" choice where
            # the reject button sits, and its text cannot be told apart from the
            # approve screen.
            return touch(self.model, ButtonKind.REJECT)
        return touch(self.model, ButtonKind.SWIPE_CONTINUE)

    def _confirm_action(self, matched: Event) -> NavAction:
        if not self.model.is_touch:
            return BothClick()
        if self.config.approve_action is ButtonKind.DYNAMIC_TAP:
            x, y = matched.center
            return Touch(Button(x, y))
        return touch(self.model, self.config.approve_action)

    def navigate_until_text(
        self,
        testcase: str,
        pattern: TextPattern,
        wait_for_screen_update: bool = True,
        take_snapshots: bool = True,
        start_index: int = 0,
        timeout: Optional[float] = None,
        run_last_action: bool = True,
        wait_for_initial_events_change: bool = True,
        blind_signing: bool = False,
    ) -> int:
        """
        Advance screen by screen until a text matching ``pattern`` is shown.

        The timeout applies to each step: it restarts after every advance.

        Args:
            testcase: Name of the golden/candidate directory pair
            pattern: Regular expression matched case-insensitively against
                the on-screen texts
            wait_for_screen_update: Wait for each action to change the screen
            take_snapshots: Save the captured screens
            start_index: Index of the screen before the first action
            timeout: Seconds to wait for each step (default: method timeout)
            run_last_action: Confirm once the text is found (both-click on
                button devices, the configured approve button on touch devices)
            wait_for_initial_events_change: First wait for the screen to leave
                the start screen
            blind_signing: Touch devices only: the first advance presses the
                reject position of the blind-signing warning

        Returns:
            Index of the screen where the text was found (captured after the
            confirmation when ``run_last_action`` is set)

        Raises:
            WaitTimeoutError: If a step exceeded ``timeout``
            TransportFault: If a critical fault was recorded meanwhile
        """
        timeout = self.method_timeout if timeout is None else timeout
        _, candidate = self._dirs(testcase, take_snapshots)
        regex = compile_pattern(pattern)

        index = start_index
        filename = self._path(candidate, index, take_snapshots)
        if wait_for_initial_events_change:
            self.sync.wait_for_screen_changes(self.initial_events)
        self.snapshot(filename)

        start = time.monotonic()
        first = True
        while True:
            elapsed = time.monotonic() - start
            if elapsed > timeout:
                raise WaitTimeoutError(
                    f"Timeout waiting for screen containing {regex.pattern}",
                    awaited=f"text ({regex.pattern})",
                    timeout=timeout,
                    elapsed=elapsed,
                )

            self.sync.check_fault()
            events = self.sync.events_or_none() or []
            index += 1
            filename = self._path(candidate, index, take_snapshots)

            matched = find_text(events, regex)
            if matched is not None:
                break

            action = self._advance_action(first, blind_signing)
            self.run_action(action, filename, wait_for_screen_update, True)
            first = False
            start = time.monotonic()

        if not run_last_action:
            return index

        self.run_action(self._confirm_action(matched), filename, wait_for_screen_update, True)
        return index

    # ═══════════════════════════════════════════════════════════════════════════
    # COMPARISONS
    # ═══════════════════════════════════════════════════════════════════════════

    def compare_snapshots(self, testcase: str, last_index: int) -> bool:
        """
        Compare candidate images ``0..last_index`` against the golden set.

        Raises:
            SnapshotMismatchError: At the first differing index
        """
        golden, candidate = snapshot_dirs(self.snapshots_root, testcase)
        self._log("Start comparison")
        return compare_snapshots(golden, candidate, last_index)

    def take_snapshot_and_overwrite(self, testcase: str, index: int) -> Snapshot:
        """Re-capture the candidate image at ``index``, which must already exist."""
        _, candidate = ensure_dirs(self.snapshots_root, testcase)
        snapshot = self.api.snapshot()
        replace_snapshot(snapshot, snapshot_path(candidate, index))
        return snapshot

    def navigate_and_compare_snapshots(
        self,
        testcase: str,
        schedule: Iterable[ScheduleItem],
        wait_for_screen_update: bool = True,
        start_index: int = 0,
    ) -> bool:
        last_index = self.navigate(testcase, schedule, wait_for_screen_update, True, start_index)
        return self.compare_snapshots(testcase, last_index)

    def navigate_and_compare_until_text(
        self,
        testcase: str,
        pattern: TextPattern,
        wait_for_screen_update: bool = True,
        start_index: int = 0,
        timeout: Optional[float] = None,
        wait_for_initial_events_change: bool = True,
    ) -> bool:
        last_index = self.navigate_until_text(
            testcase,
            pattern,
            wait_for_screen_update,
            True,
            start_index,
            timeout,
            True,
            wait_for_initial_events_change,
        )
        return self.compare_snapshots(testcase, last_index)

    def _settle_on_main_menu(self, testcase: str, last_index: int) -> None:
        # confirmation animations are not deterministic: re-capture once settled
        if self.main_menu_snapshot is not None:
            self.sync.wait_until_screen_is(self.main_menu_snapshot)
        self.take_snapshot_and_overwrite(testcase, last_index)

    def compare_snapshots_and_approve(
        self,
        testcase: str,
        wait_for_screen_update: bool = True,
        start_index: int = 0,
        timeout: Optional[float] = None,
        blind_signing: bool = False,
    ) -> bool:
        """
        Walk to the approve keyword, approve, and compare the walk with the golden set.

        Raises:
            SnapshotMismatchError: At the first differing index
            WaitTimeoutError: If the approve screen was never reached
        """
        last_index = self.navigate_until_text(
            testcase,
            self.config.approve_keyword,
            wait_for_screen_update,
            True,
            start_index,
            timeout,
            blind_signing=blind_signing,
        )
        if self.model.is_touch:
            self._settle_on_main_menu(testcase, last_index)
        return self.compare_snapshots(testcase, last_index)

    def compare_snapshots_and_reject(
        self,
        testcase: str,
        wait_for_screen_update: bool = True,
        start_index: int = 0,
        timeout: Optional[float] = None,
        blind_signing: bool = False,
    ) -> bool:
        """
        Walk to the reject keyword, reject, and compare the walk with the golden set.

        Touch devices confirm the rejection with an extra reject + confirm-yes
        step pair, then settle on the main menu before the last capture.

        Raises:
            SnapshotMismatchError: At the first differing index
            WaitTimeoutError: If the reject screen was never reached
        """
        if not self.model.is_touch:
            return self.navigate_and_compare_until_text(
                testcase,
                self.config.reject_keyword,
                wait_for_screen_update,
                start_index,
                timeout,
            )

        found_index = self.navigate_until_text(
            testcase,
            self.config.reject_keyword,
            wait_for_screen_update,
            True,
            start_index,
            timeout,
            run_last_action=False,
            blind_signing=blind_signing,
        )
        confirmation = TouchNavigation(self.model, [ButtonKind.REJECT, ButtonKind.CONFIRM_YES])
        # the walk re-captures its start screen, which was never saved at found_index
        last_index = self.navigate(
            testcase,
            confirmation.schedule,
            wait_for_screen_update,
            True,
            found_index - 1,
        )
        self._settle_on_main_menu(testcase, last_index)
        return self.compare_snapshots(testcase, last_index)
