"""
Zemu Testing Framework - Diagnostics
====================================

Diagnostic utilities for test failure analysis including:
- Action logging with timing information
- On-screen text before and after every action
- Comprehensive failure reports

When a UI walk fails, the action log shows what was pressed, how long
each step took and which texts were on screen, without re-running the
test against the emulator.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from zemu.testkit.exceptions import WaitTimeoutError


@dataclass
class ActionLogEntry:
    """
    Record of a single navigation action.

    Attributes:
        index: Sequential action number (1-based for readability)
        action_type: Type of action (RightClick, Touch(200,350), wait_for_text...)
        action_args: Human-readable argument summary (e.g. snapshot file name)
        timestamp: Monotonic clock at start of action, in seconds
        duration: Seconds spent in this action
        result: "success", "failed", or "timeout"
        texts_before: On-screen texts before the action
        texts_after: On-screen texts after the action
        error_message: Error details if result != "success"
    """

    index: int
    action_type: str
    action_args: str
    timestamp: float
    duration: float = 0.0
    result: str = "success"
    texts_before: List[str] = field(default_factory=list)
    texts_after: List[str] = field(default_factory=list)
    error_message: Optional[str] = None

    def format_short(self) -> str:
        """
        Format action as single-line summary.

        Returns:
            Formatted string like '[  3] RightClick(00003.png) → success (0.41s)'
        """
        if self.result == "timeout":
            result_str = f"TIMEOUT after {self.duration:.2f}s"
        elif self.result == "failed":
            result_str = "FAILED"
        else:
            result_str = f"success ({self.duration:.2f}s)"
        return f"[{self.index:3}] {self.action_type}({self.action_args}) → {result_str}"

    def format_detailed(self) -> str:
        lines = [self.format_short()]

        if self.texts_before:
            lines.append("    Screen before:")
            for text in self.texts_before:
                lines.append(f"      {text!r}")

        if self.texts_after and self.texts_after != self.texts_before:
            lines.append("    Screen after:")
            for text in self.texts_after:
                lines.append(f"      {text!r}")

        if self.error_message:
            lines.append(f"    Error: {self.error_message}")

        return "\n".join(lines)


class TestDiagnostics:
    """
    Diagnostic collector for one session.

    Usage:
        diagnostics = TestDiagnostics(lambda: session.current_texts(), model="nanos")

        with diagnostics.record("RightClick", "00001.png"):
            ...  # action executes

        report = diagnostics.format_failure_report(error)

    Args:
        texts: Returns the texts currently on screen
        model: Device model for reports
        instance: Emulator instance name for reports
        max_size: Entries kept before the oldest half is dropped
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        texts: Callable[[], List[str]],
        *,
        model: str = "",
        instance: str = "",
        max_size: int = 100,
    ):
        self._texts = texts
        self.model = model
        self.instance = instance
        self.max_size = max_size
        self._action_log: List[ActionLogEntry] = []
        self._current_action: Optional[ActionLogEntry] = None
        self._test_name: Optional[str] = None

    @property
    def action_log(self) -> List[ActionLogEntry]:
        return self._action_log

    def set_test_name(self, name: str) -> None:
        self._test_name = name

    def log_action_start(self, action_type: str, action_args: str = "") -> None:
        """
        Log the start of an action.

        Call this before executing an action to capture the "before" state.
        """
        if len(self._action_log) >= self.max_size:
            # Remove oldest entries, keeping last half
            self._action_log = self._action_log[self.max_size // 2 :]

        self._current_action = ActionLogEntry(
            index=len(self._action_log) + 1,
            action_type=action_type,
            action_args=action_args,
            timestamp=time.monotonic(),
            texts_before=self._texts(),
        )

    def log_action_end(self, result: str = "success", error_message: Optional[str] = None) -> None:
        """
        Log the end of an action.

        Args:
            result: "success", "failed", or "timeout"
            error_message: Error details if failed
        """
        if self._current_action is None:
            return

        self._current_action.duration = time.monotonic() - self._current_action.timestamp
        self._current_action.result = result
        self._current_action.error_message = error_message
        self._current_action.texts_after = self._texts()

        self._action_log.append(self._current_action)
        self._current_action = None

    @contextmanager
    def record(self, action_type: str, action_args: str = "") -> Iterator[None]:
        """Log an action around a ``with`` block; failures are logged and re-raised."""
        self.log_action_start(action_type, action_args)
        try:
            yield
        except WaitTimeoutError as e:
            self.log_action_end("timeout", str(e))
            raise
        except Exception as e:
            self.log_action_end("failed", str(e))
            raise
        self.log_action_end("success")

    def format_failure_report(self, error: Exception, snapshot_path: Optional[Path] = None) -> str:
        """
        Format comprehensive failure report.

        Args:
            error: The exception that caused the failure
            snapshot_path: Path of the last captured snapshot, if any

        Returns:
            Multi-line formatted failure report
        """
        lines = []

        # Header
        lines.append("╔" + "═" * 78 + "╗")
        lines.append("║" + "ZEMU TEST FAILURE".center(78) + "║")
        lines.append("╠" + "═" * 78 + "╣")

        # Test info
        lines.append("║" + " " * 78 + "║")
        lines.append("║" + f"  Test: {self._test_name or 'unknown'}".ljust(78) + "║")
        lines.append("║" + f"  Model: {self.model}".ljust(78) + "║")
        lines.append("║" + f"  Instance: {self.instance}".ljust(78) + "║")
        lines.append("║" + f"  Error: {str(error)[:70]}".ljust(78) + "║")
        lines.append("║" + " " * 78 + "║")

        # Screen state
        lines.append("╠" + "═" * 78 + "╣")
        lines.append("║" + "  SCREEN TEXT".ljust(78) + "║")
        texts = self._texts()
        if not texts:
            lines.append("║" + "  (no text on screen)".ljust(78) + "║")
        for text in texts:
            lines.append("║" + f"  {text[:74]!r}".ljust(78) + "║")
        lines.append("║" + " " * 78 + "║")

        # Error context
        context = getattr(error, "context", None)
        if context:
            lines.append("╠" + "═" * 78 + "╣")
            lines.append("║" + "  CONTEXT".ljust(78) + "║")
            for key, value in context.items():
                if value is not None:
                    lines.append("║" + f"  {key}: {str(value)[:64]}".ljust(78) + "║")
            lines.append("║" + " " * 78 + "║")

        # Recent actions
        lines.append("╠" + "═" * 78 + "╣")
        recent_count = min(5, len(self._action_log))
        lines.append(
            "║"
            + f"  RECENT ACTIONS (last {recent_count} of {len(self._action_log)})".ljust(78)
            + "║"
        )
        for entry in self._action_log[-recent_count:]:
            lines.append("║" + f"  {entry.format_short()[:75]}".ljust(78) + "║")
        lines.append("║" + " " * 78 + "║")

        if snapshot_path:
            lines.append("╠" + "═" * 78 + "╣")
            lines.append("║" + f"  SNAPSHOT: {str(snapshot_path)[:65]}".ljust(78) + "║")
            lines.append("║" + " " * 78 + "║")

        # Footer
        lines.append("╚" + "═" * 78 + "╝")

        return "\n".join(lines)

    def format_action_log(self, detailed: bool = False) -> str:
        if not self._action_log:
            return "No actions recorded"

        lines = [f"Action Log ({len(self._action_log)} actions):", ""]
        for entry in self._action_log:
            lines.append(entry.format_detailed() if detailed else entry.format_short())
        return "\n".join(lines)
