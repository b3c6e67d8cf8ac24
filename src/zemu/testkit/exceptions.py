"""
Zemu Testing Framework - Exception Classes
==========================================

Test-level failures raised by the synchronization and navigation engines
and by sessions. These give clear, actionable messages when a UI walk
does not go as expected.

Exception Hierarchy:
    ZemuTestError (base, a ZemuError)
    ├── WaitTimeoutError       - Waited too long for a screen or text
    ├── SnapshotMismatchError  - Candidate image differs from the golden one
    └── SessionSetupError      - Session could not be brought up

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

from typing import List, Optional

from zemu.errors import ZemuError


class ZemuTestError(ZemuError):
    """
    Base exception for all testing framework errors.

    All testing-specific exceptions inherit from this class,
    making it easy to catch any testing error.
    """
    pass


class WaitTimeoutError(ZemuTestError):
    """
    Raised when a wait exceeds its bound.

    This includes waiting for a screen, for a screen change, for the event
    log to change and for a text to appear.
    """

    def __init__(
        self,
        message: str,
        *,
        awaited: str = None,
        timeout: float = None,
        elapsed: float = None,
        last_events: List[str] = None,
    ):
        """
        Initialize timeout error with diagnostic details.

        Args:
            message: Description of what timed out
            awaited: What we were waiting for (screen, text pattern...)
            timeout: Bound in seconds
            elapsed: Seconds actually waited
            last_events: Texts on screen when the wait gave up
        """
        context = {
            "awaited": awaited,
            "timeout": timeout,
            "elapsed": elapsed,
            "last_events": last_events,
        }
        super().__init__(message, context)
        self.awaited = awaited
        self.timeout = timeout
        self.elapsed = elapsed
        self.last_events = last_events


class SnapshotMismatchError(ZemuTestError, AssertionError):
    """
    Raised when a candidate snapshot does not match its golden image.

    Inherits from AssertionError so pytest reports it as a test failure.
    """

    def __init__(
        self,
        message: str,
        *,
        index: int = None,
        golden: str = None,
        candidate: str = None,
        reason: str = None,
    ):
        context = {
            "index": index,
            "golden": golden,
            "candidate": candidate,
            "reason": reason,
        }
        super().__init__(message, context)
        self.index = index
        self.golden = golden
        self.candidate = candidate
        self.reason = reason


class SessionSetupError(ZemuTestError):
    """
    Raised when a session cannot be brought up.

    The phase tells where it stopped: acquire, launch, connect, start_text.
    """

    def __init__(
        self,
        message: str,
        *,
        phase: str = None,
        model: str = None,
        cause: Optional[BaseException] = None,
    ):
        context = {
            "phase": phase,
            "model": model,
            "cause": str(cause) if cause else None,
        }
        super().__init__(message, context)
        self.phase = phase
        self.model = model
        self.cause = cause
