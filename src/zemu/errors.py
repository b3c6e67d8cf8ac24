"""
Zemu Error Hierarchy
====================

This module defines the exception hierarchy for the emulator harness.
All exceptions inherit from ZemuError, allowing callers to catch every
harness-related error with a single except clause if desired.

Exception Hierarchy
-------------------
ZemuError (base)
├── ConfigurationError - missing binary, unknown model, wrong ELF
├── LaunchError        - emulator process could not start or stop
├── ResetError         - pooled instance state could not be restored
├── TransportFault     - command exchange returned a non-success status
└── ZemuTestError      - test-level failures (see zemu.testkit.exceptions)

Every exception carries a ``context`` dictionary with the diagnostic
values that were known when it was raised. Failure reports and the CLI
print these alongside the message.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from zemu.comms.status import ErrorClass


# =============================================================================
# Base Exception Class
# =============================================================================

class ZemuError(Exception):
    """
    Base exception for all harness errors.

    Attributes:
        context: Additional diagnostic information (ports, model, paths...)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# Setup Errors
# =============================================================================

class ConfigurationError(ZemuError):
    """
    Raised when the harness is configured with something it cannot use.

    Examples: the application ELF does not exist, a library ELF is missing,
    the device model is unknown or the ELF was built for another model.
    """
    pass


class LaunchError(ZemuError):
    """
    Raised when an emulator process cannot be started, reached or stopped.

    A failing stop is surfaced as a LaunchError too: a leaked process keeps
    its host ports bound and silently shrinks the pool port ranges.
    """

    def __init__(
        self,
        message: str,
        *,
        instance: Optional[str] = None,
        model: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            {
                "instance": instance,
                "model": model,
                "cause": str(cause) if cause else None,
            },
        )
        self.instance = instance
        self.model = model
        self.cause = cause


class ResetError(ZemuError):
    """
    Raised when a pooled instance could not be returned to its initial state.

    The pool reacts by evicting the slot instead of handing it out again.
    """

    def __init__(
        self,
        message: str,
        *,
        instance: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            {"instance": instance, "cause": str(cause) if cause else None},
        )
        self.instance = instance
        self.cause = cause


# =============================================================================
# Transport Errors
# =============================================================================

class TransportFault(ZemuError):
    """
    A command exchange with the device failed.

    Attributes:
        status_code: Status word returned by the device (0 if none was read)
        cause: The originating exception, if the fault wraps one
        error_class: Recoverable or Critical, as decided by the classifier
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        error_class: "ErrorClass",
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            {
                "status_code": f"0x{status_code:04X}",
                "error_class": error_class.value,
                "cause": str(cause) if cause else None,
            },
        )
        self.status_code = status_code
        self.error_class = error_class
        self.cause = cause

    @property
    def is_critical(self) -> bool:
        """True when waiting can never resolve this fault."""
        from zemu.comms.status import ErrorClass

        return self.error_class is ErrorClass.CRITICAL
