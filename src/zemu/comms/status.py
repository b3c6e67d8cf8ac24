"""
Status Word Classification
==========================

Maps the 16-bit status words returned by the device to a severity class.

A status word is either:

- Recoverable: the situation may resolve by itself (success, busy, user
  cancelled, device locked...). Polling loops keep waiting.
- Critical: the request itself is wrong (bad parameters, unsupported
  instruction, signature failure...). Waiting can never fix it, so any
  in-flight wait aborts immediately.

Unknown status words are Recoverable. The table is a policy, not a
protocol parser: callers construct an ErrorClassifier with extra critical
codes, or with an entirely different set, without touching the engines
that consume it.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

from enum import Enum, IntEnum
from typing import Dict, FrozenSet, Iterable, Optional


class StatusCode(IntEnum):
    """Common status words returned by device applications."""
    SUCCESS = 0x9000
    BUSY = 0x9001
    DEVICE_LOCKED = 0x5515
    EXECUTION_ERROR = 0x6400
    USER_CANCELLED = 0x6501
    INVALID_LENGTH = 0x6700
    EMPTY_BUFFER = 0x6982
    OUTPUT_BUFFER_TOO_SMALL = 0x6983
    INVALID_DATA = 0x6984
    CONDITIONS_NOT_SATISFIED = 0x6985
    COMMAND_NOT_ALLOWED = 0x6986
    TX_NOT_INITIALIZED = 0x6987
    BAD_KEY_HANDLE = 0x6A80
    INVALID_P1P2 = 0x6B00
    INS_NOT_SUPPORTED = 0x6D00
    CLA_NOT_SUPPORTED = 0x6E00
    UNKNOWN_ERROR = 0x6F00
    SIGN_VERIFY_ERROR = 0x6F01


class ErrorClass(Enum):
    """Severity of a transport fault."""
    RECOVERABLE = "recoverable"
    CRITICAL = "critical"


# Malformed input, unsupported class/instruction, signature failure,
# bad key handle and invalid parameters never resolve by waiting.
CRITICAL_STATUS_CODES: FrozenSet[int] = frozenset({
    StatusCode.EXECUTION_ERROR,
    StatusCode.INVALID_DATA,
    StatusCode.BAD_KEY_HANDLE,
    StatusCode.CLA_NOT_SUPPORTED,
    StatusCode.INS_NOT_SUPPORTED,
    StatusCode.INVALID_P1P2,
    StatusCode.SIGN_VERIFY_ERROR,
})

_STATUS_MESSAGES: Dict[int, str] = {
    StatusCode.SUCCESS: "Success",
    StatusCode.BUSY: "Device is busy",
    StatusCode.DEVICE_LOCKED: "Device is locked",
    StatusCode.EXECUTION_ERROR: "Execution error",
    StatusCode.USER_CANCELLED: "User cancelled the operation",
    StatusCode.INVALID_LENGTH: "Invalid length",
    StatusCode.EMPTY_BUFFER: "Empty buffer",
    StatusCode.OUTPUT_BUFFER_TOO_SMALL: "Output buffer too small",
    StatusCode.INVALID_DATA: "Invalid data",
    StatusCode.CONDITIONS_NOT_SATISFIED: "Conditions not satisfied",
    StatusCode.COMMAND_NOT_ALLOWED: "Command not allowed",
    StatusCode.TX_NOT_INITIALIZED: "Transaction not initialized",
    StatusCode.BAD_KEY_HANDLE: "Bad key handle",
    StatusCode.INVALID_P1P2: "Invalid parameters (P1/P2)",
    StatusCode.INS_NOT_SUPPORTED: "Instruction not supported",
    StatusCode.CLA_NOT_SUPPORTED: "Class not supported",
    StatusCode.UNKNOWN_ERROR: "Unknown error",
    StatusCode.SIGN_VERIFY_ERROR: "Signature verification error",
}


class ErrorClassifier:
    """
    Policy table deciding which status words are critical.

    Usage:
        classifier = ErrorClassifier()
        classifier.classify(0x6B00)        # ErrorClass.CRITICAL
        classifier.classify(0x6985)        # ErrorClass.RECOVERABLE

        # Treat "conditions not satisfied" as critical for one app
        strict = ErrorClassifier(extra_critical=[0x6985])

    Args:
        critical_codes: Replacement critical table (default: CRITICAL_STATUS_CODES)
        extra_critical: Codes added on top of the table
    """

    def __init__(
        self,
        critical_codes: Optional[Iterable[int]] = None,
        extra_critical: Iterable[int] = (),
    ):
        base = CRITICAL_STATUS_CODES if critical_codes is None else critical_codes
        self._critical: FrozenSet[int] = frozenset(int(c) for c in base) | frozenset(
            int(c) for c in extra_critical
        )

    @property
    def critical_codes(self) -> FrozenSet[int]:
        return self._critical

    def classify(self, status_code: int) -> ErrorClass:
        """Map a status word to its class. Total: unknown codes are recoverable."""
        if status_code in self._critical:
            return ErrorClass.CRITICAL
        return ErrorClass.RECOVERABLE

    def with_critical(self, *codes: int) -> "ErrorClassifier":
        """Return a new classifier with ``codes`` added to the critical table."""
        return ErrorClassifier(self._critical, codes)


DEFAULT_CLASSIFIER = ErrorClassifier()


def classify(status_code: int) -> ErrorClass:
    """Classify ``status_code`` with the default table."""
    return DEFAULT_CLASSIFIER.classify(status_code)


def status_message(status_code: int) -> str:
    """Human-readable description of a status word."""
    message = _STATUS_MESSAGES.get(status_code)
    if message is None:
        return f"Unknown status code: 0x{status_code:04X}"
    return message
