"""
Zemu Command Exchange Module
============================

Commands reach the application as APDUs over the emulator's
command-exchange port. Replies end with a 2-byte status word.

Module Structure
----------------
- **status**: status words, ErrorClass and the ErrorClassifier policy table
- **transport**: ExchangeTransport capability, the emulator socket
  transport and the fault-recording wrapper the waits consult

A status word outside the accepted list raises a TransportFault whose
class decides how waits react to it: a Critical fault ends every wait
at once, a Recoverable one is treated as "no data yet".

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

from zemu.comms.status import (
    CRITICAL_STATUS_CODES,
    DEFAULT_CLASSIFIER,
    ErrorClass,
    ErrorClassifier,
    StatusCode,
    classify,
    status_message,
)
from zemu.comms.transport import (
    ExchangeTransport,
    FaultRecordingTransport,
    SpeculosTransport,
    build_apdu,
    split_status,
)

__all__ = [
    "CRITICAL_STATUS_CODES",
    "DEFAULT_CLASSIFIER",
    "ErrorClass",
    "ErrorClassifier",
    "StatusCode",
    "classify",
    "status_message",
    "ExchangeTransport",
    "FaultRecordingTransport",
    "SpeculosTransport",
    "build_apdu",
    "split_status",
]
