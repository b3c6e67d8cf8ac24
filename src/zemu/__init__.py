"""
Zemu - Emulator Test Harness for Hardware Wallet Applications
=============================================================

This package drives device emulators running hardware wallet applications
from Python tests: it launches emulator processes, exchanges commands
with the application, walks its UI and compares every screen of the walk
against a committed golden set.

Main Components
---------------
- **comms**: Command exchange
    APDU transport to the emulator, status-word classification

- **emulator**: Emulator processes
    Docker runtime, emulator instances, the instance pool, the
    screen/event API client and the per-model button tables

- **testkit**: Test framework
    Session orchestrator, synchronization and navigation engines,
    golden snapshot comparison, pytest fixtures

Quick Start
-----------
Approve a signing request and compare the walk:

    >>> from zemu import Session, SessionConfig
    >>> with Session("bin/app_s.elf", config=SessionConfig(model="nanos")) as sim:
    ...     pending = sim.exchange_in_background(apdu)
    ...     sim.compare_snapshots_and_approve("s-sign_basic")
    ...     reply = pending.result()

Or use the command-line tool:
    $ zemuctl pull
    $ zemuctl stop-all
    $ zemuctl compare snapshots/s-sign_basic snapshots-tmp/s-sign_basic 6

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

__version__ = "0.1.0"
__author__ = "Hugo José Pinto & Contributors"

# =============================================================================
# Public API Exports
# =============================================================================

from zemu.errors import (
    ZemuError,
    ConfigurationError,
    LaunchError,
    ResetError,
    TransportFault,
)

from zemu.models import (
    DeviceModel,
    DeviceWindow,
    MODELS,
    DEFAULT_MODEL,
    get_model,
    get_supported_models,
)

from zemu.comms import (
    ErrorClass,
    ErrorClassifier,
    StatusCode,
    classify,
    ExchangeTransport,
    FaultRecordingTransport,
    SpeculosTransport,
)

from zemu.emulator import (
    DockerRuntime,
    EmulatorInstance,
    LaunchConfig,
    InstancePool,
    PoolSlot,
    SpeculosApi,
    Snapshot,
    Event,
    ButtonKind,
    LeftClick,
    RightClick,
    BothClick,
    Touch,
)

from zemu.testkit import (
    Session,
    SessionConfig,
    HarnessConfig,
    SynchronizationEngine,
    NavigationEngine,
    WaitTimeoutError,
    SnapshotMismatchError,
    SessionSetupError,
)

__all__ = [
    "__version__",
    # Errors
    "ZemuError",
    "ConfigurationError",
    "LaunchError",
    "ResetError",
    "TransportFault",
    # Models
    "DeviceModel",
    "DeviceWindow",
    "MODELS",
    "DEFAULT_MODEL",
    "get_model",
    "get_supported_models",
    # Command exchange
    "ErrorClass",
    "ErrorClassifier",
    "StatusCode",
    "classify",
    "ExchangeTransport",
    "FaultRecordingTransport",
    "SpeculosTransport",
    # Emulator
    "DockerRuntime",
    "EmulatorInstance",
    "LaunchConfig",
    "InstancePool",
    "PoolSlot",
    "SpeculosApi",
    "Snapshot",
    "Event",
    "ButtonKind",
    "LeftClick",
    "RightClick",
    "BothClick",
    "Touch",
    # Test framework
    "Session",
    "SessionConfig",
    "HarnessConfig",
    "SynchronizationEngine",
    "NavigationEngine",
    "WaitTimeoutError",
    "SnapshotMismatchError",
    "SessionSetupError",
]
