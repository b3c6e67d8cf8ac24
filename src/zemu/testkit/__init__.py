"""
Zemu Testing Framework
======================

Tests drive an emulated device through a Session and compare each walk
with a committed golden set of screenshots.

Quick Start
-----------

With the pytest fixtures (``pytest_plugins = ["zemu.testkit.fixtures"]``)::

    @pytest.mark.zemu_requires_docker
    def test_main_menu(zemu_session):
        sim = zemu_session("bin/app_s.elf", model="nanos")
        assert sim.navigate_and_compare_snapshots("s-mainmenu", [1, 0, 0, 4, -5])

Driving a Session by hand::

    from zemu.testkit import Session, SessionConfig

    with Session("bin/app_stax.elf", config=SessionConfig(model="stax")) as sim:
        pending = sim.exchange_in_background(apdu)
        sim.compare_snapshots_and_reject("st-sign_reject")

Snapshot Layout
---------------

    snapshots/<testcase>/00000.png       golden set (committed)
    snapshots-tmp/<testcase>/00000.png   candidate set (this run)

Index 0 is the screen before the first action; index i is the screen
after action i. Delete a golden directory and copy the candidate one in
its place to accept a UI change.

Configuration
-------------

Environment variables (see HarnessConfig.from_env)::

    ZEMU_IMAGE, ZEMU_HOST, ZEMU_POLL_INTERVAL, ZEMU_METHOD_TIMEOUT,
    ZEMU_START_TIMEOUT, ZEMU_POOL, ZEMU_POOL_ELF, ZEMU_SNAPSHOTS

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

from zemu.testkit.config import (
    HarnessConfig,
    SessionConfig,
    get_default_config,
    set_default_config,
)
from zemu.testkit.diagnostics import ActionLogEntry, TestDiagnostics
from zemu.testkit.exceptions import (
    SessionSetupError,
    SnapshotMismatchError,
    WaitTimeoutError,
    ZemuTestError,
)
from zemu.testkit.navigation import NavigationEngine
from zemu.testkit.session import Session
from zemu.testkit.snapshots import compare_snapshots, snapshot_dirs
from zemu.testkit.sync import SynchronizationEngine

__all__ = [
    "HarnessConfig",
    "SessionConfig",
    "get_default_config",
    "set_default_config",
    "ActionLogEntry",
    "TestDiagnostics",
    "SessionSetupError",
    "SnapshotMismatchError",
    "WaitTimeoutError",
    "ZemuTestError",
    "NavigationEngine",
    "Session",
    "compare_snapshots",
    "snapshot_dirs",
    "SynchronizationEngine",
]
