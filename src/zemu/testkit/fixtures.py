"""
Zemu Testing Framework - Pytest Fixtures
========================================

Pytest fixtures and hooks for emulator tests:

    harness_config   - Harness configuration (session-scoped)
    instance_pool    - Emulator pool for the whole run (session-scoped),
                       sized by ZEMU_POOL / the zemu_pool ini option
    zemu_session     - Factory starting Sessions; every session it created
                       is closed when the test ends

Usage:
    Installing the package registers this module as the "zemu" pytest
    plugin, so the fixtures are available to every test:

        @pytest.mark.zemu_requires_docker
        def test_sign(zemu_session):
            sim = zemu_session("bin/app_s.elf", model="nanos")
            sim.navigate_and_compare_snapshots("main_menu", [1, 1, -2])

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import logging
from typing import Callable, Generator, List, Optional

import pytest

from zemu.emulator.pool import InstancePool
from zemu.emulator.runtime import DockerRuntime
from zemu.errors import ZemuError
from zemu.testkit.config import HarnessConfig, SessionConfig, get_default_config, set_default_config
from zemu.testkit.session import Session

# Configure module logger
logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════


def build_pool(harness_config: HarnessConfig) -> InstancePool:
    """Docker-backed pool configured from ``harness_config``, not yet initialized."""
    return InstancePool(
        DockerRuntime(),
        harness_config.pool_elfs,
        host=harness_config.host,
        image=harness_config.image,
        ready_timeout=harness_config.start_timeout,
        ready_poll=harness_config.readiness_poll,
        settle_delay=harness_config.reset_settle_delay,
    )


def close_sessions(sessions: List[Session], error: Optional[BaseException] = None) -> None:
    """
    Close every session, logging its failure report first when ``error`` is set.

    A session that fails to close does not keep the others running.

    Raises:
        ZemuError: The first close failure, once every session was closed
    """
    first_error: Optional[ZemuError] = None
    for session in sessions:
        if error is not None:
            logger.error(session.failure_report(error))
        try:
            session.close()
        except ZemuError as close_error:
            logger.warning(f"[{session.name}] Close failed: {close_error}")
            if first_error is None:
                first_error = close_error

    if first_error is not None:
        raise first_error


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURE IMPLEMENTATIONS
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture(scope="session")
def harness_config() -> HarnessConfig:
    """
    Fixture: Harness configuration (session-scoped).

    Returns the global configuration, built from pytest ini options and
    environment variables in pytest_configure. Override in your conftest.py
    to customize settings:

        @pytest.fixture(scope="session")
        def harness_config():
            return HarnessConfig(method_timeout=30)
    """
    return get_default_config()


@pytest.fixture(scope="session")
def instance_pool(harness_config: HarnessConfig) -> Generator[Optional[InstancePool], None, None]:
    """
    Fixture: Emulator pool shared by the whole test run.

    Yields None when no pool sizes are configured. Every pooled instance
    is stopped when the run ends.
    """
    if not harness_config.pool_sizes:
        yield None
        return

    pool = build_pool(harness_config)
    failures = pool.initialize(harness_config.pool_sizes)
    for model, error in failures.items():
        logger.warning(f"Running {model} tests without a pool: {error}")

    yield pool

    pool.cleanup()


@pytest.fixture(scope="function")
def zemu_session(
    request, harness_config: HarnessConfig, instance_pool: Optional[InstancePool]
) -> Generator[Callable[..., Session], None, None]:
    """
    Fixture: Factory starting Sessions for the current test.

    Keyword arguments other than ``lib_elfs`` and ``config`` are
    SessionConfig fields:

        def test_reject(zemu_session):
            sim = zemu_session("bin/app_stax.elf", model="stax", start_text="Ready")
            sim.compare_snapshots_and_reject("stax-reject")

    When the test fails, the failure report of each session is logged.
    """
    sessions: List[Session] = []

    def start(elf_path, lib_elfs=None, config: Optional[SessionConfig] = None, **fields) -> Session:
        session = Session(
            elf_path,
            lib_elfs,
            config or SessionConfig(**fields),
            pool=instance_pool,
            harness=harness_config,
        )
        session.diagnostics.set_test_name(request.node.name)
        sessions.append(session)
        return session.start()

    yield start

    close_sessions(sessions, getattr(request.node, "zemu_failure", None))


# ═══════════════════════════════════════════════════════════════════════════════
# PYTEST HOOKS
# ═══════════════════════════════════════════════════════════════════════════════


def pytest_addoption(parser):
    """Register the zemu ini options."""
    parser.addini("zemu_image", "Emulator image reference", default="")
    parser.addini("zemu_host", "Host the emulator ports are published on", default="")
    parser.addini("zemu_pool", "Pool sizes, e.g. nanos=2,stax=1", default="")
    parser.addini("zemu_pool_elf", "Pool boot applications, e.g. nanos=bin/app_s.elf", default="")


def pytest_configure(config):
    """
    Configure pytest for zemu tests.

    Registers custom markers:
        zemu_requires_docker: Test launches emulator processes
    """
    config.addinivalue_line(
        "markers", "zemu_requires_docker: Test launches emulators and needs docker"
    )
    set_default_config(HarnessConfig.from_pytest_config(config))


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """Keep the exception of a failed test call for the session failure reports."""
    outcome = yield
    report = outcome.get_result()
    if report.when == "call" and report.failed and call.excinfo is not None:
        item.zemu_failure = call.excinfo.value


def pytest_collection_modifyitems(config, items):
    """
    Automatically skips tests marked with zemu_requires_docker when
    docker is not available.
    """
    if not any("zemu_requires_docker" in item.keywords for item in items):
        return

    if not DockerRuntime().is_available():
        skip_marker = pytest.mark.skip(reason="docker not available")
        for item in items:
            if "zemu_requires_docker" in item.keywords:
                item.add_marker(skip_marker)
