"""
Zemu Testing Framework - Session
================================

The Session is the central class of the testing framework. It owns one
emulator instance for the duration of a test:

1. Takes an instance from the pool, or launches one on free ports
2. Connects the command-exchange transport (retrying until start_delay)
3. Waits for the start text, then records the main menu screen and the
   initial event log as baselines
4. Exposes the synchronization and navigation engines bound to it
5. On close, releases the instance back to the pool or stops it

Usage:
    with Session("bin/app_s.elf", config=SessionConfig(model="nanos"), pool=pool) as sim:
        reply = sim.exchange_in_background(apdu)
        sim.compare_snapshots_and_approve("sign_basic")
        assert reply.result()[-2:] == b"\\x90\\x00"

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import logging
import socket
import time
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import ExitStack
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from zemu.comms.transport import ExchangeTransport, FaultRecordingTransport, SpeculosTransport
from zemu.emulator.api import Event, Snapshot, SpeculosApi
from zemu.emulator.buttons import Button, ButtonKind, ScheduleItem, get_touch_button
from zemu.emulator.instance import EmulatorInstance, LaunchConfig, generate_name
from zemu.emulator.pool import ApiFactory, InstancePool, PoolSlot
from zemu.emulator.runtime import ContainerRuntime, DockerRuntime
from zemu.errors import LaunchError, ZemuError
from zemu.models import DeviceWindow, get_model
from zemu.testkit import sequences
from zemu.testkit.config import HarnessConfig, SessionConfig, get_default_config
from zemu.testkit.diagnostics import TestDiagnostics
from zemu.testkit.exceptions import SessionSetupError, ZemuTestError
from zemu.testkit.navigation import NavigationEngine
from zemu.testkit.sync import SynchronizationEngine, TextPattern

# Configure module logger
logger = logging.getLogger(__name__)


TransportFactory = Callable[[str, int], ExchangeTransport]
PathLike = Union[str, Path]


def find_free_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for a currently unused TCP port."""
    return find_free_ports(1, host)[0]


def find_free_ports(count: int, host: str = "127.0.0.1") -> List[int]:
    """
    Ask the OS for ``count`` distinct unused TCP ports.

    Every socket stays bound until all ports are known, so the OS cannot
    hand out the same port twice.
    """
    with ExitStack() as stack:
        ports = []
        for _ in range(count):
            sock = stack.enter_context(socket.socket(socket.AF_INET, socket.SOCK_STREAM))
            sock.bind((host, 0))
            ports.append(sock.getsockname()[1])
        return ports


class Session:
    """
    One test session against one emulator instance.

    The application binaries are checked when the session is constructed;
    nothing is launched until start().

    Args:
        elf_path: Application ELF
        lib_elfs: Auxiliary library ELFs keyed by logical name
        config: Session configuration (default: SessionConfig())
        pool: Pool to take the instance from (None: always launch ad hoc)
        runtime: Process control for ad-hoc instances (default: DockerRuntime)
        harness: Harness configuration (default: global config)
        transport_factory: Opens the command-exchange transport (host, port)
        api_factory: Builds the screen/event API client (host, port, window)

    Raises:
        ConfigurationError: On a missing binary, unknown model or wrong ELF
    """

    def __init__(
        self,
        elf_path: PathLike,
        lib_elfs: Optional[Dict[str, PathLike]] = None,
        config: Optional[SessionConfig] = None,
        *,
        pool: Optional[InstancePool] = None,
        runtime: Optional[ContainerRuntime] = None,
        harness: Optional[HarnessConfig] = None,
        transport_factory: TransportFactory = SpeculosTransport,
        api_factory: ApiFactory = SpeculosApi,
    ):
        self.harness = harness or get_default_config()
        self.config = (config or SessionConfig()).resolved(self.harness)
        self.model = get_model(self.config.model)
        self.launch_config = LaunchConfig(
            elf_path=Path(elf_path),
            lib_elfs={name: Path(path) for name, path in (lib_elfs or {}).items()},
            model=self.model.name,
            custom=self.config.custom,
            sdk=self.config.sdk,
            logging=self.config.logging,
        )
        self.launch_config.validate()

        self.pool = pool
        self.runtime = runtime
        self.transport_factory = transport_factory
        self.api_factory = api_factory
        self.name = generate_name()

        self.instance: Optional[EmulatorInstance] = None
        self.slot: Optional[PoolSlot] = None
        self.api: Optional[SpeculosApi] = None
        self.transport: Optional[FaultRecordingTransport] = None
        self._sync: Optional[SynchronizationEngine] = None
        self._nav: Optional[NavigationEngine] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._closed = False

        self.diagnostics = TestDiagnostics(
            self.current_texts,
            model=self.model.name,
            instance=self.name,
            max_size=self.harness.max_action_log_size,
        )

    def __repr__(self) -> str:
        return f"Session({self.name!r}, model={self.model.name!r})"

    def __enter__(self) -> "Session":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def log(self, message: str) -> None:
        level = logging.INFO if self.config.logging else logging.DEBUG
        logger.log(level, f"[{self.name}] {message}")

    # ═══════════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════════

    def start(self) -> "Session":
        """
        Bring the session up: instance, transport, start screen, baselines.

        On failure everything acquired so far is released again.

        Returns:
            self

        Raises:
            SessionSetupError: With the phase that failed and the original cause
        """
        if self.instance is not None:
            raise ZemuTestError(f"{self.name} is already started", {"instance": self.name})

        phase = "acquire"
        try:
            self._acquire_instance()

            phase = "connect"
            self.log("Connecting to emulator")
            self.connect()
            self._build_engines()

            phase = "start_text"
            self.log("Wait for start text")
            self._sync.wait_for_text(
                self.config.start_text,
                self.config.start_timeout,
                self.config.case_sensitive,
            )

            phase = "baseline"
            self.log("Get initial snapshot and events")
            self._nav.main_menu_snapshot = self.api.snapshot()
            self._nav.initial_events = self.api.get_events()
        except Exception as e:
            self.log(f"Start failed during {phase}: {e}")
            try:
                self.close()
            except ZemuError as cleanup_error:
                logger.warning(f"[{self.name}] Cleanup after failed start failed: {cleanup_error}")
            raise SessionSetupError(
                f"{self.name}: session setup failed during {phase}: {e}",
                phase=phase,
                model=self.model.name,
                cause=e,
            ) from e

        self.log("Ready")
        return self

    def _acquire_instance(self) -> None:
        if self.config.use_pool and self.pool is not None:
            slot = self.pool.acquire(self.model, self.launch_config)
            if slot is not None:
                self.slot = slot
                self.instance = slot.instance
                self.api = slot.api
                self.name = slot.name
                self.diagnostics.instance = slot.name
                self.log("Using pooled instance")
                return
            self.log("No pooled instance available, launching one")

        runtime = self.runtime or DockerRuntime()
        transport_port, api_port = find_free_ports(2, self.harness.host)
        instance = EmulatorInstance(
            self.name,
            self.model,
            transport_port,
            api_port,
            runtime,
            self.harness.image,
        )
        self.log(f"Starting emulator on ports {instance.transport_port}/{instance.api_port}")
        instance.start(self.launch_config)
        self.instance = instance
        self.api = self.api_factory(self.harness.host, instance.api_port, self.model.window)

    def connect(self) -> FaultRecordingTransport:
        """
        Open the command-exchange transport, retrying until start_delay elapses.

        Raises:
            LaunchError: If the emulator never accepted the connection
        """
        start = time.monotonic()
        while True:
            elapsed = time.monotonic() - start
            if elapsed > self.config.start_delay:
                raise LaunchError(
                    f"Timeout waiting to connect to {self.name}",
                    instance=self.name,
                    model=self.model.name,
                )
            try:
                inner = self.transport_factory(self.harness.host, self.instance.transport_port)
                break
            except OSError as e:
                self.log(f"WAIT {elapsed:.1f}s - {e}")
            time.sleep(self.harness.key_delay)

        self.transport = FaultRecordingTransport(inner)
        return self.transport

    def _build_engines(self) -> None:
        self._sync = SynchronizationEngine(
            self.api,
            self.transport,
            poll_interval=self.harness.poll_interval,
            wait_timeout=self.harness.wait_timeout,
            method_timeout=self.harness.method_timeout,
            log=self.log,
        )
        self._nav = NavigationEngine(
            self.api,
            self._sync,
            self.model,
            self.config,
            snapshots_root=self.harness.snapshots_root,
            key_delay=self.harness.key_delay,
            method_timeout=self.harness.method_timeout,
            diagnostics=self.diagnostics,
            log=self.log,
        )

    def close(self) -> None:
        """
        Release the instance to the pool, or stop it. Safe to call twice.

        Raises:
            LaunchError: If an ad-hoc instance could not be stopped
        """
        if self._closed:
            return
        self._closed = True
        self.log("Close")

        try:
            if self._executor is not None:
                self._executor.shutdown(wait=False)
            if self.transport is not None:
                self.transport.close()
        finally:
            if self.slot is not None:
                self.pool.release(self.slot)
                self.slot = None
            elif self.instance is not None:
                try:
                    self.instance.stop()
                finally:
                    if self.api is not None:
                        self.api.close()

    @property
    def is_started(self) -> bool:
        return self._nav is not None and not self._closed

    @property
    def sync(self) -> SynchronizationEngine:
        self._require_started()
        return self._sync

    @property
    def nav(self) -> NavigationEngine:
        self._require_started()
        return self._nav

    def _require_started(self) -> None:
        if not self.is_started:
            raise ZemuTestError(f"{self.name} is not started", {"instance": self.name})

    # ═══════════════════════════════════════════════════════════════════════════
    # TRANSPORT
    # ═══════════════════════════════════════════════════════════════════════════

    def get_transport(self) -> FaultRecordingTransport:
        self._require_started()
        return self.transport

    def exchange(self, apdu: bytes) -> bytes:
        """Exchange a raw APDU; the reply ends with the status word."""
        return self.get_transport().exchange(apdu)

    def send(self, cla: int, ins: int, p1: int, p2: int, data: bytes = b"",
             status_list: Iterable[int] = (0x9000,)) -> bytes:
        """
        Build, exchange and check a short APDU.

        Raises:
            TransportFault: If the status word is not in ``status_list``
        """
        return self.get_transport().send(cla, ins, p1, p2, data, status_list)

    def exchange_in_background(self, apdu: bytes) -> "Future[bytes]":
        """
        Run an exchange on a worker thread.

        The device usually holds a signing request until the user confirms
        it on screen, so the test drives the UI while the future is pending.
        A critical status word in the reply aborts the waits running
        meanwhile.
        """
        transport = self.get_transport()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=self.name)
        return self._executor.submit(transport.exchange, apdu)

    # ═══════════════════════════════════════════════════════════════════════════
    # SCREEN AND EVENTS
    # ═══════════════════════════════════════════════════════════════════════════

    def current_texts(self) -> List[str]:
        """Texts on screen now, or an empty list if the API is unreachable."""
        if self._sync is None:
            return []
        return [event.text for event in self._sync.events_or_none() or []]

    def snapshot(self, filename: Optional[PathLike] = None) -> Snapshot:
        return self.nav.snapshot(Path(filename) if filename else None)

    def get_main_menu_snapshot(self) -> Snapshot:
        return self.nav.main_menu_snapshot

    def get_window_rect(self) -> DeviceWindow:
        return self.model.window

    def get_events(self) -> List[Event]:
        self._require_started()
        return self.api.get_events()

    def delete_events(self) -> None:
        self._require_started()
        self.api.delete_events()

    def dump_events(self) -> List[Event]:
        """Log every event currently on screen and return them."""
        events = self.get_events()
        for event in events:
            self.log(f"{event.text!r} @ ({event.x},{event.y},{event.w},{event.h})")
        return events

    # ═══════════════════════════════════════════════════════════════════════════
    # WAITS
    # ═══════════════════════════════════════════════════════════════════════════

    def wait_for_text(self, pattern: TextPattern, timeout: Optional[float] = None,
                      case_sensitive: bool = False) -> Event:
        with self.diagnostics.record("wait_for_text", str(pattern)):
            return self.sync.wait_for_text(pattern, timeout, case_sensitive)

    def wait_until_screen_is(self, target: Snapshot, timeout: Optional[float] = None) -> Snapshot:
        with self.diagnostics.record("wait_until_screen_is"):
            return self.sync.wait_until_screen_is(target, timeout)

    def wait_until_screen_is_not(self, baseline: Snapshot, timeout: Optional[float] = None) -> Snapshot:
        with self.diagnostics.record("wait_until_screen_is_not"):
            return self.sync.wait_until_screen_is_not(baseline, timeout)

    def wait_for_screen_changes(self, baseline: Optional[List[Event]] = None,
                                timeout: Optional[float] = None) -> List[Event]:
        """Wait for the event log to differ from ``baseline`` (default: the initial events)."""
        baseline = self.nav.initial_events if baseline is None else baseline
        with self.diagnostics.record("wait_for_screen_changes"):
            return self.sync.wait_for_screen_changes(baseline, timeout)

    # ═══════════════════════════════════════════════════════════════════════════
    # ACTIONS
    # ═══════════════════════════════════════════════════════════════════════════

    def click_left(self, filename: Optional[PathLike] = None, wait_for_screen_update: bool = True) -> Snapshot:
        return self.nav.click_left(Path(filename) if filename else None, wait_for_screen_update)

    def click_right(self, filename: Optional[PathLike] = None, wait_for_screen_update: bool = True) -> Snapshot:
        return self.nav.click_right(Path(filename) if filename else None, wait_for_screen_update)

    def click_both(self, filename: Optional[PathLike] = None, wait_for_screen_update: bool = True) -> Snapshot:
        return self.nav.click_both(Path(filename) if filename else None, wait_for_screen_update)

    def finger_touch(self, button: Union[Button, ButtonKind], filename: Optional[PathLike] = None,
                     wait_for_screen_update: bool = True) -> Snapshot:
        """Touch a button, given by coordinates or by kind on this model's table."""
        if isinstance(button, ButtonKind):
            button = get_touch_button(self.model, button)
        return self.nav.finger_touch(button, Path(filename) if filename else None, wait_for_screen_update)

    # ═══════════════════════════════════════════════════════════════════════════
    # WALKS AND COMPARISONS
    # ═══════════════════════════════════════════════════════════════════════════

    def navigate(self, testcase: str, schedule: Iterable[ScheduleItem], wait_for_screen_update: bool = True,
                 take_snapshots: bool = True, start_index: int = 0, wait_for_events_change: bool = False) -> int:
        return self.nav.navigate(
            testcase, schedule, wait_for_screen_update, take_snapshots, start_index, wait_for_events_change
        )

    def navigate_until_text(self, testcase: str, pattern: TextPattern, wait_for_screen_update: bool = True,
                            take_snapshots: bool = True, start_index: int = 0, timeout: Optional[float] = None,
                            run_last_action: bool = True, wait_for_initial_events_change: bool = True,
                            blind_signing: bool = False) -> int:
        return self.nav.navigate_until_text(
            testcase,
            pattern,
            wait_for_screen_update,
            take_snapshots,
            start_index,
            timeout,
            run_last_action,
            wait_for_initial_events_change,
            blind_signing,
        )

    def compare_snapshots(self, testcase: str, last_index: int) -> bool:
        return self.nav.compare_snapshots(testcase, last_index)

    def take_snapshot_and_overwrite(self, testcase: str, index: int) -> Snapshot:
        return self.nav.take_snapshot_and_overwrite(testcase, index)

    def navigate_and_compare_snapshots(self, testcase: str, schedule: Iterable[ScheduleItem],
                                       wait_for_screen_update: bool = True, start_index: int = 0) -> bool:
        return self.nav.navigate_and_compare_snapshots(testcase, schedule, wait_for_screen_update, start_index)

    def navigate_and_compare_until_text(self, testcase: str, pattern: TextPattern,
                                        wait_for_screen_update: bool = True, start_index: int = 0,
                                        timeout: Optional[float] = None,
                                        wait_for_initial_events_change: bool = True) -> bool:
        return self.nav.navigate_and_compare_until_text(
            testcase, pattern, wait_for_screen_update, start_index, timeout, wait_for_initial_events_change
        )

    def compare_snapshots_and_approve(self, testcase: str, wait_for_screen_update: bool = True,
                                      start_index: int = 0, timeout: Optional[float] = None,
                                      blind_signing: bool = False) -> bool:
        return self.nav.compare_snapshots_and_approve(
            testcase, wait_for_screen_update, start_index, timeout, blind_signing
        )

    def compare_snapshots_and_reject(self, testcase: str, wait_for_screen_update: bool = True,
                                     start_index: int = 0, timeout: Optional[float] = None,
                                     blind_signing: bool = False) -> bool:
        return self.nav.compare_snapshots_and_reject(
            testcase, wait_for_screen_update, start_index, timeout, blind_signing
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # SEQUENCES
    # ═══════════════════════════════════════════════════════════════════════════

    def main_menu_navigation(self, testcase: str, wait_for_screen_update: bool = True, start_index: int = 0) -> int:
        return sequences.main_menu_navigation(self.nav, testcase, wait_for_screen_update, start_index)

    def toggle_expert_mode(self, testcase: str = "", take_snapshots: bool = False, start_index: int = 0) -> int:
        return sequences.toggle_expert_mode(self.nav, testcase, take_snapshots, start_index)

    def enable_special_mode(self, mode_text: str, **kwargs) -> int:
        """See zemu.testkit.sequences.enable_special_mode."""
        return sequences.enable_special_mode(self.nav, mode_text, **kwargs)

    # ═══════════════════════════════════════════════════════════════════════════
    # DIAGNOSTICS
    # ═══════════════════════════════════════════════════════════════════════════

    def failure_report(self, error: Exception) -> str:
        """Failure report with the recent actions and the texts on screen."""
        snapshot_path = getattr(error, "candidate", None)
        return self.diagnostics.format_failure_report(error, Path(snapshot_path) if snapshot_path else None)
