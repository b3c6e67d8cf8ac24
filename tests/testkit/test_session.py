"""
Tests for Sessions
==================

- Setup phases and their failures
- Pooled and ad-hoc instances
- Transport access, including background exchanges
- Delegation to the engines

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import time

import pytest

from zemu.emulator.buttons import ButtonKind
from zemu.emulator.instance import LaunchConfig
from zemu.emulator.pool import InstancePool
from zemu.errors import ConfigurationError, LaunchError, TransportFault
from zemu.testkit.config import SessionConfig
from zemu.testkit.exceptions import SessionSetupError, WaitTimeoutError, ZemuTestError
from zemu.testkit.session import Session, find_free_port, find_free_ports

from conftest import FakeRuntime, FakeSpeculosApi, FakeTransport, fault, screen_png, write_golden


MAIN_MENU = screen_png(0)


class BootingRuntime(FakeRuntime):
    """FakeRuntime whose every launched process boots to ``boot()``."""

    def __init__(self, boot):
        super().__init__()
        self.boot = boot

    def start_process(self, spec):
        handle = super().start_process(spec)
        self.boot()
        return handle


class Harness:
    """Fakes behind one session: runtime, screen API and transport."""

    def __init__(self, *texts):
        self.api = FakeSpeculosApi()
        self.runtime = BootingRuntime(lambda: self.api.show(MAIN_MENU, *texts))
        self.transports = []
        self.refusals = 0

    def api_factory(self, host, port, window):
        self.api.host, self.api.port, self.api.window = host, port, window
        return self.api

    def transport_factory(self, host, port):
        if self.refusals:
            self.refusals -= 1
            raise ConnectionRefusedError("not listening yet")
        transport = FakeTransport(host, port)
        self.transports.append(transport)
        return transport

    def session(self, elf, pool=None, **fields):
        return Session(
            elf,
            config=SessionConfig(**fields),
            pool=pool,
            runtime=self.runtime,
            transport_factory=self.transport_factory,
            api_factory=self.api_factory,
        )


@pytest.fixture
def harness():
    return Harness("Ready", "Version 1.0")


# ═══════════════════════════════════════════════════════════════════════════════
# CONSTRUCTION
# ═══════════════════════════════════════════════════════════════════════════════


class TestConstruction:
    """Tests for checks done before anything is launched."""

    def test_missing_elf(self, harness, tmp_path):
        with pytest.raises(ConfigurationError, match="did you compile"):
            harness.session(tmp_path / "missing.elf")
        assert harness.runtime.started == []

    def test_wrong_model_elf(self, harness, stax_elf):
        with pytest.raises(ConfigurationError):
            harness.session(stax_elf, model="nanos")

    def test_missing_library(self, harness, nanos_elf, tmp_path):
        with pytest.raises(ConfigurationError):
            Session(nanos_elf, {"Ethereum": tmp_path / "eth.elf"}, runtime=harness.runtime)

    def test_config_resolved(self, harness, nanos_elf):
        session = harness.session(nanos_elf)
        assert session.config.start_text == "Ready"
        assert session.name.startswith("zemu-")
        assert not session.is_started

    def test_engines_need_start(self, harness, nanos_elf):
        session = harness.session(nanos_elf)
        with pytest.raises(ZemuTestError, match="not started"):
            session.nav
        assert session.current_texts() == []

    def test_free_port(self):
        assert 0 < find_free_port() < 65536

    def test_free_ports_distinct(self):
        ports = find_free_ports(8)
        assert len(set(ports)) == 8
        assert all(0 < port < 65536 for port in ports)


# ═══════════════════════════════════════════════════════════════════════════════
# START / CLOSE
# ═══════════════════════════════════════════════════════════════════════════════


class TestStart:
    """Tests for bringing a session up."""

    def test_start_records_baselines(self, harness, nanos_elf):
        with harness.session(nanos_elf) as session:
            assert session.is_started
            assert session.get_main_menu_snapshot().data == MAIN_MENU
            assert [e.text for e in session.nav.initial_events] == ["Ready", "Version 1.0"]
            assert session.get_window_rect().height == 32
            assert len(harness.runtime.started) == 1

    def test_ad_hoc_ports(self, harness, nanos_elf):
        with harness.session(nanos_elf) as session:
            assert harness.api.port == session.instance.api_port
            assert harness.transports[0].port == session.instance.transport_port
            assert session.instance.transport_port != session.instance.api_port

    def test_connect_retries(self, harness, nanos_elf):
        harness.refusals = 3
        with harness.session(nanos_elf) as session:
            assert session.get_transport().inner is harness.transports[0]

    def test_connect_gives_up(self, harness, nanos_elf):
        harness.refusals = 10_000
        session = harness.session(nanos_elf, start_delay=0.05)
        with pytest.raises(SessionSetupError) as exc_info:
            session.start()
        assert exc_info.value.phase == "connect"
        assert isinstance(exc_info.value.cause, LaunchError)
        assert len(harness.runtime.stopped) == 1

    def test_launch_failure(self, harness, nanos_elf):
        harness.runtime.fail_start.append("zemu-")
        with pytest.raises(SessionSetupError) as exc_info:
            harness.session(nanos_elf).start()
        assert exc_info.value.phase == "acquire"

    def test_start_text_never_shown(self, harness, nanos_elf):
        session = harness.session(nanos_elf, start_text="Welcome", start_timeout=0.05)
        with pytest.raises(SessionSetupError) as exc_info:
            session.start()
        assert exc_info.value.phase == "start_text"
        assert isinstance(exc_info.value.cause, WaitTimeoutError)
        assert len(harness.runtime.stopped) == 1
        assert harness.api.closed
        assert harness.transports[0].closed

    def test_start_text_case_sensitive(self, harness, nanos_elf):
        session = harness.session(nanos_elf, start_text="READY", case_sensitive=True, start_timeout=0.05)
        with pytest.raises(SessionSetupError):
            session.start()

    def test_start_twice(self, harness, nanos_elf):
        with harness.session(nanos_elf) as session:
            with pytest.raises(ZemuTestError, match="already started"):
                session.start()

    def test_close_is_idempotent(self, harness, nanos_elf):
        session = harness.session(nanos_elf).start()
        session.close()
        session.close()
        assert len(harness.runtime.stopped) == 1
        assert not session.is_started

    def test_close_stop_failure_surfaces(self, harness, nanos_elf):
        session = harness.session(nanos_elf).start()
        harness.runtime.fail_stop = True
        with pytest.raises(LaunchError):
            session.close()
        assert harness.api.closed


class TestPooledSession:
    """Tests for sessions running on pooled instances."""

    @pytest.fixture
    def pool(self, harness, nanos_elf):
        pool = InstancePool(
            harness.runtime,
            {"nanos": nanos_elf},
            api_factory=harness.api_factory,
            ready_poll=0.01,
            settle_delay=0,
        )
        pool.initialize({"nanos": 1})
        yield pool
        pool.cleanup()

    def test_uses_pooled_instance(self, harness, pool, nanos_elf):
        with harness.session(nanos_elf, pool=pool) as session:
            assert session.slot is not None
            assert session.name.startswith("zemu-pool-nanos-0-")
            assert session.diagnostics.instance == session.name
            assert pool.status()["nanos"]["busy"] == 1
        assert pool.status()["nanos"]["available"] == 1

    def test_release_resets_events(self, harness, pool, nanos_elf):
        with harness.session(nanos_elf, pool=pool):
            pass
        assert harness.api.events == []

    def test_pool_exhausted_launches_ad_hoc(self, harness, pool, nanos_elf):
        pool.acquire("nanos", LaunchConfig(nanos_elf))
        with harness.session(nanos_elf, pool=pool) as session:
            assert session.slot is None
            assert session.instance.name == session.name

    def test_use_pool_disabled(self, harness, pool, nanos_elf):
        with harness.session(nanos_elf, pool=pool, use_pool=False) as session:
            assert session.slot is None
        assert pool.status()["nanos"]["available"] == 1


# ═══════════════════════════════════════════════════════════════════════════════
# TRANSPORT
# ═══════════════════════════════════════════════════════════════════════════════


class TestTransport:
    """Tests for command exchange through a session."""

    def test_exchange(self, harness, nanos_elf):
        with harness.session(nanos_elf) as session:
            harness.transports[0].replies.append(b"\x01\x02\x90\x00")
            assert session.exchange(b"\xE0\x01\x00\x00\x00") == b"\x01\x02\x90\x00"

    def test_send_records_fault(self, harness, nanos_elf):
        with harness.session(nanos_elf) as session:
            harness.transports[0].replies.append(b"\x6B\x00")
            with pytest.raises(TransportFault):
                session.send(0xE0, 0x02, 0x00, 0x00)
            assert session.get_transport().last_fault.status_code == 0x6B00

    def test_background_exchange(self, harness, nanos_elf):
        with harness.session(nanos_elf) as session:
            future = session.exchange_in_background(b"\xE0\x01\x00\x00\x00")
            assert future.result(timeout=2) == b"\x90\x00"

    def test_background_critical_fault_aborts_wait(self, harness, nanos_elf):
        with harness.session(nanos_elf) as session:
            harness.transports[0].replies.append(b"\x6D\x00")
            future = session.exchange_in_background(b"\xE0\xFF\x00\x00\x00")
            assert future.result(timeout=2) == b"\x6D\x00"

            start = time.monotonic()
            with pytest.raises(TransportFault) as exc_info:
                session.wait_for_text("APPROVE", timeout=5)
            assert exc_info.value.status_code == 0x6D00
            assert time.monotonic() - start < 1

    def test_background_recoverable_fault_keeps_waiting(self, harness, nanos_elf):
        with harness.session(nanos_elf) as session:
            harness.transports[0].replies.append(fault(0, critical=False))
            future = session.exchange_in_background(b"\xE0\x02\x00\x00\x00")
            with pytest.raises(TransportFault):
                future.result(timeout=2)
            assert session.wait_for_text("ready").text == "Ready"

    def test_transport_needs_start(self, harness, nanos_elf):
        with pytest.raises(ZemuTestError):
            harness.session(nanos_elf).get_transport()


# ═══════════════════════════════════════════════════════════════════════════════
# DELEGATION
# ═══════════════════════════════════════════════════════════════════════════════


class TestDelegation:
    """Tests for the session surface over the engines."""

    def test_wait_for_text_logged(self, harness, nanos_elf):
        with harness.session(nanos_elf) as session:
            assert session.wait_for_text("version").text == "Version 1.0"
            entry = session.diagnostics.action_log[-1]
            assert (entry.action_type, entry.action_args, entry.result) == ("wait_for_text", "version", "success")

    def test_wait_for_screen_changes_uses_initial_events(self, harness, nanos_elf):
        with harness.session(nanos_elf) as session:
            with pytest.raises(WaitTimeoutError):
                session.wait_for_screen_changes(timeout=0.05)

    def test_navigate_and_compare(self, harness, nanos_elf, fast_harness):
        images = harness.api.walk("Address", "APPROVE", "Ready")
        write_golden(fast_harness.snapshots_root, "s-addr", [MAIN_MENU] + images)
        with harness.session(nanos_elf) as session:
            assert session.navigate_and_compare_snapshots("s-addr", [2, 0])

    def test_approve(self, harness, nanos_elf, fast_harness):
        review = screen_png(90)
        images = harness.api.walk("Amount", "APPROVE", "Ready")
        write_golden(fast_harness.snapshots_root, "s-sign", [review] + images)
        with harness.session(nanos_elf) as session:
            # the signing request takes the app off its main menu
            harness.api.show(review, "Review", "Transaction")
            assert session.compare_snapshots_and_approve("s-sign")

    def test_finger_touch_by_kind(self, stax_elf):
        harness = Harness("This application enables")
        harness.api.walk("Settings")
        with harness.session(stax_elf, model="stax") as session:
            session.finger_touch(ButtonKind.INFO)
        assert harness.api.actions == [("finger", 335, 65, 0.25, None)]

    def test_events(self, harness, nanos_elf):
        with harness.session(nanos_elf) as session:
            assert [e.text for e in session.dump_events()] == ["Ready", "Version 1.0"]
            session.delete_events()
            assert session.get_events() == []

    def test_failure_report(self, harness, nanos_elf):
        with harness.session(nanos_elf) as session:
            session.click_right(wait_for_screen_update=False)
            report = session.failure_report(RuntimeError("walk failed"))
        assert session.name in report
        assert "RightClick" in report
