"""
Tests for the Emulator Instance Pool
====================================

- Pool initialization, including partial failures
- Exclusive acquire/release
- State reset and eviction
- Stale process cleanup and teardown

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import threading
from typing import List

import pytest

from zemu.emulator.instance import LaunchConfig
from zemu.emulator.pool import InstancePool
from zemu.emulator.runtime import ProcessHandle
from zemu.errors import ConfigurationError, LaunchError
from zemu.models import MODELS

from conftest import FakeSpeculosApi, png_bytes


class ApiRecorder:
    """api_factory that keeps every FakeSpeculosApi it builds."""

    def __init__(self):
        self.apis: List[FakeSpeculosApi] = []

    def __call__(self, host, port, window):
        api = FakeSpeculosApi(host, port, window).show(png_bytes(), "Ready")
        self.apis.append(api)
        return api


@pytest.fixture
def apis():
    return ApiRecorder()


@pytest.fixture
def pool(runtime, apis, nanos_elf, stax_elf):
    pool = InstancePool(
        runtime,
        {"nanos": nanos_elf, "stax": stax_elf},
        api_factory=apis,
        ready_timeout=0.2,
        ready_poll=0.01,
        settle_delay=0,
    )
    yield pool
    pool.cleanup()


# =============================================================================
# Initialization
# =============================================================================

class TestInitialize:
    """Tests for InstancePool.initialize."""

    def test_starts_requested_counts(self, pool, runtime):
        assert pool.initialize({"nanos": 2, "stax": 1}) == {}
        assert pool.status() == {
            "nanos": {"total": 2, "available": 2, "busy": 0},
            "stax": {"total": 1, "available": 1, "busy": 0},
        }
        assert len(runtime.started) == 3

    def test_slots_use_model_port_ranges(self, pool, runtime):
        pool.initialize({"nanos": 2, "stax": 1})
        ports = sorted(tuple(spec.ports.values()) for spec in runtime.started)
        assert ports == [(10000, 15000), (10001, 15001), (10300, 15300)]

    def test_zero_count_skipped(self, pool):
        pool.initialize({"nanos": 0})
        assert pool.status() == {}

    def test_failing_model_does_not_stop_others(self, pool, runtime):
        runtime.fail_start.append("zemu-pool-stax")
        failures = pool.initialize({"nanos": 1, "stax": 1})
        assert list(failures) == ["stax"]
        assert isinstance(failures["stax"], LaunchError)
        assert pool.has_pool("nanos")
        assert not pool.has_pool("stax")

    def test_partial_failure_keeps_model_pooled(self, pool, runtime):
        runtime.fail_start.append("zemu-pool-nanos-1-")
        failures = pool.initialize({"nanos": 2})
        assert failures == {}
        assert pool.status()["nanos"]["total"] == 1

    def test_missing_bootstrap_elf(self, pool):
        failures = pool.initialize({"flex": 1})
        assert isinstance(failures["flex"], ConfigurationError)

    def test_unknown_model(self, pool):
        failures = pool.initialize({"nanoz": 1})
        assert isinstance(failures["nanoz"], ConfigurationError)

    def test_instance_never_ready_is_stopped(self, runtime, nanos_elf):
        def never_ready(host, port, window):
            api = FakeSpeculosApi(host, port, window)
            api.ready = False
            return api

        pool = InstancePool(runtime, {"nanos": nanos_elf}, api_factory=never_ready,
                            ready_timeout=0.05, ready_poll=0.01, settle_delay=0)
        failures = pool.initialize({"nanos": 1})
        assert isinstance(failures["nanos"], LaunchError)
        assert len(runtime.stopped) == 1

    def test_removes_stale_processes_first(self, pool, runtime):
        stale = ProcessHandle("dead", "zemu-1234abcd")
        runtime.stale = [stale, ProcessHandle("other", "postgres")]
        pool.initialize({"nanos": 1})
        assert runtime.removed == [(stale, True)]


# =============================================================================
# Acquire / Release
# =============================================================================

class TestAcquire:
    """Tests for exclusive slot handout."""

    def test_n_acquisitions_then_none(self, pool, nanos_elf):
        pool.initialize({"nanos": 2})
        payload = LaunchConfig(nanos_elf)
        first = pool.acquire("nanos", payload)
        second = pool.acquire("nanos", payload)
        assert first is not None and second is not None
        assert first is not second
        assert first.instance.transport_port != second.instance.transport_port
        assert pool.acquire("nanos", payload) is None

    def test_no_pool_returns_none(self, pool, stax_elf):
        assert pool.acquire("stax", LaunchConfig(stax_elf, model="stax")) is None

    def test_acquire_loads_payload(self, pool, runtime, nanos_elf, tmp_path):
        pool.initialize({"nanos": 1})
        app = tmp_path / "other" / "app_s.elf"
        app.parent.mkdir()
        app.write_bytes(nanos_elf.read_bytes())
        slot = pool.acquire("nanos", LaunchConfig(app))
        assert slot.instance.launch_config.elf_path == app
        assert len(runtime.started) == 2
        assert runtime.started[-1].binds[0][0] == str(app.resolve().parent)

    def test_payload_for_other_model(self, pool, stax_elf):
        pool.initialize({"nanos": 1})
        with pytest.raises(ConfigurationError):
            pool.acquire("nanos", LaunchConfig(stax_elf, model="stax"))

    def test_concurrent_acquire_is_exclusive(self, pool, nanos_elf):
        pool.initialize({"nanos": 3})
        payload = LaunchConfig(nanos_elf)
        results = []
        lock = threading.Lock()

        def take():
            slot = pool.acquire("nanos", payload)
            with lock:
                results.append(slot)

        threads = [threading.Thread(target=take) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        taken = [s for s in results if s is not None]
        assert len(taken) == 3
        assert len({id(s) for s in taken}) == 3

    def test_release_then_reacquire_has_empty_events(self, pool, nanos_elf):
        pool.initialize({"nanos": 1})
        payload = LaunchConfig(nanos_elf)
        slot = pool.acquire("nanos", payload)
        slot.api.show(png_bytes(), "Review", "Transaction")
        pool.release(slot)
        assert pool.status()["nanos"]["available"] == 1

        again = pool.acquire("nanos", payload)
        assert again is slot
        assert again.api.get_events() == []

    def test_failed_restart_releases_slot(self, pool, runtime, nanos_elf):
        pool.initialize({"nanos": 1})
        runtime.fail_start.append("zemu-pool-nanos")
        with pytest.raises(LaunchError):
            pool.acquire("nanos", LaunchConfig(nanos_elf))
        # the slot was not running any more, so the release evicted it
        assert not pool.has_pool("nanos")


class TestEviction:
    """Tests for slots whose state cannot be reset."""

    def test_reset_failure_evicts(self, pool, runtime, nanos_elf):
        pool.initialize({"nanos": 2})
        slot = pool.acquire("nanos", LaunchConfig(nanos_elf))
        slot.api.fail_events = True
        pool.release(slot)
        assert pool.status()["nanos"]["total"] == 1
        assert slot.instance.handle is None
        assert slot.api.closed

    def test_evicted_slot_never_handed_out(self, pool, nanos_elf):
        pool.initialize({"nanos": 1})
        payload = LaunchConfig(nanos_elf)
        slot = pool.acquire("nanos", payload)
        slot.api.fail_screenshot = True
        pool.release(slot)
        assert pool.acquire("nanos", payload) is None


# =============================================================================
# Teardown
# =============================================================================

class TestCleanup:
    """Tests for stale cleanup and pool teardown."""

    def test_cleanup_stops_everything(self, pool, runtime, apis):
        pool.initialize({"nanos": 2, "stax": 1})
        pool.cleanup()
        assert pool.status() == {}
        assert len(runtime.stopped) == 3
        assert all(api.closed for api in apis.apis)

    def test_cleanup_is_idempotent(self, pool, runtime):
        pool.initialize({"nanos": 1})
        pool.cleanup()
        pool.cleanup()
        assert len(runtime.stopped) == 1

    def test_cleanup_tolerates_stop_failures(self, pool, runtime):
        pool.initialize({"nanos": 2})
        runtime.fail_stop = True
        pool.cleanup()
        assert pool.status() == {}

    def test_cleanup_stale_counts(self, pool, runtime):
        runtime.stale = [ProcessHandle("a", "zemu-1"), ProcessHandle("b", "zemu-pool-nanos-0-x")]
        assert pool.cleanup_stale() == 2

    def test_context_manager(self, runtime, nanos_elf, apis):
        with InstancePool(runtime, {"nanos": nanos_elf}, api_factory=apis,
                          ready_poll=0.01, settle_delay=0) as pool:
            pool.initialize({"nanos": 1})
        assert len(runtime.stopped) == 1

    def test_max_slots(self, pool):
        failures = pool.initialize({"nanos": 101})
        assert isinstance(failures["nanos"], ConfigurationError)

    def test_status_counts_busy(self, pool, nanos_elf):
        pool.initialize({"nanos": 2})
        pool.acquire("nanos", LaunchConfig(nanos_elf))
        assert pool.status()["nanos"] == {"total": 2, "available": 1, "busy": 1}

    def test_model_spec_accepts_device_model(self, pool, nanos_elf):
        pool.initialize({"nanos": 1})
        assert pool.acquire(MODELS["nanos"], LaunchConfig(nanos_elf)) is not None
