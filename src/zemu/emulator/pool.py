"""
Emulator Instance Pool
======================

Launching an emulator is the dominant cost of a test run. The pool starts
a fixed number of instances per device model once, then hands them out to
sessions and takes them back, so the launch cost is paid once per run
instead of once per test.

Lifecycle:

    pool = InstancePool(DockerRuntime(), bootstrap_elfs={"nanos": "bin/app_s.elf"})
    pool.initialize({"nanos": 2, "stax": 1})

    slot = pool.acquire("nanos", LaunchConfig(elf_path="bin/app_s.elf"))
    if slot is None:
        ...                      # no pool or every slot busy: launch ad hoc
    ...
    pool.release(slot)

    pool.cleanup()

Invariants:

- Slot ``i`` of a model binds ``transport_port_base + i`` and
  ``api_port_base + i``; port ranges never overlap between models.
- A slot is either available or held by exactly one session. The flag is
  flipped under a lock before any I/O happens.
- A slot whose state cannot be reset is evicted (stopped and removed),
  never handed out again.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import requests

from zemu.emulator.api import SpeculosApi
from zemu.emulator.instance import (
    BASE_NAME,
    DEFAULT_EMU_IMAGE,
    EmulatorInstance,
    LaunchConfig,
    generate_name,
)
from zemu.emulator.runtime import ContainerRuntime
from zemu.errors import ConfigurationError, LaunchError, ResetError, ZemuError
from zemu.models import DeviceModel, DeviceWindow, get_model

# Configure module logger
logger = logging.getLogger(__name__)


DEFAULT_HOST = "127.0.0.1"

# Size of each model's port range
MAX_SLOTS_PER_MODEL = 100

DEFAULT_READY_TIMEOUT = 20.0
DEFAULT_READY_POLL = 0.5
DEFAULT_SETTLE_DELAY = 1.0

ApiFactory = Callable[[str, int, DeviceWindow], SpeculosApi]


# =============================================================================
# Pool Slot
# =============================================================================

@dataclass
class PoolSlot:
    """
    A pooled instance plus availability bookkeeping.

    Attributes:
        instance: The running emulator
        api: Screen/event API client of the instance
        available: True when no session holds the slot
        created_at: Wall-clock creation time
        last_used: Wall-clock time of the last acquire
    """
    instance: EmulatorInstance
    api: SpeculosApi
    available: bool = True
    created_at: float = field(default_factory=time.time)
    last_used: float = field(default_factory=time.time)

    @property
    def name(self) -> str:
        return self.instance.name

    @property
    def model(self) -> DeviceModel:
        return self.instance.model


# =============================================================================
# Instance Pool
# =============================================================================

class InstancePool:
    """
    Per-model pools of pre-started emulator instances.

    Args:
        runtime: Process control capability
        bootstrap_elfs: Application ELF each model's instances boot with,
            keyed by model name; the real payload is loaded on acquire
        host: Host the emulator ports are published on
        image: Emulator image reference
        api_factory: Builds the API client for an instance (host, port, window)
        ready_timeout: Seconds an instance may take to answer the screen API
        ready_poll: Seconds between readiness checks
        settle_delay: Seconds to wait after a state reset
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        bootstrap_elfs: Optional[Dict[str, Union[str, Path]]] = None,
        *,
        host: str = DEFAULT_HOST,
        image: str = DEFAULT_EMU_IMAGE,
        api_factory: ApiFactory = SpeculosApi,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        ready_poll: float = DEFAULT_READY_POLL,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ):
        self.runtime = runtime
        self.bootstrap_elfs = {k.lower(): Path(v) for k, v in (bootstrap_elfs or {}).items()}
        self.host = host
        self.image = image
        self.api_factory = api_factory
        self.ready_timeout = ready_timeout
        self.ready_poll = ready_poll
        self.settle_delay = settle_delay

        self._pools: Dict[str, List[PoolSlot]] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "InstancePool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    # ═══════════════════════════════════════════════════════════════════════════
    # INITIALIZATION
    # ═══════════════════════════════════════════════════════════════════════════

    def initialize(self, counts: Dict[str, int]) -> Dict[str, ZemuError]:
        """
        Launch ``counts[model]`` instances per model, all concurrently.

        Stale processes from a previous run are removed first. A failed
        launch only loses that one instance; a model whose every launch
        failed gets no pool but does not stop the other models.

        Args:
            counts: Number of instances per model name

        Returns:
            Models that ended up without a pool, mapped to the last error
        """
        self.cleanup_stale()

        failures: Dict[str, ZemuError] = {}
        jobs = []
        for model_name, count in counts.items():
            if count <= 0:
                continue
            try:
                model, config = self._bootstrap_config(model_name, count)
            except ConfigurationError as e:
                logger.warning(f"Not pooling {model_name}: {e}")
                failures[model_name] = e
                continue
            jobs.extend((model, config, index) for index in range(count))

        if not jobs:
            return failures

        started: Dict[str, List[PoolSlot]] = {}
        with ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="zemu-pool") as executor:
            futures = {
                executor.submit(self._launch_slot, model, config, index): (model, index)
                for model, config, index in jobs
            }
            for future in as_completed(futures):
                model, index = futures[future]
                try:
                    slot = future.result()
                except ZemuError as e:
                    logger.warning(f"Failed to create pooled {model.name} instance #{index}: {e}")
                    failures[model.name] = e
                    continue
                started.setdefault(model.name, []).append(slot)

        with self._lock:
            for model_name, slots in started.items():
                slots.sort(key=lambda s: s.instance.transport_port)
                self._pools[model_name] = slots
                failures.pop(model_name, None)
                logger.info(f"Pool {model_name}: {len(slots)} instance(s) ready")

        for model_name, error in failures.items():
            logger.warning(f"No instance of {model_name} could be pooled: {error}")
        return failures

    def _bootstrap_config(self, model_name: str, count: int) -> tuple:
        model = get_model(model_name)
        if count > MAX_SLOTS_PER_MODEL:
            raise ConfigurationError(
                f"at most {MAX_SLOTS_PER_MODEL} {model.name} instances can be pooled",
                {"model": model.name, "count": count},
            )
        elf = self.bootstrap_elfs.get(model.name)
        if elf is None:
            raise ConfigurationError(
                f"no bootstrap ELF configured for {model.name}", {"model": model.name}
            )
        config = LaunchConfig(elf_path=elf, model=model.name)
        config.validate()
        return model, config

    def _launch_slot(self, model: DeviceModel, config: LaunchConfig, index: int) -> PoolSlot:
        transport_port, api_port = model.pool_ports(index)
        instance = EmulatorInstance(
            generate_name(f"{BASE_NAME}pool-{model.name}-{index}-"),
            model,
            transport_port,
            api_port,
            self.runtime,
            self.image,
        )
        api = self.api_factory(self.host, api_port, model.window)
        instance.start(config)
        try:
            self._wait_ready(instance, api)
        except LaunchError:
            self._stop_quietly(instance)
            raise
        return PoolSlot(instance=instance, api=api)

    def _wait_ready(self, instance: EmulatorInstance, api: SpeculosApi) -> None:
        start = time.monotonic()
        while time.monotonic() - start < self.ready_timeout:
            if api.is_ready():
                return
            time.sleep(self.ready_poll)
        raise LaunchError(
            f"{instance.name} did not become ready within {self.ready_timeout}s",
            instance=instance.name,
            model=instance.model.name,
        )

    def _stop_quietly(self, instance: EmulatorInstance) -> None:
        try:
            instance.stop()
        except LaunchError as e:
            logger.warning(f"Failed to stop {instance.name}: {e}")

    def cleanup_stale(self) -> int:
        """
        Remove processes left behind by a crashed run.

        Returns:
            Number of processes removed
        """
        try:
            stale = self.runtime.list_by_name_prefix(BASE_NAME)
        except LaunchError as e:
            logger.warning(f"Failed to list stale emulator processes: {e}")
            return 0

        if not stale:
            return 0

        logger.warning(f"Found {len(stale)} stale emulator process(es), cleaning up")
        removed = 0
        for handle in stale:
            try:
                self.runtime.remove_process(handle, force=True)
                removed += 1
            except LaunchError as e:
                logger.warning(f"Failed to remove stale process {handle.name}: {e}")
        return removed

    # ═══════════════════════════════════════════════════════════════════════════
    # ACQUIRE / RELEASE
    # ═══════════════════════════════════════════════════════════════════════════

    def acquire(self, model: Union[str, DeviceModel], payload: LaunchConfig) -> Optional[PoolSlot]:
        """
        Take the first available slot of ``model`` and load ``payload`` into it.

        Args:
            model: Model name or DeviceModel
            payload: Application to run in the acquired instance

        Returns:
            The busy slot, or None when the model has no pool or every slot
            is busy

        Raises:
            ConfigurationError: If ``payload`` targets a different model
            ResetError: If the slot state could not be reset
            LaunchError: If the payload could not be started
        """
        model = model if isinstance(model, DeviceModel) else get_model(model)
        if get_model(payload.model) != model:
            raise ConfigurationError(
                f"payload is a {payload.model} app, cannot load it into a {model.name} slot",
                {"model": model.name, "payload_model": payload.model},
            )

        with self._lock:
            slot = next((s for s in self._pools.get(model.name, []) if s.available), None)
            if slot is None:
                return None
            slot.available = False
            slot.last_used = time.time()

        logger.debug(f"[{slot.name}] Acquired")
        try:
            self._reset_state(slot)
            slot.instance.restart(payload)
            self._wait_ready(slot.instance, slot.api)
        except Exception:
            self.release(slot)
            raise
        return slot

    def release(self, slot: PoolSlot) -> None:
        """
        Reset ``slot`` and make it available again.

        A slot whose reset fails is evicted instead.
        """
        try:
            self._reset_state(slot)
        except ResetError as e:
            logger.warning(f"Failed to reset {slot.name}, removing from pool: {e}")
            self._evict(slot)
            return

        with self._lock:
            slot.available = True
        logger.debug(f"[{slot.name}] Released")

    def _reset_state(self, slot: PoolSlot) -> None:
        if not slot.instance.is_running:
            raise ResetError(f"{slot.name} is not running", instance=slot.name)
        try:
            slot.api.delete_events()
            # the screen must still answer after the events are gone
            slot.api.screenshot()
        except requests.RequestException as e:
            raise ResetError(f"Failed to reset {slot.name}: {e}", instance=slot.name, cause=e) from e
        time.sleep(self.settle_delay)

    def _evict(self, slot: PoolSlot) -> None:
        with self._lock:
            slots = self._pools.get(slot.model.name, [])
            if slot in slots:
                slots.remove(slot)
            if not slots:
                self._pools.pop(slot.model.name, None)
        self._stop_quietly(slot.instance)
        slot.api.close()

    # ═══════════════════════════════════════════════════════════════════════════
    # TEARDOWN AND STATUS
    # ═══════════════════════════════════════════════════════════════════════════

    def cleanup(self) -> None:
        """Stop every pooled instance and forget all pools. Safe to call twice."""
        with self._lock:
            slots = [slot for pool in self._pools.values() for slot in pool]
            self._pools.clear()

        for slot in slots:
            self._stop_quietly(slot.instance)
            slot.api.close()

    def status(self) -> Dict[str, Dict[str, int]]:
        """Per-model ``{"total", "available", "busy"}`` counts."""
        with self._lock:
            result = {}
            for model_name, slots in self._pools.items():
                available = sum(1 for s in slots if s.available)
                result[model_name] = {
                    "total": len(slots),
                    "available": available,
                    "busy": len(slots) - available,
                }
            return result

    def has_pool(self, model: str) -> bool:
        with self._lock:
            return bool(self._pools.get(model.lower()))
