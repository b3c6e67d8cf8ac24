"""
Zemu Test Configuration
=======================

In-process stand-ins for the harness's external collaborators, so no
test needs docker or a running emulator:

- FakeRuntime: ContainerRuntime recording every call
- FakeSpeculosApi: scripted screen/event API
- FakeTransport: ExchangeTransport replaying queued replies

Plus helpers writing PNG files (Pillow) and ELF headers.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import io
import struct
import threading
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import pytest
import requests
from PIL import Image

from zemu.comms.status import ErrorClass
from zemu.comms.transport import ExchangeTransport
from zemu.emulator.api import Event, Snapshot
from zemu.emulator.runtime import ContainerRuntime, LaunchSpec, ProcessHandle
from zemu.errors import LaunchError, TransportFault
from zemu.models import ENTRY_DEFAULT, ENTRY_NANOS, DeviceWindow
from zemu.testkit.config import HarnessConfig, set_default_config


# ═══════════════════════════════════════════════════════════════════════════════
# FILE HELPERS
# ═══════════════════════════════════════════════════════════════════════════════


def png_bytes(color: Tuple[int, int, int] = (0, 0, 0), size: Tuple[int, int] = (8, 4)) -> bytes:
    """Encode a single-color PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def screen_png(n: int) -> bytes:
    """Distinct PNG for screen number ``n`` (never equal to red/green/blue)."""
    return png_bytes(((7 * n) % 256, (13 * n) % 256, 50))


def write_elf(path: Path, entry: int) -> Path:
    """Write a minimal 32-bit little-endian ELF header with ``entry``."""
    header = bytearray(52)
    header[:4] = b"\x7fELF"
    header[4] = 1  # ELFCLASS32
    header[5] = 1  # ELFDATA2LSB
    header[6] = 1
    struct.pack_into("<I", header, 24, entry)
    path.write_bytes(bytes(header))
    return path


def write_golden(root: Path, testcase: str, images: Sequence[bytes]) -> Path:
    """Write ``images`` as the golden set of ``testcase`` under ``root``."""
    golden = root / "snapshots" / testcase
    golden.mkdir(parents=True, exist_ok=True)
    for index, data in enumerate(images):
        (golden / f"{index:05d}.png").write_bytes(data)
    return golden


# ═══════════════════════════════════════════════════════════════════════════════
# FAKE COLLABORATORS
# ═══════════════════════════════════════════════════════════════════════════════


class FakeRuntime(ContainerRuntime):
    """
    Records every call. ``fail_start`` holds name prefixes whose launch
    fails; ``stale`` is what list_by_name_prefix reports.
    """

    def __init__(self):
        self.started: List[LaunchSpec] = []
        self.stopped: List[ProcessHandle] = []
        self.removed: List[Tuple[ProcessHandle, bool]] = []
        self.pulled: List[str] = []
        self.attached: List[ProcessHandle] = []
        self.fail_start: List[str] = []
        self.fail_stop = False
        self.stale: List[ProcessHandle] = []
        self._lock = threading.Lock()
        self._counter = 0

    def start_process(self, spec: LaunchSpec) -> ProcessHandle:
        if any(spec.name.startswith(prefix) for prefix in self.fail_start):
            raise LaunchError(f"cannot start {spec.name}", instance=spec.name)
        with self._lock:
            self._counter += 1
            self.started.append(spec)
            return ProcessHandle(id=f"c{self._counter:04d}", name=spec.name)

    def stop_process(self, handle: ProcessHandle, grace_seconds: int = 0) -> None:
        if self.fail_stop:
            raise LaunchError(f"cannot stop {handle.name}", instance=handle.name)
        self.stopped.append(handle)

    def remove_process(self, handle: ProcessHandle, force: bool = False) -> None:
        self.removed.append((handle, force))

    def list_by_name_prefix(self, prefix: str) -> List[ProcessHandle]:
        return [h for h in self.stale if h.name.startswith(prefix)]

    def attach_logs(self, handle, sink) -> threading.Thread:
        self.attached.append(handle)
        thread = threading.Thread(target=sink, args=("emulator booted",), daemon=True)
        thread.start()
        return thread

    def pull_image(self, image: str) -> None:
        self.pulled.append(image)


Screen = Tuple[bytes, List[Event]]


class FakeSpeculosApi:
    """
    Scripted screen/event API.

    Every button press or finger touch moves to the next entry of
    ``transitions`` (screen bytes, events); without transitions the screen
    stays as it is.

    Accepts the (host, port, window) arguments of SpeculosApi so it can be
    used as an api_factory.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0, window: Optional[DeviceWindow] = None,
                 screen: bytes = b"", events: Sequence[Event] = ()):
        self.host = host
        self.port = port
        self.window = window
        self.screen = screen
        self.events: List[Event] = list(events)
        self.transitions: List[Screen] = []
        self.actions: List[Union[str, tuple]] = []
        self.screenshot_calls = 0
        self.event_calls = 0
        self.deleted = 0
        self.ready = True
        self.fail_screenshot = False
        self.fail_events = False
        self.closed = False
        self._walked = 0

    def show(self, screen: bytes, *texts: str) -> "FakeSpeculosApi":
        self.screen = screen
        self.events = [Event(text, 10, 10 * i, 40, 8) for i, text in enumerate(texts)]
        return self

    def then(self, screen: bytes, *texts: str) -> "FakeSpeculosApi":
        self.transitions.append((screen, [Event(t, 10, 10 * i, 40, 8) for i, t in enumerate(texts)]))
        return self

    def walk(self, *screens: Union[str, Tuple[str, ...]]) -> List[bytes]:
        """
        Script one transition per item, each with its own distinct image.

        Returns:
            The image bytes of every scripted screen, in order
        """
        images = []
        for texts in screens:
            if isinstance(texts, str):
                texts = (texts,)
            self._walked += 1
            image = screen_png(self._walked)
            self.then(image, *texts)
            images.append(image)
        return images

    def screenshot(self) -> bytes:
        self.screenshot_calls += 1
        if self.fail_screenshot:
            raise requests.ConnectionError("screen endpoint down")
        return self.screen

    def snapshot(self) -> Snapshot:
        width = self.window.width if self.window else 0
        height = self.window.height if self.window else 0
        return Snapshot(width, height, self.screenshot())

    def get_events(self) -> List[Event]:
        self.event_calls += 1
        if self.fail_events:
            raise requests.ConnectionError("event endpoint down")
        return list(self.events)

    def delete_events(self) -> None:
        if self.fail_events:
            raise requests.ConnectionError("event endpoint down")
        self.deleted += 1
        self.events = []

    def _advance(self) -> None:
        if self.transitions:
            self.screen, self.events = self.transitions.pop(0)

    def press_button(self, name: str) -> None:
        self.actions.append(name)
        self._advance()

    def finger(self, x: int, y: int, delay: float, direction: Optional[str] = None) -> None:
        self.actions.append(("finger", x, y, delay, direction))
        self._advance()

    def is_ready(self) -> bool:
        return self.ready

    def close(self) -> None:
        self.closed = True


class FakeTransport(ExchangeTransport):
    """Replays queued replies (bytes) or raises queued faults."""

    def __init__(self, host: str = "127.0.0.1", port: int = 0):
        self.host = host
        self.port = port
        self.replies: List[Union[bytes, Exception]] = []
        self.sent: List[bytes] = []
        self.closed = False

    def exchange(self, apdu: bytes) -> bytes:
        self.sent.append(apdu)
        reply = self.replies.pop(0) if self.replies else b"\x90\x00"
        if isinstance(reply, Exception):
            raise reply
        return reply

    def close(self) -> None:
        self.closed = True


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture(autouse=True)
def fast_harness(tmp_path) -> HarnessConfig:
    """
    Fixture: Global harness configuration with short timings.

    Installed as the default for every test and reset afterwards.
    """
    config = HarnessConfig(
        poll_interval=0.01,
        key_delay=0.01,
        start_delay=0.5,
        start_timeout=0.5,
        method_timeout=0.5,
        wait_timeout=0.5,
        readiness_poll=0.01,
        reset_settle_delay=0,
        snapshots_root=tmp_path,
    )
    set_default_config(config)
    yield config
    set_default_config(None)


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def nanos_elf(tmp_path) -> Path:
    return write_elf(tmp_path / "app_s.elf", ENTRY_NANOS)


@pytest.fixture
def stax_elf(tmp_path) -> Path:
    return write_elf(tmp_path / "app_stax.elf", ENTRY_DEFAULT)


@pytest.fixture
def red() -> bytes:
    return png_bytes((255, 0, 0))


@pytest.fixture
def green() -> bytes:
    return png_bytes((0, 255, 0))


@pytest.fixture
def blue() -> bytes:
    return png_bytes((0, 0, 255))


def fault(status: int, critical: bool) -> TransportFault:
    return TransportFault(
        f"status 0x{status:04X}",
        status_code=status,
        error_class=ErrorClass.CRITICAL if critical else ErrorClass.RECOVERABLE,
    )

