"""
Screen and Event API Client
===========================

HTTP client for the emulator's screen/event API:

    GET    /screenshot      current screen as PNG bytes
    GET    /events          {"events": [{"text", "x", "y", "w", "h"}, ...]}
    DELETE /events          clear the event log
    POST   /button/<name>   {"action": "press-and-release"}, name in left/right/both
    POST   /finger          {"action": "press-and-release", "x", "y", "delay"[, "direction"]}

The event log holds the text elements currently on screen. It is replaced
wholesale by the emulator, never accumulated by the client.

Network failures surface as ``requests`` exceptions; deciding whether a
failure is "no data yet" or fatal is up to the caller.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

from zemu.models import DeviceWindow

# Configure module logger
logger = logging.getLogger(__name__)


DEFAULT_REQUEST_TIMEOUT = 5.0
PRESS_AND_RELEASE = "press-and-release"
BUTTON_NAMES = ("left", "right", "both")


# =============================================================================
# Values
# =============================================================================

@dataclass(frozen=True, eq=False)
class Snapshot:
    """
    A captured screen.

    Two snapshots are equal when their image bytes are identical. Width and
    height come from the device model and take no part in the comparison.
    """
    width: int
    height: int
    data: bytes

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Snapshot):
            return NotImplemented
        return self.data == other.data

    def __hash__(self) -> int:
        return hash(self.data)


@dataclass(frozen=True)
class Event:
    """A text element on the current screen and its bounding box."""
    text: str
    x: int = 0
    y: int = 0
    w: int = 0
    h: int = 0

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Event":
        return cls(
            text=str(data.get("text", "")),
            x=int(data.get("x", 0)),
            y=int(data.get("y", 0)),
            w=int(data.get("w", 0)),
            h=int(data.get("h", 0)),
        )

    @property
    def center(self) -> Tuple[int, int]:
        return (self.x + self.w // 2, self.y + self.h // 2)


def events_equal(a: List[Event], b: List[Event]) -> bool:
    """Element-wise comparison of two event logs (text and bounding box)."""
    return len(a) == len(b) and all(x == y for x, y in zip(a, b))


# =============================================================================
# API Client
# =============================================================================

class SpeculosApi:
    """
    Client for one emulator's screen/event API.

    Args:
        host: Emulator host
        port: Screen/event API port
        window: Screen rectangle used to label snapshots
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        host: str,
        port: int,
        window: Optional[DeviceWindow] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.base_url = f"http://{host}:{port}"
        self.window = window
        self.timeout = timeout
        self.session = requests.Session()

    def __repr__(self) -> str:
        return f"SpeculosApi({self.base_url!r})"

    def screenshot(self) -> bytes:
        """Current screen as PNG bytes."""
        response = self.session.get(f"{self.base_url}/screenshot", timeout=self.timeout)
        response.raise_for_status()
        return response.content

    def snapshot(self) -> Snapshot:
        """Current screen as a Snapshot."""
        data = self.screenshot()
        if self.window is None:
            return Snapshot(width=0, height=0, data=data)
        return Snapshot(width=self.window.width, height=self.window.height, data=data)

    def get_events(self) -> List[Event]:
        """Text elements currently on screen, in display order."""
        response = self.session.get(f"{self.base_url}/events", timeout=self.timeout)
        response.raise_for_status()
        return [Event.from_json(item) for item in response.json().get("events", [])]

    def delete_events(self) -> None:
        response = self.session.delete(f"{self.base_url}/events", timeout=self.timeout)
        response.raise_for_status()

    def press_button(self, name: str) -> None:
        """
        Press and release a physical button.

        Args:
            name: "left", "right" or "both"
        """
        if name not in BUTTON_NAMES:
            raise ValueError(f"unknown button {name!r}")
        response = self.session.post(
            f"{self.base_url}/button/{name}",
            json={"action": PRESS_AND_RELEASE},
            timeout=self.timeout,
        )
        response.raise_for_status()

    def finger(self, x: int, y: int, delay: float, direction: Optional[str] = None) -> None:
        """
        Touch the screen at (x, y) for ``delay`` seconds.

        ``direction`` turns the touch into a swipe.
        """
        payload: Dict[str, Any] = {"action": PRESS_AND_RELEASE, "x": x, "y": y, "delay": delay}
        if direction:
            payload["direction"] = direction
        # a long press keeps the request open for the whole hold
        response = self.session.post(
            f"{self.base_url}/finger", json=payload, timeout=self.timeout + delay
        )
        response.raise_for_status()

    def is_ready(self) -> bool:
        """True when the API answers a screenshot request."""
        try:
            self.screenshot()
        except requests.RequestException:
            return False
        return True

    def close(self) -> None:
        self.session.close()
