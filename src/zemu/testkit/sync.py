"""
Zemu Testing Framework - Synchronization Engine
===============================================

Polling waits on the emulator's screen and event log. Every wait has the
same shape:

    start = now
    loop:
        critical transport fault recorded?  -> raise it immediately
        observe (screenshot or event log)   -> failures count as "no data yet"
        observation matches the target?     -> return it
        now - start > timeout?              -> raise WaitTimeoutError
        sleep(poll_interval)

The critical-fault check is what separates these waits from naive
polling: a request the device rejected with a critical status word will
never produce the awaited screen, so the wait ends as soon as the fault
is seen instead of running out its timeout.

Polling uses a fixed interval. There is no preemptive cancellation; a
request already in flight when a wait gives up completes and its result
is dropped.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import logging
import re
import time
from typing import Callable, List, Optional, TypeVar, Union

import requests

from zemu.comms.transport import FaultRecordingTransport
from zemu.emulator.api import Event, Snapshot, SpeculosApi, events_equal
from zemu.errors import TransportFault
from zemu.testkit.exceptions import WaitTimeoutError

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")

TextPattern = Union[str, re.Pattern]

DEFAULT_POLL_INTERVAL = 0.25
DEFAULT_WAIT_TIMEOUT = 45.0
DEFAULT_METHOD_TIMEOUT = 15.0


def compile_pattern(pattern: TextPattern, case_sensitive: bool = False) -> re.Pattern:
    """
    Compile a text pattern.

    Strings are regular expressions. Matching is case-insensitive unless
    ``case_sensitive`` is set, for compiled patterns too.
    """
    source = pattern.pattern if isinstance(pattern, re.Pattern) else pattern
    flags = pattern.flags if isinstance(pattern, re.Pattern) else 0
    if case_sensitive:
        flags &= ~re.IGNORECASE
    else:
        flags |= re.IGNORECASE
    return re.compile(source, flags)


def find_text(events: List[Event], regex: re.Pattern) -> Optional[Event]:
    """First event whose text matches ``regex``, or None."""
    for event in events:
        if regex.search(event.text):
            return event
    return None


class SynchronizationEngine:
    """
    Polling waits against one emulator instance.

    Args:
        api: Screen/event API of the instance
        transport: Transport whose last fault aborts waits (None: no check)
        poll_interval: Seconds between polls
        wait_timeout: Default timeout of screen waits
        method_timeout: Default timeout of text waits
        log: Progress logger callable (default: module logger at DEBUG)
    """

    def __init__(
        self,
        api: SpeculosApi,
        transport: Optional[FaultRecordingTransport] = None,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
        method_timeout: float = DEFAULT_METHOD_TIMEOUT,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.api = api
        self.transport = transport
        self.poll_interval = poll_interval
        self.wait_timeout = wait_timeout
        self.method_timeout = method_timeout
        self._log = log or logger.debug

    # ═══════════════════════════════════════════════════════════════════════════
    # OBSERVATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    def check_fault(self) -> None:
        """Raise the last recorded transport fault if it is critical."""
        if self.transport is None:
            return
        fault = self.transport.last_fault
        if fault is not None and fault.is_critical:
            self._log(f"Critical fault, aborting wait: {fault}")
            raise fault

    def _observe(self, read: Callable[[], T]) -> Optional[T]:
        try:
            return read()
        except requests.RequestException as e:
            self._log(f"No data yet: {e}")
            return None
        except TransportFault as fault:
            if fault.is_critical:
                raise
            self._log(f"No data yet: {fault}")
            return None

    def snapshot_or_none(self) -> Optional[Snapshot]:
        """Current screen, or None if the screen endpoint has nothing yet."""
        snapshot = self._observe(self.api.snapshot)
        if snapshot is None or not snapshot.data:
            return None
        return snapshot

    def events_or_none(self) -> Optional[List[Event]]:
        """Current event log, or None if the event endpoint is unreachable."""
        return self._observe(self.api.get_events)

    def _poll(
        self,
        observe: Callable[[], Optional[T]],
        done: Callable[[T], bool],
        timeout: float,
        awaited: str,
        describe: Callable[[Optional[T]], Optional[List[str]]] = lambda _: None,
    ) -> T:
        start = time.monotonic()
        while True:
            self.check_fault()
            observed = observe()
            if observed is not None and done(observed):
                return observed

            elapsed = time.monotonic() - start
            if elapsed > timeout:
                self._log(f"Timeout waiting for {awaited}")
                raise WaitTimeoutError(
                    f"Timeout ({timeout}s) waiting for {awaited}",
                    awaited=awaited,
                    timeout=timeout,
                    elapsed=elapsed,
                    last_events=describe(observed),
                )
            time.sleep(self.poll_interval)
            self._log(f"Check [{elapsed:.2f}s]")

    # ═══════════════════════════════════════════════════════════════════════════
    # WAITS
    # ═══════════════════════════════════════════════════════════════════════════

    def wait_until_screen_is(self, target: Snapshot, timeout: Optional[float] = None) -> Snapshot:
        """
        Wait until the screen equals ``target``.

        Returns:
            The matching snapshot

        Raises:
            WaitTimeoutError: If the screen never matched
            TransportFault: If a critical fault was recorded meanwhile
        """
        self._log("Wait until screen is")
        snapshot = self._poll(
            self.snapshot_or_none,
            lambda s: s == target,
            self.wait_timeout if timeout is None else timeout,
            "screen to be the expected one",
        )
        self._log("Screen matches")
        return snapshot

    def wait_until_screen_is_not(self, baseline: Snapshot, timeout: Optional[float] = None) -> Snapshot:
        """
        Wait until the screen differs from ``baseline``.

        Returns:
            The first differing snapshot

        Raises:
            WaitTimeoutError: If the screen never changed
            TransportFault: If a critical fault was recorded meanwhile
        """
        self._log("Wait until screen is not")
        snapshot = self._poll(
            self.snapshot_or_none,
            lambda s: s != baseline,
            self.wait_timeout if timeout is None else timeout,
            "screen to change",
        )
        self._log("Screen changed")
        return snapshot

    def wait_for_screen_changes(self, baseline: List[Event], timeout: Optional[float] = None) -> List[Event]:
        """
        Wait until the event log differs from ``baseline``.

        Returns:
            The new event log

        Raises:
            WaitTimeoutError: If the event log never changed
            TransportFault: If a critical fault was recorded meanwhile
        """
        self._log("Wait for screen changes")
        events = self._poll(
            self.events_or_none,
            lambda e: not events_equal(baseline, e),
            self.wait_timeout if timeout is None else timeout,
            "events to change",
            lambda e: [x.text for x in e] if e is not None else None,
        )
        self._log(f"Events changed: {[e.text for e in events]}")
        return events

    def wait_for_text(
        self,
        pattern: TextPattern,
        timeout: Optional[float] = None,
        case_sensitive: bool = False,
    ) -> Event:
        """
        Wait until an on-screen text matches ``pattern``.

        Args:
            pattern: Regular expression (string or compiled)
            timeout: Seconds to wait (default: method timeout)
            case_sensitive: Match case exactly

        Returns:
            The first matching event

        Raises:
            WaitTimeoutError: If no text matched in time
            TransportFault: If a critical fault was recorded meanwhile
        """
        regex = compile_pattern(pattern, case_sensitive)
        text = regex.pattern
        self._log(f"Wait for text {text!r}")
        events = self._poll(
            self.events_or_none,
            lambda e: find_text(e, regex) is not None,
            self.method_timeout if timeout is None else timeout,
            f"text ({text})",
            lambda e: [x.text for x in e] if e is not None else None,
        )
        return find_text(events, regex)
