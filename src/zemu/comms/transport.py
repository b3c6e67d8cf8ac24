"""
Command Exchange Transport
==========================

This module implements the binary command channel between the harness
and the emulated device:

- ExchangeTransport: the capability every transport provides
  (``exchange(bytes) -> bytes`` plus an APDU-building ``send`` helper)
- SpeculosTransport: raw APDU socket protocol spoken on the emulator's
  command-exchange port
- FaultRecordingTransport: wrapper remembering the most recent fault so
  the synchronization engine can abort waits that can never succeed

Wire Format
-----------
Request:  4-byte big-endian length, followed by the APDU
Reply:    4-byte big-endian length, followed by the response data,
          followed by a 2-byte big-endian status word

    ┌──────────────┬──────────────────┬──────────┐
    │ length (u32) │ data (length B)  │ SW (u16) │
    └──────────────┴──────────────────┴──────────┘

``exchange`` returns ``data + SW`` so callers always see the status word.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

import logging
import socket
import struct
import threading
from abc import ABC, abstractmethod
from typing import Final, Iterable, Optional

from zemu.comms.status import (
    DEFAULT_CLASSIFIER,
    ErrorClass,
    ErrorClassifier,
    StatusCode,
    status_message,
)
from zemu.errors import TransportFault

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

LENGTH_PREFIX: Final[struct.Struct] = struct.Struct(">I")
STATUS_WORD: Final[struct.Struct] = struct.Struct(">H")

# Maximum data length of a short APDU
MAX_APDU_DATA: Final[int] = 255

DEFAULT_EXCHANGE_TIMEOUT: Final[float] = 30.0


def build_apdu(cla: int, ins: int, p1: int, p2: int, data: bytes = b"") -> bytes:
    """
    Build a short APDU: CLA INS P1 P2 Lc DATA.

    Raises:
        ValueError: If a header byte is out of range or data is too long
    """
    for name, value in (("cla", cla), ("ins", ins), ("p1", p1), ("p2", p2)):
        if not 0 <= value <= 0xFF:
            raise ValueError(f"{name} out of range: {value}")
    if len(data) > MAX_APDU_DATA:
        raise ValueError(f"APDU data too long: {len(data)} > {MAX_APDU_DATA}")
    return bytes([cla, ins, p1, p2, len(data)]) + bytes(data)


def split_status(reply: bytes) -> tuple:
    """
    Split a reply into (data, status_word).

    Raises:
        ValueError: If the reply is shorter than a status word
    """
    if len(reply) < 2:
        raise ValueError(f"reply too short to carry a status word: {reply.hex()}")
    return reply[:-2], STATUS_WORD.unpack(reply[-2:])[0]


# =============================================================================
# Transport Capability
# =============================================================================

class ExchangeTransport(ABC):
    """
    Capability: send one command, receive one reply.

    Subclasses implement ``exchange`` and ``close``; ``send`` is shared.
    """

    classifier: ErrorClassifier = DEFAULT_CLASSIFIER

    @abstractmethod
    def exchange(self, apdu: bytes) -> bytes:
        """Send raw ``apdu`` and return the reply (data followed by status word)."""

    def close(self) -> None:
        """Release the underlying connection. Safe to call more than once."""

    def send(
        self,
        cla: int,
        ins: int,
        p1: int,
        p2: int,
        data: bytes = b"",
        status_list: Iterable[int] = (StatusCode.SUCCESS,),
    ) -> bytes:
        """
        Build an APDU, exchange it and check the status word.

        Args:
            cla, ins, p1, p2: APDU header bytes
            data: Command payload
            status_list: Status words accepted as success

        Returns:
            The full reply, status word included

        Raises:
            TransportFault: If the status word is not in ``status_list``
        """
        reply = self.exchange(build_apdu(cla, ins, p1, p2, data))
        _, status = split_status(reply)
        if status not in tuple(status_list):
            raise self.status_fault(status)
        return reply

    def status_fault(self, status: int) -> TransportFault:
        """Fault for a reply carrying ``status``, classified by this transport."""
        return TransportFault(
            f"{status_message(status)} (0x{status:04X})",
            status_code=status,
            error_class=self.classifier.classify(status),
        )

    def __enter__(self) -> "ExchangeTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# =============================================================================
# Emulator Socket Transport
# =============================================================================

class SpeculosTransport(ExchangeTransport):
    """
    APDU transport over the emulator's command-exchange TCP port.

    The connection is opened in the constructor; ``Session.connect`` retries
    construction until the emulator accepts it.

    Args:
        host: Emulator host
        port: Command-exchange port
        timeout: Socket timeout for connect and each exchange, in seconds
        classifier: Classifier used when a socket failure becomes a fault

    Raises:
        OSError: If the connection cannot be opened
    """

    def __init__(
        self,
        host: str,
        port: int,
        timeout: float = DEFAULT_EXCHANGE_TIMEOUT,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.host = host
        self.port = port
        if classifier is not None:
            self.classifier = classifier
        self._sock: Optional[socket.socket] = socket.create_connection((host, port), timeout=timeout)
        self._lock = threading.Lock()
        logger.debug(f"Connected to {host}:{port}")

    def _recv_exact(self, size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self._sock.recv(remaining)
            if not chunk:
                raise ConnectionError("connection closed by emulator")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def exchange(self, apdu: bytes) -> bytes:
        if self._sock is None:
            raise TransportFault(
                "transport is closed",
                status_code=0,
                error_class=ErrorClass.RECOVERABLE,
            )
        with self._lock:
            try:
                logger.debug(f"=> {apdu.hex()}")
                self._sock.sendall(LENGTH_PREFIX.pack(len(apdu)) + apdu)
                (size,) = LENGTH_PREFIX.unpack(self._recv_exact(LENGTH_PREFIX.size))
                reply = self._recv_exact(size) + self._recv_exact(STATUS_WORD.size)
            except OSError as e:
                raise TransportFault(
                    f"exchange with {self.host}:{self.port} failed: {e}",
                    status_code=0,
                    error_class=ErrorClass.RECOVERABLE,
                    cause=e,
                ) from e
        logger.debug(f"<= {reply.hex()}")
        return reply

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError as e:
                logger.warning("Error closing transport socket: %s", e)
            self._sock = None


# =============================================================================
# Fault Recording Wrapper
# =============================================================================

class FaultRecordingTransport(ExchangeTransport):
    """
    Transport wrapper that remembers the most recent fault.

    Every exchange goes through the wrapped transport. A TransportFault is
    recorded and re-raised. A reply whose status word is not 0x9000 is
    returned unchanged but recorded as a fault, classified by the wrapped
    transport's classifier; a 0x9000 reply clears the record. The record
    is guarded by a lock because exchanges often run on a worker
    thread while the test thread waits on the screen.

    Attributes:
        inner: The wrapped transport
    """

    def __init__(self, inner: ExchangeTransport):
        self.inner = inner
        self.classifier = inner.classifier
        self._lock = threading.Lock()
        self._last_fault: Optional[TransportFault] = None

    @property
    def last_fault(self) -> Optional[TransportFault]:
        with self._lock:
            return self._last_fault

    def clear_fault(self) -> None:
        with self._lock:
            self._last_fault = None

    def record(self, fault: TransportFault) -> None:
        with self._lock:
            self._last_fault = fault
        logger.debug(f"Recorded {fault.error_class.value} fault: {fault}")

    def exchange(self, apdu: bytes) -> bytes:
        try:
            reply = self.inner.exchange(apdu)
        except TransportFault as fault:
            self.record(fault)
            raise

        _, status = split_status(reply)
        if status == StatusCode.SUCCESS:
            self.clear_fault()
        else:
            self.record(self.status_fault(status))
        return reply

    def send(
        self,
        cla: int,
        ins: int,
        p1: int,
        p2: int,
        data: bytes = b"",
        status_list: Iterable[int] = (StatusCode.SUCCESS,),
    ) -> bytes:
        reply = super().send(cla, ins, p1, p2, data, status_list)
        # the caller accepted this status word
        self.clear_fault()
        return reply

    def close(self) -> None:
        self.inner.close()
