"""
interfaces.py - Capabilities injected into a KCP engine

The engine never talks to a socket. Whatever owns it supplies:
- a PacketSink, called synchronously for every datagram the engine emits
- optionally a Tracer, called with human-readable diagnostics

Both are invoked on the caller's stack from inside send/flush/update/input;
nothing is deferred.
"""

from abc import ABC, abstractmethod
from enum import IntFlag
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kcpsim.kcp.engine import Kcp


class LogMask(IntFlag):
    """Categories of engine diagnostics (matched against ``Kcp.logmask``)."""
    OUTPUT = 1
    INPUT = 2
    SEND = 4
    RECV = 8
    IN_DATA = 16
    IN_ACK = 32
    IN_PROBE = 64
    IN_WINS = 128
    OUT_DATA = 256
    OUT_ACK = 512
    OUT_PROBE = 1024
    OUT_WINS = 2048

    ALL = 4095


class PacketSink(ABC):
    """Receives every datagram a KCP engine wants put on the wire."""

    @abstractmethod
    def output(self, data: bytes, kcp: 'Kcp') -> None:
        """
        Emit one datagram.

        Args:
            data: Serialized segment(s); the sink must copy if it keeps them
            kcp: Engine that produced the datagram
        """
        pass


class Tracer(ABC):
    """Observes engine diagnostics. Purely informational."""

    @abstractmethod
    def write_log(self, message: str, kcp: 'Kcp') -> None:
        pass
