"""
kcpsim.kcp - Reference KCP protocol engine

Pure-Python implementation of the engine surface the harness drives:
create, configure, send, flush, update, input, recv, plus the PacketSink and
Tracer capabilities it calls back into.
"""

from kcpsim.kcp.engine import (
    Kcp,
    KcpError,
    MalformedSegmentError,
    SendRejectedError,
    BufferTooSmallError,
    RECV_EMPTY,
    RECV_INCOMPLETE,
)
from kcpsim.kcp.interfaces import LogMask, PacketSink, Tracer
from kcpsim.kcp.segment import OVERHEAD, Command, KcpSegment

__all__ = [
    'Kcp',
    'KcpError',
    'MalformedSegmentError',
    'SendRejectedError',
    'BufferTooSmallError',
    'RECV_EMPTY',
    'RECV_INCOMPLETE',
    'LogMask',
    'PacketSink',
    'Tracer',
    'OVERHEAD',
    'Command',
    'KcpSegment',
]
