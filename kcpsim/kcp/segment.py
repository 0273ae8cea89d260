"""
segment.py - KCP wire segment codec

Every KCP segment carries a fixed 24-byte little-endian header followed by
its payload. Several segments may be packed back to back into one datagram
(up to the MTU), so decoding always works from an offset.

     0               4   5   6       8               12
    +---------------+---+---+-------+---------------+
    |     conv      |cmd|frg|  wnd  |      ts       |
    +---------------+---+---+-------+---------------+
    |      sn       |      una      |      len      |
    +---------------+---------------+---------------+
    |                 data (len bytes)              |
    +-----------------------------------------------+
    12              16              20              24
"""

import struct
from dataclasses import dataclass, field
from enum import IntEnum

HEADER_FORMAT = '<IBBHIIII'
OVERHEAD = struct.calcsize(HEADER_FORMAT)  # 24

_U32 = 0xFFFFFFFF


class Command(IntEnum):
    """Segment command byte."""
    PUSH = 81  # data
    ACK = 82   # acknowledgement
    WASK = 83  # window probe (ask)
    WINS = 84  # window size (tell)


@dataclass
class KcpSegment:
    """
    One KCP segment plus the sender-side retransmission bookkeeping.

    Only the header fields and ``data`` go on the wire; ``resendts``, ``rto``,
    ``fastack`` and ``xmit`` are local state for segments in the send buffer.
    """
    conv: int = 0
    cmd: int = 0
    frg: int = 0
    wnd: int = 0
    ts: int = 0
    sn: int = 0
    una: int = 0
    data: bytes = field(default_factory=bytes)

    resendts: int = 0
    rto: int = 0
    fastack: int = 0
    xmit: int = 0

    def encode_header(self) -> bytes:
        return struct.pack(
            HEADER_FORMAT,
            self.conv, self.cmd, self.frg, self.wnd,
            self.ts & _U32, self.sn & _U32, self.una & _U32, len(self.data),
        )

    def encode(self) -> bytes:
        """Serialize header and payload."""
        return self.encode_header() + self.data


def decode_header(buf: bytes, offset: int = 0) -> tuple:
    """
    Decode one header starting at ``offset``.

    Returns:
        Tuple (conv, cmd, frg, wnd, ts, sn, una, length)

    Raises:
        struct.error: If fewer than OVERHEAD bytes remain
    """
    return struct.unpack_from(HEADER_FORMAT, buf, offset)
