"""
segment.py - Datagram unit carried by the simulated channel

The channel treats a datagram as opaque bytes. The only header knowledge it
has is where the sequence number lives, which the drop policy uses to pick
its targets.
"""

import struct
from dataclasses import dataclass

# Sequence number of the first segment in the datagram: u32 LE at bytes 12-15
SN_OFFSET = 12
_SN_FORMAT = '<I'


@dataclass(frozen=True)
class Segment:
    """One datagram as emitted by an engine. Immutable once buffered."""
    data: bytes

    @property
    def length(self) -> int:
        return len(self.data)

    @property
    def sequence_number(self) -> int:
        return sequence_number(self.data)


def sequence_number(data: bytes) -> int:
    """
    Read the sequence number embedded in a datagram header.

    Raises:
        ValueError: If the datagram is too short to hold one
    """
    if len(data) < SN_OFFSET + 4:
        raise ValueError(f"datagram of {len(data)} bytes has no sequence number")
    return struct.unpack_from(_SN_FORMAT, data, SN_OFFSET)[0]
