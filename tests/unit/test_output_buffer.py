#!/usr/bin/env python3
"""
test_output_buffer.py - Unit Tests for OutputBuffer and Segment

Tests bounded insertion, in-order draining and sequence number extraction.
"""

import struct
import sys
from pathlib import Path

import pytest

# Add project root to path
_project_root = Path(__file__).parent.parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from kcpsim.kcp.segment import Command, KcpSegment
from kcpsim.network.output_buffer import OutputBuffer
from kcpsim.network.segment import Segment, sequence_number


def datagram(sn: int, payload: bytes = b"") -> bytes:
    return KcpSegment(conv=1, cmd=Command.PUSH, sn=sn, data=payload).encode()


class TestSegment:
    """Sequence number lives at bytes 12-15, little endian."""

    def test_sequence_number_from_engine_header(self):
        assert sequence_number(datagram(0x01020304)) == 0x01020304

    def test_sequence_number_from_raw_bytes(self):
        raw = bytes(12) + struct.pack('<I', 77) + bytes(8)
        assert Segment(raw).sequence_number == 77

    def test_length(self):
        segment = Segment(datagram(1, b"abc"))
        assert segment.length == 24 + 3

    def test_short_datagram_has_no_sequence_number(self):
        with pytest.raises(ValueError):
            sequence_number(b"\x00" * 15)

    def test_segment_is_immutable(self):
        segment = Segment(b"x" * 24)
        with pytest.raises(AttributeError):
            segment.data = b""


class TestOutputBuffer:
    """Bounded FIFO behaviour."""

    def test_push_until_full(self):
        buffer = OutputBuffer(capacity=2)

        assert buffer.push(Segment(datagram(0))) is True
        assert buffer.push(Segment(datagram(1))) is True
        assert buffer.full
        assert buffer.push(Segment(datagram(2))) is False
        assert len(buffer) == 2

    def test_drain_preserves_order_and_empties(self):
        buffer = OutputBuffer(capacity=8)
        for sn in (4, 2, 9):
            buffer.push(Segment(datagram(sn)))

        drained = buffer.drain()

        assert [s.sequence_number for s in drained] == [4, 2, 9]
        assert len(buffer) == 0
        assert buffer.drain() == []

    def test_space_reclaimed_after_drain(self):
        buffer = OutputBuffer(capacity=1)
        buffer.push(Segment(datagram(0)))
        buffer.drain()

        assert buffer.push(Segment(datagram(1))) is True

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            OutputBuffer(capacity=0)
