"""
output_buffer.py - Bounded per-endpoint datagram queue

Decouples "engine wants to send" from "harness delivers". The engine's output
hook pushes; the dispatcher drains the whole buffer once per dispatch round.

Insertion beyond capacity is not an exception: push() reports the rejection
and the caller decides whether that is fatal.
"""

from typing import List

from kcpsim.network.segment import Segment


class OutputBuffer:
    """FIFO of Segments with a fixed capacity."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._segments: List[Segment] = []

    def push(self, segment: Segment) -> bool:
        """
        Append a segment.

        Returns:
            True if buffered, False if rejected because the buffer is full
        """
        if len(self._segments) >= self.capacity:
            return False
        self._segments.append(segment)
        return True

    def drain(self) -> List[Segment]:
        """Remove and return every buffered segment in insertion order."""
        segments = self._segments
        self._segments = []
        return segments

    def clear(self):
        self._segments = []

    @property
    def full(self) -> bool:
        return len(self._segments) >= self.capacity

    def __len__(self) -> int:
        return len(self._segments)
