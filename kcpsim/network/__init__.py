"""
kcpsim.network - Simulated datagram channel

Segments, bounded output buffers, targeted drop policies and the counters
that describe what happened to each datagram.
"""

from kcpsim.network.segment import Segment, sequence_number, SN_OFFSET
from kcpsim.network.output_buffer import OutputBuffer
from kcpsim.network.drop_policy import DropPolicy, match_target
from kcpsim.network.metrics import EndpointMetrics

__all__ = [
    'Segment',
    'sequence_number',
    'SN_OFFSET',
    'OutputBuffer',
    'DropPolicy',
    'match_target',
    'EndpointMetrics',
]
