"""
dispatcher.py - One dispatch round for one endpoint

Delivery is instantaneous: everything an endpoint buffered since the last
round reaches its peer in this round, in the order it was emitted. Loss only
ever happens earlier, in the endpoint's output hook.

Round for endpoint E with peer P:
1. E.engine.update(now)       - may emit retransmissions / acks into E's buffer
2. P.engine.input(datagram)   - for every buffered datagram, in order
3. E's buffer is left empty
4. P.engine.flush()           - if P has acks pending (see AckFlushPolicy)
"""

import logging
from enum import Enum

from kcpsim.harness.endpoint import Endpoint
from kcpsim.harness.errors import DeliveryError
from kcpsim.kcp.engine import MalformedSegmentError

logger = logging.getLogger(__name__)


class AckFlushPolicy(Enum):
    """When the peer is made to send its pending acknowledgements."""
    BATCH = "batch"               # once, after the whole buffer is delivered
    PER_SEGMENT = "per_segment"   # after every delivered datagram


class Dispatcher:
    """Drains endpoint output buffers into their peers."""

    def __init__(self, ack_flush: AckFlushPolicy = AckFlushPolicy.BATCH):
        self.ack_flush = ack_flush

    def dispatch(self, endpoint: Endpoint, current_ms: int) -> int:
        """
        Run one dispatch round for ``endpoint``.

        Args:
            endpoint: Endpoint whose buffer is drained
            current_ms: Virtual time handed to the engine

        Returns:
            Number of datagrams delivered to the peer

        Raises:
            DeliveryError: The peer engine rejected a datagram
        """
        endpoint.engine.update(current_ms)

        if not len(endpoint.buffer):
            return 0

        peer = endpoint.peer
        if peer is None:
            raise DeliveryError(f"{endpoint.name} has no peer to deliver to")

        segments = endpoint.buffer.drain()
        for segment in segments:
            try:
                peer.engine.input(segment.data)
            except MalformedSegmentError as e:
                raise DeliveryError(
                    f"{peer.name} rejected a {segment.length}-byte datagram "
                    f"from {endpoint.name}: {e}"
                ) from e

            endpoint.metrics.record_delivered()
            if endpoint.recorder is not None:
                endpoint.recorder.record('deliver', endpoint.name,
                                         sn=segment.sequence_number, size=segment.length)

            if self.ack_flush is AckFlushPolicy.PER_SEGMENT and peer.engine.ackcount > 0:
                peer.engine.flush()

        if self.ack_flush is AckFlushPolicy.BATCH and peer.engine.ackcount > 0:
            peer.engine.flush()

        logger.debug("%s -> %s: delivered %d datagram(s) at t=%d",
                     endpoint.name, peer.name, len(segments), current_ms)
        return len(segments)
