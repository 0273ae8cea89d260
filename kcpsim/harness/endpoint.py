"""
endpoint.py - One side of the simulated link

An Endpoint couples a protocol engine with the channel state that belongs to
its outgoing direction: the OutputBuffer the engine writes into, the
DropPolicy applied on the way in, and the counters describing the result.

The Endpoint is the engine's PacketSink (output hook) and, when tracing is
enabled, its Tracer. Both run synchronously on the caller's stack.
"""

import logging
from enum import Enum
from typing import Optional, Tuple

from kcpsim.config.scenario import EngineConfig, EndpointConfig
from kcpsim.harness.errors import BufferOverflowError, IntegrityError, SendError
from kcpsim.harness.trace import TraceRecorder
from kcpsim.kcp.engine import (
    Kcp,
    BufferTooSmallError,
    SendRejectedError,
    RECV_EMPTY,
    RECV_INCOMPLETE,
)
from kcpsim.kcp.interfaces import PacketSink, Tracer
from kcpsim.network.drop_policy import DropPolicy
from kcpsim.network.metrics import EndpointMetrics
from kcpsim.network.output_buffer import OutputBuffer
from kcpsim.network.segment import Segment

logger = logging.getLogger(__name__)


class ReceiveOutcome(Enum):
    """Result of one receive attempt."""
    EMPTY = "empty"             # nothing queued
    INCOMPLETE = "incomplete"   # fragments still missing
    DELIVERED = "delivered"     # a whole message was returned


class Endpoint(PacketSink, Tracer):
    """
    Protocol engine plus its outgoing channel state.

    The peer is a back reference set by connect(); an Endpoint never owns or
    releases its peer.
    """

    def __init__(self, name: str, engine_config: EngineConfig,
                 config: EndpointConfig, trace_engine: bool = False,
                 recorder: Optional[TraceRecorder] = None):
        """
        Create the engine and configure it for the scenario.

        Args:
            name: Label used in logs and trace events
            engine_config: Tuning shared by both endpoints
            config: Buffer, drop and threshold settings for this endpoint
            trace_engine: Forward engine diagnostics to the log
            recorder: Trace to stamp drops/overflows/deliveries into
        """
        self.name = name
        self.config = config
        self.recorder = recorder
        self.peer: Optional['Endpoint'] = None

        self.buffer = OutputBuffer(config.buffer_capacity)
        self.drop_policy = DropPolicy(config.drop)
        self.metrics = EndpointMetrics()

        self.engine = Kcp(engine_config.conv, self,
                          tracer=self if trace_engine else None, user=name)
        self.engine.set_mtu(engine_config.mtu)
        self.engine.configure_transmission(
            engine_config.nodelay,
            engine_config.interval_ms,
            engine_config.resend,
            engine_config.no_congestion_control,
        )
        self.engine.configure_window(engine_config.send_window, engine_config.receive_window)
        self.engine.dead_link = engine_config.dead_link
        self.engine.logmask = engine_config.log_mask

        # flush() is a no-op until the engine has seen one update()
        self.engine.update(0)

        if config.ssthresh is not None:
            self.engine.ssthresh = config.ssthresh

    def connect(self, peer: 'Endpoint'):
        """Set the delivery target for this endpoint's datagrams."""
        self.peer = peer

    # ------------------------------------------------------------------
    # Engine capabilities
    # ------------------------------------------------------------------

    def output(self, data: bytes, kcp: Kcp) -> None:
        self.record(Segment(bytes(data)))

    def write_log(self, message: str, kcp: Kcp) -> None:
        logger.debug("t=%d %s %s", kcp.current, self.name, message)

    def record(self, segment: Segment):
        """
        Accept one datagram from the engine.

        Drop-policy matches are discarded and counted; a full buffer discards
        silently unless the endpoint is configured overflow-fatal.

        Raises:
            BufferOverflowError: Buffer full and overflow_fatal is set
        """
        sn = segment.sequence_number

        if self.drop_policy.check(sn):
            self.metrics.record_dropped()
            logger.info("%s drop sn=%d", self.name, sn)
            self._trace('drop', sn, segment.length)
            return

        if not self.buffer.push(segment):
            self.metrics.record_overflow()
            self._trace('overflow', sn, segment.length)
            if self.config.overflow_fatal:
                raise BufferOverflowError(
                    f"{self.name}: output buffer full ({self.buffer.capacity} datagrams), sn={sn}"
                )
            logger.debug("%s buffer full, discarding sn=%d", self.name, sn)
            return

        self.metrics.record_sent()

    # ------------------------------------------------------------------
    # Application side
    # ------------------------------------------------------------------

    def send(self, payload: bytes):
        """
        Queue one application message.

        Raises:
            SendError: The engine refused the message
        """
        try:
            self.engine.send(payload)
        except SendRejectedError as e:
            raise SendError(f"{self.name}: send of {len(payload)} bytes rejected: {e}") from e

    def flush(self):
        self.engine.flush()

    def receive(self, max_size: int) -> Tuple[ReceiveOutcome, Optional[bytes]]:
        """
        Try to read one reassembled message.

        Raises:
            IntegrityError: The next message is longer than max_size
        """
        size = self.engine.peek_size()
        if size == RECV_EMPTY:
            return ReceiveOutcome.EMPTY, None
        if size == RECV_INCOMPLETE:
            return ReceiveOutcome.INCOMPLETE, None

        try:
            data = self.engine.recv(max_size)
        except BufferTooSmallError as e:
            raise IntegrityError(f"{self.name}: reassembled message exceeds {max_size} bytes") from e
        return ReceiveOutcome.DELIVERED, data

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def effective_window(self) -> int:
        """Segments the engine may have in flight right now."""
        kcp = self.engine
        window = min(kcp.snd_wnd, kcp.rmt_wnd)
        if not kcp.nocwnd:
            window = min(kcp.cwnd, window)
        return window

    def release(self):
        """Release the engine and buffered datagrams; forget the peer."""
        self.engine.release()
        self.buffer.clear()
        self.peer = None

    def _trace(self, kind: str, sn: int, size: int):
        if self.recorder is not None:
            self.recorder.record(kind, self.name, sn=sn, size=size)

    def __repr__(self) -> str:
        return f"Endpoint({self.name!r}, {self.metrics})"
