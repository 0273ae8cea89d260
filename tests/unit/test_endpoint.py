#!/usr/bin/env python3
"""
test_endpoint.py - Unit Tests for Endpoint

Tests the output hook (drop policy, bounded buffer, counters), the
application side (send, receive outcomes) and engine configuration.
"""

import logging
import sys
from pathlib import Path

import pytest

# Add project root to path
_project_root = Path(__file__).parent.parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from kcpsim.config.scenario import EngineConfig, EndpointConfig
from kcpsim.harness.endpoint import Endpoint, ReceiveOutcome
from kcpsim.harness.errors import BufferOverflowError, IntegrityError, SendError
from kcpsim.harness.trace import TraceRecorder
from kcpsim.kcp.segment import Command, KcpSegment


def datagram(sn: int, frg: int = 0, payload: bytes = b"x") -> bytes:
    return KcpSegment(conv=1, cmd=Command.PUSH, frg=frg, wnd=128, sn=sn, data=payload).encode()


def make_endpoint(**kwargs) -> Endpoint:
    recorder = kwargs.pop('recorder', None)
    trace_engine = kwargs.pop('trace_engine', False)
    return Endpoint("test", EngineConfig(), EndpointConfig(**kwargs),
                    trace_engine=trace_engine, recorder=recorder)


class TestOutputHook:
    """Every engine datagram is dropped, buffered or overflowed."""

    def test_plain_datagram_is_buffered(self):
        endpoint = make_endpoint()

        endpoint.output(datagram(0), endpoint.engine)

        assert len(endpoint.buffer) == 1
        assert endpoint.metrics.sent == 1
        assert endpoint.metrics.emitted == 1

    def test_drop_target_is_discarded_once(self):
        recorder = TraceRecorder()
        endpoint = make_endpoint(drop=[0], recorder=recorder)

        endpoint.output(datagram(0), endpoint.engine)
        assert len(endpoint.buffer) == 0
        assert endpoint.metrics.dropped == 1

        # Retransmission passes
        endpoint.output(datagram(0), endpoint.engine)
        assert len(endpoint.buffer) == 1
        assert endpoint.metrics.sent == 1

        drops = recorder.events_of('drop', 'test')
        assert len(drops) == 1
        assert drops[0].sn == 0

    def test_drop_is_logged(self, caplog):
        endpoint = make_endpoint(drop=[3])

        with caplog.at_level(logging.INFO, logger="kcpsim"):
            endpoint.output(datagram(3), endpoint.engine)

        assert "test drop sn=3" in caplog.text

    def test_overflow_discards_silently(self):
        recorder = TraceRecorder()
        endpoint = make_endpoint(buffer_capacity=1, recorder=recorder)

        endpoint.output(datagram(0), endpoint.engine)
        endpoint.output(datagram(1), endpoint.engine)

        assert len(endpoint.buffer) == 1
        assert endpoint.metrics.overflowed == 1
        assert endpoint.metrics.dropped == 0
        assert endpoint.metrics.lost == 1
        assert recorder.events_of('overflow')[0].sn == 1

    def test_fatal_overflow_raises(self):
        endpoint = make_endpoint(buffer_capacity=1, overflow_fatal=True)
        endpoint.output(datagram(0), endpoint.engine)

        with pytest.raises(BufferOverflowError, match="sn=1"):
            endpoint.output(datagram(1), endpoint.engine)

        assert endpoint.metrics.overflowed == 1

    def test_drop_checked_before_capacity(self):
        endpoint = make_endpoint(drop=[1], buffer_capacity=1, overflow_fatal=True)
        endpoint.output(datagram(0), endpoint.engine)

        # Full buffer, but sn=1 is a drop target: no overflow
        endpoint.output(datagram(1), endpoint.engine)

        assert endpoint.metrics.dropped == 1
        assert endpoint.metrics.overflowed == 0

    def test_emitted_is_sum_of_outcomes(self):
        endpoint = make_endpoint(drop=[2], buffer_capacity=3)

        for sn in range(6):
            endpoint.output(datagram(sn), endpoint.engine)

        m = endpoint.metrics
        assert m.emitted == 6
        assert m.emitted == m.sent + m.dropped + m.overflowed
        assert (m.sent, m.dropped, m.overflowed) == (3, 1, 2)


class TestApplicationSide:
    """send/flush/receive through the engine."""

    def test_send_and_flush_emits_first_fragment(self):
        endpoint = make_endpoint()

        endpoint.send(bytes(4096))
        endpoint.flush()

        # Initial congestion window is one segment
        assert len(endpoint.buffer) == 1
        assert endpoint.buffer.drain()[0].sequence_number == 0

    def test_oversized_send_raises_send_error(self):
        endpoint = make_endpoint()

        with pytest.raises(SendError):
            endpoint.send(bytes(1376 * 128))

    def test_receive_empty(self):
        endpoint = make_endpoint()
        assert endpoint.receive(4096) == (ReceiveOutcome.EMPTY, None)

    def test_receive_incomplete_then_delivered(self):
        endpoint = make_endpoint()

        endpoint.engine.input(datagram(0, frg=1, payload=b"ab"))
        assert endpoint.receive(4096) == (ReceiveOutcome.INCOMPLETE, None)

        endpoint.engine.input(datagram(1, frg=0, payload=b"cd"))
        assert endpoint.receive(4096) == (ReceiveOutcome.DELIVERED, b"abcd")

    def test_receive_larger_than_limit(self):
        endpoint = make_endpoint()
        endpoint.engine.input(datagram(0, payload=b"abcdef"))

        with pytest.raises(IntegrityError):
            endpoint.receive(3)


class TestConfiguration:
    """Engine setup from EngineConfig/EndpointConfig."""

    def test_engine_ready_to_flush(self):
        endpoint = make_endpoint()

        assert endpoint.engine.updated
        assert endpoint.engine.cwnd == 1

    def test_default_ssthresh(self):
        endpoint = make_endpoint()
        assert endpoint.engine.ssthresh == 2

    def test_configured_ssthresh(self):
        endpoint = make_endpoint(ssthresh=64)
        assert endpoint.engine.ssthresh == 64

    def test_engine_config_applied(self):
        config = EngineConfig(conv=7, mtu=576, nodelay=1, interval_ms=20, resend=2,
                              no_congestion_control=1, send_window=64, receive_window=256,
                              dead_link=7)
        endpoint = Endpoint("a", config, EndpointConfig())

        kcp = endpoint.engine
        assert kcp.conv == 7
        assert kcp.mss == 576 - 24
        assert kcp.nodelay_mode == 1
        assert kcp.interval == 20
        assert kcp.fastresend == 2
        assert kcp.nocwnd == 1
        assert (kcp.snd_wnd, kcp.rcv_wnd) == (64, 256)
        assert kcp.dead_link == 7

    def test_effective_window(self):
        endpoint = make_endpoint()
        kcp = endpoint.engine

        kcp.cwnd = 10
        assert endpoint.effective_window() == 10

        kcp.rmt_wnd = 4
        assert endpoint.effective_window() == 4

        kcp.rmt_wnd = 128
        kcp.nocwnd = 1
        assert endpoint.effective_window() == 32

    def test_engine_diagnostics_logged_when_tracing(self, caplog):
        endpoint = make_endpoint(trace_engine=True)

        with caplog.at_level(logging.DEBUG, logger="kcpsim"):
            endpoint.send(b"hello")
            endpoint.flush()

        assert "output psh: sn=0" in caplog.text

    def test_no_diagnostics_without_tracing(self, caplog):
        endpoint = make_endpoint()

        with caplog.at_level(logging.DEBUG, logger="kcpsim"):
            endpoint.send(b"hello")
            endpoint.flush()

        assert "output psh" not in caplog.text

    def test_release(self):
        a = make_endpoint()
        b = make_endpoint()
        a.connect(b)
        a.output(datagram(0), a.engine)

        a.release()

        assert a.peer is None
        assert len(a.buffer) == 0
        assert a.engine.sink is None
        # Releasing never touches the peer
        assert b.engine.sink is b
