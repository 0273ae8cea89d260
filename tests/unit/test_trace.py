#!/usr/bin/env python3
"""
test_trace.py - Unit Tests for TraceRecorder, EndpointMetrics and Verifier
"""

import csv
import sys
from pathlib import Path

import pytest

# Add project root to path
_project_root = Path(__file__).parent.parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from kcpsim.harness.errors import IntegrityError
from kcpsim.harness.trace import TraceRecorder, WindowSample
from kcpsim.harness.verifier import Verifier
from kcpsim.network.metrics import EndpointMetrics


def sample(tick: int, **overrides) -> WindowSample:
    values = dict(tick=tick, time_ms=tick * 100, emitted=1, una=0, nxt=1,
                  window=1, cwnd=1, ssthresh=2, incr=1376, xmit=0)
    values.update(overrides)
    return WindowSample(**values)


class TestTraceRecorder:
    """Event stamping, filtering, export and digest."""

    def test_events_stamped_with_clock(self):
        recorder = TraceRecorder()
        recorder.set_clock(3, 300)
        recorder.record('drop', 'sender', sn=5, size=1400)

        event = recorder.events[0]
        assert (event.tick, event.time_ms, event.kind, event.endpoint, event.sn, event.size) == \
            (3, 300, 'drop', 'sender', 5, 1400)

    def test_events_of(self):
        recorder = TraceRecorder()
        recorder.record('drop', 'sender', sn=0)
        recorder.record('deliver', 'sender', sn=1)
        recorder.record('deliver', 'receiver', sn=0)

        assert len(recorder.events_of('deliver')) == 2
        assert [e.sn for e in recorder.events_of('deliver', 'receiver')] == [0]
        assert recorder.events_of('overflow') == []

    def test_digest_is_stable(self):
        a = TraceRecorder()
        b = TraceRecorder()
        for recorder in (a, b):
            recorder.record('deliver', 'sender', sn=0, size=10)
            recorder.record_sample(sample(0))

        assert a.digest() == b.digest()

    def test_digest_sees_every_field(self):
        a = TraceRecorder()
        b = TraceRecorder()
        a.record_sample(sample(0, cwnd=2))
        b.record_sample(sample(0, cwnd=3))

        assert a.digest() != b.digest()

    def test_write_csv(self, tmp_path):
        recorder = TraceRecorder()
        recorder.record('drop', 'sender', sn=0, size=1400)
        recorder.record('deliver', 'receiver', sn=0, size=24)
        path = tmp_path / "events.csv"

        recorder.write_csv(str(path))

        with open(path) as f:
            rows = list(csv.DictReader(f))
        assert len(rows) == 2
        assert rows[0]['kind'] == 'drop'
        assert rows[1]['endpoint'] == 'receiver'

    def test_write_samples_csv(self, tmp_path):
        recorder = TraceRecorder()
        for tick in range(3):
            recorder.record_sample(sample(tick))
        path = tmp_path / "samples.csv"

        recorder.write_samples_csv(str(path))

        with open(path) as f:
            rows = list(csv.DictReader(f))
        assert [row['time_ms'] for row in rows] == ['0', '100', '200']
        assert 'ssthresh' in rows[0]


class TestWindowSample:
    """Per-tick report line."""

    def test_describe(self):
        line = sample(3, emitted=2, una=4, nxt=6, window=2, cwnd=2, ssthresh=2, incr=2752).describe()
        assert line == "t=300 n=2 una=4 nxt=6 cwnd=2|2 ssthresh=2 incr=2752"


class TestEndpointMetrics:
    """Channel counters."""

    def test_emitted_tracks_outcomes(self):
        metrics = EndpointMetrics()
        metrics.record_sent()
        metrics.record_sent()
        metrics.record_dropped()
        metrics.record_overflow()
        metrics.record_delivered()

        assert metrics.emitted == 4
        assert metrics.lost == 2
        assert metrics.delivered == 1

    def test_as_dict_includes_lost(self):
        metrics = EndpointMetrics()
        metrics.record_dropped()

        assert metrics.as_dict() == {
            'emitted': 1, 'sent': 0, 'dropped': 1, 'overflowed': 0, 'delivered': 0, 'lost': 1,
        }

    def test_reset(self):
        metrics = EndpointMetrics()
        metrics.record_sent()
        metrics.reset()
        assert metrics == EndpointMetrics()


class TestVerifier:
    """Byte-exact comparison."""

    def test_match(self):
        verifier = Verifier()
        verifier.verify(b"abc", b"abc", tick=4)

        assert verifier.verified == 1
        assert verifier.bytes_verified == 3
        assert verifier.completion_ticks == [4]

    def test_length_mismatch(self):
        with pytest.raises(IntegrityError, match="length mismatch"):
            Verifier().verify(b"abc", b"ab")

    def test_content_mismatch_reports_offset(self):
        with pytest.raises(IntegrityError, match="byte 2"):
            Verifier().verify(b"abcd", b"abXd")

    def test_failure_not_counted(self):
        verifier = Verifier()
        with pytest.raises(IntegrityError):
            verifier.verify(b"a", b"b")
        assert verifier.verified == 0
