"""
trace.py - Deterministic event trace

Records what the channel did (drops, overflows, deliveries) and what the
receiver completed, stamped with the virtual tick, plus one congestion-window
sample per tick. Two runs of the same scenario must produce the same trace;
digest() makes that cheap to compare.
"""

import csv
import hashlib
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import List, Optional


@dataclass(frozen=True)
class TraceEvent:
    """One observable channel or receiver event."""
    tick: int
    time_ms: int
    kind: str       # drop | overflow | deliver | complete
    endpoint: str
    sn: int = -1
    size: int = 0


@dataclass(frozen=True)
class WindowSample:
    """Sender congestion state after its dispatch round, before the peer's acks."""
    tick: int
    time_ms: int
    emitted: int    # datagrams the sender emitted during this tick
    una: int
    nxt: int
    window: int     # effective window: min(snd_wnd, rmt_wnd[, cwnd])
    cwnd: int
    ssthresh: int
    incr: int
    xmit: int       # cumulative timeout retransmissions

    def describe(self) -> str:
        return (f"t={self.time_ms} n={self.emitted} una={self.una} nxt={self.nxt} "
                f"cwnd={self.window}|{self.cwnd} ssthresh={self.ssthresh} incr={self.incr}")


class TraceRecorder:
    """Collects TraceEvents and WindowSamples for one run."""

    def __init__(self):
        self.events: List[TraceEvent] = []
        self.samples: List[WindowSample] = []
        self.tick = 0
        self.time_ms = 0

    def set_clock(self, tick: int, time_ms: int):
        self.tick = tick
        self.time_ms = time_ms

    def record(self, kind: str, endpoint: str, sn: int = -1, size: int = 0):
        self.events.append(TraceEvent(
            tick=self.tick,
            time_ms=self.time_ms,
            kind=kind,
            endpoint=endpoint,
            sn=sn,
            size=size,
        ))

    def record_sample(self, sample: WindowSample):
        self.samples.append(sample)

    def events_of(self, kind: str, endpoint: Optional[str] = None) -> List[TraceEvent]:
        return [e for e in self.events
                if e.kind == kind and (endpoint is None or e.endpoint == endpoint)]

    def write_csv(self, path: str):
        """Write events to CSV (one row per event)."""
        _write_rows(Path(path), TraceEvent, self.events)

    def write_samples_csv(self, path: str):
        """Write window samples to CSV (one row per tick)."""
        _write_rows(Path(path), WindowSample, self.samples)

    def digest(self) -> str:
        """SHA-256 over every event and sample, in order."""
        hasher = hashlib.sha256()
        for event in self.events:
            hasher.update(repr(tuple(asdict(event).values())).encode('utf-8'))
        for sample in self.samples:
            hasher.update(repr(tuple(asdict(sample).values())).encode('utf-8'))
        return hasher.hexdigest()


def _write_rows(path: Path, row_type, rows):
    names = [f.name for f in fields(row_type)]
    with open(path, 'w', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=names)
        writer.writeheader()
        for row in rows:
            writer.writerow(asdict(row))
