"""
coordinator.py - Clock-driven simulation loop

DESIGN PHILOSOPHY:
- Owns both endpoints and the virtual clock; no global state
- Conservative synchronous lockstep, fully deterministic
- Fail fast: every harness error propagates out of run()

Each tick executes, in this fixed order:
1. Send:     while sends remain, one message to the sender, then flush it
2. Dispatch: sender's round first, then receiver's (A's traffic reaches B
             before B's own acknowledgement round). The sender's window is
             sampled between the two rounds, before B's acks come back
3. Receive:  try to read one message from the receiver and verify it
4. Advance virtual time by one tick

The loop ends when every message has been received, or raises StallError once
the tick limit is reached.
"""

import logging
import time
from collections import Counter
from typing import Optional

from kcpsim.harness.dispatcher import Dispatcher
from kcpsim.harness.endpoint import Endpoint, ReceiveOutcome
from kcpsim.harness.errors import StallError
from kcpsim.harness.trace import TraceRecorder, WindowSample
from kcpsim.harness.verifier import Verifier

logger = logging.getLogger(__name__)


class Coordinator:
    """
    Two-endpoint lockstep loop.

    Attributes:
        current_ms: Virtual time of the next tick
        tick: Number of ticks executed so far
        sends_issued: Messages handed to the sender
        completed: Messages received and verified
        completion_tick: Tick on which the last message was verified
        outcomes: Count of receive attempts per ReceiveOutcome
    """

    def __init__(self, sender: Endpoint, receiver: Endpoint, dispatcher: Dispatcher,
                 payload: bytes, send_count: int, tick_ms: int = 100,
                 recv_start_ms: int = 0, max_ticks: int = 10000,
                 verifier: Optional[Verifier] = None,
                 recorder: Optional[TraceRecorder] = None):
        """
        Initialize coordinator.

        Args:
            sender: Endpoint A (application sends go here)
            receiver: Endpoint B (application receives come from here)
            dispatcher: Delivers buffered datagrams between the two
            payload: Message sent send_count times
            send_count: Total application sends; also the completion target
            tick_ms: Virtual time step
            recv_start_ms: No receive attempts before this virtual time
            max_ticks: Tick limit before the run is declared stalled
            verifier: Integrity checker (default: new Verifier)
            recorder: Trace for window samples and completions
        """
        self.sender = sender
        self.receiver = receiver
        self.dispatcher = dispatcher
        self.payload = bytes(payload)
        self.send_count = send_count
        self.tick_ms = tick_ms
        self.recv_start_ms = recv_start_ms
        self.max_ticks = max_ticks
        self.verifier = verifier if verifier is not None else Verifier()
        self.recorder = recorder if recorder is not None else TraceRecorder()

        self.current_ms = 0
        self.tick = 0
        self.sends_issued = 0
        self.completed = 0
        self.completion_tick: Optional[int] = None
        self.outcomes: Counter = Counter()

    @property
    def finished(self) -> bool:
        return self.completed >= self.send_count

    def step(self) -> bool:
        """
        Execute one tick.

        Returns:
            True once every message has been received and verified
        """
        self.recorder.set_clock(self.tick, self.current_ms)
        emitted_before = self.sender.metrics.emitted

        # Phase 1: Send
        if self.sends_issued < self.send_count:
            self.sends_issued += 1
            self.sender.send(self.payload)
            self.sender.flush()

        # Phase 2: Dispatch both directions
        self.dispatcher.dispatch(self.sender, self.current_ms)
        self._sample(self.sender.metrics.emitted - emitted_before)
        self.dispatcher.dispatch(self.receiver, self.current_ms)

        # Phase 3: Receive
        if self.current_ms >= self.recv_start_ms:
            self._receive()

        # Phase 4: Advance time
        self.current_ms += self.tick_ms
        self.tick += 1

        return self.finished

    def run(self) -> int:
        """
        Run until every message is received.

        Returns:
            Number of ticks executed

        Raises:
            StallError: max_ticks reached first
            HarnessError: Any fatal delivery, integrity or send failure
        """
        logger.info("Starting loop: %d send(s) of %d bytes, tick %dms, limit %d ticks",
                    self.send_count, len(self.payload), self.tick_ms, self.max_ticks)
        start_wall_time = time.time()

        while not self.finished:
            if self.tick >= self.max_ticks:
                kcp = self.sender.engine
                raise StallError(
                    f"no progress to completion after {self.tick} ticks "
                    f"({self.completed}/{self.send_count} messages received, "
                    f"sender una={kcp.snd_una} nxt={kcp.snd_nxt}"
                    f"{', dead link' if kcp.dead else ''})"
                )
            self.step()

            if self.tick % 1000 == 0:
                logger.info("Tick %d: t=%dms, %d/%d received",
                            self.tick, self.current_ms, self.completed, self.send_count)

        elapsed = time.time() - start_wall_time
        logger.info("Loop finished: %d ticks, completion at tick %s, wall time %.3fs",
                    self.tick, self.completion_tick, elapsed)
        return self.tick

    def _receive(self):
        outcome, data = self.receiver.receive(len(self.payload))
        self.outcomes[outcome] += 1
        if outcome is not ReceiveOutcome.DELIVERED:
            return

        self.verifier.verify(self.payload, data, tick=self.tick)
        self.completed += 1
        self.completion_tick = self.tick
        self.recorder.record('complete', self.receiver.name, sn=self.completed, size=len(data))

    def _sample(self, emitted: int):
        kcp = self.sender.engine
        sample = WindowSample(
            tick=self.tick,
            time_ms=self.current_ms,
            emitted=emitted,
            una=kcp.snd_una,
            nxt=kcp.snd_nxt,
            window=self.sender.effective_window(),
            cwnd=kcp.cwnd,
            ssthresh=kcp.ssthresh,
            incr=kcp.incr,
            xmit=kcp.xmit,
        )
        self.recorder.record_sample(sample)
        logger.debug(sample.describe())
