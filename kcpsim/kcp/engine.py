"""
engine.py - Pure-Python KCP engine

A reliable, ordered, congestion-controlled ARQ protocol over an unreliable
datagram channel. The engine owns no I/O: datagrams leave through the
injected PacketSink and arrive through input().

Typical driving loop (what the simulation harness does):
    kcp = Kcp(conv, sink)
    kcp.update(now)            # required once before the first flush
    kcp.send(payload)
    kcp.flush()                # sink.output() called synchronously
    kcp.input(datagram)        # for every datagram from the peer
    kcp.update(now)            # periodically: timers, acks, window
    data = kcp.recv(max_size)  # None until a whole message is reassembled

Congestion control:
    - Slow start: cwnd += 1 per una advance while cwnd < ssthresh
    - Congestion avoidance: incr grows by mss^2/incr + mss/16, cwnd follows
    - Fast retransmit: ssthresh = inflight / 2, cwnd = ssthresh + resend
    - Timeout: ssthresh = effective window / 2, cwnd = 1

Sequence numbers and timestamps are 32-bit and compared modulo 2^32.
"""

from collections import deque
from typing import Any, List, Optional, Tuple

from kcpsim.kcp.interfaces import LogMask, PacketSink, Tracer
from kcpsim.kcp.segment import OVERHEAD, Command, KcpSegment, decode_header

RTO_NDL = 30        # min rto in nodelay mode
RTO_MIN = 100       # normal min rto
RTO_DEF = 200
RTO_MAX = 60000
ASK_SEND = 1        # need to send WASK
ASK_TELL = 2        # need to send WINS
WND_SND = 32
WND_RCV = 128       # must be >= max fragment count
MTU_DEF = 1400
INTERVAL = 100
DEADLINK = 20
THRESH_INIT = 2
THRESH_MIN = 2
PROBE_INIT = 7000
PROBE_LIMIT = 120000
FASTACK_LIMIT = 5

# peek_size() results
RECV_EMPTY = -1
RECV_INCOMPLETE = -2

_U32 = 0xFFFFFFFF


def _itimediff(later: int, earlier: int) -> int:
    """Signed 32-bit difference ``later - earlier``."""
    return ((later - earlier + 0x80000000) & _U32) - 0x80000000


class KcpError(Exception):
    """Base class for engine errors."""


class MalformedSegmentError(KcpError):
    """Datagram rejected by input(): short, truncated, wrong conv or command."""


class SendRejectedError(KcpError):
    """Application data cannot be queued (too many fragments)."""


class BufferTooSmallError(KcpError):
    """Next message is larger than the caller's receive limit."""


class Kcp:
    """
    One endpoint of a KCP conversation.

    Attributes commonly inspected from outside (read-only by convention):
        cwnd, ssthresh, incr: congestion state
        snd_una, snd_nxt: first unacknowledged / next sequence number
        snd_wnd, rcv_wnd, rmt_wnd: local send, local receive, remote windows
        nocwnd: congestion control disabled
        xmit: total timeout retransmissions
        state: -1 once a segment reached dead_link transmissions (see the dead property)
        current: last time passed to update()
    """

    def __init__(self, conv: int, sink: PacketSink,
                 tracer: Optional[Tracer] = None, user: Any = None):
        """
        Create an engine.

        Args:
            conv: Conversation id; both peers must use the same value
            sink: Receives every outgoing datagram
            tracer: Optional diagnostics receiver (see logmask)
            user: Opaque caller data, kept on ``self.user``
        """
        self.conv = conv
        self.sink = sink
        self.tracer = tracer
        self.user = user
        self.logmask = 0

        self.mtu = MTU_DEF
        self.mss = self.mtu - OVERHEAD
        self.state = 0

        self.snd_una = 0
        self.snd_nxt = 0
        self.rcv_nxt = 0

        self.ssthresh = THRESH_INIT
        self.cwnd = 0
        self.incr = 0
        self.probe = 0
        self.ts_probe = 0
        self.probe_wait = 0

        self.rx_rttval = 0
        self.rx_srtt = 0
        self.rx_rto = RTO_DEF
        self.rx_minrto = RTO_MIN

        self.snd_wnd = WND_SND
        self.rcv_wnd = WND_RCV
        self.rmt_wnd = WND_RCV

        self.current = 0
        self.interval = INTERVAL
        self.ts_flush = INTERVAL
        self.updated = False
        self.xmit = 0
        self.dead_link = DEADLINK

        self.nodelay_mode = 0
        self.fastresend = 0
        self.fastlimit = FASTACK_LIMIT
        self.nocwnd = 0

        self.snd_queue: deque = deque()
        self.rcv_queue: deque = deque()
        self.snd_buf: List[KcpSegment] = []
        self.rcv_buf: List[KcpSegment] = []
        self.acklist: List[Tuple[int, int]] = []

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure_transmission(self, nodelay: int, interval: int,
                               resend: int, nc: int):
        """
        Tune retransmission and congestion behaviour.

        Negative values leave the corresponding setting unchanged.

        Args:
            nodelay: 0 normal, 1 faster rto backoff, 2 backoff by rx_rto
            interval: Internal flush interval in ms (clamped to 10..5000)
            resend: Fast-retransmit after this many skipping acks (0 = off)
            nc: 1 disables congestion control
        """
        if nodelay >= 0:
            self.nodelay_mode = nodelay
            self.rx_minrto = RTO_NDL if nodelay else RTO_MIN
        if interval >= 0:
            self.interval = min(max(interval, 10), 5000)
        if resend >= 0:
            self.fastresend = resend
        if nc >= 0:
            self.nocwnd = nc

    def configure_window(self, sndwnd: int, rcvwnd: int):
        """Set send/receive windows in segments (receive is at least WND_RCV)."""
        if sndwnd > 0:
            self.snd_wnd = sndwnd
        if rcvwnd > 0:
            self.rcv_wnd = max(rcvwnd, WND_RCV)

    def set_mtu(self, mtu: int):
        if mtu < 50 or mtu < OVERHEAD:
            raise ValueError(f"mtu must be at least 50, got {mtu}")
        self.mtu = mtu
        self.mss = mtu - OVERHEAD

    def release(self):
        """Drop all queued state and the references to sink and tracer."""
        self.snd_queue.clear()
        self.rcv_queue.clear()
        self.snd_buf.clear()
        self.rcv_buf.clear()
        self.acklist.clear()
        self.sink = None
        self.tracer = None

    @property
    def dead(self) -> bool:
        """True once some segment was transmitted dead_link times."""
        return self.state < 0

    @property
    def ackcount(self) -> int:
        """Acknowledgements waiting for the next flush."""
        return len(self.acklist)

    # ------------------------------------------------------------------
    # Application side
    # ------------------------------------------------------------------

    def send(self, data: bytes):
        """
        Queue one application message, fragmenting it into mss-sized pieces.

        Raises:
            SendRejectedError: Message needs WND_RCV fragments or more
        """
        data = bytes(data)
        mss = self.mss
        if len(data) <= mss:
            count = 1
        else:
            count = (len(data) + mss - 1) // mss

        if count >= WND_RCV:
            raise SendRejectedError(
                f"message of {len(data)} bytes needs {count} fragments (limit {WND_RCV - 1})"
            )

        for i in range(count):
            chunk = data[i * mss:(i + 1) * mss]
            self.snd_queue.append(KcpSegment(data=chunk, frg=count - i - 1))

    def peek_size(self) -> int:
        """
        Size of the next complete message.

        Returns:
            Message size, RECV_EMPTY if nothing is queued, or
            RECV_INCOMPLETE if fragments are still missing
        """
        if not self.rcv_queue:
            return RECV_EMPTY

        head = self.rcv_queue[0]
        if head.frg == 0:
            return len(head.data)

        if len(self.rcv_queue) < head.frg + 1:
            return RECV_INCOMPLETE

        length = 0
        for seg in self.rcv_queue:
            length += len(seg.data)
            if seg.frg == 0:
                break
        return length

    def recv(self, max_size: Optional[int] = None) -> Optional[bytes]:
        """
        Dequeue one reassembled message.

        Returns:
            The message, or None when no complete message is ready

        Raises:
            BufferTooSmallError: Message is larger than max_size
        """
        peeksize = self.peek_size()
        if peeksize < 0:
            return None

        if max_size is not None and peeksize > max_size:
            raise BufferTooSmallError(f"next message is {peeksize} bytes, limit {max_size}")

        recover = len(self.rcv_queue) >= self.rcv_wnd

        chunks = []
        while self.rcv_queue:
            seg = self.rcv_queue.popleft()
            chunks.append(seg.data)
            self._log(LogMask.RECV, f"recv sn={seg.sn}")
            if seg.frg == 0:
                break

        self._move_rcv_buf()

        # fast recover: tell the peer our window reopened
        if len(self.rcv_queue) < self.rcv_wnd and recover:
            self.probe |= ASK_TELL

        return b''.join(chunks)

    # ------------------------------------------------------------------
    # Network side
    # ------------------------------------------------------------------

    def input(self, data: bytes):
        """
        Feed one datagram received from the peer.

        Raises:
            MalformedSegmentError: Datagram cannot be parsed
        """
        prev_una = self.snd_una
        maxack = 0
        latest_ts = 0
        flag = False

        self._log(LogMask.INPUT, f"[RI] {len(data)} bytes")

        if len(data) < OVERHEAD:
            raise MalformedSegmentError(f"datagram of {len(data)} bytes is shorter than the header")

        offset = 0
        size = len(data)
        while size >= OVERHEAD:
            conv, cmd, frg, wnd, ts, sn, una, length = decode_header(data, offset)
            if conv != self.conv:
                raise MalformedSegmentError(f"conv mismatch: got {conv}, expected {self.conv}")

            offset += OVERHEAD
            size -= OVERHEAD
            if size < length:
                raise MalformedSegmentError(f"segment sn={sn} truncated: {size} of {length} bytes")

            if cmd not in (Command.PUSH, Command.ACK, Command.WASK, Command.WINS):
                raise MalformedSegmentError(f"unknown command {cmd}")

            self.rmt_wnd = wnd
            self._parse_una(una)
            self._shrink_buf()

            if cmd == Command.ACK:
                rtt = _itimediff(self.current, ts)
                if rtt >= 0:
                    self._update_ack(rtt)
                self._parse_ack(sn)
                self._shrink_buf()
                if not flag:
                    flag = True
                    maxack = sn
                    latest_ts = ts
                elif _itimediff(sn, maxack) > 0:
                    maxack = sn
                    latest_ts = ts
                self._log(LogMask.IN_ACK, f"input ack: sn={sn} rtt={rtt} rto={self.rx_rto}")

            elif cmd == Command.PUSH:
                self._log(LogMask.IN_DATA, f"input psh: sn={sn} ts={ts}")
                if _itimediff(sn, (self.rcv_nxt + self.rcv_wnd) & _U32) < 0:
                    self.acklist.append((sn, ts))
                    if _itimediff(sn, self.rcv_nxt) >= 0:
                        self._parse_data(KcpSegment(
                            conv=conv, cmd=cmd, frg=frg, wnd=wnd, ts=ts, sn=sn, una=una,
                            data=bytes(data[offset:offset + length]),
                        ))

            elif cmd == Command.WASK:
                self.probe |= ASK_TELL
                self._log(LogMask.IN_PROBE, "input probe")

            else:
                self._log(LogMask.IN_WINS, f"input wins: {wnd}")

            offset += length
            size -= length

        if flag:
            self._parse_fastack(maxack, latest_ts)

        if _itimediff(self.snd_una, prev_una) > 0 and self.cwnd < self.rmt_wnd:
            mss = self.mss
            if self.cwnd < self.ssthresh:
                self.cwnd += 1
                self.incr += mss
            else:
                if self.incr < mss:
                    self.incr = mss
                self.incr += (mss * mss) // self.incr + (mss // 16)
                if (self.cwnd + 1) * mss <= self.incr:
                    self.cwnd += 1
            if self.cwnd > self.rmt_wnd:
                self.cwnd = self.rmt_wnd
                self.incr = self.rmt_wnd * mss

    def update(self, current: int):
        """
        Advance the engine clock; flushes once per interval.

        Must be called once before flush() does anything.
        """
        self.current = current & _U32

        if not self.updated:
            self.updated = True
            self.ts_flush = self.current

        slap = _itimediff(self.current, self.ts_flush)
        if slap >= 10000 or slap < -10000:
            self.ts_flush = self.current
            slap = 0

        if slap >= 0:
            self.ts_flush += self.interval
            if _itimediff(self.current, self.ts_flush) >= 0:
                self.ts_flush = self.current + self.interval
            self.flush()

    def flush(self):
        """Emit pending acks, probes, new data and due retransmissions."""
        if not self.updated:
            return

        current = self.current
        change = False
        lost = False
        buf = bytearray()

        seg = KcpSegment(conv=self.conv, cmd=Command.ACK,
                         wnd=self._wnd_unused(), una=self.rcv_nxt)

        for sn, ts in self.acklist:
            if len(buf) + OVERHEAD > self.mtu:
                self._output(buf)
                buf.clear()
            seg.sn = sn
            seg.ts = ts
            buf += seg.encode_header()
            self._log(LogMask.OUT_ACK, f"output ack: sn={sn}")
        self.acklist.clear()

        # probe the remote window while it is closed
        if self.rmt_wnd == 0:
            if self.probe_wait == 0:
                self.probe_wait = PROBE_INIT
                self.ts_probe = current + self.probe_wait
            elif _itimediff(current, self.ts_probe) >= 0:
                if self.probe_wait < PROBE_INIT:
                    self.probe_wait = PROBE_INIT
                self.probe_wait += self.probe_wait // 2
                if self.probe_wait > PROBE_LIMIT:
                    self.probe_wait = PROBE_LIMIT
                self.ts_probe = current + self.probe_wait
                self.probe |= ASK_SEND
        else:
            self.ts_probe = 0
            self.probe_wait = 0

        if self.probe & ASK_SEND:
            seg.cmd = Command.WASK
            if len(buf) + OVERHEAD > self.mtu:
                self._output(buf)
                buf.clear()
            buf += seg.encode_header()
            self._log(LogMask.OUT_PROBE, "output probe")

        if self.probe & ASK_TELL:
            seg.cmd = Command.WINS
            if len(buf) + OVERHEAD > self.mtu:
                self._output(buf)
                buf.clear()
            buf += seg.encode_header()
            self._log(LogMask.OUT_WINS, f"output wins: {seg.wnd}")

        self.probe = 0

        cwnd = min(self.snd_wnd, self.rmt_wnd)
        if not self.nocwnd:
            cwnd = min(self.cwnd, cwnd)

        # move data from snd_queue to snd_buf
        while _itimediff(self.snd_nxt, (self.snd_una + cwnd) & _U32) < 0:
            if not self.snd_queue:
                break
            newseg = self.snd_queue.popleft()
            newseg.conv = self.conv
            newseg.cmd = Command.PUSH
            newseg.wnd = seg.wnd
            newseg.ts = current
            newseg.sn = self.snd_nxt
            newseg.una = self.rcv_nxt
            newseg.resendts = current
            newseg.rto = self.rx_rto
            newseg.fastack = 0
            newseg.xmit = 0
            self.snd_nxt = (self.snd_nxt + 1) & _U32
            self.snd_buf.append(newseg)

        resent = self.fastresend if self.fastresend > 0 else _U32
        rtomin = (self.rx_rto >> 3) if self.nodelay_mode == 0 else 0

        for segment in self.snd_buf:
            needsend = False
            if segment.xmit == 0:
                needsend = True
                segment.xmit += 1
                segment.rto = self.rx_rto
                segment.resendts = current + segment.rto + rtomin
            elif _itimediff(current, segment.resendts) >= 0:
                needsend = True
                segment.xmit += 1
                self.xmit += 1
                if self.nodelay_mode == 0:
                    segment.rto += max(segment.rto, self.rx_rto)
                else:
                    step = segment.rto if self.nodelay_mode < 2 else self.rx_rto
                    segment.rto += step // 2
                segment.resendts = current + segment.rto
                lost = True
            elif segment.fastack >= resent:
                if segment.xmit <= self.fastlimit or self.fastlimit <= 0:
                    needsend = True
                    segment.xmit += 1
                    segment.fastack = 0
                    segment.resendts = current + segment.rto
                    change = True

            if needsend:
                segment.ts = current
                segment.wnd = seg.wnd
                segment.una = self.rcv_nxt

                if len(buf) + OVERHEAD + len(segment.data) > self.mtu:
                    self._output(buf)
                    buf.clear()
                buf += segment.encode()
                self._log(LogMask.OUT_DATA, f"output psh: sn={segment.sn} xmit={segment.xmit}")

                if segment.xmit >= self.dead_link:
                    self.state = -1

        if buf:
            self._output(buf)

        if change:
            inflight = _itimediff(self.snd_nxt, self.snd_una)
            self.ssthresh = max(inflight // 2, THRESH_MIN)
            self.cwnd = self.ssthresh + resent
            self.incr = self.cwnd * self.mss

        if lost:
            self.ssthresh = max(cwnd // 2, THRESH_MIN)
            self.cwnd = 1
            self.incr = self.mss

        if self.cwnd < 1:
            self.cwnd = 1
            self.incr = self.mss

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _output(self, buf: bytearray):
        if not buf:
            return
        self._log(LogMask.OUTPUT, f"[RO] {len(buf)} bytes")
        self.sink.output(bytes(buf), self)

    def _log(self, mask: LogMask, message: str):
        if self.tracer is not None and self.logmask & mask:
            self.tracer.write_log(message, self)

    def _wnd_unused(self) -> int:
        if len(self.rcv_queue) < self.rcv_wnd:
            return self.rcv_wnd - len(self.rcv_queue)
        return 0

    def _update_ack(self, rtt: int):
        if self.rx_srtt == 0:
            self.rx_srtt = rtt
            self.rx_rttval = rtt // 2
        else:
            delta = abs(rtt - self.rx_srtt)
            self.rx_rttval = (3 * self.rx_rttval + delta) // 4
            self.rx_srtt = max((7 * self.rx_srtt + rtt) // 8, 1)
        rto = self.rx_srtt + max(self.interval, 4 * self.rx_rttval)
        self.rx_rto = min(max(self.rx_minrto, rto), RTO_MAX)

    def _shrink_buf(self):
        self.snd_una = self.snd_buf[0].sn if self.snd_buf else self.snd_nxt

    def _parse_ack(self, sn: int):
        if _itimediff(sn, self.snd_una) < 0 or _itimediff(sn, self.snd_nxt) >= 0:
            return
        for i, seg in enumerate(self.snd_buf):
            if seg.sn == sn:
                del self.snd_buf[i]
                break
            if _itimediff(sn, seg.sn) < 0:
                break

    def _parse_una(self, una: int):
        count = 0
        for seg in self.snd_buf:
            if _itimediff(una, seg.sn) > 0:
                count += 1
            else:
                break
        if count:
            del self.snd_buf[:count]

    def _parse_fastack(self, sn: int, ts: int):
        if _itimediff(sn, self.snd_una) < 0 or _itimediff(sn, self.snd_nxt) >= 0:
            return
        for seg in self.snd_buf:
            if _itimediff(sn, seg.sn) < 0:
                break
            elif sn != seg.sn:
                seg.fastack += 1

    def _parse_data(self, newseg: KcpSegment):
        sn = newseg.sn
        if (_itimediff(sn, (self.rcv_nxt + self.rcv_wnd) & _U32) >= 0
                or _itimediff(sn, self.rcv_nxt) < 0):
            return

        insert_at = 0
        for i in range(len(self.rcv_buf) - 1, -1, -1):
            seg = self.rcv_buf[i]
            if seg.sn == sn:
                return  # duplicate
            if _itimediff(sn, seg.sn) > 0:
                insert_at = i + 1
                break
        self.rcv_buf.insert(insert_at, newseg)

        self._move_rcv_buf()

    def _move_rcv_buf(self):
        while self.rcv_buf:
            seg = self.rcv_buf[0]
            if seg.sn != self.rcv_nxt or len(self.rcv_queue) >= self.rcv_wnd:
                break
            self.rcv_buf.pop(0)
            self.rcv_queue.append(seg)
            self.rcv_nxt = (self.rcv_nxt + 1) & _U32
