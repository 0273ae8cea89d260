"""
verifier.py - End-to-end integrity check

The engine promises ordered, exactly-once delivery of application bytes, so
any difference between a sent and a reassembled message is a protocol
defect, never a simulated fault.
"""

from typing import List, Optional

from kcpsim.harness.errors import IntegrityError


class Verifier:
    """Byte-exact comparison of sent and received messages."""

    def __init__(self):
        self.verified = 0
        self.bytes_verified = 0
        self.completion_ticks: List[int] = []

    def verify(self, sent: bytes, received: bytes, tick: Optional[int] = None):
        """
        Compare one message.

        Raises:
            IntegrityError: On length or content mismatch
        """
        if len(sent) != len(received):
            raise IntegrityError(
                f"message {self.verified + 1}: length mismatch, "
                f"sent {len(sent)} bytes, received {len(received)}"
            )

        if sent != received:
            offset = next(i for i, (a, b) in enumerate(zip(sent, received)) if a != b)
            raise IntegrityError(
                f"message {self.verified + 1}: content mismatch at byte {offset} "
                f"(sent 0x{sent[offset]:02x}, received 0x{received[offset]:02x})"
            )

        self.verified += 1
        self.bytes_verified += len(received)
        if tick is not None:
            self.completion_ticks.append(tick)
