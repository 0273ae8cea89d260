"""
metrics.py - Per-endpoint channel counters

Simple counters, easy to serialize. Intentional drops (DropPolicy) and
capacity overflows are counted separately; ``lost`` combines them.
"""

from dataclasses import dataclass, asdict
from typing import Dict


@dataclass
class EndpointMetrics:
    """
    Channel counters for one endpoint's outgoing direction.

    emitted = sent + dropped + overflowed at all times.
    """

    emitted: int = 0     # output hook calls
    sent: int = 0        # buffered for delivery
    dropped: int = 0     # discarded by the drop policy
    overflowed: int = 0  # discarded because the buffer was full
    delivered: int = 0   # fed into the peer engine

    @property
    def lost(self) -> int:
        """Datagrams that never reached the peer."""
        return self.dropped + self.overflowed

    def record_sent(self):
        self.emitted += 1
        self.sent += 1

    def record_dropped(self):
        self.emitted += 1
        self.dropped += 1

    def record_overflow(self):
        self.emitted += 1
        self.overflowed += 1

    def record_delivered(self):
        self.delivered += 1

    def as_dict(self) -> Dict[str, int]:
        data = asdict(self)
        data['lost'] = self.lost
        return data

    def reset(self):
        """Reset all counters to initial state."""
        self.emitted = 0
        self.sent = 0
        self.dropped = 0
        self.overflowed = 0
        self.delivered = 0
