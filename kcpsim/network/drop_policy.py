"""
drop_policy.py - Deterministic, targeted datagram loss

Unlike random loss, a DropPolicy names exactly which sequence numbers are
lost. Targets are consumed strictly in the order listed: only the head
target can match, and each target drops exactly one datagram. Once every
target is consumed the policy never matches again.

    policy = DropPolicy([3, 7])
    policy.check(7)  # False - head target is 3
    policy.check(3)  # True  - 3 dropped, head is now 7
    policy.check(3)  # False - retransmission of 3 goes through
"""

from typing import List, Sequence, Tuple


def match_target(targets: Sequence[int], cursor: int, sn: int) -> Tuple[bool, int]:
    """
    Match a sequence number against the current head target.

    Args:
        targets: Ordered drop targets
        cursor: Index of the current head target
        sn: Observed sequence number

    Returns:
        (matched, next_cursor); the cursor advances by one only on a match
    """
    if cursor < len(targets) and targets[cursor] == sn:
        return True, cursor + 1
    return False, cursor


class DropPolicy:
    """Ordered, exhaustible list of sequence numbers to drop."""

    def __init__(self, targets: Sequence[int] = ()):
        self.targets: List[int] = list(targets)
        self.cursor = 0

    def check(self, sn: int) -> bool:
        """Return True (and consume the head target) if ``sn`` should be dropped."""
        matched, self.cursor = match_target(self.targets, self.cursor, sn)
        return matched

    @property
    def exhausted(self) -> bool:
        return self.cursor >= len(self.targets)

    @property
    def pending(self) -> List[int]:
        """Targets not yet matched."""
        return self.targets[self.cursor:]
