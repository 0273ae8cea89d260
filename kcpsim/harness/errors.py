"""
errors.py - Harness-fatal conditions

Anything raised from here aborts the run; the harness never retries.
Expected fault-model outcomes (drops, non-fatal overflow, "no data yet")
are not exceptions.
"""


class HarnessError(Exception):
    """Base class for conditions that abort a simulation run."""


class DeliveryError(HarnessError):
    """An engine rejected a datagram relayed by the channel."""


class IntegrityError(HarnessError):
    """A reassembled message differs from what was sent."""


class BufferOverflowError(HarnessError):
    """Output buffer capacity exceeded on an endpoint that forbids overflow."""


class SendError(HarnessError):
    """The sending engine refused application data."""


class StallError(HarnessError):
    """The loop hit its tick limit before all transfers completed."""
