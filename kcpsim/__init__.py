"""
kcpsim - Deterministic simulation harness for the KCP transport protocol

Two protocol endpoints exchange datagrams through an in-process, fault-capable
relay driven by a virtual clock. No sockets, no threads, no randomness:
the same scenario always produces the same trace.
"""

__version__ = "0.1.0"
