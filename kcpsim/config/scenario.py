"""
scenario.py - YAML Scenario Parser

Parses harness scenarios from YAML configuration files.

Design philosophy:
- Keep it simple: minimal validation, no schema framework
- Fail fast: raise clear exceptions on errors, before any endpoint exists
- No magic: explicit field names, every former build-time constant is a field

Example YAML:
    simulation:
      name: single_drop
      send_count: 1
      payload_size: 4096      # optional, defaults to the engine MSS
      tick_ms: 100
      recv_start_ms: 0
      max_ticks: 10000
      ack_flush: batch        # "batch" or "per_segment"
      trace: false

    engine:
      conv: 1
      mtu: 1400
      nodelay: [0, 100, 0, 0] # nodelay, interval_ms, resend, nc
      window: [32, 128]       # send, receive
      dead_link: 20

    endpoints:
      sender:
        drop: [0]
        buffer_capacity: 4096
        ssthresh: 2
      receiver:
        drop: []
"""

import yaml
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
from pathlib import Path

from kcpsim.kcp.interfaces import LogMask
from kcpsim.kcp.segment import OVERHEAD

ACK_FLUSH_POLICIES = ("batch", "per_segment")


@dataclass
class EngineConfig:
    """
    Protocol engine tuning shared by both endpoints.

    Attributes:
        conv: Conversation id (both peers use the same value)
        mtu: Maximum datagram size in bytes
        nodelay: 0 normal, 1/2 nodelay modes
        interval_ms: Engine flush interval
        resend: Fast-retransmit threshold in skipping acks (0 disables)
        no_congestion_control: 1 disables the congestion window
        send_window: Send window in segments
        receive_window: Receive window in segments
        dead_link: Transmissions of one segment after which the link is dead
        log_mask: Engine diagnostic categories forwarded when tracing
    """
    conv: int = 1
    mtu: int = 1400
    nodelay: int = 0
    interval_ms: int = 100
    resend: int = 0
    no_congestion_control: int = 0
    send_window: int = 32
    receive_window: int = 128
    dead_link: int = 20
    log_mask: int = int(LogMask.ALL & ~LogMask.RECV)

    def __post_init__(self):
        """Validate engine configuration."""
        if self.mtu < 50:
            raise ValueError(f"engine.mtu must be at least 50, got {self.mtu}")

        if self.nodelay not in (0, 1, 2):
            raise ValueError(f"engine.nodelay must be 0, 1 or 2, got {self.nodelay}")

        if self.interval_ms <= 0:
            raise ValueError(f"engine.interval_ms must be positive, got {self.interval_ms}")

        if self.resend < 0:
            raise ValueError(f"engine.resend must be non-negative, got {self.resend}")

        if self.dead_link <= 0:
            raise ValueError(f"engine.dead_link must be positive, got {self.dead_link}")

        if self.send_window <= 0 or self.receive_window <= 0:
            raise ValueError(
                f"engine.window sizes must be positive, got "
                f"[{self.send_window}, {self.receive_window}]"
            )

    @property
    def mss(self) -> int:
        """Largest payload carried by one segment."""
        return self.mtu - OVERHEAD


@dataclass
class EndpointConfig:
    """
    Per-endpoint harness configuration.

    Attributes:
        drop: Sequence numbers to drop, matched strictly in listed order
        buffer_capacity: Output buffer size in datagrams
        overflow_fatal: Raise instead of silently discarding on overflow
        ssthresh: Initial congestion threshold (None keeps the engine default)
    """
    drop: List[int] = field(default_factory=list)
    buffer_capacity: int = 4096
    overflow_fatal: bool = False
    ssthresh: Optional[int] = None

    def __post_init__(self):
        """Validate endpoint configuration."""
        if self.buffer_capacity <= 0:
            raise ValueError(f"buffer_capacity must be positive, got {self.buffer_capacity}")

        for sn in self.drop:
            if not (0 <= sn <= 0xFFFFFFFF):
                raise ValueError(f"drop target {sn} is not a 32-bit sequence number")

        if self.ssthresh is not None and self.ssthresh < 1:
            raise ValueError(f"ssthresh must be at least 1, got {self.ssthresh}")


@dataclass
class Scenario:
    """
    Harness scenario configuration.

    Attributes:
        name: Scenario label used in logs and results
        send_count: Number of application messages the sender issues
        payload_size: Bytes per message (None means one MSS)
        tick_ms: Virtual clock increment per loop iteration
        recv_start_ms: Receiver does not read before this virtual time
        max_ticks: Loop iterations before the run is declared stalled
        ack_flush: "batch" (flush peer acks after the drain) or "per_segment"
        trace: Forward engine diagnostics to the log
        engine: Engine tuning shared by both endpoints
        sender: Endpoint A configuration
        receiver: Endpoint B configuration
    """
    name: str = "default"
    send_count: int = 1
    payload_size: Optional[int] = None
    tick_ms: int = 100
    recv_start_ms: int = 0
    max_ticks: int = 10000
    ack_flush: str = "batch"
    trace: bool = False
    engine: EngineConfig = field(default_factory=EngineConfig)
    sender: EndpointConfig = field(default_factory=EndpointConfig)
    receiver: EndpointConfig = field(default_factory=EndpointConfig)

    def __post_init__(self):
        """Validate scenario after initialization."""
        if self.send_count <= 0:
            raise ValueError(f"send_count must be positive, got {self.send_count}")

        if self.payload_size is not None and self.payload_size <= 0:
            raise ValueError(f"payload_size must be positive, got {self.payload_size}")

        if self.tick_ms <= 0:
            raise ValueError(f"tick_ms must be positive, got {self.tick_ms}")

        if self.recv_start_ms < 0:
            raise ValueError(f"recv_start_ms must be non-negative, got {self.recv_start_ms}")

        if self.max_ticks <= 0:
            raise ValueError(f"max_ticks must be positive, got {self.max_ticks}")

        if self.ack_flush not in ACK_FLUSH_POLICIES:
            raise ValueError(f"ack_flush must be 'batch' or 'per_segment', got '{self.ack_flush}'")

    @property
    def message_size(self) -> int:
        """Bytes per application message."""
        if self.payload_size is None:
            return self.engine.mss
        return self.payload_size


def _parse_pair(value: Any, name: str, size: int) -> List[int]:
    if not isinstance(value, (list, tuple)) or len(value) != size:
        raise ValueError(f"{name} must be a list of {size} integers, got {value!r}")
    return [int(v) for v in value]


def _parse_endpoint(data: Any, name: str) -> EndpointConfig:
    if data is None:
        return EndpointConfig()
    if not isinstance(data, dict):
        raise ValueError(f"endpoints.{name} must be a dict")

    drop = data.get('drop', [])
    if drop is None:
        drop = []
    if not isinstance(drop, list):
        raise ValueError(f"endpoints.{name}.drop must be a list")

    ssthresh = data.get('ssthresh')

    return EndpointConfig(
        drop=[int(sn) for sn in drop],
        buffer_capacity=int(data.get('buffer_capacity', 4096)),
        overflow_fatal=bool(data.get('overflow_fatal', False)),
        ssthresh=int(ssthresh) if ssthresh is not None else None,
    )


def scenario_from_dict(data: Dict[str, Any]) -> Scenario:
    """
    Build a Scenario from an already-parsed mapping.

    Raises:
        ValueError: If required sections are missing or values are invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"Scenario must be a dict, got {type(data)}")

    # Extract simulation section
    if 'simulation' not in data:
        raise ValueError("Missing required section: 'simulation'")

    sim = data['simulation']
    if not isinstance(sim, dict):
        raise ValueError("'simulation' section must be a dict")

    send_count = sim.get('send_count')
    if send_count is None:
        raise ValueError("Missing required field: simulation.send_count")

    payload_size = sim.get('payload_size')

    # Engine section is optional; every field has the engine default
    engine_config = EngineConfig()
    if 'engine' in data:
        eng = data['engine']
        if not isinstance(eng, dict):
            raise ValueError("'engine' section must be a dict")

        nodelay, interval_ms, resend, nc = _parse_pair(
            eng.get('nodelay', [0, 100, 0, 0]), 'engine.nodelay', 4)
        send_window, receive_window = _parse_pair(
            eng.get('window', [32, 128]), 'engine.window', 2)

        engine_config = EngineConfig(
            conv=int(eng.get('conv', 1)),
            mtu=int(eng.get('mtu', 1400)),
            nodelay=nodelay,
            interval_ms=interval_ms,
            resend=resend,
            no_congestion_control=nc,
            send_window=send_window,
            receive_window=receive_window,
            dead_link=int(eng.get('dead_link', 20)),
            log_mask=int(eng.get('log_mask', EngineConfig.log_mask)),
        )

    sender = EndpointConfig()
    receiver = EndpointConfig()
    if 'endpoints' in data:
        endpoints = data['endpoints']
        if not isinstance(endpoints, dict):
            raise ValueError("'endpoints' section must be a dict")

        unknown = set(endpoints) - {'sender', 'receiver'}
        if unknown:
            raise ValueError(f"Unknown endpoints: {sorted(unknown)} (expected 'sender' and 'receiver')")

        sender = _parse_endpoint(endpoints.get('sender'), 'sender')
        receiver = _parse_endpoint(endpoints.get('receiver'), 'receiver')

    # Create and return scenario
    return Scenario(
        name=str(sim.get('name', 'default')),
        send_count=int(send_count),
        payload_size=int(payload_size) if payload_size is not None else None,
        tick_ms=int(sim.get('tick_ms', 100)),
        recv_start_ms=int(sim.get('recv_start_ms', 0)),
        max_ticks=int(sim.get('max_ticks', 10000)),
        ack_flush=str(sim.get('ack_flush', 'batch')),
        trace=bool(sim.get('trace', False)),
        engine=engine_config,
        sender=sender,
        receiver=receiver,
    )


def load_scenario(yaml_path: str) -> Scenario:
    """
    Load scenario from YAML file.

    Args:
        yaml_path: Path to YAML scenario file

    Returns:
        Scenario object with parsed configuration

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValueError: If required fields are missing or invalid
        yaml.YAMLError: If YAML syntax is invalid
    """
    path = Path(yaml_path)
    if not path.exists():
        raise FileNotFoundError(f"Scenario file not found: {yaml_path}")

    with open(path, 'r') as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML syntax in {yaml_path}: {e}")

    if not isinstance(data, dict):
        raise ValueError(f"Scenario file must contain a YAML dict, got {type(data)}")

    return scenario_from_dict(data)
