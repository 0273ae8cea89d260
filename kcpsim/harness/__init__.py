"""
kcpsim.harness - Simulation orchestration and execution

Endpoints, the dispatcher, the clock-driven loop and the launcher that wires
them together from a Scenario.
"""

from .errors import (
    HarnessError,
    DeliveryError,
    IntegrityError,
    BufferOverflowError,
    SendError,
    StallError,
)
from .trace import TraceEvent, TraceRecorder, WindowSample
from .endpoint import Endpoint, ReceiveOutcome
from .dispatcher import AckFlushPolicy, Dispatcher
from .verifier import Verifier
from .coordinator import Coordinator
from .launcher import SimulationLauncher, SimulationResult, make_payload, run_scenario

__all__ = [
    'HarnessError',
    'DeliveryError',
    'IntegrityError',
    'BufferOverflowError',
    'SendError',
    'StallError',
    'TraceEvent',
    'TraceRecorder',
    'WindowSample',
    'Endpoint',
    'ReceiveOutcome',
    'AckFlushPolicy',
    'Dispatcher',
    'Verifier',
    'Coordinator',
    'SimulationLauncher',
    'SimulationResult',
    'make_payload',
    'run_scenario',
]
