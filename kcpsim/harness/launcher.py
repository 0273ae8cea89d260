"""
launcher.py - Scenario Launcher

Builds every simulation component from a Scenario and manages its lifecycle:
- Two endpoints, each with a fresh engine, buffer and drop policy
- Dispatcher with the configured ack flush policy
- Coordinator owning both endpoints and the virtual clock

Design philosophy:
- Fail-fast during setup (validation before anything is built)
- Harness errors become a failed SimulationResult, never a retry
- Always release both endpoints, success or failure
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from kcpsim.config.scenario import Scenario
from kcpsim.harness.coordinator import Coordinator
from kcpsim.harness.dispatcher import AckFlushPolicy, Dispatcher
from kcpsim.harness.endpoint import Endpoint
from kcpsim.harness.errors import HarnessError
from kcpsim.harness.trace import TraceRecorder, WindowSample
from kcpsim.harness.verifier import Verifier
from kcpsim.kcp.engine import WND_RCV

logger = logging.getLogger(__name__)


def make_payload(size: int) -> bytes:
    """Deterministic test pattern: byte i is i mod 255."""
    return bytes(i % 255 for i in range(size))


@dataclass
class SimulationResult:
    """Results from one scenario run."""
    success: bool
    scenario: str
    ticks: int = 0
    virtual_time_ms: int = 0
    completed: int = 0
    completion_tick: Optional[int] = None
    bytes_verified: int = 0
    completion_ticks: List[int] = field(default_factory=list)
    sender_metrics: Dict[str, int] = field(default_factory=dict)
    receiver_metrics: Dict[str, int] = field(default_factory=dict)
    samples: List[WindowSample] = field(default_factory=list)
    trace_digest: str = ""
    wall_time_sec: float = 0.0
    error_message: Optional[str] = None


class SimulationLauncher:
    """
    Manages lifecycle of one scenario run.

    Responsibilities:
    1. Validate scenario before launch
    2. Create and configure both endpoints
    3. Create dispatcher and coordinator
    4. Run the loop and collect results
    5. Release both endpoints
    """

    def __init__(self, scenario: Scenario):
        self.scenario = scenario
        self.recorder = TraceRecorder()
        self.sender: Optional[Endpoint] = None
        self.receiver: Optional[Endpoint] = None
        self.coordinator: Optional[Coordinator] = None

    def validate_scenario(self) -> List[str]:
        """
        Validate scenario before launch.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        mss = self.scenario.engine.mss
        fragments = (self.scenario.message_size + mss - 1) // mss
        if fragments >= WND_RCV:
            errors.append(
                f"payload_size {self.scenario.message_size} needs {fragments} fragments "
                f"at mss {mss}; the engine accepts at most {WND_RCV - 1}"
            )

        if self.scenario.recv_start_ms >= self.scenario.max_ticks * self.scenario.tick_ms:
            errors.append(
                f"recv_start_ms {self.scenario.recv_start_ms} is beyond the last tick "
                f"({self.scenario.max_ticks} x {self.scenario.tick_ms}ms)"
            )
        return errors

    def launch(self) -> Coordinator:
        """
        Build all components and return a coordinator ready to run.

        Raises:
            ValueError: If validation fails
        """
        errors = self.validate_scenario()
        if errors:
            error_msg = "Scenario validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)

        scenario = self.scenario
        logger.info("Launching scenario '%s'", scenario.name)

        self.sender = Endpoint("sender", scenario.engine, scenario.sender,
                               trace_engine=scenario.trace, recorder=self.recorder)
        self.receiver = Endpoint("receiver", scenario.engine, scenario.receiver,
                                 trace_engine=scenario.trace, recorder=self.recorder)
        self.sender.connect(self.receiver)
        self.receiver.connect(self.sender)

        self.coordinator = Coordinator(
            self.sender,
            self.receiver,
            Dispatcher(AckFlushPolicy(scenario.ack_flush)),
            payload=make_payload(scenario.message_size),
            send_count=scenario.send_count,
            tick_ms=scenario.tick_ms,
            recv_start_ms=scenario.recv_start_ms,
            max_ticks=scenario.max_ticks,
            verifier=Verifier(),
            recorder=self.recorder,
        )
        logger.info("  mtu=%d mss=%d window=%d/%d ack_flush=%s",
                    scenario.engine.mtu, scenario.engine.mss,
                    scenario.engine.send_window, scenario.engine.receive_window,
                    scenario.ack_flush)
        return self.coordinator

    def run(self) -> SimulationResult:
        """
        Launch and run the scenario.

        Returns:
            SimulationResult (success=False carries the harness error message)
        """
        start_wall_time = time.time()
        try:
            coordinator = self.launch()
            coordinator.run()
            return self._result(success=True, start_wall_time=start_wall_time)

        except HarnessError as e:
            logger.error("Scenario '%s' failed: %s", self.scenario.name, e)
            return self._result(success=False, start_wall_time=start_wall_time,
                                error_message=f"{type(e).__name__}: {e}")

        finally:
            self.shutdown()

    def shutdown(self):
        """Release both endpoints (safe to call more than once)."""
        for endpoint in (self.sender, self.receiver):
            if endpoint is not None:
                endpoint.release()

    def _result(self, success: bool, start_wall_time: float,
                error_message: Optional[str] = None) -> SimulationResult:
        coordinator = self.coordinator
        result = SimulationResult(
            success=success,
            scenario=self.scenario.name,
            samples=list(self.recorder.samples),
            trace_digest=self.recorder.digest(),
            wall_time_sec=time.time() - start_wall_time,
            error_message=error_message,
        )
        if coordinator is not None:
            result.ticks = coordinator.tick
            result.virtual_time_ms = coordinator.current_ms
            result.completed = coordinator.completed
            result.completion_tick = coordinator.completion_tick
            result.bytes_verified = coordinator.verifier.bytes_verified
            result.completion_ticks = list(coordinator.verifier.completion_ticks)
            result.sender_metrics = self.sender.metrics.as_dict()
            result.receiver_metrics = self.receiver.metrics.as_dict()
        return result


def run_scenario(scenario_path: str) -> SimulationResult:
    """
    Convenience function to run a scenario from YAML file.

    Args:
        scenario_path: Path to YAML scenario file

    Returns:
        SimulationResult
    """
    from kcpsim.config.scenario import load_scenario

    scenario = load_scenario(scenario_path)
    launcher = SimulationLauncher(scenario)
    return launcher.run()
