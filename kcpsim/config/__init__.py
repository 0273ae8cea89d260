"""
kcpsim.config - Scenario and configuration management

Provides YAML-based scenario parsing for harness runs.
"""

from .scenario import (
    Scenario,
    EngineConfig,
    EndpointConfig,
    load_scenario,
    scenario_from_dict,
)

__all__ = ['Scenario', 'EngineConfig', 'EndpointConfig', 'load_scenario', 'scenario_from_dict']
