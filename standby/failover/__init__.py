"""
Standby Failover Module

Watchdog deployment and the failover state machine it runs.
"""

from .deployer import MonitorDeployer
from .monitor import FailoverMonitor, HealthProbe, MonitorState, StateTransition

__all__ = [
    "MonitorDeployer",
    "FailoverMonitor",
    "HealthProbe",
    "MonitorState",
    "StateTransition",
]
