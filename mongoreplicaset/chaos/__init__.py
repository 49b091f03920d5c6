"""
Chaos Engineering / Fault Injection Module

Provides controlled fault injection for testing client resilience:
- Node stop and kill
- Network partitions, hard or through toxiproxy
- Latency injection
- Recovery with replica set reconfiguration
"""

from .injector import (
    FaultInjector,
    FaultType,
    FaultMode,
    FaultRecord
)

__all__ = [
    "FaultInjector",
    "FaultType",
    "FaultMode",
    "FaultRecord",
]
