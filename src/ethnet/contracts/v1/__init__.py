from __future__ import annotations

from .config import CLIENT_PROCESS_NAMES, PORT_FAMILIES, Binaries, NetworkConfig, PortBases, PortFamily, Timings
from .run import NodeEndpoints, ProcessRecord, RunState

__all__ = [
    "Binaries",
    "CLIENT_PROCESS_NAMES",
    "NetworkConfig",
    "NodeEndpoints",
    "PORT_FAMILIES",
    "PortBases",
    "PortFamily",
    "ProcessRecord",
    "RunState",
    "Timings",
]
