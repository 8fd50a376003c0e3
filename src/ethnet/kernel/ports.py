from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from ..contracts.v1 import PORT_FAMILIES, PortBases, PortFamily
from ..errors import ArgumentError


def allocate(family: PortFamily, index: int, bases: PortBases) -> int:
    return bases.base(family) + int(index)


@dataclass(frozen=True)
class PortSet:
    index: int
    geth_http: int
    geth_ws: int
    geth_network: int
    geth_metrics: int
    geth_auth_rpc: int
    beacon_rpc: int
    beacon_grpc_gateway: int
    beacon_p2p_tcp: int
    beacon_p2p_udp: int
    beacon_monitoring: int
    validator_rpc: int
    validator_grpc_gateway: int
    validator_monitoring: int

    def as_dict(self) -> Dict[str, int]:
        return {f: int(getattr(self, f)) for f in PORT_FAMILIES}


def port_set(index: int, bases: PortBases) -> PortSet:
    return PortSet(index=int(index), **{f: allocate(f, index, bases) for f in PORT_FAMILIES})


def check_disjoint(bases: PortBases, num_nodes: int, *, extra: Optional[Dict[str, int]] = None) -> None:
    """Raise ArgumentError if any two allocations could collide for `num_nodes` nodes.

    `extra` holds single fixed ports (e.g. the bootnode) that must stay clear of
    every family range.
    """
    clashes = bases.overlaps(num_nodes)
    if clashes:
        pairs = ", ".join(f"{a}/{b}" for a, b in clashes)
        raise ArgumentError(
            f"port bases overlap for {num_nodes} nodes: {pairs}",
            details={"num_nodes": num_nodes, "clashes": [list(c) for c in clashes]},
        )
    n = max(1, int(num_nodes))
    for name, port in (extra or {}).items():
        for fam, base in bases.as_dict().items():
            if base <= port < base + n:
                raise ArgumentError(f"{name} port {port} falls inside the {fam} range {base}..{base + n - 1}")


def port_table(num_nodes: int, bases: PortBases) -> List[PortSet]:
    return [port_set(i, bases) for i in range(max(0, int(num_nodes)))]
