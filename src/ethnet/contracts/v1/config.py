from __future__ import annotations

from typing import Dict, List, Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field


PortFamily = Literal[
    "geth_http",
    "geth_ws",
    "geth_network",
    "geth_metrics",
    "geth_auth_rpc",
    "beacon_rpc",
    "beacon_grpc_gateway",
    "beacon_p2p_tcp",
    "beacon_p2p_udp",
    "beacon_monitoring",
    "validator_rpc",
    "validator_grpc_gateway",
    "validator_monitoring",
]

PORT_FAMILIES: Tuple[str, ...] = (
    "geth_http",
    "geth_ws",
    "geth_network",
    "geth_metrics",
    "geth_auth_rpc",
    "beacon_rpc",
    "beacon_grpc_gateway",
    "beacon_p2p_tcp",
    "beacon_p2p_udp",
    "beacon_monitoring",
    "validator_rpc",
    "validator_grpc_gateway",
    "validator_monitoring",
)

# Process names used for name-based cleanup, in shutdown order.
CLIENT_PROCESS_NAMES: Tuple[str, ...] = ("geth", "beacon-chain", "validator", "bootnode")


class PortBases(BaseModel):
    """Base port per family; node `i` uses `base + i`."""

    geth_http: int = 8000
    geth_ws: int = 8100
    geth_network: int = 8200
    geth_metrics: int = 8300
    geth_auth_rpc: int = 8400
    beacon_rpc: int = 4000
    beacon_grpc_gateway: int = 4100
    beacon_p2p_tcp: int = 4200
    beacon_p2p_udp: int = 4300
    beacon_monitoring: int = 4400
    validator_rpc: int = 7000
    validator_grpc_gateway: int = 7100
    validator_monitoring: int = 7200

    model_config = ConfigDict(extra="forbid")

    def base(self, family: str) -> int:
        if family not in PORT_FAMILIES:
            raise KeyError(f"unknown port family: {family}")
        return int(getattr(self, family))

    def as_dict(self) -> Dict[str, int]:
        return {f: self.base(f) for f in PORT_FAMILIES}

    def overlaps(self, num_nodes: int) -> List[Tuple[str, str]]:
        """Pairs of families whose `[base, base + num_nodes)` ranges intersect."""
        n = max(1, int(num_nodes))
        items = sorted(self.as_dict().items(), key=lambda kv: kv[1])
        clashes: List[Tuple[str, str]] = []
        for i, (fam_a, base_a) in enumerate(items):
            for fam_b, base_b in items[i + 1 :]:
                if base_b >= base_a + n:
                    break
                clashes.append((fam_a, fam_b))
        return clashes


class Binaries(BaseModel):
    geth: str = "geth"
    bootnode: str = "bootnode"
    beacon: str = "beacon-chain"
    validator: str = "validator"
    prysmctl: str = "prysmctl"

    model_config = ConfigDict(extra="forbid")


class Timings(BaseModel):
    """Settle delays and polling bounds, in seconds."""

    bootnode_settle_s: float = 2.0
    bootnode_timeout_s: float = 10.0
    execution_settle_s: float = 2.0
    enr_settle_s: float = 3.0
    enr_timeout_s: float = 30.0
    enr_attempts: int = 5
    http_timeout_s: float = 2.0
    poll_interval_s: float = 0.25
    step_timeout_s: float = 300.0

    model_config = ConfigDict(extra="forbid")


class NetworkConfig(BaseModel):
    network_dir: str = "./network"
    tmux_session: str = "ethnet"
    chain_id: int = 32382
    fork: str = "deneb"
    binaries: Binaries = Field(default_factory=Binaries)
    ports: PortBases = Field(default_factory=PortBases)
    bootnode_port: int = 30301
    chain_config_file: str = "./config.yml"
    genesis_json_file: str = "./genesis.json"
    fee_recipient: str = "0x123463a4b065722e99115d6c222f267d9cabb524"
    timings: Timings = Field(default_factory=Timings)
    log_capacity: int = Field(default=4, ge=1)
    parallel: bool = False
    log_level: str = ""

    model_config = ConfigDict(extra="forbid")
