from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field


class ProcessRecord(BaseModel):
    name: str
    pid: int
    node: int = -1  # -1 for shared processes (bootnode)
    sink: str = ""
    exe: str = ""  # basename of argv[0], what the kernel reports as comm

    model_config = ConfigDict(extra="ignore")


class RunState(BaseModel):
    """Persisted as `<network_dir>/run.json` so `ethnet close` can kill by pid."""

    v: int = 1
    num_nodes: int = 0
    num_logs: int = 0
    tmux_session: str = ""
    bootnode_enode: str = ""
    bootstrap_enr: str = ""
    processes: List[ProcessRecord] = Field(default_factory=list)
    started_at: str = ""
    updated_at: str = ""

    model_config = ConfigDict(extra="ignore")


class NodeEndpoints(BaseModel):
    node: int
    geth_http: str
    geth_ws: str
    geth_p2p: str
    beacon_gateway: str
    beacon_p2p_tcp: int
    beacon_p2p_udp: int
    host: str

    model_config = ConfigDict(extra="forbid")
