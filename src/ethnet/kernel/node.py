"""Per-node setup and launch.

A node is brought up in a fixed order; each step depends on the previous one:

1. settings (and, inside the retention window, log) directories
2. password file, shared genesis copies, ``geth account new``, ``geth init``
3. geth (execution client)
4. beacon-chain (consensus client), bootstrapping from node 0's ENR
5. validator, one interop key at index ``i``
6. node 0 only: read its ENR and publish it for every later node

Steps 1-2 run synchronously and fail fast. The three client launches are fire
and forget: their failures show up in the node's log files, not here.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from ..contracts.v1 import NetworkConfig
from ..errors import RunInterruptedError
from ..paths import NetworkPaths
from ..runners.process import ProcessHandle, ProcessTable, launch, run_step
from ..util.fs import atomic_write_text, copy_into
from .discovery import BootstrapRecord, fetch_bootstrap_enr, identity_url
from .ports import PortSet, port_set

logger = logging.getLogger("ethnet.node")

Reporter = Callable[[str], None]


def min_sync_peers(num_nodes: int) -> int:
    # soft target for the beacon node, not a hard minimum
    return max(0, int(num_nodes)) // 2


@dataclass
class NodeContext:
    """Everything a node needs that is shared across the run."""

    cfg: NetworkConfig
    paths: NetworkPaths
    num_nodes: int
    num_logs: int
    bootnode_enode: str
    table: ProcessTable = field(default_factory=ProcessTable)
    on_launch: Optional[Callable[[ProcessHandle], None]] = None
    report: Reporter = print
    sleep: Callable[[float], None] = time.sleep
    fetch_enr: Optional[Callable[[str], str]] = None

    def stores_logs(self, index: int) -> bool:
        return index < self.num_logs


def geth_args(cfg: NetworkConfig, paths: NetworkPaths, ports: PortSet, *, bootnode_enode: str, num_nodes: int) -> List[str]:
    i = ports.index
    exec_dir = paths.node_execution(i)
    return [
        cfg.binaries.geth,
        f"--networkid={cfg.chain_id}",
        "--http",
        "--http.api=eth,net,web3",
        "--http.addr=127.0.0.1",
        "--http.corsdomain=*",
        f"--http.port={ports.geth_http}",
        f"--port={ports.geth_network}",
        f"--metrics.port={ports.geth_metrics}",
        "--ws",
        "--ws.api=eth,net,web3",
        "--ws.addr=127.0.0.1",
        "--ws.origins=*",
        f"--ws.port={ports.geth_ws}",
        "--authrpc.vhosts=*",
        "--authrpc.addr=127.0.0.1",
        f"--authrpc.jwtsecret={exec_dir / 'jwtsecret'}",
        f"--authrpc.port={ports.geth_auth_rpc}",
        f"--datadir={exec_dir}",
        f"--password={password_file(paths, i)}",
        f"--bootnodes={bootnode_enode}",
        f"--identity=node-{i}",
        f"--maxpendpeers={num_nodes}",
        "--verbosity=3",
        "--syncmode=full",
    ]


def beacon_args(cfg: NetworkConfig, paths: NetworkPaths, ports: PortSet, *, bootstrap_enr: str, num_nodes: int) -> List[str]:
    i = ports.index
    cons_dir = paths.node_consensus(i)
    return [
        cfg.binaries.beacon,
        f"--datadir={cons_dir / 'beacondata'}",
        f"--min-sync-peers={min_sync_peers(num_nodes)}",
        f"--genesis-state={cons_dir / 'genesis.ssz'}",
        f"--bootstrap-node={bootstrap_enr}",
        "--interop-eth1data-votes",
        f"--chain-config-file={cons_dir / 'config.yml'}",
        "--contract-deployment-block=0",
        f"--chain-id={cfg.chain_id}",
        "--rpc-host=127.0.0.1",
        f"--rpc-port={ports.beacon_rpc}",
        "--grpc-gateway-host=127.0.0.1",
        f"--grpc-gateway-port={ports.beacon_grpc_gateway}",
        f"--execution-endpoint=http://localhost:{ports.geth_auth_rpc}",
        "--accept-terms-of-use",
        f"--jwt-secret={paths.node_execution(i) / 'jwtsecret'}",
        f"--suggested-fee-recipient={cfg.fee_recipient}",
        "--minimum-peers-per-subnet=0",
        f"--p2p-tcp-port={ports.beacon_p2p_tcp}",
        f"--p2p-udp-port={ports.beacon_p2p_udp}",
        f"--monitoring-port={ports.beacon_monitoring}",
        "--verbosity=info",
        "--slasher",
        "--enable-debug-rpc-endpoints",
    ]


def validator_args(cfg: NetworkConfig, paths: NetworkPaths, ports: PortSet) -> List[str]:
    i = ports.index
    cons_dir = paths.node_consensus(i)
    return [
        cfg.binaries.validator,
        f"--beacon-rpc-provider=localhost:{ports.beacon_rpc}",
        f"--datadir={cons_dir / 'validatordata'}",
        "--accept-terms-of-use",
        "--interop-num-validators=1",
        f"--interop-start-index={i}",
        f"--rpc-port={ports.validator_rpc}",
        f"--grpc-gateway-port={ports.validator_grpc_gateway}",
        f"--monitoring-port={ports.validator_monitoring}",
        f"--graffiti=node-{i}",
        f"--chain-config-file={cons_dir / 'config.yml'}",
    ]


def password_file(paths: NetworkPaths, index: int) -> Path:
    return paths.node_settings(index) / "geth_password.txt"


def setup_log(paths: NetworkPaths, index: int) -> Path:
    return paths.node_settings(index) / "setup.log"


class NodeSequencer:
    def __init__(self, index: int, ctx: NodeContext) -> None:
        self.index = int(index)
        self.ctx = ctx
        self.ports = port_set(self.index, ctx.cfg.ports)

    def _log_sink(self, stream: str) -> Optional[Path]:
        if not self.ctx.stores_logs(self.index):
            return None
        return self.ctx.paths.node_log(self.index, stream)

    def _launch(self, name: str, argv: List[str], stream: str) -> ProcessHandle:
        sink = self._log_sink(stream)
        handle = self.ctx.table.spawn(name, lambda: launch(name, argv, sink, node=self.index))
        if self.ctx.on_launch is not None:
            self.ctx.on_launch(handle)
        return handle

    def prepare_dirs(self) -> None:
        paths = self.ctx.paths
        if self.ctx.stores_logs(self.index):
            paths.node_logs(self.index).mkdir(parents=True, exist_ok=True)
        paths.node_execution(self.index).mkdir(parents=True, exist_ok=True)
        paths.node_consensus(self.index).mkdir(parents=True, exist_ok=True)

    def init_execution(self) -> None:
        cfg, paths, i = self.ctx.cfg, self.ctx.paths, self.index
        # empty password; local testnet only
        pw = password_file(paths, i)
        atomic_write_text(pw, "\n")

        # every node gets byte-identical genesis, otherwise peers reject each other
        copy_into(Path(cfg.chain_config_file), paths.node_consensus(i), name="config.yml")
        copy_into(paths.genesis_ssz, paths.node_consensus(i))
        copy_into(paths.genesis_json, paths.node_execution(i))

        log = setup_log(paths, i)
        exec_dir = paths.node_execution(i)
        run_step(
            f"node-{i} geth account new",
            [cfg.binaries.geth, "account", "new", "--datadir", str(exec_dir), "--password", str(pw)],
            log,
            timeout_s=cfg.timings.step_timeout_s,
        )
        self.ctx.report("✅ Geth account created")
        run_step(
            f"node-{i} geth init",
            [cfg.binaries.geth, "init", f"--datadir={exec_dir}", str(exec_dir / "genesis.json")],
            log,
            timeout_s=cfg.timings.step_timeout_s,
        )
        self.ctx.report("✅ Geth initialized")

    def start_execution(self) -> ProcessHandle:
        argv = geth_args(
            self.ctx.cfg,
            self.ctx.paths,
            self.ports,
            bootnode_enode=self.ctx.bootnode_enode,
            num_nodes=self.ctx.num_nodes,
        )
        h = self._launch("geth", argv, "geth")
        self.ctx.report("✅ Geth started")
        return h

    def start_consensus(self, bootstrap: BootstrapRecord) -> ProcessHandle:
        # node 0 is the consensus bootstrap node itself
        enr = "" if self.index == 0 else bootstrap.get(timeout=self.ctx.cfg.timings.enr_timeout_s)
        argv = beacon_args(self.ctx.cfg, self.ctx.paths, self.ports, bootstrap_enr=enr, num_nodes=self.ctx.num_nodes)
        h = self._launch("beacon-chain", argv, "beacon")
        self.ctx.report("✅ Prysm beacon started")
        return h

    def start_validator(self) -> ProcessHandle:
        h = self._launch("validator", validator_args(self.ctx.cfg, self.ctx.paths, self.ports), "validator")
        self.ctx.report("✅ Prysm validator started")
        return h

    def publish_bootstrap(self, bootstrap: BootstrapRecord) -> None:
        url = identity_url(self.ports.beacon_grpc_gateway)
        if self.ctx.fetch_enr is not None:
            enr = self.ctx.fetch_enr(url)
        else:
            t = self.ctx.cfg.timings
            enr = fetch_bootstrap_enr(
                url,
                settle_s=t.enr_settle_s,
                timeout_s=t.enr_timeout_s,
                attempts=t.enr_attempts,
                http_timeout_s=t.http_timeout_s,
                sleep=self.ctx.sleep,
            )
        bootstrap.set(enr)
        self.ctx.report(f"✅ Prysm bootstrap ENR: {enr}")

    def run(self, bootstrap: BootstrapRecord) -> None:
        i = self.index
        self.ctx.report("")
        self.ctx.report(f"🚀 Setting up node-{i}")
        self.ctx.report("────────────────────────────────")
        logger.info("node setup start", extra={"node": i})
        if self.ctx.table.closed:
            raise RunInterruptedError(f"not setting up node-{i}: run is shutting down")

        self.prepare_dirs()
        self.init_execution()
        self.start_execution()
        self.ctx.sleep(self.ctx.cfg.timings.execution_settle_s)
        self.start_consensus(bootstrap)
        self.start_validator()
        if not bootstrap.is_set():
            self.publish_bootstrap(bootstrap)
        logger.info("node setup done", extra={"node": i})
