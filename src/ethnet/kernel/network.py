from __future__ import annotations

import logging
import os
import shutil
import signal
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..contracts.v1 import CLIENT_PROCESS_NAMES, NetworkConfig, NodeEndpoints, RunState
from ..errors import ArgumentError, ExtractionError, MissingDependencyError
from ..paths import NetworkPaths
from ..runners import tmux
from ..runners.process import ProcessHandle, ProcessTable, capture, launch, run_step, terminate_by_name, terminate_record
from ..util.fs import reset_dir
from ..util.obslog import setup_root_json_logging
from .discovery import BootstrapRecord, external_enode, extract_bootnode_enode
from .layout import build_commands
from .node import NodeContext, NodeSequencer
from .ports import check_disjoint, port_set
from .state import RunStateWriter, load_run_state

logger = logging.getLogger("ethnet.network")

Reporter = Callable[[str], None]

RULE = "────────────────────────────────"


def resolve_num_logs(num_nodes: int, num_logs: Optional[int]) -> int:
    """`num_logs` is mandatory above two nodes, else it defaults to `num_nodes`."""
    if num_nodes < 1:
        raise ArgumentError("number of nodes must be at least 1")
    if num_logs is None:
        if num_nodes > 2:
            raise ArgumentError("number of logs is required when running more than 2 nodes")
        return num_nodes
    if num_logs < 0 or num_logs > num_nodes:
        raise ArgumentError(f"number of logs must be between 0 and {num_nodes}")
    return num_logs


def host_ip() -> str:
    """Primary outbound address of this host, or loopback."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("10.255.255.255", 1))
        return str(s.getsockname()[0])
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


def _binary_available(binary: str) -> bool:
    if os.sep in binary:
        p = Path(binary)
        return p.is_file() and os.access(p, os.X_OK)
    return shutil.which(binary) is not None


def cleanup_previous(cfg: NetworkConfig, report: Reporter = print) -> None:
    """Best effort: tmux session, pids from the last run.json, then process names."""
    session = cfg.tmux_session
    if tmux.kill_session(session):
        report(f"✅ tmux session terminated: {session}")
    else:
        report("✅ No tmux session found")

    prev = load_run_state(NetworkPaths(Path(cfg.network_dir)).state_path)
    if prev is not None:
        for rec in prev.processes:
            terminate_record(rec)

    for name in CLIENT_PROCESS_NAMES:
        terminate_by_name(name)
    report("✅ Killed all running processes")


class Network:
    """One testnet run: directories, processes, discovery records and log view."""

    def __init__(
        self,
        cfg: NetworkConfig,
        num_nodes: int,
        num_logs: Optional[int] = None,
        *,
        parallel: Optional[bool] = None,
        with_tmux: bool = True,
        report: Reporter = print,
        sleep: Callable[[float], None] = time.sleep,
        fetch_enr: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.cfg = cfg
        self.num_nodes = int(num_nodes)
        self.num_logs = resolve_num_logs(self.num_nodes, num_logs)
        self.parallel = cfg.parallel if parallel is None else bool(parallel)
        self.with_tmux = with_tmux
        self.report = report
        self.sleep = sleep
        self.fetch_enr = fetch_enr

        self.paths = NetworkPaths(Path(cfg.network_dir))
        self.table = ProcessTable()
        self.bootstrap = BootstrapRecord()
        self.bootnode_enode = ""
        self.state: Optional[RunStateWriter] = None

    # pre-flight

    def preflight(self) -> None:
        b = self.cfg.binaries
        required = [b.geth, b.bootnode, b.beacon, b.validator, b.prysmctl]
        if self.with_tmux:
            required.append("tmux")
        missing = [x for x in required if not _binary_available(x)]
        if missing:
            raise MissingDependencyError(
                f"required programs not found: {', '.join(missing)}",
                details={"missing": missing},
            )
        for label, raw in (("chain config", self.cfg.chain_config_file), ("genesis json", self.cfg.genesis_json_file)):
            if not Path(raw).is_file():
                raise ArgumentError(f"{label} file not found: {raw}")
        check_disjoint(self.cfg.ports, self.num_nodes, extra={"bootnode": self.cfg.bootnode_port})

    # setup

    def clean(self) -> None:
        self.report("")
        self.report("🧹  Clean up previous runs")
        self.report(RULE)
        cleanup_previous(self.cfg, self.report)
        reset_dir(self.paths.root)
        self.paths.create()
        setup_root_json_logging(
            component="ethnet",
            level=self.cfg.log_level,
            path=self.paths.orchestrator_log,
            force=True,
        )
        self.state = RunStateWriter(
            self.paths.state_path,
            RunState(num_nodes=self.num_nodes, num_logs=self.num_logs, tmux_session=self.cfg.tmux_session),
        )
        self.state.update()
        self.report(f"✅ Cleared {self.paths.root}")

    def _on_launch(self, _: ProcessHandle) -> None:
        if self.state is not None:
            self.state.set_processes(self.table.records())

    def start_bootnode(self) -> str:
        b = self.cfg.binaries.bootnode
        key = self.paths.bootnode_key
        self.report("")
        self.report("✅ Starting bootnode")
        t = self.cfg.timings
        run_step(
            "bootnode -genkey",
            [b, "-genkey", str(key)],
            self.paths.bootnode_dir / "genkey.log",
            timeout_s=t.step_timeout_s,
        )
        argv = [b, "-nodekey", str(key), f"-addr=0.0.0.0:{self.cfg.bootnode_port}", "-verbosity=5"]
        h = self.table.spawn("bootnode", lambda: launch("bootnode", argv, self.paths.bootnode_log))
        self._on_launch(h)

        self.bootnode_enode = extract_bootnode_enode(
            self.paths.bootnode_log,
            settle_s=t.bootnode_settle_s,
            timeout_s=t.bootnode_timeout_s,
            interval_s=t.poll_interval_s,
            sleep=self.sleep,
        )
        if self.state is not None:
            self.state.update(bootnode_enode=self.bootnode_enode)
        self.report(f"✅ Bootnode ready: {self.bootnode_enode}")
        return self.bootnode_enode

    def generate_genesis(self) -> None:
        cfg = self.cfg
        run_step(
            "prysmctl generate-genesis",
            [
                cfg.binaries.prysmctl,
                "testnet",
                "generate-genesis",
                f"--fork={cfg.fork}",
                f"--num-validators={self.num_nodes}",
                f"--chain-config-file={cfg.chain_config_file}",
                f"--geth-genesis-json-in={cfg.genesis_json_file}",
                f"--output-ssz={self.paths.genesis_ssz}",
                f"--geth-genesis-json-out={self.paths.genesis_json}",
            ],
            self.paths.setup_dir / "genesis.log",
            timeout_s=cfg.timings.step_timeout_s,
        )
        self.report("✅ Genesis file generated")

    def node_context(self) -> NodeContext:
        if not self.bootnode_enode:
            raise ExtractionError("bootnode enode is not available")
        return NodeContext(
            cfg=self.cfg,
            paths=self.paths,
            num_nodes=self.num_nodes,
            num_logs=self.num_logs,
            bootnode_enode=self.bootnode_enode,
            table=self.table,
            on_launch=self._on_launch,
            report=self.report,
            sleep=self.sleep,
            fetch_enr=self.fetch_enr,
        )

    def start_nodes(self) -> None:
        ctx = self.node_context()
        # node 0 publishes the ENR every other beacon node bootstraps from
        NodeSequencer(0, ctx).run(self.bootstrap)
        if self.state is not None:
            self.state.update(bootstrap_enr=self.bootstrap.peek())

        rest = range(1, self.num_nodes)
        if not self.parallel or len(rest) < 2:
            for i in rest:
                NodeSequencer(i, ctx).run(self.bootstrap)
            return

        pool = ThreadPoolExecutor(max_workers=len(rest), thread_name_prefix="ethnet-node")
        try:
            futures = [pool.submit(NodeSequencer(i, ctx).run, self.bootstrap) for i in rest]
            for fut in futures:
                fut.result()
        finally:
            # on error or Ctrl+C, drop queued nodes; running ones stop at their next launch
            pool.shutdown(wait=True, cancel_futures=True)

    # reporting

    def connection_info(self, host: str = "") -> List[NodeEndpoints]:
        ip = host or host_ip()
        out: List[NodeEndpoints] = []
        for i in range(self.num_nodes):
            p = port_set(i, self.cfg.ports)
            out.append(
                NodeEndpoints(
                    node=i,
                    geth_http=f"http://{ip}:{p.geth_http}",
                    geth_ws=f"ws://{ip}:{p.geth_ws}",
                    geth_p2p=f"{ip}:{p.geth_network}",
                    beacon_gateway=f"http://{ip}:{p.beacon_grpc_gateway}",
                    beacon_p2p_tcp=p.beacon_p2p_tcp,
                    beacon_p2p_udp=p.beacon_p2p_udp,
                    host=ip,
                )
            )
        return out

    def bootnode_info(self, host: str) -> str:
        pubkey = capture([self.cfg.binaries.bootnode, "-nodekey", str(self.paths.bootnode_key), "-writeaddress"]).strip()
        return external_enode(pubkey, host, self.cfg.bootnode_port)

    def print_connection_info(self) -> None:
        ip = host_ip()
        for ep in self.connection_info(ip):
            self.report("")
            self.report(f"🌐 Node-{ep.node} connection info")
            self.report(RULE)
            self.report(f"• Geth HTTP RPC:       {ep.geth_http}")
            self.report(f"• Geth WS:             {ep.geth_ws}")
            self.report(f"• Geth P2P:            {ep.geth_p2p}")
            self.report(f"• Prysm GRPC API:      {ep.beacon_gateway}")
            self.report(f"• Prysm P2P (TCP/UDP): {ep.host}:{ep.beacon_p2p_tcp} / {ep.beacon_p2p_udp}")

        self.report("")
        self.report("🌐 Bootnode info")
        self.report(RULE)
        self.report(f"• Bootnode ENODE:        {self.bootnode_info(ip)}")
        self.report(f"• Beacon ENR:            {self.bootstrap.peek()}")

    # log view

    def log_pairs(self) -> List[Tuple[str, str]]:
        return [
            (str(self.paths.node_log(i, "geth")), str(self.paths.node_log(i, "beacon")))
            for i in range(self.num_logs)
        ]

    def open_log_view(self) -> None:
        session = self.cfg.tmux_session
        self.report("")
        self.report("🖥️  Starting tmux session for log viewing")
        self.report(RULE)
        tmux.kill_session(session)
        tmux.apply_commands(build_commands(session, self.log_pairs(), self.cfg.log_capacity))
        self.report(f"🟢 To view logs: tmux attach -t {session}")
        self.report("")
        self.report("📘 tmux quick reference:")
        self.report(RULE)
        self.report(f"• Attach session:     tmux attach -t {session}")
        self.report("• Detach session:     Ctrl + b, d")
        self.report("• Switch window:      Ctrl + b, n (next), Ctrl + b, p (previous)")
        self.report("• Move between panes: Ctrl + b + arrow keys")
        self.report(f"• Kill session:       tmux kill-session -t {session}")
        self.report("• Stop the network:   ethnet close")

    # lifecycle

    def teardown(self) -> None:
        """Interrupt path: drop the log view and signal every process this run started."""
        self.table.close()
        tmux.kill_session(self.cfg.tmux_session)
        n = self.table.terminate_all()
        logger.info("teardown signalled %d processes", n)

    def run(self) -> None:
        self.preflight()
        self.clean()
        self.report("")
        self.report("🔧  Starting setup")
        self.report(RULE)
        self.start_bootnode()
        self.generate_genesis()
        self.start_nodes()
        self.print_connection_info()
        if self.with_tmux:
            self.open_log_view()


def install_interrupt_handler(network: Network) -> None:
    def _on_sigint(_signum, _frame) -> None:
        network.report("Caught Ctrl+C. Cleaning up...")
        network.teardown()
        raise SystemExit(130)

    signal.signal(signal.SIGINT, _on_sigint)
