from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .contracts.v1 import CLIENT_PROCESS_NAMES, NetworkConfig
from .errors import NetworkError
from .kernel.layout import build_commands, page_count
from .kernel.network import Network, install_interrupt_handler
from .kernel.ports import check_disjoint, port_table
from .kernel.settings import config_path, load_config, save_config
from .kernel.state import load_run_state
from .paths import NetworkPaths
from .runners import tmux
from .runners.process import terminate_by_name, terminate_record
from .util.obslog import setup_root_json_logging

logger = logging.getLogger("ethnet.cli")


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _fail(e: NetworkError) -> int:
    print(f"❌ {e.message}", file=sys.stderr)
    return 1


def cmd_run(args: argparse.Namespace) -> int:
    try:
        cfg = load_config(args.config)
        net = Network(
            cfg,
            args.num_nodes,
            args.num_logs,
            parallel=True if args.parallel else None,
            with_tmux=not args.no_tmux,
        )
    except NetworkError as e:
        return _fail(e)

    setup_root_json_logging(component="ethnet", level=cfg.log_level)
    install_interrupt_handler(net)
    try:
        net.run()
    except NetworkError as e:
        # processes already started keep running; `ethnet close` stops them
        logger.info("run failed: %s %s", e.code, e.details)
        return _fail(e)
    return 0


def close_network(cfg: NetworkConfig) -> int:
    print("")
    print("🧹 Shutdown started")
    print("────────────────────────────────")

    print("1. Terminating tmux session...")
    if tmux.kill_session(cfg.tmux_session):
        print(f"   ✅ tmux session terminated: {cfg.tmux_session}")
    else:
        print("   ⚠️  No tmux session found")

    print("")
    print("2. Stopping recorded processes...")
    state = load_run_state(NetworkPaths(Path(cfg.network_dir)).state_path)
    records = state.processes if state is not None else []
    if not records:
        print("   ⚠️  No run state found")
    for rec in records:
        if terminate_record(rec):
            print(f"   ✅ {rec.name} pid={rec.pid} terminated")
        else:
            print(f"   ⚠️  {rec.name} pid={rec.pid} no longer running")

    print("")
    print("3. Stopping processes by name...")
    for num, name in enumerate(CLIENT_PROCESS_NAMES, start=1):
        if terminate_by_name(name):
            print(f"   ✅ [{num}] {name} terminated")
        else:
            print(f"   ⚠️  [{num}] {name} not running")

    print("")
    print("✅ Shutdown complete")
    print("────────────────────────────────")
    return 0


def cmd_close(args: argparse.Namespace) -> int:
    try:
        cfg = load_config(args.config)
    except NetworkError as e:
        return _fail(e)
    return close_network(cfg)


def cmd_layout(args: argparse.Namespace) -> int:
    session = args.session or "ethnet"
    logs_dir = Path(args.logs_dir)
    pairs = [
        (str(logs_dir / f"node-{i}" / "geth.log"), str(logs_dir / f"node-{i}" / "beacon.log"))
        for i in range(max(0, args.num_logs))
    ]
    try:
        cmds = build_commands(session, pairs, args.capacity)
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    print(f"# {len(pairs)} panel-pairs on {page_count(len(pairs), args.capacity)} page(s)")
    for c in cmds:
        print("tmux " + " ".join(json.dumps(a) if (" " in a or not a) else a for a in c))
    return 0


def cmd_ports(args: argparse.Namespace) -> int:
    try:
        cfg = load_config(args.config)
        check_disjoint(cfg.ports, args.num_nodes, extra={"bootnode": cfg.bootnode_port})
    except NetworkError as e:
        return _fail(e)
    _print_json({"ok": True, "result": {"bootnode": cfg.bootnode_port, "nodes": [p.as_dict() for p in port_table(args.num_nodes, cfg.ports)]}})
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    try:
        cfg = load_config(args.config)
    except NetworkError as e:
        return _fail(e)
    if args.write:
        path = config_path(args.config)
        if path.exists() and not args.force:
            print(f"❌ {path} already exists (use --force to overwrite)", file=sys.stderr)
            return 1
        save_config(NetworkConfig(), path)
        print(f"✅ Wrote default config to {path}")
        return 0
    _print_json({"ok": True, "result": {"path": str(config_path(args.config)), "config": cfg.model_dump()}})
    return 0


def cmd_version(_: argparse.Namespace) -> int:
    print(__version__)
    return 0


def _non_negative_int(raw: str) -> int:
    try:
        v = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {raw}")
    if v < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0: {raw}")
    return v


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ethnet", description="Local multi-node Ethereum testnet (geth + prysm)")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Start a fresh testnet (removes the previous network dir)")
    p_run.add_argument("num_nodes", type=_non_negative_int, help="Number of nodes")
    p_run.add_argument(
        "num_logs",
        nargs="?",
        type=_non_negative_int,
        default=None,
        help="Nodes whose logs are kept and shown in tmux (required when num_nodes > 2)",
    )
    p_run.add_argument("--config", default="", help="Config file (default: ./ethnet.yaml or $ETHNET_CONFIG)")
    p_run.add_argument("--parallel", action="store_true", help="Start nodes 1..N-1 concurrently once node 0 is up")
    p_run.add_argument("--no-tmux", action="store_true", help="Do not build the tmux log view")
    p_run.set_defaults(func=cmd_run)

    p_close = sub.add_parser("close", help="Stop the tmux session and all client processes")
    p_close.add_argument("--config", default="", help="Config file (default: ./ethnet.yaml or $ETHNET_CONFIG)")
    p_close.set_defaults(func=cmd_close)

    p_layout = sub.add_parser("layout", help="Print the tmux commands for a log view (dry run)")
    p_layout.add_argument("num_logs", type=_non_negative_int, help="Number of nodes with logs")
    p_layout.add_argument("--capacity", type=int, default=4, help="Panel-pairs per window (default: 4)")
    p_layout.add_argument("--session", default="ethnet", help="tmux session name (default: ethnet)")
    p_layout.add_argument("--logs-dir", default="./network/logs", help="Logs root (default: ./network/logs)")
    p_layout.set_defaults(func=cmd_layout)

    p_ports = sub.add_parser("ports", help="Show the port table for N nodes")
    p_ports.add_argument("num_nodes", type=_non_negative_int, help="Number of nodes")
    p_ports.add_argument("--config", default="", help="Config file (default: ./ethnet.yaml or $ETHNET_CONFIG)")
    p_ports.set_defaults(func=cmd_ports)

    p_config = sub.add_parser("config", help="Show the resolved config, or write a default one")
    p_config.add_argument("--config", default="", help="Config file (default: ./ethnet.yaml or $ETHNET_CONFIG)")
    p_config.add_argument("--write", action="store_true", help="Write a default config file")
    p_config.add_argument("--force", action="store_true", help="Overwrite an existing file with --write")
    p_config.set_defaults(func=cmd_config)

    p_ver = sub.add_parser("version", help="Show version")
    p_ver.set_defaults(func=cmd_version)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # argparse exits 2 on usage errors; usage errors exit 1 here
        return 0 if e.code == 0 else 1
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
