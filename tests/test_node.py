import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from ethnet.contracts.v1 import NetworkConfig
from ethnet.errors import RunInterruptedError
from ethnet.kernel.discovery import BootstrapRecord
from ethnet.kernel.node import (
    NodeContext,
    NodeSequencer,
    beacon_args,
    geth_args,
    min_sync_peers,
    validator_args,
)
from ethnet.kernel.ports import port_set
from ethnet.paths import NetworkPaths
from ethnet.runners.process import ProcessHandle

ENODE = "enode://aa@127.0.0.1:0?discport=30301"


def _flag(argv, name):
    prefix = f"--{name}="
    for a in argv:
        if a.startswith(prefix):
            return a[len(prefix):]
    raise AssertionError(f"{name} not in argv")


class TestArgs(unittest.TestCase):
    def setUp(self) -> None:
        self.cfg = NetworkConfig()
        self.paths = NetworkPaths(Path("/tmp/net"))

    def test_min_sync_peers(self) -> None:
        self.assertEqual(min_sync_peers(1), 0)
        self.assertEqual(min_sync_peers(4), 2)
        self.assertEqual(min_sync_peers(5), 2)

    def test_geth_args(self) -> None:
        argv = geth_args(self.cfg, self.paths, port_set(2, self.cfg.ports), bootnode_enode=ENODE, num_nodes=4)
        self.assertEqual(argv[0], "geth")
        self.assertEqual(_flag(argv, "http.port"), "8002")
        self.assertEqual(_flag(argv, "ws.port"), "8102")
        self.assertEqual(_flag(argv, "port"), "8202")
        self.assertEqual(_flag(argv, "authrpc.port"), "8402")
        self.assertEqual(_flag(argv, "bootnodes"), ENODE)
        self.assertEqual(_flag(argv, "maxpendpeers"), "4")
        self.assertEqual(_flag(argv, "syncmode"), "full")
        self.assertEqual(_flag(argv, "identity"), "node-2")
        self.assertEqual(_flag(argv, "networkid"), "32382")

    def test_beacon_args_node0_is_its_own_bootstrap(self) -> None:
        argv = beacon_args(self.cfg, self.paths, port_set(0, self.cfg.ports), bootstrap_enr="", num_nodes=1)
        self.assertIn("--bootstrap-node=", argv)
        self.assertEqual(_flag(argv, "min-sync-peers"), "0")
        self.assertEqual(_flag(argv, "execution-endpoint"), "http://localhost:8400")
        self.assertEqual(_flag(argv, "jwt-secret"), "/tmp/net/settings/node-0/execution/jwtsecret")

    def test_beacon_args_later_node(self) -> None:
        argv = beacon_args(self.cfg, self.paths, port_set(3, self.cfg.ports), bootstrap_enr="enr:-x", num_nodes=4)
        self.assertEqual(_flag(argv, "bootstrap-node"), "enr:-x")
        self.assertEqual(_flag(argv, "min-sync-peers"), "2")
        self.assertEqual(_flag(argv, "grpc-gateway-port"), "4103")
        self.assertEqual(_flag(argv, "p2p-udp-port"), "4303")

    def test_validator_args(self) -> None:
        argv = validator_args(self.cfg, self.paths, port_set(1, self.cfg.ports))
        self.assertEqual(_flag(argv, "interop-num-validators"), "1")
        self.assertEqual(_flag(argv, "interop-start-index"), "1")
        self.assertEqual(_flag(argv, "beacon-rpc-provider"), "localhost:4001")
        self.assertEqual(_flag(argv, "graffiti"), "node-1")


class TestNodeSequencer(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.addCleanup(self._td.cleanup)
        root = Path(self._td.name)
        (root / "config.yml").write_text("CONFIG_NAME: interop\n", encoding="utf-8")
        self.cfg = NetworkConfig(network_dir=str(root / "network"), chain_config_file=str(root / "config.yml"))
        self.paths = NetworkPaths(Path(self.cfg.network_dir))
        self.paths.create()
        self.paths.genesis_ssz.write_bytes(b"\x00ssz")
        self.paths.genesis_json.write_text("{}", encoding="utf-8")

        self.events = []

        def fake_launch(name, argv, sink, *, node=-1):
            self.events.append(("launch", node, name, list(argv), sink))
            return ProcessHandle(name=name, argv=list(argv), popen=MagicMock(pid=100 + len(self.events)), sink=sink, node=node)

        def fake_step(name, argv, log_path, **kw):
            self.events.append(("step", name))

        p1 = patch("ethnet.kernel.node.launch", side_effect=fake_launch)
        p2 = patch("ethnet.kernel.node.run_step", side_effect=fake_step)
        p1.start()
        p2.start()
        self.addCleanup(p1.stop)
        self.addCleanup(p2.stop)

    def _ctx(self, num_nodes, num_logs, fetch=None):
        def default_fetch(url):
            self.events.append(("fetch", url))
            return "enr:-node0"

        return NodeContext(
            cfg=self.cfg,
            paths=self.paths,
            num_nodes=num_nodes,
            num_logs=num_logs,
            bootnode_enode=ENODE,
            report=lambda s: None,
            sleep=lambda s: None,
            fetch_enr=fetch or default_fetch,
        )

    def test_node0_runs_steps_in_order_and_publishes(self) -> None:
        rec = BootstrapRecord()
        ctx = self._ctx(1, 1)
        NodeSequencer(0, ctx).run(rec)

        kinds = [(e[0], e[2] if e[0] == "launch" else None) for e in self.events]
        self.assertEqual(
            kinds,
            [
                ("step", None),
                ("step", None),
                ("launch", "geth"),
                ("launch", "beacon-chain"),
                ("launch", "validator"),
                ("fetch", None),
            ],
        )
        self.assertEqual(self.events[5][1], "http://127.0.0.1:4100/eth/v1/node/identity")
        self.assertEqual(rec.get(timeout=0), "enr:-node0")
        self.assertEqual(len(ctx.table.handles()), 3)

        node_dir = self.paths.node_settings(0)
        self.assertEqual((node_dir / "geth_password.txt").read_text(encoding="utf-8"), "\n")
        self.assertEqual((node_dir / "consensus" / "genesis.ssz").read_bytes(), b"\x00ssz")
        self.assertTrue((node_dir / "consensus" / "config.yml").exists())
        self.assertTrue((node_dir / "execution" / "genesis.json").exists())
        self.assertTrue(self.paths.node_logs(0).is_dir())

    def test_later_node_reuses_record_without_fetching(self) -> None:
        rec = BootstrapRecord()
        rec.set("enr:-node0")
        NodeSequencer(1, self._ctx(4, 1)).run(rec)

        self.assertFalse(any(e[0] == "fetch" for e in self.events))
        beacon = [e for e in self.events if e[0] == "launch" and e[2] == "beacon-chain"][0]
        self.assertEqual(_flag(beacon[3], "bootstrap-node"), "enr:-node0")

    def test_nodes_outside_retention_discard_output(self) -> None:
        rec = BootstrapRecord()
        rec.set("enr:-node0")
        NodeSequencer(3, self._ctx(4, 2)).run(rec)

        sinks = [e[4] for e in self.events if e[0] == "launch"]
        self.assertEqual(sinks, [None, None, None])
        self.assertFalse(self.paths.node_logs(3).exists())

    def test_nodes_inside_retention_write_logs(self) -> None:
        rec = BootstrapRecord()
        rec.set("enr:-node0")
        NodeSequencer(1, self._ctx(4, 2)).run(rec)

        sinks = [e[4] for e in self.events if e[0] == "launch"]
        self.assertEqual(
            sinks,
            [self.paths.node_log(1, "geth"), self.paths.node_log(1, "beacon"), self.paths.node_log(1, "validator")],
        )


    def test_closed_table_stops_setup(self) -> None:
        rec = BootstrapRecord()
        rec.set("enr:-node0")
        ctx = self._ctx(4, 2)
        ctx.table.close()
        with self.assertRaises(RunInterruptedError):
            NodeSequencer(1, ctx).run(rec)
        self.assertEqual(self.events, [])

    def test_setup_steps_use_step_timeout(self) -> None:
        self.cfg.timings.step_timeout_s = 7
        seen = []
        with patch("ethnet.kernel.node.run_step", side_effect=lambda name, argv, log, **kw: seen.append(kw)):
            NodeSequencer(0, self._ctx(1, 1)).init_execution()
        self.assertEqual(seen, [{"timeout_s": 7}, {"timeout_s": 7}])


if __name__ == "__main__":
    unittest.main()
