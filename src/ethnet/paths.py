from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def network_dir_override() -> str:
    return os.environ.get("ETHNET_NETWORK_DIR", "").strip()


@dataclass(frozen=True)
class NetworkPaths:
    """Directory layout of one testnet run, derived from the root."""

    root: Path

    @property
    def setup_dir(self) -> Path:
        return self.root / "setup"

    @property
    def bootnode_dir(self) -> Path:
        return self.root / "bootnode"

    @property
    def settings_dir(self) -> Path:
        return self.root / "settings"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def state_path(self) -> Path:
        return self.root / "run.json"

    @property
    def orchestrator_log(self) -> Path:
        return self.setup_dir / "ethnet.jsonl"

    @property
    def genesis_ssz(self) -> Path:
        return self.root / "genesis.ssz"

    @property
    def genesis_json(self) -> Path:
        return self.root / "genesis.json"

    @property
    def bootnode_key(self) -> Path:
        return self.bootnode_dir / "nodekey"

    @property
    def bootnode_log(self) -> Path:
        return self.bootnode_dir / "bootnode.log"

    def node_settings(self, index: int) -> Path:
        return self.settings_dir / f"node-{index}"

    def node_execution(self, index: int) -> Path:
        return self.node_settings(index) / "execution"

    def node_consensus(self, index: int) -> Path:
        return self.node_settings(index) / "consensus"

    def node_logs(self, index: int) -> Path:
        return self.logs_dir / f"node-{index}"

    def node_log(self, index: int, stream: str) -> Path:
        """`stream` is one of geth, beacon, validator."""
        return self.node_logs(index) / f"{stream}.log"

    def create(self) -> None:
        for d in (self.setup_dir, self.bootnode_dir, self.settings_dir, self.logs_dir):
            d.mkdir(parents=True, exist_ok=True)
