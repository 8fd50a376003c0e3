"""Configuration loading.

Settings live in a YAML file (default ``./ethnet.yaml``, or ``$ETHNET_CONFIG``)
and include:
- binaries: paths of geth, bootnode, beacon-chain, validator, prysmctl
- ports: base port per family (node i listens on base + i)
- network_dir / tmux_session / timings
Relative paths are resolved against the directory holding the file.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml  # type: ignore
from pydantic import ValidationError

from ..contracts.v1 import NetworkConfig
from ..errors import ArgumentError
from ..paths import network_dir_override
from ..util.fs import atomic_write_text


DEFAULT_CONFIG_NAME = "ethnet.yaml"


def config_path(explicit: str = "") -> Path:
    raw = (explicit or os.environ.get("ETHNET_CONFIG", "")).strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return (Path.cwd() / DEFAULT_CONFIG_NAME).resolve()


def load_settings(path: Path) -> Dict[str, Any]:
    """Raw YAML mapping; {} when the file is absent."""
    if not path.exists():
        return {}
    try:
        doc = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ArgumentError(f"invalid config file {path}: {e}") from e
    if not isinstance(doc, dict):
        raise ArgumentError(f"config file {path} must contain a mapping")
    return doc


def _resolve(base_dir: Path, raw: str) -> str:
    p = Path(raw).expanduser()
    if not p.is_absolute():
        p = base_dir / p
    return str(p.resolve())


def _resolve_binary(base_dir: Path, raw: str) -> str:
    # Bare names stay as-is so they are looked up on PATH.
    if os.sep not in raw and not raw.startswith("."):
        return raw
    return _resolve(base_dir, raw)


def load_config(explicit: str = "") -> NetworkConfig:
    path = config_path(explicit)
    doc = load_settings(path)
    try:
        cfg = NetworkConfig.model_validate(doc)
    except ValidationError as e:
        raise ArgumentError(f"invalid config file {path}: {e}") from e

    base_dir = path.parent
    override = network_dir_override()
    cfg.network_dir = _resolve(Path.cwd(), override) if override else _resolve(base_dir, cfg.network_dir)
    cfg.chain_config_file = _resolve(base_dir, cfg.chain_config_file)
    cfg.genesis_json_file = _resolve(base_dir, cfg.genesis_json_file)
    for name in ("geth", "bootnode", "beacon", "validator", "prysmctl"):
        setattr(cfg.binaries, name, _resolve_binary(base_dir, getattr(cfg.binaries, name)))
    return cfg


def save_config(cfg: NetworkConfig, path: Path) -> None:
    atomic_write_text(path, yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False))

