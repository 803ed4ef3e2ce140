"""
Chain constants and TOML-based configuration for crosign.

Chain-specific values (address prefix, coin type, base denomination,
chain id) live in ``ChainConfig`` instances that are passed explicitly to
the key deriver, the address codec and the signing backends, so several
networks can be used side by side in one process.

Settings load from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from crosign_core.config import load_config
    cfg = load_config("crosign.toml")
    backend = SoftwareBackend.from_phrase(words, chain=cfg.chain)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


@dataclass(frozen=True)
class ChainConfig:
    """Network identity used for derivation, addresses and fees."""
    chain_id: str = "crypto-org-chain-mainnet-1"
    address_prefix: str = "cro"
    coin_type: int = 394               # SLIP-44 registered coin type
    base_denom: str = "basecro"
    display_denom: str = "cro"
    decimals: int = 8                  # 1 CRO = 10**8 basecro

    def hd_path(self, account: int = 0, index: int = 0) -> str:
        """BIP-44 path ``m/44'/coin'/account'/0/index``."""
        return f"m/44'/{self.coin_type}'/{account}'/0/{index}"

    @property
    def base_per_unit(self) -> int:
        return 10 ** self.decimals


MAINNET = ChainConfig()

TESTNET = ChainConfig(
    chain_id="testnet-croeseid-4",
    address_prefix="tcro",
    coin_type=1,
    base_denom="basetcro",
    display_denom="tcro",
)

NETWORKS: dict[str, ChainConfig] = {
    "mainnet": MAINNET,
    "testnet": TESTNET,
}


@dataclass
class HardwareConfig:
    """External signing device settings."""
    transport: str = "hid"                       # "hid" or "speculos"
    speculos_url: str = "http://127.0.0.1:5000"  # Ledger emulator REST API
    timeout_seconds: float = 120.0               # user confirmation can be slow
    account: int = 0
    index: int = 0


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class CroSignConfig:
    """Top-level configuration container."""
    chain: ChainConfig = field(default_factory=ChainConfig)
    hardware: HardwareConfig = field(default_factory=HardwareConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a mutable dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _merge_chain(chain: ChainConfig, raw: dict[str, Any]) -> ChainConfig:
    """Return a copy of a frozen ChainConfig with the known keys replaced."""
    raw = dict(raw)
    network = raw.pop("network", None)
    if network is not None:
        chain = network_preset(network)
    names = {f.name for f in fields(chain)}
    known = {}
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if key_under in names:
            known[key_under] = value
    return replace(chain, **known)


def network_preset(name: str) -> ChainConfig:
    try:
        return NETWORKS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown network '{name}' (expected one of {sorted(NETWORKS)})"
        ) from None


def load_config(path: str | None = None) -> CroSignConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        CROSIGN_NETWORK         -> chain (mainnet/testnet preset)
        CROSIGN_CHAIN_ID        -> chain.chain_id
        CROSIGN_ADDRESS_PREFIX  -> chain.address_prefix
        CROSIGN_COIN_TYPE       -> chain.coin_type
        CROSIGN_TRANSPORT       -> hardware.transport
        CROSIGN_SPECULOS_URL    -> hardware.speculos_url
        CROSIGN_DEVICE_TIMEOUT  -> hardware.timeout_seconds
        CROSIGN_LOG_LEVEL       -> logging.level
        CROSIGN_LOG_FMT         -> logging.format
    """
    cfg = CroSignConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            if "chain" in data:
                cfg.chain = _merge_chain(cfg.chain, data["chain"])
            for section_name, section_dc in [
                ("hardware", cfg.hardware),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("CROSIGN_NETWORK"):
        cfg.chain = network_preset(v)
    if v := os.environ.get("CROSIGN_CHAIN_ID"):
        cfg.chain = replace(cfg.chain, chain_id=v)
    if v := os.environ.get("CROSIGN_ADDRESS_PREFIX"):
        cfg.chain = replace(cfg.chain, address_prefix=v)
    if v := os.environ.get("CROSIGN_COIN_TYPE"):
        cfg.chain = replace(cfg.chain, coin_type=int(v))
    if v := os.environ.get("CROSIGN_TRANSPORT"):
        cfg.hardware.transport = v.lower()
    if v := os.environ.get("CROSIGN_SPECULOS_URL"):
        cfg.hardware.speculos_url = v
    if v := os.environ.get("CROSIGN_DEVICE_TIMEOUT"):
        cfg.hardware.timeout_seconds = float(v)
    if v := os.environ.get("CROSIGN_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("CROSIGN_LOG_FMT"):
        cfg.logging.format = v

    return cfg
