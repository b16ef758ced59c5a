"""Runtime settings: defaults, then an optional YAML file, then environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from core.errors import ConfigError
from core.logger import StructuredLogger

LOG = StructuredLogger("config")

NETWORK_PREFIXES = {"mainnet": "f", "calibration": "t", "localnet": "t"}

ENV_OVERRIDES = {
    "DATACAP_NETWORK": "network",
    "DATACAP_NODE_URL": "node_url",
    "DATACAP_NODE_TOKEN": "node_token",
    "DATACAP_API_URL": "api_url",
    "DATACAP_API_TOKEN": "api_token",
    "DATACAP_MULTISIG": "multisig_address",
    "DATACAP_ALLOCATOR_CONTRACT": "allocator_contract",
    "DATACAP_SP_CHUNK_SIZE": "sp_chunk_size",
    "DATACAP_STEP_DELAY": "step_delay",
    "DATACAP_SIGNER": "signer_factory",
}


@dataclass(frozen=True)
class Settings:
    network: str = "calibration"
    node_url: str = "https://api.calibration.node.glif.io/rpc/v1"
    node_token: Optional[str] = None
    api_url: str = "http://localhost:4000"
    api_token: Optional[str] = None
    multisig_address: str = ""
    # meta-allocator contract; unset means grants go straight to the verified registry
    allocator_contract: Optional[str] = None
    sp_chunk_size: int = 8
    step_delay: float = 2.0
    wait_confidence: int = 1
    wait_limit_epochs: int = 10
    wait_retries: int = 5
    accounts_page: int = 5
    signer_factory: Optional[str] = None
    metrics_port: Optional[int] = None

    @property
    def address_prefix(self) -> str:
        return NETWORK_PREFIXES[self.network]

    @property
    def verified_registry(self) -> str:
        return f"{self.address_prefix}06"

    @property
    def uses_allocator_contract(self) -> bool:
        return bool(self.allocator_contract)

    def validate(self) -> "Settings":
        if self.network not in NETWORK_PREFIXES:
            raise ConfigError(f"unknown network {self.network!r}")
        if self.sp_chunk_size < 1:
            raise ConfigError("sp_chunk_size must be >= 1")
        if self.step_delay < 0:
            raise ConfigError("step_delay must be >= 0")
        if self.wait_retries < 0:
            raise ConfigError("wait_retries must be >= 0")
        if self.accounts_page < 1:
            raise ConfigError("accounts_page must be >= 1")
        return self


def _coerce(name: str, raw: Any) -> Any:
    field_types = {f.name: f.type for f in fields(Settings)}
    kind = str(field_types[name])
    if raw is None:
        return None
    try:
        if "int" in kind:
            return int(raw)
        if "float" in kind:
            return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid value for {name}: {raw!r}") from exc
    return str(raw)


def load_settings(path: str | Path | None = None) -> Settings:
    """Build :class:`Settings` from defaults, YAML file and environment."""

    values: Dict[str, Any] = {}
    config_path = path or os.getenv("DATACAP_CONFIG")
    if config_path:
        p = Path(config_path)
        if not p.exists():
            raise ConfigError(f"config file not found: {p}")
        data = yaml.safe_load(p.read_text()) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"config file {p} must contain a mapping")
        known = {f.name for f in fields(Settings)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(unknown)}")
        values.update({k: _coerce(k, v) for k, v in data.items()})
    for env_var, name in ENV_OVERRIDES.items():
        raw = os.getenv(env_var)
        if raw not in (None, ""):
            values[name] = _coerce(name, raw)
    settings = replace(Settings(), **values).validate()
    LOG.log(
        "settings_loaded",
        network=settings.network,
        source=str(config_path or "env"),
        allocator_contract=settings.allocator_contract or "",
    )
    return settings
