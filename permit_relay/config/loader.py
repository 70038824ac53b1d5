"""Config loader for the permit relayer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional

from web3 import Web3

from permit_relay.core.eip712 import PERMIT2_ADDRESS


class ConfigError(ValueError):
    """Raised when configuration data is invalid or missing."""


def _require_keys(data: Mapping[str, Any], keys: Iterable[str], context: str) -> None:
    missing = [key for key in keys if key not in data]
    if missing:
        raise ConfigError(f"{context} missing required keys: {', '.join(missing)}")


def _to_checksum(value: str, *, field_name: str) -> str:
    try:
        return Web3.to_checksum_address(value)
    except Exception as exc:  # web3 raises ValueError for malformed inputs
        raise ConfigError(f"Invalid address for {field_name}: {value}") from exc


@dataclass(frozen=True)
class NetworkConfig:
    """Source chain the validator is deployed on."""

    name: str
    chain_id: int
    endpoint_id: int
    rpc_url: Optional[str] = None

    def ensure_rpc_url(self) -> str:
        """Return the RPC URL or raise if it is missing."""
        if not self.rpc_url:
            raise ConfigError("RPC URL required but not configured")
        return self.rpc_url


@dataclass(frozen=True)
class TokenConfig:
    """Bridge token (OFT) details."""

    symbol: str
    address: str


@dataclass(frozen=True)
class ContractsConfig:
    """Deployed contract addresses."""

    permit2_address: str
    validator_address: str
    oft_tokens: List[TokenConfig]

    def token(self, symbol_or_address: str) -> TokenConfig:
        """Look a bridge token up by symbol (case-insensitive) or address."""
        for token in self.oft_tokens:
            if token.symbol.lower() == symbol_or_address.lower() or token.address.lower() == symbol_or_address.lower():
                return token
        raise ConfigError(f"Unknown OFT token: {symbol_or_address}")


@dataclass(frozen=True)
class DefaultsConfig:
    """Default operational parameters."""

    permit_ttl_seconds: int
    lz_receive_gas: int
    slippage_bps: int
    max_nonce_attempts: int
    api_timeout: int


@dataclass(frozen=True)
class ApiUrlsConfig:
    """External APIs used by the relayer."""

    layerzero_scan: str


@dataclass(frozen=True)
class RelayerConfig:
    """Typed wrapper around the relayer configuration."""

    network: NetworkConfig
    contracts: ContractsConfig
    destinations: Dict[str, int]
    defaults: DefaultsConfig
    api_urls: ApiUrlsConfig
    raw: Mapping[str, Any] = field(repr=False)

    def destination_eid(self, name_or_eid: str) -> int:
        """Resolve a configured destination name, or accept a numeric endpoint id."""
        if name_or_eid in self.destinations:
            return self.destinations[name_or_eid]
        try:
            return int(name_or_eid)
        except ValueError as exc:
            raise ConfigError(f"Unknown destination: {name_or_eid}") from exc

    def to_dict(self) -> Dict[str, Any]:
        """Return the original configuration mapping."""
        return dict(self.raw)


def _normalize_tokens(tokens: Any) -> List[TokenConfig]:
    if not isinstance(tokens, Mapping):
        raise ConfigError("oft_tokens must be a mapping of symbol to address")

    result = [
        TokenConfig(symbol=symbol, address=_to_checksum(address, field_name=f"oft token {symbol}"))
        for symbol, address in tokens.items()
    ]
    if not result:
        raise ConfigError("oft_tokens cannot be empty")
    return result


def _normalize_destinations(destinations: Any) -> Dict[str, int]:
    if not isinstance(destinations, Mapping) or not destinations:
        raise ConfigError("destinations must be a non-empty mapping of name to endpoint id")

    result: Dict[str, int] = {}
    for name, eid in destinations.items():
        try:
            result[name] = int(eid)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid endpoint id for destination {name}: {eid}") from exc
        if not 0 < result[name] < 2**32:
            raise ConfigError(f"Endpoint id for destination {name} must fit in uint32")
    return result


def _load_json(path: Path) -> MutableMapping[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file contains invalid JSON: {path}") from exc


def load_config(config_path: Optional[Path] = None) -> RelayerConfig:
    """Load and validate relayer configuration data."""
    config_path = config_path or Path("config.json")
    data = _load_json(config_path)

    _require_keys(data, ["network", "contracts", "destinations", "defaults", "api_urls"], "config")

    network_data = data["network"]
    contracts_data = data["contracts"]
    defaults = data["defaults"]
    api_urls = data["api_urls"]

    _require_keys(network_data, ["name", "chain_id", "endpoint_id"], "network")
    network = NetworkConfig(
        name=str(network_data["name"]),
        chain_id=int(network_data["chain_id"]),
        endpoint_id=int(network_data["endpoint_id"]),
        rpc_url=network_data.get("rpc_url"),
    )

    _require_keys(contracts_data, ["validator_address", "oft_tokens"], "contracts")
    contracts = ContractsConfig(
        permit2_address=_to_checksum(
            contracts_data.get("permit2_address", PERMIT2_ADDRESS),
            field_name="permit2_address",
        ),
        validator_address=_to_checksum(contracts_data["validator_address"], field_name="validator_address"),
        oft_tokens=_normalize_tokens(contracts_data["oft_tokens"]),
    )

    destinations = _normalize_destinations(data["destinations"])

    _require_keys(
        defaults,
        ["permit_ttl_seconds", "lz_receive_gas", "slippage_bps", "max_nonce_attempts", "api_timeout"],
        "defaults",
    )
    defaults_config = DefaultsConfig(
        permit_ttl_seconds=int(defaults["permit_ttl_seconds"]),
        lz_receive_gas=int(defaults["lz_receive_gas"]),
        slippage_bps=int(defaults["slippage_bps"]),
        max_nonce_attempts=int(defaults["max_nonce_attempts"]),
        api_timeout=int(defaults["api_timeout"]),
    )
    if defaults_config.permit_ttl_seconds <= 0:
        raise ConfigError("defaults.permit_ttl_seconds must be positive")
    if defaults_config.lz_receive_gas <= 0:
        raise ConfigError("defaults.lz_receive_gas must be positive")
    if defaults_config.slippage_bps < 0 or defaults_config.slippage_bps >= 10_000:
        raise ConfigError("defaults.slippage_bps must be between 0 and 9999")
    if defaults_config.max_nonce_attempts <= 0:
        raise ConfigError("defaults.max_nonce_attempts must be positive")
    if defaults_config.api_timeout <= 0:
        raise ConfigError("defaults.api_timeout must be positive")

    _require_keys(api_urls, ["layerzero_scan"], "api_urls")
    api_config = ApiUrlsConfig(layerzero_scan=str(api_urls["layerzero_scan"]).rstrip("/"))

    return RelayerConfig(
        network=network,
        contracts=contracts,
        destinations=destinations,
        defaults=defaults_config,
        api_urls=api_config,
        raw=data,
    )


__all__ = [
    "ApiUrlsConfig",
    "ConfigError",
    "ContractsConfig",
    "DefaultsConfig",
    "NetworkConfig",
    "RelayerConfig",
    "TokenConfig",
    "load_config",
]
