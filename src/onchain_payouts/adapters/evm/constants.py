"""
EVM Chain Configuration Management

Provides unified access to EVM chain configurations, token contracts and the
runtime settings of the payout pipeline. Includes utilities for RPC URL
construction and environment-aware key handling.
"""

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field
import dotenv

from ...engine.exceptions import ConfigurationError, UnsupportedNetwork

dotenv.load_dotenv()


class EvmAssetConfig(BaseModel):
    """Token asset configuration."""
    symbol: str
    address: str = Field(..., description="Token contract address")
    name: str = Field(..., description="Token name")
    decimals: int = Field(..., description="Token decimals")


class EvmChainConfig(BaseModel):
    """EVM blockchain network configuration."""
    caip2: str
    chain_id: int
    network: str = Field(..., description="Short network slug")
    name: str = Field(..., description="Human-readable network name")
    type: str = Field(default="evm", description="Blockchain type")
    rpc_url: Optional[str] = Field(..., description="JSON-RPC endpoint URL template")
    public_rpc_url: str = Field(..., description="Public RPC endpoint (fallback when no RPC key)")
    explorer_url: str = Field(..., description="Block explorer URL")
    assets: Dict[str, EvmAssetConfig] = Field(default_factory=dict, description="Supported assets")


#: Names accepted by ``PAYOUT_FEE_STRATEGY`` and ``build_fee_strategy``.
FEE_STRATEGY_SINGLE_SAMPLE: str = "single-sample"
FEE_STRATEGY_PERCENTILE: str = "percentile"
FEE_STRATEGY_TARGET_LANDING: str = "target-landing"
FEE_STRATEGIES = (FEE_STRATEGY_SINGLE_SAMPLE, FEE_STRATEGY_PERCENTILE, FEE_STRATEGY_TARGET_LANDING)


# Raw chain configuration data
# Each chain includes both premium RPC template (with {RPC_KEYS} placeholder) and public RPC fallback.
# Premium RPC is used when the EVM_RPC_KEY environment variable is set, otherwise public RPC is used.
_EVM_CHAINS_DATA: Dict = {
    "eip155:1": {
      "network": "ethereum-mainnet",
      "name": "Ethereum Mainnet",
      "type": "evm",
      "rpc_url": "https://mainnet.infura.io/v3/{RPC_KEYS}",
      "public_rpc_url": "https://ethereum-rpc.publicnode.com",
      "explorer_url": "https://etherscan.io",
      "assets": {
        "USDC": {
          "address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
          "name": "USD Coin",
          "decimals": 6
        },
        "USDT": {
          "address": "0xdAC17F958D2ee523a2206206994597C13D831ec7",
          "name": "Tether USD",
          "decimals": 6
        }
      }
    },
    "eip155:8453": {
      "network": "base-mainnet",
      "name": "Base Mainnet",
      "type": "evm",
      "rpc_url": "https://base-mainnet.infura.io/v3/{RPC_KEYS}",
      "public_rpc_url": "https://base.gateway.tenderly.co",
      "explorer_url": "https://basescan.org",
      "assets": {
        "USDC": {
          "address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
          "name": "USD Coin",
          "decimals": 6
        },
        "USDT": {
            "address": "0xfde4C96256153236af98292015BA95836c75af0a",
            "name": "Tether USD",
            "decimals": 6
        }
      }
    },
    "eip155:137": {
      "network": "polygon-mainnet",
      "name": "Polygon Mainnet",
      "type": "evm",
      "rpc_url": "https://polygon-mainnet.infura.io/v3/{RPC_KEYS}",
      "public_rpc_url": "https://polygon-rpc.com",
      "explorer_url": "https://polygonscan.com",
      "assets": {
        "USDC": {
          "address": "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
          "name": "USD Coin",
          "decimals": 6
        },
        "USDT": {
            "address": "0xc2132D05D31c914a87C6611C10748AEb04B58e8F",
            "name": "Tether USD",
            "decimals": 6
        }
      }
    },
    "eip155:11155111": {
      "network": "ethereum-sepolia",
      "name": "Sepolia Testnet",
      "type": "evm",
      "rpc_url": "https://sepolia.infura.io/v3/{RPC_KEYS}",
      "public_rpc_url": "https://rpc.sepolia.org",
      "explorer_url": "https://sepolia.etherscan.io",
      "assets": {
        "USDC": {
          "address": "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
          "name": "USD Coin",
          "decimals": 6
        },
        "USDT": {
            "address": "0xbDeaD2A70Fe794D2f97b37EFDE497e68974a296d",
            "name": "USDT",
            "decimals": 6
        }
      }
    },
}


def parse_caip2_chain_id(caip2: str) -> int:
    """
    Parses a CAIP-2 identifier (e.g., 'eip155:1' or 'eip155-1') into an integer chain ID.

    Args:
        caip2 (str): The CAIP-2 string to parse.

    Returns:
        int: The extracted EIP-155 chain ID.

    Raises:
        UnsupportedNetwork: If the input format is invalid, the prefix is missing,
                            or the chain ID is not a positive integer.
    """
    if not isinstance(caip2, str) or not caip2.strip():
        raise UnsupportedNetwork(f"Invalid network identifier: expected non-empty string, got {caip2!r}")

    # Standardize the input by replacing hyphen with colon for uniform splitting
    normalized = caip2.strip().replace("-", ":")
    parts = normalized.split(":")

    if len(parts) != 2 or parts[0] != "eip155":
        raise UnsupportedNetwork(
            f"Invalid CAIP-2 format: '{caip2}'. "
            f"Expected format 'eip155:<chain_id>' or 'eip155-<chain_id>'"
        )

    try:
        chain_id = int(parts[1])
    except (ValueError, TypeError) as exc:
        raise UnsupportedNetwork(
            f"Failed to parse chain ID from '{caip2}'. "
            f"The segment '{parts[1]}' is not a valid integer."
        ) from exc

    if chain_id <= 0:
        raise UnsupportedNetwork(f"Invalid chain ID in '{caip2}': {chain_id}. Chain ID must be positive.")

    return chain_id


def get_chain_config(caip2: str) -> Optional[EvmChainConfig]:
    """
    Look up the built-in configuration of a network.

    Args:
        caip2: CAIP-2 identifier (e.g. "eip155:1")

    Returns:
        EvmChainConfig or None when the network is not in the chain table.

    Raises:
        ConfigurationError: If the chain table entry is malformed.
    """
    chain_id = parse_caip2_chain_id(caip2)
    key = f"eip155:{chain_id}"
    raw = _EVM_CHAINS_DATA.get(key)
    if raw is None:
        return None

    try:
        return EvmChainConfig(
            caip2=key,
            chain_id=chain_id,
            network=raw["network"],
            name=raw["name"],
            type=raw.get("type", "evm"),
            rpc_url=raw.get("rpc_url"),
            public_rpc_url=raw["public_rpc_url"],
            explorer_url=raw["explorer_url"],
            assets={
                symbol: EvmAssetConfig(symbol=symbol, **asset)
                for symbol, asset in raw.get("assets", {}).items()
            },
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Malformed chain configuration for {key}: {exc}") from exc


def list_chain_configs() -> Dict[str, EvmChainConfig]:
    """Return every network of the built-in chain table keyed by CAIP-2 id."""
    return {caip2: get_chain_config(caip2) for caip2 in _EVM_CHAINS_DATA}


def get_rpc_url(caip2: str, rpc_key: Optional[str] = None) -> str:
    """
    Resolve the JSON-RPC endpoint of a network.

    Uses the premium endpoint template when an RPC key is available and the
    public endpoint otherwise.

    Args:
        caip2: CAIP-2 identifier
        rpc_key: Infrastructure key; defaults to ``EVM_RPC_KEY``

    Returns:
        str: RPC URL

    Raises:
        UnsupportedNetwork: If the network is not in the chain table.
    """
    config = get_chain_config(caip2)
    if config is None:
        raise UnsupportedNetwork(f"Unsupported network: {caip2}")

    rpc_key = rpc_key if rpc_key is not None else get_rpc_key_from_env()
    if rpc_key and config.rpc_url:
        return config.rpc_url.replace("{RPC_KEYS}", rpc_key)
    return config.public_rpc_url


def get_rpc_key_from_env() -> Optional[str]:
    """
    Load the EVM infrastructure API key from environment variables.

    Environment Variable:
        - EVM_RPC_KEY: Infrastructure provider API key (e.g., Infura key)

    Returns:
        str: RPC key from environment, or None if not configured

    Note:
        If EVM_RPC_KEY is not set or empty, public RPC endpoints will be used.
        Public endpoints may have rate limits.
    """
    return os.getenv("EVM_RPC_KEY") or None


def get_signer_private_key_from_env() -> Optional[str]:
    """
    Load the development signer key (``EVM_PRIVATE_KEY``).

    Only used by ``LocalAccountSigner``; production signing goes through the
    custody service and never touches a private key.
    """
    return os.getenv("EVM_PRIVATE_KEY") or None


class PayoutSettings(BaseModel):
    """
    Runtime tunables of the payout pipeline.

    Attributes:
        watch_window_seconds: Time without a receipt after which a submission is Stuck
        poll_interval_seconds: Delay between receipt polls while watching
        gas_buffer_percent: Safety buffer added to the simulated gas
        reservation_lease_seconds: Lease of a nonce reservation; bounds the signing call
        fee_strategy: Default fee strategy name
        fee_strategy_overrides: Per chain id fee strategy names
        rpc_timeout_seconds: HTTP timeout for RPC requests
    """

    watch_window_seconds: float = Field(default=900.0, gt=0)
    poll_interval_seconds: float = Field(default=6.0, gt=0)
    gas_buffer_percent: int = Field(default=10, ge=0)
    reservation_lease_seconds: float = Field(default=120.0, gt=0)
    fee_strategy: str = Field(default=FEE_STRATEGY_SINGLE_SAMPLE)
    fee_strategy_overrides: Dict[int, str] = Field(default_factory=dict)
    rpc_timeout_seconds: int = Field(default=60, gt=0)

    def fee_strategy_for(self, chain_id: int) -> str:
        """Fee strategy name selected for a chain."""
        name = self.fee_strategy_overrides.get(chain_id, self.fee_strategy)
        if name not in FEE_STRATEGIES:
            raise ConfigurationError(f"Unknown fee strategy '{name}' for chain {chain_id}; expected one of {FEE_STRATEGIES}")
        return name

    @classmethod
    def from_env(cls) -> "PayoutSettings":
        """
        Build settings from ``PAYOUT_*`` environment variables.

        ``PAYOUT_FEE_STRATEGY__<chain_id>`` selects a strategy for one network,
        e.g. ``PAYOUT_FEE_STRATEGY__1=percentile``.

        Raises:
            ConfigurationError: If a value cannot be parsed.
        """
        values: Dict = {}
        env_map = {
            "PAYOUT_WATCH_WINDOW_SECONDS": ("watch_window_seconds", float),
            "PAYOUT_POLL_INTERVAL_SECONDS": ("poll_interval_seconds", float),
            "PAYOUT_GAS_BUFFER_PERCENT": ("gas_buffer_percent", int),
            "PAYOUT_RESERVATION_LEASE_SECONDS": ("reservation_lease_seconds", float),
            "PAYOUT_FEE_STRATEGY": ("fee_strategy", str),
            "PAYOUT_RPC_TIMEOUT_SECONDS": ("rpc_timeout_seconds", int),
        }
        for env_name, (field_name, cast) in env_map.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = cast(raw.strip())
            except ValueError as exc:
                raise ConfigurationError(f"Invalid value for {env_name}: {raw!r}") from exc

        overrides: Dict[int, str] = {}
        prefix = "PAYOUT_FEE_STRATEGY__"
        for env_name, raw in os.environ.items():
            if not env_name.startswith(prefix) or not raw:
                continue
            try:
                overrides[int(env_name[len(prefix):])] = raw.strip()
            except ValueError as exc:
                raise ConfigurationError(f"Invalid chain id in {env_name}") from exc
        values["fee_strategy_overrides"] = overrides

        return cls(**values)
