"""
Currency Registry

Maps (network, currency code) to the token contract that settles it.
"""

from typing import Dict, List, Optional, Tuple

from eth_utils import is_address, to_checksum_address

from .evm.constants import EvmAssetConfig, list_chain_configs, parse_caip2_chain_id
from ..engine.exceptions import ConfigurationError, UnsupportedCurrency, UnsupportedNetwork


class CurrencyRegistry:
    """
    Registry of token contracts per network.

    Seeded from the built-in chain table; deployments add or override
    entries with ``register``. Lookups are exact: a currency that is not
    registered for the network is an ``UnsupportedCurrency`` error, never a
    fallback to another token.
    """

    def __init__(self, seed_defaults: bool = True):
        self._assets: Dict[Tuple[int, str], EvmAssetConfig] = {}
        self._networks: Dict[int, str] = {}

        if seed_defaults:
            for caip2, config in list_chain_configs().items():
                self._networks[config.chain_id] = caip2
                for symbol, asset in config.assets.items():
                    self._assets[(config.chain_id, symbol.upper())] = asset.model_copy(
                        update={"address": to_checksum_address(asset.address)}
                    )

    def register(
        self,
        network: str,
        currency: str,
        address: str,
        decimals: int = 6,
        name: Optional[str] = None,
    ) -> EvmAssetConfig:
        """
        Register (or replace) the token contract of a currency on a network.

        Args:
            network: CAIP-2 identifier (e.g. "eip155:1")
            currency: Currency code, case-insensitive
            address: Token contract address
            decimals: Token decimals
            name: Token name (defaults to the code)

        Returns:
            EvmAssetConfig: The registered entry

        Raises:
            UnsupportedNetwork: If ``network`` is not a valid CAIP-2 id.
            ConfigurationError: If the contract address or code is malformed.

        Example:
            registry = CurrencyRegistry()
            registry.register("eip155:31337", "USDC", "0x5FbDB2315678afecb367f032d93F642f64180aa3")
        """
        chain_id = parse_caip2_chain_id(network)
        symbol = (currency or "").strip().upper()
        if not symbol:
            raise ConfigurationError("Currency code must be a non-empty string")
        if not is_address(address):
            raise ConfigurationError(f"Invalid token contract address for {symbol} on {network}: {address!r}")

        asset = EvmAssetConfig(
            symbol=symbol,
            address=to_checksum_address(address),
            name=name or symbol,
            decimals=decimals,
        )
        self._assets[(chain_id, symbol)] = asset
        self._networks.setdefault(chain_id, f"eip155:{chain_id}")
        return asset

    def resolve(self, network: str, currency: str) -> EvmAssetConfig:
        """
        Token contract of a currency on a network.

        Raises:
            UnsupportedNetwork: If the network is unknown to the registry.
            UnsupportedCurrency: If the currency is not configured for the network.
        """
        chain_id = parse_caip2_chain_id(network)
        if chain_id not in self._networks:
            raise UnsupportedNetwork(f"Unsupported network: {network}", details={"network": network})

        symbol = (currency or "").strip().upper()
        asset = self._assets.get((chain_id, symbol))
        if asset is None:
            raise UnsupportedCurrency(
                f"Currency '{currency}' is not supported on {network}",
                details={"network": network, "currency": currency},
            )
        return asset

    def supports(self, network: str, currency: str) -> bool:
        try:
            self.resolve(network, currency)
        except (UnsupportedNetwork, UnsupportedCurrency):
            return False
        return True

    def currencies(self, network: str) -> List[str]:
        """Currency codes registered for a network, sorted."""
        chain_id = parse_caip2_chain_id(network)
        return sorted(symbol for (cid, symbol) in self._assets if cid == chain_id)

    def networks(self) -> List[str]:
        """CAIP-2 identifiers known to the registry."""
        return [self._networks[cid] for cid in sorted(self._networks)]
