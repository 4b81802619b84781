"""
Adapter Hub - Unified Network Adapter Gateway

This module is the entry point for all per-network adapter operations. It:
1. Routes payment intents to the adapter of their network (CAIP-2 id)
2. Shares one currency registry and one settings object across networks
3. Finds the tracker that owns a transaction hash for poll / watch / status

The hub acts as a facade over the per-network ``EVMAdapter`` bundles; the
build -> sign -> broadcast pipeline runs on top of it in ``servers``.

Architecture:
    AdapterHub (you are here)
        ├── CurrencyRegistry (currency -> token contract per network)
        └── EVMAdapter per network
                ├── TransactionBuilder (encoder, fee estimator, nonce allocator)
                └── SubmissionTracker
"""

from typing import Callable, Dict, List, Optional

from .bases import NetworkClient
from .registry import CurrencyRegistry
from .evm.adapter import EVMAdapter
from .evm.constants import PayoutSettings, parse_caip2_chain_id
from .evm.fees import FeeStrategy
from .evm.schemas import SubmissionRecord
from .evm.tracker import StatusListener
from ..engine.exceptions import UnknownSubmission, UnsupportedNetwork
from ..schemas.bases import SubmissionStatus


class AdapterHub:
    """
    Unified Network Adapter Hub.

    Holds one ``EVMAdapter`` per registered network and routes requests by
    CAIP-2 identifier.

    Example:
        hub = AdapterHub(settings=PayoutSettings.from_env())
        hub.register_network("eip155:11155111")
        adapter = hub.get_adapter("eip155:11155111")
    """

    def __init__(
        self,
        registry: Optional[CurrencyRegistry] = None,
        settings: Optional[PayoutSettings] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the hub.

        Args:
            registry: Currency registry shared by all networks (default: built-in chain table)
            settings: Runtime tunables (default: ``PayoutSettings()``)
            clock: Time source forwarded to every adapter
        """
        self.registry = registry or CurrencyRegistry()
        self.settings = settings or PayoutSettings()
        self._clock = clock
        self._adapters: Dict[str, EVMAdapter] = {}
        self._listeners: List[StatusListener] = []

    # =========================================================================
    # Network Management Methods
    # =========================================================================

    @staticmethod
    def _network_key(network: str) -> str:
        return f"eip155:{parse_caip2_chain_id(network)}"

    def register_network(
        self,
        network: str,
        network_client: Optional[NetworkClient] = None,
        fee_strategy: Optional[FeeStrategy] = None,
    ) -> EVMAdapter:
        """
        Create and register the adapter of a network.

        Args:
            network: CAIP-2 identifier
            network_client: Chain access (default: ``Web3NetworkClient``)
            fee_strategy: Fee strategy override (default: from settings)

        Returns:
            EVMAdapter: The registered adapter
        """
        options = {"clock": self._clock} if self._clock is not None else {}
        adapter = EVMAdapter(
            network,
            network_client=network_client,
            registry=self.registry,
            settings=self.settings,
            fee_strategy=fee_strategy,
            **options,
        )
        return self.register_adapter(adapter)

    def register_adapter(self, adapter: EVMAdapter) -> EVMAdapter:
        """Register a pre-built adapter, replacing any adapter of the same network."""
        for listener in self._listeners:
            adapter.tracker.add_listener(listener)
        self._adapters[self._network_key(adapter.network)] = adapter
        return adapter

    def get_adapter(self, network: str) -> EVMAdapter:
        """
        Adapter of a network.

        Raises:
            UnsupportedNetwork: No adapter is registered for the network.
        """
        adapter = self._adapters.get(self._network_key(network))
        if adapter is None:
            raise UnsupportedNetwork(f"No adapter registered for network {network}", details={"network": network})
        return adapter

    def networks(self) -> List[str]:
        return sorted(self._adapters)

    def add_status_listener(self, listener: StatusListener) -> None:
        """Register a status listener on every current and future tracker."""
        self._listeners.append(listener)
        for adapter in self._adapters.values():
            adapter.tracker.add_listener(listener)

    # =========================================================================
    # Tracking Methods
    # =========================================================================

    def find(self, tx_hash: str) -> Optional[EVMAdapter]:
        """Adapter whose tracker owns ``tx_hash``, if any."""
        for adapter in self._adapters.values():
            if adapter.tracker.get(tx_hash) is not None:
                return adapter
        return None

    def get_record(self, tx_hash: str) -> SubmissionRecord:
        """
        Current record of a tracked transaction.

        Raises:
            UnknownSubmission: The hash is not tracked by any network.
        """
        adapter = self.find(tx_hash)
        if adapter is None:
            raise _unknown(tx_hash)
        return adapter.tracker.require(tx_hash)

    def status(self, tx_hash: str) -> SubmissionStatus:
        return self.get_record(tx_hash).status

    async def poll(self, tx_hash: str) -> SubmissionRecord:
        """Check a transaction once and return its (possibly advanced) record."""
        adapter = self.find(tx_hash)
        if adapter is None:
            raise _unknown(tx_hash)
        return await adapter.tracker.poll(tx_hash)

    async def watch(self, tx_hash: str) -> SubmissionRecord:
        """Poll a transaction until it is terminal or STUCK."""
        adapter = self.find(tx_hash)
        if adapter is None:
            raise _unknown(tx_hash)
        return await adapter.tracker.watch(tx_hash)


def _unknown(tx_hash: str) -> UnknownSubmission:
    return UnknownSubmission(f"Transaction {tx_hash} is not tracked by any network", details={"tx_hash": tx_hash})
