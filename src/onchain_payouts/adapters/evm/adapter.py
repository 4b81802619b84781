"""
EVM Network Adapter

Bundles the per-network payout components (encoder, fee estimator, nonce
allocator, transaction builder and submission tracker) around one network
client.

Key Features:
    - One allocator per network, so nonces are serialized per (account, chain)
    - Fee strategy chosen per chain from ``PayoutSettings``
    - Shared clock for reservation leases and the watch window

Dependencies:
    - web3.py: Default network client (``Web3NetworkClient``)
"""

import logging
import time
from typing import Callable, Optional

from .builder import TransactionBuilder
from .constants import PayoutSettings, parse_caip2_chain_id
from .encoder import TransferEncoder
from .fees import FeeEstimator, FeeStrategy, build_fee_strategy
from .network import Web3NetworkClient
from .nonces import NonceAllocator
from .schemas import NonceReservation
from .tracker import SubmissionTracker
from ..bases import NetworkClient
from ..registry import CurrencyRegistry
from ...engine.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class EVMAdapter:
    """
    Payout components of one EVM network.

    Args:
        network: CAIP-2 identifier (e.g. "eip155:1")
        network_client: Chain access; a ``Web3NetworkClient`` is created when omitted
        registry: Currency registry shared across networks
        settings: Runtime tunables; defaults to ``PayoutSettings()``
        fee_strategy: Explicit fee strategy; otherwise built from settings
        clock: Time source (unix seconds)

    Example:
        adapter = EVMAdapter("eip155:11155111")
        unsigned, reservation = await adapter.builder.build(intent)
    """

    def __init__(
        self,
        network: str,
        network_client: Optional[NetworkClient] = None,
        registry: Optional[CurrencyRegistry] = None,
        settings: Optional[PayoutSettings] = None,
        fee_strategy: Optional[FeeStrategy] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.network = network
        self.chain_id = parse_caip2_chain_id(network)
        self.settings = settings or PayoutSettings()
        self.clock = clock

        self.client = network_client or Web3NetworkClient(
            network, request_timeout=self.settings.rpc_timeout_seconds
        )
        self.registry = registry or CurrencyRegistry()
        strategy = fee_strategy or build_fee_strategy(self.settings.fee_strategy_for(self.chain_id))

        self.encoder = TransferEncoder(self.registry)
        self.estimator = FeeEstimator(self.client, strategy, self.settings.gas_buffer_percent)
        self.allocator = NonceAllocator(self.client, self.settings.reservation_lease_seconds, clock)
        self.builder = TransactionBuilder(self.encoder, self.estimator, self.allocator)
        self.tracker = SubmissionTracker(
            self.client,
            self.allocator,
            watch_window_seconds=self.settings.watch_window_seconds,
            poll_interval_seconds=self.settings.poll_interval_seconds,
            clock=clock,
        )
        logger.info("EVM adapter ready for %s using %s fees", network, strategy.name)

    def lease_remaining(self, reservation: NonceReservation) -> float:
        """Seconds left before an unbroadcast reservation lapses (never negative)."""
        return max(reservation.lease_expires_at - self.clock(), 0.0)

    async def verify_chain_id(self) -> None:
        """
        Check that the network client is connected to the configured chain.

        Raises:
            ConfigurationError: The endpoint serves a different chain.
        """
        reported = await self.client.get_chain_id()
        if reported != self.chain_id:
            raise ConfigurationError(
                f"RPC endpoint for {self.network} reports chain id {reported}",
                details={"network": self.network, "chain_id": reported},
            )
