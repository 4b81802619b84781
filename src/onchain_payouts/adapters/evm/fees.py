"""
Fee Estimation

Turns network fee signals and a gas simulation into the fee parameters and
gas limit of a transaction.

Strategies:
    - SingleSampleStrategy ("single-sample"): one ``eth_gasPrice`` sample, legacy fees
    - PercentileFeeStrategy ("percentile"): EIP-1559 fees from ``eth_feeHistory``
    - TargetLandingStrategy ("target-landing"): EIP-1559 fees sized to land
      within a target number of blocks, bounded by a fee cap
"""

import asyncio
import logging
import statistics
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from .constants import FEE_STRATEGY_PERCENTILE, FEE_STRATEGY_SINGLE_SAMPLE, FEE_STRATEGY_TARGET_LANDING
from .schemas import FeeHistory, FeeSpec, TransferCall
from ..bases import NetworkClient
from ...engine.exceptions import ConfigurationError, FeeCapExceeded, FeeEstimationError

logger = logging.getLogger(__name__)


class FeeStrategy(ABC):
    """Derives a FeeSpec from the current state of a network."""

    name: str = ""

    @abstractmethod
    async def estimate(self, network: NetworkClient) -> FeeSpec:
        pass


class SingleSampleStrategy(FeeStrategy):
    """One instantaneous gas price sample, no smoothing."""

    name = FEE_STRATEGY_SINGLE_SAMPLE

    async def estimate(self, network: NetworkClient) -> FeeSpec:
        gas_price = await network.get_fee_sample()
        if gas_price <= 0:
            raise FeeEstimationError(f"Network returned a non-positive gas price: {gas_price}")
        return FeeSpec(gas_price=gas_price)


def _median_reward(history: FeeHistory) -> int:
    rewards = history.rewards_at(0)
    if not rewards or not history.base_fee_per_gas:
        raise FeeEstimationError("Fee history returned no blocks to sample")
    return int(statistics.median(rewards))


class PercentileFeeStrategy(FeeStrategy):
    """
    EIP-1559 fees from recent blocks.

    priority fee = median over ``block_count`` blocks of the reward at
    ``percentile``; max fee = 2 x latest base fee + priority fee, which keeps
    the transaction valid through several full blocks of base fee growth.
    """

    name = FEE_STRATEGY_PERCENTILE

    def __init__(self, block_count: int = 20, percentile: float = 50.0):
        if block_count <= 0:
            raise ConfigurationError("block_count must be positive")
        if not 0 <= percentile <= 100:
            raise ConfigurationError("percentile must be within [0, 100]")
        self.block_count = block_count
        self.percentile = percentile

    async def estimate(self, network: NetworkClient) -> FeeSpec:
        history = await network.get_fee_history(self.block_count, [self.percentile])
        priority = _median_reward(history)
        max_fee = 2 * history.latest_base_fee + priority
        return FeeSpec(max_fee_per_gas=max_fee, max_priority_fee_per_gas=priority)


class TargetLandingStrategy(FeeStrategy):
    """
    EIP-1559 fees sized to stay includable for ``target_blocks`` blocks.

    The base fee can grow by at most 1/8 per block, so the latest base fee is
    projected forward by that bound for each target block. The tip is the
    median reward at ``percentile``. Raises ``FeeCapExceeded`` when the
    resulting max fee is above ``max_fee_cap``.
    """

    name = FEE_STRATEGY_TARGET_LANDING

    def __init__(
        self,
        target_blocks: int = 3,
        percentile: float = 75.0,
        max_fee_cap: Optional[int] = None,
        block_count: int = 10,
    ):
        if target_blocks <= 0:
            raise ConfigurationError("target_blocks must be positive")
        if not 0 <= percentile <= 100:
            raise ConfigurationError("percentile must be within [0, 100]")
        self.target_blocks = target_blocks
        self.percentile = percentile
        self.max_fee_cap = max_fee_cap
        self.block_count = block_count

    def project_base_fee(self, base_fee: int) -> int:
        """Worst-case base fee after ``target_blocks`` full blocks (rounded up)."""
        projected = base_fee
        for _ in range(self.target_blocks):
            projected += -(-projected // 8)
        return projected

    async def estimate(self, network: NetworkClient) -> FeeSpec:
        history = await network.get_fee_history(self.block_count, [self.percentile])
        priority = _median_reward(history)
        max_fee = self.project_base_fee(history.latest_base_fee) + priority

        if self.max_fee_cap is not None and max_fee > self.max_fee_cap:
            raise FeeCapExceeded(
                f"Fee needed to land within {self.target_blocks} blocks ({max_fee} wei) exceeds cap {self.max_fee_cap} wei",
                details={"max_fee_per_gas": max_fee, "cap": self.max_fee_cap},
            )
        return FeeSpec(max_fee_per_gas=max_fee, max_priority_fee_per_gas=priority)


def build_fee_strategy(name: str, **options) -> FeeStrategy:
    """
    Create a fee strategy by name.

    Args:
        name: "single-sample", "percentile" or "target-landing"
        **options: Constructor arguments of the strategy

    Raises:
        ConfigurationError: If the name is unknown.
    """
    strategies = {
        FEE_STRATEGY_SINGLE_SAMPLE: SingleSampleStrategy,
        FEE_STRATEGY_PERCENTILE: PercentileFeeStrategy,
        FEE_STRATEGY_TARGET_LANDING: TargetLandingStrategy,
    }
    strategy_cls = strategies.get(name)
    if strategy_cls is None:
        raise ConfigurationError(f"Unknown fee strategy '{name}'; expected one of {sorted(strategies)}")
    return strategy_cls(**options)


class FeeEstimator:
    """
    Produces (FeeSpec, gas limit) for an encoded transfer.

    The fee read and the gas simulation are independent and run concurrently.
    A simulation that would revert raises ``GasSimulationFailed``; there is no
    default gas limit to fall back to.
    """

    def __init__(
        self,
        network: NetworkClient,
        strategy: Optional[FeeStrategy] = None,
        gas_buffer_percent: int = 10,
    ):
        if gas_buffer_percent < 0:
            raise ConfigurationError("gas_buffer_percent cannot be negative")
        self._network = network
        self.strategy = strategy or SingleSampleStrategy()
        self.gas_buffer_percent = gas_buffer_percent

    def gas_limit_for(self, simulated_gas: int) -> int:
        """Simulated gas plus the safety buffer, rounded down."""
        return simulated_gas * (100 + self.gas_buffer_percent) // 100

    async def estimate(self, call: TransferCall, sender: str) -> Tuple[FeeSpec, int]:
        """
        Estimate fees and gas limit for a call.

        Returns:
            Tuple[FeeSpec, int]: Fee parameters and buffered gas limit

        Raises:
            GasSimulationFailed: The call would revert.
            FeeEstimationError: Fee signals could not be used.
            BlockchainInteractionError: An RPC read failed.
        """
        fee, simulated_gas = await asyncio.gather(
            self.strategy.estimate(self._network),
            self._network.simulate_gas(call, sender),
        )
        gas_limit = self.gas_limit_for(simulated_gas)
        logger.debug(
            "Estimated %s fee %s with gas %d (simulated %d) for %s",
            self.strategy.name, fee.to_tx_fields(), gas_limit, simulated_gas, sender,
        )
        return fee, gas_limit
