"""
Tests for fee strategies, the fee estimator and fee replacement floors.
"""

import pytest

from onchain_payouts.adapters.evm.constants import PayoutSettings
from onchain_payouts.adapters.evm.encoder import TransferEncoder
from onchain_payouts.adapters.evm.fees import (
    FeeEstimator,
    PercentileFeeStrategy,
    SingleSampleStrategy,
    TargetLandingStrategy,
    build_fee_strategy,
)
from onchain_payouts.adapters.evm.schemas import FeeSpec
from onchain_payouts.adapters.registry import CurrencyRegistry
from onchain_payouts.engine.exceptions import (
    ConfigurationError,
    FeeCapExceeded,
    FeeEstimationError,
    GasSimulationFailed,
)

from test_mocks import (
    GWEI,
    MOCK_AMOUNT_1_USDC,
    MOCK_CHAIN_ID_MAINNET,
    MOCK_DESTINATION_ADDRESS,
    MOCK_GAS_PRICE,
    MOCK_NETWORK_SEPOLIA,
    MOCK_SOURCE_ADDRESS,
    FakeNetworkClient,
    create_mock_fee_history,
)


def _call():
    return TransferEncoder(CurrencyRegistry()).encode(
        MOCK_DESTINATION_ADDRESS, MOCK_AMOUNT_1_USDC, "USDC", MOCK_NETWORK_SEPOLIA
    )


class TestStrategies:

    @pytest.mark.asyncio
    async def test_single_sample_uses_gas_price(self):
        fee = await SingleSampleStrategy().estimate(FakeNetworkClient())
        assert fee == FeeSpec(gas_price=MOCK_GAS_PRICE)
        assert not fee.is_dynamic

    @pytest.mark.asyncio
    async def test_single_sample_rejects_zero_price(self):
        with pytest.raises(FeeEstimationError):
            await SingleSampleStrategy().estimate(FakeNetworkClient(gas_price=0))

    @pytest.mark.asyncio
    async def test_percentile_strategy(self):
        client = FakeNetworkClient()
        fee = await PercentileFeeStrategy(block_count=3).estimate(client)

        # median tip 2 gwei; 2 x latest base fee (14 gwei) + tip
        assert fee.max_priority_fee_per_gas == 2 * GWEI
        assert fee.max_fee_per_gas == 30 * GWEI
        assert client.calls == ["get_fee_history"]

    @pytest.mark.asyncio
    async def test_percentile_strategy_without_blocks(self):
        client = FakeNetworkClient()
        client.fee_history = create_mock_fee_history(base_fees=[], rewards=[])
        with pytest.raises(FeeEstimationError):
            await PercentileFeeStrategy().estimate(client)

    def test_target_landing_projection(self):
        assert TargetLandingStrategy(target_blocks=1).project_base_fee(800) == 900
        assert TargetLandingStrategy(target_blocks=3).project_base_fee(800) == 1140

    @pytest.mark.asyncio
    async def test_target_landing_strategy(self):
        client = FakeNetworkClient()
        client.fee_history = create_mock_fee_history(base_fees=[8 * GWEI, 8 * GWEI], rewards=[1 * GWEI, 3 * GWEI])
        fee = await TargetLandingStrategy(target_blocks=1).estimate(client)

        assert fee.max_priority_fee_per_gas == 2 * GWEI
        assert fee.max_fee_per_gas == 9 * GWEI + 2 * GWEI

    @pytest.mark.asyncio
    async def test_target_landing_respects_cap(self):
        client = FakeNetworkClient()
        strategy = TargetLandingStrategy(target_blocks=3, max_fee_cap=10 * GWEI)
        with pytest.raises(FeeCapExceeded) as exc_info:
            await strategy.estimate(client)
        assert exc_info.value.details["cap"] == 10 * GWEI
        assert isinstance(exc_info.value, FeeEstimationError)

    def test_build_by_name(self):
        assert isinstance(build_fee_strategy("single-sample"), SingleSampleStrategy)
        assert isinstance(build_fee_strategy("percentile", block_count=5), PercentileFeeStrategy)
        assert build_fee_strategy("target-landing", target_blocks=2).target_blocks == 2
        with pytest.raises(ConfigurationError):
            build_fee_strategy("cheapest")

    def test_strategy_selected_per_network(self):
        settings = PayoutSettings(fee_strategy_overrides={MOCK_CHAIN_ID_MAINNET: "target-landing"})
        assert settings.fee_strategy_for(MOCK_CHAIN_ID_MAINNET) == "target-landing"
        assert settings.fee_strategy_for(11155111) == "single-sample"

        with pytest.raises(ConfigurationError):
            PayoutSettings(fee_strategy="cheapest").fee_strategy_for(1)

    def test_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("PAYOUT_WATCH_WINDOW_SECONDS", "300")
        monkeypatch.setenv("PAYOUT_FEE_STRATEGY", "percentile")
        monkeypatch.setenv("PAYOUT_FEE_STRATEGY__1", "target-landing")
        settings = PayoutSettings.from_env()

        assert settings.watch_window_seconds == 300.0
        assert settings.fee_strategy_for(1) == "target-landing"
        assert settings.fee_strategy_for(137) == "percentile"

    def test_settings_from_env_rejects_garbage(self, monkeypatch):
        monkeypatch.setenv("PAYOUT_GAS_BUFFER_PERCENT", "ten")
        with pytest.raises(ConfigurationError):
            PayoutSettings.from_env()


class TestFeeEstimator:

    def test_gas_buffer_rounds_down(self):
        estimator = FeeEstimator(FakeNetworkClient())
        assert estimator.gas_limit_for(50000) == 55000
        assert estimator.gas_limit_for(50001) == 55001
        assert estimator.gas_limit_for(21009) == 23109

    @pytest.mark.asyncio
    async def test_estimate_returns_fee_and_gas_limit(self):
        estimator = FeeEstimator(FakeNetworkClient())
        fee, gas_limit = await estimator.estimate(_call(), MOCK_SOURCE_ADDRESS)
        assert fee.gas_price == MOCK_GAS_PRICE
        assert gas_limit == 55000

    @pytest.mark.asyncio
    async def test_simulation_failure_propagates(self):
        client = FakeNetworkClient()
        client.simulate_error = GasSimulationFailed("Transfer would revert")
        estimator = FeeEstimator(client)
        with pytest.raises(GasSimulationFailed):
            await estimator.estimate(_call(), MOCK_SOURCE_ADDRESS)

    def test_negative_buffer_rejected(self):
        with pytest.raises(ConfigurationError):
            FeeEstimator(FakeNetworkClient(), gas_buffer_percent=-1)


class TestFeeSpec:

    def test_mixed_fields_rejected(self):
        with pytest.raises(ValueError):
            FeeSpec(gas_price=1, max_fee_per_gas=2, max_priority_fee_per_gas=1)
        with pytest.raises(ValueError):
            FeeSpec(max_fee_per_gas=2)
        with pytest.raises(ValueError):
            FeeSpec(max_fee_per_gas=1, max_priority_fee_per_gas=2)

    def test_legacy_replacement_floor(self):
        previous = FeeSpec(gas_price=30 * GWEI)
        bumped = FeeSpec(gas_price=30 * GWEI).bumped_to_floor(previous)
        assert bumped.gas_price == 33 * GWEI + 1

        higher = FeeSpec(gas_price=40 * GWEI).bumped_to_floor(previous)
        assert higher.gas_price == 40 * GWEI

    def test_dynamic_replacement_floor(self):
        previous = FeeSpec(max_fee_per_gas=30 * GWEI, max_priority_fee_per_gas=2 * GWEI)
        bumped = FeeSpec(max_fee_per_gas=30 * GWEI, max_priority_fee_per_gas=2 * GWEI).bumped_to_floor(previous)

        assert bumped.max_fee_per_gas == 33 * GWEI + 1
        assert bumped.max_priority_fee_per_gas == 2 * GWEI + 2 * GWEI // 10 + 1

    def test_tx_fields(self):
        assert FeeSpec(gas_price=5).to_tx_fields() == {"gasPrice": 5}
        assert FeeSpec(max_fee_per_gas=5, max_priority_fee_per_gas=1).to_tx_fields() == {
            "maxFeePerGas": 5,
            "maxPriorityFeePerGas": 1,
        }
