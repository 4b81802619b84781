"""
Tests for TransactionBuilder and the canonical unsigned transaction.
"""

import asyncio

import pytest

from onchain_payouts.adapters.evm.schemas import FeeSpec, UnsignedTransaction
from onchain_payouts.engine.exceptions import (
    GasSimulationFailed,
    InvalidAddress,
    UnsupportedCurrency,
    UnsupportedNetwork,
)

from test_mocks import (
    GWEI,
    MOCK_AMOUNT_1_USDC,
    MOCK_CHAIN_ID_SEPOLIA,
    MOCK_DESTINATION_ADDRESS,
    MOCK_SOURCE_ADDRESS,
    MOCK_USDC_SEPOLIA,
    FakeNetworkClient,
    create_mock_account,
    create_mock_adapter,
    create_mock_intent,
    create_mock_unsigned,
)


@pytest.mark.asyncio
async def test_builds_reference_transfer():
    client = FakeNetworkClient(pending_count=5, gas_price=30 * GWEI, simulated_gas=50000)
    adapter = create_mock_adapter(client)

    unsigned, reservation = await adapter.builder.build(create_mock_intent())

    assert unsigned.nonce == 5
    assert reservation.nonce == 5
    assert unsigned.gas == 55000
    assert unsigned.fee == FeeSpec(gas_price=30 * GWEI)
    assert unsigned.value == 0
    assert unsigned.chain_id == MOCK_CHAIN_ID_SEPOLIA
    assert unsigned.sender == MOCK_SOURCE_ADDRESS
    assert unsigned.to.lower() == MOCK_USDC_SEPOLIA.lower()
    assert unsigned.data == (
        "0xa9059cbb"
        + "0" * 24 + MOCK_DESTINATION_ADDRESS[2:].lower()
        + format(MOCK_AMOUNT_1_USDC, "064x")
    )
    assert unsigned.intent_id == "pay_001"
    assert unsigned.currency == "USDC"


@pytest.mark.asyncio
async def test_concurrent_builds_for_one_account():
    adapter = create_mock_adapter(FakeNetworkClient(pending_count=5))
    (first, _), (second, _) = await asyncio.gather(
        adapter.builder.build(create_mock_intent(intent_id="pay_a")),
        adapter.builder.build(create_mock_intent(intent_id="pay_b")),
    )
    assert {first.nonce, second.nonce} == {5, 6}


@pytest.mark.asyncio
async def test_independent_builders_produce_identical_bytes():
    intent = create_mock_intent()
    first, _ = await create_mock_adapter(FakeNetworkClient()).builder.build(intent)
    second, _ = await create_mock_adapter(FakeNetworkClient()).builder.build(intent)

    assert first.serialize() == second.serialize()
    # Each build is its own signing request.
    assert first.request_id != second.request_id


@pytest.mark.asyncio
async def test_unsupported_currency_touches_nothing():
    client = FakeNetworkClient()
    adapter = create_mock_adapter(client)

    with pytest.raises(UnsupportedCurrency):
        await adapter.builder.build(create_mock_intent(currency="DOGE"))

    assert client.calls == []
    assert adapter.allocator.snapshot(MOCK_SOURCE_ADDRESS, MOCK_CHAIN_ID_SEPOLIA)["reserved"] == []


@pytest.mark.asyncio
async def test_unknown_network_is_rejected():
    adapter = create_mock_adapter()
    with pytest.raises(UnsupportedNetwork):
        await adapter.builder.build(create_mock_intent(network="eip155:424242"))


@pytest.mark.asyncio
async def test_invalid_source_address():
    client = FakeNetworkClient()
    adapter = create_mock_adapter(client)
    with pytest.raises(InvalidAddress):
        await adapter.builder.build(create_mock_intent(source=create_mock_account(address="0xnope")))
    assert client.calls == []


@pytest.mark.asyncio
async def test_simulation_failure_reserves_no_nonce():
    client = FakeNetworkClient()
    client.simulate_error = GasSimulationFailed("Transfer would revert")
    adapter = create_mock_adapter(client)

    with pytest.raises(GasSimulationFailed):
        await adapter.builder.build(create_mock_intent())

    assert "get_nonce_count" not in client.calls
    snapshot = adapter.allocator.snapshot(MOCK_SOURCE_ADDRESS, MOCK_CHAIN_ID_SEPOLIA)
    assert snapshot["reserved"] == []
    assert snapshot["high_water"] is None


@pytest.mark.asyncio
async def test_replacement_build_keeps_nonce_and_raises_fee():
    adapter = create_mock_adapter(FakeNetworkClient())
    original, reservation = await adapter.builder.build(create_mock_intent())
    adapter.allocator.mark_broadcast(reservation)

    replacement_slot = await adapter.allocator.reserve(MOCK_SOURCE_ADDRESS, MOCK_CHAIN_ID_SEPOLIA, nonce=original.nonce)
    replacement, held = await adapter.builder.build(
        create_mock_intent(), reservation=replacement_slot, replaces_fee=original.fee
    )

    assert held is replacement_slot
    assert replacement.nonce == original.nonce
    assert replacement.fee.gas_price == 33 * GWEI + 1
    assert replacement.request_id != original.request_id


@pytest.mark.asyncio
async def test_percentile_strategy_builds_dynamic_transaction():
    adapter = create_mock_adapter(FakeNetworkClient(), fee_strategy="percentile")
    unsigned, _ = await adapter.builder.build(create_mock_intent())

    assert unsigned.fee.is_dynamic
    tx = unsigned.to_tx_dict()
    assert tx["type"] == 2
    assert "gasPrice" not in tx
    assert tx["maxFeePerGas"] == 30 * GWEI


class TestUnsignedTransaction:

    def test_serialization_is_canonical(self):
        unsigned = create_mock_unsigned()
        payload = unsigned.serialize().decode("utf-8")

        assert payload.startswith('{"chain_id":11155111,"data":"0xa9059cbb')
        assert " " not in payload
        assert "intent_id" not in payload
        assert "currency" not in payload

    def test_request_id_ignores_intent(self):
        a = create_mock_unsigned()
        b = a.model_copy(update={"intent_id": "pay_other"})
        assert a.request_id == b.request_id

    def test_request_id_changes_with_fee_and_nonce(self):
        base = create_mock_unsigned()
        assert create_mock_unsigned(nonce=6).request_id != base.request_id
        assert create_mock_unsigned(fee=FeeSpec(gas_price=31 * GWEI)).request_id != base.request_id

    def test_is_immutable(self):
        unsigned = create_mock_unsigned()
        with pytest.raises(ValueError):
            unsigned.nonce = 6

    def test_rejects_native_value(self):
        with pytest.raises(ValueError):
            UnsignedTransaction.model_validate({**create_mock_unsigned().model_dump(), "value": 1})
