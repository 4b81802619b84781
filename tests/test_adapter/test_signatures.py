"""
Tests for the signing gateways: at-most-once guard, local signing and the
HTTP custody client (served by ``httpx.MockTransport``).
"""

import json

import httpx
import pytest
from eth_account import Account
from eth_utils import keccak, to_hex

from onchain_payouts.adapters.evm.schemas import FeeSpec
from onchain_payouts.adapters.evm.signatures import HttpCustodySigner, LocalAccountSigner
from onchain_payouts.engine.exceptions import (
    ConfigurationError,
    DuplicateSigningRequest,
    SigningFailure,
    SigningRejected,
    SigningUnavailable,
)

from test_mocks import (
    GWEI,
    MOCK_AUTH_PROOF,
    MOCK_OTHER_ADDRESS,
    MOCK_OTHER_PRIVATE_KEY,
    MOCK_SIGNER_PRIVATE_KEY,
    MOCK_SOURCE_ADDRESS,
    FailingSigner,
    create_mock_credentials,
    create_mock_unsigned,
)

CUSTODY_URL = "https://custody.test"


def _custody_signer(handler) -> HttpCustodySigner:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpCustodySigner(CUSTODY_URL, client=client)


def _signing_handler(private_key: str = MOCK_SIGNER_PRIVATE_KEY, seen: list = None):
    """Custody double that signs the submitted transaction fields."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if seen is not None:
            seen.append((request, body))
        fields = body["unsigned_transaction"]
        fee = fields["fee"]
        tx = {
            "chainId": fields["chain_id"],
            "to": fields["to"],
            "value": fields["value"],
            "data": fields["data"],
            "nonce": fields["nonce"],
            "gas": fields["gas"],
        }
        if fee["gas_price"] is not None:
            tx["gasPrice"] = fee["gas_price"]
        else:
            tx["maxFeePerGas"] = fee["max_fee_per_gas"]
            tx["maxPriorityFeePerGas"] = fee["max_priority_fee_per_gas"]
            tx["type"] = 2
        signed = Account.from_key(private_key).sign_transaction(tx)
        return httpx.Response(200, json={"signed_transaction": to_hex(signed.raw_transaction)})

    return handler


class TestLocalAccountSigner:

    @pytest.mark.asyncio
    async def test_signs_legacy_transaction(self):
        signer = LocalAccountSigner(private_key=MOCK_SIGNER_PRIVATE_KEY)
        unsigned = create_mock_unsigned()

        signed = await signer.sign(unsigned, create_mock_credentials())

        assert signer.address == MOCK_SOURCE_ADDRESS
        assert signed.unsigned == unsigned
        assert signed.tx_hash == to_hex(keccak(signed.raw_bytes))
        assert Account.recover_transaction(signed.raw_bytes) == MOCK_SOURCE_ADDRESS

    @pytest.mark.asyncio
    async def test_signs_dynamic_fee_transaction(self):
        signer = LocalAccountSigner(private_key=MOCK_SIGNER_PRIVATE_KEY)
        unsigned = create_mock_unsigned(fee=FeeSpec(max_fee_per_gas=30 * GWEI, max_priority_fee_per_gas=2 * GWEI))

        signed = await signer.sign(unsigned, create_mock_credentials())

        assert signed.raw_transaction.startswith("0x02")
        assert Account.recover_transaction(signed.raw_bytes) == MOCK_SOURCE_ADDRESS

    @pytest.mark.asyncio
    async def test_same_transaction_is_signed_once(self):
        signer = LocalAccountSigner(private_key=MOCK_SIGNER_PRIVATE_KEY)
        unsigned = create_mock_unsigned()
        await signer.sign(unsigned, create_mock_credentials())

        with pytest.raises(DuplicateSigningRequest):
            await signer.sign(unsigned, create_mock_credentials())
        assert signer.was_requested(unsigned.request_id)

        # A new fee is a new transaction identity.
        await signer.sign(create_mock_unsigned(fee=FeeSpec(gas_price=40 * GWEI)), create_mock_credentials())

    @pytest.mark.asyncio
    async def test_wrong_wallet_is_rejected(self):
        signer = LocalAccountSigner(private_key=MOCK_SIGNER_PRIVATE_KEY)
        with pytest.raises(SigningRejected):
            await signer.sign(create_mock_unsigned(), create_mock_credentials(wallet_address=MOCK_OTHER_ADDRESS))

    @pytest.mark.asyncio
    async def test_wrong_sender_is_rejected(self):
        signer = LocalAccountSigner(private_key=MOCK_SIGNER_PRIVATE_KEY)
        with pytest.raises(SigningRejected):
            await signer.sign(create_mock_unsigned(sender=MOCK_OTHER_ADDRESS), create_mock_credentials())

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("EVM_PRIVATE_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            LocalAccountSigner()

    def test_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("EVM_PRIVATE_KEY", MOCK_OTHER_PRIVATE_KEY)
        assert LocalAccountSigner().address == MOCK_OTHER_ADDRESS


class TestFailedRequestsAreNotRetried:

    @pytest.mark.asyncio
    async def test_failed_request_counts_as_requested(self):
        signer = FailingSigner(SigningUnavailable("custody down"))
        unsigned = create_mock_unsigned()

        with pytest.raises(SigningUnavailable):
            await signer.sign(unsigned, create_mock_credentials())
        with pytest.raises(DuplicateSigningRequest):
            await signer.sign(unsigned, create_mock_credentials())
        assert len(signer.calls) == 1


class TestHttpCustodySigner:

    @pytest.mark.asyncio
    async def test_signs_through_custody_service(self):
        seen = []
        signer = _custody_signer(_signing_handler(seen=seen))
        unsigned = create_mock_unsigned()

        signed = await signer.sign(unsigned, create_mock_credentials())

        assert Account.recover_transaction(signed.raw_bytes) == MOCK_SOURCE_ADDRESS
        request, body = seen[0]
        assert request.method == "POST"
        assert str(request.url) == f"{CUSTODY_URL}/sign"
        assert request.headers["X-Stamp"] == MOCK_AUTH_PROOF
        assert body["request_id"] == unsigned.request_id
        assert body["sub_organization_id"] == "suborg_test"
        assert body["wallet_address"] == MOCK_SOURCE_ADDRESS

    @pytest.mark.asyncio
    async def test_payload_from_other_wallet_is_rejected(self):
        signer = _custody_signer(_signing_handler(private_key=MOCK_OTHER_PRIVATE_KEY))
        with pytest.raises(SigningRejected):
            await signer.sign(create_mock_unsigned(), create_mock_credentials())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 401, 403])
    async def test_client_errors_are_rejections(self, status_code):
        signer = _custody_signer(lambda request: httpx.Response(status_code, json={"error": "denied"}))
        with pytest.raises(SigningRejected) as exc_info:
            await signer.sign(create_mock_unsigned(), create_mock_credentials())
        assert exc_info.value.details["status_code"] == status_code

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [429, 500, 503])
    async def test_server_errors_are_unavailability(self, status_code):
        signer = _custody_signer(lambda request: httpx.Response(status_code))
        with pytest.raises(SigningUnavailable):
            await signer.sign(create_mock_unsigned(), create_mock_credentials())

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailability(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        signer = _custody_signer(handler)
        with pytest.raises(SigningUnavailable):
            await signer.sign(create_mock_unsigned(), create_mock_credentials())

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        signer = _custody_signer(lambda request: httpx.Response(200, json={"unexpected": True}))
        with pytest.raises(SigningFailure):
            await signer.sign(create_mock_unsigned(), create_mock_credentials())

    def test_base_url_required(self):
        with pytest.raises(ConfigurationError):
            HttpCustodySigner("")
