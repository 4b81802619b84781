"""
EVM Transaction Signers

Implementations of ``SigningGateway`` for EVM transactions.

Exported signers
----------------
LocalAccountSigner
    Signs in-process with ``eth_account``. Intended for development networks
    and as a deterministic signer in tests; the key is read from
    ``EVM_PRIVATE_KEY`` when not passed explicitly.

HttpCustodySigner
    Forwards the unsigned transaction to a remote custody service over HTTP
    and verifies that the returned payload was signed by the expected wallet.
    The private key never leaves the custody service.

Both signers inherit the at-most-once guard of ``SigningGateway.sign``.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from eth_account import Account
from eth_utils import to_checksum_address

from .constants import get_signer_private_key_from_env
from .schemas import SignedTransaction, SignerCredentials, UnsignedTransaction
from ..bases import SigningGateway
from ...engine.exceptions import ConfigurationError, SigningFailure, SigningRejected, SigningUnavailable

logger = logging.getLogger(__name__)


class LocalAccountSigner(SigningGateway):
    """
    In-process signer backed by a private key.

    Args:
        private_key: 0x-prefixed hex key; defaults to ``EVM_PRIVATE_KEY``

    Raises:
        ConfigurationError: If no key is available or the key is malformed.

    Example:
        signer = LocalAccountSigner(private_key="0x...")
        signed = await signer.sign(unsigned, SignerCredentials(wallet_address=signer.address))
    """

    def __init__(self, private_key: Optional[str] = None):
        super().__init__()
        resolved = private_key if private_key else get_signer_private_key_from_env()
        if not resolved:
            raise ConfigurationError(
                "Private key not provided. Either pass 'private_key' or set the EVM_PRIVATE_KEY environment variable."
            )
        try:
            self._account = Account.from_key(resolved)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(f"Invalid private key: {exc}") from exc

    @property
    def address(self) -> str:
        return to_checksum_address(self._account.address)

    async def _sign(self, unsigned: UnsignedTransaction, credentials: SignerCredentials) -> SignedTransaction:
        if credentials.wallet_address.lower() != self._account.address.lower():
            raise SigningRejected(
                f"Signer holds {self.address}, request is for {credentials.wallet_address}",
                details={"request_id": unsigned.request_id},
            )
        if unsigned.sender.lower() != self._account.address.lower():
            raise SigningRejected(
                f"Transaction sender {unsigned.sender} does not match signer {self.address}",
                details={"request_id": unsigned.request_id},
            )

        try:
            signed = self._account.sign_transaction(unsigned.to_tx_dict())
        except (ValueError, TypeError) as exc:
            raise SigningFailure(f"Local signing failed: {exc}", details={"request_id": unsigned.request_id}) from exc

        return SignedTransaction.from_raw(bytes(signed.raw_transaction), unsigned)


class HttpCustodySigner(SigningGateway):
    """
    Client of a remote custody signing service.

    Request (``POST {base_url}{sign_path}``)::

        {
            "request_id": "0x...",            # keccak of the canonical transaction + build id
            "sub_organization_id": "...",
            "wallet_address": "0x...",
            "unsigned_transaction": {...}     # canonical transaction fields
        }

    The authentication proof is sent in the ``X-Stamp`` header. The service
    answers ``{"signed_transaction": "0x..."}``.

    Status mapping:
        - 401 / 403 and other 4xx: SigningRejected
        - 429 / 5xx, timeouts, connection errors: SigningUnavailable

    Args:
        base_url: Custody service base URL
        client: Shared ``httpx.AsyncClient``; a short-lived client is used per call when omitted
        timeout: Request timeout in seconds
        sign_path: Signing endpoint path
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        sign_path: str = "/sign",
    ):
        super().__init__()
        if not base_url:
            raise ConfigurationError("Custody signer base_url is required")
        self.base_url = base_url.rstrip("/")
        self.sign_path = sign_path
        self.timeout = timeout
        self._client = client

    def _build_payload(self, unsigned: UnsignedTransaction, credentials: SignerCredentials) -> Dict[str, Any]:
        return {
            "request_id": unsigned.request_id,
            "sub_organization_id": credentials.sub_organization_id,
            "wallet_address": credentials.wallet_address,
            "unsigned_transaction": unsigned.model_dump(mode="json"),
        }

    async def _post(self, payload: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
        url = f"{self.base_url}{self.sign_path}"
        if self._client is not None:
            return await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=payload, headers=headers)

    async def _sign(self, unsigned: UnsignedTransaction, credentials: SignerCredentials) -> SignedTransaction:
        request_id = unsigned.request_id
        headers = {"X-Stamp": credentials.authentication_proof} if credentials.authentication_proof else {}

        try:
            response = await self._post(self._build_payload(unsigned, credentials), headers)
        except httpx.TransportError as exc:
            raise SigningUnavailable(
                f"Custody signer unreachable: {exc}", details={"request_id": request_id}
            ) from exc

        if response.status_code in (429,) or response.status_code >= 500:
            raise SigningUnavailable(
                f"Custody signer returned {response.status_code}",
                details={"request_id": request_id, "status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise SigningRejected(
                f"Custody signer refused request ({response.status_code}): {response.text}",
                details={"request_id": request_id, "status_code": response.status_code},
            )

        try:
            raw_hex = response.json()["signed_transaction"]
            raw = bytes.fromhex(raw_hex[2:] if raw_hex.startswith("0x") else raw_hex)
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise SigningFailure(
                f"Malformed custody signer response: {exc}", details={"request_id": request_id}
            ) from exc

        self._verify_signer(raw, credentials, request_id)
        signed = SignedTransaction.from_raw(raw, unsigned)
        logger.info("Custody signer signed request %s as %s", request_id, signed.tx_hash)
        return signed

    @staticmethod
    def _verify_signer(raw: bytes, credentials: SignerCredentials, request_id: str) -> None:
        try:
            recovered = Account.recover_transaction(raw)
        except (ValueError, TypeError) as exc:
            raise SigningFailure(
                f"Cannot decode signed transaction: {exc}", details={"request_id": request_id}
            ) from exc

        if recovered.lower() != credentials.wallet_address.lower():
            raise SigningRejected(
                f"Payload signed by {recovered}, expected {credentials.wallet_address}",
                details={"request_id": request_id},
            )
