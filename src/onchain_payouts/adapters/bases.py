"""
Abstract Base Classes for the Payout Collaborators

Defines the contracts the payout core needs from its external collaborators.
The core never talks to an RPC provider or a custody service directly; it
goes through these interfaces, which keeps every component testable with
deterministic doubles.

Core Classes:
    - NetworkClient: Chain reads (nonce count, fee signals, gas simulation,
      receipts) and broadcast of signed payloads
    - SigningGateway: Custody signer that turns an unsigned transaction into a
      broadcast-ready payload, at most once per transaction

Concrete implementations live next to their chain family, e.g.
``adapters.evm.network.Web3NetworkClient`` and
``adapters.evm.signatures.HttpCustodySigner``.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Set

from ..engine.exceptions import DuplicateSigningRequest
from .evm.schemas import (
    FeeHistory,
    SignedTransaction,
    SignerCredentials,
    TransactionReceipt,
    TransferCall,
    UnsignedTransaction,
)


class NetworkClient(ABC):
    """
    Abstract Base Class for chain access.

    One instance serves one network. Read methods raise
    ``BlockchainInteractionError`` on transport failures; ``simulate_gas``
    raises ``GasSimulationFailed`` when the call would revert; ``submit``
    raises ``SubmissionRejected`` or ``SubmissionUncertain``.

    Example Implementation:
        class Web3NetworkClient(NetworkClient):
            async def get_nonce_count(self, address, block="pending"):
                return await self._web3.eth.get_transaction_count(address, block)
    """

    @abstractmethod
    async def get_chain_id(self) -> int:
        """Chain id of the network this client is bound to."""
        pass

    @abstractmethod
    async def get_nonce_count(self, address: str, block: str = "pending") -> int:
        """
        Transaction count of an address.

        Args:
            address: Account address
            block: "pending" for the included-or-pending count, "latest" for
                the confirmed count

        Returns:
            int: Number of transactions sent by the address at ``block``
        """
        pass

    @abstractmethod
    async def get_fee_sample(self) -> int:
        """One instantaneous ``eth_gasPrice`` sample (wei)."""
        pass

    @abstractmethod
    async def get_fee_history(self, block_count: int, percentiles: List[float]) -> FeeHistory:
        """
        Base fees and priority fee percentiles of recent blocks.

        Args:
            block_count: Number of most recent blocks to sample
            percentiles: Reward percentiles to report per block (0-100)
        """
        pass

    @abstractmethod
    async def simulate_gas(self, call: TransferCall, sender: str) -> int:
        """
        Execute the call against current state and return the gas it uses.

        Raises:
            GasSimulationFailed: If the call would revert.
        """
        pass

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        """Receipt of a transaction, or None while it is not included."""
        pass

    @abstractmethod
    async def submit(self, raw_transaction: bytes) -> str:
        """
        Broadcast a signed payload.

        Returns:
            str: Transaction hash reported by the node

        Raises:
            SubmissionRejected: The node refused the payload.
            SubmissionUncertain: The outcome is unknown (timeout, dropped connection).
        """
        pass


class SigningGateway(ABC):
    """
    Abstract Base Class for custody signers.

    ``sign`` is the public entry point and guarantees that each unsigned
    transaction is sent to the signer at most once, keyed by its
    ``request_id``. The guard is claimed before the call, so a failed
    request is not retried either: a new signature needs a new build.

    Subclasses implement ``_sign`` only.

    Example:
        signer = HttpCustodySigner(base_url="https://custody.internal")
        signed = await signer.sign(unsigned, credentials)
        await signer.sign(unsigned, credentials)  # DuplicateSigningRequest
    """

    def __init__(self) -> None:
        self._requested: Set[str] = set()

    async def sign(self, unsigned: UnsignedTransaction, credentials: SignerCredentials) -> SignedTransaction:
        """
        Sign an unsigned transaction.

        Args:
            unsigned: Canonical unsigned transaction
            credentials: Custody identity and authentication proof

        Returns:
            SignedTransaction: Broadcast-ready payload with its local hash

        Raises:
            DuplicateSigningRequest: The transaction was already sent for signing.
            SigningRejected: The signer refused the request.
            SigningUnavailable: The signer could not be reached.
        """
        request_id = unsigned.request_id
        if request_id in self._requested:
            raise DuplicateSigningRequest(
                f"Signing request {request_id} was already submitted",
                details={"request_id": request_id, "nonce": unsigned.nonce},
            )
        self._requested.add(request_id)
        return await self._sign(unsigned, credentials)

    def was_requested(self, request_id: str) -> bool:
        """Whether a signing request with this id has been made."""
        return request_id in self._requested

    @abstractmethod
    async def _sign(self, unsigned: UnsignedTransaction, credentials: SignerCredentials) -> SignedTransaction:
        """Perform the signing call. Called at most once per request id."""
        pass
