"""
Web3 Network Client

``NetworkClient`` implementation on top of ``AsyncWeb3``. Translates web3
results into the payout schemas and web3 / transport exceptions into the
payout exception tree.

Dependencies:
    - web3.py: For blockchain RPC interaction
"""

import asyncio
import logging
from typing import Any, Awaitable, List, Optional

from eth_utils import to_checksum_address, to_hex
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception, Web3RPCError

from .constants import get_rpc_url, parse_caip2_chain_id
from .schemas import FeeHistory, TransactionReceipt, TransferCall
from ..bases import NetworkClient
from ...engine.exceptions import (
    BlockchainInteractionError,
    GasSimulationFailed,
    SubmissionRejected,
    SubmissionUncertain,
)

logger = logging.getLogger(__name__)

_SIMULATION_FAILURE_MARKERS = ("revert", "insufficient funds", "exceeds balance")


class Web3NetworkClient(NetworkClient):
    """
    AsyncWeb3-backed network client for one EVM network.

    The RPC endpoint is resolved from the chain table (premium endpoint when
    ``EVM_RPC_KEY`` is set, public endpoint otherwise) unless ``rpc_url`` is
    given.

    Args:
        network: CAIP-2 identifier (e.g. "eip155:11155111")
        rpc_url: Explicit JSON-RPC endpoint
        request_timeout: HTTP timeout in seconds
        web3: Pre-built AsyncWeb3 instance (tests, custom providers)

    Example:
        client = Web3NetworkClient("eip155:11155111")
        count = await client.get_nonce_count("0xA...", "pending")
    """

    def __init__(
        self,
        network: str,
        rpc_url: Optional[str] = None,
        request_timeout: int = 60,
        web3: Optional[AsyncWeb3] = None,
    ):
        self.network = network
        self.chain_id = parse_caip2_chain_id(network)
        if web3 is None:
            endpoint = rpc_url or get_rpc_url(network)
            web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(endpoint, request_kwargs={"timeout": request_timeout}))
        self._web3 = web3

    async def _read(self, rpc_method: str, call: Awaitable[Any]) -> Any:
        try:
            return await call
        except (Web3Exception, ValueError, OSError, asyncio.TimeoutError) as exc:
            raise BlockchainInteractionError(
                f"{rpc_method} failed on {self.network}: {exc}",
                details={"rpc_method": rpc_method, "network": self.network},
            ) from exc

    async def get_chain_id(self) -> int:
        return await self._read("eth_chainId", self._web3.eth.chain_id)

    async def get_nonce_count(self, address: str, block: str = "pending") -> int:
        return await self._read(
            "eth_getTransactionCount",
            self._web3.eth.get_transaction_count(to_checksum_address(address), block),
        )

    async def get_fee_sample(self) -> int:
        return await self._read("eth_gasPrice", self._web3.eth.gas_price)

    async def get_fee_history(self, block_count: int, percentiles: List[float]) -> FeeHistory:
        raw = await self._read(
            "eth_feeHistory",
            self._web3.eth.fee_history(block_count, "pending", percentiles),
        )
        return FeeHistory(
            oldest_block=int(raw.get("oldestBlock", 0)),
            base_fee_per_gas=[int(v) for v in raw.get("baseFeePerGas", [])],
            reward=[[int(v) for v in row] for row in raw.get("reward", []) or []],
        )

    async def simulate_gas(self, call: TransferCall, sender: str) -> int:
        """
        Run ``eth_estimateGas`` for the transfer.

        Raises:
            GasSimulationFailed: The call reverts (balance, paused token, ...).
            BlockchainInteractionError: The RPC call itself failed.
        """
        tx = {
            "from": to_checksum_address(sender),
            "to": call.contract_address,
            "data": call.data,
            "value": 0,
        }
        try:
            return await self._web3.eth.estimate_gas(tx)
        except ContractLogicError as exc:
            raise GasSimulationFailed(
                f"Transfer would revert: {exc}",
                details={"sender": sender, "contract": call.contract_address},
            ) from exc
        except (Web3RPCError, ValueError) as exc:
            if any(marker in str(exc).lower() for marker in _SIMULATION_FAILURE_MARKERS):
                raise GasSimulationFailed(
                    f"Transfer would revert: {exc}",
                    details={"sender": sender, "contract": call.contract_address},
                ) from exc
            raise BlockchainInteractionError(
                f"eth_estimateGas failed on {self.network}: {exc}",
                details={"rpc_method": "eth_estimateGas", "network": self.network},
            ) from exc
        except (Web3Exception, OSError, asyncio.TimeoutError) as exc:
            raise BlockchainInteractionError(
                f"eth_estimateGas failed on {self.network}: {exc}",
                details={"rpc_method": "eth_estimateGas", "network": self.network},
            ) from exc

    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        try:
            receipt = await self._web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except (Web3Exception, ValueError, OSError, asyncio.TimeoutError) as exc:
            raise BlockchainInteractionError(
                f"eth_getTransactionReceipt failed on {self.network}: {exc}",
                details={"rpc_method": "eth_getTransactionReceipt", "network": self.network},
            ) from exc

        if not receipt:
            return None
        return TransactionReceipt(
            tx_hash=tx_hash,
            status=int(receipt.get("status", 1)),
            block_number=int(receipt["blockNumber"]),
            gas_used=int(receipt["gasUsed"]),
            effective_gas_price=int(receipt.get("effectiveGasPrice", 0) or 0),
        )

    async def submit(self, raw_transaction: bytes) -> str:
        """
        Broadcast with ``eth_sendRawTransaction``.

        Node errors (nonce too low, underpriced, insufficient funds) are
        definitive; transport errors leave the outcome unknown.
        """
        try:
            tx_hash = await self._web3.eth.send_raw_transaction(raw_transaction)
        except (Web3RPCError, ValueError) as exc:
            raise SubmissionRejected(str(exc), details={"network": self.network}) from exc
        except (Web3Exception, OSError, asyncio.TimeoutError) as exc:
            raise SubmissionUncertain(
                f"Broadcast outcome unknown: {exc}", details={"network": self.network}
            ) from exc
        return to_hex(tx_hash)
