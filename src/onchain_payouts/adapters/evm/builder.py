"""
Transaction Builder

Composes calldata, fees, gas limit and nonce into a canonical unsigned
transaction.
"""

import logging
from typing import Optional, Tuple

from eth_utils import is_address, to_checksum_address

from .encoder import TransferEncoder
from .fees import FeeEstimator
from .nonces import NonceAllocator
from .schemas import FeeSpec, NonceReservation, TransferCall, UnsignedTransaction
from ...engine.exceptions import InvalidAddress
from ...schemas.bases import PaymentIntent

logger = logging.getLogger(__name__)


class TransactionBuilder:
    """
    Builder of unsigned token-transfer transactions.

    Steps run in a fixed order: encode (pure validation) -> fee and gas
    estimate -> nonce reservation -> compose. An intent rejected by
    validation or simulation therefore never holds a nonce.

    Example:
        builder = TransactionBuilder(encoder, estimator, allocator)
        unsigned, reservation = await builder.build(intent)
    """

    def __init__(self, encoder: TransferEncoder, estimator: FeeEstimator, allocator: NonceAllocator):
        self.encoder = encoder
        self.estimator = estimator
        self.allocator = allocator

    async def build(
        self,
        intent: PaymentIntent,
        reservation: Optional[NonceReservation] = None,
        replaces_fee: Optional[FeeSpec] = None,
    ) -> Tuple[UnsignedTransaction, NonceReservation]:
        """
        Build the unsigned transaction of an intent.

        Args:
            intent: Payment intent
            reservation: Replacement reservation of an in-flight slot; when
                omitted a fresh nonce is reserved
            replaces_fee: Fee of the transaction being replaced; the new fee
                is raised to its replacement floor

        Returns:
            Tuple of the unsigned transaction and the reservation it occupies

        Raises:
            InputValidationError: Unsupported currency or network, invalid
                address or amount.
            GasSimulationFailed: The transfer would revert.
            FeeEstimationError: Fee signals could not be used.
        """
        sender = self._sender(intent)
        call = self.encoder.encode(intent.destination, intent.amount, intent.currency, intent.network)

        fee, gas_limit = await self.estimator.estimate(call, sender)
        if replaces_fee is not None:
            fee = fee.bumped_to_floor(replaces_fee)

        if reservation is None:
            reservation = await self.allocator.reserve(sender, intent.chain_id)

        unsigned = self.compose(
            chain_id=intent.chain_id,
            sender=sender,
            call=call,
            nonce=reservation.nonce,
            fee=fee,
            gas_limit=gas_limit,
            intent_id=intent.intent_id,
        )
        logger.info(
            "Built transfer of %d %s for intent %s with nonce %d",
            intent.amount, call.currency, intent.intent_id, unsigned.nonce,
        )
        return unsigned, reservation

    @staticmethod
    def compose(
        chain_id: int,
        sender: str,
        call: TransferCall,
        nonce: int,
        fee: FeeSpec,
        gas_limit: int,
        intent_id: Optional[str] = None,
    ) -> UnsignedTransaction:
        """Assemble an unsigned transaction from already computed parts."""
        return UnsignedTransaction(
            chain_id=chain_id,
            sender=sender,
            to=call.contract_address,
            value=0,
            data=call.data,
            nonce=nonce,
            gas=gas_limit,
            fee=fee,
            intent_id=intent_id,
            currency=call.currency,
        )

    @staticmethod
    def _sender(intent: PaymentIntent) -> str:
        address = intent.source.address
        if not is_address(address):
            raise InvalidAddress(f"Invalid source address: {address!r}", details={"source": address})
        return to_checksum_address(address)
