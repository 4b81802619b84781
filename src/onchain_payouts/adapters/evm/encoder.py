"""
ERC-20 Transfer Encoder

Builds the calldata of ``transfer(address,uint256)`` for a payout and resolves
the token contract it is sent to. Pure: no network access.
"""

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, is_address, to_checksum_address, to_hex

from .ERC20_ABI import get_transfer_abi, abi_input_types, abi_signature
from .schemas import TransferCall
from ..registry import CurrencyRegistry
from ...engine.exceptions import InvalidAddress, InvalidAmount

UINT256_MAX = 2**256 - 1


class TransferEncoder:
    """
    Encoder for ERC-20 token transfers.

    Example:
        encoder = TransferEncoder(CurrencyRegistry())
        call = encoder.encode("0xB...", 1_000_000, "USDC", "eip155:1")
        call.data[:10]  # "0xa9059cbb"
    """

    def __init__(self, registry: CurrencyRegistry):
        self._registry = registry
        entry = get_transfer_abi()[0]
        self._selector = function_signature_to_4byte_selector(abi_signature(entry))
        self._input_types = abi_input_types(entry)

    @property
    def registry(self) -> CurrencyRegistry:
        return self._registry

    def encode(self, destination: str, amount: int, currency: str, network: str) -> TransferCall:
        """
        Encode a transfer call.

        Args:
            destination: Recipient address
            amount: Amount in the token's smallest unit
            currency: Currency code
            network: CAIP-2 network identifier

        Returns:
            TransferCall: Token contract and calldata

        Raises:
            UnsupportedNetwork: Network unknown to the registry.
            UnsupportedCurrency: Currency not configured for the network.
            InvalidAddress: Destination is not a 20-byte hex address.
            InvalidAmount: Amount is not an integer in (0, 2**256).
        """
        asset = self._registry.resolve(network, currency)

        if not isinstance(destination, str) or not is_address(destination):
            raise InvalidAddress(f"Invalid destination address: {destination!r}", details={"destination": destination})

        # bool is an int subclass
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount(f"Amount must be an integer, got {type(amount).__name__}")
        if amount <= 0 or amount > UINT256_MAX:
            raise InvalidAmount(f"Amount out of range: {amount}", details={"amount": amount})

        recipient = to_checksum_address(destination)
        data = self._selector + encode(self._input_types, [recipient, amount])

        return TransferCall(
            contract_address=asset.address,
            data=to_hex(data),
            destination=recipient,
            amount=amount,
            currency=asset.symbol,
        )
