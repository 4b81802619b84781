from .adapters_hub import AdapterHub
from .registry import CurrencyRegistry
from .bases import NetworkClient, SigningGateway
from .evm.adapter import EVMAdapter
from .evm import (
    FeeSpec,
    TransferCall,
    UnsignedTransaction,
    SignedTransaction,
    SignerCredentials,
    SubmissionRecord,
    TransactionReceipt,
    NonceReservation,
)

__all__ = [
    "AdapterHub",
    "CurrencyRegistry",
    "NetworkClient",
    "SigningGateway",
    "EVMAdapter",
    "FeeSpec",
    "TransferCall",
    "UnsignedTransaction",
    "SignedTransaction",
    "SignerCredentials",
    "SubmissionRecord",
    "TransactionReceipt",
    "NonceReservation",
]
