from .schemas import (
    TransferCall,
    FeeSpec,
    FeeHistory,
    UnsignedTransaction,
    SignerCredentials,
    SignedTransaction,
    ReservationKind,
    ReservationState,
    NonceReservation,
    TransactionReceipt,
    SubmissionRecord,
)
from .constants import (
    EvmAssetConfig,
    EvmChainConfig,
    PayoutSettings,
    get_chain_config,
    get_rpc_url,
    list_chain_configs,
    parse_caip2_chain_id,
)

__all__ = [
    "TransferCall",
    "FeeSpec",
    "FeeHistory",
    "UnsignedTransaction",
    "SignerCredentials",
    "SignedTransaction",
    "ReservationKind",
    "ReservationState",
    "NonceReservation",
    "TransactionReceipt",
    "SubmissionRecord",
    "EvmAssetConfig",
    "EvmChainConfig",
    "PayoutSettings",
    "get_chain_config",
    "get_rpc_url",
    "list_chain_configs",
    "parse_caip2_chain_id",
]
