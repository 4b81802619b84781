"""
EVM Adapter Schema Models

Pydantic models for the transaction lineage of a payout. All classes inherit
from ``CanonicalModel`` in ``schemas.bases``.

Construction:
    - TransferCall: Token contract + ERC-20 ``transfer`` calldata
    - FeeSpec: Legacy ``gasPrice`` or EIP-1559 fee caps
    - UnsignedTransaction: Canonical unsigned transaction with request identity

Signing:
    - SignerCredentials: Custody identity forwarded to the signing gateway
    - SignedTransaction: Immutable signed payload and its locally computed hash

Tracking:
    - NonceReservation: Claim on a nonce slot of an (account, network) pair
    - TransactionReceipt: Inclusion data returned by the network
    - SubmissionRecord: State machine record owned by the SubmissionTracker
"""

import uuid
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple

from eth_utils import keccak, to_hex
from pydantic import ConfigDict, Field, model_validator

from ...schemas.bases import CanonicalModel, PaymentIntent, SubmissionStatus


class TransferCall(CanonicalModel):
    """
    Encoded ERC-20 ``transfer`` call.

    Attributes:
        contract_address: Token contract to invoke (checksummed)
        data: ABI-encoded calldata (0x-prefixed hex)
        destination: Recipient encoded in the calldata (checksummed)
        amount: Amount encoded in the calldata (smallest unit)
        currency: Currency code the contract was resolved from
    """

    model_config = ConfigDict(frozen=True)

    contract_address: str = Field(..., description="Token contract address")
    data: str = Field(..., description="ABI-encoded calldata (0x-prefixed hex)")
    destination: str = Field(..., description="Transfer recipient")
    amount: int = Field(..., ge=0, description="Transfer amount in smallest units")
    currency: str = Field(..., description="Currency code")


class FeeSpec(CanonicalModel):
    """
    Fee parameters of a transaction.

    Either ``gas_price`` (legacy, type 0) or both EIP-1559 fields (type 2)
    are set, never a mix.

    Example:
        FeeSpec(gas_price=30 * 10**9)
        FeeSpec(max_fee_per_gas=62 * 10**9, max_priority_fee_per_gas=2 * 10**9)
    """

    model_config = ConfigDict(frozen=True)

    gas_price: Optional[int] = Field(None, ge=0, description="Legacy gas price (wei)")
    max_fee_per_gas: Optional[int] = Field(None, ge=0, description="EIP-1559 fee cap (wei)")
    max_priority_fee_per_gas: Optional[int] = Field(None, ge=0, description="EIP-1559 tip cap (wei)")

    @model_validator(mode="after")
    def _check_mode(self) -> "FeeSpec":
        dynamic = (self.max_fee_per_gas, self.max_priority_fee_per_gas)
        if self.gas_price is not None:
            if any(v is not None for v in dynamic):
                raise ValueError("FeeSpec cannot mix gas_price with EIP-1559 fields")
        elif any(v is None for v in dynamic):
            raise ValueError("FeeSpec needs gas_price or both max_fee_per_gas and max_priority_fee_per_gas")
        elif self.max_priority_fee_per_gas > self.max_fee_per_gas:
            raise ValueError("max_priority_fee_per_gas cannot exceed max_fee_per_gas")
        return self

    @property
    def is_dynamic(self) -> bool:
        return self.gas_price is None

    @property
    def fee_cap(self) -> int:
        """Highest price per gas the sender may pay."""
        return self.max_fee_per_gas if self.is_dynamic else self.gas_price

    def bumped_to_floor(self, previous: "FeeSpec") -> "FeeSpec":
        """
        Raise this fee to the replacement floor of ``previous``.

        Nodes only accept a same-nonce replacement that pays at least 10% more
        than the transaction it replaces; each field is lifted to
        ``previous + previous // 10 + 1`` when below it.
        """
        def floor(value: int) -> int:
            return value + value // 10 + 1

        if self.is_dynamic:
            prev_cap = previous.fee_cap
            prev_tip = previous.max_priority_fee_per_gas if previous.is_dynamic else previous.gas_price
            tip = max(self.max_priority_fee_per_gas, floor(prev_tip))
            cap = max(self.max_fee_per_gas, floor(prev_cap), tip)
            return FeeSpec(max_fee_per_gas=cap, max_priority_fee_per_gas=tip)

        return FeeSpec(gas_price=max(self.gas_price, floor(previous.fee_cap)))

    def to_tx_fields(self) -> Dict[str, int]:
        """Fee fields in the key format used by eth_account / web3."""
        if self.is_dynamic:
            return {
                "maxFeePerGas": self.max_fee_per_gas,
                "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            }
        return {"gasPrice": self.gas_price}


class FeeHistory(CanonicalModel):
    """
    Result of ``eth_feeHistory``.

    Attributes:
        oldest_block: First block of the sampled range
        base_fee_per_gas: Base fee per block; one extra trailing entry for the next block
        reward: Per block priority fees at the requested percentiles
    """

    oldest_block: int = 0
    base_fee_per_gas: List[int] = Field(default_factory=list)
    reward: List[List[int]] = Field(default_factory=list)

    @property
    def latest_base_fee(self) -> int:
        """Base fee of the most recent (pending) block."""
        return self.base_fee_per_gas[-1] if self.base_fee_per_gas else 0

    def rewards_at(self, index: int) -> List[int]:
        """Rewards of every sampled block at the ``index``-th requested percentile."""
        return [row[index] for row in self.reward if len(row) > index]


class UnsignedTransaction(CanonicalModel):
    """
    Canonical unsigned token-transfer transaction.

    Immutable. A fee or nonce change produces a new instance; signed payloads
    are never patched.

    ``serialize()`` covers only the transaction fields, so the same
    (destination, amount, currency, nonce, fee, gas) always gives the same
    bytes regardless of which intent produced them. ``request_id`` also mixes
    in ``build_id``, so every build is its own signing request even when a
    released nonce comes back with unchanged fees.

    Attributes:
        chain_id: EIP-155 chain id
        sender: Source wallet address (checksummed)
        to: Token contract address (checksummed)
        value: Native value, always 0 for token transfers
        data: Transfer calldata (0x-prefixed hex)
        nonce: Account nonce the transaction occupies
        gas: Gas limit
        fee: Fee parameters
        intent_id: Payment the transaction belongs to (not serialized)
        build_id: Random identifier of the build attempt (not serialized)
        currency: Currency code (not serialized)
    """

    model_config = ConfigDict(frozen=True)

    chain_id: int = Field(..., ge=1, description="EIP-155 chain id")
    sender: str = Field(..., description="Source wallet address")
    to: str = Field(..., description="Token contract address")
    value: int = Field(default=0, ge=0, le=0, description="Native value (always zero)")
    data: str = Field(..., description="Transfer calldata (0x-prefixed hex)")
    nonce: int = Field(..., ge=0, description="Account nonce")
    gas: int = Field(..., gt=0, description="Gas limit")
    fee: FeeSpec = Field(..., description="Fee parameters")
    intent_id: Optional[str] = Field(None, description="Owning payment identifier", exclude=True)
    currency: Optional[str] = Field(None, description="Currency code", exclude=True)
    build_id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Build attempt identifier", exclude=True)

    def serialize(self) -> bytes:
        """Canonical byte serialization (sorted compact JSON, UTF-8)."""
        return self.to_canonical_json().encode("utf-8")

    @property
    def request_id(self) -> str:
        """Signing request identity: keccak256 of the canonical bytes and the build id."""
        return to_hex(keccak(self.serialize() + self.build_id.encode("utf-8")))

    def to_tx_dict(self) -> Dict[str, Any]:
        """
        Transaction dictionary accepted by ``Account.sign_transaction``.

        Returns:
            Dict with chainId, to, value, data, nonce, gas and fee fields.
        """
        tx: Dict[str, Any] = {
            "chainId": self.chain_id,
            "to": self.to,
            "value": self.value,
            "data": self.data,
            "nonce": self.nonce,
            "gas": self.gas,
        }
        tx.update(self.fee.to_tx_fields())
        if self.fee.is_dynamic:
            tx["type"] = 2
        return tx


class SignerCredentials(CanonicalModel):
    """
    Identity the custody signer authenticates a request with.

    Attributes:
        sub_organization_id: Custody sub-organization owning the wallet
        wallet_address: Wallet expected to produce the signature
        authentication_proof: Opaque proof (API stamp, session token) for this request
    """

    model_config = ConfigDict(frozen=True)

    sub_organization_id: Optional[str] = Field(None, description="Custody sub-organization identifier")
    wallet_address: str = Field(..., description="Signing wallet address")
    authentication_proof: Optional[str] = Field(None, description="Opaque authentication proof", repr=False)


class SignedTransaction(CanonicalModel):
    """
    Broadcast-ready signed payload.

    Immutable. The hash is computed locally from the raw bytes so that a
    submission can be tracked even when the broadcast call itself fails
    ambiguously.

    Attributes:
        raw_transaction: Signed payload (0x-prefixed hex)
        tx_hash: keccak256 of the raw payload
        unsigned: Unsigned transaction the payload was derived from
    """

    model_config = ConfigDict(frozen=True)

    raw_transaction: str = Field(..., description="Signed payload (0x-prefixed hex)")
    tx_hash: str = Field(..., description="Transaction hash")
    unsigned: UnsignedTransaction = Field(..., description="Source unsigned transaction")

    @classmethod
    def from_raw(cls, raw: bytes, unsigned: UnsignedTransaction) -> "SignedTransaction":
        """Wrap raw signed bytes, deriving the transaction hash."""
        return cls(raw_transaction=to_hex(raw), tx_hash=to_hex(keccak(raw)), unsigned=unsigned)

    @property
    def raw_bytes(self) -> bytes:
        return bytes.fromhex(self.raw_transaction[2:])


class ReservationKind(str, Enum):
    """Whether a reservation claims a new slot or re-targets an in-flight one."""
    FRESH = "fresh"
    REPLACEMENT = "replacement"


class ReservationState(str, Enum):
    """Lifecycle of a nonce reservation."""
    RESERVED = "reserved"
    BROADCAST = "broadcast"
    RELEASED = "released"
    EXPIRED = "expired"


class NonceReservation(CanonicalModel):
    """
    Claim on the nonce slot of an (account, chain) pair.

    Attributes:
        address: Account address (lower-cased key form)
        chain_id: EIP-155 chain id
        nonce: Claimed nonce
        kind: FRESH for a new slot, REPLACEMENT for an in-flight slot
        state: Reservation lifecycle state
        lease_expires_at: Unix time after which an unbroadcast reservation lapses
    """

    address: str
    chain_id: int
    nonce: int = Field(..., ge=0)
    kind: ReservationKind = ReservationKind.FRESH
    state: ReservationState = ReservationState.RESERVED
    lease_expires_at: float = Field(..., description="Lease deadline (unix seconds)")

    @property
    def key(self) -> Tuple[str, int]:
        return (self.address, self.chain_id)


class TransactionReceipt(CanonicalModel):
    """
    Inclusion receipt of a transaction.

    Attributes:
        tx_hash: Transaction hash
        status: 1 for success, 0 for revert
        block_number: Including block
        gas_used: Gas consumed
        effective_gas_price: Price per gas actually paid (wei)
    """

    tx_hash: str
    status: int = Field(..., ge=0, le=1)
    block_number: int = Field(..., ge=0)
    gas_used: int = Field(..., ge=0)
    effective_gas_price: int = Field(default=0, ge=0)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @property
    def fee_paid(self) -> int:
        """Effective fee paid in wei (gas used x effective gas price)."""
        return self.gas_used * self.effective_gas_price


class SubmissionRecord(CanonicalModel):
    """
    Tracking record of one signed transaction.

    Mutated only by the SubmissionTracker. Terminal on CONFIRMED, FAILED or
    REPLACED.

    Attributes:
        request_id: Identity of the unsigned transaction
        tx_hash: Transaction hash once signed
        intent: Payment intent the transaction settles
        sender: Source wallet address
        chain_id: EIP-155 chain id
        nonce: Nonce slot occupied
        fee: Fee offered
        status: Current submission status
        submitted_at: Broadcast time (unix seconds)
        confirmed_at: Time the terminal receipt was observed (unix seconds)
        block_number: Including block
        fee_paid: Effective fee paid (wei), once known
        replaced_by: Hash of the transaction that took the nonce slot
        failure_reason: Why the submission failed
        history: (status, unix time) transitions in order
    """

    request_id: str
    tx_hash: Optional[str] = None
    intent: Optional[PaymentIntent] = None
    sender: str
    chain_id: int
    nonce: int = Field(..., ge=0)
    fee: FeeSpec
    status: SubmissionStatus = SubmissionStatus.BUILT
    submitted_at: Optional[float] = None
    confirmed_at: Optional[float] = None
    block_number: Optional[int] = None
    fee_paid: Optional[int] = None
    replaced_by: Optional[str] = None
    failure_reason: Optional[str] = None
    history: List[Tuple[SubmissionStatus, float]] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def slot(self) -> Tuple[str, int, int]:
        """(address, chain id, nonce) key shared by a replacement lineage."""
        return (self.sender.lower(), self.chain_id, self.nonce)
