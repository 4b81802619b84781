"""
Base Schema Models for the Payout Core

This module defines the fundamental models shared by every layer of the
payout pipeline: the payment intent handed in by the orchestration layer, the
source account it debits, the submission status vocabulary and the result
returned to the caller.

Core Classes:
    - CanonicalModel: Pydantic base model with deterministic JSON serialization
    - Currency: Known stablecoin codes (the registry decides what is supported)
    - Account: Custodial wallet shared by the payments of a workspace
    - PaymentIntent: Immutable request to move tokens from an account
    - SubmissionStatus: States of the submission state machine
    - PayoutResult: Outcome of ``build_and_submit`` (hash or error)

Dependencies:
    - pydantic: For data validation and serialization
"""

import json
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CanonicalModel(BaseModel):
    """
    Pydantic base model with canonical JSON serialization.

    The JSON representation is deterministic (sorted keys, no whitespace), so
    two models holding equal data always serialize to byte-identical output.
    Unsigned transactions rely on this for their signing request identity.

    Example:
        class MyModel(CanonicalModel):
            name: str
            value: int

        model = MyModel(name="test", value=123)
        model.to_canonical_json()  # '{"name":"test","value":123}'
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_canonical_json(self) -> str:
        """
        Convert model to a canonical JSON string.

        ``model_dump(mode="json")`` converts enums and nested models to plain
        types; ``json.dumps`` with sorted keys and compact separators makes
        the output stable.

        Returns:
            str: JSON string with sorted keys and no extra whitespace.
        """
        data = self.model_dump(mode="json")
        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model to dictionary representation.

        Returns:
            Dict[str, Any]: Dictionary with all model fields.
        """
        return self.model_dump()


class Currency(str, Enum):
    """
    Stablecoin codes known to the built-in chain table.

    The enumeration is informational: support is decided per network by the
    ``CurrencyRegistry``, which accepts additional codes registered at runtime.
    """
    USDC = "USDC"
    USDT = "USDT"


class Account(CanonicalModel):
    """
    Custodial wallet used as the source of payouts.

    Many payments may share one account, which is why nonce allocation is
    serialized per (account, network).

    Attributes:
        address: Wallet address (0x-prefixed, 42 chars)
        workspace_id: Tenant that owns the wallet
        sub_organization_id: Custody-side identifier of the wallet's owner,
            forwarded to the signing gateway
    """

    model_config = ConfigDict(frozen=True)

    address: str = Field(..., description="Wallet address (0x-prefixed)")
    workspace_id: str = Field(..., description="Owning workspace (tenant) identifier")
    sub_organization_id: Optional[str] = Field(None, description="Custody sub-organization identifier")


class PaymentIntent(CanonicalModel):
    """
    Internal request to transfer tokens from a custodial account.

    Intents are frozen: once transaction construction starts, nothing about
    the payment may change. A fee or nonce change produces a new unsigned
    transaction, never a modified intent.

    Attributes:
        intent_id: Identifier of the payment in the orchestration layer
        source: Account debited by the transfer
        destination: Recipient address
        amount: Amount in the token's smallest unit (e.g. 1_000_000 = 1 USDC)
        currency: Currency code (upper-cased on validation)
        network: CAIP-2 network identifier (e.g. "eip155:1")

    Example:
        intent = PaymentIntent(
            intent_id="pay_123",
            source=Account(address="0xA...", workspace_id="ws_1"),
            destination="0xB...",
            amount=1_000_000,
            currency="USDC",
            network="eip155:11155111",
        )
    """

    model_config = ConfigDict(frozen=True)

    intent_id: str = Field(..., description="Payment identifier in the orchestration layer")
    source: Account = Field(..., description="Source account")
    destination: str = Field(..., description="Recipient address")
    amount: int = Field(..., description="Amount in the token's smallest unit")
    currency: str = Field(..., description="Currency code (e.g. USDC)")
    network: str = Field(..., description='CAIP-2 network identifier (e.g. "eip155:1")')

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def chain_id(self) -> int:
        """Numeric EIP-155 chain id parsed from ``network``."""
        return int(self.network.split(":")[-1])


class SubmissionStatus(str, Enum):
    """
    States of the submission state machine.

    Attributes:
        BUILT: Unsigned transaction composed, nonce reserved
        SIGNED: Custody signer returned a signed payload
        PENDING: Payload broadcast, waiting for a receipt
        STUCK: Broadcast but no receipt within the watch window (not terminal)
        CONFIRMED: Success receipt observed
        FAILED: Reverted, rejected, or nonce consumed by an unknown transaction
        REPLACED: A different transaction for the same nonce confirmed instead
    """
    BUILT = "built"
    SIGNED = "signed"
    PENDING = "pending"
    STUCK = "stuck"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    REPLACED = "replaced"

    @property
    def is_terminal(self) -> bool:
        return self in (SubmissionStatus.CONFIRMED, SubmissionStatus.FAILED, SubmissionStatus.REPLACED)

    @property
    def is_in_flight(self) -> bool:
        return self in (SubmissionStatus.PENDING, SubmissionStatus.STUCK)


class PayoutResult(CanonicalModel):
    """
    Outcome of ``PayoutServer.build_and_submit``.

    Exactly one of ``tx_hash`` / ``error_code`` is set. A successful result
    only means the transaction was broadcast; inclusion is reported later
    through the tracker.

    Attributes:
        intent_id: Payment the result belongs to
        tx_hash: Transaction hash when the payload was broadcast
        nonce: Nonce the transaction occupies
        status: Submission status at the time the result was produced
        error_code: Stable error code (see ``engine.exceptions``)
        error_message: Human-readable error description
        stage: Pipeline stage that failed ("build", "sign", "broadcast")
    """

    intent_id: str = Field(..., description="Payment identifier")
    tx_hash: Optional[str] = Field(None, description="Broadcast transaction hash")
    nonce: Optional[int] = Field(None, ge=0, description="Nonce occupied by the transaction")
    status: Optional[SubmissionStatus] = Field(None, description="Submission status")
    error_code: Optional[str] = Field(None, description="Stable error code")
    error_message: Optional[str] = Field(None, description="Error description")
    stage: Optional[str] = Field(None, description="Failed pipeline stage")
    created_at: datetime = Field(default_factory=datetime.now, description="Result timestamp")

    def is_success(self) -> bool:
        """
        Check whether the payout reached the network.

        Returns:
            bool: True if a transaction hash was produced without error.
        """
        return self.tx_hash is not None and self.error_code is None

    def get_error_message(self) -> Optional[str]:
        """
        Get a formatted error message, or None for successful results.

        Example:
            result = await server.build_and_submit(intent)
            if not result.is_success():
                print(result.get_error_message())
        """
        if self.is_success():
            return None
        return f"Payout failed during {self.stage or 'unknown'} stage [{self.error_code}]: {self.error_message}"
