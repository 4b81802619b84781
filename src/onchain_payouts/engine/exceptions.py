"""
Exception and Error Definitions Module

Defines the exception hierarchy for transaction construction, signing,
submission and tracking. All exceptions inherit from PayoutError so callers
can handle the whole family at once, and each class carries a stable ``code``
used in PayoutResult and failure events.

Exception Hierarchy:
    PayoutError (root)
    ├── InputValidationError
    │   ├── UnsupportedCurrency
    │   ├── UnsupportedNetwork
    │   ├── InvalidAddress
    │   └── InvalidAmount
    ├── SimulationFailure
    │   └── GasSimulationFailed
    ├── FeeEstimationError
    │   └── FeeCapExceeded
    ├── NonceError
    │   ├── NonceConflict
    │   └── ReservationError
    ├── SigningFailure
    │   ├── SigningRejected
    │   ├── SigningUnavailable
    │   └── DuplicateSigningRequest
    ├── SubmissionFailure
    │   ├── SubmissionRejected
    │   └── SubmissionUncertain
    ├── BlockchainInteractionError
    ├── ConfigurationError
    ├── InvalidTransition
    └── UnknownSubmission
"""

from typing import Any, Dict, Optional


class PayoutError(Exception):
    """
    Root exception class for all project-specific exceptions.

    Attributes:
        code: Stable machine-readable error code
        details: Optional structured context (addresses, nonces, hashes)
    """
    code = "payout_error"

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InputValidationError(PayoutError):
    """
    Raised when a payment intent is rejected before any network call.

    Validation errors are reported directly to the caller and never reserve
    a nonce.
    """
    code = "input_validation"


class UnsupportedCurrency(InputValidationError):
    """
    Raised when the currency code has no contract configured for the network.

    Unknown codes (e.g. "DOGE") are a hard error, never mapped to a default.
    """
    code = "unsupported_currency"


class UnsupportedNetwork(InputValidationError):
    """Raised when no adapter or chain configuration exists for a network."""
    code = "unsupported_network"


class InvalidAddress(InputValidationError):
    """Raised when an address is not a 20-byte hex EVM address."""
    code = "invalid_address"


class InvalidAmount(InputValidationError):
    """Raised when the transfer amount is not a positive integer within uint256."""
    code = "invalid_amount"


class SimulationFailure(PayoutError):
    """
    Base exception for failed call simulations.

    A simulation failure usually means the transaction would fail on-chain
    too, so it is a build failure rather than a reason to use a default gas
    limit.
    """
    code = "simulation_failure"


class GasSimulationFailed(SimulationFailure):
    """
    Raised when ``eth_estimateGas`` reports that the transfer would revert.

    This includes scenarios such as:
    - Insufficient token balance in the source account
    - Paused or blacklisting token contract
    - Malformed transfer call
    """
    code = "gas_simulation_failed"


class FeeEstimationError(PayoutError):
    """Raised when fee signals cannot be turned into a fee specification."""
    code = "fee_estimation_failed"


class FeeCapExceeded(FeeEstimationError):
    """
    Raised when the fee required to land within the target window exceeds
    the configured cap.
    """
    code = "fee_cap_exceeded"


class NonceError(PayoutError):
    """Base exception for nonce allocation errors."""
    code = "nonce_error"


class NonceConflict(NonceError):
    """
    Raised when the allocator observes two builds holding the same nonce.

    Allocation is serialized per (account, network) so this cannot happen by
    construction; if it is ever observed the build fails instead of picking
    another value.
    """
    code = "nonce_conflict"


class ReservationError(NonceError):
    """
    Raised on an illegal reservation operation.

    This includes scenarios such as:
    - Releasing a nonce after its transaction was broadcast
    - Broadcasting with a reservation whose lease already expired
    - Requesting a replacement for a nonce that is not in flight
    """
    code = "reservation_error"


class SigningFailure(PayoutError):
    """
    Base exception for custody signer failures.

    Signing is never retried automatically: a new signature implies a new
    transaction identity and therefore a fresh build.
    """
    code = "signing_failure"


class SigningRejected(SigningFailure):
    """Raised when the custody signer refuses the request (authentication or policy)."""
    code = "signing_rejected"


class SigningUnavailable(SigningFailure):
    """Raised when the custody signer is unreachable, slow or returns a transient error."""
    code = "signing_unavailable"


class DuplicateSigningRequest(SigningFailure):
    """Raised when the same unsigned transaction is sent to the signer twice."""
    code = "duplicate_signing_request"


class SubmissionFailure(PayoutError):
    """
    Base exception for broadcast failures.

    Retryable only through a fresh build cycle.
    """
    code = "submission_failure"


class SubmissionRejected(SubmissionFailure):
    """
    Raised when the network definitively refuses the signed payload.

    This includes scenarios such as:
    - Nonce too low (slot already consumed)
    - Replacement transaction underpriced
    - Insufficient native balance for fees
    """
    code = "submission_rejected"

    @property
    def nonce_consumed(self) -> bool:
        """True when the rejection says the nonce slot is already used."""
        reason = self.message.lower()
        return "nonce too low" in reason or "already known" in reason


class SubmissionUncertain(SubmissionFailure):
    """
    Raised when the broadcast outcome is unknown (timeout, dropped connection).

    The payload may have reached the mempool, so the nonce must be treated as
    in flight.
    """
    code = "submission_uncertain"


class BlockchainInteractionError(PayoutError):
    """
    Raised when a read-only RPC call fails.

    Attributes (in ``details``):
        rpc_method: RPC method that was called (e.g. 'eth_feeHistory')
    """
    code = "blockchain_error"


class ConfigurationError(PayoutError):
    """
    Raised when configuration is missing or invalid.

    This includes scenarios such as:
    - Unknown fee strategy name
    - Missing RPC URL for a configured network
    - Malformed chain table entry
    """
    code = "configuration_error"


class InvalidTransition(PayoutError):
    """
    Raised when the submission state machine receives a transition that is
    not valid for the record's current state.

    Attributes (in ``details``):
        tx_hash: Transaction whose record was being updated
        current_state: Current submission status
        requested_state: Status the caller tried to move to
    """
    code = "invalid_transition"


class UnknownSubmission(PayoutError):
    """Raised when a transaction hash is not tracked by any submission tracker."""
    code = "unknown_submission"
