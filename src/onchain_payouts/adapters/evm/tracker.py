"""
Submission Tracker

Broadcasts signed transactions and drives the submission state machine:

    BUILT -> SIGNED -> PENDING -> {CONFIRMED | FAILED | REPLACED}
                          |
                          +-> STUCK -> {CONFIRMED | FAILED | REPLACED}

BUILT and SIGNED may also move straight to FAILED when the build is
abandoned before broadcast (signing failure, expired lease, rejected
broadcast). Terminal records never change again.

Every transition is reported to the registered status listeners.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .nonces import NonceAllocator
from .schemas import NonceReservation, SignedTransaction, SubmissionRecord, TransactionReceipt, UnsignedTransaction
from ..bases import NetworkClient
from ...engine.exceptions import (
    DuplicateSigningRequest,
    InvalidTransition,
    ReservationError,
    SubmissionRejected,
    SubmissionUncertain,
    UnknownSubmission,
)
from ...schemas.bases import PaymentIntent, SubmissionStatus

logger = logging.getLogger(__name__)

StatusListener = Callable[[SubmissionRecord, Optional[SubmissionStatus]], Awaitable[None]]

_TRANSITIONS: Dict[SubmissionStatus, Tuple[SubmissionStatus, ...]] = {
    SubmissionStatus.BUILT: (SubmissionStatus.SIGNED, SubmissionStatus.FAILED),
    SubmissionStatus.SIGNED: (SubmissionStatus.PENDING, SubmissionStatus.FAILED),
    SubmissionStatus.PENDING: (
        SubmissionStatus.STUCK,
        SubmissionStatus.CONFIRMED,
        SubmissionStatus.FAILED,
        SubmissionStatus.REPLACED,
    ),
    SubmissionStatus.STUCK: (SubmissionStatus.CONFIRMED, SubmissionStatus.FAILED, SubmissionStatus.REPLACED),
    SubmissionStatus.CONFIRMED: (),
    SubmissionStatus.FAILED: (),
    SubmissionStatus.REPLACED: (),
}


class SubmissionTracker:
    """
    Owner of the submission records of one network.

    Args:
        network: Network client used for broadcast, receipts and nonce counts
        allocator: Nonce allocator whose slots the records occupy
        watch_window_seconds: Time without a receipt after which a record is STUCK
        poll_interval_seconds: Delay between polls in ``watch``
        clock: Time source (unix seconds)

    Example:
        tracker = SubmissionTracker(network, allocator)
        record = await tracker.submit(signed, reservation)
        record = await tracker.watch(record.tx_hash)
    """

    def __init__(
        self,
        network: NetworkClient,
        allocator: NonceAllocator,
        watch_window_seconds: float = 900.0,
        poll_interval_seconds: float = 6.0,
        clock: Callable[[], float] = time.time,
    ):
        self._network = network
        self._allocator = allocator
        self.watch_window_seconds = watch_window_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._clock = clock
        self._by_request: Dict[str, SubmissionRecord] = {}
        self._by_hash: Dict[str, SubmissionRecord] = {}
        self._reservations: Dict[str, NonceReservation] = {}
        self._slots: Dict[Tuple[str, int, int], List[str]] = {}
        self._listeners: List[StatusListener] = []

    def add_listener(self, listener: StatusListener) -> None:
        """Register an async callback invoked with (record, previous status) on every transition."""
        self._listeners.append(listener)

    # =========================================================================
    # Lookups
    # =========================================================================

    def get(self, tx_hash: str) -> Optional[SubmissionRecord]:
        return self._by_hash.get(tx_hash.lower())

    def require(self, tx_hash: str) -> SubmissionRecord:
        record = self.get(tx_hash)
        if record is None:
            raise UnknownSubmission(f"Transaction {tx_hash} is not tracked", details={"tx_hash": tx_hash})
        return record

    def get_by_request(self, request_id: str) -> Optional[SubmissionRecord]:
        return self._by_request.get(request_id)

    def siblings(self, record: SubmissionRecord) -> List[SubmissionRecord]:
        """Other tracked transactions for the same (account, chain, nonce) slot."""
        hashes = self._slots.get(record.slot, [])
        return [self._by_hash[h] for h in hashes if h != (record.tx_hash or "").lower()]

    # =========================================================================
    # Lifecycle before broadcast
    # =========================================================================

    async def open(self, unsigned: UnsignedTransaction, intent: Optional[PaymentIntent] = None) -> SubmissionRecord:
        """
        Create the BUILT record of an unsigned transaction.

        Raises:
            DuplicateSigningRequest: A record for this signing request already exists.
        """
        existing = self._by_request.get(unsigned.request_id)
        if existing is not None:
            raise DuplicateSigningRequest(
                f"Signing request {unsigned.request_id} is already tracked ({existing.status.value})",
                details={"request_id": unsigned.request_id, "nonce": unsigned.nonce},
            )
        record = SubmissionRecord(
            request_id=unsigned.request_id,
            intent=intent,
            sender=unsigned.sender,
            chain_id=unsigned.chain_id,
            nonce=unsigned.nonce,
            fee=unsigned.fee,
            status=SubmissionStatus.BUILT,
            history=[(SubmissionStatus.BUILT, self._clock())],
        )
        self._by_request[record.request_id] = record
        await self._notify(record, None)
        return record

    async def attach_signature(self, signed: SignedTransaction) -> SubmissionRecord:
        """Move the record of ``signed.unsigned`` to SIGNED and index it by hash."""
        record = self._record_for(signed.unsigned)
        record.tx_hash = signed.tx_hash.lower()
        self._by_hash[record.tx_hash] = record
        self._slots.setdefault(record.slot, []).append(record.tx_hash)
        await self._transition(record, SubmissionStatus.SIGNED)
        return record

    async def abandon(self, unsigned: UnsignedTransaction, reason: str) -> SubmissionRecord:
        """Fail an unbroadcast record (signing failure, expired lease)."""
        record = self._record_for(unsigned)
        await self._transition(record, SubmissionStatus.FAILED, failure_reason=reason)
        return record

    def _record_for(self, unsigned: UnsignedTransaction) -> SubmissionRecord:
        record = self._by_request.get(unsigned.request_id)
        if record is None:
            raise UnknownSubmission(
                f"No record for signing request {unsigned.request_id}",
                details={"request_id": unsigned.request_id},
            )
        return record

    # =========================================================================
    # Broadcast
    # =========================================================================

    async def submit(self, signed: SignedTransaction, reservation: NonceReservation) -> SubmissionRecord:
        """
        Broadcast a signed transaction and record it as PENDING.

        The nonce is committed as in flight before the payload is handed to
        the network. An ambiguous or unexpected broadcast error keeps the record
        PENDING under its locally computed hash; polling settles it later. A
        rejection that reports the nonce as used ("already known", "nonce too
        low") is settled against receipts and tracked siblings before anything
        is declared FAILED.

        Raises:
            ReservationError: The reservation lease expired (record FAILED).
            SubmissionRejected: The network refused the payload and no transaction
                of this slot succeeded (record FAILED).
        """
        record = self.get(signed.tx_hash) or await self.attach_signature(signed)
        if record.status != SubmissionStatus.SIGNED:
            raise InvalidTransition(
                f"Transaction {record.tx_hash} is {record.status.value} and cannot be broadcast again",
                details={
                    "tx_hash": record.tx_hash,
                    "current_state": record.status.value,
                    "requested_state": SubmissionStatus.PENDING.value,
                },
            )

        try:
            self._allocator.mark_broadcast(reservation)
        except ReservationError as exc:
            await self._transition(record, SubmissionStatus.FAILED, failure_reason=exc.message)
            raise
        self._reservations[record.tx_hash] = reservation

        try:
            node_hash = await self._network.submit(signed.raw_bytes)
        except SubmissionRejected as exc:
            if exc.nonce_consumed:
                return await self._settle_consumed_broadcast(record, exc)
            self._allocator.reject(reservation)
            await self._transition(record, SubmissionStatus.FAILED, failure_reason=exc.message)
            raise
        except SubmissionUncertain as exc:
            logger.warning("Broadcast of %s is ambiguous, tracking as pending: %s", record.tx_hash, exc.message)
            await self._transition(record, SubmissionStatus.PENDING, submitted_at=self._clock())
            return record
        except Exception:
            logger.warning("Broadcast of %s raised unexpectedly, tracking as pending", record.tx_hash, exc_info=True)
            await self._transition(record, SubmissionStatus.PENDING, submitted_at=self._clock())
            return record

        if node_hash.lower() != record.tx_hash:
            logger.warning("Node reported hash %s for locally computed %s", node_hash, record.tx_hash)
        await self._transition(record, SubmissionStatus.PENDING, submitted_at=self._clock())
        logger.info("Broadcast %s (nonce %d, chain %d)", record.tx_hash, record.nonce, record.chain_id)
        return record

    async def _settle_consumed_broadcast(self, record: SubmissionRecord, exc: SubmissionRejected) -> SubmissionRecord:
        # "already known" or "nonce too low": this payload or a sibling may already be in the pool or on chain.
        logger.warning("Broadcast of %s reports nonce %d as used, settling from chain state: %s",
                       record.tx_hash, record.nonce, exc.message)
        await self._transition(record, SubmissionStatus.PENDING, submitted_at=self._clock())
        await self.poll(record.tx_hash)
        if record.status == SubmissionStatus.FAILED:
            raise exc
        return record

    # =========================================================================
    # Confirmation
    # =========================================================================

    async def poll(self, tx_hash: str) -> SubmissionRecord:
        """
        Check a broadcast transaction once and advance its state.

        Order of checks:
            1. Own receipt: CONFIRMED (status 1) or FAILED (status 0)
            2. Confirmed nonce count past this nonce: REPLACED when a sibling
               succeeded, FAILED otherwise
            3. Watch window elapsed: STUCK

        Raises:
            UnknownSubmission: The hash is not tracked.
        """
        record = self.require(tx_hash)
        if not record.status.is_in_flight:
            return record

        receipt = await self._network.get_receipt(record.tx_hash)
        if receipt is not None:
            await self._settle(record, receipt)
            return record

        confirmed = await self._network.get_nonce_count(record.sender, "latest")
        if confirmed > record.nonce:
            await self._resolve_consumed_slot(record)
            return record

        if (
            record.status == SubmissionStatus.PENDING
            and record.submitted_at is not None
            and self._clock() - record.submitted_at >= self.watch_window_seconds
        ):
            logger.warning(
                "No receipt for %s after %.0fs, marking stuck", record.tx_hash, self._clock() - record.submitted_at
            )
            await self._transition(record, SubmissionStatus.STUCK)
        else:
            logger.debug("Transaction %s still %s", record.tx_hash, record.status.value)
        return record

    async def watch(self, tx_hash: str) -> SubmissionRecord:
        """Poll until the record is terminal or STUCK."""
        while True:
            record = await self.poll(tx_hash)
            if record.is_terminal or record.status == SubmissionStatus.STUCK:
                return record
            await self._sleep_async(self.poll_interval_seconds)

    @staticmethod
    async def _sleep_async(seconds: float):
        await asyncio.sleep(seconds)

    async def _resolve_consumed_slot(self, record: SubmissionRecord) -> None:
        # The receipt may have appeared between the two reads.
        receipt = await self._network.get_receipt(record.tx_hash)
        if receipt is not None:
            await self._settle(record, receipt)
            return

        for sibling in self.siblings(record):
            if sibling.status == SubmissionStatus.CONFIRMED:
                await self._transition(record, SubmissionStatus.REPLACED, replaced_by=sibling.tx_hash)
                return
            if sibling.status.is_in_flight:
                sibling_receipt = await self._network.get_receipt(sibling.tx_hash)
                if sibling_receipt is not None:
                    await self._settle(sibling, sibling_receipt)
                    if record.is_terminal:
                        return

        await self._transition(
            record,
            SubmissionStatus.FAILED,
            failure_reason=f"Nonce {record.nonce} was consumed by a transaction that is not tracked",
        )

    async def _settle(self, record: SubmissionRecord, receipt: TransactionReceipt) -> None:
        changes = {
            "block_number": receipt.block_number,
            "fee_paid": receipt.fee_paid,
            "confirmed_at": self._clock(),
        }
        if not receipt.succeeded:
            await self._transition(record, SubmissionStatus.FAILED, failure_reason="Transaction reverted on-chain", **changes)
            return

        await self._transition(record, SubmissionStatus.CONFIRMED, **changes)
        for sibling in self.siblings(record):
            if sibling.status.is_in_flight:
                await self._transition(sibling, SubmissionStatus.REPLACED, replaced_by=record.tx_hash)

    # =========================================================================
    # State machine
    # =========================================================================

    async def _transition(self, record: SubmissionRecord, status: SubmissionStatus, **changes) -> None:
        previous = record.status
        if status not in _TRANSITIONS[previous]:
            raise InvalidTransition(
                f"Cannot move {record.tx_hash or record.request_id} from {previous.value} to {status.value}",
                details={"tx_hash": record.tx_hash, "current_state": previous.value, "requested_state": status.value},
            )

        for name, value in changes.items():
            setattr(record, name, value)
        record.status = status
        record.history.append((status, self._clock()))

        if status.is_terminal and previous.is_in_flight:
            self._allocator.complete(record.sender, record.chain_id, record.nonce)
        if status.is_terminal:
            log = logger.info if status == SubmissionStatus.CONFIRMED else logger.warning
            log(
                "Transaction %s %s (nonce %d)%s",
                record.tx_hash, status.value, record.nonce,
                f": {record.failure_reason}" if record.failure_reason else "",
            )

        await self._notify(record, previous)

    async def _notify(self, record: SubmissionRecord, previous: Optional[SubmissionStatus]) -> None:
        snapshot = record.model_copy(deep=True)
        for listener in self._listeners:
            await listener(snapshot, previous)
