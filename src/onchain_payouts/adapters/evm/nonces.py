"""
Nonce Allocation

Hands out account nonces to concurrent payout builds without gaps or
duplicates.

Every (account, chain) pair is a keyed resource guarded by its own
``asyncio.Lock``; pairs never wait on each other. The lock covers the read of
the pending transaction count and the bookkeeping of the claim, and is
released before signing starts.

Slot lifecycle:
    free -> reserved -> in flight (broadcast) -> settled
              |
              +-> released / expired -> free (handed out again, lowest first)

A broadcast nonce never returns to the pool except when the network
definitively refused the payload without consuming the slot.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from .schemas import NonceReservation, ReservationKind, ReservationState
from ..bases import NetworkClient
from ...engine.exceptions import NonceConflict, ReservationError

logger = logging.getLogger(__name__)

NonceKey = Tuple[str, int]


@dataclass
class _SlotBook:
    """Allocation state of one (account, chain) pair."""
    high_water: Optional[int] = None
    released: Set[int] = field(default_factory=set)
    reserved: Dict[int, NonceReservation] = field(default_factory=dict)
    replacing: Dict[int, NonceReservation] = field(default_factory=dict)
    in_flight: Set[int] = field(default_factory=set)


class NonceAllocator:
    """
    Collision-free nonce allocator for shared custodial accounts.

    Attributes:
        lease_seconds: How long a reservation may stay unbroadcast

    Example:
        allocator = NonceAllocator(network, lease_seconds=120)
        reservation = await allocator.reserve(address, chain_id=1)
        try:
            ...  # sign
        except SigningFailure:
            allocator.release(reservation)
            raise
        allocator.mark_broadcast(reservation)
    """

    def __init__(
        self,
        network: NetworkClient,
        lease_seconds: float = 120.0,
        clock: Callable[[], float] = time.time,
    ):
        self._network = network
        self.lease_seconds = lease_seconds
        self._clock = clock
        self._locks: Dict[NonceKey, asyncio.Lock] = {}
        self._books: Dict[NonceKey, _SlotBook] = {}

    @staticmethod
    def key(account: str, chain_id: int) -> NonceKey:
        return (account.lower(), chain_id)

    def _lock(self, key: NonceKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _book(self, key: NonceKey) -> _SlotBook:
        book = self._books.get(key)
        if book is None:
            book = self._books[key] = _SlotBook()
        return book

    async def reserve(self, account: str, chain_id: int, nonce: Optional[int] = None) -> NonceReservation:
        """
        Claim a nonce for ``account`` on ``chain_id``.

        Without ``nonce`` the lowest free value is claimed: a previously
        released nonce if there is one, otherwise the next value above
        everything handed out so far, never below the network's pending
        transaction count.

        With ``nonce`` the call returns a replacement reservation for a slot
        that is currently in flight.

        Raises:
            NonceConflict: The value is already reserved or in flight.
            ReservationError: ``nonce`` was given but the slot is not in flight.
            BlockchainInteractionError: The pending count could not be read.
        """
        key = self.key(account, chain_id)
        async with self._lock(key):
            book = self._book(key)
            self._expire_book(key, book)

            if nonce is not None:
                return self._reserve_replacement(key, book, nonce)

            pending = await self._network.get_nonce_count(account, "pending")
            if book.high_water is None or pending > book.high_water:
                book.high_water = pending
            stale = {n for n in book.released if n < pending}
            if stale:
                book.released -= stale

            if book.released:
                value = min(book.released)
                book.released.discard(value)
            else:
                value = book.high_water
                book.high_water += 1

            if value in book.reserved or value in book.in_flight:
                raise NonceConflict(
                    f"Nonce {value} for {account} on chain {chain_id} is already allocated",
                    details={"account": account, "chain_id": chain_id, "nonce": value},
                )

            reservation = NonceReservation(
                address=key[0],
                chain_id=chain_id,
                nonce=value,
                kind=ReservationKind.FRESH,
                lease_expires_at=self._clock() + self.lease_seconds,
            )
            book.reserved[value] = reservation
            logger.info("Reserved nonce %d for %s on chain %d (pending count %d)", value, account, chain_id, pending)
            return reservation

    def _reserve_replacement(self, key: NonceKey, book: _SlotBook, nonce: int) -> NonceReservation:
        if nonce not in book.in_flight:
            raise ReservationError(
                f"Nonce {nonce} for {key[0]} on chain {key[1]} is not in flight and cannot be replaced",
                details={"account": key[0], "chain_id": key[1], "nonce": nonce},
            )
        if nonce in book.replacing:
            raise NonceConflict(
                f"A replacement for nonce {nonce} of {key[0]} on chain {key[1]} is already being built",
                details={"account": key[0], "chain_id": key[1], "nonce": nonce},
            )
        reservation = NonceReservation(
            address=key[0],
            chain_id=key[1],
            nonce=nonce,
            kind=ReservationKind.REPLACEMENT,
            lease_expires_at=self._clock() + self.lease_seconds,
        )
        book.replacing[nonce] = reservation
        logger.info("Reserved replacement of nonce %d for %s on chain %d", nonce, key[0], key[1])
        return reservation

    def release(self, reservation: NonceReservation) -> None:
        """
        Return an unbroadcast reservation.

        A fresh nonce goes back to the pool; a replacement reservation only
        drops the claim, the slot stays in flight. Releasing a reservation
        that already expired or was released is a no-op.

        Raises:
            ReservationError: The reservation was already broadcast.
        """
        if reservation.state == ReservationState.BROADCAST:
            raise ReservationError(
                f"Nonce {reservation.nonce} was broadcast and can no longer be released",
                details={"account": reservation.address, "chain_id": reservation.chain_id, "nonce": reservation.nonce},
            )
        if reservation.state != ReservationState.RESERVED:
            logger.debug("Reservation of nonce %d already %s", reservation.nonce, reservation.state.value)
            return

        self._drop_claim(self._book(reservation.key), reservation)
        reservation.state = ReservationState.RELEASED
        logger.info("Released nonce %d for %s on chain %d", reservation.nonce, reservation.address, reservation.chain_id)

    def mark_broadcast(self, reservation: NonceReservation) -> None:
        """
        Commit a reservation: its slot is now in flight.

        Must be called before the payload is handed to the network.

        Raises:
            ReservationError: The reservation is not held or its lease expired.
        """
        if reservation.state == ReservationState.RESERVED and self._clock() > reservation.lease_expires_at:
            self._expire(reservation)

        if reservation.state != ReservationState.RESERVED:
            raise ReservationError(
                f"Reservation of nonce {reservation.nonce} is {reservation.state.value} and cannot be broadcast",
                details={"account": reservation.address, "chain_id": reservation.chain_id, "nonce": reservation.nonce},
            )

        book = self._book(reservation.key)
        if reservation.kind == ReservationKind.FRESH:
            book.reserved.pop(reservation.nonce, None)
            book.in_flight.add(reservation.nonce)
        else:
            book.replacing.pop(reservation.nonce, None)
        reservation.state = ReservationState.BROADCAST

    def reject(self, reservation: NonceReservation) -> None:
        """
        Record a definitive broadcast rejection.

        A rejected fresh transaction frees its slot again. A rejected
        replacement leaves the original transaction in flight.
        """
        if reservation.kind == ReservationKind.REPLACEMENT:
            return

        book = self._book(reservation.key)
        book.in_flight.discard(reservation.nonce)
        book.released.add(reservation.nonce)
        logger.warning(
            "Broadcast of nonce %d for %s on chain %d rejected, slot returned to pool",
            reservation.nonce, reservation.address, reservation.chain_id,
        )

    def complete(self, account: str, chain_id: int, nonce: int) -> None:
        """Settle a slot: a transaction for it reached a terminal state on chain."""
        book = self._book(self.key(account, chain_id))
        book.in_flight.discard(nonce)
        book.replacing.pop(nonce, None)

    def is_in_flight(self, account: str, chain_id: int, nonce: int) -> bool:
        return nonce in self._book(self.key(account, chain_id)).in_flight

    def reap_expired(self) -> List[NonceReservation]:
        """
        Expire every unbroadcast reservation whose lease has passed.

        Returns:
            List[NonceReservation]: Reservations expired by this call
        """
        expired: List[NonceReservation] = []
        for key, book in self._books.items():
            expired.extend(self._expire_book(key, book))
        return expired

    def snapshot(self, account: str, chain_id: int) -> Dict[str, object]:
        """Diagnostic view of the allocation state of one pair."""
        book = self._book(self.key(account, chain_id))
        return {
            "high_water": book.high_water,
            "released": sorted(book.released),
            "reserved": sorted(book.reserved),
            "replacing": sorted(book.replacing),
            "in_flight": sorted(book.in_flight),
        }

    def _expire_book(self, key: NonceKey, book: _SlotBook) -> List[NonceReservation]:
        now = self._clock()
        lapsed = [r for r in list(book.reserved.values()) + list(book.replacing.values()) if now > r.lease_expires_at]
        for reservation in lapsed:
            self._expire(reservation)
        return lapsed

    def _expire(self, reservation: NonceReservation) -> None:
        self._drop_claim(self._book(reservation.key), reservation)
        reservation.state = ReservationState.EXPIRED
        logger.warning(
            "Lease of nonce %d for %s on chain %d expired before broadcast",
            reservation.nonce, reservation.address, reservation.chain_id,
        )

    @staticmethod
    def _drop_claim(book: _SlotBook, reservation: NonceReservation) -> None:
        if reservation.kind == ReservationKind.FRESH:
            book.reserved.pop(reservation.nonce, None)
            book.released.add(reservation.nonce)
        else:
            book.replacing.pop(reservation.nonce, None)
