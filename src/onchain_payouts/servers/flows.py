"""
Built-in event handlers for the payout workflow.

Implements the core flow: build -> sign -> broadcast. Every handler turns a
``PayoutError`` into a ``PayoutFailedEvent`` and gives back an unbroadcast
nonce before doing so, so a failed payout never leaves a hole in the
account's nonce sequence.
"""

import asyncio
import logging

from ..engine.events import (
    EventBus,
    Dependencies,
    PayoutRequestedEvent,
    TransactionBuiltEvent,
    TransactionSignedEvent,
    TransactionBroadcastEvent,
    PayoutFailedEvent,
)
from ..engine.exceptions import PayoutError, SigningUnavailable

logger = logging.getLogger(__name__)

STAGE_BUILD = "build"
STAGE_SIGN = "sign"
STAGE_BROADCAST = "broadcast"


def _failed(intent_id: str, stage: str, error: PayoutError, **extra) -> PayoutFailedEvent:
    logger.warning("Payout %s failed during %s [%s]: %s", intent_id, stage, error.code, error.message)
    return PayoutFailedEvent(
        intent_id=intent_id,
        stage=stage,
        error_code=error.code,
        error_message=error.message or str(error),
        **extra,
    )


# ==================== Event Handlers ====================

async def handle_payout_requested(
    event: PayoutRequestedEvent,
    deps: Dependencies
) -> TransactionBuiltEvent | PayoutFailedEvent:
    """Build the unsigned transaction (or its replacement) and open its record."""
    intent = event.intent
    reservation = None
    try:
        adapter = deps.adapters_hub.get_adapter(intent.network)

        if event.replaces:
            original = adapter.tracker.require(event.replaces)
            reservation = await adapter.allocator.reserve(original.sender, original.chain_id, nonce=original.nonce)
            unsigned, reservation = await adapter.builder.build(
                intent, reservation=reservation, replaces_fee=original.fee
            )
        else:
            unsigned, reservation = await adapter.builder.build(intent)

        await adapter.tracker.open(unsigned, intent)
        return TransactionBuiltEvent(
            intent=intent,
            unsigned=unsigned,
            reservation=reservation,
            credentials=event.credentials,
        )

    except PayoutError as e:
        if reservation is not None:
            adapter.allocator.release(reservation)
        return _failed(intent.intent_id, STAGE_BUILD, e)


async def handle_transaction_built(
    event: TransactionBuiltEvent,
    deps: Dependencies
) -> TransactionSignedEvent | PayoutFailedEvent:
    """Sign within the reservation lease; release the nonce on any failure."""
    adapter = deps.adapters_hub.get_adapter(event.intent.network)
    unsigned = event.unsigned
    try:
        try:
            signed = await asyncio.wait_for(
                deps.signer.sign(unsigned, event.credentials),
                timeout=adapter.lease_remaining(event.reservation),
            )
        except asyncio.TimeoutError as exc:
            raise SigningUnavailable(
                f"Signer did not answer within the reservation lease of nonce {unsigned.nonce}",
                details={"request_id": unsigned.request_id},
            ) from exc

        await adapter.tracker.attach_signature(signed)
        return TransactionSignedEvent(intent=event.intent, signed=signed, reservation=event.reservation)

    except PayoutError as e:
        adapter.allocator.release(event.reservation)
        await adapter.tracker.abandon(unsigned, f"[{e.code}] {e.message}")
        return _failed(event.intent.intent_id, STAGE_SIGN, e, nonce=unsigned.nonce)


async def handle_transaction_signed(
    event: TransactionSignedEvent,
    deps: Dependencies
) -> TransactionBroadcastEvent | PayoutFailedEvent:
    """Broadcast the signed payload through the tracker."""
    adapter = deps.adapters_hub.get_adapter(event.intent.network)
    signed = event.signed
    try:
        record = await adapter.tracker.submit(signed, event.reservation)
        return TransactionBroadcastEvent(record=record.model_copy(deep=True))

    except PayoutError as e:
        return _failed(event.intent.intent_id, STAGE_BROADCAST, e, nonce=signed.unsigned.nonce, tx_hash=signed.tx_hash)


# ==================== Event Bus Setup ====================

def setup_event_bus() -> EventBus:
    """Initialize event bus with built-in handlers."""
    event_bus = EventBus()

    event_bus.subscribe(PayoutRequestedEvent, handle_payout_requested)
    event_bus.subscribe(TransactionBuiltEvent, handle_transaction_built)
    event_bus.subscribe(TransactionSignedEvent, handle_transaction_signed)

    return event_bus
