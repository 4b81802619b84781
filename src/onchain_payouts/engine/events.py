"""
Event-driven system with typed events and clear data flow.

Events carry their own data, handlers return next events, and dependencies
are injected separately from business data.

Pipeline of one payout:
    PayoutRequestedEvent -> TransactionBuiltEvent -> TransactionSignedEvent
    -> TransactionBroadcastEvent, or PayoutFailedEvent from any stage.

SubmissionStatusEvent is published for every state change of a tracked
transaction and is meant for hooks (payment record updates).
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Callable, Optional, List, Awaitable, AsyncGenerator

from pydantic import BaseModel, ConfigDict

from ..adapters.bases import SigningGateway
from ..adapters.adapters_hub import AdapterHub
from ..adapters.evm.schemas import (
    NonceReservation,
    SignedTransaction,
    SignerCredentials,
    SubmissionRecord,
    UnsignedTransaction,
)
from ..schemas.bases import PaymentIntent, SubmissionStatus

# ==================== Base Event ====================

class BaseEvent(ABC):
    """Base class for all events in the system."""

    @abstractmethod
    def __repr__(self) -> str:
        """String representation of the event."""
        pass


# ==================== Trigger Events (External) ====================

class PayoutRequestedEvent(BaseModel, BaseEvent):
    """External trigger: build, sign and broadcast a payout."""
    intent: PaymentIntent
    credentials: SignerCredentials
    replaces: Optional[str] = None  # hash of the in-flight transaction to supersede

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"PayoutRequestedEvent(intent={self.intent.intent_id}, replaces={self.replaces})"


# ==================== Pipeline Events ====================

class TransactionBuiltEvent(BaseModel, BaseEvent):
    """Unsigned transaction composed and nonce reserved."""
    intent: PaymentIntent
    unsigned: UnsignedTransaction
    reservation: NonceReservation
    credentials: SignerCredentials

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"TransactionBuiltEvent(intent={self.intent.intent_id}, nonce={self.unsigned.nonce})"


class TransactionSignedEvent(BaseModel, BaseEvent):
    """Custody signer returned a broadcast-ready payload."""
    intent: PaymentIntent
    signed: SignedTransaction
    reservation: NonceReservation

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"TransactionSignedEvent(tx_hash={self.signed.tx_hash})"


# ==================== Result Events ====================

class TransactionBroadcastEvent(BaseModel, BaseEvent):
    """Result: payload handed to the network, record is PENDING."""
    record: SubmissionRecord

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"TransactionBroadcastEvent(tx_hash={self.record.tx_hash}, nonce={self.record.nonce})"


class PayoutFailedEvent(BaseModel, BaseEvent):
    """Result: the payout stopped before reaching the network."""
    intent_id: str
    stage: str
    error_code: str
    error_message: str
    nonce: Optional[int] = None
    tx_hash: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"PayoutFailedEvent(stage={self.stage}, error={self.error_code})"


class SubmissionStatusEvent(BaseModel, BaseEvent):
    """Notification: a tracked transaction changed status."""
    record: SubmissionRecord
    previous: Optional[SubmissionStatus] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        previous = self.previous.value if self.previous else None
        return f"SubmissionStatusEvent(tx_hash={self.record.tx_hash}, {previous} -> {self.record.status.value})"


# ==================== Dependencies Container ====================

@dataclass(frozen=True)
class Dependencies:
    """Container for infrastructure dependencies (read-only)."""
    adapters_hub: Optional[AdapterHub] = None
    signer: Optional[SigningGateway] = None


# ==================== Event Bus ====================

EventHandlerFunc = Callable[[BaseEvent, Dependencies], Awaitable[Optional[BaseEvent]]]
EventHookFunc = Callable[[BaseEvent, Dependencies], Awaitable[None]]


class EventBus:
    """Event dispatcher for publishing and subscribing to events."""

    def __init__(self) -> None:
        """Initialize with empty subscribers and hooks."""
        self._subscribers: Dict[type, List[EventHandlerFunc]] = {}
        self._hooks: Dict[type, List[EventHookFunc]] = {}

    def subscribe(self, event_class: type, handler: EventHandlerFunc) -> None:
        """
        Register an async handler for the given event class.
        Multiple handlers can be subscribed to the same event type and run in parallel.

        Args:
            event_class: The event class to subscribe to.
            handler: The async handler function to call when the event is published.

        Raises:
            TypeError: If handler is not a coroutine function.
        """
        if not inspect.iscoroutinefunction(handler):
            raise TypeError(f"Handler must be a coroutine function, got {type(handler).__name__}")

        self._subscribers.setdefault(event_class, []).append(handler)

    def hook(self, event_class: type, hook_func: EventHookFunc) -> None:
        """
        Register a hook for the given event class.
        Hooks are executed before subscribers when the event is dispatched.

        Args:
            event_class: The event class to hook into.
            hook_func: The hook function to call when the event is published.
        """
        if not inspect.iscoroutinefunction(hook_func):
            raise TypeError(f"Handler must be a coroutine function, got {type(hook_func).__name__}")

        self._hooks.setdefault(event_class, []).append(hook_func)

    async def dispatch(self, event: BaseEvent, deps: Dependencies) -> AsyncGenerator[Optional[BaseEvent], None]:
        """
        Dispatch an event to all registered hooks and subscribers.
        Hooks run first, then all subscribers run in parallel.

        Args:
            event: The event to dispatch.
            deps: Dependencies container with injected services.

        Yields:
            Results from all subscribers as they complete. Yields nothing if no subscribers are registered.
        """
        hooks = self._hooks.get(type(event), [])
        await asyncio.gather(*(hook(event, deps) for hook in hooks))

        handlers = self._subscribers.get(type(event), [])
        if not handlers:
            return

        tasks = [handler(event, deps) for handler in handlers]
        for coro in asyncio.as_completed(tasks):
            result = await coro
            yield result

    async def publish(self, event: BaseEvent, deps: Dependencies) -> List[BaseEvent]:
        """
        Dispatch a notification event and collect the subscriber results.

        Returns:
            Non-empty results of the subscribers, in completion order.
        """
        return [result async for result in self.dispatch(event, deps) if result is not None]
