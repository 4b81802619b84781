"""
Payout Server - event-driven entry point of the payout core.

Provides the inbound interface used by the payment layer:
``build_and_submit``, ``replace``, ``poll``, ``watch`` and ``status``, with
status changes published as ``SubmissionStatusEvent`` on the event bus.
"""

import logging
from typing import Callable, Optional

from ..engine.events import (
    EventBus,
    Dependencies,
    BaseEvent,
    PayoutRequestedEvent,
    PayoutFailedEvent,
    SubmissionStatusEvent,
    TransactionBroadcastEvent,
)
from ..engine.executors import EventChain
from ..engine.exceptions import PayoutError
from ..adapters.adapters_hub import AdapterHub
from ..adapters.bases import NetworkClient, SigningGateway
from ..adapters.evm.adapter import EVMAdapter
from ..adapters.evm.constants import PayoutSettings
from ..adapters.evm.fees import FeeStrategy
from ..adapters.evm.schemas import SignerCredentials, SubmissionRecord
from ..schemas.bases import PaymentIntent, PayoutResult, SubmissionStatus
from .flows import setup_event_bus, STAGE_BUILD

logger = logging.getLogger(__name__)


class PayoutServer:
    """Payout core with build -> sign -> broadcast run as an event chain.

    Example:
        server = PayoutServer(signer=HttpCustodySigner("https://custody.internal"))
        server.register_network("eip155:11155111")
        server.on_status(update_payment_record)

        result = await server.build_and_submit(intent, authentication_proof=stamp)
        if result.is_success():
            record = await server.watch(result.tx_hash)
    """

    def __init__(
        self,
        signer: SigningGateway,
        adapter_hub: Optional[AdapterHub] = None,
        settings: Optional[PayoutSettings] = None,
    ):
        """Initialize payout server.

        Args:
            signer: Custody signing gateway
            adapter_hub: Network adapter hub (default: new instance)
            settings: Runtime tunables for a new hub (default: ``PayoutSettings()``)
        """
        self.adapter_hub = adapter_hub or AdapterHub(settings=settings)
        self.signer = signer
        self.depends = Dependencies(adapters_hub=self.adapter_hub, signer=signer)
        self.event_bus: EventBus = setup_event_bus()
        self.adapter_hub.add_status_listener(self._publish_status)

    def register_network(
        self,
        network: str,
        network_client: Optional[NetworkClient] = None,
        fee_strategy: Optional[FeeStrategy] = None,
    ) -> EVMAdapter:
        """Register a network. See ``AdapterHub.register_network``."""
        return self.adapter_hub.register_network(network, network_client=network_client, fee_strategy=fee_strategy)

    def subscribe(self, event_class: type, handler: Callable) -> None:
        """Register event handler.

        Args:
            event_class: Event type to handle
            handler: Async handler receiving (event, deps)
        """
        self.event_bus.subscribe(event_class, handler)

    def hook(self, event_class: type, handler: Callable) -> None:
        """Register event hook (runs before subscribers)."""
        self.event_bus.hook(event_class, handler)

    def on_status(self, handler: Callable) -> None:
        """Register a hook for every submission status change."""
        self.event_bus.hook(SubmissionStatusEvent, handler)

    async def _publish_status(self, record: SubmissionRecord, previous: Optional[SubmissionStatus]) -> None:
        await self.event_bus.publish(SubmissionStatusEvent(record=record, previous=previous), self.depends)

    # =========================================================================
    # Inbound interface
    # =========================================================================

    async def build_and_submit(self, intent: PaymentIntent, authentication_proof: Optional[str] = None) -> PayoutResult:
        """
        Build, sign and broadcast a payout.

        Args:
            intent: Payment intent
            authentication_proof: Per-request proof forwarded to the custody signer

        Returns:
            PayoutResult: Transaction hash and nonce, or the error that stopped the payout
        """
        credentials = SignerCredentials(
            sub_organization_id=intent.source.sub_organization_id,
            wallet_address=intent.source.address,
            authentication_proof=authentication_proof,
        )
        return await self._run(PayoutRequestedEvent(intent=intent, credentials=credentials), intent.intent_id)

    async def replace(self, tx_hash: str, authentication_proof: Optional[str] = None) -> PayoutResult:
        """
        Supersede an in-flight transaction with a re-priced one for the same nonce.

        The replacement pays at least the original fee + 10% + 1 wei. The
        original stays tracked; whichever transaction is included decides
        which record becomes CONFIRMED and which REPLACED.
        """
        try:
            record = self.adapter_hub.get_record(tx_hash)
        except PayoutError as e:
            return PayoutResult(intent_id="", error_code=e.code, error_message=e.message, stage=STAGE_BUILD)

        if record.intent is None:
            return PayoutResult(
                intent_id="",
                error_code="replacement_unavailable",
                error_message=f"Transaction {tx_hash} has no payment intent to rebuild from",
                stage=STAGE_BUILD,
            )

        credentials = SignerCredentials(
            sub_organization_id=record.intent.source.sub_organization_id,
            wallet_address=record.intent.source.address,
            authentication_proof=authentication_proof,
        )
        event = PayoutRequestedEvent(intent=record.intent, credentials=credentials, replaces=record.tx_hash)
        return await self._run(event, record.intent.intent_id)

    async def _run(self, event: BaseEvent, intent_id: str) -> PayoutResult:
        chain = EventChain(self.event_bus, self.depends)
        outcome: Optional[BaseEvent] = None
        async for produced in chain.execute(event):
            if isinstance(produced, (TransactionBroadcastEvent, PayoutFailedEvent)):
                outcome = produced

        if isinstance(outcome, TransactionBroadcastEvent):
            return PayoutResult(
                intent_id=intent_id,
                tx_hash=outcome.record.tx_hash,
                nonce=outcome.record.nonce,
                status=outcome.record.status,
            )
        if isinstance(outcome, PayoutFailedEvent):
            return PayoutResult(
                intent_id=intent_id,
                tx_hash=outcome.tx_hash,
                nonce=outcome.nonce,
                status=SubmissionStatus.FAILED if outcome.tx_hash else None,
                error_code=outcome.error_code,
                error_message=outcome.error_message,
                stage=outcome.stage,
            )
        raise RuntimeError(f"Payout pipeline for {intent_id} ended without a result")

    # =========================================================================
    # Tracking
    # =========================================================================

    async def poll(self, tx_hash: str) -> SubmissionRecord:
        return await self.adapter_hub.poll(tx_hash)

    async def watch(self, tx_hash: str) -> SubmissionRecord:
        return await self.adapter_hub.watch(tx_hash)

    def status(self, tx_hash: str) -> SubmissionStatus:
        return self.adapter_hub.status(tx_hash)
