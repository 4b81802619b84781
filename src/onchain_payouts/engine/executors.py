"""
Event chain execution engine.

Provides workflow orchestration on top of EventBus, processing events
recursively until termination conditions are met.
"""

import asyncio
from typing import AsyncGenerator, List

from .events import BaseEvent, EventBus, Dependencies


class EventChain:
    """Executes event-driven workflows by chaining event handler results.

    Events are yielded as soon as they are produced. An exception raised by a
    handler ends the chain and is re-raised to the consumer.
    """

    def __init__(
        self,
        event_bus: EventBus,
        deps: Dependencies,
    ) -> None:
        """
        Initialize event chain executor.

        Args:
            event_bus: The event bus to dispatch events through.
            deps: Dependencies container to pass to handlers.
        """
        self.event_bus = event_bus
        self.deps = deps

    async def execute(self, initial_event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        """
        Execute event chain starting from initial event.

        Returns:
            Yields events encountered during chain execution.

        Raises:
            Exception: Whatever a handler raised, after the events produced before it.
        """
        events_queue: asyncio.Queue = asyncio.Queue()
        failure: List[BaseException] = []

        async def producer():
            try:
                async for event in self._process_event(initial_event):
                    await events_queue.put(event)
            except Exception as exc:
                failure.append(exc)
            finally:
                await events_queue.put(None)  # Sentinel to indicate completion

        task = asyncio.create_task(producer())

        while True:
            event = await events_queue.get()
            if event is None:  # Chain complete
                break
            yield event

        await task
        if failure:
            raise failure[0]

    async def _process_event(self, event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        """
        Process single event and recursively handle results.

        Args:
            event: The event to process.

        Yields:
            Events from the chain.
        """
        async for result in self.event_bus.dispatch(event, self.deps):
            if result is None:
                continue
            if isinstance(result, BaseEvent):
                yield result
                async for e in self._process_event(result):
                    yield e
            else:
                raise TypeError(f"Handler returned unsupported type: {type(result).__name__}")
