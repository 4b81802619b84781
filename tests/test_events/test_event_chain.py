"""
Test suite for EventBus and the EventChain execution engine.
Tests: 1) Event execution order 2) Hooks run before subscribers
3) Handler exceptions reach the consumer
"""
import asyncio

import pytest
from pydantic import BaseModel, ConfigDict

from onchain_payouts.engine.events import (
    BaseEvent,
    Dependencies,
    EventBus,
    PayoutFailedEvent,
)
from onchain_payouts.engine.executors import EventChain


class StartEvent(BaseModel, BaseEvent):
    label: str = "start"

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"StartEvent(label={self.label})"


class MiddleEvent(BaseModel, BaseEvent):
    step: int = 1

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"MiddleEvent(step={self.step})"


class EndEvent(BaseModel, BaseEvent):
    summary: str = ""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"EndEvent(summary={self.summary})"


async def handle_start(event: StartEvent, deps: Dependencies):
    return MiddleEvent(step=1)


async def handle_middle(event: MiddleEvent, deps: Dependencies):
    await asyncio.sleep(0)
    return EndEvent(summary=f"done after step {event.step}")


async def handle_middle_fails(event: MiddleEvent, deps: Dependencies):
    raise RuntimeError("handler crashed")


@pytest.mark.asyncio
async def test_events_are_yielded_in_order():
    event_bus = EventBus()
    event_bus.subscribe(StartEvent, handle_start)
    event_bus.subscribe(MiddleEvent, handle_middle)

    chain = EventChain(event_bus, Dependencies())
    produced = [event async for event in chain.execute(StartEvent())]

    assert [type(event) for event in produced] == [MiddleEvent, EndEvent]
    assert produced[-1].summary == "done after step 1"


@pytest.mark.asyncio
async def test_event_without_subscribers_ends_chain():
    event_bus = EventBus()
    event_bus.subscribe(StartEvent, handle_start)

    produced = [event async for event in EventChain(event_bus, Dependencies()).execute(StartEvent())]
    assert [type(event) for event in produced] == [MiddleEvent]


@pytest.mark.asyncio
async def test_hooks_run_before_subscribers():
    order = []

    async def hook(event, deps):
        order.append("hook")

    async def handler(event, deps):
        order.append("handler")
        return None

    event_bus = EventBus()
    event_bus.hook(StartEvent, hook)
    event_bus.subscribe(StartEvent, handler)

    produced = [event async for event in EventChain(event_bus, Dependencies()).execute(StartEvent())]

    assert produced == []
    assert order == ["hook", "handler"]


@pytest.mark.asyncio
async def test_handler_exception_reaches_consumer():
    event_bus = EventBus()
    event_bus.subscribe(StartEvent, handle_start)
    event_bus.subscribe(MiddleEvent, handle_middle_fails)

    produced = []
    with pytest.raises(RuntimeError, match="handler crashed"):
        async for event in EventChain(event_bus, Dependencies()).execute(StartEvent()):
            produced.append(event)

    # Events produced before the failure are still delivered.
    assert [type(event) for event in produced] == [MiddleEvent]


@pytest.mark.asyncio
async def test_unsupported_handler_result():
    async def handler(event, deps):
        return "not an event"

    event_bus = EventBus()
    event_bus.subscribe(StartEvent, handler)

    with pytest.raises(TypeError):
        [event async for event in EventChain(event_bus, Dependencies()).execute(StartEvent())]


@pytest.mark.asyncio
async def test_publish_collects_results():
    async def first(event, deps):
        return PayoutFailedEvent(intent_id="pay_1", stage="build", error_code="x", error_message="y")

    async def second(event, deps):
        return None

    event_bus = EventBus()
    event_bus.subscribe(StartEvent, first)
    event_bus.subscribe(StartEvent, second)

    results = await event_bus.publish(StartEvent(), Dependencies())
    assert len(results) == 1
    assert results[0].intent_id == "pay_1"


def test_subscribe_requires_coroutine():
    event_bus = EventBus()
    with pytest.raises(TypeError):
        event_bus.subscribe(StartEvent, lambda event, deps: None)
    with pytest.raises(TypeError):
        event_bus.hook(StartEvent, lambda event, deps: None)
