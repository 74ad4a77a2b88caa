from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pyturntable.client import TurntableClient
from pyturntable.config import TurntableConfig
from pyturntable.dispatcher import Dispatcher
from pyturntable.exceptions import TurntableArgumentError, TurntableHandlerError


def _client_in_room() -> TurntableClient:
    client = TurntableClient(TurntableConfig(user_id="me", auth="secret"))
    client.room = client.get_room("r1")
    return client


@pytest.mark.asyncio
async def test_fan_out_invokes_handlers_once_per_user_in_order() -> None:
    client = _client_in_room()
    dispatcher = Dispatcher(client)
    seen: list[str] = []
    dispatcher.register("user_entered", lambda user: seen.append(user.id))

    await dispatcher.dispatch({"command": "registered", "user": [{"userid": "A"}, {"userid": "B"}]})

    assert seen == ["A", "B"]
    assert {user.id for user in client.room.listeners} == {"A", "B"}


@pytest.mark.asyncio
async def test_handlers_run_in_registration_order_and_errors_are_isolated() -> None:
    dispatcher = Dispatcher(_client_in_room())
    calls: list[str] = []

    def _boom(data: Any) -> None:
        calls.append("first")
        raise RuntimeError("boom")

    async def _second(data: Any) -> None:
        calls.append("second")

    dispatcher.register("search_failed", _boom)
    dispatcher.register("search_failed", _second)

    assert await dispatcher.dispatch({"command": "search_failed", "query": "x"}) is True
    assert await dispatcher.dispatch({"command": "search_failed", "query": "y"}) is True

    assert calls == ["first", "second", "first", "second"]
    assert len(dispatcher.errors) == 2
    assert isinstance(dispatcher.errors[0], TurntableHandlerError)
    assert dispatcher.errors[0].event == "search_failed"
    assert isinstance(dispatcher.errors[0].__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_one_shot_handler_fires_once_and_waits_for_its_conditions() -> None:
    dispatcher = Dispatcher(_client_in_room())
    fired: list[dict[str, Any]] = []
    handler = dispatcher.register("search_failed", fired.append, conditions={"query": "x"}, once=True)

    await dispatcher.dispatch({"command": "search_failed", "query": "y"})
    assert fired == []
    assert handler in dispatcher.handlers("search_failed")

    await dispatcher.dispatch({"command": "search_failed", "query": "x"})
    await dispatcher.dispatch({"command": "search_failed", "query": "x"})

    assert fired == [{"query": "x"}]
    assert handler not in dispatcher.handlers("search_failed")


@pytest.mark.asyncio
async def test_conditions_match_raw_data_not_transformed_payload() -> None:
    dispatcher = Dispatcher(_client_in_room())
    messages: list[Any] = []
    dispatcher.register("user_spoke", messages.append, conditions={"userid": "A"})

    await dispatcher.dispatch({"command": "speak", "userid": "A", "name": "a", "text": "hi"})
    await dispatcher.dispatch({"command": "speak", "userid": "B", "name": "b", "text": "yo"})

    assert [message.content for message in messages] == ["hi"]
    assert messages[0].sender.id == "A"


@pytest.mark.asyncio
async def test_unknown_commands_are_ignored() -> None:
    dispatcher = Dispatcher(_client_in_room())

    assert await dispatcher.dispatch({"command": "something_new", "value": 1}) is False
    assert await dispatcher.dispatch({"value": 1}) is False
    assert list(dispatcher.errors) == []


def test_registering_unknown_event_fails() -> None:
    dispatcher = Dispatcher(_client_in_room())

    with pytest.raises(TurntableArgumentError):
        dispatcher.register("registered", lambda *args: None)
    with pytest.raises(TurntableArgumentError):
        dispatcher.register("not_an_event", lambda *args: None)


@pytest.mark.asyncio
async def test_failing_transform_does_not_run_handlers() -> None:
    client = TurntableClient(TurntableConfig(user_id="me", auth="secret"))
    dispatcher = Dispatcher(client)
    calls: list[Any] = []
    dispatcher.register("user_entered", calls.append)

    # Not in a room, so the transform cannot place the users.
    assert await dispatcher.dispatch({"command": "registered", "user": [{"userid": "A"}]}) is False
    assert calls == []


@pytest.mark.asyncio
async def test_expectation_resolves_with_event_and_args() -> None:
    dispatcher = Dispatcher(_client_in_room())
    expectation = dispatcher.expect("search_completed", "search_failed", conditions={"query": "x"})

    await dispatcher.dispatch({"command": "search_failed", "query": "x"})

    event, args = await expectation.wait(timeout=1.0)
    assert event == "search_failed"
    assert args == ({"query": "x"},)
    assert dispatcher.handlers("search_completed") == ()
    assert dispatcher.handlers("search_failed") == ()


@pytest.mark.asyncio
async def test_expectation_times_out_and_unregisters() -> None:
    dispatcher = Dispatcher(_client_in_room())
    expectation = dispatcher.expect("reconnected")

    with pytest.raises(TimeoutError):
        await expectation.wait(timeout=0.01)
    assert dispatcher.handlers("reconnected") == ()


@pytest.mark.asyncio
async def test_concurrent_dispatch_never_fires_one_shot_twice() -> None:
    dispatcher = Dispatcher(_client_in_room())
    fired: list[Any] = []
    release = asyncio.Event()

    async def _slow(data: Any) -> None:
        fired.append(data)
        await release.wait()

    dispatcher.register("search_failed", _slow, once=True)

    first = asyncio.create_task(dispatcher.dispatch({"command": "search_failed", "query": "1"}))
    second = asyncio.create_task(dispatcher.dispatch({"command": "search_failed", "query": "2"}))
    await asyncio.sleep(0)
    release.set()
    await asyncio.gather(first, second)

    assert fired == [{"query": "1"}]
