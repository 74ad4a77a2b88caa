from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pyturntable._correlation import Correlator
from pyturntable.exceptions import TurntableConnectionError, TurntableContextError, TurntableRemoteError


class _RecordingTransport:
    url = "ws://chat.example/socket.io/websocket"

    def __init__(self) -> None:
        self.connected = True
        self.on_message = None
        self.sent: list[dict[str, Any]] = []

    async def open(self) -> None:  # pragma: no cover
        self.connected = True

    async def close(self) -> None:  # pragma: no cover
        self.connected = False

    async def send(self, message: dict[str, Any]) -> None:
        self.sent.append(message)


def _correlator() -> tuple[Correlator, _RecordingTransport]:
    correlator = Correlator()
    transport = _RecordingTransport()
    correlator.bind(transport, {"clientid": "c1", "userid": "u1", "userauth": "secret"})
    return correlator, transport


@pytest.mark.asyncio
async def test_call_returns_reply_bearing_its_own_id() -> None:
    correlator, transport = _correlator()

    task = asyncio.create_task(correlator.call("echo", {"value": "x"}))
    await asyncio.sleep(0)

    assert transport.sent == [
        {"clientid": "c1", "userid": "u1", "userauth": "secret", "value": "x", "api": "echo", "msgid": 1}
    ]
    correlator.resolve({"msgid": 1, "success": True, "value": "x", "command": "response_received"})

    reply = await task
    assert reply["value"] == "x"
    assert correlator.pending == {}


@pytest.mark.asyncio
async def test_interleaved_replies_resume_the_right_callers() -> None:
    correlator, transport = _correlator()

    first = asyncio.create_task(correlator.call("echo", {"value": "a"}))
    second = asyncio.create_task(correlator.call("echo", {"value": "b"}))
    await asyncio.sleep(0)
    assert [message["msgid"] for message in transport.sent] == [1, 2]

    correlator.resolve({"msgid": 2, "success": True, "value": "b"})
    correlator.resolve({"msgid": 1, "success": True, "value": "a"})

    assert (await first)["value"] == "a"
    assert (await second)["value"] == "b"


@pytest.mark.asyncio
async def test_message_ids_are_never_reused() -> None:
    correlator, transport = _correlator()

    for _ in range(3):
        task = asyncio.create_task(correlator.call("echo"))
        await asyncio.sleep(0)
        correlator.resolve({"msgid": transport.sent[-1]["msgid"], "success": True})
        await task

    assert [message["msgid"] for message in transport.sent] == [1, 2, 3]


@pytest.mark.asyncio
async def test_timeout_fails_exactly_once() -> None:
    correlator, _ = _correlator()

    task = asyncio.create_task(correlator.call("room.info"))
    await asyncio.sleep(0)

    assert correlator.resolve({"msgid": 1, "command": "response_received", "error": "timed out"}) is True
    with pytest.raises(TurntableRemoteError, match="timed out") as excinfo:
        await task
    assert excinfo.value.msgid == 1
    assert correlator.resolve({"msgid": 1, "success": True}) is False


@pytest.mark.asyncio
async def test_remote_failure_uses_either_error_field() -> None:
    correlator, _ = _correlator()

    task = asyncio.create_task(correlator.call("room.register", {"roomid": "r1"}))
    await asyncio.sleep(0)
    correlator.resolve({"msgid": 1, "success": False, "err": "room is full"})

    with pytest.raises(TurntableRemoteError, match='Command "room.register" failed with message: "room is full"'):
        await task


@pytest.mark.asyncio
async def test_closing_connection_fails_pending_calls() -> None:
    correlator, _ = _correlator()

    task = asyncio.create_task(correlator.call("room.info"))
    await asyncio.sleep(0)
    correlator.fail_all("connection closed")

    with pytest.raises(TurntableConnectionError):
        await task


@pytest.mark.asyncio
async def test_call_without_connection_fails() -> None:
    correlator = Correlator()

    with pytest.raises(TurntableConnectionError):
        await correlator.call("room.info")

    correlator.bind(_RecordingTransport())
    correlator._transport.connected = False  # type: ignore[union-attr]
    with pytest.raises(TurntableConnectionError):
        await correlator.call("room.info")


def test_call_outside_task_fails_fast() -> None:
    correlator, transport = _correlator()
    coro = correlator.call("room.info")

    with pytest.raises(TurntableContextError):
        coro.send(None)
    assert transport.sent == []
