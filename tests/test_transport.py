from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp
import pytest

from pyturntable._framing import encode_frame, encode_message
from pyturntable._transport import SocketTransport, lookup_chat_server
from pyturntable.exceptions import TurntableConnectionError

API_BASE = "http://api.example/api/"


@dataclass
class _WsMessage:
    type: aiohttp.WSMsgType
    data: Any


class _FakeWebSocket:
    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._incoming: asyncio.Queue[_WsMessage | None] = asyncio.Queue()

    def feed(self, data: str) -> None:
        self._incoming.put_nowait(_WsMessage(aiohttp.WSMsgType.TEXT, data))

    def drop(self) -> None:
        self._incoming.put_nowait(None)

    async def send_str(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> bool:
        self.closed = True
        self._incoming.put_nowait(None)
        return True

    def exception(self) -> BaseException | None:  # pragma: no cover
        return None

    def __aiter__(self) -> _FakeWebSocket:
        return self

    async def __anext__(self) -> _WsMessage:
        msg = await self._incoming.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


class _FakeResponse:
    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


class _FakeSession:
    def __init__(self, ws: _FakeWebSocket | None = None, responses: dict[str, _FakeResponse] | None = None) -> None:
        self.ws = ws or _FakeWebSocket()
        self.responses = responses or {}
        self.requests: list[tuple[str, dict[str, Any] | None]] = []

    async def ws_connect(self, url: str, **kwargs: Any) -> _FakeWebSocket:
        return self.ws

    def get(self, url: str, params: dict[str, Any] | None = None) -> _FakeResponse:
        self.requests.append((url, params))
        return self.responses[url]


async def _open(session: _FakeSession, **kwargs: Any) -> tuple[SocketTransport, asyncio.Queue[dict[str, Any]]]:
    inbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
    transport = SocketTransport(
        "ws://chat.example/socket.io/websocket",
        session,  # type: ignore[arg-type]
        api_base_url=API_BASE,
        on_message=inbox.put_nowait,
        **kwargs,
    )
    await transport.open()
    return transport, inbox


async def _next(inbox: asyncio.Queue[dict[str, Any]]) -> dict[str, Any]:
    return await asyncio.wait_for(inbox.get(), timeout=1.0)


@pytest.mark.asyncio
async def test_heartbeat_is_echoed_and_reported() -> None:
    session = _FakeSession()
    transport, inbox = await _open(session)

    session.ws.feed("~m~5~m~~h~42")

    assert await _next(inbox) == {"command": "heartbeat"}
    assert session.ws.sent == ["~m~5~m~~h~42"]
    await transport.close()


@pytest.mark.asyncio
async def test_no_session_signal_becomes_structured_message() -> None:
    session = _FakeSession()
    transport, inbox = await _open(session)

    session.ws.feed(encode_frame("no_session"))

    assert await _next(inbox) == {"command": "no_session"}
    await transport.close()


@pytest.mark.asyncio
async def test_replies_are_tagged_and_frames_delivered_in_order() -> None:
    session = _FakeSession()
    transport, inbox = await _open(session)

    session.ws.feed(
        encode_message({"command": "registered", "user": [{"userid": "A"}]})
        + encode_message({"msgid": 3, "success": True})
    )

    first = await _next(inbox)
    second = await _next(inbox)
    assert first["command"] == "registered"
    assert second == {"msgid": 3, "success": True, "command": "response_received"}
    await transport.close()


@pytest.mark.asyncio
async def test_malformed_frame_is_dropped() -> None:
    session = _FakeSession()
    transport, inbox = await _open(session)

    session.ws.feed("not a frame")
    session.ws.feed(encode_frame("no_session"))

    assert await _next(inbox) == {"command": "no_session"}
    await transport.close()


@pytest.mark.asyncio
async def test_non_ascii_frames_with_byte_lengths_are_delivered() -> None:
    session = _FakeSession()
    transport, inbox = await _open(session)
    speak = '{"command":"speak","userid":"A","text":"café 🎉"}'
    reply = '{"msgid":5,"success":true}'

    session.ws.feed(f"~m~{len(speak.encode('utf-8'))}~m~{speak}~m~{len(reply)}~m~{reply}")

    assert (await _next(inbox))["text"] == "café 🎉"
    assert await _next(inbox) == {"msgid": 5, "success": True, "command": "response_received"}
    await transport.close()


@pytest.mark.asyncio
async def test_reply_before_malformed_frame_is_still_delivered() -> None:
    session = _FakeSession()
    transport, inbox = await _open(session)

    session.ws.feed(encode_message({"msgid": 5, "success": True}) + "garbage")
    session.ws.feed(encode_frame("no_session"))

    assert await _next(inbox) == {"msgid": 5, "success": True, "command": "response_received"}
    assert await _next(inbox) == {"command": "no_session"}
    await transport.close()


@pytest.mark.asyncio
async def test_socket_commands_are_framed() -> None:
    session = _FakeSession()
    transport, _ = await _open(session)

    await transport.send({"api": "room.info", "msgid": 1, "roomid": "r1"})

    assert session.ws.sent == [encode_message({"api": "room.info", "msgid": 1, "roomid": "r1"})]
    assert transport.state.last_message_id == 1
    await transport.close()


@pytest.mark.asyncio
async def test_http_only_command_reply_uses_socket_shape() -> None:
    url = f"{API_BASE}room.directory_rooms"
    session = _FakeSession(responses={url: _FakeResponse(200, json.dumps([True, {"rooms": [], "count": 0}]))})
    transport, inbox = await _open(session)

    await transport.send({"api": "room.directory_rooms", "msgid": 7, "userid": "u1", "section_aware": True})

    reply = await _next(inbox)
    assert reply == {"rooms": [], "count": 0, "success": True, "msgid": 7, "command": "response_received"}
    assert session.ws.sent == []
    requested_url, params = session.requests[0]
    assert requested_url == url
    assert params == {"msgid": "7", "userid": "u1", "section_aware": "true"}
    await transport.close()


@pytest.mark.asyncio
async def test_http_only_command_log_hides_userauth(caplog: pytest.LogCaptureFixture) -> None:
    url = f"{API_BASE}user.get_prefs"
    session = _FakeSession(responses={url: _FakeResponse(200, json.dumps([True, {}]))})
    transport, inbox = await _open(session)

    with caplog.at_level(logging.DEBUG, logger="pyturntable._transport"):
        await transport.send({"api": "user.get_prefs", "msgid": 2, "userid": "u1", "userauth": "SECRET"})
        await _next(inbox)

    assert session.requests[0][1]["userauth"] == "SECRET"
    assert "user.get_prefs" in caplog.text
    assert "SECRET" not in caplog.text
    await transport.close()


@pytest.mark.asyncio
async def test_http_only_command_wraps_non_mapping_data_and_failures() -> None:
    prefs = f"{API_BASE}user.get_prefs"
    rooms = f"{API_BASE}room.directory_rooms"
    session = _FakeSession(
        responses={
            prefs: _FakeResponse(200, json.dumps([False, "not allowed"])),
            rooms: _FakeResponse(503, "unavailable"),
        }
    )
    transport, inbox = await _open(session)

    await transport.send({"api": "user.get_prefs", "msgid": 1})
    first = await _next(inbox)
    await transport.send({"api": "room.directory_rooms", "msgid": 2})
    second = await _next(inbox)

    assert first == {"result": "not allowed", "success": False, "msgid": 1, "command": "response_received"}
    assert second["success"] is False
    assert second["msgid"] == 2
    assert "503" in second["error"]
    await transport.close()


@pytest.mark.asyncio
async def test_unanswered_command_times_out_once() -> None:
    session = _FakeSession()
    transport, inbox = await _open(session, timeout=0.01)

    await transport.send({"api": "room.info", "msgid": 1})

    assert await _next(inbox) == {"msgid": 1, "command": "response_received", "error": "timed out"}
    await asyncio.sleep(0.05)
    assert inbox.empty()
    await transport.close()


@pytest.mark.asyncio
async def test_real_reply_cancels_timeout() -> None:
    session = _FakeSession()
    transport, inbox = await _open(session, timeout=0.05)

    await transport.send({"api": "room.info", "msgid": 1})
    session.ws.feed(encode_message({"msgid": 1, "success": True}))

    assert (await _next(inbox))["success"] is True
    await asyncio.sleep(0.1)
    assert inbox.empty()
    await transport.close()


@pytest.mark.asyncio
async def test_close_reports_session_ended() -> None:
    session = _FakeSession()
    transport, inbox = await _open(session)

    await transport.close()

    assert await _next(inbox) == {"command": "session_ended"}
    assert transport.connected is False
    assert session.ws.closed is True


@pytest.mark.asyncio
async def test_remote_close_reports_session_ended() -> None:
    session = _FakeSession()
    transport, inbox = await _open(session)

    session.ws.drop()

    assert await _next(inbox) == {"command": "session_ended"}
    assert transport.connected is False


@pytest.mark.asyncio
async def test_send_without_connection_fails() -> None:
    transport = SocketTransport("ws://chat.example/socket.io/websocket", _FakeSession())  # type: ignore[arg-type]

    with pytest.raises(TurntableConnectionError):
        await transport.send({"api": "room.info", "msgid": 1})


@pytest.mark.asyncio
async def test_lookup_chat_server_returns_first_host() -> None:
    url = f"{API_BASE}room.which_chatserver"
    session = _FakeSession(responses={url: _FakeResponse(200, json.dumps([True, {"chatserver": ["chat2.example", 80]}]))})

    host = await lookup_chat_server(session, "r1", api_base_url=API_BASE)  # type: ignore[arg-type]

    assert host == "chat2.example"
    assert session.requests == [(url, {"roomid": "r1"})]


@pytest.mark.asyncio
async def test_lookup_chat_server_rejects_bad_replies() -> None:
    url = f"{API_BASE}room.which_chatserver"
    failing = _FakeSession(responses={url: _FakeResponse(500, "oops")})
    empty = _FakeSession(responses={url: _FakeResponse(200, json.dumps([False, {}]))})

    with pytest.raises(TurntableConnectionError):
        await lookup_chat_server(failing, "r1", api_base_url=API_BASE)  # type: ignore[arg-type]
    with pytest.raises(TurntableConnectionError):
        await lookup_chat_server(empty, "r1", api_base_url=API_BASE)  # type: ignore[arg-type]
