"""Chat server transport: websocket framing plus the HTTP-only command channel."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from pyturntable._constants import DEFAULT_API_BASE_URL, HEARTBEAT_MARKER, HTTP_APIS, TIMED_OUT_ERROR
from pyturntable._framing import encode_frame, encode_message, iter_frames
from pyturntable._redact import redact_for_log, redact_url
from pyturntable.exceptions import TurntableConnectionError, TurntableFrameError

_logger = logging.getLogger(__name__)

_NO_SESSION_RE = re.compile(r"no_session")

MessageCallback = Callable[[dict[str, Any]], None]


class Transport(Protocol):
    """Structural transport interface used by the correlator and the client.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`SocketTransport`) concrete. Inbound
    messages are always handed to ``on_message`` as dicts carrying a
    ``command`` key (``response_received`` for replies to a ``msgid``).
    """

    on_message: MessageCallback | None

    @property
    def url(self) -> str:
        ...

    @property
    def connected(self) -> bool:
        ...

    async def open(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def send(self, message: dict[str, Any]) -> None:
        ...


@dataclass(slots=True)
class ConnectionState:
    """Mutable view of one chat server connection."""

    url: str
    connected: bool = False
    last_message_id: int | None = None


class SocketTransport:
    """Websocket transport speaking socket.io 0.6 framing to a chat server.

    Commands listed in ``HTTP_APIS`` are not supported by the socket and are
    routed to the HTTP API instead; their replies are reshaped into the
    socket's reply format and delivered through the same inbound path.
    """

    def __init__(
        self,
        url: str,
        http_session: aiohttp.ClientSession,
        *,
        timeout: float | None = None,
        api_base_url: str = DEFAULT_API_BASE_URL,
        on_message: MessageCallback | None = None,
    ) -> None:
        self._http = http_session
        self._timeout = timeout
        self._api_base_url = api_base_url
        self.on_message = on_message
        self.state = ConnectionState(url=url)
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._timers: dict[int, asyncio.TimerHandle] = {}
        self._http_tasks: set[asyncio.Task[None]] = set()
        self._closed_notified = False

    @property
    def url(self) -> str:
        return self.state.url

    @property
    def connected(self) -> bool:
        return self.state.connected

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Open the websocket and start reading frames."""
        _logger.debug("Opening chat socket %s", self.url)
        try:
            self._ws = await self._http.ws_connect(self.url, autoping=True)
        except (aiohttp.ClientError, OSError) as exc:
            raise TurntableConnectionError(f"Could not connect to {self.url}: {exc}", url=self.url) from exc

        self.state.connected = True
        self._closed_notified = False
        self._reader = asyncio.create_task(self._read_loop(self._ws), name=f"turntable-reader:{self.url}")
        _logger.debug("Chat socket opened %s", self.url)

    async def close(self) -> None:
        """Close the socket. ``session_ended`` is delivered once the reader stops."""
        ws = self._ws
        if ws is None:
            return
        with contextlib.suppress(aiohttp.ClientError, OSError):
            await ws.close()
        reader = self._reader
        if reader is not None and reader is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await reader

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_data(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    _logger.debug("Chat socket error on %s: %s", self.url, ws.exception())
                    break
        finally:
            self._on_closed()

    def _on_closed(self) -> None:
        if self._closed_notified:
            return
        self._closed_notified = True
        _logger.debug("Chat socket closed %s", self.url)
        self.state.connected = False
        self._ws = None
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in list(self._http_tasks):
            task.cancel()
        self._deliver({"command": "session_ended"})

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _handle_data(self, data: str) -> None:
        try:
            for payload in iter_frames(data):
                await self._handle_payload(payload)
        except TurntableFrameError:
            _logger.debug("Dropping rest of malformed chat message: %r", data[:200], exc_info=True)

    async def _handle_payload(self, payload: str) -> None:
        if payload.startswith(HEARTBEAT_MARKER):
            await self._echo_heartbeat(payload)
            self._deliver({"command": "heartbeat"})
            return
        if _NO_SESSION_RE.search(payload):
            self._deliver({"command": "no_session"})
            return
        try:
            message = json.loads(payload)
        except json.JSONDecodeError:
            _logger.debug("Dropping non-JSON chat payload: %r", payload[:200])
            return
        if not isinstance(message, dict):
            _logger.debug("Dropping non-object chat payload: %r", payload[:200])
            return
        self._receive(message)

    async def _echo_heartbeat(self, payload: str) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            await ws.send_str(encode_frame(payload))
        except (aiohttp.ClientError, ConnectionError) as exc:
            _logger.debug("Heartbeat echo failed on %s: %s", self.url, exc)

    def _receive(self, message: dict[str, Any]) -> None:
        msgid = message.get("msgid")
        if msgid is not None:
            message["command"] = "response_received"
            timer = self._timers.pop(msgid, None)
            if timer is not None:
                timer.cancel()
        _logger.debug("Message received: %s", redact_for_log(message))
        self._deliver(message)

    def _deliver(self, message: dict[str, Any]) -> None:
        callback = self.on_message
        if callback is None:
            return
        try:
            callback(message)
        except Exception:  # noqa: BLE001
            _logger.exception("Inbound message callback failed for %s", message.get("command"))

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(self, message: dict[str, Any]) -> None:
        """Send *message*, arming its timeout before it leaves.

        Raises
        ------
        TurntableConnectionError
            If the socket is not open or the write fails.
        """
        if not self.connected or self._ws is None:
            raise TurntableConnectionError("Not connected", url=self.url)

        msgid = message.get("msgid")
        if msgid is not None:
            self.state.last_message_id = msgid
            if self._timeout is not None:
                self._arm_timeout(msgid, self._timeout)

        _logger.debug("Message sent: %s", redact_for_log(message))

        if message.get("api") in HTTP_APIS:
            task = asyncio.create_task(self._send_http(dict(message)), name=f"turntable-http:{msgid}")
            self._http_tasks.add(task)
            task.add_done_callback(self._http_tasks.discard)
            return

        try:
            await self._ws.send_str(encode_message(message))
        except (aiohttp.ClientError, ConnectionError) as exc:
            self._disarm_timeout(msgid)
            raise TurntableConnectionError(f"Send to {self.url} failed: {exc}", url=self.url) from exc

    async def _send_http(self, message: dict[str, Any]) -> None:
        api = message.pop("api")
        msgid = message.get("msgid")
        params = {key: _query_value(value) for key, value in message.items()}
        url = f"{self._api_base_url}{api}"
        _logger.debug("GET %s", redact_url(url, params))

        reply: dict[str, Any]
        try:
            async with self._http.get(url, params=params) as resp:
                text = await resp.text()
                if resp.status != 200:
                    reply = {"success": False, "error": f"HTTP {resp.status}: {text[:200]}"}
                else:
                    reply = _reshape_http_reply(json.loads(text))
        except (aiohttp.ClientError, OSError) as exc:
            reply = {"success": False, "error": str(exc)}
        except (json.JSONDecodeError, ValueError) as exc:
            reply = {"success": False, "error": f"Invalid JSON from {api}: {exc}"}

        reply["msgid"] = msgid
        self._receive(reply)

    def _arm_timeout(self, msgid: int, timeout: float) -> None:
        loop = asyncio.get_running_loop()
        self._timers[msgid] = loop.call_later(timeout, self._fire_timeout, msgid)

    def _disarm_timeout(self, msgid: int | None) -> None:
        timer = self._timers.pop(msgid, None) if msgid is not None else None
        if timer is not None:
            timer.cancel()

    def _fire_timeout(self, msgid: int) -> None:
        if self._timers.pop(msgid, None) is None:
            return
        _logger.debug("Message %s timed out after %ss", msgid, self._timeout)
        self._deliver({"msgid": msgid, "command": "response_received", "error": TIMED_OUT_ERROR})


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _reshape_http_reply(body: Any) -> dict[str, Any]:
    """Turn an HTTP ``[success, data]`` body into a socket-style reply."""
    if not isinstance(body, list) or not body:
        return {"success": False, "error": "Unexpected HTTP reply shape"}
    success = body[0]
    data = body[1] if len(body) > 1 else None
    reply = dict(data) if isinstance(data, Mapping) else {"result": data}
    reply["success"] = success
    return reply


async def lookup_chat_server(
    http_session: aiohttp.ClientSession,
    room_id: str,
    *,
    api_base_url: str = DEFAULT_API_BASE_URL,
) -> str:
    """Return the chat server host that serves *room_id*.

    Raises
    ------
    TurntableConnectionError
        If the lookup request fails or the reply does not name a server.
    """
    url = f"{api_base_url}room.which_chatserver"
    try:
        async with http_session.get(url, params={"roomid": room_id}) as resp:
            text = await resp.text()
            if resp.status != 200:
                raise TurntableConnectionError(f"Chat server lookup failed: HTTP {resp.status}", url=url)
    except aiohttp.ClientError as exc:
        raise TurntableConnectionError(f"Chat server lookup failed: {exc}", url=url) from exc

    try:
        body = json.loads(text)
    except json.JSONDecodeError as exc:
        raise TurntableConnectionError(f"Invalid JSON from chat server lookup: {text[:200]}", url=url) from exc

    data = body[1] if isinstance(body, list) and len(body) > 1 else None
    servers = data.get("chatserver") if isinstance(data, dict) else None
    if not isinstance(servers, list) or not servers or not isinstance(servers[0], str):
        raise TurntableConnectionError(f"Chat server lookup for room {room_id} returned no server", url=url)
    return servers[0]
