"""High-level async client for the Turntable chat service."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from typing import Any, TypeVar

import aiohttp

from pyturntable._cache import IdentityMap
from pyturntable._constants import room_socket_url
from pyturntable._correlation import Correlator, ensure_task_context
from pyturntable._hashing import random_digest
from pyturntable._transport import SocketTransport, Transport, lookup_chat_server
from pyturntable.config import TurntableConfig
from pyturntable.dispatcher import Dispatcher
from pyturntable.events import EventName
from pyturntable.exceptions import (
    TurntableConnectionError,
    TurntableError,
    TurntableHandlerError,
    TurntableRemoteError,
)
from pyturntable.handler import Handler, HandlerCallback
from pyturntable.models.room import Room
from pyturntable.models.song import Song, build_song
from pyturntable.models.user import AuthorizedUser, User

_logger = logging.getLogger(__name__)

T = TypeVar("T")

TransportFactory = Callable[[str], Transport]


class TurntableClient:
    """Async client for the Turntable chat service.

    Usage::

        async with TurntableClient(config) as client:
            await client.start()

            @client.on("user_spoke")
            async def _greet(message):
                ...

    All tasks the client starts (socket reader, keepalive, message
    dispatch, reconnects) belong to the instance and are torn down when the
    context manager exits.
    """

    def __init__(
        self,
        config: TurntableConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport_factory = transport_factory or self._socket_transport
        self._transport: Transport | None = None
        self._correlator = Correlator()
        self._dispatcher = Dispatcher(self)
        self._reconnect = config.reconnect
        self._room: Room | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._keepalive_interval: float | None = None
        self._auth_error: BaseException | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

        self.user = AuthorizedUser(self, {"_id": config.user_id, "auth": config.auth})
        self.users: IdentityMap[User] = IdentityMap(lambda user_id: User(self, {"_id": user_id}))
        self.rooms: IdentityMap[Room] = IdentityMap(lambda room_id: Room(self, {"_id": room_id}))
        self.songs: IdentityMap[Song] = IdentityMap(lambda song_id: Song(self, {"_id": song_id}))

        self.on(EventName.HEARTBEAT, self._on_heartbeat)
        self.on(EventName.SESSION_MISSING, self._on_session_missing)
        self.on(EventName.SESSION_ENDED, self._on_session_ended)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TurntableClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._reconnect = False
        try:
            await self.close()
        finally:
            await self._cancel_tasks()
            if not self._external_session and self._http_session is not None:
                await self._http_session.close()
                self._http_session = None

    async def _cancel_tasks(self) -> None:
        self._cancel_keepalive()
        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current and not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> TurntableConfig:
        return self._config

    @property
    def url(self) -> str | None:
        """Url of the current chat server connection, if any."""
        return self._transport.url if self._transport is not None else None

    @property
    def connected(self) -> bool:
        return self._transport is not None and self._transport.connected

    @property
    def room(self) -> Room | None:
        """The room the client is currently in."""
        return self._room

    @room.setter
    def room(self, room: Room | None) -> None:
        self._room = room

    @property
    def handler_errors(self) -> tuple[TurntableHandlerError, ...]:
        """Recent exceptions raised by event handlers, oldest first."""
        return tuple(self._dispatcher.errors)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Enter the configured room, or connect to the configured url.

        With neither configured, connects to the chat server of an
        arbitrary room so that room-independent commands work. Retried every
        ``reconnect_wait`` seconds while reconnecting is enabled.
        """

        async def _start() -> None:
            if self._config.room:
                await self.get_room(self._config.room).enter()
            elif self._config.url:
                await self.connect(self._config.url)
            else:
                await self.connect()

        await self._retry(_start, (TurntableConnectionError, TurntableRemoteError))

    async def connect(self, url: str | None = None) -> None:
        """Connect to *url* and wait until the session is authenticated.

        A no-op when already connected to *url*.

        Raises
        ------
        TurntableConnectionError
            If the socket cannot be opened, the server never asks for a
            session, or authentication fails.
        """
        ensure_task_context("connect()")
        if url is None:
            url = room_socket_url(await self.lookup_chat_server(random_digest()))
        if self.connected and self.url == url:
            return

        await self.close()

        transport = self._transport_factory(url)
        transport.on_message = functools.partial(self._on_message, transport)
        self._transport = transport
        self._correlator.bind(
            transport,
            {"clientid": self._config.client_id, "userid": self.user.id, "userauth": self.user.auth},
        )
        self._auth_error = None

        expectation = self._dispatcher.expect(EventName.SESSION_MISSING)
        try:
            await transport.open()
            await expectation.wait(timeout=self._config.connect_timeout)
        except TimeoutError as exc:
            await self.close()
            raise TurntableConnectionError(f"No session request from {url}", url=url) from exc
        except BaseException:
            expectation.cancel()
            if self._transport is transport and not transport.connected:
                self._detach()
            raise

        if self._auth_error is not None:
            error, self._auth_error = self._auth_error, None
            await self.close()
            raise TurntableConnectionError(f"Authentication failed on {url}: {error}", url=url) from error

    async def close(self, *, allow_reconnect: bool = False) -> None:
        """Close the connection and wait for ``session_ended``.

        Parameters
        ----------
        allow_reconnect : bool
            Let the configured reconnect policy run for this close.
        """
        transport = self._transport
        if transport is None:
            return

        reconnect = self._reconnect
        self._reconnect = reconnect and allow_reconnect
        self._cancel_keepalive()
        try:
            if transport.connected:
                expectation = self._dispatcher.expect(EventName.SESSION_ENDED)
                await transport.close()
                try:
                    await expectation.wait(timeout=self._config.connect_timeout)
                except TimeoutError:
                    _logger.debug("No session_ended after closing %s", transport.url)
            if self._transport is transport:
                self._detach()
        finally:
            self._reconnect = reconnect

    def _detach(self) -> None:
        self._transport = None
        self._room = None
        self._correlator.bind(None)

    async def _retry(
        self,
        action: Callable[[], Awaitable[T]],
        errors: tuple[type[BaseException], ...],
    ) -> T:
        while True:
            try:
                return await action()
            except errors as exc:
                if not self._reconnect:
                    raise
                _logger.debug("Connection failed: %s", exc)
                await asyncio.sleep(self._config.reconnect_wait)
                _logger.debug("Attempting to reconnect")

    # ------------------------------------------------------------------
    # Default event handlers
    # ------------------------------------------------------------------

    async def _on_heartbeat(self, *_: Any) -> None:
        await self.user.update_status()

    async def _on_session_missing(self, *_: Any) -> None:
        try:
            await self.user.authenticate()
            await self.user.fan_of()
            await self.user.update_status()
            self.reset_keepalive()
        except TurntableError as exc:
            self._auth_error = exc
            raise

    async def _on_session_ended(self, *_: Any) -> None:
        transport = self._transport
        url = transport.url if transport is not None else None
        room = self._room
        self._cancel_keepalive()
        self._detach()

        if self._reconnect and url is not None:
            _logger.debug("Session ended on %s, reconnecting", url)
            self.spawn(self._reconnect_after_loss(room, url), name="turntable-reconnect")

    async def _reconnect_after_loss(self, room: Room | None, url: str) -> None:
        async def _reconnect() -> None:
            if room is not None:
                await room.enter()
            else:
                await self.connect(url)

        await self._retry(_reconnect, (Exception,))
        await self.trigger(EventName.RECONNECTED)

    # ------------------------------------------------------------------
    # Keepalive
    # ------------------------------------------------------------------

    def reset_keepalive(self, interval: float | None = None) -> None:
        """Refresh presence every *interval* seconds while connected."""
        interval = interval or self._config.keepalive_interval
        task = self._keepalive_task
        if task is not None and not task.done() and self._keepalive_interval == interval:
            return
        self._cancel_keepalive()
        self._keepalive_interval = interval
        self._keepalive_task = self.spawn(self._keepalive(interval), name="turntable-keepalive")

    def _cancel_keepalive(self) -> None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _keepalive(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.user.update_status()
            except TurntableError as exc:
                _logger.debug("Keepalive failed: %s", exc)

    # ------------------------------------------------------------------
    # Messages and events
    # ------------------------------------------------------------------

    def _on_message(self, transport: Transport, message: dict[str, Any]) -> None:
        if transport is not self._transport:
            _logger.debug("Ignoring %r from stale connection %s", message.get("command"), transport.url)
            return

        command = message.get("command")
        if command == EventName.RESPONSE_RECEIVED:
            self._correlator.resolve(message)
        elif command == EventName.SESSION_ENDED:
            self._correlator.fail_all("connection closed", url=transport.url)
        self.spawn(self._dispatcher.dispatch(message), name=f"turntable-dispatch:{command}")

    async def api(self, command: str, **params: Any) -> dict[str, Any]:
        """Run a remote command and return its reply.

        Raises
        ------
        TurntableConnectionError
            If there is no live connection.
        TurntableRemoteError
            If the service reports a failure or the command times out.
        """
        return await self._correlator.call(command, params)

    def on(
        self,
        event: str,
        callback: HandlerCallback | None = None,
        *,
        conditions: Mapping[str, Any] | None = None,
        once: bool = False,
    ) -> Any:
        """Register a handler; usable directly or as a decorator.

        Raises
        ------
        TurntableArgumentError
            If *event* is not a known event name.
        """
        if callback is None:

            def decorator(fn: HandlerCallback) -> HandlerCallback:
                self._dispatcher.register(event, fn, conditions=conditions, once=once)
                return fn

            return decorator
        return self._dispatcher.register(event, callback, conditions=conditions, once=once)

    def off(self, handler: Handler) -> bool:
        return self._dispatcher.unregister(handler)

    async def trigger(self, command: str, *args: Any) -> bool:
        """Process ``command(*args)`` as if it had arrived from the server."""
        return await self._dispatcher.trigger(command, *args)

    async def wait_for(
        self,
        *events: str,
        conditions: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> tuple[str, tuple[Any, ...]]:
        """Wait for the next of *events*; returns ``(event, args)``."""
        return await self._dispatcher.expect(*events, conditions=conditions).wait(timeout)

    def spawn(self, coro: Coroutine[Any, Any, T], *, name: str | None = None) -> asyncio.Task[T]:
        """Run *coro* as a task owned by this client."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error("Background task %s failed", task.get_name(), exc_info=exc)

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def get_room(self, room_id: str) -> Room:
        return self.rooms.resolve(room_id)

    def known_user(self, user_id: str) -> User | None:
        """The authorized user or an acquaintance with *user_id*, if known."""
        if user_id == self.user.id:
            return self.user
        return self.users.get(user_id)

    def acquaintance(self, user_id: str) -> User:
        """Resolve *user_id* in the client-wide user scope."""
        return self.known_user(user_id) or self.users.resolve(user_id)

    def get_user(self, user_id: str) -> User:
        if self._room is not None:
            return self._room.build_user({"_id": user_id})
        return self.acquaintance(user_id)

    def build_user(self, attrs: Mapping[str, Any]) -> User:
        """Resolve the canonical user for *attrs* in the current scope and apply them."""
        if self._room is not None:
            return self._room.build_user(attrs)
        user_id = User.wire_id(attrs)
        if user_id is None:
            return User(self, attrs)
        user = self.acquaintance(user_id)
        user.apply_update(attrs)
        return user

    def get_song(self, song_id: str) -> Song:
        return self.songs.resolve(song_id)

    def build_song(self, attrs: dict[str, Any]) -> Song:
        return build_song(self, attrs)

    async def user_by_name(self, name: str) -> User:
        data = await self.api("user.get_id", name=name)
        user = self.get_user(str(data["userid"]))
        user.apply_update({"name": name})
        return user

    async def search_song(
        self,
        query: str,
        *,
        artist: str | None = None,
        duration: int | None = None,
        page: int = 1,
    ) -> list[Song]:
        """Search the song catalogue; results arrive as a separate event.

        Raises
        ------
        TurntableError
            If the client is not in a room.
        TurntableRemoteError
            If the search fails or no result arrives in time.
        """
        if self._room is None:
            raise TurntableError("Must be in a room to search for songs")
        if artist:
            query = f"title: {query} artist: {artist}"
        if duration:
            query = f"{query} duration: {duration}"

        expectation = self._dispatcher.expect(
            EventName.SEARCH_COMPLETED,
            EventName.SEARCH_FAILED,
            conditions={"query": query},
        )
        try:
            await self.api("file.search", query=query, page=page)
            event, args = await expectation.wait(self._config.timeout)
        except TimeoutError as exc:
            raise TurntableRemoteError("Search timed out", command="file.search") from exc
        finally:
            expectation.cancel()

        if event == EventName.SEARCH_FAILED or not args:
            raise TurntableRemoteError("Search failed to complete", command="file.search")
        return list(args[0])

    # ------------------------------------------------------------------
    # Transport plumbing
    # ------------------------------------------------------------------

    def _require_http(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            raise TurntableConnectionError("Client not initialised. Use 'async with TurntableClient(...)'.")
        return self._http_session

    def _socket_transport(self, url: str) -> Transport:
        return SocketTransport(
            url,
            self._require_http(),
            timeout=self._config.timeout,
            api_base_url=self._config.api_base_url,
        )

    async def lookup_chat_server(self, room_id: str) -> str:
        return await lookup_chat_server(self._require_http(), room_id, api_base_url=self._config.api_base_url)

