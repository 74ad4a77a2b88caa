"""Classify inbound messages into events and run the registered handlers."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pyturntable._correlation import ensure_task_context
from pyturntable.events import EVENT_NAMES, EVENTS, EventContext
from pyturntable.exceptions import TurntableArgumentError, TurntableHandlerError
from pyturntable.handler import Handler, HandlerCallback

if TYPE_CHECKING:
    from pyturntable.client import TurntableClient

_logger = logging.getLogger(__name__)

Results = list[tuple[Any, ...]]


@dataclass(slots=True)
class Expectation:
    """A pending wait for one of several events.

    Created by :meth:`Dispatcher.expect` *before* the action that causes the
    event, so the event cannot slip past between the action and the wait.
    """

    dispatcher: Dispatcher
    future: asyncio.Future[tuple[str, tuple[Any, ...]]]
    handlers: list[Handler] = field(default_factory=list)

    async def wait(self, timeout: float | None = None) -> tuple[str, tuple[Any, ...]]:
        """Wait for the event; returns ``(event, args)``.

        Raises
        ------
        TimeoutError
            If no event arrives within *timeout* seconds.
        TurntableContextError
            If awaited outside an asyncio task.
        """
        ensure_task_context("Waiting for an event")
        try:
            return await asyncio.wait_for(self.future, timeout=timeout)
        finally:
            self.cancel()

    def cancel(self) -> None:
        for handler in self.handlers:
            self.dispatcher.unregister(handler)
        self.handlers.clear()
        if not self.future.done():
            self.future.cancel()


class Dispatcher:
    """Per-client handler registry and message dispatch.

    Handlers for an event run in registration order, once per result tuple
    produced by the event's transform. Exceptions raised by handlers are
    logged and kept in :attr:`errors`; they never reach the connection.
    """

    def __init__(self, client: TurntableClient, *, max_errors: int = 100) -> None:
        self._client = client
        self._handlers: dict[str, list[Handler]] = {}
        self.errors: deque[TurntableHandlerError] = deque(maxlen=max_errors)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(
        self,
        event: str,
        callback: HandlerCallback,
        *,
        conditions: Mapping[str, Any] | None = None,
        once: bool = False,
    ) -> Handler:
        """Register *callback* for *event*.

        Raises
        ------
        TurntableArgumentError
            If *event* is not a known event name.
        """
        event = str(event)
        if event not in EVENT_NAMES:
            raise TurntableArgumentError(f"Unknown event {event!r}")
        handler = Handler(event=event, callback=callback, conditions=dict(conditions) if conditions else None, once=once)
        self._handlers.setdefault(event, []).append(handler)
        return handler

    def unregister(self, handler: Handler) -> bool:
        handlers = self._handlers.get(handler.event)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    def handlers(self, event: str) -> tuple[Handler, ...]:
        return tuple(self._handlers.get(str(event), ()))

    def expect(self, *events: str, conditions: Mapping[str, Any] | None = None) -> Expectation:
        """Start waiting for the first of *events* (optionally filtered)."""
        loop = asyncio.get_running_loop()
        expectation = Expectation(dispatcher=self, future=loop.create_future())

        for event in events:

            def _resolve(*args: Any, _event: str = str(event)) -> None:
                if not expectation.future.done():
                    expectation.future.set_result((_event, args))

            expectation.handlers.append(self.register(event, _resolve, conditions=conditions, once=True))
        return expectation

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def classify(self, command: str | None, args: tuple[Any, ...]) -> tuple[str, Results] | None:
        """Map a wire command to its event name and result tuples.

        Returns ``None`` for unknown commands. Transforms may update the
        entity caches and trigger derived events before returning.
        """
        descriptor = EVENTS.get(command) if command else None
        if descriptor is None:
            return None
        context = EventContext(client=self._client, command=descriptor.command, args=args)
        return descriptor.name, await descriptor.transform(context)

    async def trigger(self, command: str | None, *args: Any) -> bool:
        """Classify ``command(*args)`` and run the matching handlers.

        Returns ``False`` when the command is unknown or its transform failed.
        """
        data = args[0] if args else None
        if isinstance(data, Mapping):
            data = dict(data)
        try:
            classified = await self.classify(command, args)
        except Exception:  # noqa: BLE001
            _logger.exception("Failed to process %r event", command)
            return False
        if classified is None:
            _logger.debug("Ignoring unknown command %r", command)
            return False

        name, results = classified
        for handler in list(self._handlers.get(name, ())):
            if handler.claimed or not handler.matches(data):
                continue
            if handler.once:
                handler.claimed = True
            try:
                for result in results:
                    await self._run(handler, name, result)
            finally:
                if handler.once:
                    self.unregister(handler)
        return True

    async def dispatch(self, message: Mapping[str, Any]) -> bool:
        """Dispatch one inbound message; its ``command`` key selects the event."""
        data = dict(message)
        command = data.pop("command", None)
        return await self.trigger(command, data)

    async def _run(self, handler: Handler, event: str, args: tuple[Any, ...]) -> None:
        try:
            await handler.invoke(args)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            error = TurntableHandlerError(f"Handler for {event!r} raised: {exc!r}", event=event)
            error.__cause__ = exc
            self.errors.append(error)
            _logger.error("Handler for %r failed", event, exc_info=exc)

