"""Request/response correlation over the chat connection.

Commands are asynchronous on the wire: a message goes out tagged with a
``msgid`` and, some time later, a ``response_received`` message carrying the
same id comes back interleaved with unrelated server pushes. The
:class:`Correlator` parks the issuing task on a future keyed by that id so
call sites can simply ``await`` the reply.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from pyturntable._transport import Transport
from pyturntable.exceptions import (
    TurntableConnectionError,
    TurntableContextError,
    TurntableRemoteError,
)
from pyturntable.models.envelope import ResponseEnvelope

_logger = logging.getLogger(__name__)


def ensure_task_context(operation: str) -> asyncio.Task[Any]:
    """Return the current task or fail if *operation* has nothing to resume.

    Raises
    ------
    TurntableContextError
        If called outside a task driven by a running event loop.
    """
    try:
        task = asyncio.current_task()
    except RuntimeError:
        task = None
    if task is None:
        raise TurntableContextError(f"{operation} must be awaited from within an asyncio task")
    return task


@dataclass(slots=True)
class PendingCall:
    """A command awaiting its reply."""

    msgid: int
    command: str
    future: asyncio.Future[dict[str, Any]]


class Correlator:
    """Match replies to the tasks that issued the commands.

    Timeouts arrive as ordinary error replies injected by the transport, so
    every pending call settles through :meth:`resolve` or :meth:`fail_all`.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingCall] = {}
        self._transport: Transport | None = None
        self._defaults: dict[str, Any] = {}

    @property
    def pending(self) -> Mapping[int, PendingCall]:
        return self._pending

    def bind(self, transport: Transport | None, default_params: Mapping[str, Any] | None = None) -> None:
        """Attach the live transport and the params merged into every command."""
        self._transport = transport
        self._defaults = dict(default_params or {})

    async def call(self, command: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Send *command* and wait for its reply.

        Returns
        -------
        dict
            The full reply message.

        Raises
        ------
        TurntableContextError
            If awaited outside an asyncio task.
        TurntableConnectionError
            If no live connection is bound.
        TurntableRemoteError
            If the service reports a failure or the command times out.
        """
        ensure_task_context(f"Command {command!r}")
        transport = self._transport
        if transport is None or not transport.connected:
            raise TurntableConnectionError(f"Cannot send {command!r}: not connected")

        loop = asyncio.get_running_loop()
        msgid = next(self._ids)
        message: dict[str, Any] = {**self._defaults, **(params or {}), "api": command, "msgid": msgid}
        pending = PendingCall(msgid=msgid, command=command, future=loop.create_future())
        self._pending[msgid] = pending

        try:
            await transport.send(message)
            reply = await pending.future
        finally:
            self._pending.pop(msgid, None)

        try:
            envelope = ResponseEnvelope.model_validate(reply)
        except ValidationError as exc:
            raise TurntableRemoteError(
                f'Command "{command}" returned an invalid reply: {exc}',
                command=command,
                msgid=msgid,
            ) from exc

        if not envelope.success:
            raise TurntableRemoteError(
                f'Command "{command}" failed with message: "{envelope.error}"',
                command=command,
                msgid=msgid,
            )
        return reply

    def resolve(self, message: Mapping[str, Any]) -> bool:
        """Deliver a reply to its pending call; ``True`` if one was waiting."""
        msgid = message.get("msgid")
        pending = self._pending.get(msgid) if isinstance(msgid, int) else None
        if pending is None or pending.future.done():
            if msgid is not None:
                _logger.debug("Ignoring reply for unknown or settled msgid %s", msgid)
            return False
        pending.future.set_result(dict(message))
        return True

    def fail_all(self, reason: str, *, url: str | None = None) -> None:
        """Fail every pending call, typically because the connection closed."""
        for pending in list(self._pending.values()):
            if not pending.future.done():
                pending.future.set_exception(
                    TurntableConnectionError(f"Command {pending.command!r} aborted: {reason}", url=url)
                )
