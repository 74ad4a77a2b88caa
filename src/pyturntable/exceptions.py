"""Custom exception hierarchy for pyturntable."""

from __future__ import annotations


class TurntableError(Exception):
    """Base exception for all pyturntable errors."""


class TurntableArgumentError(TurntableError, ValueError):
    """Invalid argument, configuration value or event name."""


class TurntableContextError(TurntableError):
    """A suspending operation was awaited outside of an asyncio task.

    Every call that waits on the remote service resumes the task that
    issued it. Awaiting one from a bare coroutine that is not driven by
    the event loop has nothing to resume, so it fails immediately instead
    of hanging.
    """


class TurntableFrameError(TurntableError):
    """Malformed ``~m~<len>~m~`` frame received from the chat server."""


class TurntableConnectionError(TurntableError):
    """No live connection, or the connection could not be established."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        self.url = url
        super().__init__(message)


class TurntableRemoteError(TurntableError):
    """The service answered a command with a failure (or it timed out)."""

    def __init__(
        self,
        message: str,
        *,
        command: str = "",
        msgid: int | None = None,
    ) -> None:
        self.command = command
        self.msgid = msgid
        super().__init__(message)


class TurntableHandlerError(TurntableError):
    """An event handler raised; recorded by the dispatcher, never propagated."""

    def __init__(self, message: str, *, event: str = "") -> None:
        self.event = event
        super().__init__(message)
