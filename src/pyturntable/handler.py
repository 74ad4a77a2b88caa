"""Event handler registrations."""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

HandlerCallback = Callable[..., Any]


@dataclass(eq=False, slots=True)
class Handler:
    """A callback registered for one event.

    Parameters
    ----------
    event : str
        Canonical event name (see :class:`pyturntable.events.EventName`).
    callback : callable
        Plain function or coroutine function, called once per result tuple.
    conditions : mapping or None
        Keys that must equal the same keys of the raw message data.
    once : bool
        Remove the handler after the first message it matches.
    """

    event: str
    callback: HandlerCallback
    conditions: Mapping[str, Any] | None = None
    once: bool = False
    claimed: bool = field(default=False, repr=False)

    def matches(self, data: Any) -> bool:
        if not self.conditions:
            return True
        if not isinstance(data, Mapping):
            return False
        return all(key in data and data[key] == value for key, value in self.conditions.items())

    async def invoke(self, args: tuple[Any, ...]) -> None:
        result = self.callback(*args)
        if inspect.isawaitable(result):
            await result
