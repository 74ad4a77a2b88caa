"""Wire command → event mapping and per-event payload transforms.

Each transform receives the raw message (already stripped of its
``command`` key) and returns a list of argument tuples; handlers for the
event are invoked once per tuple. Several transforms also update the
entity caches or trigger derived events before returning, so derived
events always reach their handlers before the event that caused them.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from pyturntable.exceptions import TurntableError
from pyturntable.models.message import Boot, Message, Snag
from pyturntable.models.song import Song, build_song

if TYPE_CHECKING:
    from pyturntable.client import TurntableClient
    from pyturntable.models.room import Room
    from pyturntable.models.user import User

Results = list[tuple[Any, ...]]


class EventName(StrEnum):
    """Canonical event names handlers can subscribe to."""

    SESSION_MISSING = "session_missing"
    SESSION_END_REQUESTED = "session_end_requested"
    SESSION_ENDED = "session_ended"
    RECONNECTED = "reconnected"
    HEARTBEAT = "heartbeat"
    RESPONSE_RECEIVED = "response_received"
    ROOM_UPDATED = "room_updated"
    USER_ENTERED = "user_entered"
    USER_LEFT = "user_left"
    USER_BOOTED = "user_booted"
    USER_UPDATED = "user_updated"
    USER_NAME_UPDATED = "user_name_updated"
    USER_AVATAR_UPDATED = "user_avatar_updated"
    USER_STICKERS_UPDATED = "user_stickers_updated"
    USER_SPOKE = "user_spoke"
    FAN_ADDED = "fan_added"
    FAN_REMOVED = "fan_removed"
    DJ_ADDED = "dj_added"
    DJ_REMOVED = "dj_removed"
    DJ_ESCORTED_OFF = "dj_escorted_off"
    DJ_BOOED_OFF = "dj_booed_off"
    MODERATOR_ADDED = "moderator_added"
    MODERATOR_REMOVED = "moderator_removed"
    SONG_UNAVAILABLE = "song_unavailable"
    SONG_STARTED = "song_started"
    SONG_ENDED = "song_ended"
    SONG_VOTED = "song_voted"
    SONG_SNAGGED = "song_snagged"
    SONG_BLOCKED = "song_blocked"
    SONG_LIMITED = "song_limited"
    MESSAGE_RECEIVED = "message_received"
    SEARCH_COMPLETED = "search_completed"
    SEARCH_FAILED = "search_failed"


@dataclass(slots=True)
class EventContext:
    """What a transform sees: the client and the trigger arguments."""

    client: TurntableClient
    command: str
    args: tuple[Any, ...]

    @property
    def data(self) -> Any:
        return self.args[0] if self.args else None

    @property
    def room(self) -> Room:
        room = self.client.room
        if room is None:
            raise TurntableError(f"Received {self.command!r} while not in a room")
        return room

    async def end_current_song(self) -> None:
        room = self.client.room
        if room is not None and room.current_song is not None:
            await self.client.trigger(EventName.SONG_ENDED)


Transform = Callable[[EventContext], Awaitable[Results]]


@dataclass(frozen=True, slots=True)
class EventDescriptor:
    """Static description of one wire command."""

    command: str
    name: str
    transform: Transform


_REGISTRY: dict[str, EventDescriptor] = {}

#: Read-only map of wire command → descriptor.
EVENTS: MappingProxyType[str, EventDescriptor] = MappingProxyType(_REGISTRY)


def _one(value: Any) -> Results:
    return [()] if value is None else [(value,)]


async def _passthrough(ctx: EventContext) -> Results:
    return [ctx.args]


def _handles(name: EventName, command: str | None = None) -> Callable[[Transform], Transform]:
    def decorator(transform: Transform) -> Transform:
        wire = command or str(name)
        _REGISTRY[wire] = EventDescriptor(command=wire, name=str(name), transform=transform)
        return transform

    return decorator


def _passes_through(*names: EventName) -> None:
    for name in names:
        _handles(name)(_passthrough)


_passes_through(
    EventName.SESSION_ENDED,
    EventName.RECONNECTED,
    EventName.HEARTBEAT,
    EventName.USER_NAME_UPDATED,
    EventName.USER_AVATAR_UPDATED,
    EventName.USER_STICKERS_UPDATED,
    EventName.FAN_ADDED,
    EventName.FAN_REMOVED,
    EventName.DJ_ESCORTED_OFF,
    EventName.DJ_BOOED_OFF,
    EventName.SEARCH_FAILED,
)

_handles(EventName.SESSION_MISSING, "no_session")(_passthrough)


# ----------------------------------------------------------------------
# Session
# ----------------------------------------------------------------------


@_handles(EventName.SESSION_END_REQUESTED, "killdashnine")
async def _session_end_requested(ctx: EventContext) -> Results:
    room_id = ctx.data.get("roomid")
    room = ctx.client.room
    if not room_id or (room is not None and room.id == room_id):
        await ctx.client.close(allow_reconnect=True)
        return _one(ctx.data.get("msg") or "Unknown reason")
    return _one(None)


@_handles(EventName.RESPONSE_RECEIVED)
async def _response_received(ctx: EventContext) -> Results:
    return _one(ctx.data)


# ----------------------------------------------------------------------
# Room and users
# ----------------------------------------------------------------------


@_handles(EventName.ROOM_UPDATED, "update_room")
async def _room_updated(ctx: EventContext) -> Results:
    room = ctx.room
    room.apply_update(ctx.data)
    return _one(room)


@_handles(EventName.USER_ENTERED, "registered")
async def _user_entered(ctx: EventContext) -> Results:
    room = ctx.room
    listeners = room.members("listeners")
    results: Results = []
    for attrs in ctx.data.get("user") or ():
        user = room.build_user(attrs)
        listeners.add(user)
        results.append((user,))
    return results


@_handles(EventName.USER_LEFT, "deregistered")
async def _user_left(ctx: EventContext) -> Results:
    room = ctx.room
    listeners = room.members("listeners")
    results: Results = []
    for attrs in ctx.data.get("user") or ():
        user = room.build_user(attrs)
        listeners.discard(user)
        results.append((user,))
    return results


@_handles(EventName.USER_BOOTED, "booted_user")
async def _user_booted(ctx: EventContext) -> Results:
    boot = Boot.from_data(ctx.client, ctx.data)
    if boot.user is not None and boot.user == ctx.client.user:
        ctx.client.room = None
    return _one(boot)


@_handles(EventName.USER_UPDATED, "update_user")
async def _user_updated(ctx: EventContext) -> Results:
    data = ctx.data
    fans_change = int(data.pop("fans", None) or 0)
    room = ctx.room
    user = room.build_user(data)
    if fans_change:
        fans_count = await user.get("fans_count") or 0
        user.apply_update({"fans": fans_count + fans_change})

    if data.get("name"):
        await ctx.client.trigger(EventName.USER_NAME_UPDATED, user)
    if data.get("avatarid"):
        await ctx.client.trigger(EventName.USER_AVATAR_UPDATED, user)
    if fans_change > 0:
        fan = room.build_user({"_id": data.get("fanid")})
        await ctx.client.trigger(EventName.FAN_ADDED, user, fan)
    elif fans_change < 0:
        await ctx.client.trigger(EventName.FAN_REMOVED, user, abs(fans_change))
    return _one(user)


@_handles(EventName.USER_UPDATED, "update_sticker_placements")
async def _sticker_placements_updated(ctx: EventContext) -> Results:
    return _one(ctx.room.build_user(ctx.data))


@_handles(EventName.USER_SPOKE, "speak")
async def _user_spoke(ctx: EventContext) -> Results:
    return _one(Message.from_data(ctx.client, ctx.data))


@_handles(EventName.DJ_ADDED, "add_dj")
async def _dj_added(ctx: EventContext) -> Results:
    room = ctx.room
    attrs = dict(ctx.data["user"][0])
    if "placements" in ctx.data:
        attrs["placements"] = ctx.data["placements"]
    user = room.build_user(attrs)
    room.members("djs").add(user)
    return _one(user)


@_handles(EventName.DJ_REMOVED, "rem_dj")
async def _dj_removed(ctx: EventContext) -> Results:
    room = ctx.room
    user = room.build_user(ctx.data["user"][0])
    room.members("djs").discard(user)

    moderator_id = ctx.data.get("modid")
    if moderator_id == 1:
        await ctx.client.trigger(EventName.DJ_BOOED_OFF, user)
    elif moderator_id:
        moderator = room.build_user({"_id": moderator_id})
        await ctx.client.trigger(EventName.DJ_ESCORTED_OFF, user, moderator)
    return _one(user)


@_handles(EventName.MODERATOR_ADDED, "new_moderator")
async def _moderator_added(ctx: EventContext) -> Results:
    room = ctx.room
    user = room.build_user(ctx.data)
    room.members("moderators").add(user)
    return _one(user)


@_handles(EventName.MODERATOR_REMOVED, "rem_moderator")
async def _moderator_removed(ctx: EventContext) -> Results:
    room = ctx.room
    user = room.build_user(ctx.data)
    room.members("moderators").discard(user)
    return _one(user)


# ----------------------------------------------------------------------
# Songs
# ----------------------------------------------------------------------


@_handles(EventName.SONG_UNAVAILABLE, "nosong")
async def _song_unavailable(ctx: EventContext) -> Results:
    await ctx.end_current_song()
    room = ctx.room
    room.apply_update({**(ctx.data.get("room") or {}), "current_song": None})
    return _one(None)


@_handles(EventName.SONG_STARTED, "newsong")
async def _song_started(ctx: EventContext) -> Results:
    await ctx.end_current_song()
    room = ctx.room
    room.apply_update(ctx.data.get("room") or {})
    return _one(room.current_song)


@_handles(EventName.SONG_ENDED)
async def _song_ended(ctx: EventContext) -> Results:
    return _one(ctx.room.current_song)


@_handles(EventName.SONG_VOTED, "update_votes")
async def _song_voted(ctx: EventContext) -> Results:
    room = ctx.room
    song = room.current_song
    initial_up_votes = song.up_votes_count if song is not None else 0
    room.apply_update(ctx.data.get("room") or {})

    dj: User | None = room.current_dj
    if song is not None and dj is not None:
        points = await dj.get("points") or 0
        dj.apply_update({"points": points + (song.up_votes_count or 0) - (initial_up_votes or 0)})
    return _one(song)


@_handles(EventName.SONG_SNAGGED, "snagged")
async def _song_snagged(ctx: EventContext) -> Results:
    return _one(Snag.from_data(ctx.client, ctx.data, ctx.room.current_song))


@_handles(EventName.SONG_BLOCKED)
async def _song_blocked(ctx: EventContext) -> Results:
    await ctx.end_current_song()
    return _one(build_song(ctx.client, ctx.data))


@_handles(EventName.SONG_LIMITED, "dmca_error")
async def _song_limited(ctx: EventContext) -> Results:
    await ctx.end_current_song()
    return _one(build_song(ctx.client, ctx.data))


# ----------------------------------------------------------------------
# Messages and search
# ----------------------------------------------------------------------


@_handles(EventName.MESSAGE_RECEIVED, "pmmed")
async def _message_received(ctx: EventContext) -> Results:
    return _one(Message.from_data(ctx.client, ctx.data))


@_handles(EventName.SEARCH_COMPLETED, "search_complete")
async def _search_completed(ctx: EventContext) -> Results:
    songs: list[Song] = [build_song(ctx.client, attrs) for attrs in ctx.data.get("docs") or ()]
    return [(songs,)]


#: Every name a handler may be registered for.
EVENT_NAMES: frozenset[str] = frozenset(descriptor.name for descriptor in _REGISTRY.values())
