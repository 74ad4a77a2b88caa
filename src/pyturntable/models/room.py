"""Rooms and the room-scoped user identity map."""

from __future__ import annotations

import datetime
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from pyturntable._cache import IdentityMap
from pyturntable._constants import room_socket_url
from pyturntable.exceptions import TurntableConnectionError
from pyturntable.models._base import Attribute, Resource, parse_timestamp
from pyturntable.models.song import Song, build_song
from pyturntable.models.user import User

if TYPE_CHECKING:
    from pyturntable.client import TurntableClient

#: Room metadata keys that describe the votes on the current song.
_SONG_VOTE_KEYS = ("upvotes", "downvotes", "votelog")


def _timestamp(_room: Room, value: Any) -> datetime.datetime | None:
    return parse_timestamp(value)


def _first(_room: Room, value: Any) -> Any:
    return value[0] if isinstance(value, (list, tuple)) and value else value


def _user(room: Room, attrs: Mapping[str, Any]) -> User:
    return room.build_user(attrs)


def _user_by_id(room: Room, user_id: Any) -> User:
    return room.build_user({"_id": user_id})


def _users(room: Room, users: Iterable[Mapping[str, Any]]) -> set[User]:
    return {room.build_user(attrs) for attrs in users}


def _users_by_id(room: Room, ids: Iterable[Any]) -> set[User]:
    return {room.build_user({"_id": user_id}) for user_id in ids}


def _song(room: Room, attrs: dict[str, Any]) -> Song:
    return build_song(room._client, attrs)


def _songs(room: Room, songs: Iterable[dict[str, Any]]) -> list[Song]:
    return [build_song(room._client, attrs) for attrs in songs]


class Room(Resource):
    """A room on the service, loaded from ``room.info``.

    Every room owns the identity map for the users referenced while the
    client is in it; :meth:`build_user` is the only way users enter it.
    """

    ATTRIBUTES = (
        Attribute("id", ("_id", "roomid"), load=False),
        Attribute("section", load=False),
        Attribute("name"),
        Attribute("description"),
        Attribute("shortcut"),
        Attribute("privacy"),
        Attribute("listener_capacity", ("max_size",)),
        Attribute("dj_capacity", ("max_djs",)),
        Attribute("dj_minimum_points", ("djthreshold",)),
        Attribute("genre"),
        Attribute("created_at", ("created",), cast=_timestamp),
        Attribute("host", ("chatserver",), cast=_first),
        Attribute("featured"),
        Attribute("creator", cast=_user),
        Attribute("listeners", ("users",), cast=_users),
        Attribute("djs", cast=_users_by_id),
        Attribute("moderators", ("moderator_id",), cast=_users_by_id),
        Attribute("friends", load=False, cast=_users),
        Attribute("current_song", cast=_song),
        Attribute("current_dj", cast=_user_by_id),
        Attribute("songs_played", ("songlog",), load=False, cast=_songs),
    )

    def __init__(self, client: TurntableClient, attrs: Mapping[str, Any] | None = None) -> None:
        self.users: IdentityMap[User] = IdentityMap(lambda user_id: User(client, {"_id": user_id}))
        super().__init__(client, attrs)

    def _initial_values(self) -> dict[str, Any]:
        return {"friends": set(), "songs_played": []}

    def apply_update(self, fields: Mapping[str, Any]) -> None:
        fields = dict(fields)
        users = fields.pop("users", None)
        if users is not None:
            super().apply_update({"users": users})
        placements = fields.pop("sticker_placements", None)
        super().apply_update(fields)

        if isinstance(placements, Mapping):
            for user_id, user_placements in placements.items():
                user = self.users.get(str(user_id))
                if user is not None:
                    user.apply_update({"placements": user_placements})

        metadata = fields.get("metadata")
        current_song = self._values.get("current_song")
        if isinstance(metadata, Mapping) and current_song is not None:
            song_fields = {key: metadata[key] for key in _SONG_VOTE_KEYS if key in metadata}
            if song_fields:
                current_song.apply_update(song_fields)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def build_user(self, attrs: Mapping[str, Any]) -> User:
        """Resolve the canonical user for *attrs* in this room and apply them.

        An id already known as the authorized user, a user of this room or a
        client-wide acquaintance resolves to that instance; anything else is
        created in the room scope.
        """
        user_id = User.wire_id(attrs)
        if user_id is None:
            return User(self._client, attrs)

        user = self.users.get(user_id)
        if user is None:
            known = self._client.known_user(user_id)
            user = self.users.adopt(user_id, known) if known is not None else self.users.resolve(user_id)
        user.apply_update(attrs)
        return user

    def members(self, name: str) -> set[User]:
        """Return the mutable ``listeners``, ``djs`` or ``moderators`` set, creating it if unknown."""
        members = self._values.get(name)
        if members is None:
            members = self._values[name] = set()
        return members

    def listener(self, user_id: str) -> User | None:
        return next((user for user in self.listeners or () if user.id == user_id), None)

    def dj(self, user_id: str) -> User | None:
        return next((user for user in self.djs or () if user.id == user_id), None)

    def moderator(self, user_id: str) -> User | None:
        return next((user for user in self.moderators or () if user.id == user_id), None)

    def friend(self, user_id: str) -> User | None:
        return next((user for user in self.friends or () if user.id == user_id), None)

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    async def url(self) -> str:
        """Chat server url for this room, looking the host up when unknown."""
        host = self._values.get("host")
        if not host:
            host = await self._client.lookup_chat_server(self.id)
            self._values["host"] = host
        return room_socket_url(host)

    async def load(self, *, song_log: bool = False) -> None:
        """Load room details over the current connection.

        Raises
        ------
        TurntableConnectionError
            If the client is connected to a different chat server than the
            one hosting this room.
        """
        url = await self.url()
        if self._client.url != url:
            raise TurntableConnectionError(
                f"Room {self.id} is hosted on {url}; connected to {self._client.url}",
                url=url,
            )
        data = await self.api("room.info", roomid=self.id, section=self.section, extended=song_log)
        room_data = dict(data.get("room") or {})
        room_data["users"] = data.get("users") or []
        self.apply_update(room_data)
        await super().load()

    async def enter(self) -> None:
        """Make this the client's room, leaving the previous one first."""
        client = self._client
        if client.room == self:
            return
        if client.room is not None:
            await client.room.leave()
        await client.connect(await self.url())
        client.room = self
        try:
            data = await self.api("room.register", roomid=self.id, section=None)
        except BaseException:
            client.room = None
            raise
        self.apply_update({"section": data.get("section")})

    async def leave(self) -> None:
        await self.api("room.deregister", roomid=self.id, section=self.section)
