"""Songs and the votes cast on them."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, ClassVar, Literal

from pydantic import ValidationError, model_validator

from pyturntable.models._base import Attribute, Resource, WireId, WireModel
from pyturntable.models.user import User

if TYPE_CHECKING:
    from pyturntable.client import TurntableClient

_logger = logging.getLogger(__name__)


class Vote(WireModel):
    """A user's vote on the current song, parsed from a ``votelog`` entry."""

    RESOLVED_FIELDS: ClassVar[frozenset[str]] = frozenset({"user"})

    user_id: WireId = None
    direction: Literal["up", "down"]
    user: User | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_log_entry(cls, value: Any) -> Any:
        # votelog entries are ``[userid, direction]`` pairs
        if isinstance(value, (list, tuple)) and len(value) >= 2:
            return {"user_id": value[0], "direction": value[1]}
        return value


def _merge_votes(song: Song, votelog: Iterable[Any]) -> list[Vote]:
    votes: list[Vote] = list(song.votes or ())
    for entry in votelog:
        try:
            vote = Vote.model_validate(entry)
        except ValidationError:
            _logger.debug("Ignoring malformed votelog entry %r", entry)
            continue
        if not vote.user_id:
            continue
        votes = [existing for existing in votes if existing.user_id != vote.user_id]
        user = song._client.build_user({"_id": vote.user_id})
        votes.append(vote.model_copy(update={"user": user}))
    return votes


def _played_by(song: Song, value: Any) -> User:
    return song._client.build_user({"_id": value})


class Song(Resource):
    """A song, loaded from the metadata of the playlist it belongs to.

    Vote counters, the vote log, the score and the DJ are only ever set by
    room updates and never trigger a load.
    """

    ATTRIBUTES = (
        Attribute("title", ("song",)),
        Attribute("isrc"),
        Attribute("artist"),
        Attribute("album"),
        Attribute("genre"),
        Attribute("label"),
        Attribute("cover_art_url", ("coverart",)),
        Attribute("length"),
        Attribute("snaggable"),
        Attribute("source"),
        Attribute("source_id", ("sourceid",)),
        Attribute("playlist"),
        Attribute("started_at", ("starttime",)),
        Attribute("up_votes_count", ("upvotes",), load=False),
        Attribute("down_votes_count", ("downvotes",), load=False),
        Attribute("votes", ("votelog",), load=False, cast=_merge_votes),
        Attribute("score", load=False),
        Attribute("played_by", ("djid",), load=False, cast=_played_by),
    )

    def _initial_values(self) -> dict[str, Any]:
        return {"playlist": "default", **self._vote_defaults()}

    @staticmethod
    def _vote_defaults() -> dict[str, Any]:
        return {"up_votes_count": 0, "down_votes_count": 0, "votes": [], "score": 0}

    def reset_votes(self) -> None:
        """Forget the vote state of a previous play of this song."""
        self._values.update(self._vote_defaults())

    async def load(self) -> None:
        data = await self.api("playlist.get_metadata", playlist_name=self.playlist, files=[self.id])
        files = data.get("files") or {}
        self.apply_update(files.get(self.id) or {})
        await super().load()


def build_song(client: TurntableClient, attrs: dict[str, Any]) -> Song:
    """Resolve the canonical song for *attrs* and apply them.

    A different start time means the song is being played again, so the
    vote state left from the previous play is cleared first.
    """
    song_id = Song.wire_id(attrs)
    if song_id is None:
        return Song(client, attrs)
    song = client.songs.resolve(song_id)
    started_at = attrs.get("starttime")
    if started_at is not None and song.started_at is not None and started_at != song.started_at:
        song.reset_votes()
    song.apply_update(attrs)
    return song
