"""Value objects carried by chat events.

The raw wire fields are parsed by pydantic first; the user and song
references are then resolved through the client so they are the canonical
instances of the current scope.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import AliasChoices, Field

from pyturntable.models._base import TurntableTimestamp, WireId, WireModel
from pyturntable.models.song import Song
from pyturntable.models.user import User

if TYPE_CHECKING:
    from pyturntable.client import TurntableClient


def _user(client: TurntableClient, user_id: str | None) -> User | None:
    if not user_id:
        return None
    return client.build_user({"_id": user_id})


class Message(WireModel):
    """A chat line in the room or a private message."""

    RESOLVED_FIELDS: ClassVar[frozenset[str]] = frozenset({"sender"})

    sender_id: WireId = Field(default=None, validation_alias=AliasChoices("senderid", "userid", "sender_id"))
    """Id of the user who sent the message."""

    content: str | None = Field(default=None, validation_alias=AliasChoices("text", "content"))
    """Message text."""

    created_at: TurntableTimestamp = Field(default=None, validation_alias=AliasChoices("time", "created_at"))
    """When the service received the message."""

    sender: User | None = None
    """Canonical sender, resolved after parsing."""

    @classmethod
    def from_data(cls, client: TurntableClient, data: Mapping[str, Any]) -> Message:
        message = cls.parse_wire(data)
        return message.model_copy(update={"sender": _user(client, message.sender_id)})


class Boot(WireModel):
    """A user removed from the room by a moderator."""

    RESOLVED_FIELDS: ClassVar[frozenset[str]] = frozenset({"user", "moderator"})

    user_id: WireId = Field(default=None, validation_alias=AliasChoices("userid", "user_id"))
    moderator_id: WireId = Field(default=None, validation_alias=AliasChoices("modid", "moderator_id"))
    reason: str | None = None
    user: User | None = None
    moderator: User | None = None

    @classmethod
    def from_data(cls, client: TurntableClient, data: Mapping[str, Any]) -> Boot:
        boot = cls.parse_wire(data)
        return boot.model_copy(
            update={"user": _user(client, boot.user_id), "moderator": _user(client, boot.moderator_id)}
        )


class Snag(WireModel):
    """A user adding the current song to their playlist."""

    RESOLVED_FIELDS: ClassVar[frozenset[str]] = frozenset({"user", "song"})

    user_id: WireId = Field(default=None, validation_alias=AliasChoices("userid", "user_id"))
    user: User | None = None
    song: Song | None = None

    @classmethod
    def from_data(cls, client: TurntableClient, data: Mapping[str, Any], song: Song | None) -> Snag:
        snag = cls.parse_wire(data)
        return snag.model_copy(update={"user": _user(client, snag.user_id), "song": song})
