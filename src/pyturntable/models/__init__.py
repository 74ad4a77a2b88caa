"""Entity and value models for pyturntable."""

from pyturntable.models._base import Attribute, Resource
from pyturntable.models.envelope import ResponseEnvelope
from pyturntable.models.message import Boot, Message, Snag
from pyturntable.models.room import Room
from pyturntable.models.song import Song, Vote, build_song
from pyturntable.models.user import AuthorizedUser, User

__all__ = [
    "Attribute",
    "AuthorizedUser",
    "Boot",
    "Message",
    "Resource",
    "ResponseEnvelope",
    "Room",
    "Snag",
    "Song",
    "User",
    "Vote",
    "build_song",
]
