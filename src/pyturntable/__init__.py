"""pyturntable - Async Python client for the Turntable chat service."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyturntable")
except PackageNotFoundError:
    __version__ = "0+local"
from pyturntable.client import TurntableClient
from pyturntable.config import TurntableConfig
from pyturntable.events import EVENTS, EventName
from pyturntable.exceptions import (
    TurntableArgumentError,
    TurntableConnectionError,
    TurntableContextError,
    TurntableError,
    TurntableFrameError,
    TurntableHandlerError,
    TurntableRemoteError,
)
from pyturntable.models import (
    AuthorizedUser,
    Boot,
    Message,
    Room,
    Snag,
    Song,
    User,
    Vote,
)

__all__ = [
    "__version__",
    "EVENTS",
    "AuthorizedUser",
    "Boot",
    "EventName",
    "Message",
    "Room",
    "Snag",
    "Song",
    "TurntableArgumentError",
    "TurntableClient",
    "TurntableConfig",
    "TurntableConnectionError",
    "TurntableContextError",
    "TurntableError",
    "TurntableFrameError",
    "TurntableHandlerError",
    "TurntableRemoteError",
    "User",
    "Vote",
]
