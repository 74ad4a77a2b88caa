"""Wire-level constants shared by the transport and the client."""

from __future__ import annotations

DEFAULT_API_BASE_URL = "http://turntable.fm/api/"

#: Commands the chat socket does not implement; they are plain HTTP GETs.
HTTP_APIS: frozenset[str] = frozenset({"room.directory_rooms", "user.get_prefs"})

#: Presence values accepted by ``presence.update``.
USER_STATUSES: tuple[str, ...] = ("available", "unavailable", "away")

FRAME_MARKER = "~m~"
HEARTBEAT_MARKER = "~h~"

TIMED_OUT_ERROR = "timed out"


def room_socket_url(host: str) -> str:
    """Build the chat server websocket url for *host*."""
    return f"ws://{host}/socket.io/websocket"
