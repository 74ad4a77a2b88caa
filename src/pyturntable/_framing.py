"""socket.io 0.6 text framing: ``~m~<length>~m~<payload>``.

Servers disagree on the unit of ``<length>``: some count UTF-8 bytes,
node based ones count UTF-16 code units, others count characters. Decoding
accepts whichever unit lands exactly on the next frame header (or the end of
the message) and otherwise falls back to scanning for that header.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterator
from typing import Any

from pyturntable._constants import FRAME_MARKER
from pyturntable.exceptions import TurntableFrameError

_HEADER_RE = re.compile(re.escape(FRAME_MARKER) + r"(\d+)" + re.escape(FRAME_MARKER))

_UNIT_WIDTHS: tuple[Callable[[str], int], ...] = (
    lambda char: 1,
    lambda char: 2 if ord(char) > 0xFFFF else 1,
    lambda char: len(char.encode("utf-8", "surrogatepass")),
)


def encode_message(message: dict[str, Any]) -> str:
    """Serialize *message* to JSON and wrap it in a frame.

    ``json.dumps`` escapes non-ASCII characters, so the character length
    written into the frame equals the payload's byte length.
    """
    return encode_frame(json.dumps(message, separators=(",", ":")))


def encode_frame(payload: str) -> str:
    return f"{FRAME_MARKER}{len(payload)}{FRAME_MARKER}{payload}"


def _end_by_units(data: str, start: int, length: int, width: Callable[[str], int]) -> int | None:
    counted = 0
    pos = start
    while counted < length and pos < len(data):
        counted += width(data[pos])
        pos += 1
    return pos if counted == length else None


def _payload_end(data: str, start: int, length: int) -> int:
    ends = [_end_by_units(data, start, length, width) for width in _UNIT_WIDTHS]
    for end in ends:
        if end is not None and (end == len(data) or _HEADER_RE.match(data, end)):
            return end
    if ends[0] is not None:
        return ends[0]
    # Declared length overruns the message.
    following = _HEADER_RE.search(data, start)
    return following.start() if following else len(data)


def iter_frames(data: str) -> Iterator[str]:
    """Yield the frame payloads of one websocket text message in order.

    Frames before a malformed one are yielded before the error is raised.

    Raises
    ------
    TurntableFrameError
        When the data stops following the framing grammar.
    """
    pos = 0
    while pos < len(data):
        if not data.startswith(FRAME_MARKER, pos):
            raise TurntableFrameError(f"Expected frame marker at offset {pos}")
        header = _HEADER_RE.match(data, pos)
        if header is None:
            raise TurntableFrameError(f"Invalid frame header at offset {pos}: {data[pos:pos + 20]!r}")
        start = header.end()
        end = _payload_end(data, start, int(header.group(1)))
        yield data[start:end]
        pos = end


def decode_frames(data: str) -> list[str]:
    """Split one websocket text message into its frame payloads.

    Raises
    ------
    TurntableFrameError
        If any part of the data does not follow the framing grammar.
    """
    return list(iter_frames(data))
