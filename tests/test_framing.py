from __future__ import annotations

import pytest

from pyturntable._framing import decode_frames, encode_frame, encode_message, iter_frames
from pyturntable.exceptions import TurntableFrameError


def _frame(payload: str, length: int) -> str:
    return f"~m~{length}~m~{payload}"


def test_encode_frame_prefixes_length() -> None:
    assert encode_frame("~h~12") == "~m~5~m~~h~12"


def test_encode_message_escapes_non_ascii_so_length_matches_bytes() -> None:
    frame = encode_message({"api": "room.speak", "text": "café"})
    payload = frame.split("~m~", 2)[2]
    assert payload.isascii()
    assert frame.startswith(f"~m~{len(payload.encode('utf-8'))}~m~")


def test_decode_frames_splits_concatenated_frames() -> None:
    data = encode_frame('{"command":"registered"}') + encode_frame("no_session")
    assert decode_frames(data) == ['{"command":"registered"}', "no_session"]


def test_decode_frames_handles_empty_payload() -> None:
    assert decode_frames("~m~0~m~") == [""]


def test_decode_frames_accepts_utf8_byte_lengths() -> None:
    speak = '{"command":"speak","userid":"A","text":"café"}'
    reply = '{"msgid":5,"success":true}'
    data = _frame(speak, len(speak.encode("utf-8"))) + _frame(reply, len(reply))

    assert decode_frames(data) == [speak, reply]
    assert decode_frames(_frame(speak, len(speak.encode("utf-8")))) == [speak]


def test_decode_frames_accepts_utf16_lengths() -> None:
    speak = '{"command":"speak","userid":"A","text":"party 🎉"}'
    utf16_units = len(speak.encode("utf-16-le")) // 2
    data = _frame(speak, utf16_units) + _frame("no_session", 10)

    assert decode_frames(data) == [speak, "no_session"]


def test_decode_frames_falls_back_to_next_header_when_length_overruns() -> None:
    reply = '{"msgid":5,"success":true}'
    data = _frame('{"text":"é"}', 200) + _frame(reply, len(reply))

    assert decode_frames(data) == ['{"text":"é"}', reply]
    assert decode_frames("~m~10~m~{}") == ["{}"]


def test_iter_frames_yields_good_frames_before_a_malformed_one() -> None:
    reply = '{"msgid":5,"success":true}'
    frames = iter_frames(_frame(reply, len(reply)) + "garbage")

    assert next(frames) == reply
    with pytest.raises(TurntableFrameError):
        next(frames)


@pytest.mark.parametrize(
    "data",
    [
        "garbage",
        "~m~abc~m~{}",
        "~m~2",
    ],
)
def test_decode_frames_rejects_malformed_input(data: str) -> None:
    with pytest.raises(TurntableFrameError):
        decode_frames(data)
