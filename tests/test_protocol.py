#!/usr/bin/env python3
"""
Unit tests for inbound message decoding and outbound encoding.
"""
import json

import pytest

from trackpad_relay.exceptions import ProtocolError
from trackpad_relay.protocol import (
    ArrowKey,
    Click,
    ClipboardUpdate,
    DragEnd,
    DragMove,
    DragStart,
    FileNotification,
    Move,
    Scroll,
    Swipe,
    encode_clipboard_history,
    encode_connected,
    encode_file_uploaded,
    parse_intent,
)


@pytest.mark.parametrize(
    "message, expected",
    [
        ({"type": "move", "dx": 5, "dy": -2.5}, Move(5.0, -2.5)),
        ({"type": "click", "button": "right"}, Click("right")),
        ({"type": "scroll", "dx": 0, "dy": 30}, Scroll(0.0, 30.0)),
        ({"type": "drag_start"}, DragStart()),
        ({"type": "drag_move", "dx": 1, "dy": 1}, DragMove(1.0, 1.0)),
        ({"type": "drag_end"}, DragEnd()),
        ({"type": "swipe", "direction": "left"}, Swipe("left")),
        ({"type": "arrow_key", "key": "up"}, ArrowKey("up")),
        ({"type": "clipboard", "content": "hello"}, ClipboardUpdate("hello")),
        ({"type": "file_notification", "file_id": "abc"}, FileNotification("abc")),
    ],
)
def test_parse_intent_decodes_every_type(message, expected) -> None:
    assert parse_intent(json.dumps(message)) == expected


def test_parse_intent_accepts_bytes() -> None:
    assert parse_intent(b'{"type": "drag_end"}') == DragEnd()


def test_parse_intent_ignores_extra_fields() -> None:
    assert parse_intent('{"type": "click", "button": "left", "x": 3}') == Click("left")


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"dx": 1}',
        '{"type": "teleport"}',
        '{"type": 7}',
        '{"type": "move", "dx": "5", "dy": 1}',
        '{"type": "move", "dx": true, "dy": 1}',
        '{"type": "move", "dx": 1}',
        '{"type": "click", "button": "middle"}',
        '{"type": "swipe", "direction": "up"}',
        '{"type": "arrow_key", "key": "pgup"}',
        '{"type": "clipboard", "content": 12}',
        '{"type": "file_notification"}',
        b"\xff\xfe",
    ],
)
def test_parse_intent_rejects_malformed_messages(raw) -> None:
    with pytest.raises(ProtocolError):
        parse_intent(raw)


def test_parse_intent_rejects_non_finite_numbers() -> None:
    with pytest.raises(ProtocolError):
        parse_intent('{"type": "scroll", "dx": NaN, "dy": 0}')


def test_parse_intent_rejects_numbers_too_large_for_a_float() -> None:
    huge = "9" * 400
    with pytest.raises(ProtocolError, match="out of range"):
        parse_intent(f'{{"type": "move", "dx": {huge}, "dy": 0}}')


def test_parse_intent_rejects_overlong_integer_literals() -> None:
    # longer than the interpreter's int/str conversion limit
    huge = "9" * 5000
    with pytest.raises(ProtocolError):
        parse_intent(f'{{"type": "move", "dx": {huge}, "dy": 0}}')


def test_swipe_maps_to_navigation() -> None:
    assert Swipe("left").navigation == "back"
    assert Swipe("right").navigation == "forward"


def test_outbound_messages() -> None:
    assert json.loads(encode_clipboard_history("hi", 42, "Client")) == {
        "type": "clipboard_history",
        "content": "hi",
        "timestamp": 42,
        "source": "Client",
    }
    assert json.loads(encode_file_uploaded("abc")) == {"type": "file_uploaded", "id": "abc"}
    assert json.loads(encode_connected("s1"))["session_id"] == "s1"
