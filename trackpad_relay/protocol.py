"""
Message protocol for Trackpad Relay.

Inbound WebSocket messages are JSON objects tagged by ``type``. They are
decoded into one of the intent dataclasses below; anything else raises
ProtocolError. Outbound notifications are built by the ``encode_*`` helpers.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Union

from .exceptions import ProtocolError


BUTTONS = ("left", "right")
ARROW_KEYS = ("up", "down", "left", "right")
SWIPE_DIRECTIONS = ("left", "right")


@dataclass(frozen=True)
class Move:
    dx: float
    dy: float


@dataclass(frozen=True)
class Click:
    button: str


@dataclass(frozen=True)
class Scroll:
    dx: float
    dy: float


@dataclass(frozen=True)
class DragStart:
    pass


@dataclass(frozen=True)
class DragMove:
    dx: float
    dy: float


@dataclass(frozen=True)
class DragEnd:
    pass


@dataclass(frozen=True)
class Swipe:
    direction: str

    @property
    def navigation(self) -> str:
        """Swiping left goes back, swiping right goes forward."""
        return "back" if self.direction == "left" else "forward"


@dataclass(frozen=True)
class ArrowKey:
    key: str


@dataclass(frozen=True)
class ClipboardUpdate:
    content: str


@dataclass(frozen=True)
class FileNotification:
    file_id: str


Intent = Union[
    Move, Click, Scroll, DragStart, DragMove, DragEnd,
    Swipe, ArrowKey, ClipboardUpdate, FileNotification,
]


def _number(data: Dict[str, Any], field: str) -> float:
    value = data.get(field)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"'{field}' must be a number")
    try:
        value = float(value)
    except OverflowError:
        raise ProtocolError(f"'{field}' is out of range") from None
    if not math.isfinite(value):
        raise ProtocolError(f"'{field}' must be finite")
    return value


def _choice(data: Dict[str, Any], field: str, allowed: tuple) -> str:
    value = data.get(field)
    if value not in allowed:
        raise ProtocolError(f"'{field}' must be one of {', '.join(allowed)}")
    return value


def _text(data: Dict[str, Any], field: str) -> str:
    value = data.get(field)
    if not isinstance(value, str):
        raise ProtocolError(f"'{field}' must be a string")
    return value


_DECODERS: Dict[str, Callable[[Dict[str, Any]], Intent]] = {
    "move": lambda d: Move(_number(d, "dx"), _number(d, "dy")),
    "click": lambda d: Click(_choice(d, "button", BUTTONS)),
    "scroll": lambda d: Scroll(_number(d, "dx"), _number(d, "dy")),
    "drag_start": lambda d: DragStart(),
    "drag_move": lambda d: DragMove(_number(d, "dx"), _number(d, "dy")),
    "drag_end": lambda d: DragEnd(),
    "swipe": lambda d: Swipe(_choice(d, "direction", SWIPE_DIRECTIONS)),
    "arrow_key": lambda d: ArrowKey(_choice(d, "key", ARROW_KEYS)),
    "clipboard": lambda d: ClipboardUpdate(_text(d, "content")),
    "file_notification": lambda d: FileNotification(_text(d, "file_id")),
}


def parse_intent(raw: Union[str, bytes]) -> Intent:
    """
    Decode one inbound message.

    Args:
        raw: JSON text (or UTF-8 bytes) received from a session.

    Returns:
        The decoded intent.

    Raises:
        ProtocolError: Invalid JSON, unknown ``type`` or bad fields.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"message is not valid UTF-8: {e}") from e

    # JSONDecodeError is a ValueError; so is an over-long integer literal
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError) as e:
        raise ProtocolError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("message must be a JSON object")

    msg_type = data.get("type")
    decoder = _DECODERS.get(msg_type) if isinstance(msg_type, str) else None
    if decoder is None:
        raise ProtocolError(f"unknown message type: {msg_type!r}")

    return decoder(data)


def encode_clipboard_history(content: str, timestamp: int, source: str) -> str:
    return json.dumps({
        "type": "clipboard_history",
        "content": content,
        "timestamp": timestamp,
        "source": source,
    })


def encode_file_uploaded(file_id: str) -> str:
    return json.dumps({"type": "file_uploaded", "id": file_id})


def encode_connected(session_id: str) -> str:
    return json.dumps({
        "type": "connected",
        "session_id": session_id,
        "message": "Trackpad connected successfully",
    })


def encode_drag_conflict() -> str:
    return json.dumps({"type": "drag_conflict"})
