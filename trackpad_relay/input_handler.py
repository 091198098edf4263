"""
Input handler using xdotool for mouse and keyboard control.
Uses subprocess calls for zero Python memory overhead.

DeviceWriter is the only thing allowed to touch the backend. It serializes
every action behind one lock and owns the drag state.
"""

import logging
import shutil
import subprocess
import threading
from typing import Dict, Optional

from .exceptions import DeviceFatal, DragConflict


logger = logging.getLogger(__name__)


# X11 pointer button numbers
BUTTON_CODES = {"left": 1, "middle": 2, "right": 3}
WHEEL_UP = 4
WHEEL_DOWN = 5
WHEEL_LEFT = 6
WHEEL_RIGHT = 7

# Arrow key names as understood by xdotool
ARROW_KEY_NAMES = {
    "up": "Up",
    "down": "Down",
    "left": "Left",
    "right": "Right",
}

DEFAULT_NAVIGATE_KEYS = {
    "back": "alt+Left",
    "forward": "alt+Right",
}


class XdotoolBackend:
    """
    Emit pointer and keyboard actions through xdotool.

    xdotool is used via subprocess to avoid Python library overhead.
    Any failed invocation means the X server (our virtual device) is gone,
    so errors are raised as DeviceFatal instead of being reported back.
    """

    def __init__(self, timeout: float = 2.0):
        self._xdotool_path = shutil.which("xdotool")
        self._timeout = timeout

        if not self._xdotool_path:
            raise DeviceFatal(
                "xdotool not found. Please install it:\n"
                "  sudo apt install xdotool"
            )

    def _run_xdotool(self, *args: str) -> None:
        """Run xdotool with given arguments."""
        try:
            subprocess.run(
                [self._xdotool_path, *args],
                check=True,
                capture_output=True,
                timeout=self._timeout,
            )
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace").strip() if e.stderr else ""
            raise DeviceFatal(f"xdotool {args[0]} failed: {stderr or e}") from e
        except (subprocess.TimeoutExpired, OSError) as e:
            raise DeviceFatal(f"xdotool {args[0]} failed: {e}") from e

    def move_relative(self, dx: int, dy: int) -> None:
        self._run_xdotool("mousemove_relative", "--", str(dx), str(dy))

    def click(self, button: int, repeat: int = 1) -> None:
        if repeat == 1:
            self._run_xdotool("click", str(button))
        else:
            self._run_xdotool("click", "--repeat", str(repeat), "--delay", "0", str(button))

    def mouse_down(self, button: int) -> None:
        """Press mouse button down."""
        self._run_xdotool("mousedown", str(button))

    def mouse_up(self, button: int) -> None:
        """Release mouse button."""
        self._run_xdotool("mouseup", str(button))

    def key_press(self, key: str) -> None:
        """
        Press and release a key or key combination.

        Args:
            key: Key name (e.g., "Up", "alt+Left")
        """
        self._run_xdotool("key", "--", key)


def create_backend(name: str = "xdotool"):
    """Create the input backend named in the config."""
    if name == "xdotool":
        return XdotoolBackend()
    raise DeviceFatal(f"Unknown input backend: {name}")


class DeviceWriter:
    """
    Single writer for the host input device.

    Every public method takes the same lock, so actions from concurrent
    sessions are applied one at a time in arrival order and paired
    press/release sequences are never interleaved.
    """

    def __init__(
        self,
        backend,
        navigate_keys: Optional[Dict[str, str]] = None,
        scroll_divisor: float = 10.0,
    ):
        self._backend = backend
        self._lock = threading.Lock()
        self._drag_owner: Optional[str] = None
        self._scroll_divisor = scroll_divisor

        # Resolved once; the host's convention does not change at runtime
        keys = dict(DEFAULT_NAVIGATE_KEYS)
        keys.update(navigate_keys or {})
        self._navigate_keys = keys

    @property
    def drag_owner(self) -> Optional[str]:
        return self._drag_owner

    def move(self, dx: float, dy: float) -> bool:
        """
        Move the pointer by a relative offset.

        Plain moves are ignored while a drag is held: drag motion has to come
        through drag_move from the owning session.

        Returns:
            True if the move was emitted.
        """
        with self._lock:
            if self._drag_owner is not None:
                logger.debug("Ignoring plain move while %s holds the drag", self._drag_owner)
                return False
            self._move(dx, dy)
            return True

    def click(self, button: str) -> None:
        """Press and release ``button`` ("left" or "right")."""
        with self._lock:
            self._backend.click(BUTTON_CODES[button])

    def scroll(self, dx: float, dy: float) -> None:
        """
        Scroll by a wheel offset.

        The client already applies natural scrolling, so signs are kept:
        positive dy scrolls up, positive dx scrolls right.
        """
        with self._lock:
            vertical = self._wheel_clicks(dy)
            if vertical:
                self._backend.click(WHEEL_UP if dy > 0 else WHEEL_DOWN, vertical)
            horizontal = self._wheel_clicks(dx)
            if horizontal:
                self._backend.click(WHEEL_RIGHT if dx > 0 else WHEEL_LEFT, horizontal)

    def drag_start(self, session_id: str) -> None:
        """
        Press and hold the left button on behalf of ``session_id``.

        Raises:
            DragConflict: Another session holds the drag.
        """
        with self._lock:
            if self._drag_owner is not None:
                if self._drag_owner == session_id:
                    return
                raise DragConflict(self._drag_owner)
            self._backend.mouse_down(BUTTON_CODES["left"])
            self._drag_owner = session_id

    def drag_move(self, session_id: str, dx: float, dy: float) -> bool:
        """Move with the button held. Only the drag owner may do this."""
        with self._lock:
            if self._drag_owner != session_id:
                logger.debug("Rejecting drag_move from non-owner %s", session_id)
                return False
            self._move(dx, dy)
            return True

    def drag_end(self, session_id: str) -> bool:
        """Release the held button. A no-op unless ``session_id`` owns the drag."""
        with self._lock:
            if self._drag_owner is None or self._drag_owner != session_id:
                return False
            self._backend.mouse_up(BUTTON_CODES["left"])
            self._drag_owner = None
            return True

    def release(self, session_id: str) -> bool:
        """Drop any drag held by a departing session."""
        released = self.drag_end(session_id)
        if released:
            logger.info("Released drag held by disconnected session %s", session_id)
        return released

    def arrow_key(self, key: str) -> None:
        with self._lock:
            self._backend.key_press(ARROW_KEY_NAMES[key])

    def navigate(self, direction: str) -> None:
        """Send the host's back/forward shortcut."""
        with self._lock:
            self._backend.key_press(self._navigate_keys[direction])

    def _move(self, dx: float, dy: float) -> None:
        ix, iy = int(dx), int(dy)
        if ix or iy:
            self._backend.move_relative(ix, iy)

    def _wheel_clicks(self, delta: float) -> int:
        if abs(delta) <= 0.1:
            return 0
        return int(abs(delta) / self._scroll_divisor)
