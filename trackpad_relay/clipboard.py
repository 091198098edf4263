"""
Clipboard history and fan-out for Trackpad Relay.
"""

import asyncio
import enum
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, List, Optional

from .protocol import encode_clipboard_history


logger = logging.getLogger(__name__)


class ClipboardSource(str, enum.Enum):
    HOST = "Host"
    CLIENT = "Client"


@dataclass(frozen=True)
class ClipboardEntry:
    content: str
    timestamp: int
    source: ClipboardSource

    def to_message(self) -> str:
        return encode_clipboard_history(self.content, self.timestamp, self.source.value)


# broadcast(message, excluding=None)
Broadcaster = Callable[..., None]


class ClipboardHub:
    """
    Bounded clipboard history plus broadcast to sessions.

    Appending to the history and broadcasting happen under one lock, so the
    order sessions receive entries in is exactly the history order.
    """

    def __init__(
        self,
        broadcast: Broadcaster,
        capacity: int = 50,
        clock: Callable[[], float] = time.time,
    ):
        self._broadcast = broadcast
        self._history: deque = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._clock = clock
        self._listeners: List[Callable[[ClipboardEntry], None]] = []

    def add_listener(self, listener: Callable[[ClipboardEntry], None]) -> None:
        """Call ``listener`` for every client-published entry."""
        self._listeners.append(listener)

    def publish(self, source_session: str, content: str) -> ClipboardEntry:
        """Record content sent by a session and forward it to every other session."""
        entry = self._append(content, ClipboardSource.CLIENT, excluding=source_session)
        for listener in self._listeners:
            listener(entry)
        return entry

    def publish_host(self, content: str) -> ClipboardEntry:
        """Record a host clipboard change and forward it to all sessions."""
        return self._append(content, ClipboardSource.HOST, excluding=None)

    def history(self) -> List[ClipboardEntry]:
        """Snapshot of the history, newest first."""
        with self._lock:
            return list(self._history)

    def __len__(self) -> int:
        return len(self._history)

    def _append(self, content: str, source: ClipboardSource, excluding: Optional[str]) -> ClipboardEntry:
        with self._lock:
            entry = ClipboardEntry(content, int(self._clock()), source)
            # newest first; deque drops the oldest from the right when full
            self._history.appendleft(entry)
            self._broadcast(entry.to_message(), excluding=excluding)

        preview = content[:50] + ("..." if len(content) > 50 else "")
        logger.info("Clipboard from %s: %s", source.value, preview)
        return entry


class HostClipboardWatcher:
    """
    Poll the host clipboard with pyperclip.

    Host changes are published through the hub. Content published by clients
    is written to the host clipboard; the cached value keeps that write from
    being picked up again as a host change.
    """

    def __init__(self, hub: ClipboardHub, poll_interval: float = 0.5):
        import pyperclip

        self.hub = hub
        self.poll_interval = poll_interval
        self.cached_content = ""
        self._paste = pyperclip.paste
        self._copy = pyperclip.copy
        self._clipboard_error = pyperclip.PyperclipException

        hub.add_listener(self._on_client_entry)

    async def run(self) -> None:
        """Watch the host clipboard until cancelled."""
        try:
            self.cached_content = self._read() or ""
        except self._clipboard_error as e:
            logger.warning("Host clipboard unavailable: %s", e)

        logger.info("Watching host clipboard every %.1fs", self.poll_interval)

        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                current = self._read()
            except self._clipboard_error as e:
                logger.debug("Failed to read host clipboard: %s", e)
                continue

            if current and _normalize(current) != _normalize(self.cached_content):
                self.cached_content = current
                self.hub.publish_host(current)

    def _read(self) -> str:
        return str(self._paste())

    def _on_client_entry(self, entry: ClipboardEntry) -> None:
        if not entry.content.strip():
            return
        try:
            self._copy(entry.content)
        except self._clipboard_error as e:
            logger.warning("Failed to set host clipboard: %s", e)
            return
        self.cached_content = entry.content


def _normalize(content: str) -> str:
    return content.strip().replace("\r\n", "\n").replace("\r", "\n")
