"""
Session registry and intent dispatch.

Each connected client is a Session with its own bounded outbound queue.
Broadcasting never waits on a session: if its queue is full the session is
dropped as a slow consumer and everyone else still gets the message.
"""

import asyncio
import logging
import uuid
from typing import Dict, List, Optional

from .clipboard import ClipboardHub
from .exceptions import DragConflict, NotFound, SlowConsumer
from .files import FileRecord, FileStore
from .input_handler import DeviceWriter
from .protocol import (
    ArrowKey,
    Click,
    ClipboardUpdate,
    DragEnd,
    DragMove,
    DragStart,
    FileNotification,
    Intent,
    Move,
    Scroll,
    Swipe,
    encode_drag_conflict,
    encode_file_uploaded,
)


logger = logging.getLogger(__name__)


DEFAULT_QUEUE_SIZE = 64

DEVICE_INTENTS = (Move, Click, Scroll, DragStart, DragMove, DragEnd, Swipe, ArrowKey)


class Session:
    """One connected client."""

    def __init__(self, session_id: str, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.id = session_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.alive = True
        self.closed = asyncio.Event()
        self.close_reason: Optional[str] = None

    def __repr__(self) -> str:
        return f"<Session {self.id} alive={self.alive}>"


class SessionRegistry:
    """
    Owns the live sessions and routes their intents.

    Device intents go to the DeviceWriter, clipboard updates to the
    ClipboardHub, and file notifications are rebroadcast to the other sessions.
    """

    def __init__(
        self,
        device: DeviceWriter,
        files: Optional[FileStore] = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        history_size: int = 50,
        notify_uploader: bool = False,
    ):
        self.device = device
        self.files = files
        self.queue_size = queue_size
        self.notify_uploader = notify_uploader
        self.clipboard = ClipboardHub(self.broadcast, capacity=history_size)
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Session:
        return self._sessions[session_id]

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def register(self) -> str:
        """Create a session and return its id."""
        session = Session(uuid.uuid4().hex, self.queue_size)
        self._sessions[session.id] = session
        logger.info("Session %s registered (%d live)", session.id, len(self._sessions))
        return session.id

    def unregister(self, session_id: str, reason: str = "disconnected") -> None:
        """
        Remove a session.

        Pending outbound messages are dropped and any drag it held is
        released. Unknown ids are ignored.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return

        session.alive = False
        session.close_reason = reason
        dropped = _drain(session.queue)
        session.closed.set()

        self.device.release(session_id)
        logger.info(
            "Session %s %s (%d live, %d message(s) dropped)",
            session_id, reason, len(self._sessions), dropped,
        )

    def send(self, session_id: str, message: str) -> bool:
        """Queue a message for one session. Returns False if it was dropped."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        try:
            self._enqueue(session, message)
        except SlowConsumer as e:
            logger.info("%s", e)
            self.unregister(session_id, reason="slow consumer")
            return False
        return True

    def broadcast(self, message: str, excluding: Optional[str] = None) -> int:
        """
        Queue a message for every session except ``excluding``.

        Returns:
            Number of sessions the message was queued for.
        """
        delivered = 0
        overflowed = []
        for session in list(self._sessions.values()):
            if session.id == excluding:
                continue
            try:
                self._enqueue(session, message)
                delivered += 1
            except SlowConsumer as e:
                logger.info("%s", e)
                overflowed.append(session.id)

        for session_id in overflowed:
            self.unregister(session_id, reason="slow consumer")

        return delivered

    def announce_upload(self, record: FileRecord, uploader: Optional[str] = None) -> int:
        """
        Tell sessions about a new upload.

        The record is marked as announced, so a later file_notification for
        the same id is not relayed a second time.
        """
        record.announced = True
        excluding = None if self.notify_uploader else uploader
        return self.broadcast(encode_file_uploaded(record.id), excluding=excluding)

    def dispatch(self, session_id: str, intent: Intent) -> None:
        """
        Apply one intent from ``session_id``.

        DragConflict and NotFound are handled here. DeviceFatal propagates.
        """
        if isinstance(intent, DEVICE_INTENTS):
            try:
                self.apply_device(session_id, intent)
            except DragConflict as e:
                self.reject_drag(session_id, e)

        elif isinstance(intent, ClipboardUpdate):
            self.clipboard.publish(session_id, intent.content)

        elif isinstance(intent, FileNotification):
            self._relay_file_notification(session_id, intent.file_id)

        else:
            raise TypeError(f"Unhandled intent: {intent!r}")

    def apply_device(self, session_id: str, intent: Intent) -> None:
        """
        Apply a device intent.

        Only touches the DeviceWriter, so it may run on a worker thread.

        Raises:
            DragConflict: ``intent`` is a DragStart and another session holds the drag.
            DeviceFatal: The input backend failed.
        """
        device = self.device

        if isinstance(intent, Move):
            device.move(intent.dx, intent.dy)
        elif isinstance(intent, Click):
            device.click(intent.button)
        elif isinstance(intent, Scroll):
            device.scroll(intent.dx, intent.dy)
        elif isinstance(intent, DragStart):
            device.drag_start(session_id)
        elif isinstance(intent, DragMove):
            device.drag_move(session_id, intent.dx, intent.dy)
        elif isinstance(intent, DragEnd):
            device.drag_end(session_id)
        elif isinstance(intent, Swipe):
            device.navigate(intent.navigation)
        elif isinstance(intent, ArrowKey):
            device.arrow_key(intent.key)
        else:
            raise TypeError(f"Not a device intent: {intent!r}")

    def reject_drag(self, session_id: str, conflict: DragConflict) -> None:
        logger.info("Session %s: %s", session_id, conflict)
        self.send(session_id, encode_drag_conflict())

    def _relay_file_notification(self, session_id: str, file_id: str) -> None:
        if self.files is not None:
            try:
                record = self.files.get(file_id)
            except NotFound:
                logger.debug("Session %s announced unknown file %s", session_id, file_id)
                return
            if record.announced:
                logger.debug("File %s already announced", file_id)
                return
            record.announced = True
        self.broadcast(encode_file_uploaded(file_id), excluding=session_id)

    def _enqueue(self, session: Session, message: str) -> None:
        if not session.alive:
            return
        try:
            session.queue.put_nowait(message)
        except asyncio.QueueFull:
            raise SlowConsumer(
                f"Session {session.id} outbound queue full ({session.queue.maxsize})"
            ) from None

    def close_all(self, reason: str = "server shutdown") -> None:
        for session_id in self.session_ids():
            self.unregister(session_id, reason=reason)


def _drain(queue: asyncio.Queue) -> int:
    count = 0
    while True:
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            return count
        count += 1
