"""
Exception classes for Trackpad Relay.
"""


class RelayError(Exception):
    """Base class for all relay errors."""


class ProtocolError(RelayError):
    """Malformed or unrecognized inbound message."""


class DragConflict(RelayError):
    """Another session already holds the drag."""

    def __init__(self, owner: str):
        super().__init__(f"drag already held by session {owner}")
        self.owner = owner


class DeviceFatal(RelayError):
    """The virtual input device is gone. Not recoverable."""


class StorageError(RelayError):
    """An upload could not be fully written."""


class UploadTooLarge(StorageError):
    """Upload exceeded the configured size limit."""


class NotFound(RelayError):
    """File is absent or expired."""


class SlowConsumer(RelayError):
    """A session's outbound queue overflowed."""
